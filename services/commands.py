import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from services.commands_registry import CommandSpec, IntentKind, get_spec, help_specs
from services.wa_format import wa_bold, wa_card, wa_plain

logger = logging.getLogger(__name__)

UNKNOWN_ECHO_LIMIT = 60

# Tried in order; the first match wins. ``/tool_status`` must come before the
# generic ``/<name>_status`` suffix so it is never read as a tool named "tool".
_RULES: List[Tuple[str, Pattern[str]]] = [
    ("tool_rental", re.compile(r"^/tool_rental(?:\s.*)?$", re.IGNORECASE | re.DOTALL)),
    ("tool_status", re.compile(r"^/tool_status(?:\s+(?P<arg>.*))?$", re.IGNORECASE | re.DOTALL)),
    ("name_status", re.compile(r"^/(?P<arg>\S*)_status$", re.IGNORECASE)),
    ("rent_tool", re.compile(r"^/rent_tool(?:\s+(?P<arg>.*))?$", re.IGNORECASE | re.DOTALL)),
    ("return_tool", re.compile(r"^/return_tool(?:\s+(?P<arg>.*))?$", re.IGNORECASE | re.DOTALL)),
    ("status", re.compile(r"^/status(?:\s+(?P<arg>.*))?$", re.IGNORECASE | re.DOTALL)),
    ("help", re.compile(r"^/help(?:\s.*)?$", re.IGNORECASE | re.DOTALL)),
]


@dataclass
class CommandIntent:
    kind: IntentKind
    argument: str = ""
    raw: str = ""
    command_id: Optional[str] = None


def _join_tokens(value: Optional[str]) -> str:
    return " ".join(str(value or "").split())


def classify(text: str) -> CommandIntent:
    """Map inbound text to an intent, extracting the tool name where one is expected."""
    raw = str(text or "").strip()

    for command_id, pattern in _RULES:
        match = pattern.match(raw)
        if not match:
            continue

        spec = get_spec(command_id)
        if spec is None:
            continue

        if not spec.needs_name:
            return CommandIntent(kind=spec.intent, raw=raw, command_id=command_id)

        argument = _join_tokens(match.groupdict().get("arg"))
        if not argument:
            return CommandIntent(kind=IntentKind.MISSING_ARGUMENT, raw=raw, command_id=command_id)
        return CommandIntent(kind=spec.intent, argument=argument, raw=raw, command_id=command_id)

    return CommandIntent(kind=IntentKind.UNKNOWN, argument=raw, raw=raw)


def help_text() -> str:
    lines = [f"{spec.usage} - {spec.description}" for spec in help_specs()]
    return wa_card("Tool Rental", lines, footer="Names are not case sensitive: unlock tool, UnLock-Tool and unlocktool all match.")


def unknown_command_text(raw: str) -> str:
    echoed = wa_plain(raw)
    if len(echoed) > UNKNOWN_ECHO_LIMIT:
        echoed = echoed[: UNKNOWN_ECHO_LIMIT - 3].rstrip() + "..."
    header = f"Unknown command: {echoed}" if echoed else "I only understand commands."
    return f"{header}\n\n{help_text()}"


def missing_argument_text(spec: Optional[CommandSpec]) -> str:
    if spec is None:
        return "Please add a tool name.\n\n" + help_text()
    lines = [
        "Please add a tool name.",
        f"Usage: {spec.usage}",
    ]
    if spec.example:
        lines.append(f"Example: {spec.example}")
    return "\n".join(lines)


def describe(intent: CommandIntent) -> str:
    """Short label for logs and metrics."""
    if intent.kind in (IntentKind.UNKNOWN, IntentKind.HELP):
        return intent.kind.value
    return f"{intent.kind.value}:{intent.command_id or '-'}"


def welcome_text() -> str:
    return "\n".join(
        [
            f"👋 Welcome to {wa_bold('Tool Rental')}!",
            "Send /tool_rental to see every tool, its status and its rates.",
        ]
    )
