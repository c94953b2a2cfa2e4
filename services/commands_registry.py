from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set


class IntentKind(str, Enum):
    LIST_TOOLS = "list_tools"
    GET_STATUS = "get_status"
    RENT_TOOL = "rent_tool"
    RETURN_TOOL = "return_tool"
    HELP = "help"
    MISSING_ARGUMENT = "missing_argument"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CommandSpec:
    command_id: str
    usage: str
    description: str
    intent: IntentKind
    needs_name: bool = False
    default_help: bool = True
    example: str = ""


def _c(
    command_id: str,
    usage: str,
    description: str,
    intent: IntentKind,
    *,
    needs_name: bool = False,
    default_help: bool = True,
    example: str = "",
) -> CommandSpec:
    return CommandSpec(
        command_id=command_id,
        usage=usage,
        description=description,
        intent=intent,
        needs_name=needs_name,
        default_help=default_help,
        example=example,
    )


# Order matters: the router tries these top to bottom and the first match wins.
COMMANDS: Dict[str, CommandSpec] = {
    "tool_rental": _c("tool_rental", "/tool_rental", "list all tools with status and rates", IntentKind.LIST_TOOLS),
    "tool_status": _c(
        "tool_status",
        "/tool_status <name>",
        "status of one tool",
        IntentKind.GET_STATUS,
        needs_name=True,
        default_help=False,
        example="/tool_status UnlockTool",
    ),
    "name_status": _c(
        "name_status",
        "/<name>_status",
        "status of one tool",
        IntentKind.GET_STATUS,
        needs_name=True,
        example="/UnlockTool_status",
    ),
    "rent_tool": _c(
        "rent_tool",
        "/rent_tool <name>",
        "rent an available tool",
        IntentKind.RENT_TOOL,
        needs_name=True,
        example="/rent_tool UnlockTool",
    ),
    "return_tool": _c(
        "return_tool",
        "/return_tool <name>",
        "return a rented tool",
        IntentKind.RETURN_TOOL,
        needs_name=True,
        example="/return_tool UnlockTool",
    ),
    "status": _c(
        "status",
        "/status <name>",
        "status of one tool",
        IntentKind.GET_STATUS,
        needs_name=True,
        default_help=False,
        example="/status UnlockTool",
    ),
    "help": _c("help", "/help", "show this help", IntentKind.HELP),
}


def command_specs() -> List[CommandSpec]:
    return list(COMMANDS.values())


def get_spec(command_id: str) -> Optional[CommandSpec]:
    return COMMANDS.get(str(command_id or "").strip().lower())


def help_specs(*, include_non_default: bool = False) -> List[CommandSpec]:
    return [spec for spec in command_specs() if include_non_default or spec.default_help]


def validate_registry() -> List[str]:
    issues: List[str] = []
    seen_ids: Set[str] = set()

    for key, spec in COMMANDS.items():
        cid = str(spec.command_id or "").strip()
        if not cid:
            issues.append(f"Command has empty id: {spec.usage}")
        elif cid in seen_ids:
            issues.append(f"Duplicate command id: {cid}")
        elif cid != key:
            issues.append(f"Registry key '{key}' does not match command id '{cid}'")
        seen_ids.add(cid)

        if not spec.usage.startswith("/"):
            issues.append(f"Command usage must start with '/': {spec.command_id}")

        if spec.needs_name and not spec.example:
            issues.append(f"Command needs a name but has no example: {spec.command_id}")

    if not any(spec.intent == IntentKind.LIST_TOOLS for spec in command_specs()):
        issues.append("No list command registered")

    return issues
