import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from services.store import (
    PreconditionFailed,
    ToolNotFound,
    ToolRecord,
    ToolStatus,
    ToolStore,
)
from services.wa_format import format_number, wa_bold, wa_card, wa_list, wa_plain

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")

STATUS_LABELS = {
    ToolStatus.AVAILABLE.value: "✅ Available",
    ToolStatus.IN_USE.value: "❌ In Use",
}
NO_RATE_INFO = "No rate info"


def normalize_tool_name(name: str) -> str:
    """Lookup key for a tool: lowercase with everything outside [A-Za-z0-9] removed."""
    return _NON_ALNUM_RE.sub("", str(name or "")).lower()


# --- Rendering ---


def _hours_label(hours: str) -> str:
    value = format_number(hours)
    return f"{value} hr" if value == "1" else f"{value} hrs"


def _rate_sort_key(item: Tuple[str, Any]) -> Tuple[int, float, str]:
    key = str(item[0])
    try:
        return (0, float(key), key)
    except ValueError:
        return (1, 0.0, key)


def render_pricing(tool: ToolRecord) -> List[str]:
    """Pricing lines for a tool; flat price/duration wins over a rate table."""
    if tool.price is not None:
        price_line = f"💰 Price: {format_number(tool.price)}"
        if tool.duration_minutes is not None:
            price_line += f" | ⏱ Duration: {format_number(tool.duration_minutes)} min"
        return [price_line]

    if tool.rates:
        tiers = sorted(tool.rates.items(), key=_rate_sort_key)
        return [wa_list(f"{_hours_label(hours)} → {format_number(price)}" for hours, price in tiers)]

    return [NO_RATE_INFO]


def render_tool(tool: ToolRecord) -> str:
    status = STATUS_LABELS.get(tool.status, f"❔ {wa_plain(tool.status)}")
    lines = [f"{wa_bold(tool.name)} {status}"]
    lines.extend(render_pricing(tool))
    return "\n".join(lines)


def _display_name(name: str) -> str:
    return wa_bold(name) or "that tool"


def not_found_text(name: str) -> str:
    return (
        f"❓ Tool {_display_name(name)} was not found. "
        "Check the spelling or send /tool_rental to see the list."
    )


# --- Lookup ---


def find_tool(store: ToolStore, name: str) -> Optional[ToolRecord]:
    """Resolve a user-typed name to a record, tolerant of case and punctuation."""
    tool_id = normalize_tool_name(name)
    if not tool_id:
        return None

    try:
        return store.get_by_id(tool_id)
    except ToolNotFound:
        pass

    # Older records were keyed by display name rather than normalized id.
    for tool in store.list_all():
        if normalize_tool_name(tool.id) == tool_id or normalize_tool_name(tool.name) == tool_id:
            return tool
    return None


# --- Operations ---


def list_tools(store: ToolStore) -> str:
    tools = sorted(store.list_all(), key=lambda t: (t.name.lower(), t.id))
    if not tools:
        return "No tools are listed right now."

    blocks = [render_tool(tool) for tool in tools]
    return wa_card("🧰 Tools for rent", ["\n\n".join(blocks)], footer="Rent one with /rent_tool <name>.")


def get_status(store: ToolStore, name: str) -> str:
    tool = find_tool(store, name)
    if tool is None:
        return not_found_text(name)
    return render_tool(tool)


def _transition(store: ToolStore, tool: ToolRecord, current: ToolStatus, target: ToolStatus) -> bool:
    """Move a tool from ``current`` to ``target``. False when another request got there first."""
    try:
        store.conditional_update(
            tool.id,
            expected={"status": current.value},
            new_values={"status": target.value},
        )
    except PreconditionFailed:
        logger.info("Lost %s -> %s race on tool %s", current.value, target.value, tool.id)
        return False
    logger.info("Tool %s moved %s -> %s", tool.id, current.value, target.value)
    return True


def rent_tool(store: ToolStore, name: str) -> str:
    tool = find_tool(store, name)
    if tool is None:
        return not_found_text(name)

    in_use = f"❌ {wa_bold(tool.name)} is currently in use. Please try again later."
    if not tool.is_available:
        return in_use

    try:
        rented = _transition(store, tool, ToolStatus.AVAILABLE, ToolStatus.IN_USE)
    except ToolNotFound:
        return not_found_text(name)
    if not rented:
        return in_use

    return wa_card(
        f"✅ You have rented {tool.name}",
        render_pricing(tool),
        footer=f"Send /return_tool {tool.name} when you are done.",
    )


def return_tool(store: ToolStore, name: str) -> str:
    tool = find_tool(store, name)
    if tool is None:
        return not_found_text(name)

    not_rented = f"ℹ️ {wa_bold(tool.name)} is not currently rented."
    if tool.status != ToolStatus.IN_USE.value:
        return not_rented

    try:
        returned = _transition(store, tool, ToolStatus.IN_USE, ToolStatus.AVAILABLE)
    except ToolNotFound:
        return not_found_text(name)
    if not returned:
        return not_rented

    return f"🙏 Thanks for returning {wa_bold(tool.name)}. It is available again."


def catalog_record(entry: Dict[str, Any]) -> ToolRecord:
    """Build a record from an admin catalog entry, deriving the id from the name."""
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ValueError(f"Catalog entry has no name: {entry}")
    tool_id = normalize_tool_name(name)
    if not tool_id:
        raise ValueError(f"Catalog name '{name}' has no letters or digits")
    fields = dict(entry)
    fields.setdefault("status", ToolStatus.AVAILABLE.value)
    record = ToolRecord.from_fields(tool_id, fields)
    if record.status not in STATUS_LABELS:
        raise ValueError(f"Unknown status '{record.status}' for '{name}'")
    return record
