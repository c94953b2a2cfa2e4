"""WhatsApp text formatting helpers.

WhatsApp renders a small markdown dialect: ``*bold*``, ``_italic_`` and
``~strike~``. Replies are plain text built from these helpers.
"""
import re
from typing import Iterable, List, Optional

_MARKUP_RE = re.compile(r"[*~`]")


def wa_plain(text: object) -> str:
    """Strip WhatsApp markup characters from user-provided text."""
    return _MARKUP_RE.sub("", "" if text is None else str(text)).strip()


def wa_bold(text: object) -> str:
    value = wa_plain(text)
    return f"*{value}*" if value else ""


def wa_list(items: Iterable[object], bullet: str = "•") -> str:
    lines: List[str] = []
    for item in items:
        text = str(item or "").strip()
        if text:
            lines.append(f"{bullet} {text}")
    return "\n".join(lines)


def wa_card(title: object, lines: Optional[Iterable[object]] = None, footer: Optional[object] = None) -> str:
    out: List[str] = [wa_bold(title)]

    for line in lines or []:
        value = str(line or "").rstrip()
        if value.strip():
            out.append(value)

    footer_text = str(footer or "").strip()
    if footer_text:
        out.append("")
        out.append(footer_text)

    return "\n".join(out).strip()


def format_number(value: object) -> str:
    """Render 20.0 as "20" and 2.5 as "2.5"; non-numeric values pass through."""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        number = float(value)
        if number.is_integer():
            return str(int(number))
        return f"{number:g}"
    text = str(value).strip()
    try:
        return format_number(float(text))
    except ValueError:
        return text
