"""
Notion property value conversion

Notion returns every page property as a typed object, e.g.
``{"type": "select", "select": {"name": "High"}}``. The helpers here reduce
such objects to plain values and build them back for writes. Missing or
mistyped properties extract to ``None``.
"""

from typing import Any, Callable, Dict, List, Optional


class PropertyKind:
    """Supported Notion property types"""

    TITLE = "title"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    CHECKBOX = "checkbox"
    DATE = "date"
    URL = "url"


# Notion caps a single rich text segment at 2000 characters
MAX_TEXT_SEGMENT = 2000


def _typed(prop: Any, kind: str) -> Optional[Any]:
    if not isinstance(prop, dict) or prop.get("type") != kind:
        return None
    return prop.get(kind)


def extract_text(prop: Any) -> Optional[str]:
    """Plain text of a ``title`` or ``rich_text`` property"""
    if not isinstance(prop, dict):
        return None

    kind = prop.get("type")
    if kind not in (PropertyKind.TITLE, PropertyKind.RICH_TEXT):
        return None

    segments = prop.get(kind)
    if not segments:
        return None

    text = "".join(segment.get("plain_text") or "" for segment in segments if isinstance(segment, dict))
    return text or None


def extract_number(prop: Any) -> Optional[float]:
    value = _typed(prop, PropertyKind.NUMBER)
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def extract_select(prop: Any) -> Optional[str]:
    value = _typed(prop, PropertyKind.SELECT)
    if not isinstance(value, dict):
        return None
    return value.get("name") or None


def extract_multi_select(prop: Any) -> Optional[List[str]]:
    value = _typed(prop, PropertyKind.MULTI_SELECT)
    if not value:
        return None
    names = [item.get("name") for item in value if isinstance(item, dict) and item.get("name")]
    return names or None


def extract_checkbox(prop: Any) -> Optional[bool]:
    value = _typed(prop, PropertyKind.CHECKBOX)
    return value if isinstance(value, bool) else None


def extract_date(prop: Any) -> Optional[str]:
    """Start of a ``date`` property as an ISO string"""
    value = _typed(prop, PropertyKind.DATE)
    if not isinstance(value, dict):
        return None
    return value.get("start") or None


def extract_url(prop: Any) -> Optional[str]:
    return _typed(prop, PropertyKind.URL) or None


EXTRACTORS: Dict[str, Callable[[Any], Any]] = {
    PropertyKind.TITLE: extract_text,
    PropertyKind.RICH_TEXT: extract_text,
    PropertyKind.NUMBER: extract_number,
    PropertyKind.SELECT: extract_select,
    PropertyKind.MULTI_SELECT: extract_multi_select,
    PropertyKind.CHECKBOX: extract_checkbox,
    PropertyKind.DATE: extract_date,
    PropertyKind.URL: extract_url,
}


def extract_value(prop: Any, kind: str) -> Any:
    """Extract a plain value from a property of the given kind"""
    extractor = EXTRACTORS.get(kind)
    if extractor is None:
        raise ValueError(f"Unsupported property kind: {kind}")
    return extractor(prop)


def _text_segments(value: Any) -> List[Dict[str, Any]]:
    if value is None or value == "":
        return []
    text = str(value)
    return [
        {"type": "text", "text": {"content": text[i:i + MAX_TEXT_SEGMENT]}}
        for i in range(0, len(text), MAX_TEXT_SEGMENT)
    ]


def build_property(value: Any, kind: str) -> Dict[str, Any]:
    """Build a Notion property payload for a write"""
    if kind in (PropertyKind.TITLE, PropertyKind.RICH_TEXT):
        return {kind: _text_segments(value)}

    if kind == PropertyKind.NUMBER:
        return {kind: value}

    if kind == PropertyKind.SELECT:
        return {kind: {"name": str(value)} if value not in (None, "") else None}

    if kind == PropertyKind.MULTI_SELECT:
        return {kind: [{"name": str(item)} for item in (value or [])]}

    if kind == PropertyKind.CHECKBOX:
        return {kind: bool(value)}

    if kind == PropertyKind.DATE:
        return {kind: {"start": str(value)} if value else None}

    if kind == PropertyKind.URL:
        return {kind: value or None}

    raise ValueError(f"Unsupported property kind: {kind}")
