"""Serialized cell styles, format merging and named format presets."""

import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Sub-objects merged one level deep; anything else is replaced wholesale
STYLE_SECTIONS = ("font", "fill", "borders", "alignment")
NUMBER_FORMAT_KEY = "numberFormat"

FORMAT_PRESETS: dict[str, dict[str, Any]] = {
    "currency": {NUMBER_FORMAT_KEY: "$#,##0.00"},
    "percentage": {NUMBER_FORMAT_KEY: "0.00%"},
    "date": {NUMBER_FORMAT_KEY: "mm/dd/yyyy"},
    "accounting": {NUMBER_FORMAT_KEY: '_($* #,##0.00_);_($* (#,##0.00);_($* "-"??_);_(@_)'},
    "number": {NUMBER_FORMAT_KEY: "#,##0.00"},
    "header": {
        "font": {"bold": True},
        "fill": {"color": "#D9E1F2"},
        "alignment": {"horizontal": "center"},
    },
    "total": {
        "font": {"bold": True},
        "borders": {"top": {"style": "Double", "color": "#000000"}},
    },
}


def parse_style(raw: Optional[str]) -> dict[str, Any]:
    """Parse a serialized style; malformed styles are treated as empty."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed style: {raw!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def serialize_style(style: dict[str, Any]) -> Optional[str]:
    """Serialize with sorted keys so equal styles produce equal strings."""
    if not style:
        return None
    return json.dumps(style, sort_keys=True, separators=(",", ":"))


def merge_style(existing: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """
    Merge a partial style into an existing one.

    Style sections (font, fill, borders, alignment) are merged shallowly; every
    other key, including numberFormat, replaces the existing value.
    """
    merged = dict(existing)
    for key, value in patch.items():
        if key in STYLE_SECTIONS and isinstance(value, dict):
            section = merged.get(key)
            merged[key] = {**(section if isinstance(section, dict) else {}), **value}
        elif value is not None:
            merged[key] = value
    return merged


def style_from_format_input(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Build a style patch from a ``format_range`` input.

    Accepts either a ready-made ``format`` object or the flat tool fields
    (number_format, font, fill_color, alignment, borders).
    """
    explicit = payload.get("format")
    if isinstance(explicit, dict):
        style = dict(explicit)
        if "number_format" in style:
            style[NUMBER_FORMAT_KEY] = style.pop("number_format")
        return style

    style: dict[str, Any] = {}
    if payload.get("number_format"):
        style[NUMBER_FORMAT_KEY] = payload["number_format"]
    if isinstance(payload.get("font"), dict):
        style["font"] = dict(payload["font"])
    if payload.get("fill_color"):
        style["fill"] = {"color": payload["fill_color"]}
    if isinstance(payload.get("alignment"), dict):
        style["alignment"] = dict(payload["alignment"])
    if isinstance(payload.get("borders"), dict):
        style["borders"] = dict(payload["borders"])
    return style


def resolve_preset(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve a ``smart_format_cells`` input to a concrete style patch.

    The preset name is read from ``style_type`` (or ``preset``); an explicit
    ``number_format`` overrides the preset's number format.
    """
    name = payload.get("style_type") or payload.get("preset") or payload.get("format_type")
    style: dict[str, Any] = {}
    if name:
        preset = FORMAT_PRESETS.get(str(name).lower())
        if preset is None:
            logger.warning(f"Unknown format preset '{name}', applying explicit fields only")
        else:
            style = merge_style({}, preset)
    if payload.get("number_format"):
        style[NUMBER_FORMAT_KEY] = payload["number_format"]
    return style
