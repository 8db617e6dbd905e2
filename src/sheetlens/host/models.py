"""Visual cell state exchanged with the spreadsheet host."""

from typing import Optional

from pydantic import BaseModel, Field

from ..snapshot.models import Scalar

BORDER_EDGES = ("top", "bottom", "left", "right")

DEFAULT_FONT_COLOR = "#000000"
DEFAULT_NUMBER_FORMAT = "General"
NO_BORDER = "None"


class BorderState(BaseModel):
    """Style and color of one border edge."""

    style: Optional[str] = NO_BORDER
    color: Optional[str] = None


def _default_borders() -> dict[str, BorderState]:
    return {edge: BorderState() for edge in BORDER_EDGES}


class CellVisualState(BaseModel):
    """Visual properties of one cell, as read from the host."""

    fill_color: Optional[str] = None  # None means no fill
    font_color: Optional[str] = DEFAULT_FONT_COLOR
    font_italic: bool = False
    font_strikethrough: bool = False
    number_format: Optional[str] = DEFAULT_NUMBER_FORMAT
    borders: dict[str, BorderState] = Field(default_factory=_default_borders)
    value: Scalar = None
    formula: Optional[str] = None


class FormatWrite(BaseModel):
    """
    A partial visual update for one cell.

    Fields left as None are not touched. ``clear_fill`` removes the fill
    entirely. A border written with style "None" removes that edge,
    including its color.
    """

    fill_color: Optional[str] = None
    clear_fill: bool = False
    font_color: Optional[str] = None
    font_italic: Optional[bool] = None
    font_strikethrough: Optional[bool] = None
    number_format: Optional[str] = None
    borders: dict[str, BorderState] = Field(default_factory=dict)
