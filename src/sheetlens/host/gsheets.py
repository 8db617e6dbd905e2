"""Google Sheets API host adapter."""

import logging
from pathlib import Path
from typing import Any, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..engine.styles import NUMBER_FORMAT_KEY, serialize_style
from ..snapshot.models import CellKey, CellSnapshot, WorkbookSnapshot
from ..snapshot.refs import RangeRef
from .base import SpreadsheetHost
from .models import (
    BORDER_EDGES,
    DEFAULT_FONT_COLOR,
    DEFAULT_NUMBER_FORMAT,
    NO_BORDER,
    BorderState,
    CellVisualState,
    FormatWrite,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

GRID_FIELDS = (
    "sheets(properties(sheetId,title),"
    "data(startRow,startColumn,rowData(values(userEnteredValue,effectiveValue,userEnteredFormat))))"
)

# Border style names used by the highlight engine -> Sheets API names
BORDER_STYLE_TO_API = {
    NO_BORDER: "NONE",
    "Continuous": "SOLID",
    "Thin": "SOLID",
    "Medium": "SOLID_MEDIUM",
    "Thick": "SOLID_THICK",
    "Double": "DOUBLE",
    "Dot": "DOTTED",
    "Dash": "DASHED",
}
BORDER_STYLE_FROM_API = {
    "NONE": NO_BORDER,
    "SOLID": "Continuous",
    "SOLID_MEDIUM": "Medium",
    "SOLID_THICK": "Thick",
    "DOUBLE": "Double",
    "DOTTED": "Dot",
    "DASHED": "Dash",
}


def hex_to_color(value: str) -> dict[str, float]:
    """Convert '#RRGGBB' into a Sheets API color object."""
    value = value.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected #RRGGBB color, got {value!r}")
    return {
        "red": int(value[0:2], 16) / 255,
        "green": int(value[2:4], 16) / 255,
        "blue": int(value[4:6], 16) / 255,
    }


def color_to_hex(color: Optional[dict]) -> Optional[str]:
    """Convert a Sheets API color object into '#RRGGBB'."""
    if not color:
        return None
    channels = [round(color.get(name, 0.0) * 255) for name in ("red", "green", "blue")]
    return "#" + "".join(f"{channel:02X}" for channel in channels)


def _extended_value(value: Optional[dict]) -> Any:
    if not value:
        return None
    for name in ("numberValue", "stringValue", "boolValue"):
        if name in value:
            return value[name]
    return None


def format_to_style(fmt: Optional[dict]) -> dict[str, Any]:
    """Map a Sheets userEnteredFormat onto the serialized style layout."""
    if not fmt:
        return {}
    style: dict[str, Any] = {}
    pattern = (fmt.get("numberFormat") or {}).get("pattern")
    if pattern:
        style[NUMBER_FORMAT_KEY] = pattern

    text = fmt.get("textFormat") or {}
    font: dict[str, Any] = {}
    for name in ("bold", "italic", "strikethrough"):
        if name in text:
            font[name] = text[name]
    if "fontSize" in text:
        font["size"] = text["fontSize"]
    if text.get("foregroundColor"):
        font["color"] = color_to_hex(text["foregroundColor"])
    if font:
        style["font"] = font

    if fmt.get("backgroundColor"):
        style["fill"] = {"color": color_to_hex(fmt["backgroundColor"])}

    alignment = {}
    if fmt.get("horizontalAlignment"):
        alignment["horizontal"] = fmt["horizontalAlignment"].lower()
    if fmt.get("verticalAlignment"):
        alignment["vertical"] = fmt["verticalAlignment"].lower()
    if alignment:
        style["alignment"] = alignment

    borders = {}
    for edge, border in (fmt.get("borders") or {}).items():
        borders[edge] = {
            "style": BORDER_STYLE_FROM_API.get(border.get("style", "NONE"), NO_BORDER),
            "color": color_to_hex(border.get("color")),
        }
    if borders:
        style["borders"] = borders
    return style


def style_to_format(style: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Map a style patch onto a userEnteredFormat and its field mask."""
    fmt: dict[str, Any] = {}
    fields: list[str] = []

    if style.get(NUMBER_FORMAT_KEY):
        fmt["numberFormat"] = {"type": "NUMBER", "pattern": style[NUMBER_FORMAT_KEY]}
        fields.append("userEnteredFormat.numberFormat")

    font = style.get("font") or {}
    text: dict[str, Any] = {}
    for name in ("bold", "italic", "strikethrough"):
        if name in font:
            text[name] = font[name]
            fields.append(f"userEnteredFormat.textFormat.{name}")
    if "size" in font:
        text["fontSize"] = font["size"]
        fields.append("userEnteredFormat.textFormat.fontSize")
    if font.get("color"):
        text["foregroundColor"] = hex_to_color(font["color"])
        fields.append("userEnteredFormat.textFormat.foregroundColor")
    if text:
        fmt["textFormat"] = text

    fill = style.get("fill") or {}
    if fill.get("color"):
        fmt["backgroundColor"] = hex_to_color(fill["color"])
        fields.append("userEnteredFormat.backgroundColor")

    alignment = style.get("alignment") or {}
    if alignment.get("horizontal"):
        fmt["horizontalAlignment"] = alignment["horizontal"].upper()
        fields.append("userEnteredFormat.horizontalAlignment")
    if alignment.get("vertical"):
        fmt["verticalAlignment"] = alignment["vertical"].upper()
        fields.append("userEnteredFormat.verticalAlignment")

    borders = {}
    for edge, border in (style.get("borders") or {}).items():
        if edge not in BORDER_EDGES or not isinstance(border, dict):
            continue
        api_border = {"style": BORDER_STYLE_TO_API.get(border.get("style"), "SOLID")}
        if border.get("color"):
            api_border["color"] = hex_to_color(border["color"])
        borders[edge] = api_border
    if borders:
        fmt["borders"] = borders
        fields.append("userEnteredFormat.borders")

    return fmt, fields


def format_to_visual_state(fmt: Optional[dict]) -> CellVisualState:
    fmt = fmt or {}
    text = fmt.get("textFormat") or {}
    borders = {}
    for edge in BORDER_EDGES:
        border = (fmt.get("borders") or {}).get(edge) or {}
        borders[edge] = BorderState(
            style=BORDER_STYLE_FROM_API.get(border.get("style", "NONE"), NO_BORDER),
            color=color_to_hex(border.get("color")),
        )
    return CellVisualState(
        fill_color=color_to_hex(fmt.get("backgroundColor")),
        font_color=color_to_hex(text.get("foregroundColor")) or DEFAULT_FONT_COLOR,
        font_italic=bool(text.get("italic", False)),
        font_strikethrough=bool(text.get("strikethrough", False)),
        number_format=(fmt.get("numberFormat") or {}).get("pattern") or DEFAULT_NUMBER_FORMAT,
        borders=borders,
    )


class GoogleSheetsHost(SpreadsheetHost):
    """Host capability backed by one Google spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        service: Any = None,
        credentials_path: Optional[Path] = None,
        token_path: Optional[Path] = None,
    ):
        self.spreadsheet_id = spreadsheet_id
        self._service = service
        self._credentials = None
        self._sheet_ids: Optional[dict[str, int]] = None
        self.credentials_path = credentials_path or settings.google_credentials_path
        self.token_path = token_path or settings.google_token_path

    def _get_credentials(self) -> Credentials:
        """Get or refresh OAuth2 credentials."""
        creds = None

        if self.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(self.token_path), SCOPES)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                if not self.credentials_path.exists():
                    raise FileNotFoundError(
                        f"Google credentials file not found at {self.credentials_path}. "
                        "Please download it from Google Cloud Console."
                    )
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(self.credentials_path), SCOPES
                )
                creds = flow.run_local_server(port=0)

            # Save credentials for next run
            self.token_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.token_path, "w") as token:
                token.write(creds.to_json())

        return creds

    @property
    def service(self):
        """Get or create the Sheets API service."""
        if self._service is None:
            self._credentials = self._get_credentials()
            self._service = build("sheets", "v4", credentials=self._credentials)
        return self._service

    def _sheet_id(self, sheet_name: str) -> int:
        if self._sheet_ids is None:
            try:
                result = (
                    self.service.spreadsheets()
                    .get(spreadsheetId=self.spreadsheet_id, fields="sheets.properties(sheetId,title)")
                    .execute()
                )
            except HttpError as e:
                raise RuntimeError(f"Failed to get spreadsheet info: {e}")
            self._sheet_ids = {
                sheet["properties"]["title"]: sheet["properties"]["sheetId"]
                for sheet in result.get("sheets", [])
            }
        if sheet_name not in self._sheet_ids:
            raise RuntimeError(f"Sheet '{sheet_name}' not found in {self.spreadsheet_id}")
        return self._sheet_ids[sheet_name]

    def _grid_range(self, ref: RangeRef) -> dict[str, int]:
        return {
            "sheetId": self._sheet_id(ref.sheet),
            "startRowIndex": ref.start_row,
            "endRowIndex": ref.end_row + 1,
            "startColumnIndex": ref.start_col,
            "endColumnIndex": ref.end_col + 1,
        }

    def _get_grid(self, ranges: list[str]) -> list[tuple[str, int, int, list]]:
        """Fetch grid data for several A1 ranges in one call."""
        try:
            result = (
                self.service.spreadsheets()
                .get(
                    spreadsheetId=self.spreadsheet_id,
                    ranges=ranges,
                    includeGridData=True,
                    fields=GRID_FIELDS,
                )
                .execute()
            )
        except HttpError as e:
            raise RuntimeError(f"Failed to read grid data: {e}")

        blocks = []
        for sheet in result.get("sheets", []):
            title = sheet["properties"]["title"]
            for data in sheet.get("data", []):
                blocks.append(
                    (
                        title,
                        data.get("startRow", 0),
                        data.get("startColumn", 0),
                        data.get("rowData", []),
                    )
                )
        return blocks

    def _batch_update(self, requests: list[dict]) -> None:
        try:
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id, body={"requests": requests}
            ).execute()
        except HttpError as e:
            raise RuntimeError(f"Batch update failed: {e}")

    async def read_range(self, ref: RangeRef) -> WorkbookSnapshot:
        snapshot: WorkbookSnapshot = {}
        for title, start_row, start_col, rows in self._get_grid([ref.to_a1()]):
            for row_offset, row in enumerate(rows):
                for col_offset, cell in enumerate(row.get("values", [])):
                    entered = cell.get("userEnteredValue") or {}
                    style = format_to_style(cell.get("userEnteredFormat"))
                    formula = entered.get("formulaValue")
                    value = _extended_value(cell.get("effectiveValue"))
                    if value is None and formula is None and not style:
                        continue
                    key = CellKey(
                        sheet=title, row=start_row + row_offset, col=start_col + col_offset
                    ).to_string()
                    snapshot[key] = CellSnapshot(v=value, f=formula, s=serialize_style(style))
        logger.info(f"Read {len(snapshot)} non-empty cells from {ref.to_a1()}")
        return snapshot

    async def write_values(self, ref: RangeRef, values: list[list[Any]]) -> None:
        try:
            self.service.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=ref.to_a1(),
                valueInputOption="USER_ENTERED",
                body={"values": values},
            ).execute()
        except HttpError as e:
            raise RuntimeError(f"Failed to write values: {e}")

    async def write_formula(self, ref: RangeRef, formula: str) -> None:
        grid = [[formula] * ref.col_count for _ in range(ref.row_count)]
        await self.write_values(ref, grid)

    async def clear_range(self, ref: RangeRef) -> None:
        self._batch_update(
            [{"updateCells": {"range": self._grid_range(ref), "fields": "userEnteredValue,userEnteredFormat"}}]
        )

    async def write_format(self, ref: RangeRef, style: dict[str, Any]) -> None:
        fmt, fields = style_to_format(style)
        if not fields:
            return
        self._batch_update(
            [
                {
                    "repeatCell": {
                        "range": self._grid_range(ref),
                        "cell": {"userEnteredFormat": fmt},
                        "fields": ",".join(fields),
                    }
                }
            ]
        )

    async def merge_cells(self, ref: RangeRef, preserve_content: bool = False) -> None:
        if preserve_content:
            logger.warning("Google Sheets keeps only the top-left value when merging")
        self._batch_update(
            [{"mergeCells": {"range": self._grid_range(ref), "mergeType": "MERGE_ALL"}}]
        )

    async def unmerge_cells(self, ref: RangeRef) -> None:
        self._batch_update([{"unmergeCells": {"range": self._grid_range(ref)}}])

    async def read_format_properties(self, keys: list[CellKey]) -> dict[str, CellVisualState]:
        if not keys:
            return {}
        ranges = [RangeRef(k.sheet, k.row, k.col, k.row, k.col).to_a1() for k in keys]
        states: dict[str, CellVisualState] = {}
        for title, start_row, start_col, rows in self._get_grid(ranges):
            key = CellKey(sheet=title, row=start_row, col=start_col).to_string()
            cell = (rows[0].get("values") or [{}])[0] if rows else {}
            state = format_to_visual_state(cell.get("userEnteredFormat"))
            state.value = _extended_value(cell.get("effectiveValue"))
            state.formula = (cell.get("userEnteredValue") or {}).get("formulaValue")
            states[key] = state
        # Cells with no data at all come back without a block
        for key in keys:
            states.setdefault(key.to_string(), CellVisualState())
        return states

    def _format_write_requests(self, key: CellKey, write: FormatWrite) -> list[dict]:
        grid = self._grid_range(RangeRef(key.sheet, key.row, key.col, key.row, key.col))
        fmt: dict[str, Any] = {}
        text: dict[str, Any] = {}
        fields: list[str] = []

        if write.clear_fill:
            fields.append("userEnteredFormat.backgroundColor")
        elif write.fill_color:
            fmt["backgroundColor"] = hex_to_color(write.fill_color)
            fields.append("userEnteredFormat.backgroundColor")
        if write.font_color:
            text["foregroundColor"] = hex_to_color(write.font_color)
            fields.append("userEnteredFormat.textFormat.foregroundColor")
        if write.font_italic is not None:
            text["italic"] = write.font_italic
            fields.append("userEnteredFormat.textFormat.italic")
        if write.font_strikethrough is not None:
            text["strikethrough"] = write.font_strikethrough
            fields.append("userEnteredFormat.textFormat.strikethrough")
        if write.number_format is not None:
            # Leaving numberFormat unset in the body resets it to General
            if write.number_format != DEFAULT_NUMBER_FORMAT:
                fmt["numberFormat"] = {"type": "NUMBER", "pattern": write.number_format}
            fields.append("userEnteredFormat.numberFormat")
        if text:
            fmt["textFormat"] = text

        requests = []
        if fields:
            requests.append(
                {
                    "repeatCell": {
                        "range": grid,
                        "cell": {"userEnteredFormat": fmt},
                        "fields": ",".join(fields),
                    }
                }
            )
        if write.borders:
            border_request: dict[str, Any] = {"range": grid}
            for edge, border in write.borders.items():
                api_border = {"style": BORDER_STYLE_TO_API.get(border.style or NO_BORDER, "SOLID")}
                if border.color and api_border["style"] != "NONE":
                    api_border["color"] = hex_to_color(border.color)
                border_request[edge] = api_border
            requests.append({"updateBorders": border_request})
        return requests

    async def write_format_properties(self, writes: dict[str, FormatWrite]) -> dict[str, str]:
        requests: list[dict] = []
        errors: dict[str, str] = {}
        for key, write in writes.items():
            try:
                requests.extend(self._format_write_requests(CellKey.from_string(key), write))
            except (RuntimeError, ValueError) as e:
                errors[key] = str(e)

        if not requests:
            return errors

        try:
            self._batch_update(requests)
        except RuntimeError as e:
            # batchUpdate is atomic: every cell in the call failed
            for key in writes:
                errors.setdefault(key, str(e))
        return errors
