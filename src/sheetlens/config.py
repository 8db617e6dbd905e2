"""Configuration management for SheetLens."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _parse_cors_origins() -> list[str]:
    """Parse CORS origins from environment variable."""
    cors_env = os.getenv("CORS_ALLOW_ORIGINS")
    if cors_env:
        return cors_env.split(",")
    return ["*"]


class Settings(BaseModel):
    """Application settings."""

    # Server settings
    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8000"))
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS settings (comma-separated list of allowed origins, or * for all)
    cors_allow_origins: list[str] = _parse_cors_origins()

    # Spreadsheet host backend ('memory' or 'gsheets')
    host_backend: str = os.getenv("HOST_BACKEND", "memory")

    # Google Sheets API credentials (required when HOST_BACKEND=gsheets)
    google_credentials_path: Path = Path(os.getenv("GOOGLE_CREDENTIALS_PATH", "credentials.json"))
    google_token_path: Path = Path(os.getenv("GOOGLE_TOKEN_PATH", "token.json"))

    # Autonomy defaults
    default_autonomy_mode: str = os.getenv("DEFAULT_AUTONOMY_MODE", "agent-default")
    default_active_sheet: str = os.getenv("DEFAULT_ACTIVE_SHEET", "Sheet1")

    # Batch queue timing
    debounce_delay_ms: int = int(os.getenv("DEBOUNCE_DELAY_MS", "300"))
    debounce_max_wait_ms: int = int(os.getenv("DEBOUNCE_MAX_WAIT_MS", "2000"))
    immediate_flush_threshold: int = int(os.getenv("IMMEDIATE_FLUSH_THRESHOLD", "10"))

    # Diff settings
    max_diffs: int = int(os.getenv("MAX_DIFFS", "10000"))
    diff_chunk_size: int = int(os.getenv("DIFF_CHUNK_SIZE", "1000"))
    include_styles_in_diff: bool = os.getenv("INCLUDE_STYLES_IN_DIFF", "true").lower() == "true"
    bounding_range_padding: int = int(os.getenv("BOUNDING_RANGE_PADDING", "1"))

    # Autonomy rule thresholds - operations above these need explicit approval
    max_cells_per_change: int = int(os.getenv("MAX_CELLS_PER_CHANGE", "25"))
    max_value_change_percent: float = float(os.getenv("MAX_VALUE_CHANGE_PERCENT", "100"))
    max_formula_complexity: int = int(os.getenv("MAX_FORMULA_COMPLEXITY", "5"))


settings = Settings()
