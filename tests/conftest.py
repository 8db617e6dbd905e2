"""Pytest configuration and shared fixtures."""

import os
from pathlib import Path

import pytest

from sheetlens.config import Settings
from sheetlens.host import InMemoryHost
from sheetlens.ops import SheetLensEngine
from sheetlens.snapshot import CellSnapshot


@pytest.fixture
def mock_settings(tmp_path: Path) -> Settings:
    """Create settings with test values."""
    creds_file = tmp_path / "credentials.json"
    token_file = tmp_path / "token.json"
    creds_file.write_text('{"installed": {"client_id": "test"}}')

    os.environ["GOOGLE_CREDENTIALS_PATH"] = str(creds_file)
    os.environ["GOOGLE_TOKEN_PATH"] = str(token_file)

    return Settings(
        google_credentials_path=creds_file,
        google_token_path=token_file,
        host="127.0.0.1",
        port=8000,
        debug=False,
        cors_allow_origins=["*"],
        host_backend="memory",
    )


@pytest.fixture
def base_snapshot() -> dict:
    """A small sheet: header row plus two numeric rows."""
    return {
        "Sheet1!A1": CellSnapshot(v="Item"),
        "Sheet1!B1": CellSnapshot(v="Amount"),
        "Sheet1!A2": CellSnapshot(v="Rent"),
        "Sheet1!B2": CellSnapshot(v=1200),
        "Sheet1!A3": CellSnapshot(v="Food"),
        "Sheet1!B3": CellSnapshot(v=300),
    }


@pytest.fixture
def memory_host(base_snapshot) -> InMemoryHost:
    """In-memory host seeded with the base snapshot."""
    return InMemoryHost(
        {key: cell.model_copy(deep=True) for key, cell in base_snapshot.items()}
    )


@pytest.fixture
def engine(memory_host) -> SheetLensEngine:
    """Engine whose every workbook is served by the same in-memory host."""
    return SheetLensEngine(
        host_factory=lambda workbook_id: memory_host,
        batch_delay=0.01,
        batch_max_wait=0.05,
    )


# Configure pytest-asyncio
def pytest_configure(config):
    """Configure pytest with asyncio settings."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
