"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

import pytest

from notion_link.clients import SQLiteStore
from notion_link.core.config import AppSettings
from notion_link.services import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()  # type: ignore[call-arg]


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "notion_link.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(key=b"k" * 32)
