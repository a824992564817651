"""Periodic removal of stale OAuth state rows."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import Optional

from notion_link.clients import SQLiteStore
from notion_link.core.config import OAuthSettings

logger = logging.getLogger(__name__)


class StateSweeper:
    """Deletes expired states and consumed states past their grace window."""

    def __init__(self, store: SQLiteStore, oauth_settings: OAuthSettings) -> None:
        self._store = store
        self._interval = oauth_settings.state_cleanup_interval_seconds
        self._grace = timedelta(seconds=oauth_settings.consumed_state_grace_seconds)
        self._task: Optional[asyncio.Task[None]] = None

    def sweep_once(self) -> int:
        removed = self._store.sweep_oauth_states(consumed_grace=self._grace)
        if removed:
            logger.info("Removed %d stale OAuth states", removed)
        return removed

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="oauth-state-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                self.sweep_once()
            except Exception:  # pylint: disable=broad-except
                logger.warning("OAuth state sweep failed", exc_info=True)
            await asyncio.sleep(self._interval)


__all__ = ["StateSweeper"]
