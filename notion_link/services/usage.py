"""Best-effort recording of connection ``last_used_at`` timestamps."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from notion_link.clients import SQLiteStore

logger = logging.getLogger(__name__)


class LastUsedRecorder:
    """Bounded queue of user ids drained by a single worker task.

    ``notify`` never blocks and never raises; a full queue drops the update.
    """

    def __init__(self, store: SQLiteStore, *, max_pending: int = 1000) -> None:
        self._store = store
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._drain(), name="last-used-recorder")

    async def stop(self) -> None:
        """Flush pending updates, then stop the worker."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    def notify(self, user_id: str) -> None:
        try:
            self._queue.put_nowait(user_id)
        except asyncio.QueueFull:
            logger.debug("Last-used queue full; dropping update for user %s", user_id)

    async def _drain(self) -> None:
        while True:
            user_id = await self._queue.get()
            try:
                self._store.touch_last_used(user_id)
            except Exception:  # pylint: disable=broad-except
                logger.warning("Failed to record last use for user %s", user_id, exc_info=True)
            finally:
                self._queue.task_done()


__all__ = ["LastUsedRecorder"]
