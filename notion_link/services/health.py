"""Readiness checks for the database and the shared cache."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from notion_link.clients import SharedCache, SQLiteStore

logger = logging.getLogger(__name__)

OK = "ok"
ERROR = "error"


class HealthMonitor:
    """Probes each backing service and reports per-check results.

    Factories are called on every check; a backend that cannot be
    constructed is reported as failing.
    """

    def __init__(
        self,
        store_factory: Callable[[], SQLiteStore],
        cache_factory: Callable[[], SharedCache],
    ) -> None:
        self._store_factory = store_factory
        self._cache_factory = cache_factory

    async def check(self) -> Dict[str, Any]:
        checks = {"server": OK, "database": OK, "cache": OK}

        try:
            self._store_factory().ping()
        except Exception as exc:  # pylint: disable=broad-except
            checks["database"] = ERROR
            logger.error("Health: database check failed: %s", exc)

        try:
            await self._cache_factory().ping()
        except Exception as exc:  # pylint: disable=broad-except
            checks["cache"] = ERROR
            logger.error("Health: cache check failed: %s", exc)

        healthy = all(value == OK for value in checks.values())
        return {
            "status": "ok" if healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


__all__ = ["HealthMonitor"]
