"""Operational utilities for KidJobs."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_stdlib_logger = logging.getLogger("kidjobs")


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self) -> None:
        self.database_online = True
        self.migrations: list[str] = []
        self.started_at = datetime.now(timezone.utc)

    def add_migration(self, name: str) -> None:
        if name not in self.migrations:
            self.migrations.append(name)

    def status(self) -> dict:
        return {
            "database": "ok" if self.database_online else "down",
            "migrations": list(self.migrations),
            "uptime_seconds": int((datetime.now(timezone.utc) - self.started_at).total_seconds()),
        }


class StructuredLogger:
    """Write JSON lines log entries for admin inspection.

    Every entry is also forwarded to the ``kidjobs`` standard library logger so
    that server logs carry the same events.
    """

    def __init__(self, *, path: Path | None = None, max_entries: int = 1000) -> None:
        self.path = path
        self._max_entries = max_entries
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: int = logging.INFO, **fields: object) -> dict:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]
        line = json.dumps(entry, default=str)
        _stdlib_logger.log(level, line)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level=logging.WARNING, **fields)

    def events(self, event_type: Optional[str] = None) -> tuple[dict, ...]:
        if event_type is None:
            return tuple(self._entries)
        return tuple(entry for entry in self._entries if entry["event"] == event_type)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["HealthMonitor", "StructuredLogger"]
