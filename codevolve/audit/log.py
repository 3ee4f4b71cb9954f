"""Audit Log — append-only record of every pipeline transition.

One JSON object per line. Entries are never rewritten or deleted; the
file is the authoritative account of what the daemon did, even when the
process dies mid-run. Writing is best-effort: an I/O error is logged
and swallowed so the pipeline itself never blocks on the log.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import orjson

from codevolve.types import AuditLogEntry

_logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only NDJSON audit trail."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def record(self, event: str, **fields: Any) -> AuditLogEntry:
        """Append one event. Never raises on I/O failure."""
        entry = AuditLogEntry(event=event, **fields)
        line = orjson.dumps(
            entry.model_dump(mode="json"), default=str
        ) + b"\n"
        async with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("ab") as f:
                    f.write(line)
            except OSError as e:
                _logger.warning("Audit log write failed (%s): %s", event, e)
        return entry

    async def query(self, event: str = "", limit: int = 50) -> list[AuditLogEntry]:
        """Most recent entries first, optionally filtered by event name."""
        entries = self._read_all()
        if event:
            entries = [e for e in entries if e.event == event]
        entries.reverse()
        return entries[:limit]

    async def count(self) -> int:
        return len(self._read_all())

    def _read_all(self) -> list[AuditLogEntry]:
        if not self._path.exists():
            return []
        entries: list[AuditLogEntry] = []
        with self._path.open("rb") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditLogEntry.model_validate(orjson.loads(line)))
                except (orjson.JSONDecodeError, ValueError):
                    continue  # torn write from a crash
        return entries

    def __repr__(self) -> str:
        return f"AuditLog(path={str(self._path)!r})"
