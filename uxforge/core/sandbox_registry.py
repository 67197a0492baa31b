"""In-process registry of live sandboxes.

One registry is created at startup and handed to whoever needs it; it is
never a module global. Besides metadata it owns one ``asyncio.Lock`` per
sandbox so file writes and server restarts on the same sandbox are
serialized.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

from uxforge.core.logging import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class SandboxRecord:
    sandbox_id: str
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)
    project_name: str | None = None
    preview_url: str | None = None
    status: str = "active"


@dataclass
class SandboxRegistry:
    _records: dict[str, SandboxRecord] = field(default_factory=dict)
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict)

    def register(self, sandbox_id: str) -> SandboxRecord:
        record = SandboxRecord(sandbox_id=sandbox_id)
        self._records[sandbox_id] = record
        logger.debug("sandbox_registered", sandbox_id=sandbox_id, active=len(self._records))
        return record

    def get(self, sandbox_id: str) -> SandboxRecord | None:
        return self._records.get(sandbox_id)

    def contains(self, sandbox_id: str) -> bool:
        return sandbox_id in self._records

    def touch(
        self,
        sandbox_id: str,
        *,
        project_name: str | None = None,
        preview_url: str | None = None,
    ) -> None:
        record = self._records.get(sandbox_id)
        if record is None:
            return
        record.last_activity = _now()
        if project_name is not None:
            record.project_name = project_name
        if preview_url is not None:
            record.preview_url = preview_url

    def unregister(self, sandbox_id: str) -> bool:
        removed = self._records.pop(sandbox_id, None) is not None
        self._locks.pop(sandbox_id, None)
        if removed:
            logger.debug("sandbox_unregistered", sandbox_id=sandbox_id, active=len(self._records))
        return removed

    def list_records(self) -> list[SandboxRecord]:
        return list(self._records.values())

    def count(self) -> int:
        return len(self._records)

    def lock(self, sandbox_id: str) -> asyncio.Lock:
        return self._locks.setdefault(sandbox_id, asyncio.Lock())
