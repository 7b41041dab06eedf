"""Session Recovery Service: durable snapshots of pipeline runs.

A snapshot captures what a run was configured with and what it produced so
that a later session can offer to restore it. Only the newest
max_snapshots snapshots are kept.

Recoverability Rules:
    - Snapshot version must equal SNAPSHOT_VERSION
    - Snapshot must be younger than max_age (24 hours by default)
    - Snapshot must carry content (images or a storyboard project)
"""

import time
import uuid
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shotforge.services.storage import StorageService
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

SNAPSHOT_COLLECTION = "session_snapshots"
SNAPSHOT_VERSION = "1.0.0"
DEFAULT_MAX_SNAPSHOTS = 5
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: float
    project_id: str
    version: str = SNAPSHOT_VERSION
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_content(self) -> bool:
        return bool(self.data.get("images") or self.data.get("storyboard_project"))


class SessionRecoveryService:
    """Saves, lists and prunes session snapshots through StorageService.

    Args:
        storage: Persistence collaborator
        max_snapshots: Number of snapshots retained (newest first)
        clock: Time source returning epoch seconds
    """

    def __init__(
        self,
        storage: StorageService,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
        clock: Callable[[], float] = time.time,
    ):
        if max_snapshots < 1:
            raise ValueError(f"max_snapshots must be >= 1, got {max_snapshots}")
        self.storage = storage
        self.max_snapshots = max_snapshots
        self._clock = clock

    async def save_snapshot(self, project_id: str, data: dict[str, Any]) -> SessionSnapshot:
        """Persist a new snapshot and prune the oldest beyond max_snapshots."""
        timestamp = self._clock()
        snapshot = SessionSnapshot(
            id=f"snapshot_{int(timestamp * 1000)}_{uuid.uuid4().hex[:6]}",
            timestamp=timestamp,
            project_id=project_id,
            data=data,
        )
        await self.storage.put(SNAPSHOT_COLLECTION, snapshot.model_dump(mode="json"))

        snapshots = await self.get_all_snapshots()
        for stale in snapshots[self.max_snapshots :]:
            await self.storage.delete(SNAPSHOT_COLLECTION, stale.id)

        log.info(
            "snapshot_saved",
            snapshot_id=snapshot.id,
            project_id=project_id,
            pruned=max(0, len(snapshots) - self.max_snapshots),
        )
        return snapshot

    async def get_all_snapshots(self) -> list[SessionSnapshot]:
        """Return all snapshots, newest first."""
        stored = await self.storage.get_all(SNAPSHOT_COLLECTION)
        # Storage returns oldest first; reversing keeps ties newest first
        snapshots = [SessionSnapshot.model_validate(item) for item in reversed(stored)]
        return sorted(snapshots, key=lambda s: s.timestamp, reverse=True)

    async def get_latest_snapshot(self) -> SessionSnapshot | None:
        snapshots = await self.get_all_snapshots()
        return snapshots[0] if snapshots else None

    async def get_snapshot_by_project(self, project_id: str) -> SessionSnapshot | None:
        for snapshot in await self.get_all_snapshots():
            if snapshot.project_id == project_id:
                return snapshot
        return None

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        return await self.storage.delete(SNAPSHOT_COLLECTION, snapshot_id)

    async def clear_snapshots(self) -> int:
        removed = await self.storage.clear(SNAPSHOT_COLLECTION)
        log.info("snapshots_cleared", removed=removed)
        return removed

    def is_recoverable(
        self, snapshot: SessionSnapshot, max_age: float = DEFAULT_MAX_AGE_SECONDS
    ) -> bool:
        if snapshot.version != SNAPSHOT_VERSION:
            return False
        if self._clock() - snapshot.timestamp > max_age:
            return False
        return snapshot.has_content
