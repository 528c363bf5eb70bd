"""
Snapshot persistence.

Track snapshots are upserted by ``document_id``. Persisting the same
snapshot twice is harmless. Stores never decide anything about the
Track: they only record and return what they are given.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from analyzer.app.schemas.tracks import TrackSnapshot

logger = logging.getLogger("analyzer.persistence")


class SnapshotStore(Protocol):
    async def persist(self, snapshot: TrackSnapshot) -> None:
        ...

    async def get_known_results(self, document_id: str) -> Optional[TrackSnapshot]:
        ...


class InMemorySnapshotStore:
    """
    Process-local store. Used when no snapshot directory is configured.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, TrackSnapshot] = {}

    async def persist(self, snapshot: TrackSnapshot) -> None:
        self._snapshots[snapshot.document_id] = snapshot.model_copy(deep=True)

    async def get_known_results(self, document_id: str) -> Optional[TrackSnapshot]:
        snapshot = self._snapshots.get(document_id)
        return snapshot.model_copy(deep=True) if snapshot is not None else None


class JsonFileSnapshotStore:
    """
    One JSON document per analysed document under ``directory``.

    Writes go to a temporary file in the same directory and are moved
    into place with ``os.replace`` so a reader never sees a torn file.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, document_id: str) -> Path:
        digest = hashlib.sha256(document_id.encode("utf-8")).hexdigest()
        return self._directory / f"{digest}.json"

    async def persist(self, snapshot: TrackSnapshot) -> None:
        await asyncio.to_thread(self._write, snapshot)

    async def get_known_results(self, document_id: str) -> Optional[TrackSnapshot]:
        return await asyncio.to_thread(self._read, document_id)

    # ------------------------------------------------------------------
    # Blocking I/O (runs in a worker thread)
    # ------------------------------------------------------------------

    def _write(self, snapshot: TrackSnapshot) -> None:
        target = self.path_for(snapshot.document_id)
        payload = snapshot.model_dump_json(indent=2)

        fd, tmp_name = tempfile.mkstemp(
            dir=self._directory,
            prefix=".snapshot-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(
            "Persisted snapshot for %s (phase=%s)",
            snapshot.document_id,
            snapshot.phase.value,
        )

    def _read(self, document_id: str) -> Optional[TrackSnapshot]:
        path = self.path_for(document_id)
        if not path.exists():
            return None

        return TrackSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
