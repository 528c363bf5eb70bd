from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from analyzer.app.schemas.findings import Finding
from analyzer.app.schemas.tracks import TrackPhase, TrackRole


# ----------------------------------------------------------------------
# Event Types (Finite and Versioned)
# ----------------------------------------------------------------------
class ProgressEventType(str, Enum):
    """
    Progression events emitted during the lifecycle of a Track.

    NOTE:
    This enum is finite and versioned.
    New entries must preserve observational semantics.
    """

    # ------------------------------------------------------------------
    # Track lifecycle
    # ------------------------------------------------------------------
    TRACK_STARTED = "track_started"
    TRACK_COMPLETED = "track_completed"
    TRACK_FAILED = "track_failed"
    ROLE_CHANGED = "role_changed"

    # ------------------------------------------------------------------
    # Category sequencing
    # ------------------------------------------------------------------
    CATEGORY_STARTED = "category_started"
    CATEGORY_COMPLETED = "category_completed"
    CATEGORY_FAILED = "category_failed"

    # ------------------------------------------------------------------
    # Deep analysis
    # ------------------------------------------------------------------
    DEEP_ANALYSIS_STARTED = "deep_analysis_started"
    FINDING_UPDATED = "finding_updated"

    # ------------------------------------------------------------------
    # Diagnostics (non-terminal)
    # ------------------------------------------------------------------
    RETRYING = "retrying"
    CONFIGURATION_WARNING = "configuration_warning"
    SNAPSHOT_FAILED = "snapshot_failed"


TERMINAL_EVENT_TYPES = frozenset(
    {
        ProgressEventType.TRACK_COMPLETED,
        ProgressEventType.TRACK_FAILED,
    }
)


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class ProgressEvent(BaseModel):
    """
    An immutable observation of a Track's progress.

    Events carry the owning Track's cursors at emission time and the
    findings that changed (``findings_delta``). Consumers must never
    observe a cursor value decrease for a given document.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: ProgressEventType

    document_id: str = Field(..., description="Document the Track is bound to")
    role: TrackRole
    phase: TrackPhase
    category_cursor: int = Field(0, ge=0)
    deep_analysis_cursor: int = Field(0, ge=0)
    deep_analysis_total: int = Field(0, ge=0)

    findings_delta: List[Finding] = Field(default_factory=list)

    # Optional contextual metadata (category name, attempt, error, etc.)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def to_sse_payload(self) -> str:
        """
        Render the event as a single Server-Sent Events frame.
        """
        data = json.dumps(
            self.model_dump(mode="json"),
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return f"event: {self.event_type.value}\ndata: {data}\n\n"
