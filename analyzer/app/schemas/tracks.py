"""
Track-level schemas.

These models describe the observable and persistable state of one
analysis run bound to one document.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from analyzer.app.schemas.findings import Finding


class TrackRole(str, Enum):
    """
    Display role of a Track.

    At most one Track holds FOREGROUND at any time.
    """

    FOREGROUND = "foreground"
    BACKGROUND = "background"
    NONE = "none"


class TrackPhase(str, Enum):
    SEQUENCING = "sequencing"
    DEEP_ANALYSIS = "deep-analysis"
    COMPLETE = "complete"
    FAILED = "failed"


class Party(BaseModel):
    """
    Contract party whose perspective the classifier should take.
    """

    name: str = Field(..., min_length=1)
    description: str = ""

    model_config = ConfigDict(frozen=True)


class CallStats(BaseModel):
    """
    Explicit accumulator for collaborator call statistics.

    Threaded through each Track (never process-wide).
    """

    calls: int = 0
    total_seconds: float = 0.0
    classification_seconds: float = 0.0
    elaboration_seconds: float = 0.0

    def record(
        self,
        *,
        kind: Literal["classification", "elaboration"],
        seconds: float,
    ) -> None:
        self.calls += 1
        self.total_seconds += seconds
        if kind == "classification":
            self.classification_seconds += seconds
        else:
            self.elaboration_seconds += seconds


class TrackFailure(BaseModel):
    """
    Resume context recorded when a Track enters phase=failed.
    """

    kind: Literal["configuration", "transient", "fatal"]
    message: str
    cursor: int = Field(..., ge=0)
    category_name: str
    resumable: bool

    model_config = ConfigDict(frozen=True)


class TrackSnapshot(BaseModel):
    """
    Durable snapshot of a Track, upserted by ``document_id``.
    """

    document_id: str
    phase: TrackPhase
    category_cursor: int = Field(0, ge=0)
    category_total: int = Field(0, ge=0)
    deep_analysis_cursor: int = Field(0, ge=0)
    deep_analysis_total: int = Field(0, ge=0)

    findings: List[Finding] = Field(default_factory=list)
    summaries: List[str] = Field(default_factory=list)
    summary: str = ""
    already_known_texts: List[str] = Field(
        default_factory=list,
        description="Texts supplied by the caller as already identified",
    )

    party: Optional[Party] = None
    failure: Optional[TrackFailure] = None
    stats: CallStats = Field(default_factory=CallStats)

    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def analysis_complete(self) -> bool:
        return self.phase == TrackPhase.COMPLETE

    @property
    def total_risks(self) -> int:
        return len(self.findings)

    @property
    def high_risk_count(self) -> int:
        return sum(1 for f in self.findings if f.severity.value == "high")
