"""
Analysis Track.

One Track is one analysis run bound to one document. The Track owns
all per-document state (cursors, findings, failure context, stats);
components that advance it are stateless and receive its context
explicitly.

Invariants:
- ``category_cursor`` and ``deep_analysis_cursor`` never decrease
- deep analysis starts only after every category was attempted
- findings are owned by exactly one Track
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from analyzer.app.analysis.ordering import sort_findings
from analyzer.app.analysis.retry import RetryState
from analyzer.app.analysis.sequencer import CategoryStepResult
from analyzer.app.analysis.stepper import StepUpdate
from analyzer.app.core.exceptions import InvalidTrackStateError
from analyzer.app.schemas.findings import Finding
from analyzer.app.schemas.tracks import (
    CallStats,
    Party,
    TrackFailure,
    TrackPhase,
    TrackRole,
    TrackSnapshot,
)


class AnalysisTrack:
    def __init__(
        self,
        *,
        document_id: str,
        document_text: str,
        category_total: int,
        already_known_texts: Optional[Sequence[str]] = None,
        party: Optional[Party] = None,
        role: TrackRole = TrackRole.NONE,
    ) -> None:
        self.document_id = document_id
        self.document_text = document_text
        self.role = role

        self.phase = TrackPhase.SEQUENCING
        self.category_cursor = 0
        self.category_total = category_total
        self.deep_analysis_cursor = 0
        self.deep_analysis_total = 0

        self.findings: List[Finding] = []
        self.summaries: List[str] = []
        self.already_known_texts: List[str] = list(already_known_texts or [])
        self.party = party

        self.retrying: Optional[RetryState] = None
        self.failure: Optional[TrackFailure] = None
        self.stats = CallStats()

        self.updated_at = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self.phase in {TrackPhase.COMPLETE, TrackPhase.FAILED}

    @property
    def has_classification_result(self) -> bool:
        return self.category_cursor > 0

    @property
    def summary(self) -> str:
        return "\n\n".join(s for s in self.summaries if s)

    def known_texts(self) -> List[str]:
        """
        Texts the classifier must not report again: caller-supplied
        texts plus every finding recorded so far.
        """
        return self.already_known_texts + [f.source_span for f in self.findings]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_category_result(self, result: CategoryStepResult) -> None:
        self._require(TrackPhase.SEQUENCING)

        self.findings = sort_findings(self.findings + list(result.new_findings))
        if result.category_name is not None and result.summary:
            self.summaries.append(f"{result.category_name}: {result.summary}")
        self.category_cursor = max(self.category_cursor, result.next_cursor)
        self.retrying = None
        self._touch()

    def record_category_failure(self, *, category_name: str, cursor: int) -> None:
        """
        Record a failed category and move past it.
        """
        self._require(TrackPhase.SEQUENCING)

        self.summaries.append(f"{category_name}: Analysis failed")
        self.category_cursor = max(self.category_cursor, cursor + 1)
        self.retrying = None
        self._touch()

    def begin_deep_analysis(self) -> None:
        self._require(TrackPhase.SEQUENCING)

        self.phase = TrackPhase.DEEP_ANALYSIS
        self.category_cursor = max(self.category_cursor, self.category_total)
        self.deep_analysis_total = len(self.findings)
        self.deep_analysis_cursor = max(
            self.deep_analysis_cursor,
            self._leading_complete_count(),
        )
        self.retrying = None
        self._touch()

    def apply_step_update(self, update: StepUpdate) -> None:
        self._require(TrackPhase.DEEP_ANALYSIS)

        self.findings = [
            update.finding if f.id == update.finding.id else f
            for f in self.findings
        ]
        if update.terminal:
            self.deep_analysis_cursor = max(self.deep_analysis_cursor, update.index)
            self.retrying = None
        self._touch()

    def complete(self) -> None:
        self._require(TrackPhase.DEEP_ANALYSIS)

        self.phase = TrackPhase.COMPLETE
        self.deep_analysis_cursor = max(
            self.deep_analysis_cursor, self.deep_analysis_total
        )
        self.retrying = None
        self._touch()

    def fail(self, failure: TrackFailure) -> None:
        self.phase = TrackPhase.FAILED
        self.failure = failure
        self.retrying = None
        self._touch()

    def resume_from_failure(self) -> TrackFailure:
        """
        Return a failed Track to sequencing at the category that failed.
        """
        self._require(TrackPhase.FAILED)
        failure = self.failure
        if failure is None:
            raise InvalidTrackStateError(
                f"Track '{self.document_id}' has no recorded failure"
            )

        self.phase = TrackPhase.SEQUENCING
        self.failure = None
        self._touch()
        return failure

    def accept_partial(self) -> None:
        """
        Skip the remaining categories and elaborate what was found so far.
        """
        self._require(TrackPhase.FAILED)

        self.phase = TrackPhase.SEQUENCING
        self.failure = None
        self.begin_deep_analysis()

    def set_retrying(self, state: Optional[RetryState]) -> None:
        self.retrying = state

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> TrackSnapshot:
        return TrackSnapshot(
            document_id=self.document_id,
            phase=self.phase,
            category_cursor=self.category_cursor,
            category_total=self.category_total,
            deep_analysis_cursor=self.deep_analysis_cursor,
            deep_analysis_total=self.deep_analysis_total,
            findings=list(self.findings),
            summaries=list(self.summaries),
            summary=self.summary,
            already_known_texts=list(self.already_known_texts),
            party=self.party,
            failure=self.failure,
            stats=self.stats.model_copy(),
            updated_at=self.updated_at,
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: TrackSnapshot,
        *,
        document_text: str = "",
        role: TrackRole = TrackRole.NONE,
    ) -> "AnalysisTrack":
        track = cls(
            document_id=snapshot.document_id,
            document_text=document_text,
            category_total=snapshot.category_total,
            already_known_texts=snapshot.already_known_texts,
            party=snapshot.party,
            role=role,
        )
        track.phase = snapshot.phase
        track.category_cursor = snapshot.category_cursor
        track.deep_analysis_cursor = snapshot.deep_analysis_cursor
        track.deep_analysis_total = snapshot.deep_analysis_total
        # In-flight markers are not meaningful after a reload
        track.findings = [
            f.model_copy(update={"analyzing": False}) if f.analyzing else f
            for f in snapshot.findings
        ]
        track.summaries = list(snapshot.summaries)
        track.failure = snapshot.failure
        track.stats = snapshot.stats.model_copy()
        track.updated_at = snapshot.updated_at
        return track

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------


    def _leading_complete_count(self) -> int:
        count = 0
        for finding in self.findings:
            if not finding.elaboration_complete:
                break
            count += 1
        return count

    def _require(self, phase: TrackPhase) -> None:
        if self.phase != phase:
            raise InvalidTrackStateError(
                f"Track '{self.document_id}' is in phase '{self.phase.value}', "
                f"expected '{phase.value}'"
            )

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
