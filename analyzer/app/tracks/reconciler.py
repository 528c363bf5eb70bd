"""
Track Reconciler.

Coordinates every Analysis Track in the process:

- starts Tracks and drives each one in its own asyncio task
- migrates Tracks between foreground and background roles
- publishes every state change on the progress feed
- persists snapshots after each category, every N deep-analysis
  items, and on completion

Each Track is an independent state object. The only shared state is a
single "displayed document" pointer; roles are derived from it and
never affect a Track's cursors, findings or phase.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Set

from analyzer.app.analysis.retry import RetryState
from analyzer.app.analysis.sequencer import CategorySequencer
from analyzer.app.analysis.stepper import DeepAnalysisStepper
from analyzer.app.core.exceptions import (
    InvalidTrackStateError,
    SequencingConfigurationError,
    SequencingError,
    TrackNotFoundError,
    TransientError,
)
from analyzer.app.events import (
    BroadcastEventEmitter,
    MemoryQueueEventEmitter,
    ProgressEvent,
    ProgressEventType,
)
from analyzer.app.persistence.store import SnapshotStore
from analyzer.app.schemas.findings import Finding
from analyzer.app.schemas.tracks import (
    Party,
    TrackFailure,
    TrackPhase,
    TrackRole,
    TrackSnapshot,
)
from analyzer.app.tracks.track import AnalysisTrack

logger = logging.getLogger("analyzer.reconciler")

CONFIGURATION_FIX_IT = (
    "The analysis service is not configured. Check the API key or "
    "endpoint settings and retry."
)


class TrackReconciler:
    def __init__(
        self,
        *,
        sequencer: CategorySequencer,
        stepper: DeepAnalysisStepper,
        store: SnapshotStore,
        broadcaster: Optional[BroadcastEventEmitter] = None,
        snapshot_every: int = 3,
        continue_on_category_failure: bool = False,
    ) -> None:
        if snapshot_every < 1:
            raise ValueError("snapshot_every must be >= 1")

        self._sequencer = sequencer
        self._stepper = stepper
        self._store = store
        self._broadcaster = broadcaster or BroadcastEventEmitter()
        self._snapshot_every = snapshot_every
        self._continue_on_category_failure = continue_on_category_failure

        self._tracks: Dict[str, AnalysisTrack] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        # Strong references so abandoned tasks are not garbage collected
        self._running: Set[asyncio.Task] = set()
        self._foreground_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def foreground_id(self) -> Optional[str]:
        return self._foreground_id

    def displayed_track(self) -> Optional[AnalysisTrack]:
        if self._foreground_id is None:
            return None
        return self._tracks.get(self._foreground_id)

    def get_track(self, document_id: str) -> AnalysisTrack:
        track = self._tracks.get(document_id)
        if track is None:
            raise TrackNotFoundError(document_id)
        return track

    def tracks(self) -> List[AnalysisTrack]:
        return list(self._tracks.values())

    async def get_snapshot(self, document_id: str) -> TrackSnapshot:
        """
        Current state of a live Track, or the last persisted snapshot.
        """
        track = self._tracks.get(document_id)
        if track is not None:
            return track.snapshot()

        snapshot = await self._store.get_known_results(document_id)
        if snapshot is None:
            raise TrackNotFoundError(document_id)
        return snapshot

    def is_running(self, document_id: str) -> bool:
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    async def wait_for(self, document_id: str) -> TrackSnapshot:
        """
        Wait until the Track for ``document_id`` stops advancing.
        """
        task = self._tasks.get(document_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_track(document_id).snapshot()

    # ------------------------------------------------------------------
    # Progress feed
    # ------------------------------------------------------------------

    def subscribe(
        self,
        *,
        close_on_terminal_for: Optional[str] = None,
    ) -> MemoryQueueEventEmitter:
        """
        Register a progress subscriber.

        The subscriber is registered immediately, so no event emitted
        after this call is missed.
        """
        return self._broadcaster.subscribe(
            close_on_terminal_for=close_on_terminal_for,
        )

    async def unsubscribe(self, subscriber: MemoryQueueEventEmitter) -> None:
        await self._broadcaster.unsubscribe(subscriber)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_analysis(
        self,
        document_id: str,
        text: str,
        *,
        already_known: Optional[Sequence[str]] = None,
        party: Optional[Party] = None,
        display: bool = True,
    ) -> AnalysisTrack:
        """
        Create a Track for ``document_id`` and start driving it.

        A finished Track for the same document is replaced (whole
        document reset). A running one is left untouched.
        """
        if self.is_running(document_id):
            raise InvalidTrackStateError(
                f"Analysis for '{document_id}' is already running"
            )

        track = AnalysisTrack(
            document_id=document_id,
            document_text=text,
            category_total=len(self._sequencer.catalog),
            already_known_texts=already_known,
            party=party,
            role=TrackRole.BACKGROUND,
        )
        self._tracks[document_id] = track

        if display or self._foreground_id == document_id:
            await self._promote(track)

        logger.info(
            "Starting analysis of %s (%d categories, role=%s)",
            document_id,
            track.category_total,
            track.role.value,
        )
        await self._emit(track, ProgressEventType.TRACK_STARTED)

        self._spawn(track)
        return track

    async def set_foreground(self, document_id: str) -> AnalysisTrack:
        """
        Display ``document_id``.

        Promotes its Track (loading the persisted snapshot if no Track is
        live) and demotes the previously displayed Track without touching
        its progress.
        """
        track = self._tracks.get(document_id)

        if track is None:
            snapshot = await self._store.get_known_results(document_id)
            if snapshot is None:
                raise TrackNotFoundError(document_id)
            track = AnalysisTrack.from_snapshot(snapshot)
            self._tracks[document_id] = track

        await self._promote(track)
        return track

    async def resume_analysis(
        self,
        document_id: str,
        text: str,
        *,
        display: bool = True,
    ) -> AnalysisTrack:
        """
        Continue a persisted partial analysis from its recorded cursors.
        """
        if self.is_running(document_id):
            raise InvalidTrackStateError(
                f"Analysis for '{document_id}' is already running"
            )

        snapshot = await self._store.get_known_results(document_id)
        if snapshot is None:
            raise TrackNotFoundError(document_id)

        track = AnalysisTrack.from_snapshot(
            snapshot,
            document_text=text,
            role=TrackRole.BACKGROUND,
        )
        self._tracks[document_id] = track

        if display or self._foreground_id == document_id:
            await self._promote(track)

        if track.phase == TrackPhase.FAILED:
            track.resume_from_failure()

        if track.phase == TrackPhase.COMPLETE:
            if track.role is TrackRole.BACKGROUND:
                await self._set_role(track, TrackRole.NONE)
            return track

        logger.info(
            "Resuming analysis of %s at category %d, item %d",
            document_id,
            track.category_cursor,
            track.deep_analysis_cursor,
        )
        await self._emit(
            track,
            ProgressEventType.TRACK_STARTED,
            details={"resumed": True},
        )
        self._spawn(track)
        return track

    async def retry_from_failure(self, document_id: str) -> AnalysisTrack:
        """
        Restart a failed Track at exactly the category that failed.
        """
        track = self._failed_track(document_id)

        if not track.document_text:
            raise InvalidTrackStateError(
                f"Track '{document_id}' has no document text; "
                "resume it with the original text instead"
            )

        failure = track.resume_from_failure()
        logger.info(
            "Retrying %s from category %d (%s)",
            document_id,
            failure.cursor,
            failure.category_name,
        )
        await self._emit(
            track,
            ProgressEventType.TRACK_STARTED,
            details={
                "resumed": True,
                "category": failure.category_name,
                "cursor": failure.cursor,
            },
        )
        self._spawn(track)
        return track

    async def accept_partial_results(self, document_id: str) -> AnalysisTrack:
        """
        Give up on the remaining categories and elaborate what exists.
        """
        track = self._failed_track(document_id)

        track.accept_partial()
        logger.info(
            "Accepted partial results for %s (%d findings)",
            document_id,
            len(track.findings),
        )
        await self._emit(
            track,
            ProgressEventType.DEEP_ANALYSIS_STARTED,
            details={"partial": True},
        )
        self._spawn(track)
        return track

    async def abandon(self, document_id: str) -> None:
        """
        Drop a Track before any classification result was recorded.

        An in-flight call is not aborted; its result is discarded.
        """
        track = self.get_track(document_id)

        if track.has_classification_result:
            raise InvalidTrackStateError(
                f"Analysis for '{document_id}' already recorded results "
                "and can no longer be abandoned"
            )

        del self._tracks[document_id]
        self._tasks.pop(document_id, None)
        if self._foreground_id == document_id:
            self._foreground_id = None

        logger.info("Abandoned analysis of %s", document_id)

    async def aclose(self) -> None:
        for task in list(self._running):
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        await self._broadcaster.close()

    # ------------------------------------------------------------------
    # Track driver
    # ------------------------------------------------------------------

    def _spawn(self, track: AnalysisTrack) -> None:
        task = asyncio.create_task(
            self._drive(track),
            name=f"track:{track.document_id}",
        )
        self._tasks[track.document_id] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _drive(self, track: AnalysisTrack) -> None:
        try:
            if track.phase == TrackPhase.SEQUENCING:
                if not await self._sequence(track):
                    return

            if self._abandoned(track):
                return

            if track.phase == TrackPhase.DEEP_ANALYSIS:
                await self._deep_analyse(track)
                await self._finish(track)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Track %s crashed", track.document_id)
            if self._abandoned(track):
                return
            track.fail(
                TrackFailure(
                    kind="fatal",
                    message=str(exc),
                    cursor=track.category_cursor,
                    category_name="",
                    resumable=False,
                )
            )
            await self._persist(track)
            await self._emit(
                track,
                ProgressEventType.TRACK_FAILED,
                details={"kind": "fatal", "message": str(exc)},
            )

    async def _sequence(self, track: AnalysisTrack) -> bool:
        catalog = self._sequencer.catalog

        while track.category_cursor < len(catalog):
            cursor = track.category_cursor
            category = catalog[cursor]

            await self._emit(
                track,
                ProgressEventType.CATEGORY_STARTED,
                details={
                    "category": category.name,
                    "index": cursor + 1,
                    "total": len(catalog),
                },
            )

            try:
                result = await self._sequencer.run_next_category(
                    track.document_text,
                    track.known_texts(),
                    cursor,
                    party=track.party,
                    stats=track.stats,
                    on_retry=self._retry_hook(track),
                )
            except SequencingConfigurationError as exc:
                if self._abandoned(track):
                    return False
                await self._halt(track, exc, kind="configuration")
                return False
            except SequencingError as exc:
                if self._abandoned(track):
                    return False
                if self._continue_on_category_failure:
                    track.record_category_failure(
                        category_name=exc.category_name,
                        cursor=exc.cursor,
                    )
                    await self._emit(
                        track,
                        ProgressEventType.CATEGORY_FAILED,
                        details={
                            "category": exc.category_name,
                            "message": str(exc),
                            "continued": True,
                        },
                    )
                    await self._persist(track)
                    continue
                kind = "transient" if isinstance(exc.cause, TransientError) else "fatal"
                await self._halt(track, exc, kind=kind)
                return False

            if self._abandoned(track):
                logger.info(
                    "Discarding %s result for abandoned %s",
                    category.name,
                    track.document_id,
                )
                return False

            track.apply_category_result(result)
            await self._emit(
                track,
                ProgressEventType.CATEGORY_COMPLETED,
                findings_delta=result.new_findings,
                details={
                    "category": result.category_name,
                    "summary": result.summary,
                    "has_more": result.has_more,
                },
            )
            await self._persist(track)

            if not result.has_more:
                break

        track.begin_deep_analysis()
        await self._emit(
            track,
            ProgressEventType.DEEP_ANALYSIS_STARTED,
            details={"total": track.deep_analysis_total},
        )
        return True

    async def _deep_analyse(self, track: AnalysisTrack) -> None:
        async for update in self._stepper.run(
            list(track.findings),
            stats=track.stats,
            on_retry=self._retry_hook(track),
        ):
            track.apply_step_update(update)
            await self._emit(
                track,
                ProgressEventType.FINDING_UPDATED,
                findings_delta=[update.finding],
                details={
                    "kind": update.kind,
                    "current": update.index,
                    "total": update.total,
                },
            )

            if update.configuration_error:
                await self._emit(
                    track,
                    ProgressEventType.CONFIGURATION_WARNING,
                    details={
                        "message": CONFIGURATION_FIX_IT,
                        "error": update.error,
                        "finding_id": update.finding.id,
                    },
                )

            if update.terminal and update.index % self._snapshot_every == 0:
                await self._persist(track)

    async def _finish(self, track: AnalysisTrack) -> None:
        track.complete()
        persisted = await self._persist(track)

        if persisted and track.role is TrackRole.BACKGROUND:
            await self._set_role(track, TrackRole.NONE)

        logger.info(
            "Analysis of %s complete: %d findings, %d calls in %.1fs",
            track.document_id,
            len(track.findings),
            track.stats.calls,
            track.stats.total_seconds,
        )
        await self._emit(
            track,
            ProgressEventType.TRACK_COMPLETED,
            details={
                "total_risks": len(track.findings),
                "summary": track.summary,
            },
        )

    async def _halt(
        self,
        track: AnalysisTrack,
        exc: SequencingError,
        *,
        kind: str,
    ) -> None:
        failure = TrackFailure(
            kind=kind,
            message=str(exc),
            cursor=exc.cursor,
            category_name=exc.category_name,
            resumable=exc.resumable,
        )
        track.fail(failure)

        logger.error(
            "Analysis of %s halted at category %s (%s): %s",
            track.document_id,
            exc.category_name,
            kind,
            exc,
        )

        details: Dict[str, Any] = failure.model_dump()
        if kind == "configuration":
            details["fix"] = CONFIGURATION_FIX_IT

        await self._emit(
            track,
            ProgressEventType.CATEGORY_FAILED,
            details={"category": exc.category_name, "message": str(exc)},
        )
        await self._persist(track)
        await self._emit(track, ProgressEventType.TRACK_FAILED, details=details)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def _promote(self, track: AnalysisTrack) -> None:
        previous_id = self._foreground_id
        self._foreground_id = track.document_id

        if previous_id is not None and previous_id != track.document_id:
            previous = self._tracks.get(previous_id)
            if previous is not None:
                await self._set_role(
                    previous,
                    TrackRole.NONE
                    if previous.finished and not self.is_running(previous_id)
                    else TrackRole.BACKGROUND,
                )

        await self._set_role(track, TrackRole.FOREGROUND)

    async def _set_role(self, track: AnalysisTrack, role: TrackRole) -> None:
        if track.role is role:
            return

        previous = track.role
        track.role = role
        await self._emit(
            track,
            ProgressEventType.ROLE_CHANGED,
            details={"previous_role": previous.value},
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _failed_track(self, document_id: str) -> AnalysisTrack:
        track = self.get_track(document_id)
        if track.phase != TrackPhase.FAILED or self.is_running(document_id):
            raise InvalidTrackStateError(
                f"Analysis for '{document_id}' has not failed "
                f"(phase={track.phase.value})"
            )
        return track

    def _abandoned(self, track: AnalysisTrack) -> bool:
        return self._tracks.get(track.document_id) is not track

    def _retry_hook(self, track: AnalysisTrack):
        async def on_retry(state: RetryState) -> None:
            track.set_retrying(state)
            await self._emit(
                track,
                ProgressEventType.RETRYING,
                details=state.model_dump(),
            )

        return on_retry

    async def _persist(self, track: AnalysisTrack) -> bool:
        try:
            await self._store.persist(track.snapshot())
        except Exception as exc:
            logger.exception("Snapshot of %s failed", track.document_id)
            await self._emit(
                track,
                ProgressEventType.SNAPSHOT_FAILED,
                details={"message": str(exc)},
            )
            return False
        return True

    async def _emit(
        self,
        track: AnalysisTrack,
        event_type: ProgressEventType,
        *,
        findings_delta: Optional[Sequence[Finding]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._abandoned(track):
            return

        await self._broadcaster.emit(
            ProgressEvent(
                event_type=event_type,
                document_id=track.document_id,
                role=track.role,
                phase=track.phase,
                category_cursor=track.category_cursor,
                deep_analysis_cursor=track.deep_analysis_cursor,
                deep_analysis_total=track.deep_analysis_total,
                findings_delta=list(findings_delta or []),
                details=details,
            )
        )
