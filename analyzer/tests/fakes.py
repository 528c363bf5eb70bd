"""
Scripted collaborators for analyzer testing.

These fakes simulate the classification/elaboration provider and the
snapshot store without invoking any external services.

IMPORTANT:
- Deterministic
- CI-safe
- Scripts are consumed in call order
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence, Union

from analyzer.app.analysis.retry import RetryController
from analyzer.app.analysis.sequencer import CategorySequencer
from analyzer.app.analysis.stepper import DeepAnalysisStepper
from analyzer.app.analysis.catalog import CategoryCatalog, default_catalog
from analyzer.app.persistence.store import InMemorySnapshotStore
from analyzer.app.schemas.categories import Category
from analyzer.app.schemas.findings import (
    ClassificationResult,
    Elaboration,
    ElaborationRequest,
    RawFinding,
    Recommendation,
    Severity,
)
from analyzer.app.schemas.parties import PartyIdentification
from analyzer.app.schemas.tracks import Party, TrackSnapshot
from analyzer.app.tracks.reconciler import TrackReconciler

ScriptStep = Union[ClassificationResult, BaseException]


def raw(
    source_span: str,
    *,
    title: Optional[str] = None,
    severity: Severity = Severity.MEDIUM,
    risk_type: str = "Liability",
    location: str = "Section 1",
) -> RawFinding:
    return RawFinding(
        title=title or source_span[:40],
        severity=severity,
        source_span=source_span,
        risk_type=risk_type,
        location=location,
    )


def result(*findings: RawFinding, summary: str = "") -> ClassificationResult:
    return ClassificationResult(findings=list(findings), summary=summary)


class SleepRecorder:
    """
    Zero-delay replacement for ``asyncio.sleep`` that records every delay.
    """

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class ScriptedClassifier:
    """
    Returns scripted results per category name.

    Each category has a queue of steps; an exception step is raised.
    Categories without a script return an empty result.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, Sequence[ScriptStep]]] = None,
        *,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self._scripts: Dict[str, List[ScriptStep]] = {
            name: list(steps) for name, steps in (scripts or {}).items()
        }
        self._gate = gate

        # Observability for tests
        self.calls: List[str] = []
        self.known_by_call: List[List[str]] = []
        self.parties: List[Optional[Party]] = []

    async def classify(
        self,
        *,
        document_text: str,
        category: Category,
        already_known: Sequence[str],
        party: Optional[Party] = None,
    ) -> ClassificationResult:
        self.calls.append(category.name)
        self.known_by_call.append(list(already_known))
        self.parties.append(party)

        if self._gate is not None:
            await self._gate.wait()

        steps = self._scripts.get(category.name)
        if not steps:
            return result()

        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        return step


class ScriptedElaborator:
    """
    Elaborates every finding successfully unless its title is scripted
    to fail with an exception.
    """

    def __init__(
        self,
        failures: Optional[Dict[str, BaseException]] = None,
        *,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self._failures = dict(failures or {})
        self._gate = gate
        self.calls: List[ElaborationRequest] = []

    async def elaborate(self, request: ElaborationRequest) -> Elaboration:
        self.calls.append(request)

        if self._gate is not None:
            await self._gate.wait()

        failure = self._failures.get(request.title)
        if failure is not None:
            raise failure

        return Elaboration(
            business_impact=f"Impact of {request.title}",
            recommendations=[
                Recommendation(
                    action=f"Renegotiate {request.title}",
                    priority="high",
                    effort="low",
                )
            ],
            suggested_replacement_text="Revised clause.",
        )


class ScriptedPartyIdentifier:
    """
    Answers party identification from a script consumed in call order;
    an exception step is raised. The last step repeats.
    """

    def __init__(
        self,
        *steps: Union[PartyIdentification, BaseException],
    ) -> None:
        self._steps = list(steps) or [PartyIdentification()]
        self.calls: List[str] = []

    async def identify_parties(self, document_text: str) -> PartyIdentification:
        self.calls.append(document_text)

        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if isinstance(step, BaseException):
            raise step
        return step


class RecordingStore(InMemorySnapshotStore):
    """
    In-memory store that keeps every persisted snapshot, in order.
    """

    def __init__(self) -> None:
        super().__init__()
        self.history: List[TrackSnapshot] = []

    async def persist(self, snapshot: TrackSnapshot) -> None:
        await super().persist(snapshot)
        self.history.append(snapshot)


class FailingStore(RecordingStore):
    """
    Store whose writes always fail.
    """

    async def persist(self, snapshot: TrackSnapshot) -> None:
        raise OSError("disk full")


def two_category_catalog() -> CategoryCatalog:
    catalog = default_catalog()
    return CategoryCatalog([catalog[0], catalog[1]])


def build_reconciler(
    *,
    classifier: ScriptedClassifier,
    elaborator: Optional[ScriptedElaborator] = None,
    store: Optional[InMemorySnapshotStore] = None,
    catalog: Optional[CategoryCatalog] = None,
    sleep: Optional[SleepRecorder] = None,
    snapshot_every: int = 3,
    continue_on_category_failure: bool = False,
) -> TrackReconciler:
    sleep = sleep or SleepRecorder()
    retry = RetryController(sleep=sleep)

    return TrackReconciler(
        sequencer=CategorySequencer(
            classifier=classifier,
            retry=retry,
            catalog=catalog or default_catalog(),
        ),
        stepper=DeepAnalysisStepper(
            elaborator=elaborator or ScriptedElaborator(),
            retry=retry,
            pacing_seconds=0,
            sleep=sleep,
        ),
        store=store if store is not None else RecordingStore(),
        snapshot_every=snapshot_every,
        continue_on_category_failure=continue_on_category_failure,
    )
