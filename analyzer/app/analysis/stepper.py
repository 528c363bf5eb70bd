"""
Deep-Analysis Stepper.

Elaborates findings one at a time, yielding an update before and after
each item. Every item reaches a terminal state: either a real
elaboration or a fixed fallback body that asks for manual review.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Literal,
    Optional,
    Sequence,
)

from pydantic import BaseModel, ConfigDict

from analyzer.app.analysis.retry import (
    ELABORATION_TIMEOUT_SECONDS,
    RetryController,
    RetryState,
    is_timeout,
)
from analyzer.app.core.exceptions import ConfigurationError
from analyzer.app.engine.protocols import RiskElaborator
from analyzer.app.schemas.findings import Elaboration, Finding, Recommendation
from analyzer.app.schemas.tracks import CallStats

logger = logging.getLogger("analyzer.stepper")

FALLBACK_BUSINESS_IMPACT = "Analysis failed - please review manually"
FALLBACK_ACTION = "Review this risk manually with legal counsel"
TIMEOUT_BUSINESS_IMPACT = "Analysis timed out - please review manually"
TIMEOUT_ACTION = (
    "This analysis timed out. Try again or review manually with legal counsel"
)
FALLBACK_REPLACEMENT_TEXT = (
    "Please consult with legal counsel for appropriate replacement text."
)


def fallback_elaboration(*, timed_out: bool = False) -> Elaboration:
    return Elaboration(
        business_impact=(
            TIMEOUT_BUSINESS_IMPACT if timed_out else FALLBACK_BUSINESS_IMPACT
        ),
        recommendations=[
            Recommendation(
                action=TIMEOUT_ACTION if timed_out else FALLBACK_ACTION,
                priority="medium",
                effort="medium",
            )
        ],
        suggested_replacement_text=FALLBACK_REPLACEMENT_TEXT,
        fallback=True,
    )


class StepUpdate(BaseModel):
    """
    A single deep-analysis progress update.

    ``index`` is the 1-based position of ``finding`` in the list being
    elaborated; it never decreases within a run.
    """

    finding: Finding
    index: int
    total: int
    kind: Literal["started", "completed", "fallback"]
    configuration_error: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def terminal(self) -> bool:
        return self.kind != "started"


class DeepAnalysisStepper:
    def __init__(
        self,
        *,
        elaborator: RiskElaborator,
        retry: RetryController,
        timeout_seconds: float = ELABORATION_TIMEOUT_SECONDS,
        pacing_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._elaborator = elaborator
        self._retry = retry
        self._timeout = timeout_seconds
        self._pacing = pacing_seconds
        self._sleep = sleep

    async def run(
        self,
        findings: Sequence[Finding],
        *,
        stats: Optional[CallStats] = None,
        on_retry: Optional[Callable[[RetryState], Awaitable[None]]] = None,
    ) -> AsyncIterator[StepUpdate]:
        """
        Lazily elaborate every finding that is not yet complete.

        Already-complete findings are skipped, which makes a second run
        over the same list resume where the first one stopped.
        """
        total = len(findings)
        start = next(
            (i for i, f in enumerate(findings) if not f.elaboration_complete),
            total,
        )

        first = True
        for position in range(start, total):
            finding = findings[position]
            if finding.elaboration_complete:
                continue

            if not first and self._pacing > 0:
                await self._sleep(self._pacing)
            first = False

            index = position + 1
            analyzing = finding.model_copy(update={"analyzing": True})
            yield StepUpdate(
                finding=analyzing,
                index=index,
                total=total,
                kind="started",
            )

            yield await self._elaborate(
                analyzing,
                index=index,
                total=total,
                stats=stats,
                on_retry=on_retry,
            )

    async def _elaborate(
        self,
        finding: Finding,
        *,
        index: int,
        total: int,
        stats: Optional[CallStats],
        on_retry: Optional[Callable[[RetryState], Awaitable[None]]],
    ) -> StepUpdate:
        logger.info("Elaborating finding %d/%d: %s", index, total, finding.title)

        try:
            elaboration = await self._retry.with_retry(
                lambda: self._elaborator.elaborate(finding.elaboration_request()),
                label=f"elaborate[{finding.id}]",
                timeout_seconds=self._timeout,
                stats=stats,
                stats_kind="elaboration",
                on_retry=on_retry,
            )
        except ConfigurationError as exc:
            logger.error("Elaboration of %s skipped: %s", finding.id, exc)
            fallback = fallback_elaboration()
            return StepUpdate(
                finding=self._complete(
                    finding,
                    fallback,
                    description=fallback.business_impact,
                ),
                index=index,
                total=total,
                kind="fallback",
                configuration_error=True,
                error=str(exc),
            )
        except Exception as exc:
            logger.error("Elaboration of %s failed: %s", finding.id, exc)
            fallback = fallback_elaboration(timed_out=is_timeout(exc))
            return StepUpdate(
                finding=self._complete(
                    finding,
                    fallback,
                    description=fallback.business_impact,
                ),
                index=index,
                total=total,
                kind="fallback",
                error=str(exc),
            )

        return StepUpdate(
            finding=self._complete(
                finding,
                elaboration,
                description=elaboration.business_impact,
            ),
            index=index,
            total=total,
            kind="completed",
        )

    @staticmethod
    def _complete(
        finding: Finding,
        elaboration: Elaboration,
        *,
        description: Optional[str] = None,
    ) -> Finding:
        update = {
            "elaboration": elaboration,
            "analyzing": False,
            "elaboration_complete": True,
        }
        if description is not None:
            update["description"] = description
        return finding.model_copy(update=update)
