"""
Category Sequencer.

Advances a document through the category catalog one category per
call. The sequencer never recurses into the next category: the caller
publishes every step result before asking for the next one.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from analyzer.app.analysis.catalog import CategoryCatalog
from analyzer.app.analysis.retry import RetryController, RetryState
from analyzer.app.analysis.similarity import is_near_duplicate
from analyzer.app.core.exceptions import (
    ConfigurationError,
    SequencingConfigurationError,
    SequencingError,
)
from analyzer.app.engine.protocols import RiskClassifier
from analyzer.app.schemas.categories import Category
from analyzer.app.schemas.findings import Finding, RawFinding
from analyzer.app.schemas.tracks import CallStats, Party

logger = logging.getLogger("analyzer.sequencer")


class CategoryStepResult(BaseModel):
    """
    Outcome of analysing a single category.
    """

    new_findings: List[Finding] = Field(default_factory=list)
    category_name: Optional[str] = None
    has_more: bool
    next_cursor: int = Field(..., ge=0)
    summary: str = ""

    model_config = ConfigDict(frozen=True)


def pending_description(raw: RawFinding) -> str:
    return (
        f"{raw.risk_type} risk identified in {raw.location}. "
        "Detailed analysis pending..."
    )


class CategorySequencer:
    def __init__(
        self,
        *,
        classifier: RiskClassifier,
        retry: RetryController,
        catalog: CategoryCatalog,
    ) -> None:
        self._classifier = classifier
        self._retry = retry
        self._catalog = catalog

    @property
    def catalog(self) -> CategoryCatalog:
        return self._catalog

    async def run_next_category(
        self,
        document_text: str,
        already_known_texts: Sequence[str],
        cursor: int,
        *,
        party: Optional[Party] = None,
        stats: Optional[CallStats] = None,
        on_retry: Optional[Callable[[RetryState], Awaitable[None]]] = None,
    ) -> CategoryStepResult:
        """
        Classify the category at ``cursor`` and return its new findings.

        Raises:
            SequencingConfigurationError: credentials are missing or rejected.
            SequencingError: the category failed after retries (resumable).
        """
        if cursor >= len(self._catalog):
            return CategoryStepResult(
                has_more=False,
                next_cursor=cursor,
            )

        category = self._catalog[cursor]
        known = list(already_known_texts)

        logger.info(
            "Analyzing category %d/%d: %s",
            cursor + 1,
            len(self._catalog),
            category.name,
        )

        try:
            result = await self._retry.with_retry(
                lambda: self._classifier.classify(
                    document_text=document_text,
                    category=category,
                    already_known=known,
                    party=party,
                ),
                label=f"classify[{category.name}]",
                stats=stats,
                stats_kind="classification",
                on_retry=on_retry,
            )
        except ConfigurationError as exc:
            raise SequencingConfigurationError(
                f"{category.name}: {exc}",
                document_text=document_text,
                already_known_texts=known,
                cursor=cursor,
                category_name=category.name,
                cause=exc,
            ) from exc
        except Exception as exc:
            logger.error("Category %s failed: %s", category.name, exc)
            raise SequencingError(
                f"{category.name}: {exc}",
                document_text=document_text,
                already_known_texts=known,
                cursor=cursor,
                category_name=category.name,
                cause=exc,
            ) from exc

        accepted = self._deduplicate(result.findings, known)
        new_findings = [
            self._to_finding(raw, category=category, cursor=cursor)
            for raw in accepted
        ]

        logger.info(
            "Category %s: %d new findings (%d duplicates dropped)",
            category.name,
            len(new_findings),
            len(result.findings) - len(new_findings),
        )

        next_cursor = cursor + 1
        return CategoryStepResult(
            new_findings=new_findings,
            category_name=category.name,
            has_more=next_cursor < len(self._catalog),
            next_cursor=next_cursor,
            summary=result.summary,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _deduplicate(
        candidates: Sequence[RawFinding],
        known: Sequence[str],
    ) -> List[RawFinding]:
        # Compare against known texts AND earlier survivors of this batch
        seen = list(known)
        accepted: List[RawFinding] = []

        for raw in candidates:
            if is_near_duplicate(raw.source_span, seen):
                continue
            accepted.append(raw)
            seen.append(raw.source_span)

        return accepted

    @staticmethod
    def _to_finding(
        raw: RawFinding,
        *,
        category: Category,
        cursor: int,
    ) -> Finding:
        return Finding(
            id=f"{category.slug}-{cursor}-{uuid4().hex[:8]}",
            title=raw.title,
            severity=raw.severity,
            source_span=raw.source_span,
            category=category.name,
            location=raw.location,
            risk_type=raw.risk_type,
            description=pending_description(raw),
            analyzing=False,
            elaboration_complete=False,
        )
