"""
Finding schemas.

Defines the structures exchanged with the classification/elaboration
collaborator and the canonical Finding published on every progress event.

Findings are frozen. Updates are always published as copies
(``model_copy(update=...)``) so no two Tracks ever share a mutable
finding list.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """
    Severity level of a finding.

    Ordering is strict: high sorts before medium, medium before low.
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.HIGH: 0,
    Severity.MEDIUM: 1,
    Severity.LOW: 2,
}


Level = Literal["low", "medium", "high"]


# ---------------------------------------------------------------------------
# Collaborator output (structured LLM response formats)
# ---------------------------------------------------------------------------


class RawFinding(BaseModel):
    """
    A single risk as returned by the classification collaborator.

    All fields are required so the model can be used as a strict
    structured-output schema.
    """

    title: str = Field(..., description="Short title of the risk")
    severity: Severity = Field(..., description="low, medium or high")
    source_span: str = Field(
        ...,
        description="Exact, word-for-word quote of the problematic text",
    )
    risk_type: str = Field(..., description="Kind of risk (e.g. Liability)")
    location: str = Field(
        ...,
        description="Section, article or clause where the text was found",
    )


class ClassificationResult(BaseModel):
    """Output of ``classify(document, category, already_known)``."""

    findings: List[RawFinding] = Field(default_factory=list)
    summary: str = ""


class Recommendation(BaseModel):
    action: str
    priority: Level
    effort: Level

    model_config = ConfigDict(frozen=True)


class ElaborationOutput(BaseModel):
    """Structured response format for a single elaboration call."""

    business_impact: str
    recommendations: List[Recommendation]
    suggested_replacement_text: str


class ElaborationRequest(BaseModel):
    """Input of ``elaborate(finding)``."""

    title: str
    description: str
    source_span: str

    model_config = ConfigDict(frozen=True)


class Elaboration(BaseModel):
    """
    Detailed, actionable elaboration attached to a Finding.
    """

    business_impact: str
    recommendations: List[Recommendation] = Field(default_factory=list)
    suggested_replacement_text: Optional[str] = None

    thinking: Optional[str] = Field(
        None,
        description="Model reasoning extracted from <think> tags, if any",
    )

    fallback: bool = Field(
        False,
        description="True when elaboration failed and a generic body was used",
    )

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Canonical Finding (PUBLIC, FROZEN)
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """
    A candidate contract risk.

    Created by the Category Sequencer, elaborated by the Deep-Analysis
    Stepper, never deleted except on a whole-document reset.
    """

    id: str = Field(..., description="Unique identifier assigned at creation")
    title: str
    severity: Severity
    source_span: str = Field(
        ...,
        description="Verbatim quoted text from the document",
    )
    category: str = Field(..., description="Name of the originating category")
    location: Optional[str] = Field(
        None,
        description="Free-text section reference",
    )
    risk_type: Optional[str] = None
    description: str = ""

    elaboration: Optional[Elaboration] = None

    analyzing: bool = False
    elaboration_complete: bool = False

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def elaboration_request(self) -> ElaborationRequest:
        return ElaborationRequest(
            title=self.title,
            description=self.description,
            source_span=self.source_span,
        )
