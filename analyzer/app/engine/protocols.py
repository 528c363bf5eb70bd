from typing import Optional, Protocol, Sequence

from analyzer.app.schemas.categories import Category
from analyzer.app.schemas.findings import (
    ClassificationResult,
    Elaboration,
    ElaborationRequest,
)
from analyzer.app.schemas.parties import PartyIdentification
from analyzer.app.schemas.tracks import Party


class RiskClassifier(Protocol):
    """
    Classification collaborator.

    Returns the risks found in ``document_text`` for a single category,
    told which texts are already known so it can avoid repeating them.
    """

    async def classify(
        self,
        *,
        document_text: str,
        category: Category,
        already_known: Sequence[str],
        party: Optional[Party] = None,
    ) -> ClassificationResult:
        ...


class RiskElaborator(Protocol):
    """
    Elaboration collaborator.

    Produces business impact, recommendations and replacement text for a
    single finding.
    """

    async def elaborate(self, request: ElaborationRequest) -> Elaboration:
        ...


class PartyIdentifier(Protocol):
    """
    Party identification collaborator.

    Names every party in ``document_text`` with its role.
    """

    async def identify_parties(self, document_text: str) -> PartyIdentification:
        ...
