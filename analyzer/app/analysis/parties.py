"""
Party identification.

Runs one identification call through the Retry Controller and
normalises its output: every party gets an id, and an empty or
unreadable answer is replaced by two generic parties the user can
rename.
"""

from __future__ import annotations

import logging
from typing import List

from analyzer.app.analysis.retry import RetryController
from analyzer.app.core.exceptions import FatalError
from analyzer.app.engine.protocols import PartyIdentifier
from analyzer.app.schemas.parties import (
    IdentifiedParty,
    PartyIdentification,
    PartyIdentificationResult,
)
from analyzer.app.schemas.tracks import CallStats

logger = logging.getLogger("analyzer.parties")

UNIDENTIFIED_DESCRIPTION = (
    "Unable to automatically identify - please review contract manually"
)
FALLBACK_ANALYSIS = (
    "Automatic party identification failed. Please review the contract "
    "manually to identify the parties."
)
DEFAULT_ANALYSIS = "Parties identified successfully"


def generic_parties(
    first: str = "Primary party in the contract",
    second: str = "Secondary party in the contract",
) -> List[IdentifiedParty]:
    return [
        IdentifiedParty(id="party1", name="First Party", description=first),
        IdentifiedParty(id="party2", name="Second Party", description=second),
    ]


async def identify_parties(
    identifier: PartyIdentifier,
    retry: RetryController,
    document_text: str,
) -> PartyIdentificationResult:
    """
    Identify the parties of ``document_text``.

    Raises:
        ConfigurationError: credentials are missing or rejected.
        RetryExhaustedError: the call kept failing transiently.
    """
    stats = CallStats()

    try:
        identification: PartyIdentification = await retry.with_retry(
            lambda: identifier.identify_parties(document_text),
            label="identify_parties",
            stats=stats,
        )
    except FatalError as exc:
        logger.warning("Party identification unreadable: %s", exc)
        return PartyIdentificationResult(
            parties=generic_parties(
                UNIDENTIFIED_DESCRIPTION, UNIDENTIFIED_DESCRIPTION
            ),
            analysis=FALLBACK_ANALYSIS,
            fallback=True,
            stats=stats,
        )

    if not identification.parties:
        return PartyIdentificationResult(
            parties=generic_parties(),
            analysis=identification.analysis or DEFAULT_ANALYSIS,
            fallback=True,
            stats=stats,
        )

    parties = [
        party if party.id else party.model_copy(update={"id": f"party{i}"})
        for i, party in enumerate(identification.parties, start=1)
    ]

    logger.info("Identified %d parties", len(parties))
    return PartyIdentificationResult(
        parties=parties,
        analysis=identification.analysis or DEFAULT_ANALYSIS,
        stats=stats,
    )
