import pytest

from analyzer.app.analysis.parties import (
    DEFAULT_ANALYSIS,
    FALLBACK_ANALYSIS,
    UNIDENTIFIED_DESCRIPTION,
    identify_parties,
)
from analyzer.app.analysis.retry import RetryController
from analyzer.app.core.exceptions import (
    ConfigurationError,
    FatalError,
    RetryExhaustedError,
    TransientError,
)
from analyzer.app.schemas.parties import IdentifiedParty, PartyIdentification
from analyzer.tests.fakes import ScriptedPartyIdentifier, SleepRecorder

pytestmark = pytest.mark.anyio

CONTRACT = "This Agreement is made between Acme Corp (the Supplier) and Jane Doe."


def _retry(sleep=None) -> RetryController:
    return RetryController(sleep=sleep or SleepRecorder())


async def test_identified_parties_receive_missing_ids():
    identifier = ScriptedPartyIdentifier(
        PartyIdentification(
            parties=[
                IdentifiedParty(
                    name="Acme Corp",
                    description="Supplier",
                    type="company",
                    aliases=["the Supplier"],
                ),
                IdentifiedParty(id="customer", name="Jane Doe", type="individual"),
            ],
            analysis="A supply agreement between a company and an individual.",
        )
    )

    outcome = await identify_parties(identifier, _retry(), CONTRACT)

    assert identifier.calls == [CONTRACT]
    assert outcome.fallback is False
    assert [p.id for p in outcome.parties] == ["party1", "customer"]
    assert outcome.parties[0].aliases == ["the Supplier"]
    assert outcome.parties[0].as_party().name == "Acme Corp"
    assert outcome.analysis.startswith("A supply agreement")
    assert outcome.stats.calls == 1


async def test_empty_answer_falls_back_to_generic_parties():
    outcome = await identify_parties(
        ScriptedPartyIdentifier(PartyIdentification()), _retry(), CONTRACT
    )

    assert outcome.fallback is True
    assert [p.name for p in outcome.parties] == ["First Party", "Second Party"]
    assert [p.id for p in outcome.parties] == ["party1", "party2"]
    assert outcome.analysis == DEFAULT_ANALYSIS


async def test_unreadable_answer_asks_for_manual_review():
    identifier = ScriptedPartyIdentifier(FatalError("no structured output"))

    outcome = await identify_parties(identifier, _retry(), CONTRACT)

    assert outcome.fallback is True
    assert outcome.analysis == FALLBACK_ANALYSIS
    assert {p.description for p in outcome.parties} == {UNIDENTIFIED_DESCRIPTION}
    assert len(identifier.calls) == 1


async def test_configuration_failure_is_not_retried():
    identifier = ScriptedPartyIdentifier(ConfigurationError("missing key"))

    with pytest.raises(ConfigurationError):
        await identify_parties(identifier, _retry(), CONTRACT)

    assert len(identifier.calls) == 1


async def test_transient_failure_is_retried_before_answering():
    sleep = SleepRecorder()
    identifier = ScriptedPartyIdentifier(
        TransientError("rate limited"),
        PartyIdentification(parties=[IdentifiedParty(name="Acme Corp")]),
    )

    outcome = await identify_parties(identifier, _retry(sleep), CONTRACT)

    assert len(identifier.calls) == 2
    assert sleep.delays == [2.0]
    assert [p.name for p in outcome.parties] == ["Acme Corp"]


async def test_persistent_transient_failure_is_surfaced():
    identifier = ScriptedPartyIdentifier(TransientError("service unavailable"))

    with pytest.raises(RetryExhaustedError):
        await identify_parties(identifier, _retry(), CONTRACT)

    assert len(identifier.calls) == 4
