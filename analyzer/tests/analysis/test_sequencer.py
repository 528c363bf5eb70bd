import pytest

from analyzer.app.analysis.catalog import default_catalog
from analyzer.app.analysis.retry import RetryController
from analyzer.app.analysis.sequencer import CategorySequencer
from analyzer.app.core.exceptions import (
    ConfigurationError,
    RetryExhaustedError,
    SequencingConfigurationError,
    SequencingError,
    TransientError,
)
from analyzer.app.schemas.findings import Severity
from analyzer.app.schemas.tracks import CallStats, Party
from analyzer.tests.fakes import (
    ScriptedClassifier,
    SleepRecorder,
    raw,
    result,
    two_category_catalog,
)

pytestmark = pytest.mark.anyio

INDEMNITY = "The Supplier shall indemnify the Customer against all losses whatsoever."
INDEMNITY_VARIANT = "The Supplier shall indemnify the Customer against all losses whatever."
AUTO_RENEWAL = "This Agreement renews automatically for successive five year terms."

LIABILITY = "LIABILITY AND INDEMNIFICATION"
TERMINATION = "TERMINATION AND RENEWAL"


def _sequencer(classifier, catalog=None, sleep=None):
    return CategorySequencer(
        classifier=classifier,
        retry=RetryController(sleep=sleep or SleepRecorder()),
        catalog=catalog or two_category_catalog(),
    )


async def test_duplicates_are_dropped_within_and_across_categories():
    classifier = ScriptedClassifier(
        {
            LIABILITY: [
                result(
                    raw(INDEMNITY, severity=Severity.HIGH),
                    raw(INDEMNITY_VARIANT, severity=Severity.HIGH),
                    summary="One-sided indemnity.",
                )
            ],
            TERMINATION: [
                result(
                    raw(INDEMNITY_VARIANT, location="Section 9"),
                    raw(AUTO_RENEWAL, risk_type="Renewal", location="Section 12"),
                )
            ],
        }
    )
    sequencer = _sequencer(classifier)

    first = await sequencer.run_next_category("contract", [], 0)

    assert first.category_name == LIABILITY
    assert [f.source_span for f in first.new_findings] == [INDEMNITY]
    assert first.has_more is True
    assert first.next_cursor == 1
    assert first.summary == "One-sided indemnity."

    known = [f.source_span for f in first.new_findings]
    second = await sequencer.run_next_category("contract", known, first.next_cursor)

    assert second.category_name == TERMINATION
    assert [f.source_span for f in second.new_findings] == [AUTO_RENEWAL]
    assert second.has_more is False
    assert second.next_cursor == 2

    total = first.new_findings + second.new_findings
    assert len(total) == 2


async def test_externally_known_texts_are_excluded():
    classifier = ScriptedClassifier({LIABILITY: [result(raw(INDEMNITY))]})
    sequencer = _sequencer(classifier)

    step = await sequencer.run_next_category("contract", [INDEMNITY_VARIANT], 0)

    assert step.new_findings == []
    assert classifier.known_by_call == [[INDEMNITY_VARIANT]]


async def test_cursor_past_catalog_makes_no_call():
    classifier = ScriptedClassifier()
    sequencer = _sequencer(classifier)

    step = await sequencer.run_next_category("contract", [], 2)

    assert step.has_more is False
    assert step.new_findings == []
    assert step.category_name is None
    assert classifier.calls == []


async def test_findings_are_created_pending_with_unique_ids():
    classifier = ScriptedClassifier(
        {
            LIABILITY: [
                result(
                    raw(INDEMNITY, risk_type="Indemnification", location="Section 8"),
                    raw(AUTO_RENEWAL, location="Section 12"),
                )
            ]
        }
    )
    sequencer = _sequencer(classifier)

    step = await sequencer.run_next_category("contract", [], 0)
    first, second = step.new_findings

    assert first.id != second.id
    assert first.id.startswith("liability-and-indemnification-0-")
    assert first.category == LIABILITY
    assert first.description == (
        "Indemnification risk identified in Section 8. Detailed analysis pending..."
    )
    assert first.analyzing is False
    assert first.elaboration_complete is False
    assert first.elaboration is None


async def test_configuration_error_aborts_without_retry():
    classifier = ScriptedClassifier(
        {LIABILITY: [ConfigurationError("UPSTAGE_API_KEY environment variable is required")]}
    )
    sleep = SleepRecorder()
    sequencer = _sequencer(classifier, sleep=sleep)

    with pytest.raises(SequencingConfigurationError) as excinfo:
        await sequencer.run_next_category("contract", ["known"], 0)

    error = excinfo.value
    assert error.resumable is False
    assert error.cursor == 0
    assert error.category_name == LIABILITY
    assert classifier.calls == [LIABILITY]
    assert sleep.delays == []


async def test_exhausted_transient_failure_carries_resume_context():
    classifier = ScriptedClassifier({TERMINATION: [TransientError("502 Bad Gateway")]})
    sequencer = _sequencer(classifier)

    with pytest.raises(SequencingError) as excinfo:
        await sequencer.run_next_category("the contract", [INDEMNITY], 1)

    error = excinfo.value
    assert error.resumable is True
    assert error.document_text == "the contract"
    assert error.already_known_texts == [INDEMNITY]
    assert error.cursor == 1
    assert error.category_name == TERMINATION
    assert isinstance(error.cause, RetryExhaustedError)
    assert classifier.calls == [TERMINATION] * 4


async def test_party_and_stats_are_threaded_through():
    classifier = ScriptedClassifier({LIABILITY: [result(raw(INDEMNITY))]})
    sequencer = _sequencer(classifier, catalog=default_catalog())
    party = Party(name="Acme Corp", description="the customer")
    stats = CallStats()

    step = await sequencer.run_next_category(
        "contract", [], 0, party=party, stats=stats
    )

    assert classifier.parties == [party]
    assert stats.calls == 1
    assert step.has_more is True
