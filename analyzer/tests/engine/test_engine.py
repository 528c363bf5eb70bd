from types import SimpleNamespace

import pytest

from analyzer.app.analysis.catalog import default_catalog
from analyzer.app.config import AnalyzerConfig
from analyzer.app.core.exceptions import ConfigurationError, FatalError
from analyzer.app.engine.llm_engine import LLMRiskEngine, split_thinking
from analyzer.app.engine.prompts import (
    MAX_KNOWN_TEXTS_IN_PROMPT,
    classification_messages,
    elaboration_messages,
)
from analyzer.app.schemas.findings import (
    ElaborationOutput,
    ElaborationRequest,
    Recommendation,
)
from analyzer.app.schemas.parties import IdentifiedParty, PartyIdentification
from analyzer.app.schemas.tracks import Party

pytestmark = pytest.mark.anyio


class FakeCompletions:
    """Stands in for ``client.chat.completions``."""

    def __init__(self, parsed, *, choices=True):
        self._parsed = parsed
        self._choices = choices
        self.kwargs = []

    async def parse(self, **kwargs):
        self.kwargs.append(kwargs)
        if not self._choices:
            return SimpleNamespace(choices=[], usage=None)
        message = SimpleNamespace(parsed=self._parsed, refusal=None)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


def _engine_with(completions, **config) -> LLMRiskEngine:
    engine = LLMRiskEngine(AnalyzerConfig(UPSTAGE_API_KEY="test-key", **config))
    engine._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return engine


def _request() -> ElaborationRequest:
    return ElaborationRequest(
        title="Unlimited liability",
        description="Liability risk identified in Section 8.",
        source_span="The Supplier's liability is unlimited.",
    )


def test_split_thinking_extracts_reasoning():
    visible, thinking = split_thinking(
        "<think>weigh the cap</think>Exposure is uncapped.<think> second </think>"
    )

    assert visible == "Exposure is uncapped."
    assert thinking == "weigh the cap\n\nsecond"


def test_split_thinking_leaves_plain_text_alone():
    assert split_thinking("Plain answer.") == ("Plain answer.", None)


def test_classification_prompt_names_category_focus_and_party():
    category = default_catalog()[0]
    party = Party(name="Acme Corp", description="the customer")

    system, user = classification_messages(
        document_text="FULL CONTRACT TEXT",
        category=category,
        already_known=["known clause"],
        party=party,
    )

    assert system["role"] == "system"
    assert category.name in system["content"]
    assert '"Acme Corp"' in system["content"]
    assert "FULL CONTRACT TEXT" in user["content"]
    for area in category.focus_areas:
        assert area in user["content"]
    assert '"known clause"' in user["content"]


def test_classification_prompt_caps_known_texts():
    known = [f"clause {i}" for i in range(MAX_KNOWN_TEXTS_IN_PROMPT + 10)]

    _, user = classification_messages(
        document_text="text",
        category=default_catalog()[0],
        already_known=known,
    )

    assert f'"clause {MAX_KNOWN_TEXTS_IN_PROMPT - 1}"' in user["content"]
    assert f'"clause {MAX_KNOWN_TEXTS_IN_PROMPT}"' not in user["content"]


def test_classification_prompt_without_party_is_general():
    system, user = classification_messages(
        document_text="text",
        category=default_catalog()[0],
        already_known=[],
    )

    assert "general risk perspective" in system["content"]
    assert "already identified" not in user["content"]


def test_elaboration_prompt_quotes_the_finding():
    _, user = elaboration_messages(_request())

    assert "**Risk:** Unlimited liability" in user["content"]
    assert "The Supplier's liability is unlimited." in user["content"]


async def test_missing_upstage_key_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("UPSTAGE_API_KEY", raising=False)
    engine = LLMRiskEngine(AnalyzerConfig())

    with pytest.raises(ConfigurationError, match="UPSTAGE_API_KEY"):
        await engine.elaborate(_request())


async def test_disabled_provider_is_a_configuration_error():
    engine = LLMRiskEngine(AnalyzerConfig(LLM_PROVIDER="disabled"))

    with pytest.raises(ConfigurationError):
        await engine.classify(
            document_text="text",
            category=default_catalog()[0],
            already_known=[],
        )


async def test_incomplete_azure_configuration_lists_missing_settings():
    engine = LLMRiskEngine(
        AnalyzerConfig(
            LLM_PROVIDER="azure_openai",
            AZURE_OPENAI_ENDPOINT="https://example.openai.azure.com",
        )
    )

    with pytest.raises(ConfigurationError) as excinfo:
        await engine.elaborate(_request())

    assert "AZURE_OPENAI_DEPLOYMENT" in str(excinfo.value)
    assert "AZURE_OPENAI_API_VERSION" in str(excinfo.value)


async def test_elaborate_strips_thinking_and_passes_sampling_settings():
    completions = FakeCompletions(
        ElaborationOutput(
            business_impact="<think>scan the cap</think>Uncapped exposure.",
            recommendations=[
                Recommendation(
                    action="<think>cap it</think>Cap liability at fees paid.",
                    priority="high",
                    effort="low",
                )
            ],
            suggested_replacement_text="Liability is capped at the fees paid.",
        )
    )
    engine = _engine_with(completions)

    elaboration = await engine.elaborate(_request())

    assert elaboration.business_impact == "Uncapped exposure."
    assert elaboration.recommendations[0].action == "Cap liability at fees paid."
    assert elaboration.thinking == "scan the cap\n\ncap it"
    assert elaboration.fallback is False

    kwargs = completions.kwargs[0]
    assert kwargs["model"] == "solar-pro"
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 4000
    assert kwargs["top_p"] == 0.9
    assert kwargs["response_format"] is ElaborationOutput


async def test_empty_response_is_fatal():
    engine = _engine_with(FakeCompletions(None, choices=False))

    with pytest.raises(FatalError):
        await engine.elaborate(_request())


async def test_unparsed_response_is_fatal():
    engine = _engine_with(FakeCompletions(None))

    with pytest.raises(FatalError, match="no structured output"):
        await engine.elaborate(_request())


async def test_identify_parties_requests_the_party_schema():
    identification = PartyIdentification(
        parties=[IdentifiedParty(id="party1", name="Acme Corp", type="company")],
        analysis="Single named supplier.",
    )
    completions = FakeCompletions(identification)
    engine = _engine_with(completions)

    parsed = await engine.identify_parties("Acme Corp supplies widgets.")

    assert parsed is identification
    (kwargs,) = completions.kwargs
    assert kwargs["response_format"] is PartyIdentification
    system, user = kwargs["messages"]
    assert "identify all parties" in system["content"]
    assert user["content"].endswith("Contract text:\nAcme Corp supplies widgets.")
