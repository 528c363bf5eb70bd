from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple, Type, TypeVar

from azure.identity import (
    DefaultAzureCredential,
    get_bearer_token_provider,
)
from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import BaseModel

from analyzer.app.config import AnalyzerConfig
from analyzer.app.core.exceptions import ConfigurationError, FatalError
from analyzer.app.engine.prompts import (
    Message,
    classification_messages,
    elaboration_messages,
    party_identification_messages,
)
from analyzer.app.schemas.categories import Category
from analyzer.app.schemas.findings import (
    ClassificationResult,
    Elaboration,
    ElaborationOutput,
    ElaborationRequest,
    Recommendation,
)
from analyzer.app.schemas.parties import PartyIdentification
from analyzer.app.schemas.tracks import Party

logger = logging.getLogger("analyzer.engine")

M = TypeVar("M", bound=BaseModel)

AZURE_TOKEN_SCOPE = "https://cognitiveservices.azure.com/.default"

_THINK_RE = re.compile(r"<think>([\s\S]*?)</think>")


def split_thinking(text: str) -> Tuple[str, Optional[str]]:
    """
    Separate ``<think>...</think>`` reasoning from the visible text.
    """
    blocks = [m.strip() for m in _THINK_RE.findall(text)]
    if not blocks:
        return text, None
    return _THINK_RE.sub("", text).strip(), "\n\n".join(b for b in blocks if b)


class LLMRiskEngine:
    """
    Classification, elaboration and party identification collaborator
    backed by an OpenAI-compatible chat completions API.

    Providers:
      - upstage: OpenAI-compatible endpoint, API key
      - azure_openai: Entra ID (DefaultAzureCredential)

    The client is built lazily so a missing credential surfaces as a
    ConfigurationError at call time rather than at startup.

    The engine never retries: retries, timeouts and error
    classification belong to the RetryController.
    """

    def __init__(self, config: AnalyzerConfig) -> None:
        self._config = config
        self._client: Optional[AsyncOpenAI] = None

    @property
    def model(self) -> str:
        if self._config.LLM_PROVIDER == "azure_openai":
            return self._config.AZURE_OPENAI_DEPLOYMENT
        return self._config.LLM_MODEL_NAME

    # ------------------------------------------------------------------
    # Collaborator contracts
    # ------------------------------------------------------------------

    async def classify(
        self,
        *,
        document_text: str,
        category: Category,
        already_known: Sequence[str],
        party: Optional[Party] = None,
    ) -> ClassificationResult:
        messages = classification_messages(
            document_text=document_text,
            category=category,
            already_known=already_known,
            party=party,
        )
        return await self._parse(messages, ClassificationResult)

    async def elaborate(self, request: ElaborationRequest) -> Elaboration:
        output = await self._parse(
            elaboration_messages(request),
            ElaborationOutput,
        )

        thoughts: List[str] = []

        def clean(text: str) -> str:
            visible, thinking = split_thinking(text)
            if thinking:
                thoughts.append(thinking)
            return visible

        business_impact = clean(output.business_impact)
        replacement = clean(output.suggested_replacement_text)
        recommendations = [
            Recommendation(
                action=clean(r.action),
                priority=r.priority,
                effort=r.effort,
            )
            for r in output.recommendations
        ]

        return Elaboration(
            business_impact=business_impact,
            recommendations=recommendations,
            suggested_replacement_text=replacement,
            thinking="\n\n".join(thoughts) if thoughts else None,
        )

    async def identify_parties(self, document_text: str) -> PartyIdentification:
        return await self._parse(
            party_identification_messages(document_text),
            PartyIdentification,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _parse(self, messages: List[Message], schema: Type[M]) -> M:
        client = self._get_client()

        response = await client.chat.completions.parse(
            model=self.model,
            messages=messages,
            response_format=schema,
            temperature=self._config.LLM_TEMPERATURE,
            max_tokens=self._config.LLM_MAX_TOKENS,
            top_p=self._config.LLM_TOP_P,
        )

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                "LLM usage: prompt=%s completion=%s total=%s",
                getattr(usage, "prompt_tokens", None),
                getattr(usage, "completion_tokens", None),
                getattr(usage, "total_tokens", None),
            )

        if not response.choices:
            raise FatalError("No response from the analysis model")

        message = response.choices[0].message
        if message.parsed is None:
            raise FatalError(
                f"Model returned no structured output: {message.refusal or 'empty'}"
            )
        return message.parsed

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> AsyncOpenAI:
        config = self._config
        provider = config.LLM_PROVIDER

        if provider == "disabled":
            raise ConfigurationError(
                "Risk analysis is disabled (ANALYZER_LLM_PROVIDER=disabled)."
            )

        if provider == "upstage":
            if not config.UPSTAGE_API_KEY:
                raise ConfigurationError(
                    "UPSTAGE_API_KEY environment variable is required"
                )
            return AsyncOpenAI(
                api_key=config.UPSTAGE_API_KEY,
                base_url=config.UPSTAGE_BASE_URL,
                timeout=config.CLASSIFICATION_TIMEOUT_SECONDS,
                max_retries=0,
            )

        if provider == "azure_openai":
            missing = [
                name
                for name, value in (
                    ("AZURE_OPENAI_ENDPOINT", config.AZURE_OPENAI_ENDPOINT),
                    ("AZURE_OPENAI_DEPLOYMENT", config.AZURE_OPENAI_DEPLOYMENT),
                    ("AZURE_OPENAI_API_VERSION", config.AZURE_OPENAI_API_VERSION),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(
                    f"Azure OpenAI is not configured: missing {', '.join(missing)}"
                )

            token_provider = get_bearer_token_provider(
                DefaultAzureCredential(),
                AZURE_TOKEN_SCOPE,
            )
            return AsyncAzureOpenAI(
                azure_endpoint=config.AZURE_OPENAI_ENDPOINT,
                azure_ad_token_provider=token_provider,
                api_version=config.AZURE_OPENAI_API_VERSION,
                timeout=config.CLASSIFICATION_TIMEOUT_SECONDS,
                max_retries=0,
            )

        raise ConfigurationError(f"Unsupported LLM provider '{provider}'")
