"""
Runtime configuration for the Analyzer microservice.

This module centralizes environment-driven configuration: which model
provider performs classification and elaboration, how failures are
retried, how often progress is persisted, and where snapshots live.

Configuration is read once at startup and is immutable at runtime.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class AnalyzerConfig(BaseModel):
    """
    Runtime configuration for the Analyzer microservice.
    """

    # ------------------------------------------------------------------
    # Model provider
    # ------------------------------------------------------------------

    LLM_PROVIDER: str = Field(
        "upstage",
        description="Classification/elaboration provider identifier",
    )

    LLM_MODEL_NAME: str = Field(
        "solar-pro",
        description="Model name used for classification and elaboration",
    )

    LLM_TEMPERATURE: float = Field(0.1, ge=0.0, le=2.0)
    LLM_MAX_TOKENS: int = Field(4000)
    LLM_TOP_P: float = Field(0.9, gt=0.0, le=1.0)

    UPSTAGE_API_KEY: str = Field(
        "",
        description="API key for the Upstage OpenAI-compatible endpoint",
    )

    UPSTAGE_BASE_URL: str = Field(
        "https://api.upstage.ai/v1",
        description="Base URL of the Upstage OpenAI-compatible endpoint",
    )

    AZURE_OPENAI_ENDPOINT: str = Field(
        "",
        description="Azure OpenAI endpoint URL",
    )

    AZURE_OPENAI_DEPLOYMENT: str = Field(
        "",
        description="Azure OpenAI deployment name",
    )

    AZURE_OPENAI_API_VERSION: str = Field(
        "",
        description="Azure OpenAI API version",
    )

    # ------------------------------------------------------------------
    # Analysis behaviour
    # ------------------------------------------------------------------

    ANALYSIS_MODE: str = Field(
        "comprehensive",
        description="'comprehensive' (all categories) or 'quick' (priority 1 only)",
    )

    CONTINUE_ON_CATEGORY_FAILURE: bool = Field(
        False,
        description=(
            "Record a category that failed after retries and move on, "
            "instead of halting the Track in 'failed'"
        ),
    )

    # ------------------------------------------------------------------
    # Failure policy
    # ------------------------------------------------------------------

    MAX_RETRIES: int = Field(
        3,
        description="Extra attempts after the first for transient failures",
    )

    RETRY_BASE_DELAY_SECONDS: float = Field(
        1.0,
        description="Backoff base: delay after the n-th failure is base * 2^n",
    )

    CLASSIFICATION_TIMEOUT_SECONDS: float = Field(300.0)
    ELABORATION_TIMEOUT_SECONDS: float = Field(180.0)

    # ------------------------------------------------------------------
    # Progress and persistence
    # ------------------------------------------------------------------

    DEEP_ANALYSIS_PACING_SECONDS: float = Field(
        0.5,
        description="Delay between deep-analysis items",
    )

    SNAPSHOT_EVERY_N_ITEMS: int = Field(
        3,
        description="Persist a snapshot after every N elaborated findings",
    )

    SNAPSHOT_DIR: Path | None = Field(
        None,
        description="Directory for JSON snapshots; in-memory store when unset",
    )

    # ------------------------------------------------------------------
    # Safety limits / diagnostics
    # ------------------------------------------------------------------

    MAX_DOCUMENT_CHARS: int = Field(
        500_000,
        description="Upper bound on accepted document text size",
    )

    LOG_LEVEL: str = Field("INFO")

    # ------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ------------------------------------------------------------------

    @field_validator("LLM_PROVIDER")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        allowed = {"disabled", "upstage", "azure_openai"}
        if v not in allowed:
            raise ValueError(
                f"Unsupported LLM_PROVIDER '{v}'. "
                f"Allowed values: {sorted(allowed)}"
            )
        return v

    @field_validator("ANALYSIS_MODE")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        allowed = {"comprehensive", "quick"}
        if v not in allowed:
            raise ValueError(
                f"Unsupported ANALYSIS_MODE '{v}'. "
                f"Allowed values: {sorted(allowed)}"
            )
        return v

    @field_validator("MAX_RETRIES")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("MAX_RETRIES must not be negative.")
        return v

    @field_validator(
        "LLM_MAX_TOKENS",
        "SNAPSHOT_EVERY_N_ITEMS",
        "MAX_DOCUMENT_CHARS",
        "CLASSIFICATION_TIMEOUT_SECONDS",
        "ELABORATION_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_positive(cls, v, info: ValidationInfo):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive.")
        return v

    @field_validator("RETRY_BASE_DELAY_SECONDS", "DEEP_ANALYSIS_PACING_SECONDS")
    @classmethod
    def validate_non_negative(cls, v: float, info: ValidationInfo) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must not be negative.")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported LOG_LEVEL '{v}'.")
        return level

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> "AnalyzerConfig":
        """
        Load configuration from environment variables.

        All values are parsed once at startup and must remain immutable.
        """

        def env_bool(name: str, default: bool) -> bool:
            raw = os.getenv(name)
            if raw is None:
                return default
            return raw.lower() in {"1", "true", "yes", "on"}

        snapshot_dir_env = os.getenv("ANALYZER_SNAPSHOT_DIR")

        return cls(
            LLM_PROVIDER=os.getenv(
                "ANALYZER_LLM_PROVIDER", "upstage"
            ),
            LLM_MODEL_NAME=os.getenv(
                "ANALYZER_LLM_MODEL_NAME", "solar-pro"
            ),
            LLM_TEMPERATURE=float(
                os.getenv("ANALYZER_LLM_TEMPERATURE", "0.1")
            ),
            LLM_MAX_TOKENS=int(
                os.getenv("ANALYZER_LLM_MAX_TOKENS", "4000")
            ),
            LLM_TOP_P=float(
                os.getenv("ANALYZER_LLM_TOP_P", "0.9")
            ),
            UPSTAGE_API_KEY=os.getenv(
                "UPSTAGE_API_KEY", ""
            ),
            UPSTAGE_BASE_URL=os.getenv(
                "ANALYZER_UPSTAGE_BASE_URL", "https://api.upstage.ai/v1"
            ),
            AZURE_OPENAI_ENDPOINT=os.getenv(
                "AZURE_OPENAI_ENDPOINT", ""
            ),
            AZURE_OPENAI_DEPLOYMENT=os.getenv(
                "AZURE_OPENAI_DEPLOYMENT", ""
            ),
            AZURE_OPENAI_API_VERSION=os.getenv(
                "AZURE_OPENAI_API_VERSION", ""
            ),
            ANALYSIS_MODE=os.getenv(
                "ANALYZER_ANALYSIS_MODE", "comprehensive"
            ),
            CONTINUE_ON_CATEGORY_FAILURE=env_bool(
                "ANALYZER_CONTINUE_ON_CATEGORY_FAILURE", False
            ),
            MAX_RETRIES=int(
                os.getenv("ANALYZER_MAX_RETRIES", "3")
            ),
            RETRY_BASE_DELAY_SECONDS=float(
                os.getenv("ANALYZER_RETRY_BASE_DELAY_SECONDS", "1.0")
            ),
            CLASSIFICATION_TIMEOUT_SECONDS=float(
                os.getenv("ANALYZER_CLASSIFICATION_TIMEOUT_SECONDS", "300")
            ),
            ELABORATION_TIMEOUT_SECONDS=float(
                os.getenv("ANALYZER_ELABORATION_TIMEOUT_SECONDS", "180")
            ),
            DEEP_ANALYSIS_PACING_SECONDS=float(
                os.getenv("ANALYZER_DEEP_ANALYSIS_PACING_SECONDS", "0.5")
            ),
            SNAPSHOT_EVERY_N_ITEMS=int(
                os.getenv("ANALYZER_SNAPSHOT_EVERY_N_ITEMS", "3")
            ),
            SNAPSHOT_DIR=(
                Path(snapshot_dir_env)
                if snapshot_dir_env
                else None
            ),
            MAX_DOCUMENT_CHARS=int(
                os.getenv("ANALYZER_MAX_DOCUMENT_CHARS", "500000")
            ),
            LOG_LEVEL=os.getenv(
                "ANALYZER_LOG_LEVEL", "INFO"
            ),
        )

    model_config = {
        "frozen": True,
    }
