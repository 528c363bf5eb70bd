"""
Error taxonomy for the contract risk analyzer.

Three kinds of failure reach the orchestrator from its collaborators:

- configuration: missing or rejected credentials. Never retried.
- transient: network failures, timeouts, 429/5xx. Retried with backoff.
- fatal: anything else. Never retried.

Sequencing failures are re-raised with enough context to resume the
Track at exactly the category that failed.
"""

from __future__ import annotations

from typing import List, Optional


class AnalysisError(RuntimeError):
    """Base class for all analyzer errors."""


class ConfigurationError(AnalysisError):
    """
    A collaborator is missing or rejected its credentials.

    Surfaced distinctly so callers can show a fix-it message
    instead of a generic failure.
    """


class TransientError(AnalysisError):
    """
    A collaborator failed in a way that may succeed on retry.
    """


class FatalError(AnalysisError):
    """
    A collaborator failed in a way that retrying will not fix.
    """


class RetryExhaustedError(TransientError):
    """
    Raised by the retry controller once every attempt failed transiently.
    """

    def __init__(
        self,
        *,
        label: str,
        attempts: int,
        last_error: Optional[BaseException],
    ) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error

        reason = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"{label} failed after {attempts} attempts: {reason}"
        )


# ----------------------------------------------------------------------
# Sequencing failures (carry resume context)
# ----------------------------------------------------------------------


class SequencingError(AnalysisError):
    """
    Resumable failure of a single category classification.

    Carries the exact context needed to retry from the failing
    category without repeating earlier ones.
    """

    resumable: bool = True

    def __init__(
        self,
        message: str,
        *,
        document_text: str,
        already_known_texts: List[str],
        cursor: int,
        category_name: str,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.document_text = document_text
        self.already_known_texts = list(already_known_texts)
        self.cursor = cursor
        self.category_name = category_name
        self.cause = cause


class SequencingConfigurationError(SequencingError):
    """
    Non-retryable sequencing failure caused by a configuration problem.

    The whole Track is aborted; no further categories are attempted.
    """

    resumable: bool = False


# ----------------------------------------------------------------------
# Reconciler command errors
# ----------------------------------------------------------------------


class TrackNotFoundError(AnalysisError):
    """No Track (live or persisted) exists for the requested document."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No analysis track for document '{document_id}'")
        self.document_id = document_id


class InvalidTrackStateError(AnalysisError):
    """A command was issued against a Track in an incompatible phase."""
