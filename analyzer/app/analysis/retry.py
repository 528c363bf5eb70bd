"""
Retry Controller.

Single home of the failure policy for collaborator calls:

- transient failures are retried with exponential backoff
  (base * 2^n seconds after the n-th failure)
- configuration failures are surfaced immediately, never retried
- anything else is fatal and surfaced immediately

Every attempt runs under a per-call timeout; a timeout is transient.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Optional, TypeVar

import httpx
import openai
from azure.core.exceptions import (
    ClientAuthenticationError,
    ServiceRequestError,
    ServiceResponseTimeoutError,
)
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from analyzer.app.core.exceptions import (
    ConfigurationError,
    RetryExhaustedError,
    TransientError,
)
from analyzer.app.schemas.tracks import CallStats

logger = logging.getLogger("analyzer.retry")

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
CLASSIFICATION_TIMEOUT_SECONDS = 300.0
ELABORATION_TIMEOUT_SECONDS = 180.0


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    FATAL = "fatal"


class RetryState(BaseModel):
    """
    Ephemeral sub-status published while a retry is pending.

    Never persisted.
    """

    attempt: int
    max_attempts: int
    last_error: str
    delay_seconds: float

    model_config = ConfigDict(frozen=True)


_CONFIGURATION_ERRORS = (
    ConfigurationError,
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    ClientAuthenticationError,
)

_TRANSIENT_ERRORS = (
    TransientError,
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TransportError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    ServiceResponseTimeoutError,
    ServiceRequestError,
)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Default error classifier for collaborator failures.
    """
    if isinstance(error, _CONFIGURATION_ERRORS):
        return ErrorKind.CONFIGURATION
    if isinstance(error, _TRANSIENT_ERRORS):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_timeout(error: Optional[BaseException]) -> bool:
    """
    True when ``error`` (or the last error of an exhausted retry) is a timeout.
    """
    if isinstance(error, RetryExhaustedError):
        error = error.last_error
    return isinstance(
        error,
        (TimeoutError, asyncio.TimeoutError, openai.APITimeoutError, ServiceResponseTimeoutError),
    )


class RetryController:
    """
    Wraps a single collaborator call with timeout, classification and
    exponential backoff.

    ``sleep`` is injectable so tests can observe delays without waiting.
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        timeout_seconds: float = CLASSIFICATION_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self._max_retries = max_retries
        self._base_delay = base_delay_seconds
        self._timeout = timeout_seconds
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    def backoff_seconds(self, failed_attempts: int) -> float:
        return self._base_delay * (2 ** failed_attempts)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], ErrorKind] = classify_error,
        *,
        label: str,
        timeout_seconds: Optional[float] = None,
        stats: Optional[CallStats] = None,
        stats_kind: Literal["classification", "elaboration"] = "classification",
        on_retry: Optional[Callable[[RetryState], Awaitable[None]]] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails non-transiently, or the
        attempt budget is spent.

        Raises:
            ConfigurationError: on a configuration failure (first attempt).
            RetryExhaustedError: once every attempt failed transiently.
            Exception: the original error for fatal failures.
        """
        timeout = timeout_seconds if timeout_seconds is not None else self._timeout
        last_error: Optional[BaseException] = None
        failed = 0

        async def sleep_before_retry(seconds: float) -> None:
            if on_retry is not None:
                await on_retry(
                    RetryState(
                        attempt=failed + 1,
                        max_attempts=self.max_attempts,
                        last_error=str(last_error),
                        delay_seconds=seconds,
                    )
                )
            await self._sleep(seconds)

        def wait(retry_state: RetryCallState) -> float:
            return self.backoff_seconds(retry_state.attempt_number)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait,
            retry=retry_if_exception(
                lambda exc: classify(exc) is ErrorKind.TRANSIENT
            ),
            sleep=sleep_before_retry,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    started = time.perf_counter()
                    try:
                        return await asyncio.wait_for(operation(), timeout=timeout)
                    except Exception as exc:
                        last_error = exc
                        kind = classify(exc)

                        if kind is ErrorKind.CONFIGURATION:
                            logger.error(
                                "%s aborted: configuration error: %s", label, exc
                            )
                            if isinstance(exc, ConfigurationError):
                                raise
                            raise ConfigurationError(str(exc)) from exc

                        if kind is ErrorKind.FATAL:
                            logger.error("%s aborted: %s", label, exc)
                            raise

                        failed += 1
                        logger.warning(
                            "%s attempt %d/%d failed: %s",
                            label,
                            failed,
                            self.max_attempts,
                            exc,
                        )
                        raise
                    finally:
                        if stats is not None:
                            stats.record(
                                kind=stats_kind,
                                seconds=time.perf_counter() - started,
                            )
        except RetryError as exc:
            logger.error(
                "%s failed after %d attempts: %s",
                label,
                self.max_attempts,
                last_error,
            )
            raise RetryExhaustedError(
                label=label,
                attempts=self.max_attempts,
                last_error=last_error,
            ) from exc

        # AsyncRetrying always either returns or raises
        raise RuntimeError(f"{label}: retry loop ended without an outcome")
