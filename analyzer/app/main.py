"""
FastAPI entrypoint for the Analyzer microservice.

This module defines the public HTTP interface for progressive contract
risk analysis. It wires the Track Reconciler at startup, exposes its
commands, and streams its progress feed as Server-Sent Events.

Analyses run in the background: every command returns immediately with
the Track's current snapshot, and progress is observed on ``/events``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Awaitable, Callable, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.responses import Response

from analyzer.app.analysis.catalog import default_catalog
from analyzer.app.analysis.parties import identify_parties
from analyzer.app.analysis.retry import RetryController
from analyzer.app.analysis.sequencer import CategorySequencer
from analyzer.app.analysis.stepper import DeepAnalysisStepper
from analyzer.app.config import AnalyzerConfig
from analyzer.app.core.exceptions import (
    ConfigurationError,
    InvalidTrackStateError,
    TrackNotFoundError,
    TransientError,
)
from analyzer.app.engine.llm_engine import LLMRiskEngine
from analyzer.app.engine.protocols import (
    PartyIdentifier,
    RiskClassifier,
    RiskElaborator,
)
from analyzer.app.events import BroadcastEventEmitter
from analyzer.app.logging_setup import configure_logging
from analyzer.app.persistence.store import (
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
    SnapshotStore,
)
from analyzer.app.schemas.parties import PartyIdentificationResult
from analyzer.app.schemas.tracks import Party, TrackSnapshot
from analyzer.app.tracks.reconciler import CONFIGURATION_FIX_IT, TrackReconciler

logger = logging.getLogger("analyzer.main")


def get_app_version() -> str:
    try:
        return version("contract-risk-analyzer")
    except PackageNotFoundError:
        return "0.1.0"


# ---------------------------------------------------------------------------
# Presentation helpers (presentation-only)
# ---------------------------------------------------------------------------


class PrettyJSONResponse(Response):
    """
    Pretty-printed JSON response for human-readable console output.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=2,
            separators=(", ", ": "),
        ).encode("utf-8")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AnalysisRequest(BaseModel):
    document_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    already_known: List[str] = Field(
        default_factory=list,
        description="Risk texts identified in a prior session",
    )
    party: Optional[Party] = None
    display: bool = Field(
        True,
        description="Make this document the displayed (foreground) one",
    )


class ResumeRequest(BaseModel):
    text: str = Field(..., min_length=1)
    display: bool = True


class PartiesRequest(BaseModel):
    text: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_retry(
    config: AnalyzerConfig,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryController:
    return RetryController(
        max_retries=config.MAX_RETRIES,
        base_delay_seconds=config.RETRY_BASE_DELAY_SECONDS,
        timeout_seconds=config.CLASSIFICATION_TIMEOUT_SECONDS,
        sleep=sleep,
    )


def build_reconciler(
    config: AnalyzerConfig,
    *,
    classifier: RiskClassifier,
    elaborator: RiskElaborator,
    store: Optional[SnapshotStore] = None,
    broadcaster: Optional[BroadcastEventEmitter] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> TrackReconciler:
    """
    Assemble a Track Reconciler from configuration.

    Collaborators are passed in explicitly so tests can substitute
    scripted fakes for the model provider.
    """
    retry = build_retry(config, sleep=sleep)

    if store is None:
        store = (
            JsonFileSnapshotStore(config.SNAPSHOT_DIR)
            if config.SNAPSHOT_DIR is not None
            else InMemorySnapshotStore()
        )

    return TrackReconciler(
        sequencer=CategorySequencer(
            classifier=classifier,
            retry=retry,
            catalog=default_catalog(config.ANALYSIS_MODE),
        ),
        stepper=DeepAnalysisStepper(
            elaborator=elaborator,
            retry=retry,
            timeout_seconds=config.ELABORATION_TIMEOUT_SECONDS,
            pacing_seconds=config.DEEP_ANALYSIS_PACING_SECONDS,
            sleep=sleep,
        ),
        store=store,
        broadcaster=broadcaster,
        snapshot_every=config.SNAPSHOT_EVERY_N_ITEMS,
        continue_on_category_failure=config.CONTINUE_ON_CATEGORY_FAILURE,
    )


def create_app(
    config: Optional[AnalyzerConfig] = None,
    *,
    classifier: Optional[RiskClassifier] = None,
    elaborator: Optional[RiskElaborator] = None,
    party_identifier: Optional[PartyIdentifier] = None,
    store: Optional[SnapshotStore] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Configuration is loaded once and treated as immutable for the
        lifetime of the process. The model provider is wired here.
        """
        try:
            resolved = config or AnalyzerConfig.from_env()
        except Exception:
            logger.exception("invalid_analyzer_configuration")
            raise

        configure_logging(resolved.LOG_LEVEL)

        engine = None
        if classifier is None or elaborator is None or party_identifier is None:
            engine = LLMRiskEngine(resolved)

        app.state.config = resolved
        app.state.party_identifier = party_identifier or engine
        app.state.retry = build_retry(resolved)
        app.state.reconciler = build_reconciler(
            resolved,
            classifier=classifier or engine,
            elaborator=elaborator or engine,
            store=store,
        )

        logger.info(
            "analyzer_startup provider=%s mode=%s version=%s",
            resolved.LLM_PROVIDER,
            resolved.ANALYSIS_MODE,
            get_app_version(),
        )

        yield

        await app.state.reconciler.aclose()
        logger.info("analyzer_shutdown")

    app = FastAPI(
        title="Contract Risk Analyzer",
        description="Progressive, resumable, multi-document contract risk analysis",
        version=get_app_version(),
        lifespan=lifespan,
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TrackNotFoundError)
    async def track_not_found(request: Request, exc: TrackNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTrackStateError)
    async def invalid_state(request: Request, exc: InvalidTrackStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def not_configured(request: Request, exc: ConfigurationError):
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "fix": CONFIGURATION_FIX_IT},
        )

    @app.exception_handler(TransientError)
    async def upstream_unavailable(request: Request, exc: TransientError):
        return JSONResponse(status_code=502, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:
    def reconciler() -> TrackReconciler:
        return app.state.reconciler

    def enforce_document_limit(text: str) -> None:
        config: AnalyzerConfig = app.state.config
        if len(text) > config.MAX_DOCUMENT_CHARS:
            raise HTTPException(
                status_code=413,
                detail=(
                    f"Document exceeds maximum allowed size of "
                    f"{config.MAX_DOCUMENT_CHARS} characters"
                ),
            )

    @app.post(
        "/analyses",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Start analysing a document",
    )
    async def start_analysis(body: AnalysisRequest) -> TrackSnapshot:
        enforce_document_limit(body.text)

        track = await reconciler().start_analysis(
            body.document_id,
            body.text,
            already_known=body.already_known,
            party=body.party,
            display=body.display,
        )
        return track.snapshot()

    @app.post(
        "/analyses/{document_id}/resume",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Continue a persisted partial analysis",
    )
    async def resume_analysis(document_id: str, body: ResumeRequest) -> TrackSnapshot:
        enforce_document_limit(body.text)

        track = await reconciler().resume_analysis(
            document_id,
            body.text,
            display=body.display,
        )
        return track.snapshot()

    @app.post(
        "/analyses/{document_id}/foreground",
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Display a document",
    )
    async def set_foreground(document_id: str) -> TrackSnapshot:
        track = await reconciler().set_foreground(document_id)
        return track.snapshot()

    @app.post(
        "/analyses/{document_id}/retry",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Retry a failed analysis from the failing category",
    )
    async def retry_from_failure(document_id: str) -> TrackSnapshot:
        track = await reconciler().retry_from_failure(document_id)
        return track.snapshot()

    @app.post(
        "/analyses/{document_id}/accept-partial",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Accept partial results and continue with deep analysis",
    )
    async def accept_partial(document_id: str) -> TrackSnapshot:
        track = await reconciler().accept_partial_results(document_id)
        return track.snapshot()

    @app.delete(
        "/analyses/{document_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        summary="Abandon an analysis that has not recorded results yet",
    )
    async def abandon(document_id: str) -> Response:
        await reconciler().abandon(document_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get(
        "/analyses/{document_id}",
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="Current or last persisted state of an analysis",
    )
    async def get_analysis(document_id: str) -> TrackSnapshot:
        return await reconciler().get_snapshot(document_id)

    @app.get(
        "/displayed",
        response_model=TrackSnapshot,
        response_class=PrettyJSONResponse,
        summary="State of the currently displayed analysis",
    )
    async def displayed() -> TrackSnapshot:
        track = reconciler().displayed_track()
        if track is None:
            raise HTTPException(status_code=404, detail="No document is displayed")
        return track.snapshot()

    @app.post(
        "/parties",
        response_model=PartyIdentificationResult,
        response_class=PrettyJSONResponse,
        summary="Identify the parties of a contract",
    )
    async def parties(body: PartiesRequest) -> PartyIdentificationResult:
        """
        Name the parties so the caller can pick whose perspective the
        risk analysis should take.
        """
        enforce_document_limit(body.text)

        return await identify_parties(
            app.state.party_identifier,
            app.state.retry,
            body.text,
        )

    # -----------------------------------------------------------------------
    # Progress feed (SSE)
    # -----------------------------------------------------------------------

    @app.get(
        "/events",
        summary="Stream progress events",
    )
    async def events(document_id: Optional[str] = None):
        """
        Stream progress events for every Track.

        When ``document_id`` is given, the stream ends once that
        document's Track completes or fails. Client disconnects never
        affect any Track.
        """
        subscriber = reconciler().subscribe(close_on_terminal_for=document_id)

        async def event_stream():
            try:
                async for event in subscriber.stream():
                    if document_id is not None and event.document_id != document_id:
                        continue
                    yield event.to_sse_payload()
            except asyncio.CancelledError:
                # Client disconnected; analyses continue
                pass
            finally:
                await reconciler().unsubscribe(subscriber)

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    # -----------------------------------------------------------------------
    # Health Check
    # -----------------------------------------------------------------------

    @app.get(
        "/health",
        summary="Service health check",
    )
    def health_check() -> JSONResponse:
        """Simple health check endpoint."""
        config: AnalyzerConfig = app.state.config
        return JSONResponse(
            content={
                "status": "ok",
                "service": "analyzer",
                "provider": config.LLM_PROVIDER,
                "mode": config.ANALYSIS_MODE,
                "active_tracks": sum(
                    1 for t in reconciler().tracks() if not t.finished
                ),
            }
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "analyzer.app.main:app",
        host=os.getenv("ANALYZER_HOST", "0.0.0.0"),
        port=int(os.getenv("ANALYZER_PORT", "8000")),
        log_level=os.getenv("ANALYZER_LOG_LEVEL", "info").lower(),
    )
