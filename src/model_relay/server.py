"""
FastAPI Server

Main entry point for the model relay API.
Provides model selection, generation, inference, /health and /metrics endpoints.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from model_relay import __version__
from model_relay.config import SERVER
from model_relay.errors import (
    ConfigurationError,
    RelayError,
    TransientVendorError,
    VendorError,
)
from model_relay.pipeline.batch import MAX_CONCURRENT_CEILING
from model_relay.pipeline.classifier import Priority
from model_relay.pipeline.orchestrator import RelayService
from model_relay.session.manager import SessionContext
from model_relay.utils.logging import (
    audit_logger,
    generate_request_id,
    request_id_var,
    setup_logging,
)

logger = logging.getLogger(__name__)


# Prometheus metrics - use helper to avoid duplicate registration on reload
def _get_or_create_counter(name: str, description: str, labels: list[str]) -> Counter:
    """Get existing counter or create new one."""
    if name in REGISTRY._names_to_collectors:
        return REGISTRY._names_to_collectors[name]  # type: ignore
    return Counter(name, description, labels)


def _get_or_create_histogram(
    name: str, description: str, labels: list[str] | None = None, buckets: list[float] | None = None
) -> Histogram:
    """Get existing histogram or create new one."""
    if name in REGISTRY._names_to_collectors:
        return REGISTRY._names_to_collectors[name]  # type: ignore
    kwargs: dict[str, Any] = {}
    if labels:
        kwargs["labelnames"] = labels
    if buckets:
        kwargs["buckets"] = buckets
    return Histogram(name, description, **kwargs)


API_REQUESTS = _get_or_create_counter(
    "relay_requests_total",
    "Total API requests",
    ["path", "status"],
)

API_DURATION = _get_or_create_histogram(
    "relay_request_duration_seconds",
    "API request duration in seconds",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

VENDOR_CALLS = _get_or_create_histogram(
    "relay_vendor_call_duration_seconds",
    "Vendor API call duration",
    labels=["vendor", "success"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

DISPATCH_ATTEMPTS = _get_or_create_counter(
    "relay_dispatch_attempts_total",
    "Inference dispatch attempts by outcome",
    ["outcome"],
)

# Looked up lazily by the vendor client and invoker
METRICS: dict[str, Any] = {
    "vendor_calls": VENDOR_CALLS,
    "dispatch_attempts": DISPATCH_ATTEMPTS,
}

TaskName = Literal[
    "text-generation",
    "text-classification",
    "question-answering",
    "summarization",
    "fill-mask",
]
AnalysisType = Literal["sentiment", "summary", "technical", "creative", "logical"]
ImageStyle = Literal["photographic", "digital-art", "cinematic", "anime", "fantasy-art"]


# Request models
class SelectModelRequest(BaseModel):
    """Model selection request body."""

    task_description: str = Field(..., min_length=1, max_length=10000)
    priority: Priority | None = None
    session_id: str | None = Field(None, max_length=100)


class CompareRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=20000)
    session_id: str | None = Field(None, max_length=100)


class AnalyzeRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=50000)
    analysis_type: AnalysisType = "summary"
    session_id: str | None = Field(None, max_length=100)


class ImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    style: ImageStyle = "photographic"
    session_id: str | None = Field(None, max_length=100)


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=20000)
    session_id: str | None = Field(None, max_length=100)


class InferenceRequest(BaseModel):
    """Single-model inference request body."""

    model_id: str = Field(..., min_length=1, max_length=200)
    input: str = Field(..., min_length=1, max_length=20000)
    task: TaskName = "text-generation"
    max_attempts: int | None = Field(None, ge=1, le=10)
    context: str | None = Field(None, max_length=20000)


class BatchInferenceRequest(BaseModel):
    """Multi-model inference request body."""

    model_ids: list[str] = Field(..., min_length=1, max_length=20)
    input: str = Field(..., min_length=1, max_length=20000)
    task: TaskName = "text-generation"
    max_concurrent: int = Field(MAX_CONCURRENT_CEILING, ge=1)


class EmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: EmailStr
    sender: EmailStr = Field(..., alias="from")
    subject: str = Field(..., min_length=1, max_length=500)
    body: str = Field(..., min_length=1, max_length=50000)


class FeedbackRequest(BaseModel):
    interaction_data: dict[str, Any] = Field(default_factory=dict)
    feedback_type: Literal["positive", "negative", "neutral"]
    learning_weight: float = Field(1.0, ge=0.0, le=10.0)


# Global service instance
service: RelayService | None = None


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    global service

    # Startup
    setup_logging(level=SERVER.LOG_LEVEL, json_format=SERVER.JSON_LOGS)
    logger.info("Starting model relay server...")

    service = RelayService()

    health = await service.health_check()
    missing = [name for name, ok in health["vendors"].items() if not ok]
    if missing:
        logger.warning(f"Vendors without credentials: {', '.join(missing)}")

    logger.info(f"Server ready on {SERVER.HOST}:{SERVER.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down model relay server...")
    if service:
        await service.close()


# Create FastAPI app
app = FastAPI(
    title="Model Relay API",
    description="Task-aware routing across hosted LLM and image vendors",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next: Any) -> Any:
    """Add request ID, timing and metrics to all requests."""
    request_id = generate_request_id()
    request_id_var.set(request_id)

    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.3f}s"

    route = request.scope.get("route")
    path = getattr(route, "path", "unmatched")
    API_DURATION.observe(duration)
    API_REQUESTS.labels(path=path, status=str(response.status_code)).inc()
    audit_logger.log_request_complete(path, response.status_code, duration * 1000)

    return response


def status_for(exc: RelayError) -> int:
    """Map a relay error to an HTTP status code."""
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, TransientVendorError):
        return 503
    if isinstance(exc, VendorError):
        return 502
    return 500


@app.exception_handler(RelayError)
async def relay_error_handler(_request: Request, exc: RelayError) -> JSONResponse:
    status_code = status_for(exc)
    logger.warning(f"{exc.__class__.__name__} mapped to HTTP {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def get_service() -> RelayService:
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


async def _session_for(relay: RelayService, session_id: str | None) -> SessionContext | None:
    if session_id is None:
        return None
    session, _ = await relay.session_manager.get_or_create(session_id)
    return session


async def _existing_session(relay: RelayService, session_id: str) -> SessionContext:
    session = await relay.session_manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    return session


@app.post("/api/select-model")
async def select_model(body: SelectModelRequest) -> dict[str, Any]:
    """
    Recommend a model for a task.

    Always returns a session id; pass it back to accumulate history.
    """
    relay = get_service()
    session, _ = await relay.session_manager.get_or_create(body.session_id)
    result = await relay.recommend_model(body.task_description, body.priority, session)
    return {**result, "session_id": session.id}


@app.post("/api/compare")
async def compare(body: CompareRequest) -> dict[str, Any]:
    relay = get_service()
    session = await _session_for(relay, body.session_id)
    return await relay.compare(body.prompt, session)


@app.post("/api/analyze")
async def analyze(body: AnalyzeRequest) -> dict[str, Any]:
    relay = get_service()
    session = await _session_for(relay, body.session_id)
    return await relay.analyze_text(body.text, body.analysis_type, session)


@app.post("/api/generate-image")
async def generate_image(body: ImageRequest) -> dict[str, Any]:
    relay = get_service()
    session = await _session_for(relay, body.session_id)
    return await relay.generate_image(body.prompt, body.style, session)


@app.post("/api/generate")
async def generate(body: GenerateRequest) -> dict[str, Any]:
    """Route a prompt to the best model and return its response."""
    relay = get_service()
    session, _ = await relay.session_manager.get_or_create(body.session_id)
    result = await relay.route_and_generate(body.prompt, session)
    return {**result, "session_id": session.id}


@app.post("/api/inference")
async def inference(body: InferenceRequest) -> dict[str, Any]:
    """
    Run one inference model with retries.

    Returns 200 with ok=false when the model ultimately fails.
    """
    relay = get_service()
    return await relay.run_inference(
        body.model_id,
        body.input,
        body.task,
        max_attempts=body.max_attempts,
        context=body.context,
    )


@app.post("/api/inference/batch")
async def inference_batch(body: BatchInferenceRequest) -> dict[str, Any]:
    relay = get_service()
    return await relay.run_batch(
        body.model_ids, body.input, body.task, max_concurrent=body.max_concurrent
    )


@app.post("/api/email")
async def email(body: EmailRequest) -> dict[str, Any]:
    relay = get_service()
    return await relay.send_email(body.to, body.sender, body.subject, body.body)


@app.post("/api/sessions/{session_id}/feedback")
async def feedback(session_id: str, body: FeedbackRequest) -> dict[str, Any]:
    relay = get_service()
    session = await _existing_session(relay, session_id)
    return relay.record_feedback(
        session, body.interaction_data, body.feedback_type, body.learning_weight
    )


@app.get("/api/sessions/{session_id}/history")
async def history(
    session_id: str, lookback: int | None = Query(None, ge=1)
) -> dict[str, Any]:
    relay = get_service()
    session = await _existing_session(relay, session_id)
    return {
        "session_id": session.id,
        "total_calls": len(session.history),
        "history": [entry.to_dict() for entry in session.recent(lookback)],
    }


@app.get("/api/sessions/{session_id}/preferences")
async def preferences(session_id: str) -> dict[str, Any]:
    relay = get_service()
    session = await _existing_session(relay, session_id)
    return {
        "session_id": session.id,
        "preferences": dict(session.preferences),
        "learning_confidence": session.learning_confidence,
    }


@app.get("/api/models")
async def list_models() -> dict[str, Any]:
    """List the selectable models in tie-break order."""
    relay = get_service()
    return {"models": [d.to_dict() for d in relay.catalog]}


@app.get("/api/models/{model_id}")
async def get_model(model_id: str) -> dict[str, Any]:
    relay = get_service()
    descriptor = relay.describe_model(model_id)
    if descriptor is None:
        raise HTTPException(status_code=404, detail=f"Unknown model: {model_id}")
    return descriptor


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """
    Health check endpoint.

    Returns vendor configuration and session statistics.
    """
    if service is None:
        return {
            "status": "unhealthy",
            "reason": "Service not initialized",
        }

    health = await service.health_check()

    return {
        "status": "healthy" if health.get("healthy") else "unhealthy",
        "components": health,
    }


@app.get("/metrics")
async def metrics() -> PlainTextResponse:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "name": "Model Relay API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


def main() -> None:
    """Run the server using uvicorn."""
    import uvicorn

    uvicorn.run(
        "model_relay.server:app",
        host=SERVER.HOST,
        port=SERVER.PORT,
        reload=SERVER.DEBUG,
        log_level=SERVER.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
