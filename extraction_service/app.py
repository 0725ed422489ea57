"""FastAPI entry point for the document text-extraction service.

Endpoints:
- POST /v1/extract                   — Extract text from an uploaded PDF or image
- POST /v1/materials/{id}/extract    — Extract text from a stored material
- GET  /liveness                     — Health check
- GET  /readiness                    — Strategy availability check
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from extraction_service.config import (
    EXTRACT_CORS_ALLOW_CREDENTIALS,
    EXTRACT_CORS_ALLOW_HEADERS,
    EXTRACT_CORS_ALLOW_METHODS,
    EXTRACT_CORS_ALLOW_ORIGINS,
    EXTRACT_DEFAULT_LANGUAGE,
    EXTRACT_LOCAL_FILE_ROOT,
    EXTRACT_MAX_BODY_BYTES,
    EXTRACT_RATE_LIMIT,
    EXTRACT_REQUEST_TIMEOUT_S,
)
from extraction_service.errors import (
    ErrorKind,
    ExtractionError,
    ExtractionFailedError,
    InputError,
    user_message,
)
from extraction_service.logging_config import (
    bind_request_id,
    generate_request_id,
    reset_request_id,
    setup_logging,
)
from extraction_service.models import (
    ErrorResponse,
    ExtractRequest,
    ExtractResponse,
    HealthResponse,
    MaterialExtractRequest,
)
from extraction_service.pipeline.config import ExtractionConfig
from extraction_service.pipeline.materials import MaterialStore
from extraction_service.pipeline.orchestrator import ExtractionOrchestrator
from extraction_service.pipeline.service import build_material_store, build_orchestrator, extract_material
from extraction_service.pipeline.types import ExtractionResult, Method, SourceDocument

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build the extraction pipeline on startup."""
    setup_logging()
    cfg = ExtractionConfig.from_env()
    cfg.validate()
    app.state.orchestrator = build_orchestrator(cfg)
    app.state.material_store = build_material_store(cfg)
    logger.info("Extraction service started")
    yield
    app.state.orchestrator.close()
    logger.info("Extraction service stopped")


app = FastAPI(
    title="Document Extraction API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


@app.exception_handler(RequestValidationError)
async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    body = ErrorResponse(error=str(detail), error_kind=ErrorKind.INPUT.value)
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


if EXTRACT_CORS_ALLOW_CREDENTIALS and "*" in EXTRACT_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=EXTRACT_CORS_ALLOW_ORIGINS,
    allow_credentials=EXTRACT_CORS_ALLOW_CREDENTIALS,
    allow_methods=EXTRACT_CORS_ALLOW_METHODS,
    allow_headers=EXTRACT_CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > EXTRACT_MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a request ID and bind it to the logging context for the pipeline thread."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    token = bind_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["x-request-id"] = request_id
    return response


def _get_orchestrator(request: Request) -> ExtractionOrchestrator:
    """Dependency: the pipeline built during lifespan startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Extraction pipeline not initialised")
    return orchestrator


def _get_material_store(request: Request) -> MaterialStore:
    store = getattr(request.app.state, "material_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Material store not configured")
    return store


# -- Helpers ------------------------------------------------------------------


def _status_for(exc: ExtractionError) -> int:
    if isinstance(exc, InputError):
        return 400
    if exc.kind is ErrorKind.TIMED_OUT:
        return 504
    return 500


def _error_response(exc: ExtractionError) -> JSONResponse:
    # Input errors carry their own detail; other kinds use the canned message
    message = str(exc) if isinstance(exc, InputError) else user_message(exc.kind)
    attempted = exc.attempted if isinstance(exc, ExtractionFailedError) else None
    body = ErrorResponse(error=message, error_kind=exc.kind.value, attempted=attempted)
    return JSONResponse(status_code=_status_for(exc), content=body.model_dump(exclude_none=True))


def _unexpected_response() -> JSONResponse:
    body = ErrorResponse(error=user_message(ErrorKind.EXHAUSTED), error_kind=ErrorKind.EXHAUSTED.value)
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


def _to_response(result: ExtractionResult) -> ExtractResponse:
    return ExtractResponse(
        extracted_text=result.full_text,
        confidence=result.overall_confidence,
        method=result.method.value,
        page_count=result.page_count,
        processing_time_ms=result.processing_time_ms,
        metadata=result.metadata,
    )


def _decode_base64(value: str) -> bytes:
    # Tolerate data URLs ("data:application/pdf;base64,....")
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputError("file_base64 is not valid base64") from e


def _read_local_file(path: str) -> bytes:
    if not EXTRACT_LOCAL_FILE_ROOT:
        raise InputError("file_path is not enabled on this server")
    root = Path(EXTRACT_LOCAL_FILE_ROOT).resolve()
    target = (root / path).resolve()
    if not target.is_relative_to(root):
        raise InputError("file_path must stay within the configured file root")
    try:
        return target.read_bytes()
    except OSError as e:
        raise InputError(f"File not readable: {path}") from e


async def _run_pipeline(fn: Callable[[threading.Event], ExtractionResult]) -> ExtractionResult:
    """Run the blocking pipeline off the event loop; a cancelled request cancels the job."""
    cancel = threading.Event()
    try:
        return await asyncio.to_thread(fn, cancel)
    except asyncio.CancelledError:
        cancel.set()
        raise


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness(request: Request) -> HealthResponse:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Extraction pipeline not initialised")
    methods = set(orchestrator.methods)
    if Method.CLOUD_VISION_SYNC not in methods and Method.DOCUMENT_AI_BATCH not in methods:
        return HealthResponse(status="degraded", error="No cloud OCR strategy configured")
    return HealthResponse(status="ok")


# -- Extract ------------------------------------------------------------------


@app.post(
    "/v1/extract",
    response_model=ExtractResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
@limiter.limit(EXTRACT_RATE_LIMIT)
async def extract(
    request: Request,
    body: ExtractRequest,
    orchestrator: Annotated[ExtractionOrchestrator, Depends(_get_orchestrator)],
) -> ExtractResponse | JSONResponse:
    """Extract text: structural -> local OCR -> cloud sync OCR -> cloud batch OCR."""
    language = body.language or EXTRACT_DEFAULT_LANGUAGE
    try:
        if body.file_base64:
            data = _decode_base64(body.file_base64)
        else:
            data = await asyncio.to_thread(_read_local_file, body.file_path or "")
        doc = SourceDocument(data=data, mime_type=body.file_type, file_name=body.file_name)

        result = await _run_pipeline(
            lambda cancel: orchestrator.extract(
                doc,
                language=language,
                cancel=cancel,
                timeout_s=EXTRACT_REQUEST_TIMEOUT_S,
            )
        )
    except ExtractionError as e:
        logger.warning("Extraction failed for %s: %s (%s)", body.file_name, e.kind.value, e)
        return _error_response(e)
    except Exception:
        logger.exception("Unexpected extraction failure for %s", body.file_name)
        return _unexpected_response()

    return _to_response(result)


@app.post(
    "/v1/materials/{material_id}/extract",
    response_model=ExtractResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
@limiter.limit(EXTRACT_RATE_LIMIT)
async def extract_stored_material(
    request: Request,
    material_id: str,
    orchestrator: Annotated[ExtractionOrchestrator, Depends(_get_orchestrator)],
    store: Annotated[MaterialStore, Depends(_get_material_store)],
    body: MaterialExtractRequest | None = None,
) -> ExtractResponse | JSONResponse:
    """Fetch a stored material, extract its text, and optionally persist it back."""
    opts = body or MaterialExtractRequest()
    language = opts.language or EXTRACT_DEFAULT_LANGUAGE
    try:
        result = await _run_pipeline(
            lambda cancel: extract_material(
                orchestrator,
                store,
                material_id,
                language=language,
                persist=opts.persist,
                cancel=cancel,
                timeout_s=EXTRACT_REQUEST_TIMEOUT_S,
            )
        )
    except ExtractionError as e:
        logger.warning("Extraction failed for material %s: %s (%s)", material_id, e.kind.value, e)
        return _error_response(e)
    except Exception:
        logger.exception("Unexpected extraction failure for material %s", material_id)
        return _unexpected_response()

    return _to_response(result)
