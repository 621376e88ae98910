"""
api.py

WHAT THIS FILE IS FOR
---------------------
This module defines the FastAPI application entrypoint for the
Resume ATS Scorer API.

It is responsible for:
- Creating the FastAPI app instance and its lifespan (persistence wiring)
- Building the process-wide collaborators once:
    - AIGateway (owns the credential pool + rotation cursor)
    - ResultStore (Mongo when configured, in-memory otherwise)
    - ResumeScoringService
- Registering middleware for:
    - Correlation ID propagation (X-Correlation-Id), bound into structlog
    - API version validation (X-API-Version)
- Mapping failures to responses:
    - scoring endpoint: ScoreResponse with error=true and a sanitized message
    - other endpoints:  {code, message, subErrors, timestamp, correlationId}
    - anything unexpected: 500 INTERNAL_ERROR in the same envelope
- Exposing HTTP endpoints:
    - GET  /health and /healthz
    - POST /api/v1/resume-scores   (multipart upload -> ScoreResponse)
    - GET  /api/v1/resume-scores   (stored results for a user)
    - POST /api/v1/resume-text     (multipart upload -> verified text)
    - POST /api/v1/chat            (free-form prompt through the gateway)

USER IDENTITY
-------------
Authentication happens upstream. The gateway in front of this service
sets X-User-Email; the `email` form/query field is the fallback for
unauthenticated callers. The value is only used as a persistence key.
X-User-Id, when the gateway sends it, is stored on the first record
saved for a (user, file) pair.

DESIGN INTENT
-------------
This file contains ONLY the HTTP layer:
- routing
- middleware
- exception handling
- response formatting

Pipeline logic lives in functions/scoring/*.
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import motor.motor_asyncio
import structlog
from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from functions.scoring.ai_gateway import AIGateway, CredentialPool
from functions.scoring.result_store import InMemoryResultRepository, MongoResultRepository, ResultStore
from functions.scoring.resume_scoring_service import ResumeScoringService
from functions.scoring.text_extractor import Document, TextExtractor
from functions.utils.errors import EmptyInputError, ScoringError
from functions.utils.logging_config import configure_logging
from functions.utils.settings import Settings, get_settings
from schemas.input_schema import ChatRequest, ScoreRequest, ScoringMode
from schemas.output_schema import (
    ChatResponse,
    ExtractTextResponse,
    ScoreResponse,
    ScoringHistoryResponse,
    ScoringRecordView,
)

logger = structlog.get_logger(__name__)

settings = get_settings()
configure_logging(settings.log_level, json_output=settings.log_json)

CORRELATION_HEADER = "X-Correlation-Id"
API_VERSION_HEADER = "X-API-Version"
USER_EMAIL_HEADER = "X-User-Email"
USER_ID_HEADER = "X-User-Id"
SUPPORTED_API_VERSIONS = {"1"}


# -------------------------------------------------------------------
# Collaborators (constructed once, shared by every request)
# -------------------------------------------------------------------
def _build_repository(cfg: Settings) -> tuple[Any, Optional[Any]]:
    if not cfg.mongo_url:
        logger.info("result_repository_selected", backend="memory")
        return InMemoryResultRepository(), None

    client = motor.motor_asyncio.AsyncIOMotorClient(cfg.mongo_url)
    collection = client[cfg.mongo_database][cfg.mongo_collection]
    logger.info(
        "result_repository_selected",
        backend="mongo",
        database=cfg.mongo_database,
        collection=cfg.mongo_collection,
    )
    return MongoResultRepository(collection), client


gateway = AIGateway(
    CredentialPool(settings.credential_tokens()),
    str(settings.gemini_api_url),
    timeout_seconds=settings.upstream_timeout_seconds,
    credential_placement=settings.credential_placement,
)
repository, mongo_client = _build_repository(settings)
store = ResultStore(repository)
extractor = TextExtractor(tolerance=settings.extraction_length_tolerance)
svc = ResumeScoringService(
    extractor=extractor,
    gateway=gateway,
    store=store,
    default_file_name_prefix=settings.default_file_name_prefix,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", service=settings.service_name, credential_count=len(gateway.pool))
    if isinstance(repository, MongoResultRepository):
        await repository.init_indexes()

    yield

    if mongo_client is not None:
        mongo_client.close()
    logger.info("service_stopped", service=settings.service_name)


app = FastAPI(
    title="Resume ATS Scorer",
    version="1.0.0",
    description="Scores uploaded resumes with a generative model and stores results per user and file.",
    lifespan=lifespan,
)


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _get_or_create_correlation_id(request: Request) -> str:
    incoming = request.headers.get(CORRELATION_HEADER)
    return incoming.strip() if incoming else f"corr_{uuid.uuid4().hex}"


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or f"corr_{uuid.uuid4().hex}"


def _get_api_version(request: Request) -> str:
    v = getattr(request.state, "api_version", None)
    return str(v) if v else request.headers.get(API_VERSION_HEADER, "1").strip() or "1"


def _model_response(model: BaseModel, *, http_status: int = 200) -> JSONResponse:
    return JSONResponse(status_code=http_status, content=model.model_dump(by_alias=True, mode="json"))


def _std_error(
    *,
    code: str,
    message: str,
    correlation_id: str,
    http_status: int,
    api_version: str = "1",
    sub_errors: Optional[list[dict[str, Any]]] = None,
) -> JSONResponse:
    payload = {
        "code": code,
        "message": message,
        "subErrors": sub_errors or [],
        "timestamp": int(time.time()),
        "correlationId": correlation_id,
    }
    headers = {
        CORRELATION_HEADER: correlation_id,
        API_VERSION_HEADER: api_version,
    }
    return JSONResponse(status_code=http_status, content=payload, headers=headers)


def _resolve_user_email(request: Request, fallback: Optional[str]) -> Optional[str]:
    authenticated = (request.headers.get(USER_EMAIL_HEADER) or "").strip()
    supplied = (fallback or "").strip()

    if authenticated:
        if supplied and supplied.lower() != authenticated.lower():
            logger.warning("user_email_mismatch_using_authenticated", supplied_present=True)
        return authenticated
    return supplied or None


# -------------------------------------------------------------------
# Middleware
# -------------------------------------------------------------------
@app.middleware("http")
async def api_version_middleware(request: Request, call_next):
    correlation_id = _correlation_id(request)
    version = request.headers.get(API_VERSION_HEADER, "1").strip() or "1"

    if version not in SUPPORTED_API_VERSIONS:
        return _std_error(
            code="INVALID_FIELD_VALUE",
            message="Invalid API version",
            correlation_id=correlation_id,
            http_status=400,
            sub_errors=[
                {
                    "field": API_VERSION_HEADER,
                    "errors": [{"code": "isIn", "message": "Supported versions: 1"}],
                }
            ],
        )

    request.state.api_version = version
    response = await call_next(request)
    response.headers[API_VERSION_HEADER] = version
    return response


# Registered last so it runs first; every error path sees the correlation id.
@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = _get_or_create_correlation_id(request)
    request.state.correlation_id = correlation_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


# -------------------------------------------------------------------
# Exception handlers
# -------------------------------------------------------------------
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    correlation_id = _correlation_id(request)

    sub_errors: list[dict[str, Any]] = []
    for err in exc.errors():
        field = ".".join(str(x) for x in err.get("loc", []) if x != "body") or "body"
        sub_errors.append(
            {
                "field": field,
                "errors": [{"code": err.get("type"), "message": err.get("msg")}],
            }
        )

    logger.info("request_validation_failed", error_count=len(sub_errors))

    return _std_error(
        code="VALIDATION_FAILED",
        message="Validation failed",
        correlation_id=correlation_id,
        http_status=400,
        api_version=_get_api_version(request),
        sub_errors=sub_errors,
    )


@app.exception_handler(ScoringError)
async def scoring_error_handler(request: Request, exc: ScoringError):
    logger.warning("scoring_error", path=request.url.path, **exc.to_dict())
    return _std_error(
        code=exc.kind,
        message=exc.public_message,
        correlation_id=_correlation_id(request),
        http_status=exc.http_status,
        api_version=_get_api_version(request),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning("http_exception", status_code=exc.status_code, detail=str(exc.detail))

    message = str(exc.detail.get("message")) if isinstance(exc.detail, dict) else str(exc.detail)
    sub_errors: list[dict[str, Any]] = []

    if isinstance(exc.detail, dict) and exc.detail.get("code"):
        sub_errors.append(
            {
                "field": exc.detail.get("field", "request"),
                "errors": [{"code": exc.detail["code"], "message": message}],
            }
        )

    return _std_error(
        code="BAD_GATEWAY" if exc.status_code >= 500 else "HTTP_ERROR",
        message=message,
        correlation_id=_correlation_id(request),
        http_status=exc.status_code,
        api_version=_get_api_version(request),
        sub_errors=sub_errors,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return _std_error(
        code="INTERNAL_ERROR",
        message="Internal server error",
        correlation_id=_correlation_id(request),
        http_status=500,
        api_version=_get_api_version(request),
    )


# -------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------
@app.get("/healthz")
@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.service_name,
        "environment": settings.environment,
    }


@app.post("/api/v1/resume-scores", response_model=ScoreResponse)
async def score_resume(
    request: Request,
    file: UploadFile = File(...),
    mode: ScoringMode = Form(ScoringMode.QUICK),
    deep_check: Optional[bool] = Form(None, alias="deepCheck"),
    job_title: Optional[str] = Form(None, alias="jobTitle"),
    job_description: Optional[str] = Form(None, alias="jobDescription"),
    email: Optional[str] = Form(None),
) -> JSONResponse:
    user_email = _resolve_user_email(request, email)
    if not user_email:
        body = ScoreResponse(
            error=True,
            error_message="Email is required so the result can be saved.",
        )
        return _model_response(body, http_status=400)

    # deepCheck is the legacy form flag; it wins when explicitly set
    if deep_check is not None:
        mode = ScoringMode.DETAILED if deep_check else ScoringMode.QUICK

    score_request = ScoreRequest(
        document_bytes=await file.read(),
        file_name=file.filename,
        mode=mode,
        job_title=job_title,
        job_description=job_description,
        user_email=user_email,
        user_id=(request.headers.get(USER_ID_HEADER) or "").strip() or None,
    )

    try:
        result = await svc.score(score_request)
    except ScoringError as exc:
        body = ScoreResponse(error=True, error_message=exc.public_message)
        return _model_response(body, http_status=exc.http_status)

    if settings.enable_debug_metadata:
        logger.info(
            "resume_score_response_debug",
            score=result.score,
            error=result.error,
            feedback_length=len(result.feedback_markdown),
        )

    return _model_response(result)


@app.get("/api/v1/resume-scores", response_model=ScoringHistoryResponse)
async def list_resume_scores(
    request: Request,
    email: Optional[str] = Query(None),
) -> JSONResponse:
    user_email = _resolve_user_email(request, email)
    if not user_email:
        raise HTTPException(
            status_code=400,
            detail={"code": "EMAIL_REQUIRED", "field": "email", "message": "Email is required"},
        )

    records = await store.list_for_user(user_email)
    body = ScoringHistoryResponse(
        user_email=user_email,
        records=[ScoringRecordView.from_record(r) for r in records],
    )
    return _model_response(body)


@app.post("/api/v1/resume-text", response_model=ExtractTextResponse)
async def extract_resume_text(file: UploadFile = File(...)) -> JSONResponse:
    file_name = svc.resolve_file_name(file.filename)
    text = await svc.extract_verified_text(Document(await file.read(), file_name))
    if not text.strip():
        raise EmptyInputError(f"No text found in {file_name!r}")
    body = ExtractTextResponse(file_name=file_name, extracted_text=text, length=len(text))
    return _model_response(body)


@app.post("/api/v1/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest) -> JSONResponse:
    reply = await gateway.dispatch_text(payload.prompt)
    return _model_response(ChatResponse(reply=reply.text))
