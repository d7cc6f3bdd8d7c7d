from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from spanlight.api.v1.router import api_router
from spanlight.core.exceptions import ClassifierError, ClassifierNotConfiguredError
from spanlight.core.logging import configure_logging
from spanlight.core.metrics import get_metrics_payload
from spanlight.core.request_context import log_context, reset_request_id, set_request_id
from spanlight.core.settings import settings
from spanlight.db.base import Base
from spanlight.db.session import get_engine, init_engine, is_initialized
from spanlight.prompts.loader import list_prompts
from spanlight.services.labeling_cache import reset_labeling_cache

# Registers the cache table on Base.metadata.
from spanlight.db import models  # noqa: F401


logger = logging.getLogger("spanlight")


def _is_polling_request(method: str, path: str) -> bool:
    if method != "GET":
        return False
    return path in ("/health", "/metrics") or path == "/v1/spans/cache/stats"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    init_engine(settings.database_url)

    if settings.db_auto_create and settings.database_url.startswith("sqlite"):
        engine = get_engine()
        Base.metadata.create_all(bind=engine)

    reset_labeling_cache()
    logger.info(
        "service_started",
        extra={
            "classifier_backend": settings.classifier_backend,
            "cache_persist": settings.span_cache_persist,
            "prompt_count": len(list_prompts()),
        },
    )
    try:
        yield
    finally:
        reset_labeling_cache()


app = FastAPI(title="spanlight", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        with log_context(session_id=request.headers.get("x-session-id")):
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.exception(
                    "request_failed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "duration_ms": duration_ms,
                    },
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            request_logger = logger.debug if _is_polling_request(request.method, request.url.path) else logger.info
            request_logger(
                "request_complete",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        response.headers["x-request-id"] = request_id
        return response
    finally:
        reset_request_id(token)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "request_id": request_id},
    )


@app.exception_handler(KeyError)
async def key_error_handler(request: Request, exc: KeyError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=400,
        content={"detail": f"{exc}", "request_id": request_id},
    )


@app.exception_handler(ClassifierError)
async def classifier_error_handler(request: Request, exc: ClassifierError):
    request_id = getattr(request.state, "request_id", None)
    status_code = 503 if isinstance(exc, ClassifierNotConfiguredError) else 502
    logger.warning(
        "classifier_error",
        extra={"error_type": type(exc).__name__, "error": str(exc), "model": exc.model},
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "error_type": type(exc).__name__, "request_id": request_id},
    )


@app.exception_handler(RuntimeError)
async def runtime_error_handler(request: Request, exc: RuntimeError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "request_id": request_id},
    )


@app.get("/health")
def health():
    return {"status": "ok", "database": is_initialized()}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(api_router)
