"""
Carpool - Trust Service
Trust scores, reliability and booking eligibility for carpool members.

Start with:
    uvicorn app.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from app.config import settings

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()

from app.api.trust import trust_router, reliability_router  # noqa: E402
from app.api.members import members_router, admin_router  # noqa: E402
from app.auth import router as auth_router  # noqa: E402
from app.compute import pipeline  # noqa: E402
from app.db import init_schema, close as close_db  # noqa: E402

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", version=VERSION, environment=settings.ENVIRONMENT)

    # Schema setup is idempotent; a missing database must not stop the API from booting
    try:
        init_schema()
        pipeline.get_persistence().init_schema()
        logger.info("neo4j_schema_initialized")
    except Exception as e:
        logger.warning("neo4j_init_failed", error=str(e))

    cache = pipeline.get_cache()
    logger.info("compute_pipeline_initialized", cache_enabled=cache.enabled)

    yield

    pipeline.shutdown()
    close_db()
    logger.info("service_stopped")


app = FastAPI(
    title="Carpool Trust Service",
    description="Trust scoring, reliability and booking eligibility for carpool members.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Retry-After"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    start = time.time()
    request.state.request_id = request_id
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    if request.url.path not in ("/health", "/v1/trust/health"):
        logger.info("request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                    request_id=request_id)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "Something went wrong.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


app.include_router(trust_router)
app.include_router(reliability_router)
app.include_router(members_router)
app.include_router(admin_router)
app.include_router(auth_router)


# === Core endpoints ===

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "carpool-trust",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
async def root():
    return {
        "name": "Carpool Trust Service",
        "version": VERSION,
        "endpoints": {
            "trust_me": "GET /v1/trust/me",
            "trust_member": "GET /v1/trust/users/{user_id}",
            "trust_calculate": "POST /v1/trust/calculate",
            "trust_refresh": "POST /v1/trust/refresh",
            "badges": "GET /v1/trust/badges/{user_id}",
            "reliability": "GET /v1/reliability/me",
            "eligibility": "GET /v1/reliability/eligibility",
            "health": "GET /health",
            "docs": "GET /docs",
        },
    }
