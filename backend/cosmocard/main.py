"""
CosmoCard Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() assembles middleware, exception handlers and routers.
Who:   uvicorn (uvicorn cosmocard.main:app) and the HTTP tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                    FastAPI App                       │
    │                                                      │
    │  Middleware Chain:                                   │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐   │
    │  │ Rate Limit   │→│ Req ID   │→│ Access logging  │   │
    │  └──────────────┘ └──────────┘ └─────────────────┘   │
    │                                                      │
    │  Routes:                                             │
    │  /api/auth/*   /api/cards/*   /webhook               │
    │  /process-batch   /health                            │
    │                                                      │
    │  Exception Handlers:                                 │
    │  Validation→400 │ Auth→401 │ NotFound→404 │          │
    │  Conflict→409 │ RateLimit→429 │ Upstream/DB→500      │
    └──────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Report missing configuration (the server still starts)
    3. Create registry tables when running on SQLite
    4. Ensure the sheet tabs and header rows exist (best effort)

    Shutdown:
    1. Dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from cosmocard import __version__
from cosmocard.config import settings
from cosmocard.database import create_tables, dispose_engine
from cosmocard.exceptions import (
    AuthError,
    ConflictError,
    CosmoCardError,
    DatabaseError,
    NotFoundError,
    RateLimitExceededError,
    UpstreamError,
    ValidationError,
)
from cosmocard.middleware.logging import RequestLoggingMiddleware
from cosmocard.middleware.rate_limit import RateLimitMiddleware
from cosmocard.middleware.request_id import RequestIDMiddleware, request_id_var
from cosmocard.routes import auth, batch, cards, health, webhook
from cosmocard.services.sheets_service import sheets_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the whole process; called once at startup.

    Format: 2024-01-15T12:00:00 [INFO] cosmocard.services.card_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy in (
        "uvicorn.access",
        "sqlalchemy.engine",
        "httpcore",
        "httpx",
        "googleapiclient.discovery_cache",
    ):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("CosmoCard Backend %s starting up (%s)...", __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # The server still starts so /health can report what is missing
        logger.error("Configuration error: %s", str(e))

    if settings.database_url.startswith("sqlite"):
        await create_tables()
        logger.info("SQLite registry tables ensured")

    if settings.google_sheets_id:
        try:
            await sheets_service.ensure_structure()
        except CosmoCardError as e:
            logger.warning("Could not verify sheet structure: %s", e.message)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("CosmoCard Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    message: str,
    code: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "code": code,
            "request_id": request_id_var.get("") or None,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes and the shared error body.

    Handler hierarchy:
        ValidationError / RequestValidationError → 400
        AuthError                                → 401
        NotFoundError                            → 404
        ConflictError (StaleStage, DuplicateCard) → 409
        RateLimitExceededError                   → 429
        UpstreamError, DatabaseError             → 500 (message only in development)
        CosmoCardError, Exception                → 500 generic
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return error_response(400, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {field} {first.get('msg', '')}".strip()
        logger.warning("[%s] Request validation error: %s", request_id_var.get(""), message)
        return error_response(400, message, ValidationError.code)

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        logger.info("[%s] Auth rejected: %s", request_id_var.get(""), exc.message)
        return error_response(401, exc.message, exc.code)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(404, exc.message, exc.code)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.warning("[%s] Conflict: %s | %s", request_id_var.get(""), exc.message, exc.context)
        return error_response(409, exc.message, exc.code)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            429, exc.message, exc.code, headers={"Retry-After": str(exc.retry_after)}
        )

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError):
        rid = request_id_var.get("")
        logger.error("[%s] %s error: %s | Context: %s", rid, exc.service, exc.message, exc.context)
        message = exc.message if settings.is_development else "Внешний сервис недоступен, попробуйте позже"
        return error_response(500, message, exc.code)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        message = exc.message if settings.is_development else "Внутренняя ошибка сервера"
        return error_response(500, message, exc.code)

    @app.exception_handler(CosmoCardError)
    async def handle_app_error(request: Request, exc: CosmoCardError):
        logger.error("[%s] Application error: %s", request_id_var.get(""), exc.message)
        return error_response(500, exc.message, exc.code)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        message = str(exc) if settings.is_development else "Внутренняя ошибка сервера"
        return error_response(500, message, "internal_error")


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="CosmoCard API",
        description=(
            "Cosmetic product card workflow: email sign-in, card creation with Google Drive "
            "folders and a Google Sheets row, label and INCI analysis with Google Gemini, "
            "and product photo upload."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(cards.router)
    app.include_router(webhook.router)
    app.include_router(batch.router)
    app.include_router(health.router)

    return app


app = create_app()
