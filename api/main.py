"""
api/main.py -- FastAPI application entry point for Marquee.

Run with:      uvicorn asgi:app --reload

Every route passes through the authenticate dependency (registered on the
FastAPI app itself), so each request resolves to a Principal before any
route-specific gate runs.

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency
  2. enforce_deadline      -- whole-request timeout, 500 deadline_exceeded
  3. vary_authorization    -- Vary: Authorization on every routed response
  4. SlowAPIMiddleware     -- per-route rate limits from api.limiter
  5. CORSMiddleware        -- CORS headers for trusted browser origins
  6. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan handles startup (engine, stores, mailer, background runner, token
purge task) and shutdown (cancel purge task, flush background work, dispose
engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.comments import router as comments_router
from api.routes.v1.movies import router as movies_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.users import router as users_router
from auth.dependencies import authenticate
from auth.store import CredentialStore
from catalog.store import CatalogStore
from core.background import BackgroundRunner
from core.config import get_settings
from core.database import create_db_engine
from core.mailer import Mailer
from core.validation import ValidationFailed

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("marquee.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired tokens every 6 hours.

    Expired tokens already fail every lookup; this only keeps the table small.
    The blocking store call runs in a worker thread so the event loop stays
    free. CancelledError from task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        removed = await asyncio.to_thread(app.state.credentials.purge_expired_tokens)
        logger.info("Purged %d expired tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- creates missing tables.
      2. Stores second -- CredentialStore seeds the permission registry.
      3. Mailer and background runner -- registration hands mail to both.
      4. Purge task last -- references app.state.credentials.
    """
    logger.info("Marquee API starting up (env=%s)", settings.env)
    engine = create_db_engine(settings.database_url, settings.db_timeout_seconds)
    app.state.engine = engine
    app.state.credentials = CredentialStore(engine)
    app.state.catalog = CatalogStore(engine)
    app.state.mailer = Mailer.from_settings(settings)
    app.state.background = BackgroundRunner(settings.background_workers)
    logger.info("Stores initialized (mail %s)", "enabled" if app.state.mailer.enabled else "disabled")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    # Flush queued welcome emails before the engine goes away.
    app.state.background.shutdown(wait=True)
    engine.dispose()
    logger.info("Marquee API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Marquee API",
    description="Movie catalog with user accounts, opaque bearer tokens, and per-user permissions.",
    version=settings.version,
    lifespan=lifespan,
    dependencies=[Depends(authenticate)],
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the last one added is the
# outermost. @app.middleware("http") functions below are added after these
# and therefore run before them.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_trusted_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def vary_authorization(request: Request, call_next):
    """Responses depend on the Authorization header; tell caches so."""
    response = await call_next(request)
    response.headers.add_vary_header("Authorization")
    return response


@app.middleware("http")
async def enforce_deadline(request: Request, call_next):
    """Abandon a request that runs past REQUEST_TIMEOUT_SECONDS.

    Store calls are additionally bounded by the driver timeout configured in
    core/database.py, so a blocked statement fails on its own before this
    fires in most cases.
    """
    try:
        return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
    except asyncio.TimeoutError:
        logger.error("Deadline exceeded on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="deadline_exceeded",
                    message="the server could not complete the request in time",
                )
            ).model_dump(exclude_none=True),
            headers={"Vary": "Authorization"},
        )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(movies_router, prefix="/v1", tags=["Movies"])
app.include_router(comments_router, prefix="/v1", tags=["Comments"])
app.include_router(users_router, prefix="/v1", tags=["Users"])
app.include_router(permissions_router, prefix="/v1", tags=["Permissions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="rate limit exceeded",
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


# Pydantic error types that mean the body itself is unusable rather than one
# field holding a bad value.
_MALFORMED_BODY_ERRORS = {"json_invalid", "extra_forbidden"}

# Client-facing wording for Pydantic error types raised outside our own field rules.
_FIELD_MESSAGES = {"missing": "must be provided"}


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Split Pydantic request errors into 400 (malformed body) and 422 (bad field values)."""
    errors = exc.errors()
    for err in errors:
        loc = tuple(err.get("loc", ()))
        if err.get("type") in _MALFORMED_BODY_ERRORS or len(loc) <= 1:
            if err.get("type") == "extra_forbidden":
                message = f"body contains unknown key {loc[-1]!r}"
            elif err.get("type") == "missing":
                message = "body must not be empty"
            else:
                message = "body contains badly-formed JSON"
            return JSONResponse(
                status_code=400,
                content=ErrorResponse(error=ErrorDetail(code="bad_request", message=message)).model_dump(
                    exclude_none=True
                ),
            )

    fields: dict[str, str] = {}
    for err in errors:
        key = ".".join(str(part) for part in err["loc"][1:])
        message = _FIELD_MESSAGES.get(err.get("type"), str(err.get("msg", "")).removeprefix("Value error, "))
        fields.setdefault(key, message)
    return _failed_validation(fields)


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed) -> JSONResponse:
    return _failed_validation(exc.errors)


def _failed_validation(fields: dict[str, str]) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="request validation failed",
                fields=fields,
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers and gates raise HTTPException with a dict detail. When
    detail is already a structured dict, use it directly as the error field.
    Headers (WWW-Authenticate on 401) are carried over.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception and traceback go to the log only, never to the response
    body. This is also where a failure to serialize a response ends up.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="the server encountered a problem and could not process your request",
            )
        ).model_dump(exclude_none=True),
        headers={"Vary": "Authorization"},
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/v1/healthcheck", tags=["Health"])
def healthcheck(request: Request) -> JSONResponse:
    """Return liveness, environment, version, and whether the database answers."""
    database = "ok"
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check database probe failed")
        database = "unavailable"
    body = HealthResponse(
        status="available" if database == "ok" else "degraded",
        environment=settings.env,
        version=settings.version,
        database=database,
    )
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body.model_dump())
