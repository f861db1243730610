"""authcore ASGI application: routers, middleware, error rendering, health"""

import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.api.deps import get_fast_store
from authcore.api.v1 import auth, mfa, sessions
from authcore.api.v1.auth import clear_refresh_cookie
from authcore.config import settings
from authcore.core.database import get_db, init_db
from authcore.core.exceptions import BaseAPIException, ReuseDetectedError, StoreUnavailableError
from authcore.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from authcore.schemas.response import ErrorResponse, HealthResponse
from authcore.services.fast_store import FastStore

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}
SLOW_REQUEST_SECONDS = 1.0


def configure_logging() -> None:
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url=None,
)

# The refresh cookie needs credentialed CORS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag the request with an id, stamp security headers, record metrics."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update(SECURITY_HEADERS)
    response.headers["X-Request-ID"] = request_id

    # Label by route template so ids in paths don't explode cardinality.
    route = request.scope.get("route")
    path = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, path).observe(elapsed)
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning("Slow request %s %s: %.2fs (request_id=%s)", request.method, path, elapsed, request_id)
    return response


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    code: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, code=code, details=details, path=request.url.path)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s", exc.code, request.method, request.url.path)

    response = _error_response(request, exc.status_code, exc.message, exc.code, exc.details)
    if isinstance(exc, StoreUnavailableError):
        response.headers["Retry-After"] = "5"
    elif isinstance(exc, ReuseDetectedError):
        clear_refresh_cookie(response)
    elif exc.details.get("retry_after"):
        response.headers["Retry-After"] = str(exc.details["retry_after"])
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]) or "body", "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(
        request, status.HTTP_400_BAD_REQUEST, "Validation failed", "ValidationError", {"errors": errors}
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "A database error occurred", "InternalError"
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.critical("Unhandled %s on %s %s", exc.__class__.__name__, request.method, request.url.path, exc_info=exc)
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred", "InternalError"
    )


@app.on_event("startup")
async def startup_event():
    settings.validate_security_settings()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    init_db()


@app.get("/health")
def health_check(
    db: Session = Depends(get_db),
    fast_store: FastStore = Depends(get_fast_store),
):
    """Readiness of the relational store and Redis. 503 when either is down."""
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        logger.error("Health check: database unreachable (%s)", exc.__class__.__name__)
        db_ok = False

    try:
        redis_ok = fast_store.ping()
    except StoreUnavailableError:
        redis_ok = False

    healthy = db_ok and redis_ok
    body = HealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.APP_VERSION,
        database="ok" if db_ok else "unavailable",
        redis="ok" if redis_ok else "unavailable",
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    return {"name": settings.APP_NAME, "version": settings.APP_VERSION}


app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(sessions.router, prefix="/api/v1/auth", tags=["Sessions"])
app.include_router(mfa.router, prefix="/api/v1/auth/mfa", tags=["MFA"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "authcore.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
    )
