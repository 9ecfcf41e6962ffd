import logging
from contextlib import asynccontextmanager
from os import getenv
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.router import api_router
from app.config.settings import get_settings
from app.logging.setup import configure_logging
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY
from app.persistence.migrations import run_migrations
from app.services.cron_service import CronService
from app.services.errors import DomainError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Apply DB migrations (non-fatal)
    try:
        run_migrations()
    except Exception as exc:  # pragma: no cover
        logger.error("DB migration failed — running in degraded mode: %s", exc, exc_info=True)

    # Start reconciliation sweep scheduler
    try:
        await CronService.start()
    except Exception as exc:  # pragma: no cover
        logger.error("Cron service failed to start: %s", exc, exc_info=True)

    yield

    try:
        await CronService.stop()
    except Exception as exc:  # pragma: no cover
        logger.warning("Cron service stop error: %s", exc)


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message, extra={"correlation_id": _correlation_id(request)})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {field} {first.get('msg', '')}".strip()
    return JSONResponse(status_code=400, content={"error": message})


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # CORS: allow frontend origins (restrict in production via CORS_ORIGINS env var)
    cors_env = getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        allowed_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
    else:
        allowed_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
        ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-Id",
            "X-Idempotency-Key",
            "X-Confirmation-Token",
            "X-User-Confirmation",
        ],
        expose_headers=["X-Correlation-Id"],
    )

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        transfer_requests_per_minute=settings.transfer_rate_limit_per_minute,
    )
    # Outermost of the two so rate-limited responses still carry the correlation id.
    app.add_middleware(RequestContextMiddleware)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        method = request.method
        REQUEST_COUNT.labels(path=path, method=method, status=response.status_code).inc()
        REQUEST_LATENCY.labels(path=path, method=method).observe(elapsed)
        return response

    app.include_router(api_router)
    return app


app = create_app()
