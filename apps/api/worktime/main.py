from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from worktime.core.config import settings
from worktime.core.dependencies import build_work_service, get_event_bus, get_repository
from worktime.core.errors import RateLimitedError, WorkError
from worktime.routes.system import router as system_router
from worktime.routes.work import router as work_router
from worktime.services.supabase_rest import close_http

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        service = build_work_service(get_repository(), get_event_bus())
        result = await service.sync_holiday_calendar_for_today()
        logger.info("Startup holiday sync done: years=%s, written=%s", result.years, result.written_years)
    except Exception:
        # Holiday rows are also synced lazily on first read; do not block startup.
        logger.exception("Startup holiday sync failed")
    yield
    await close_http()


app = FastAPI(title="Worktime API", version="0.1.0", lifespan=lifespan)


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FastApiIntegration()],
        traces_sample_rate=max(0.0, min(settings.sentry_traces_sample_rate, 1.0)),
        send_default_pii=False,
        environment=settings.app_env,
    )


_init_sentry()


def _origin(url: str) -> str:
    # FRONTEND_URL may include a trailing slash or a path.
    p = urlparse(url)
    if p.scheme and p.netloc:
        return f"{p.scheme}://{p.netloc}"
    return url.rstrip("/")


_ALLOWED_ORIGINS = sorted(
    {
        _origin(str(settings.frontend_url)),
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    }
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_server_error_responses(request: Request, call_next):
    response = await call_next(request)
    if response.status_code >= 500:
        logger.error(
            "Server response status %s: %s %s",
            response.status_code,
            request.method,
            request.url.path,
        )
    return response


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.exception_handler(WorkError)
async def work_error_handler(request: Request, exc: WorkError):
    if exc.status_code >= 500:
        logger.warning(
            "Request failed: path=%s, code=%s, message=%s",
            request.url.path,
            exc.to_detail()["code"],
            exc.message,
        )
    headers = {"retry-after": str(exc.retry_after)} if isinstance(exc, RateLimitedError) else None
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(work_router, prefix="/api")
app.include_router(system_router, prefix="/api")
