from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings as global_settings
from .errors import AppError, StorageFailure
from .migrations import maybe_run_startup_migrations
from .observability import RequestContextMiddleware, configure_logging, get_request_id
from .routes.branches import router as branches_router
from .routes.credentials import router as credentials_router
from .routes.devices import router as devices_router
from .routes.notification_settings import router as notification_settings_router
from .routes.stats import router as stats_router
from .scheduler import DeviceStatusScheduler
from .services.notifications import AlertNotifier
from .services.status_check import GatewayFactory, default_gateway_factory
from .storage import SqlStorage, Storage, build_storage
from .version import __version__


logger = logging.getLogger("branchwatch")


def create_app(
    _settings: Settings | None = None,
    *,
    storage: Storage | None = None,
    gateway_factory: GatewayFactory | None = None,
    notifier: AlertNotifier | None = None,
) -> FastAPI:
    # Tests inject settings/storage/gateway without reloading modules.
    settings = _settings or global_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _setup_logging(settings)
        _init_db(app.state.storage, settings)
        scheduler: DeviceStatusScheduler | None = None
        if settings.enable_scheduler:
            scheduler = DeviceStatusScheduler(
                app.state.storage,
                app.state.gateway_factory,
                interval_s=settings.status_check_interval_s,
                notifier=app.state.notifier,
            )
            scheduler.start()
        else:
            logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")
        app.state.scheduler = scheduler
        yield
        if scheduler is not None:
            scheduler.stop()

    docs_url = "/docs" if settings.enable_docs else None
    redoc_url = "/redoc" if settings.enable_docs else None
    openapi_url = "/openapi.json" if settings.enable_docs else None

    app = FastAPI(
        title="BranchWatch Dashboard API",
        version=__version__,
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
    )

    # Composition root: every route and the scheduler share these instances.
    app.state.storage = storage if storage is not None else build_storage(settings)
    app.state.gateway_factory = gateway_factory or default_gateway_factory(settings)
    app.state.notifier = notifier if notifier is not None else AlertNotifier.from_settings(settings)
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request IDs / structured HTTP logs
    app.add_middleware(RequestContextMiddleware)

    def _runtime_features() -> dict:
        scheduler = app.state.scheduler
        return {
            "storage": {"backend": settings.storage_backend},
            "scheduler": {
                "enabled": bool(settings.enable_scheduler),
                "running": bool(scheduler is not None and scheduler.running),
                "interval_s": int(settings.status_check_interval_s),
            },
            "alerts": {"webhook": app.state.notifier.adapter is not None},
            "docs": {"enabled": bool(settings.enable_docs)},
        }

    @app.get("/healthz", include_in_schema=False)
    def healthz():
        return {"ok": True, "version": __version__, "env": settings.app_env, "features": _runtime_features()}

    @app.get("/api/health")
    def health_api():
        return {"ok": True, "env": settings.app_env, "version": app.version, "features": _runtime_features()}

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        rid = get_request_id() or "unknown"

        # Preserve explicit error envelopes when callers supply them.
        payload: dict[str, Any]
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            payload = exc.detail
        else:
            payload = {"error": {"code": "HTTP_ERROR", "message": str(exc.detail)}}

        error_obj = payload.get("error")
        if isinstance(error_obj, dict):
            error_obj.setdefault("request_id", rid)

        headers = dict(exc.headers or {})
        headers.setdefault("X-Request-ID", rid)
        return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        rid = get_request_id() or "unknown"
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": _jsonable_errors(exc),
                    "request_id": rid,
                }
            },
            headers={"X-Request-ID": rid},
        )

    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError):
        rid = get_request_id() or "unknown"
        if exc.status_code >= 500:
            logger.error(
                "request failed",
                exc_info=exc,
                extra={"fields": {"path": str(request.url.path), "code": exc.code}},
            )
        # Storage internals stay out of the response body.
        message = "Internal server error" if isinstance(exc, StorageFailure) else exc.message
        error: dict[str, Any] = {"code": exc.code, "message": message, "request_id": rid}
        if exc.hint:
            error["hint"] = exc.hint
        return JSONResponse(status_code=exc.status_code, content={"error": error}, headers={"X-Request-ID": rid})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        rid = get_request_id() or "unknown"
        logger.exception(
            "unhandled_exception",
            extra={"fields": {"path": str(request.url.path), "method": request.method}},
        )
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL", "message": "Internal server error", "request_id": rid}},
            headers={"X-Request-ID": rid},
        )

    app.include_router(credentials_router)
    app.include_router(branches_router)
    app.include_router(devices_router)
    app.include_router(notification_settings_router)
    app.include_router(stats_router)

    return app


def _jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # pydantic error contexts may hold exception objects; keep the JSON-safe parts.
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


def _setup_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=level, log_format=settings.log_format)
    logger.info("Logging initialized (level=%s)", settings.log_level)


def _init_db(storage: Storage, settings: Settings) -> None:
    if not isinstance(storage, SqlStorage):
        return
    maybe_run_startup_migrations(engine=storage.engine, settings=settings)
    logger.info("DB init complete")


# ASGI entrypoint
app = create_app()
