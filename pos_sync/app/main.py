import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import EmptyCartError, InvalidTransitionError, NotFoundError, StorageError
from .logs import json_log
from .routers.cart import router as cart_router
from .routers.orders import router as orders_router
from .routers.sync import router as sync_router
from ..workers.context import build_context

API_VERSION = "0.1.0"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def create_app(settings: Settings = None, transport=None, connectivity=None) -> FastAPI:
    """
    Local agent API: the loopback surface UI collaborators use for cart/order operations
    and sync entry points. `transport` and `connectivity` exist for tests.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = await build_context(settings, transport=transport, connectivity=connectivity)
        app.state.ctx = ctx
        if settings.background_sync:
            ctx.trigger.start()
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(title="POS Sync Agent", version=API_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.started_at = datetime.now(timezone.utc)

    def _error(status_code: int, detail: str, exc: Exception):
        content = {"detail": detail}
        if settings.exposes_errors:
            content["error"] = str(exc)
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(EmptyCartError)
    def _empty_cart(_req: Request, exc: Exception):
        return _error(409, "cart is empty", exc)

    @app.exception_handler(NotFoundError)
    def _not_found(_req: Request, exc: Exception):
        return _error(404, "not found", exc)

    @app.exception_handler(InvalidTransitionError)
    def _invalid_transition(_req: Request, exc: Exception):
        return _error(409, "invalid status transition", exc)

    @app.exception_handler(ValueError)
    def _value_error(_req: Request, exc: Exception):
        return _error(400, "invalid value", exc)

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: Exception):
        content = {"detail": "validation failed"}
        if settings.exposes_errors and hasattr(exc, "errors"):
            content["errors"] = exc.errors()
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(StorageError)
    def _storage_error(req: Request, exc: Exception):
        rid = _current_request_id(req)
        json_log("error", "http.request.storage", request_id=rid, path=req.url.path, error=str(exc))
        content = {"detail": "local storage unavailable", "request_id": rid}
        if settings.exposes_errors:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        path = request.url.path
        method = request.method
        try:
            response = await call_next(request)
        except Exception as exc:
            json_log("error", "http.request.error", request_id=rid, method=method, path=path,
                     duration_ms=int((time.time() - started) * 1000), error=str(exc))
            raise
        response.headers["X-Request-Id"] = rid
        if path != "/health":
            json_log("info", "http.request", request_id=rid, method=method, path=path,
                     status_code=response.status_code, duration_ms=int((time.time() - started) * 1000))
        return response

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/meta")
    def meta():
        return {
            "service": "pos-sync-agent",
            "version": API_VERSION,
            "env": settings.env,
            "uptime_seconds": int((datetime.now(timezone.utc) - app.state.started_at).total_seconds()),
        }

    app.include_router(cart_router)
    app.include_router(orders_router)
    app.include_router(sync_router)
    return app


app = create_app()
