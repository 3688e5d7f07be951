import time
import uuid
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .deps import get_store
from .errors import CashierError
from .jsonlog import json_log
from .orders import short_id
from .remote_store import RemoteRecordStore
from .routers.orders import router as orders_router

app = FastAPI(title="Cashier Central Order Store", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)

# Order errors that escape a route map to these statuses; anything else is a 400.
ERROR_STATUS = {
    "not_found": 404,
    "conflict": 409,
    "already_active": 409,
    "remote_unavailable": 503,
}


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _order_id_from_path(path: str) -> str:
    # /orders/{id} and /orders/{id}/update
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 2 and parts[0] == "orders":
        return short_id(parts[1])
    return ""


@app.exception_handler(RequestValidationError)
def _request_validation_error(req: Request, exc: Exception):
    json_log(
        "warn",
        "http.request.invalid_order",
        request_id=_current_request_id(req),
        path=req.url.path,
        order_id=_order_id_from_path(req.url.path),
    )
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(CashierError)
def _cashier_error(req: Request, exc: CashierError):
    status = ERROR_STATUS.get(exc.code, 400)
    json_log(
        "warn",
        "http.request.order_error",
        request_id=_current_request_id(req),
        path=req.url.path,
        code=exc.code,
        status_code=status,
        error=str(exc),
    )
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        data_dir=settings.data_dir,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Request id + one log line per order request; the sync key itself is never logged.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": path,
        "order_id": _order_id_from_path(path),
        "keyed": bool((request.headers.get("X-Sync-Key") or "").strip()),
        "client_ip": request.client.host if request.client else None,
    }

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", duration_ms=int((time.time() - started) * 1000), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        json_log(
            "info",
            "http.request",
            status_code=response.status_code,
            duration_ms=int((time.time() - started) * 1000),
            **fields,
        )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(orders_router)


@app.get("/health")
def health(store: RemoteRecordStore = Depends(get_store)):
    return {
        "ok": True,
        "version": settings.api_version,
        "env": settings.env,
        "data_dir": store.data_dir,
        "started_at": STARTED_AT_UTC.isoformat(),
    }
