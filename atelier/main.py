import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from atelier.api.admin import router as admin_router
from atelier.api.auth import router as auth_router
from atelier.api.gallery import router as gallery_router
from atelier.api.orders import router as orders_router
from atelier.api.payment import router as payment_router
from atelier.api.pricing import router as pricing_router
from atelier.api.tickets import router as tickets_router
from atelier.core.config import check_production_settings, settings
from atelier.core.database import engine, get_db, init_db
from atelier.core.errors import AccessTerminatedError, RateLimitExceededError
from atelier.core.rate_limit import limiter
from atelier.logging import setup_logging
from atelier.services.activity import log_activity

setup_logging(level=logging.INFO)
log = logging.getLogger("atelier")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    check_production_settings()
    init_db()
    if not settings.gateway_webhook_secret:
        log.warning("GATEWAY_WEBHOOK_SECRET not set: webhook signatures are not verified")
    if not settings.gateway_key_secret:
        log.warning("GATEWAY_KEY_SECRET not set: payment verification will reject every signature")
    log.info("Atelier API started (environment=%s)", settings.environment)
    yield


app = FastAPI(
    title="Atelier API",
    description="Commission orders, payments and support tickets",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail, headers: dict | None = None) -> JSONResponse:
    if isinstance(detail, dict):
        body = dict(detail)
        body.setdefault("error", "Request failed")
    else:
        body = {"error": detail}
    rid = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _burst_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    with Session(engine) as db:
        log_activity(db, None, "RATE_LIMIT_EXCEEDED", None, None, {"path": request.url.path, "limit": str(exc.detail)}, request)
    return _error_response(request, 429, {"error": "Too many requests", "retryAfter": 60}, headers={"Retry-After": "60"})


@app.exception_handler(RateLimitExceededError)
def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return _error_response(
        request,
        429,
        {"error": "Too many requests", "retryAfter": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(AccessTerminatedError)
def access_terminated_handler(request: Request, exc: AccessTerminatedError) -> JSONResponse:
    log.warning("Admin access terminated: path=%s permission=%s", request.url.path, exc.permission)
    return _error_response(
        request,
        403,
        {"error": "Access violation detected", "terminated": True, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in (err.get("loc") or []) if part not in ("body", "query", "path")]
        details.append({"field": ".".join(loc) or "body", "message": err.get("msg") or "Invalid value"})
    log.info("Validation failed: path=%s fields=%s", request.url.path, [d["field"] for d in details])
    return _error_response(request, 400, {"error": "Validation failed", "details": details})


app.add_exception_handler(RateLimitExceeded, _burst_limit_handler)


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception(
        "Unhandled exception: method=%s path=%s request_id=%s",
        request.method,
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    return _error_response(request, 500, "Internal server error")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(pricing_router)
app.include_router(orders_router)
app.include_router(payment_router)
app.include_router(tickets_router)
app.include_router(gallery_router)
app.include_router(admin_router)


@app.get("/health")
@app.get("/api/health")
@limiter.exempt
def health(request: Request, db: Session = Depends(get_db)):
    try:
        db.connection().execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        log.exception("Health check: database unreachable")
        database = "error"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "gateway_configured": bool(settings.gateway_key_id and settings.gateway_key_secret),
        "webhook_secret_configured": bool(settings.gateway_webhook_secret),
    }
