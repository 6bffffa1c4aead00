import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    ServiceUnavailableError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.db.init import init_db
from app.models.user import User
from app.routers import deposits, oraclepay

API_VERSION = "1.0.0"
QUIET_PATHS = {"/health", "/health/ready"}

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(title="Cashier API", version=API_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    # The OraclePay background task inherits this context, so its logs carry the id too.
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    bind_request_id(request_id)
    started = time.perf_counter()
    response = await call_next(request)
    if request.url.path not in QUIET_PATHS:
        log.info(
            "request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(oraclepay.router, prefix="/v1/oraclepay", tags=["oraclepay"])
app.include_router(deposits.router, prefix="/v1/deposits", tags=["deposits"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.env,
            release=f"cashier-api@{API_VERSION}",
            traces_sample_rate=0.1,
        )
        log.info("startup", msg="Sentry enabled")
    await init_db()
    log.info("startup", msg="DB connected", db=settings.mongodb_db_name)


@app.get("/health")
async def health():
    """Liveness: the process answers."""
    return {"status": "ok"}


@app.get("/health/ready")
async def ready():
    """Readiness: MongoDB answers a ping, so callbacks can be persisted."""
    try:
        await User.get_motor_collection().database.command("ping")
    except PyMongoError as e:
        log.warning("readiness_failed", error=str(e))
        raise ServiceUnavailableError("Database unavailable")
    return {"status": "ready"}
