"""
FastAPI application entry point.
Responsibilities:
1. Configure logging from LOG_LEVEL
2. Build the payment gateway and object storage clients once (app.state)
3. Create tables and start the reconciliation loop on startup
4. Include routers
5. Translate every error into a JSON {"error": ...} body
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace import __version__
from marketplace.config import get_settings
from marketplace.database import SessionLocal, init_db
from marketplace.errors import MarketplaceError
from marketplace.routers import applications, conversations, notifications, orders, payments, submissions
from marketplace.services import S3Storage, StripeGateway
from marketplace.services.reconciliation import sweep_forever

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_payment_gateway() -> StripeGateway:
    return StripeGateway(api_key=settings.STRIPE_SECRET_KEY, currency=settings.STRIPE_CURRENCY)


def build_storage() -> S3Storage:
    return S3Storage(
        bucket=settings.STORAGE_BUCKET,
        region=settings.STORAGE_REGION,
        url_expiry_seconds=settings.SIGNED_URL_EXPIRY_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: tables, external clients, reconciliation loop.
    Shutdown: cancel the loop.
    Clients already placed on app.state (tests) are left alone.
    """
    logger.info(f"Marketplace API {__version__} starting (database: {settings.DATABASE_URL})")
    init_db()
    if getattr(app.state, "payment_gateway", None) is None:
        app.state.payment_gateway = build_payment_gateway()
    if getattr(app.state, "storage", None) is None:
        app.state.storage = build_storage()

    sweeper = None
    if settings.BACKGROUND_WORKERS_ENABLED:
        sweeper = asyncio.create_task(
            sweep_forever(SessionLocal, app.state.payment_gateway, app.state.storage, settings)
        )

    yield

    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    logger.info("Marketplace API shutting down")


# ===============================
# APPLICATION INSTANCE
# ==============================

app = FastAPI(
    title="Creator Marketplace",
    description="Brand/creator application, submission, order and payment workflows",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================
# ROUTERS
# ============================

app.include_router(applications.router, tags=["Applications"])
app.include_router(submissions.router, tags=["Submissions"])
app.include_router(orders.router, tags=["Orders"])
app.include_router(notifications.router, tags=["Notifications"])
app.include_router(payments.router, tags=["Payments"])
app.include_router(conversations.router, tags=["Conversations"])

# =============================
# ERROR HANDLERS
# ============================

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing fields are a 400 with the first problem as the message."""
    errors = exc.errors()
    if not errors:
        message = "Invalid request"
    else:
        first = errors[0]
        message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
        if first.get("type") == "missing":
            message = "Missing required fields"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ===========================================================
# HEALTH CHECK
# ==========================================================

@app.get("/", tags=["Health"])
async def root():
    return {
        "status": "ok",
        "version": __version__,
    }
