import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app import models  # noqa: F401  (registers tables on SQLModel.metadata)
from app.api.router import api_router
from app.config import settings
from app.core.database import init_db
from app.core.exceptions import ProviderError, StoreError

NOISY_LOGGERS = ("httpx", "httpcore", "stripe", "apscheduler", "uvicorn.access")


def setup_logging() -> None:
    """Send application logs to stdout as `time | level | logger | message`."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    from app.services.scheduler import scheduler

    setup_logging()
    logger.info("Salon billing API starting up")
    if not settings.stripe_enabled:
        logger.warning("STRIPE_SECRET_KEY not set: billing endpoints will answer 503")
    if settings.debug:
        await init_db()
    scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()
        logger.info("Salon billing API shutting down")


app = FastAPI(
    title="Salon Billing API",
    description="Stripe billing reconciliation and referral discounts",
    version="0.1.0",
    lifespan=lifespan,
)

# Deployed behind a TLS-terminating proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log failed requests and every webhook/internal call with its duration."""
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000

    path = request.url.path
    if response.status_code >= 400 or "/webhooks/" in path or "/internal/" in path:
        logger.info(
            f"{request.method} {path} -> {response.status_code} ({elapsed_ms:.0f}ms)"
        )

    return response


@app.exception_handler(StoreError)
async def store_error_handler(_request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"Billing store unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Billing store unavailable"},
    )


@app.exception_handler(ProviderError)
async def provider_error_handler(_request: Request, exc: ProviderError) -> JSONResponse:
    logger.error(f"Stripe call failed: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "Billing provider error"},
    )


app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
