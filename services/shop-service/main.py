"""Main application entry point."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import redis.asyncio as aioredis
import httpx
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from config import (
    API_VERSION,
    HTTP_TIMEOUT_SECONDS,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_PER_MINUTE_IP,
    RATE_LIMIT_PER_MINUTE_USER,
    REDIS_URL,
    TELEMETRY_ENABLED,
)
from database import init_db, engine
from monitoring import init_profiling
from logging_config import setup_logging
from routers import addresses, auth as auth_router, cart, cart_session, chat, orders, payment, products
from redis_rate_limiter import RedisRateLimiter

# Setup structured logging
setup_logging()
logger = logging.getLogger(__name__)


# Created up front because the rate limiter middleware needs it at import time;
# connections are opened lazily
async_redis_client = aioredis.from_url(REDIS_URL, decode_responses=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info("Starting application...")

    init_db()

    if TELEMETRY_ENABLED:
        RedisInstrumentor().instrument(redis_client=async_redis_client)
    app.state.async_redis_client = async_redis_client
    logger.info("Redis client initialized")

    http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
    if TELEMETRY_ENABLED:
        HTTPXClientInstrumentor().instrument_client(http_client)
    app.state.http_client = http_client
    logger.info("HTTP client initialized")

    init_profiling()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await http_client.aclose()
    await async_redis_client.aclose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Mechanical Shop Service",
    version=API_VERSION,
    lifespan=lifespan
)

if RATE_LIMIT_ENABLED:
    app.add_middleware(
        RedisRateLimiter,
        redis_client=async_redis_client,
        requests_per_minute_ip=RATE_LIMIT_PER_MINUTE_IP,
        requests_per_minute_user=RATE_LIMIT_PER_MINUTE_USER
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if TELEMETRY_ENABLED:
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=engine)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a client error like any other rejected request."""
    logger.info("Request validation failed", extra={
        "path": request.url.path,
        "error_count": len(exc.errors())
    })
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "mechanical-shop", "version": API_VERSION}


# Device cart routes go first so /api/cart/session is not taken for a cart item id
app.include_router(auth_router.router)
app.include_router(products.router)
app.include_router(cart_session.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(addresses.router)
app.include_router(payment.router)
app.include_router(chat.router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
