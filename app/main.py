"""
Main FastAPI application for the Tarot Video Storefront API.
Serves health, purchases, subscriptions, purchased content and metrics.
"""
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.deps import get_chain_client
from app.api.routes import health, purchases, videos
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger("api")


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("api_starting", extra={"app_env": settings.app_env, "chain_name": settings.chain_name})
    yield
    if get_chain_client.cache_info().currsize:
        get_chain_client().close()


app = FastAPI(
    title="Tarot Video Storefront API",
    description="On-chain payment verification and content access for the video storefront",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:80"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    start = time.time()
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "request_completed",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "latency_ms": round((time.time() - start) * 1000, 1),
        },
    )
    return response


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(purchases.router)
app.include_router(videos.router)
app.include_router(metrics_router)
