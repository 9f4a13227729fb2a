"""
ShelfLens API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import ShelfLensError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("ShelfLens API starting up", version=settings.app_version)
    yield
    logger.info("ShelfLens API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Multi-tenant shelf detection, quota and share-of-shelf service",
    lifespan=lifespan,
)


@app.exception_handler(ShelfLensError)
async def shelflens_error_handler(request: Request, exc: ShelfLensError):
    """Render typed failures as {error, message, details}."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request.failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import detections, notifications, quota, skus, tenants
from notifications.websocket import router as ws_router

app.include_router(detections.router)
app.include_router(quota.router)
app.include_router(skus.router)
app.include_router(notifications.router)
app.include_router(tenants.router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {"status": "healthy", "version": settings.app_version}
