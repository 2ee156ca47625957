"""
Pixel Grid Server
==================

FastAPI server for the pixel board.

Features:
- Approved item listing and pending item creation
- PIX charges through Mercado Pago, confirmed by polling or webhook
- Status-guarded discard of unpaid items
- Background reaper for pending items whose checkout was abandoned
- Headless PNG snapshot of the board
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from .config import Settings

# Import services
from .services.mercadopago_client import MercadoPagoClient
from .services.image_fetcher import ImageFetcher

# Import store and render cache
from .store.pixel_store import PixelStore
from .grid.image_cache import ImageCache

# Import API routers
from .api import pixel_routes, payment_routes


settings = Settings()

# Shared service instances
pixel_store: PixelStore = None
mp_client: MercadoPagoClient = None
image_fetcher: ImageFetcher = None
image_cache: ImageCache = None


async def reap_pending_loop(store: PixelStore, max_age: timedelta, interval: float):
    """Delete pending items older than ``max_age`` every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = store.reap_stale_pending(max_age)
        except SQLAlchemyError as e:
            logger.error(f"[PIXEL-GRID] Reaper pass failed: {e}")
            continue
        if removed:
            logger.info(f"[PIXEL-GRID] Reaped {removed} abandoned pending item(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global pixel_store, mp_client, image_fetcher, image_cache

    logger.info("[PIXEL-GRID] Starting up...")

    # Initialize store
    pixel_store = PixelStore(database_url=settings.database_url)

    # Initialize payment provider client
    if not settings.mercadopago_access_token:
        logger.warning("[PIXEL-GRID] PIXELGRID_MERCADOPAGO_ACCESS_TOKEN is not set, charges will fail")
    mp_client = MercadoPagoClient(
        access_token=settings.mercadopago_access_token,
        base_url=settings.mercadopago_api_url,
        timeout=settings.mercadopago_timeout
    )

    # Initialize image decoding for snapshots
    image_fetcher = ImageFetcher()
    image_cache = ImageCache(image_fetcher)

    # Inject into route modules
    pixel_routes.pixel_store = pixel_store
    pixel_routes.mp_client = mp_client
    pixel_routes.image_cache = image_cache
    pixel_routes.settings = settings

    payment_routes.pixel_store = pixel_store
    payment_routes.mp_client = mp_client
    payment_routes.settings = settings

    reaper = asyncio.create_task(reap_pending_loop(
        pixel_store,
        timedelta(seconds=settings.pending_ttl_seconds),
        settings.reaper_interval_seconds
    ))

    logger.info("[PIXEL-GRID] Services initialized")

    yield

    # Cleanup
    logger.info("[PIXEL-GRID] Shutting down...")
    reaper.cancel()
    try:
        await reaper
    except asyncio.CancelledError:
        pass
    image_cache.clear()
    await image_fetcher.close()
    await mp_client.close()
    pixel_store.close()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Pixel board with PIX payments",
    version=settings.version,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render errors as ``{"error": ...}``."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_errors(exc)}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"[PIXEL-GRID] Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# Include API routers
app.include_router(pixel_routes.router)
app.include_router(payment_routes.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "pixel-grid",
        "version": settings.version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "pixelgrid.server:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
