"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI

from rawviewer.api.middleware import CORSHeadersMiddleware
from rawviewer.api.routes import router
from rawviewer.config import get_settings
from rawviewer.imaging.decoder import RawDecoder
from rawviewer.imaging.pool import DecodePool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting rawviewer-api (addr=%s, max_concurrent=%s, max_upload_size=%s)",
        settings.api_addr,
        settings.max_concurrent,
        settings.max_upload_size,
    )

    decode_pool = DecodePool(settings)
    app.state.decode_pool = decode_pool
    app.state.decoder = RawDecoder(settings)

    logger.info("rawviewer-api ready")
    yield

    logger.info("Shutting down rawviewer-api")
    decode_pool.shutdown()
    logger.info("rawviewer-api shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="RAW Viewer API",
        description="Decodes uploaded RAW camera images into a binary pixel envelope",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(CORSHeadersMiddleware)

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application on the configured listen address."""
    settings = get_settings()
    uvicorn.run(app, host=settings.listen_host, port=settings.listen_port)
