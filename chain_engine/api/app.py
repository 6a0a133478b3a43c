"""
FastAPI application factory.

Creates and configures the chain engine API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chain_engine import __version__
from chain_engine.api.routes import router
from chain_engine.config import Settings, get_settings
from chain_engine.orchestrator.scheduler import ChainScheduler
from chain_engine.storage.legacy import LegacyKeyValueStore
from chain_engine.storage.redis.legacy_store import RedisLegacyStore
from chain_engine.workers.handlers import build_default_factory

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events. A scheduler placed on app.state
    before startup is used as is.
    """
    settings: Settings = app.state.settings

    logger.info("Starting Chain Execution Engine...")

    legacy_store: Optional[LegacyKeyValueStore] = None
    scheduler: Optional[ChainScheduler] = getattr(app.state, "scheduler", None)

    if scheduler is None:
        if settings.legacy.enabled:
            legacy_store = await RedisLegacyStore.connect(settings.legacy)
            logger.info("Legacy store connection established")

        scheduler = ChainScheduler.create(
            build_default_factory(),
            settings=settings,
            legacy_store=legacy_store,
        )
        app.state.scheduler = scheduler

    try:
        await scheduler.start()
        logger.info(
            f"Chain Engine started - Environment: {settings.environment.value}, "
            f"storage: {scheduler.storage.base_dir}"
        )

        yield

        logger.info("Shutting down Chain Execution Engine...")
    finally:
        if legacy_store is not None:
            await legacy_store.close()

    logger.info("Chain Engine shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    scheduler: Optional[ChainScheduler] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Durable, time-bounded execution of multi-stage task chains",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    if scheduler is not None:
        app.state.scheduler = scheduler

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(router)

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
