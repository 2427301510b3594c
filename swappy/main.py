from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from swappy.api import get_api_router
from swappy.core.config import Settings, get_settings
from swappy.core.jobs import get_job_backend
from swappy.core.logging import configure_logging, get_logger
from swappy.core.storage import get_blob_store
from swappy.services import Catalog, DerivedAssetPipeline, IngestService, QueryService


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=log_level, fmt=settings.log_format)
    logger = get_logger(component="app")

    storage = get_blob_store(settings)
    catalog = Catalog(snapshot_path=settings.catalog_path, flush_interval_s=settings.catalog_flush_interval_s)
    catalog.load()
    pipeline = DerivedAssetPipeline(settings, storage, catalog, get_job_backend(settings))
    ingest_service = IngestService(settings, storage, catalog, pipeline)
    query_service = QueryService(settings, storage, catalog)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.storage = storage
        app.state.catalog = catalog
        app.state.pipeline = pipeline
        app.state.ingest_service = ingest_service
        app.state.query_service = query_service
        await pipeline.start()
        logger.info("app_started", environment=settings.environment, storage_root=str(settings.storage_root))
        try:
            yield
        finally:
            await pipeline.stop()
            await asyncio.to_thread(catalog.close)
            logger.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.include_router(get_api_router())
    return app


app = create_app()


__all__ = ["app", "create_app"]
