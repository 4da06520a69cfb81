"""
FastAPI admin application for the auto-indexer.

Operators use it to inspect cached index snapshots, run the query hook for
a given query shape, and trigger (or dry-run) the usage-based cleaner
outside the query path.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.api.dependencies import get_auto_indexer
from app.api.health import router as health_router
from app.api.models import (
    CleanupRequest,
    CleanupResponse,
    CollectionSummary,
    ErrorResponse,
    IndexResponse,
    QueryShapeRequest,
    ReconcileResponse,
)
from app.config import CleanerOptions, IndexerOptions, Settings, get_settings
from app.logging_config import configure_structured_logging
from app.services.auto_indexer import AutoIndexer
from core.exceptions import AutoIndexerError, get_http_status, is_retryable

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
API_V1_PREFIX = "/v1"

router = APIRouter(prefix=API_V1_PREFIX, tags=["indexes"])


@router.get("/collections", response_model=List[CollectionSummary])
async def list_collections(indexer: AutoIndexer = Depends(get_auto_indexer)):
    """Registered collections with the state of their index cache."""
    summaries = []
    for name in indexer.collections:
        stats = indexer.handle(name).cache.get_statistics()
        summaries.append(CollectionSummary(name=name, **{k: v for k, v in stats.items() if k != "collection"}))
    return summaries


@router.get("/collections/{collection}/indexes", response_model=List[IndexResponse])
async def list_indexes(collection: str, indexer: AutoIndexer = Depends(get_auto_indexer)):
    """Existing indexes of a registered collection, served through its throttled cache."""
    handle = indexer.handle(collection)
    if handle is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Collection {collection} is not registered",
        )
    indexes = await handle.cache.get_existing()
    return [IndexResponse(id=index.display_id, name=index.name, key=index.key) for index in indexes]


@router.post("/collections/{collection}/query", response_model=ReconcileResponse)
async def observe_query(
    collection: str,
    request: QueryShapeRequest,
    indexer: AutoIndexer = Depends(get_auto_indexer),
):
    """Run the query hook for a filter / sort shape and report what changed."""
    result = await indexer.on_query(collection, request.filter, request.sort)
    return result.to_dict()


@router.post("/cleanup", response_model=CleanupResponse)
async def run_cleanup(
    request: Optional[CleanupRequest] = None,
    indexer: AutoIndexer = Depends(get_auto_indexer),
):
    """Run one usage-based cleaning pass (honors dry_run)."""
    overrides = request.overrides() if request else {}
    report = await indexer.clean_indexes(**overrides)
    return report.to_dict()


@router.get("/statistics")
async def statistics(indexer: AutoIndexer = Depends(get_auto_indexer)):
    """Hook bus and per-collection cache statistics."""
    return indexer.get_statistics()


async def domain_error_handler(request: Request, exc: AutoIndexerError) -> JSONResponse:
    """Map domain errors to HTTP responses."""
    status_code = get_http_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    body = ErrorResponse(
        error=exc.message,
        error_type=type(exc).__name__,
        retryable=is_retryable(exc),
        details={k: v for k, v in exc.details.items()},
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def build_mongo_indexer(settings: Settings):
    """
    Build a MongoDB-backed indexer from settings.

    Returns:
        (indexer, client) - the caller closes the client on shutdown.
    """
    from motor.motor_asyncio import AsyncIOMotorClient

    from infrastructure.stores.mongo import MongoStore

    client = AsyncIOMotorClient(settings.MONGO_URI)
    store = MongoStore(client[settings.MONGO_DATABASE])
    indexer = AutoIndexer(
        store,
        options=IndexerOptions.from_settings(settings),
        cleaner_options=CleanerOptions.from_settings(settings),
    )
    return indexer, client


def create_app(indexer: Optional[AutoIndexer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the admin application.

    Args:
        indexer: Pre-built indexer (tests, embedding hosts). When omitted a
            MongoDB-backed one is built from settings at startup.
        settings: Settings override; defaults to the global settings.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if app.state.indexer is None:
            app.state.indexer, client = build_mongo_indexer(settings)
            await app.state.indexer.register_all()
            logger.info(f"Auto-indexer connected to database {settings.MONGO_DATABASE}")
        try:
            yield
        finally:
            if client is not None:
                client.close()

    app = FastAPI(
        title="Auto-Indexer Admin API",
        description="Inspect, build and retire automatically managed indexes",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.indexer = indexer
    app.add_exception_handler(AutoIndexerError, domain_error_handler)
    app.include_router(health_router)
    app.include_router(router)
    return app


def build_app() -> FastAPI:
    """Uvicorn factory entry point (`app.api.main:build_app`)."""
    settings = get_settings()
    configure_structured_logging(level=settings.LOG_LEVEL, enable_json=settings.LOG_JSON_FORMAT)
    return create_app(settings=settings)
