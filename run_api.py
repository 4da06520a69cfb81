"""
Script to run the auto-indexer admin API server.

This script starts the FastAPI application using uvicorn. The indexer's
caches and locks are in-process state, so the server runs a single worker.
"""

import logging

import uvicorn

from app.config import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting Auto-Indexer admin API on {settings.HOST}:{settings.PORT}")
    logger.info(f"Database: {settings.MONGO_DATABASE}, dry-run cleanup: {settings.CLEANER_DRY_RUN}")

    uvicorn.run(
        "app.api.main:build_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        workers=1,
        log_level=settings.LOG_LEVEL.lower(),
    )
