"""
FastAPI dependencies for dependency injection.

The AutoIndexer instance lives on app.state, set by create_app() or by the
lifespan handler when the server builds its own MongoDB-backed indexer.
"""

from fastapi import HTTPException, Request, status

from app.services.auto_indexer import AutoIndexer


def get_auto_indexer(request: Request) -> AutoIndexer:
    """
    Get the application's auto-indexer.

    Raises:
        HTTPException: 503 if the indexer is not initialized yet.
    """
    indexer = getattr(request.app.state, "indexer", None)
    if indexer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auto-indexer not initialized",
        )
    return indexer
