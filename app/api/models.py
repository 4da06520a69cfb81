"""
Request and response models for the admin API.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class QueryShapeRequest(BaseModel):
    """Filter / sort shape of a query to index for."""

    filter: Dict[str, Any] = Field(default_factory=dict)
    sort: Optional[Union[str, List[str], Dict[str, int]]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "filter": {"name": "Joe Random", "role": "user"},
                "sort": "-created",
            }
        }


class ReconcileResponse(BaseModel):
    collection: str
    outcome: str
    candidates: List[List[str]]
    built: List[str]
    existing: List[str]
    failures: List[Dict[str, str]]
    ignored: List[Dict[str, str]] = []


class CleanupRequest(BaseModel):
    """
    Overrides for one cleaning pass.

    Unset fields fall back to the configured cleaner options.
    """

    dry_run: Optional[bool] = None
    hit_min: Optional[int] = Field(None, ge=0)
    ignore_manual_spec: Optional[bool] = None
    ignore_errors: Optional[bool] = None

    def overrides(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CleanupResponse(BaseModel):
    dry_run: bool
    considered: List[str]
    candidates: List[Dict[str, Any]]
    dropped: List[str]
    errors: List[Dict[str, str]]


class IndexResponse(BaseModel):
    id: str
    name: Optional[str] = None
    key: Dict[str, Any]


class CollectionSummary(BaseModel):
    name: str
    cached: bool
    fresh: bool
    index_count: int
    fetches: int
    hits: int
    invalidations: int
    meta_fetches: int = 0


class ErrorResponse(BaseModel):
    error: str
    error_type: str
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
