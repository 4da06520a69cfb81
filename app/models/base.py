"""
Record models exchanged with the document store.

These Pydantic models describe what the store reports (existing indexes,
usage counters, declared field metadata) and what the cleaner derives
from it (cleanup candidates). Nothing here is persisted by the engine;
the store stays the source of truth.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.index_spec import display_id, is_primary_key, normalize_key


class ExistingIndex(BaseModel):
    """Snapshot of one index as reported by the store."""

    name: Optional[str] = None
    key: Dict[str, Any] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True)

    @field_validator("key")
    @classmethod
    def normalize_directions(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Coerce numeric directions to int (stores may report 1.0)."""
        return normalize_key(v)

    @property
    def display_id(self) -> str:
        return display_id(self.key)

    @property
    def is_primary(self) -> bool:
        return is_primary_key(self.key)


class IndexUsage(BaseModel):
    """Per-index usage counters ($indexStats style)."""

    name: Optional[str] = None
    key: Dict[str, Any] = Field(..., min_length=1)
    ops: int = Field(default=0, ge=0)
    since: Optional[datetime] = None

    @field_validator("key")
    @classmethod
    def normalize_directions(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return normalize_key(v)


class FieldMeta(BaseModel):
    """
    Schema-declared attributes of one field path.

    `index=True` marks a manually declared index, which the cleaner leaves
    alone when ignore_manual_spec is enabled.
    """

    type: Optional[str] = None
    index: bool = False

    model_config = ConfigDict(extra="allow")

    @field_validator("type")
    @classmethod
    def lowercase_type(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class CleanupCandidate(BaseModel):
    """
    One index considered by a cleaning pass.

    Exists only for the duration of that pass.
    """

    id: str
    collection: str
    path: str
    key: Dict[str, Any]
    name: Optional[str] = None
    hits: int = 0
    since: Optional[datetime] = None
    meta: Optional[FieldMeta] = None
    manually_declared: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "users.{name,-role}",
                "collection": "users",
                "path": "name",
                "key": {"name": 1, "role": -1},
                "name": "name_1_role_-1",
                "hits": 3,
                "since": "2024-01-01T00:00:00Z",
                "meta": None,
                "manually_declared": False,
            }
        }
    )

    @classmethod
    def from_usage(cls, collection: str, usage: IndexUsage) -> "CleanupCandidate":
        """Derive a candidate from store usage counters."""
        return cls(
            id=f"{collection}.{display_id(usage.key)}",
            collection=collection,
            path=next(iter(usage.key)),
            key=dict(usage.key),
            name=usage.name,
            hits=usage.ops,
            since=usage.since,
        )

    @property
    def is_primary(self) -> bool:
        return is_primary_key(self.key)
