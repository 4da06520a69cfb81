"""
Configuration system for the auto-indexer.

Two layers:

1. Settings - pydantic-settings model loaded from environment variables and
   an optional .env file. Scalars only (throttle window, flags, thresholds,
   logging, connection details for the bundled admin server).
2. IndexerOptions / CleanerOptions - explicit, validated option structures
   consumed by the engine. They enumerate every recognized option with its
   default, including the callable filters that cannot come from the
   environment.

Configuration priority (highest to lowest):
1. Keyword arguments passed in code
2. Environment variables
3. .env file
4. Defaults
"""

from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Predicate over a collection id
ModelFilter = Callable[[str], bool]
# Predicate over a CleanupCandidate
IndexFilter = Callable[[Any], bool]


def accept_all(_: Any) -> bool:
    """Default filter - every collection is eligible."""
    return True


class Settings(BaseSettings):
    """
    Environment-backed configuration.

    All settings can be configured via environment variables with the same name.
    Example:
        INDEX_THROTTLE_SECONDS=30 CLEANER_DRY_RUN=true python run_api.py
    """

    # ============================================================
    # Query Path (index creation)
    # ============================================================

    # How long a collection's existing-index snapshot stays fresh
    INDEX_THROTTLE_SECONDS: float = 60.0

    # Drop the cached snapshot after a successful build so the next query sees it
    INDEX_RESET_ON_BUILD: bool = True

    # Swallow build failures instead of surfacing them to the query caller
    IGNORE_CREATE_ERRORS: bool = False

    # Abort the remaining candidates of a query on the first build failure
    FAIL_FAST: bool = False

    # Alphabetical candidate fields (readable, slightly less selective)
    SORT_INDEXES: bool = False

    # Never build indexes over declared array / object fields
    SKIP_CONTAINER_FIELDS: bool = True

    # ============================================================
    # Cleaner
    # ============================================================

    CLEANER_DRY_RUN: bool = False

    # Indexes with fewer hits than this are dropped
    CLEANER_HIT_MIN: int = 100

    # Keep indexes whose schema metadata declares {index: true}
    CLEANER_IGNORE_MANUAL_SPEC: bool = True

    # Log and continue on drop failures
    CLEANER_IGNORE_ERRORS: bool = True

    # ============================================================
    # Logging
    # ============================================================

    LOG_LEVEL: str = "INFO"

    # Use JSON structured logging (better for production)
    LOG_JSON_FORMAT: bool = False

    # ============================================================
    # Admin Server
    # ============================================================

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DATABASE: str = "app"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class IndexerOptions(BaseModel):
    """
    Options for the per-query index path.

    Validated at construction; unknown options are rejected.
    """

    model_filter: ModelFilter = accept_all
    index_throttle: float = Field(default=60.0, ge=0)
    index_reset_on_build: bool = True
    ignore_create_errors: bool = False
    fail_fast: bool = False
    sort_indexes: bool = False
    skip_container_fields: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "IndexerOptions":
        values = {
            "index_throttle": settings.INDEX_THROTTLE_SECONDS,
            "index_reset_on_build": settings.INDEX_RESET_ON_BUILD,
            "ignore_create_errors": settings.IGNORE_CREATE_ERRORS,
            "fail_fast": settings.FAIL_FAST,
            "sort_indexes": settings.SORT_INDEXES,
            "skip_container_fields": settings.SKIP_CONTAINER_FIELDS,
        }
        values.update(overrides)
        return cls(**values)


class CleanerOptions(BaseModel):
    """
    Options for the usage-based cleaner.

    index_filter may be a single predicate or a list of predicates that must
    all pass. The primary-key and manual-spec exclusions always apply on top.
    """

    model_filter: ModelFilter = accept_all
    index_filter: Optional[Union[IndexFilter, List[IndexFilter]]] = None
    dry_run: bool = False
    hit_min: int = Field(default=100, ge=0)
    ignore_manual_spec: bool = True
    ignore_errors: bool = True

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    @field_validator("index_filter")
    @classmethod
    def validate_index_filter(cls, v):
        """Reject non-callable entries up front instead of mid-pass."""
        if v is None:
            return v
        predicates = v if isinstance(v, list) else [v]
        for predicate in predicates:
            if not callable(predicate):
                raise ValueError("index_filter entries must be callable")
        return v

    @property
    def index_filters(self) -> List[IndexFilter]:
        if self.index_filter is None:
            return []
        if isinstance(self.index_filter, list):
            return list(self.index_filter)
        return [self.index_filter]

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "CleanerOptions":
        values = {
            "dry_run": settings.CLEANER_DRY_RUN,
            "hit_min": settings.CLEANER_HIT_MIN,
            "ignore_manual_spec": settings.CLEANER_IGNORE_MANUAL_SPEC,
            "ignore_errors": settings.CLEANER_IGNORE_ERRORS,
        }
        values.update(overrides)
        return cls(**values)


# Global settings instance
# This is initialized once at startup and shared across the application
settings = Settings()


def get_settings() -> Settings:
    """
    Dependency injection function for FastAPI.

    Returns:
        Global settings instance.
    """
    return settings
