"""
Domain-specific exception hierarchy for the auto-indexer.

Rationale for structured exceptions over generic Exception:
- Lets the query path tell a failed store round trip from a host veto
- Communicates failure modes clearly to the admin API
- Separates transient store failures from permanent rejections

Exception hierarchy:
- Store failures are split by operation (fetch, create, drop) since each
  one has a different propagation policy
- Hook vetoes and filtered collections are permanent: retrying changes nothing
"""


# ============================================================================
# Base Exception Hierarchy
# ============================================================================


class AutoIndexerError(Exception):
    """
    Base exception for all auto-indexer errors.

    WHY: Single root exception allows catching all domain errors while
    letting system errors (MemoryError, KeyboardInterrupt) propagate.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            details: Additional context for debugging (collection, index id, etc.)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# Operational Error Categories (transient vs permanent)
# ============================================================================


class TransientError(AutoIndexerError):
    """
    Transient error that may succeed on a later query or cleaning pass.

    The engine itself never retries: the failure surfaces once.
    """
    pass


class PermanentError(AutoIndexerError):
    """
    Permanent error that will never succeed without changing input or hooks.
    """
    pass


# ============================================================================
# Store Errors (collaborator round trips)
# ============================================================================


class StoreError(TransientError):
    """Base for failures reported by the backing document store."""
    pass


class StoreFetchError(StoreError):
    """
    Index metadata, usage statistics or field metadata could not be read.

    Aborts the current query-triggered pass for that collection, or the
    whole cleaning pass. Never cached as "no indexes".
    """
    pass


class StoreCreateError(StoreError):
    """
    Index build failed.

    SEEN: Key too large, too many indexes on collection, conflicting options.
    """
    pass


class StoreDropError(StoreError):
    """Index removal failed."""
    pass


# ============================================================================
# Permanent Errors
# ============================================================================


class HookVetoError(PermanentError):
    """
    A registered hook handler rejected a step.

    Aborts only the step it was raised for (one candidate build, one query,
    or the cleaning pass at the consider stage).
    """

    def __init__(self, message: str, reason: str = "", details: dict = None):
        super().__init__(message, details)
        self.reason = reason


class CollectionFilteredError(PermanentError):
    """Collection was rejected by the configured model filter."""
    pass


class InvalidIndexSpecError(PermanentError):
    """
    A field token, sort clause or display id could not be parsed.

    Examples: empty field name, direction other than 1 / -1.
    """
    pass


# ============================================================================
# Exception Helpers
# ============================================================================


def is_retryable(error: Exception) -> bool:
    """
    Check if error is transient and could succeed on a later attempt.

    Returns:
        True if error is transient, False if permanent.
    """
    return isinstance(error, TransientError)


def get_http_status(error: Exception) -> int:
    """
    Map domain exception to HTTP status code for the admin API.

    Returns:
        HTTP status code (400, 404, 409, 502, 500).
    """
    if isinstance(error, InvalidIndexSpecError):
        return 400
    elif isinstance(error, CollectionFilteredError):
        return 404
    elif isinstance(error, HookVetoError):
        return 409  # Conflict
    elif isinstance(error, StoreError):
        return 502  # Bad Gateway
    else:
        return 500
