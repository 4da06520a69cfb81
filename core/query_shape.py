"""
Query shape extraction - which indexes would serve a query.

Given a query's filter and sort clauses, derive the candidate index
specifications:

1. Filter-derived: every non-directive filter key (not starting with "$"),
   in filter order, all ascending.
2. Sort-derived: the sort clause verbatim, directions preserved.

Filter-derived candidates always come first. An empty result means no
index is needed and the caller can skip the store entirely.

Sorting mode (off by default) orders each candidate's fields and the
candidate list alphabetically. Output is easier to read, but it changes the
physical key order and so costs some selectivity on range queries.
"""

import logging
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from core.exceptions import InvalidIndexSpecError
from core.index_spec import FieldRef, IndexSpec

logger = logging.getLogger(__name__)

DIRECTIVE_PREFIX = "$"

# Declared field types that cannot be usefully indexed as a plain key
CONTAINER_TYPES = frozenset({"array", "object"})

SortClause = Union[
    str,
    Sequence[str],
    Sequence[Tuple[str, int]],
    Mapping[str, int],
]


def filter_fields(query_filter: Optional[Mapping[str, Any]]) -> List[str]:
    """Non-directive filter keys in declaration order."""
    if not query_filter:
        return []
    return [field for field in query_filter.keys() if not field.startswith(DIRECTIVE_PREFIX)]


def parse_sort(sort: Optional[SortClause]) -> List[FieldRef]:
    """
    Normalize any supported sort clause into field references.

    Supported forms:
        "name -role"              space separated tokens
        ["name", "-role"]         token list
        [("name", 1), ("role", -1)]
        {"name": 1, "role": -1}

    Raises:
        InvalidIndexSpecError: If the clause has an unsupported shape.
    """
    if not sort:
        return []

    if isinstance(sort, str):
        return [FieldRef.parse(token) for token in sort.split()]

    if isinstance(sort, Mapping):
        return [FieldRef.parse((path, direction)) for path, direction in sort.items()]

    if isinstance(sort, (list, tuple)):
        # A bare ("name", -1) pair is a single sort key, not two tokens
        if len(sort) == 2 and isinstance(sort[0], str) and isinstance(sort[1], int):
            return [FieldRef.parse(tuple(sort))]
        return [FieldRef.parse(item) for item in sort]

    raise InvalidIndexSpecError(
        "Unsupported sort clause", details={"type": type(sort).__name__}
    )


class QueryShapeExtractor:
    """
    Derives candidate index specifications from query shapes.

    Stateless apart from the sorting flag; one instance is shared by every
    collection handle.
    """

    def __init__(self, sort_indexes: bool = False):
        """
        Args:
            sort_indexes: Sort candidate fields and candidates alphabetically.
                Cosmetic, with a minor performance trade-off.
        """
        self.sort_indexes = sort_indexes

    def extract(
        self,
        query_filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortClause] = None,
    ) -> List[IndexSpec]:
        """
        Extract candidate index specifications from a query.

        Args:
            query_filter: Mapping of field path to match criteria.
            sort: Optional sort clause (see parse_sort()).

        Returns:
            Candidates, filter-derived first. Empty when no index is needed.
        """
        candidates: List[IndexSpec] = []

        fields = filter_fields(query_filter)
        if fields:
            candidates.append(IndexSpec(tuple(FieldRef(field) for field in fields)))

        sort_fields = parse_sort(sort)
        if sort_fields:
            candidates.append(IndexSpec(tuple(sort_fields)))

        if self.sort_indexes and candidates:
            candidates = sorted(
                (candidate.sorted_fields() for candidate in candidates),
                key=lambda candidate: candidate.joined(),
            )

        return candidates

    @staticmethod
    def drop_container_fields(
        candidates: Iterable[IndexSpec],
        field_meta: Mapping[str, Any],
    ) -> List[IndexSpec]:
        """
        Drop candidates that touch an array or embedded-object field.

        Args:
            candidates: Candidate specifications.
            field_meta: Field path -> declared metadata (a FieldMeta or a
                plain dict with a "type" entry). Unknown paths pass through.

        Returns:
            The candidates whose every field has a non-container type.
        """
        kept = []
        for candidate in candidates:
            blocked = [f.path for f in candidate.fields if _declared_type(field_meta.get(f.path)) in CONTAINER_TYPES]
            if blocked:
                logger.debug(f"Skipping candidate {candidate} - container fields {blocked}")
                continue
            kept.append(candidate)
        return kept


def _declared_type(meta: Any) -> Optional[str]:
    if meta is None:
        return None
    if isinstance(meta, dict):
        declared = meta.get("type")
    else:
        declared = getattr(meta, "type", None)
    return declared.lower() if isinstance(declared, str) else None
