"""
Tests for core/exceptions.py and the JSON log formatter.
"""

import json
import logging

import pytest

from app.logging_config import JSONFormatter
from core.exceptions import (
    AutoIndexerError,
    CollectionFilteredError,
    HookVetoError,
    InvalidIndexSpecError,
    StoreCreateError,
    StoreFetchError,
    get_http_status,
    is_retryable,
)


class TestExceptionHierarchy:
    """Test error classification."""

    def test_details_in_str(self):
        error = StoreCreateError("Failed to create index", details={"collection": "users"})

        assert str(error) == "Failed to create index (collection=users)"
        assert error.message == "Failed to create index"

    def test_veto_carries_reason(self):
        error = HookVetoError("vetoed", reason="maintenance")

        assert error.reason == "maintenance"
        assert error.details == {}

    @pytest.mark.parametrize(
        "error,retryable",
        [
            (StoreFetchError("x"), True),
            (StoreCreateError("x"), True),
            (HookVetoError("x"), False),
            (InvalidIndexSpecError("x"), False),
            (ValueError("x"), False),
        ],
    )
    def test_is_retryable(self, error, retryable):
        assert is_retryable(error) is retryable

    @pytest.mark.parametrize(
        "error,status",
        [
            (InvalidIndexSpecError("x"), 400),
            (CollectionFilteredError("x"), 404),
            (HookVetoError("x"), 409),
            (StoreFetchError("x"), 502),
            (AutoIndexerError("x"), 500),
        ],
    )
    def test_http_status(self, error, status):
        assert get_http_status(error) == status


class TestJSONFormatter:
    """Test structured log output."""

    def test_context_fields_lifted(self):
        record = logging.LogRecord("app.services", logging.INFO, __file__, 10, "Built index %s", ("name",), None)
        record.collection = "users"
        record.index_id = "name"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Built index name"
        assert payload["level"] == "INFO"
        assert payload["collection"] == "users"
        assert payload["index_id"] == "name"
        assert "operation" not in payload

    def test_only_context_fields_lifted(self):
        record = logging.LogRecord("app.services", logging.INFO, __file__, 10, "Dropped index", (), None)
        record.extra_fields = {"tenant": "acme"}

        payload = json.loads(JSONFormatter().format(record))

        assert "tenant" not in payload
        assert "extra_fields" not in payload
