"""Tests for sensitive data filtering and JSON formatting in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from resilient_state.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    redact,
    set_request_id,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_api_keys():
    """Ensure SensitiveDataFilter redacts API key fields."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_store_token_and_values():
    """Stored values and the shared store token never reach the log."""

    logger, stream = _capture("test_store_redaction")

    logger.info(
        "state_store.write",
        extra={
            "rest_token": "AXyzUpstashToken",
            "value": {"email": "someone@example.com"},
            "operation": "set",
        },
    )

    output = stream.getvalue()

    assert "AXyzUpstashToken" not in output
    assert "someone@example.com" not in output
    assert "set" in output


def test_event_name_and_extras_are_flattened_into_json():
    logger, stream = _capture("test_flatten")

    logger.warning(
        "state_store.fallback",
        extra={"operation": "incr", "error_type": "ConnectTimeout"},
    )

    payload = json.loads(stream.getvalue())

    assert payload["message"] == "state_store.fallback"
    assert payload["level"] == "warning"
    assert payload["logger"] == "test_flatten"
    assert payload["operation"] == "incr"
    assert payload["error_type"] == "ConnectTimeout"
    assert "timestamp" in payload


def test_request_id_from_context_is_attached():
    logger, stream = _capture("test_request_id")

    set_request_id("req-abc")
    try:
        logger.info("circuit_breaker.opened", extra={"service": "payments"})
    finally:
        clear_request_id()

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-abc"


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _capture("test_safe_fields")

    logger.info(
        "safe_event",
        extra={
            "route": "/v1/admin/circuit-breakers",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    output = stream.getvalue()

    assert "/v1/admin/circuit-breakers" in output
    assert "200" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-api-key": "secret-key",
                "user-agent": "pytest",
            },
            "safe_data": {
                "count": 5,
                "type": "test",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_redact_handles_sequences():
    data = [{"token": "t1"}, ("plain", {"password": "p"})]

    assert redact(data) == [{"token": "[REDACTED]"}, ("plain", {"password": "[REDACTED]"})]
