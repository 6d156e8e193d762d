"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from ridecoord.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    hash_identity,
    set_request_id,
)


def _logger_with_stream(name: str) -> tuple[logging.Logger, StringIO]:
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


def test_sensitive_filter_redacts_tokens_and_signatures():
    """Ensure bearer tokens and webhook signatures never reach the output."""

    logger, stream = _logger_with_stream("test_redaction")

    logger.info(
        "test_event",
        extra={
            "authorization": "Bearer eyJhbGciOi.secret",
            "stripe-signature": "t=1,v1=abcdef",
            "fencing_token": "f3nc3",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "eyJhbGciOi" not in output
    assert "v1=abcdef" not in output
    assert "f3nc3" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_raw_payloads():
    """Ensure raw webhook bodies are redacted."""

    logger, stream = _logger_with_stream("test_payload_redaction")

    logger.info(
        "webhook_event",
        extra={
            "payload": '{"customer_email": "rider@example.com"}',
            "event_id": "evt_1",
        },
    )

    output = stream.getvalue()

    assert "rider@example.com" not in output
    assert "evt_1" in output


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _logger_with_stream("test_safe_fields")

    logger.info(
        "safe_event",
        extra={
            "action": "signin",
            "scope": "fine",
            "retry_after_s": 60,
            "identity_hash": hash_identity("10.0.0.1"),
        },
    )

    output = stream.getvalue()

    assert "signin" in output
    assert hash_identity("10.0.0.1") in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _logger_with_stream("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "authorization": "Bearer secret-token",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-token" not in output
    assert "pytest" in output


def test_request_id_attached_to_records():
    logger, stream = _logger_with_stream("test_request_id")

    set_request_id("req-42")
    try:
        logger.info("lock.acquired", extra={"ttl_s": 10})
    finally:
        clear_request_id()

    record = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert record["request_id"] == "req-42"
    assert record["message"] == "lock.acquired"


def test_hash_identity_is_stable_and_opaque():
    digest = hash_identity("user-7_10.0.0.1")

    assert digest == hash_identity("user-7_10.0.0.1")
    assert len(digest) == 16
    assert "10.0.0.1" not in digest


def test_identity_fields_are_hashed_not_dropped():
    """Identities stay correlatable across lines without being readable."""

    logger, stream = _logger_with_stream("test_identity_hashing")

    logger.warning(
        "rate_limit.identity_blocked",
        extra={"identity": "user-7_10.0.0.1", "client_address": "10.0.0.1", "block_s": 60},
    )
    logger.info("lock.acquired", extra={"resource": "signoutLock:user-7"})

    first, second = (json.loads(line) for line in stream.getvalue().strip().splitlines())
    assert first["identity"] == hash_identity("user-7_10.0.0.1")
    assert first["client_address"] == hash_identity("10.0.0.1")
    assert first["block_s"] == 60
    assert second["resource"] == hash_identity("signoutLock:user-7")
    assert "10.0.0.1" not in stream.getvalue()


def test_embedded_credentials_are_masked():
    logger, stream = _logger_with_stream("test_embedded")

    logger.info(
        "webhook.rejected",
        extra={"reason": "bad header t=1,v1=deadbeef", "note": "sent Bearer abc.def.ghi"},
    )

    output = stream.getvalue()
    assert "deadbeef" not in output
    assert "abc.def.ghi" not in output
    assert "bad header t=1," in output


def test_record_is_scrubbed_once_across_handlers():
    """A second handler must not hash an already hashed identity."""

    logger, first_stream = _logger_with_stream("test_two_handlers")
    second_stream = StringIO()
    second = logging.StreamHandler(second_stream)
    second.addFilter(SensitiveDataFilter())
    second.setFormatter(JsonFormatter())
    logger.addHandler(second)

    logger.info("token.revoked", extra={"jti": "abc123"})

    for stream in (first_stream, second_stream):
        assert json.loads(stream.getvalue())["jti"] == hash_identity("abc123")


def test_formatter_scrubs_without_filter():
    logger = logging.getLogger("test_formatter_only")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    logger.info("auth.success", extra={"subject": "user-7", "access_token": "t0k"})

    record = json.loads(stream.getvalue())
    assert record["subject"] == hash_identity("user-7")
    assert record["access_token"] == "[REDACTED]"
