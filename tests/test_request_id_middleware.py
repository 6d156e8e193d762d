"""Request correlation across headers, error bodies and access logs."""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from ridecoord.main import app


client = TestClient(app)


@pytest.mark.parametrize("incoming", ["req-abc-123", "7f0e2c1a-webhook-retry"])
def test_echoes_caller_request_id(incoming: str) -> None:
    resp = client.get("/health", headers={"X-Request-ID": incoming})

    assert resp.headers["X-Request-ID"] == incoming
    assert float(resp.headers["X-Request-Duration-ms"]) >= 0


def test_mints_distinct_ids_per_request() -> None:
    first = client.get("/health").headers["X-Request-ID"]
    second = client.get("/health").headers["X-Request-ID"]

    assert first and second
    assert first != second


def test_error_body_carries_request_id(app_store) -> None:
    resp = client.get("/v1/auth/session", headers={"X-Request-ID": "req-err-1"})

    assert resp.status_code == 401
    assert resp.json()["error"]["request_id"] == "req-err-1"
    assert resp.headers["X-Request-ID"] == "req-err-1"


def test_access_line_logged_with_status(app_store, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="ridecoord.core.middleware"):
        client.get("/v1/auth/session", headers={"X-Request-ID": "req-log-1"})

    access = [r for r in caplog.records if r.getMessage() == "http.request"]
    assert access
    assert access[-1].status_code == 401
    assert access[-1].request_path == "/v1/auth/session"
