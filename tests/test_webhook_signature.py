"""Tests for webhook signature verification."""

import pytest

from ridecoord.core.errors import ValidationAppError
from ridecoord.services.webhook_signature import HmacSignatureVerifier, sign_payload

SECRET = "whsec_unit"
BODY = b'{"id":"evt_1"}'


@pytest.fixture
def verifier(fake_time) -> HmacSignatureVerifier:
    return HmacSignatureVerifier(SECRET, tolerance_seconds=300, clock=fake_time.time)


def test_accepts_valid_signature(verifier: HmacSignatureVerifier, fake_time) -> None:
    verifier.verify(BODY, sign_payload(SECRET, BODY, int(fake_time.time())))


def test_accepts_any_matching_v1_entry(verifier: HmacSignatureVerifier, fake_time) -> None:
    ts = int(fake_time.time())
    header = sign_payload(SECRET, BODY, ts) + ",v1=deadbeef"
    verifier.verify(BODY, header)


@pytest.mark.parametrize(
    "header",
    [None, "", "v1=abc", "t=notanumber,v1=abc", "t=1000000"],
)
def test_rejects_malformed_headers(verifier: HmacSignatureVerifier, header) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        verifier.verify(BODY, header)
    assert exc_info.value.code == "webhook_signature_invalid"


def test_rejects_tampered_body(verifier: HmacSignatureVerifier, fake_time) -> None:
    header = sign_payload(SECRET, BODY, int(fake_time.time()))
    with pytest.raises(ValidationAppError):
        verifier.verify(b'{"id":"evt_2"}', header)


def test_rejects_wrong_secret(verifier: HmacSignatureVerifier, fake_time) -> None:
    header = sign_payload("other-secret", BODY, int(fake_time.time()))
    with pytest.raises(ValidationAppError):
        verifier.verify(BODY, header)


def test_rejects_stale_timestamp(verifier: HmacSignatureVerifier, fake_time) -> None:
    header = sign_payload(SECRET, BODY, int(fake_time.time()) - 301)
    with pytest.raises(ValidationAppError) as exc_info:
        verifier.verify(BODY, header)
    assert "tolerance" in exc_info.value.message


def test_requires_secret() -> None:
    with pytest.raises(ValueError):
        HmacSignatureVerifier("")
