"""Unit tests for token issuance and revocation."""

from unittest.mock import AsyncMock

import jwt
import pytest

from ridecoord.adapters.store.in_memory import InMemoryStore
from ridecoord.core.errors import AuthenticationAppError, StoreUnavailableError
from ridecoord.services.token_revocation import TokenRevocationStore

SECRET = "unit-test-secret-0123456789abcdef"


@pytest.fixture
def tokens(store: InMemoryStore, fake_time) -> TokenRevocationStore:
    return TokenRevocationStore(store, secret=SECRET, lifetime_seconds=3600, clock=fake_time.time)


def _unavailable() -> StoreUnavailableError:
    return StoreUnavailableError(code="store_unavailable", message="down")


@pytest.mark.asyncio
async def test_issue_and_authenticate(tokens: TokenRevocationStore, fake_time) -> None:
    token = await tokens.issue("user-1", email="rider@example.com")

    claims = await tokens.authenticate(token)

    assert claims.subject == "user-1"
    assert claims.email == "rider@example.com"
    assert claims.expires_at == int(fake_time.time()) + 3600
    assert await tokens.is_live(claims) is True
    assert await tokens.is_revoked(token) is False


@pytest.mark.asyncio
async def test_invalidated_token_is_revoked(tokens: TokenRevocationStore) -> None:
    token = await tokens.issue("user-1")

    await tokens.invalidate(token)

    assert await tokens.is_revoked(token) is True
    with pytest.raises(AuthenticationAppError) as exc_info:
        await tokens.authenticate(token)
    assert exc_info.value.code == "token_revoked"


@pytest.mark.asyncio
async def test_revocation_marker_lives_as_long_as_the_token(
    tokens: TokenRevocationStore, store: InMemoryStore, fake_time
) -> None:
    token = await tokens.issue("user-1")
    fake_time.advance(1000)

    await tokens.invalidate(token)

    jti = tokens.decode(token).jti
    assert await store.ttl(f"revoked:{jti}") == 2600

    fake_time.advance(2600)
    assert await tokens.is_revoked(token) is False
    with pytest.raises(AuthenticationAppError) as exc_info:
        await tokens.authenticate(token)
    assert exc_info.value.code == "token_expired"


@pytest.mark.asyncio
async def test_expired_token_gets_one_second_marker(
    tokens: TokenRevocationStore, store: InMemoryStore, fake_time
) -> None:
    token = await tokens.issue("user-1")
    fake_time.advance(5000)

    await tokens.invalidate(token)

    assert await store.ttl(f"revoked:{tokens.decode(token).jti}") == 1


@pytest.mark.asyncio
async def test_revocation_marker_rounds_up_partial_seconds(store: InMemoryStore, fake_time) -> None:
    tokens = TokenRevocationStore(
        store,
        secret=SECRET,
        lifetime_seconds=100,
        require_liveness=False,
        clock=fake_time.time,
    )
    token = await tokens.issue("user-1")
    fake_time.advance(0.5)

    await tokens.invalidate(token)
    fake_time.advance(99.2)

    # The token is still within its lifetime, so it must still be revoked
    with pytest.raises(AuthenticationAppError) as exc_info:
        await tokens.authenticate(token)
    assert exc_info.value.code == "token_revoked"


@pytest.mark.asyncio
async def test_other_sessions_unaffected(tokens: TokenRevocationStore) -> None:
    first = await tokens.issue("user-1")
    second = await tokens.issue("user-1")

    await tokens.invalidate(first)

    assert (await tokens.authenticate(second)).subject == "user-1"


@pytest.mark.asyncio
async def test_invalidate_all_revokes_every_session(tokens: TokenRevocationStore) -> None:
    issued = [await tokens.issue("user-1") for _ in range(3)]
    other = await tokens.issue("user-2")
    await tokens.invalidate(issued[0])

    assert await tokens.invalidate_all("user-1") == 2

    for token in issued:
        assert await tokens.is_revoked(token) is True
    assert await tokens.is_revoked(other) is False


@pytest.mark.asyncio
async def test_token_without_liveness_marker_rejected(
    tokens: TokenRevocationStore, store: InMemoryStore
) -> None:
    token = await tokens.issue("user-1")
    store.clear()

    with pytest.raises(AuthenticationAppError) as exc_info:
        await tokens.authenticate(token)
    assert exc_info.value.code == "token_unknown"


@pytest.mark.asyncio
async def test_liveness_not_required_when_disabled(store: InMemoryStore, fake_time) -> None:
    tokens = TokenRevocationStore(store, secret=SECRET, require_liveness=False, clock=fake_time.time)
    token = await tokens.issue("user-1")
    store.clear()

    assert (await tokens.authenticate(token)).subject == "user-1"


@pytest.mark.asyncio
async def test_rejects_foreign_and_malformed_tokens(tokens: TokenRevocationStore, fake_time) -> None:
    now = int(fake_time.time())
    foreign = jwt.encode(
        {"sub": "user-1", "jti": "x", "iat": now, "exp": now + 60},
        "someone-elses-secret-0123456789ab",
        algorithm="HS256",
    )

    for token in (foreign, "not-a-jwt"):
        with pytest.raises(AuthenticationAppError) as exc_info:
            await tokens.authenticate(token)
        assert exc_info.value.code == "token_invalid"


@pytest.mark.asyncio
async def test_revocation_check_fails_open(fake_time) -> None:
    store = AsyncMock()
    writer = TokenRevocationStore(InMemoryStore(clock=fake_time.time), secret=SECRET, clock=fake_time.time)
    token = await writer.issue("user-1")

    store.exists.side_effect = _unavailable()
    tokens = TokenRevocationStore(store, secret=SECRET, clock=fake_time.time)

    assert await tokens.is_revoked(token) is False
    assert await tokens.is_live(tokens.decode(token)) is True
    assert (await tokens.authenticate(token)).subject == "user-1"


@pytest.mark.asyncio
async def test_invalidate_propagates_store_failure(fake_time) -> None:
    writer = TokenRevocationStore(InMemoryStore(clock=fake_time.time), secret=SECRET, clock=fake_time.time)
    token = await writer.issue("user-1")

    store = AsyncMock()
    store.set.side_effect = _unavailable()
    tokens = TokenRevocationStore(store, secret=SECRET, clock=fake_time.time)

    with pytest.raises(StoreUnavailableError):
        await tokens.invalidate(token)
