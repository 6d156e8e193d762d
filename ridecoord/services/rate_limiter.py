"""Dual-identity failed-attempt rate limiting with progressive blocks.

Each protected action tracks two identities independently:
- coarse: the network address, with a higher threshold and shorter window
- fine: the principal+address composite, with a lower threshold, so a single
  abusive client is blocked before a whole shared address is penalized

Only failed attempts accrue. A reported success deletes both counters and
the escalation memory, so repeated legitimate use never throttles itself.
Crossing a threshold blocks the identity for ``block_seconds``, which is
independent of (and normally longer than) the counting window. With
progressive escalation enabled, offenders who never succeed in between get
doubled blocks up to a ceiling.

Per identity the limiter is a three-state machine
(``clean -> accumulating -> blocked``), see ``transition``.

Failure posture (fail closed): if the store is unreachable during preflight
the request is treated as blocked with a fallback retry-after.

Storage keys:
- ``rl:{action}:{scope}:{identity}`` failure counter, TTL = window
- ``rl:{action}:{scope}:{identity}:blocked`` block marker, TTL = block
- ``rl:{action}:{scope}:{identity}:offences`` escalation memory
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ridecoord.adapters.store.base import AbstractStore
from ridecoord.core.config import RateLimitSettings, settings
from ridecoord.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class Scope(str, Enum):
    """Identity granularity."""

    COARSE = "coarse"
    FINE = "fine"


class IdentityState(str, Enum):
    """Per-identity limiter state."""

    CLEAN = "clean"
    ACCUMULATING = "accumulating"
    BLOCKED = "blocked"


class Outcome(str, Enum):
    """Result reported by business logic for a guarded request."""

    FAILURE = "failure"
    SUCCESS = "success"


@dataclass(frozen=True)
class LimitRule:
    """Threshold configuration for one identity scope.

    Attributes:
        max_attempts: Failures tolerated within one window.
        window_seconds: Counting window length.
        block_seconds: Block length once the threshold is exceeded.
    """

    max_attempts: int
    window_seconds: int
    block_seconds: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if self.block_seconds < 1:
            raise ValueError("block_seconds must be >= 1")


@dataclass(frozen=True)
class ProgressiveRule:
    """Escalation of block length for repeat offenders."""

    max_block_seconds: int
    memory_seconds: int


@dataclass(frozen=True)
class RateLimitPolicy:
    """Per-action limiter configuration."""

    action: str
    coarse: LimitRule
    fine: LimitRule
    progressive: ProgressiveRule | None = None

    def rule_for(self, scope: Scope) -> LimitRule:
        return self.coarse if scope is Scope.COARSE else self.fine


@dataclass(frozen=True)
class Identities:
    """The pair of identities a request is measured against."""

    coarse: str
    fine: str

    def for_scope(self, scope: Scope) -> str:
        return self.coarse if scope is Scope.COARSE else self.fine


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a limiter check.

    Attributes:
        blocked: Whether the request must be rejected.
        retry_after_seconds: Longest remaining block across scopes (0 if allowed).
        scope: Scope responsible for the block, if any.
        counts: Failure counts per scope after the operation (on_failure only).
    """

    blocked: bool
    retry_after_seconds: int = 0
    scope: Scope | None = None
    counts: dict[Scope, int] = field(default_factory=dict)


def transition(
    state: IdentityState,
    outcome: Outcome,
    count: int,
    rule: LimitRule,
) -> IdentityState:
    """Advance the per-identity state machine.

    Args:
        state: Current state.
        outcome: Reported outcome of the attempt.
        count: Failure count in the current window after the outcome applied.
        rule: Thresholds for the identity's scope.

    Returns:
        The next state. A block is only lifted by its own expiry.
    """
    if state is IdentityState.BLOCKED:
        return IdentityState.BLOCKED
    if outcome is Outcome.SUCCESS:
        return IdentityState.CLEAN
    if count > rule.max_attempts:
        return IdentityState.BLOCKED
    if count > 0:
        return IdentityState.ACCUMULATING
    return IdentityState.CLEAN


def classify(count: int, blocked_for: int) -> IdentityState:
    """Derive the current state from stored counter and block TTL."""
    if blocked_for > 0:
        return IdentityState.BLOCKED
    if count > 0:
        return IdentityState.ACCUMULATING
    return IdentityState.CLEAN


def exponential_backoff(attempts: int, base_delay: int = 60, max_delay: int = 3600) -> int:
    """Delay for the n-th offence: ``base * 2**(n-1)`` capped at ``max_delay``.

    Examples:
        >>> exponential_backoff(1)
        60
        >>> exponential_backoff(3)
        240
        >>> exponential_backoff(10)
        3600
    """
    return min(base_delay * 2 ** max(attempts - 1, 0), max_delay)


def identities_for(address: str | None, principal: str | None = None) -> Identities:
    """Build request identities.

    Args:
        address: Client network address.
        principal: Authenticated user id or submitted login name, if any.

    Examples:
        >>> identities_for("10.0.0.1", "user-7")
        Identities(coarse='10.0.0.1', fine='user-7_10.0.0.1')
    """
    address = address or "unknown"
    return Identities(coarse=address, fine=f"{principal or 'anon'}_{address}")


def policy_from_settings(
    action: str,
    *,
    max_attempts_coarse: int | None = None,
    window_coarse_seconds: int | None = None,
    max_attempts_fine: int | None = None,
    window_fine_seconds: int | None = None,
    block_seconds: int | None = None,
    progressive: bool | None = None,
    rate_limit_settings: RateLimitSettings | None = None,
) -> RateLimitPolicy:
    """Build an action policy from configured defaults plus overrides."""
    cfg = rate_limit_settings or settings.rate_limit
    block = block_seconds or cfg.block_seconds
    use_progressive = cfg.progressive_enabled if progressive is None else progressive

    return RateLimitPolicy(
        action=action,
        coarse=LimitRule(
            max_attempts=max_attempts_coarse or cfg.max_attempts_coarse,
            window_seconds=window_coarse_seconds or cfg.window_coarse_seconds,
            block_seconds=block,
        ),
        fine=LimitRule(
            max_attempts=max_attempts_fine or cfg.max_attempts_fine,
            window_seconds=window_fine_seconds or cfg.window_fine_seconds,
            block_seconds=block,
        ),
        progressive=(
            ProgressiveRule(
                max_block_seconds=cfg.progressive_max_block_seconds,
                memory_seconds=cfg.progressive_memory_seconds,
            )
            if use_progressive
            else None
        ),
    )


class RateLimiter:
    """Store-backed limiter for one protected action."""

    def __init__(
        self,
        store: AbstractStore,
        policy: RateLimitPolicy,
        *,
        fail_closed_retry_after_seconds: int = 60,
    ) -> None:
        self._store = store
        self._policy = policy
        self._fail_closed_retry_after = fail_closed_retry_after_seconds

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def _counter_key(self, scope: Scope, identity: str) -> str:
        return f"rl:{self._policy.action}:{scope.value}:{identity}"

    def _block_key(self, scope: Scope, identity: str) -> str:
        return f"{self._counter_key(scope, identity)}:blocked"

    def _offence_key(self, scope: Scope, identity: str) -> str:
        return f"{self._counter_key(scope, identity)}:offences"

    def _log_extra(self, scope: Scope, identity: str) -> dict[str, str]:
        return {
            "action": self._policy.action,
            "scope": scope.value,
            "identity": identity,
        }

    async def preflight(self, identities: Identities) -> RateLimitDecision:
        """Read-only check whether either identity is currently blocked.

        Returns:
            Decision carrying the larger of the two remaining block times.
        """
        try:
            remaining = {
                scope: await self._store.ttl(self._block_key(scope, identities.for_scope(scope)))
                for scope in Scope
            }
        except StoreUnavailableError:
            logger.error(
                "rate_limit.fail_closed",
                extra={
                    "action": self._policy.action,
                    "retry_after_s": self._fail_closed_retry_after,
                },
            )
            return RateLimitDecision(
                blocked=True,
                retry_after_seconds=self._fail_closed_retry_after,
            )

        blocked = {
            # -1 means a marker without expiry; fall back to the full block
            scope: ttl if ttl > 0 else self._policy.rule_for(scope).block_seconds
            for scope, ttl in remaining.items()
            if ttl != -2
        }
        if not blocked:
            return RateLimitDecision(blocked=False)

        scope = max(blocked, key=blocked.__getitem__)
        retry_after = blocked[scope]
        logger.warning(
            "rate_limit.blocked",
            extra={
                **self._log_extra(scope, identities.for_scope(scope)),
                "retry_after_s": retry_after,
            },
        )
        return RateLimitDecision(blocked=True, retry_after_seconds=retry_after, scope=scope)

    async def on_failure(self, identities: Identities) -> RateLimitDecision:
        """Record a failed attempt for both identities.

        The first increment of a window starts the window TTL. An increment
        that exceeds the threshold moves the identity into the blocked state.

        Raises:
            StoreUnavailableError: The store could not be reached.
        """
        counts: dict[Scope, int] = {}
        blocks: dict[Scope, int] = {}

        for scope in Scope:
            identity = identities.for_scope(scope)
            rule = self._policy.rule_for(scope)
            key = self._counter_key(scope, identity)

            count = await self._store.incr(key)
            if count == 1 or await self._store.ttl(key) == -1:
                await self._store.expire(key, rule.window_seconds)
            counts[scope] = count

            blocked_for = await self._store.ttl(self._block_key(scope, identity))
            state = classify(count - 1, blocked_for if blocked_for != -2 else 0)
            state = transition(state, Outcome.FAILURE, count, rule)
            if state is IdentityState.BLOCKED:
                blocks[scope] = await self._block(scope, identity, rule)
            else:
                logger.info(
                    "rate_limit.failure_recorded",
                    extra={
                        **self._log_extra(scope, identity),
                        "attempts": count,
                        "limit": rule.max_attempts,
                    },
                )

        if not blocks:
            return RateLimitDecision(blocked=False, counts=counts)

        scope = max(blocks, key=blocks.__getitem__)
        return RateLimitDecision(
            blocked=True,
            retry_after_seconds=blocks[scope],
            scope=scope,
            counts=counts,
        )

    async def _block(self, scope: Scope, identity: str, rule: LimitRule) -> int:
        """Ensure a block marker exists. Returns the remaining block in seconds."""
        block_key = self._block_key(scope, identity)
        created = await self._store.set(
            block_key,
            "1",
            ttl_seconds=rule.block_seconds,
            only_if_absent=True,
        )
        if not created:
            remaining = await self._store.ttl(block_key)
            return remaining if remaining > 0 else rule.block_seconds

        duration = rule.block_seconds
        progressive = self._policy.progressive
        if progressive is not None:
            offence_key = self._offence_key(scope, identity)
            offences = await self._store.incr(offence_key)
            await self._store.expire(offence_key, progressive.memory_seconds)
            duration = exponential_backoff(
                offences,
                base_delay=rule.block_seconds,
                max_delay=max(progressive.max_block_seconds, rule.block_seconds),
            )
            if duration != rule.block_seconds:
                await self._store.expire(block_key, duration)

        logger.warning(
            "rate_limit.identity_blocked",
            extra={**self._log_extra(scope, identity), "block_s": duration},
        )
        return duration

    async def on_success(self, identities: Identities) -> None:
        """Forgive prior failures: delete both counters and any escalation memory.

        Active blocks are left to expire. Store errors are logged only.
        """
        try:
            for scope in Scope:
                identity = identities.for_scope(scope)
                await self._store.delete(self._counter_key(scope, identity))
                if self._policy.progressive is not None:
                    await self._store.delete(self._offence_key(scope, identity))
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.reset_failed",
                extra={"action": self._policy.action, "error_code": exc.code},
            )

    async def attempts(self, identities: Identities, scope: Scope) -> int:
        """Current failure count for one scope in the active window."""
        value = await self._store.get(self._counter_key(scope, identities.for_scope(scope)))
        return int(value) if value else 0

    async def state(self, identities: Identities, scope: Scope) -> IdentityState:
        """Current state of one identity, derived from the store."""
        identity = identities.for_scope(scope)
        blocked_for = await self._store.ttl(self._block_key(scope, identity))
        count = await self.attempts(identities, scope)
        return classify(count, blocked_for if blocked_for != -2 else 0)
