"""Sliding-window request admission per client key.

Each policy keeps, per key, the timestamps of the requests it admitted within
the last window. A request is admitted only while fewer than ``limit``
timestamps remain, so no key ever exceeds its ceiling in any rolling window,
and a key that goes quiet regains its full quota once its newest admission
ages out. Rejected requests are not recorded.
"""

from __future__ import annotations

import ipaddress
import logging
import math
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from threading import Lock
from typing import Final

from erp_gateway.core.errors import RateLimitExceeded
from erp_gateway.core.result import Err, Ok, Result
from erp_gateway.core.settings import settings

logger = logging.getLogger(__name__)

LOGIN_POLICY: Final[str] = "login"
REPORTS_POLICY: Final[str] = "reports"
GENERAL_POLICY: Final[str] = "general"

# IPv6 clients usually control a whole prefix; count them per /56
IPV6_SUBNET_PREFIX: Final[int] = 56


@dataclass(frozen=True)
class RateLimitPolicy:
    """Ceiling of ``limit`` admitted requests per ``window_seconds`` per key."""

    name: str
    limit: int
    window_seconds: float
    message: str
    key_by_user: bool = True


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single admission check."""

    policy: RateLimitPolicy
    allowed: bool
    remaining: int
    reset_after: float

    @property
    def retry_after(self) -> float:
        return 0.0 if self.allowed else self.reset_after

    def headers(self) -> dict[str, str]:
        """Return standard ``RateLimit-*`` response headers."""
        headers = {
            "RateLimit-Policy": f"{self.policy.limit};w={int(self.policy.window_seconds)}",
            "RateLimit-Limit": str(self.policy.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(math.ceil(self.retry_after))
        return headers


@dataclass
class _Bucket:
    window_seconds: float
    hits: deque[float] = field(default_factory=deque)


def normalize_address(address: str | None) -> str:
    """Return a stable rate-limit identifier for a client network address.

    IPv4 addresses are returned unchanged, IPv4-mapped IPv6 addresses are
    unwrapped, and other IPv6 addresses are collapsed to their /56 network.
    Unparseable values are returned as-is so they still get their own bucket.
    """
    if not address:
        return "unknown"
    candidate = address.strip()
    try:
        ip = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return str(ip.ipv4_mapped)
        return str(ipaddress.ip_network(f"{ip}/{IPV6_SUBNET_PREFIX}", strict=False))
    return str(ip)


def rate_limit_key(policy: RateLimitPolicy, address: str | None, uid: int | None = None) -> str:
    """Build the bucket key for a request: its user when known, else its address."""
    if policy.key_by_user and uid is not None:
        return f"user:{uid}"
    return f"ip:{normalize_address(address)}"


class RateLimiter:
    """Thread-safe sliding-log rate limiter with several named policies."""

    def __init__(
        self,
        policies: Iterable[RateLimitPolicy],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policies = {policy.name: policy for policy in policies}
        self._clock = clock
        self._buckets: dict[tuple[str, str], _Bucket] = {}
        self._lock = Lock()
        self._last_sweep = clock()
        self._sweep_interval = max(
            (policy.window_seconds for policy in self._policies.values()),
            default=60.0,
        )

    def policy(self, name: str) -> RateLimitPolicy:
        try:
            return self._policies[name]
        except KeyError as err:
            raise KeyError(f"Unknown rate limit policy: {name}") from err

    def check(self, policy: RateLimitPolicy | str, key: str) -> RateLimitDecision:
        """Admit or reject one request for ``key`` under ``policy``."""
        if isinstance(policy, str):
            policy = self.policy(policy)
        now = self._clock()
        horizon = now - policy.window_seconds

        with self._lock:
            self._maybe_sweep(now)
            bucket = self._buckets.get((policy.name, key))
            if bucket is None:
                bucket = self._buckets[(policy.name, key)] = _Bucket(policy.window_seconds)
            else:
                bucket.window_seconds = policy.window_seconds
            hits = bucket.hits
            while hits and hits[0] <= horizon:
                hits.popleft()

            if len(hits) >= policy.limit:
                reset_after = max(0.0, hits[0] + policy.window_seconds - now)
                logger.debug("Rate limit %s exceeded for %s", policy.name, key)
                return RateLimitDecision(
                    policy=policy,
                    allowed=False,
                    remaining=0,
                    reset_after=reset_after,
                )

            hits.append(now)
            reset_after = max(0.0, hits[0] + policy.window_seconds - now)
            return RateLimitDecision(
                policy=policy,
                allowed=True,
                remaining=policy.limit - len(hits),
                reset_after=reset_after,
            )

    def admit(
        self,
        policy: RateLimitPolicy | str,
        key: str,
    ) -> Result[RateLimitDecision, RateLimitExceeded]:
        """Like :meth:`check`, but report a rejection as an error value."""
        decision = self.check(policy, key)
        if decision.allowed:
            return Ok(decision)
        return Err(
            RateLimitExceeded(
                decision.policy.message,
                decision.retry_after,
                headers=decision.headers(),
            )
        )

    def reset(self) -> None:
        """Forget every recorded request."""
        with self._lock:
            self._buckets.clear()

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        stale = [
            bucket_key
            for bucket_key, bucket in self._buckets.items()
            if not bucket.hits or bucket.hits[-1] <= now - bucket.window_seconds
        ]
        for bucket_key in stale:
            del self._buckets[bucket_key]


def default_policies() -> list[RateLimitPolicy]:
    """Build the login, reports and general policies from settings."""
    return [
        RateLimitPolicy(
            name=LOGIN_POLICY,
            limit=settings.login_rate_limit,
            window_seconds=settings.login_rate_window_seconds,
            message=(
                "Too many login attempts. Please try again in "
                f"{math.ceil(settings.login_rate_window_seconds / 60)} minutes"
            ),
            key_by_user=False,
        ),
        RateLimitPolicy(
            name=REPORTS_POLICY,
            limit=settings.reports_rate_limit,
            window_seconds=settings.reports_rate_window_seconds,
            message="Too many requests. Please wait a moment before trying again",
        ),
        RateLimitPolicy(
            name=GENERAL_POLICY,
            limit=settings.general_rate_limit,
            window_seconds=settings.general_rate_window_seconds,
            message="Too many requests. Please wait a moment",
        ),
    ]


_LIMITER = RateLimiter(default_policies())


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter."""
    return _LIMITER
