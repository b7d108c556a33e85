"""
Rate Limiting (Admission Control)

Every expensive request is admitted through one `check` contract backed by:

- RedisSlidingWindowLimiter: sliding-window counter in a Redis sorted set.
  Durable across instances; the primary backend when REDIS_URL is set.
- InMemoryFixedWindowLimiter: per-process fixed windows. Used when Redis is
  not configured, and for the rest of the process lifetime once Redis errors.

Distinct logical limiters (chat, feedback, auth, general API) use distinct
prefixes and independent quotas. Only exhaustion is ever surfaced to callers;
backend errors are logged and absorbed.
"""
import time
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.config import settings
from core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    prefix: str
    requests: int
    window_seconds: int = 60


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # epoch seconds

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_at - int(time.time()))


RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "chat": RateLimitConfig("chat", settings.RATE_LIMIT_CHAT_PER_MINUTE),
    "feedback": RateLimitConfig("feedback", settings.RATE_LIMIT_FEEDBACK_PER_MINUTE),
    "auth": RateLimitConfig("auth", settings.RATE_LIMIT_AUTH_PER_MINUTE),
    "api": RateLimitConfig("api", settings.RATE_LIMIT_PER_MINUTE),
}


class RateLimiter(ABC):
    """A single counting backend."""

    name = "abstract"

    @abstractmethod
    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request for identifier and report whether it is admitted."""


class RedisSlidingWindowLimiter(RateLimiter):
    """Sliding window over a sorted set of request timestamps."""

    name = "redis"

    def __init__(self, client, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        key = f"rate_limit:{config.prefix}:{identifier}"
        now_ms = int(self.clock() * 1000)
        window_ms = config.window_seconds * 1000
        member = f"{now_ms}:{uuid.uuid4().hex}"

        # MULTI/EXEC: prune, add, count and expire happen atomically.
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now_ms - window_ms)
        pipe.zadd(key, {member: now_ms})
        pipe.zcard(key)
        pipe.pexpire(key, window_ms)
        _, _, count, _ = pipe.execute()
        count = int(count)

        if count > config.requests:
            # Rejected requests do not occupy the window.
            self.client.zrem(key, member)
            oldest = self.client.zrange(key, 0, 0, withscores=True)
            oldest_ms = int(oldest[0][1]) if oldest else now_ms
            reset_at = (oldest_ms + window_ms) // 1000
            return RateLimitResult(False, 0, config.requests, reset_at)

        reset_at = (now_ms + window_ms) // 1000
        return RateLimitResult(True, max(0, config.requests - count), config.requests, reset_at)


@dataclass
class _WindowRecord:
    count: int
    window_reset_at: float


class InMemoryFixedWindowLimiter(RateLimiter):
    """
    Fixed windows keyed by prefix:identifier.

    Weaker than the sliding window (bursts at window edges) and racy across
    threads; it is the degraded mode, not the source of truth.
    """

    name = "memory"

    def __init__(self, prune_threshold: int = 1000, clock: Callable[[], float] = time.time):
        self.prune_threshold = prune_threshold
        self.clock = clock
        self._records: Dict[str, _WindowRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _prune(self, now: float) -> None:
        expired = [k for k, rec in self._records.items() if now > rec.window_reset_at]
        for k in expired:
            del self._records[k]

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        key = f"{config.prefix}:{identifier}"
        now = self.clock()
        with self._lock:
            if len(self._records) > self.prune_threshold:
                self._prune(now)

            record = self._records.get(key)
            if record is None or now > record.window_reset_at:
                record = _WindowRecord(count=1, window_reset_at=now + config.window_seconds)
                self._records[key] = record
                return RateLimitResult(True, config.requests - 1, config.requests, int(record.window_reset_at))

            if record.count >= config.requests:
                return RateLimitResult(False, 0, config.requests, int(record.window_reset_at))

            record.count += 1
            return RateLimitResult(
                True, config.requests - record.count, config.requests, int(record.window_reset_at)
            )


class AdmissionController:
    """
    Routes checks to the remote limiter until it fails once, then to the
    in-process fallback for the remainder of the process lifetime.
    """

    def __init__(self, primary: Optional[RateLimiter], fallback: Optional[InMemoryFixedWindowLimiter] = None):
        self.primary = primary
        self.fallback = fallback or InMemoryFixedWindowLimiter(
            prune_threshold=settings.RATE_LIMIT_FALLBACK_PRUNE_THRESHOLD
        )
        self._degraded = primary is None

    @property
    def backend(self) -> str:
        return self.fallback.name if self._degraded else self.primary.name

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        if not self._degraded:
            try:
                return self.primary.check(identifier, config)
            except Exception as e:
                logger.error(
                    f"Rate limit backend error, switching to in-process fallback: {e}",
                    extra={"extra_fields": {"limiter": config.prefix, "backend": self.primary.name}},
                )
                self._degraded = True
        return self.fallback.check(identifier, config)


def build_admission_controller() -> AdmissionController:
    """Pick the backend once, at startup, from configuration."""
    from core.redis_client import get_redis_client

    client = get_redis_client()
    if client is None:
        if settings.ENVIRONMENT == "production":
            logger.warning("REDIS_URL not set or unreachable. Using in-memory rate limiting (per-instance only).")
        return AdmissionController(primary=None)
    return AdmissionController(primary=RedisSlidingWindowLimiter(client))


def check_rate_limit(controller: AdmissionController, identifier: str, config: RateLimitConfig) -> RateLimitResult:
    """Check and count one request; raises nothing, returns the verdict."""
    return controller.check(identifier, config)


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request, identifier: str, config: RateLimitConfig) -> RateLimitResult:
    """
    Admit or reject a request before any work happens.

    Raises RateLimitExceededError (429) when the quota is exhausted.
    """
    if not settings.RATE_LIMIT_ENABLED:
        return RateLimitResult(True, config.requests, config.requests, int(time.time()) + config.window_seconds)

    controller: AdmissionController = request.app.state.admission
    result = check_rate_limit(controller, identifier, config)
    if not result.allowed:
        logger.warning(
            "Rate limit exceeded",
            extra={"extra_fields": {"limiter": config.prefix, "identifier": identifier}},
        )
        raise RateLimitExceededError(limit=result.limit, retry_after=result.retry_after, reset_at=result.reset_at)
    return result


class RateLimitMiddleware(BaseHTTPMiddleware):
    """General per-caller API quota, applied to every non-health path."""

    EXEMPT_PATHS = ("/health", "/ping", "/docs", "/openapi.json", "/redoc")

    def __init__(self, app, config: Optional[RateLimitConfig] = None):
        super().__init__(app)
        self.config = config or RATE_LIMITS["api"]

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        identifier = self._get_identifier(request)
        controller: AdmissionController = request.app.state.admission
        result = check_rate_limit(controller, identifier, self.config)

        if not result.allowed:
            exc = RateLimitExceededError(limit=result.limit, retry_after=result.retry_after, reset_at=result.reset_at)
            return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_at)
        return response

    def _get_identifier(self, request: Request) -> str:
        """Session user id when the cookie verifies, else client IP."""
        token = request.cookies.get(settings.SESSION_COOKIE_NAME)
        if token:
            from core.security import get_user_id_from_token
            user_id = get_user_id_from_token(token)
            if user_id:
                return f"user:{user_id}"
        return f"ip:{client_ip(request)}"
