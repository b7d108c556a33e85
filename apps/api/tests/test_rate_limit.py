"""
Tests for admission control.

Covers the in-process fixed window, the Redis sliding window (against a mock
client), fallback after a backend error, and the 429 contract on the chat
and feedback routes.
"""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from core.rate_limit import (
    RATE_LIMITS,
    AdmissionController,
    InMemoryFixedWindowLimiter,
    RateLimitConfig,
    RedisSlidingWindowLimiter,
    client_ip,
)
from main import app
from coach_test_helpers import make_profile, session_cookies


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


CONFIG = RateLimitConfig("chat", requests=3, window_seconds=60)


class TestInMemoryFixedWindow:
    """Per-process fallback limiter."""

    def test_admits_up_to_quota_then_rejects(self):
        limiter = InMemoryFixedWindowLimiter(clock=FakeClock())
        results = [limiter.check("user:1", CONFIG) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results[:3]] == [2, 1, 0]
        assert results[3].remaining == 0

    def test_window_resets_after_expiry(self):
        clock = FakeClock()
        limiter = InMemoryFixedWindowLimiter(clock=clock)
        for _ in range(3):
            limiter.check("user:1", CONFIG)
        assert limiter.check("user:1", CONFIG).allowed is False

        clock.advance(61)
        result = limiter.check("user:1", CONFIG)
        assert result.allowed is True
        assert result.remaining == 2

    def test_identifiers_and_prefixes_are_independent(self):
        limiter = InMemoryFixedWindowLimiter(clock=FakeClock())
        for _ in range(3):
            limiter.check("user:1", CONFIG)

        assert limiter.check("user:2", CONFIG).allowed is True
        other = RateLimitConfig("feedback", requests=3, window_seconds=60)
        assert limiter.check("user:1", other).allowed is True

    def test_expired_records_are_pruned_past_threshold(self):
        clock = FakeClock()
        limiter = InMemoryFixedWindowLimiter(prune_threshold=5, clock=clock)
        for i in range(6):
            limiter.check(f"user:{i}", CONFIG)
        clock.advance(120)
        limiter.check("user:new", CONFIG)

        assert len(limiter) == 1


class TestRedisSlidingWindow:
    """Redis backend, driven through a mocked pipeline."""

    def _client(self, count, oldest_score=None):
        client = MagicMock()
        pipe = MagicMock()
        pipe.execute.return_value = [0, 1, count, True]
        client.pipeline.return_value = pipe
        client.zrange.return_value = [("m", oldest_score)] if oldest_score is not None else []
        return client, pipe

    def test_admits_within_quota(self):
        client, pipe = self._client(count=2)
        limiter = RedisSlidingWindowLimiter(client, clock=FakeClock(1000.0))

        result = limiter.check("user:1", CONFIG)

        assert result.allowed is True
        assert result.remaining == 1
        client.pipeline.assert_called_once_with(transaction=True)
        assert pipe.zadd.call_args[0][0] == "rate_limit:chat:user:1"
        client.zrem.assert_not_called()

    def test_rejected_request_is_removed_from_window(self):
        client, _ = self._client(count=4, oldest_score=990_000)
        limiter = RedisSlidingWindowLimiter(client, clock=FakeClock(1000.0))

        result = limiter.check("user:1", CONFIG)

        assert result.allowed is False
        assert result.remaining == 0
        client.zrem.assert_called_once()
        assert result.reset_at == (990_000 + 60_000) // 1000


class TestAdmissionController:
    """Fallback switching."""

    def test_no_primary_uses_memory(self):
        controller = AdmissionController(primary=None)
        assert controller.backend == "memory"
        assert controller.check("user:1", CONFIG).allowed is True

    def test_backend_error_switches_to_fallback_for_good(self):
        primary = MagicMock()
        primary.name = "redis"
        primary.check.side_effect = ConnectionError("redis down")
        controller = AdmissionController(primary=primary, fallback=InMemoryFixedWindowLimiter(clock=FakeClock()))

        assert controller.backend == "redis"
        first = controller.check("user:1", CONFIG)
        second = controller.check("user:1", CONFIG)

        assert first.allowed and second.allowed
        assert controller.backend == "memory"
        assert primary.check.call_count == 1

    def test_quota_still_enforced_after_fallback(self):
        primary = MagicMock()
        primary.name = "redis"
        primary.check.side_effect = RuntimeError("boom")
        controller = AdmissionController(primary=primary, fallback=InMemoryFixedWindowLimiter(clock=FakeClock()))

        results = [controller.check("user:1", CONFIG) for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]


def test_client_ip_prefers_first_forwarded_hop():
    request = MagicMock()
    request.headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}
    assert client_ip(request) == "203.0.113.7"


class TestRateLimitedRoutes:
    """429 responses carry Retry-After and rate-limit headers."""

    def _exhaust(self, identifier, name):
        config = RATE_LIMITS[name]
        for _ in range(config.requests):
            app.state.admission.check(identifier, config)

    def test_chat_over_quota_returns_429(self, db_session, fake_model):
        from services.coach_llm import get_model_client

        profile = make_profile(db_session)
        app.dependency_overrides[get_model_client] = lambda: fake_model
        self._exhaust(f"user:{profile.id}", "chat")

        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.post("/v1/coach/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert response.status_code == 429
        body = response.json()
        assert body["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Limit"] == str(RATE_LIMITS["chat"].requests)
        assert fake_model.calls == []

    def test_feedback_over_quota_returns_429(self, db_session):
        profile = make_profile(db_session)
        self._exhaust(f"user:{profile.id}", "feedback")

        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.post("/v1/ai/feedback", json={"messageId": "m-1", "rating": "positive"})

        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_general_quota_adds_headers_to_responses(self, db_session):
        profile = make_profile(db_session)
        with TestClient(app, cookies=session_cookies(profile.id)) as client:
            response = client.get("/v1/ai/feedback")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == str(RATE_LIMITS["api"].requests)

    def test_health_is_exempt(self):
        self._exhaust("ip:testclient", "api")
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            assert client.get("/ping").status_code == 200
