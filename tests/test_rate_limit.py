import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from api.rate_limit import SlidingWindowLimiter
from core.errors import RateLimited
from fakes import FakeChainClient, FakeConversationFactory
from world.orchestrator import Orchestrator


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSlidingWindow:
    def test_budget_counts_down(self):
        limiter = SlidingWindowLimiter(3, 60, clock=FakeClock())
        assert [limiter.hit("k") for _ in range(3)] == [2, 1, 0]

    def test_rejects_with_retry_after(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(2, 60, clock=clock)
        limiter.hit("k")
        clock.now += 10
        limiter.hit("k")
        clock.now += 5
        with pytest.raises(RateLimited) as exc:
            limiter.hit("k")
        assert exc.value.retry_after == 45

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(1, 60, clock=clock)
        limiter.hit("k")
        clock.now += 60
        assert limiter.hit("k") == 0

    def test_keys_are_independent(self):
        limiter = SlidingWindowLimiter(1, 60, clock=FakeClock())
        limiter.hit("a")
        assert limiter.hit("b") == 0
        with pytest.raises(RateLimited):
            limiter.hit("a")

    def test_idle_keys_are_forgotten(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(5, 60, clock=clock)
        for i in range(1000):
            limiter.hit(f"10.0.0.{i}-anonymous")
        assert len(limiter) == 1000

        clock.now += 61
        limiter.hit("fresh")
        assert len(limiter) == 1

    def test_active_keys_survive_pruning(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(2, 60, clock=clock)
        limiter.hit("idle")
        clock.now += 30
        limiter.hit("busy")
        clock.now += 31
        limiter.hit("other")
        assert len(limiter) == 2
        limiter.hit("busy")
        with pytest.raises(RateLimited):
            limiter.hit("busy")

    def test_reset(self):
        limiter = SlidingWindowLimiter(1, 60, clock=FakeClock())
        limiter.hit("a")
        limiter.reset()
        assert limiter.hit("a") == 0


@pytest.fixture
def limited_client(settings):
    settings.RATE_LIMIT_MAX = 2
    settings.SENSITIVE_RATE_LIMIT_MAX = 1
    orch = Orchestrator(
        settings,
        chain_client=FakeChainClient(),
        conversation_factory=FakeConversationFactory(),
    )
    with TestClient(create_app(settings, orch)) as client:
        yield client


class TestHttpThrottle:
    def test_standard_routes(self, limited_client):
        for _ in range(2):
            assert limited_client.get("/api/users/userA/agents").status_code == 200

        r = limited_client.get("/api/users/userA/agents")
        assert r.status_code == 429
        assert r.json()["error"] == "RateLimited"
        assert int(r.headers["Retry-After"]) >= 1

    def test_keyed_by_user(self, limited_client):
        for _ in range(2):
            limited_client.get("/api/users/userA/agents")
        assert limited_client.get("/api/users/userB/agents").status_code == 200

    def test_sensitive_bucket_is_separate(self, limited_client):
        body = {"user_id": "userA", "private_key": "secret1"}
        assert limited_client.post("/api/agents", json=body).status_code == 201
        assert limited_client.post("/api/agents", json=body).status_code == 429
        # The standard bucket is untouched.
        assert limited_client.get("/api/users/userA/agents").status_code == 200

    def test_health_is_not_throttled(self, limited_client):
        for _ in range(5):
            assert limited_client.get("/api/health").status_code == 200
