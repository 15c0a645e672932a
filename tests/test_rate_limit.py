"""
Tests for wardround.utils.rate_limit.
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from wardround.utils.rate_limit import RateLimiter, RateLimitMiddleware


class TestRateLimiter:

    def test_allows_up_to_the_limit(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        assert limiter.is_allowed("a", now=0)[0]
        allowed, headers = limiter.is_allowed("a", now=1)
        assert allowed
        assert headers["X-RateLimit-Remaining"] == 0
        assert not limiter.is_allowed("a", now=2)[0]

    def test_clients_are_counted_separately(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.is_allowed("a", now=0)[0]
        assert limiter.is_allowed("b", now=0)[0]

    def test_window_slides(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.is_allowed("a", now=0)[0]
        assert not limiter.is_allowed("a", now=30)[0]
        assert limiter.is_allowed("a", now=61)[0]


    def test_idle_clients_are_evicted(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        for client in ("a", "b", "c"):
            limiter.is_allowed(client, now=10)
        limiter.is_allowed("c", now=50)
        assert limiter.tracked_clients == 3

        limiter.is_allowed("d", now=75)
        assert limiter.tracked_clients == 2
        assert limiter.is_allowed("c", now=76)[1]["X-RateLimit-Remaining"] == 3

class TestRateLimitMiddleware:

    def make_client(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60)

        @app.get("/api/ping")
        async def ping():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        return TestClient(app)

    def test_over_limit_is_429(self):
        client = self.make_client()
        assert client.get("/api/ping").status_code == 200
        assert client.get("/api/ping").headers["X-RateLimit-Remaining"] == "0"
        response = client.get("/api/ping")
        assert response.status_code == 429
        assert response.json()["message"].startswith("Too many requests")

    def test_paths_outside_api_are_not_limited(self):
        client = self.make_client()
        for _ in range(5):
            assert client.get("/health").status_code == 200
