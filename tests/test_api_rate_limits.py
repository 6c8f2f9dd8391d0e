# Tests for the token-bucket rate limiter.
# Created: 2026-10-19

from keyward.security.rate_limiter import (
    RateLimiter,
    RateLimitInfo,
    authorize_limiter,
    register_limiter,
    reset_all,
    token_limiter,
)


class TestRateLimiter:
    def test_check_returns_info(self):
        limiter = RateLimiter(rate=10.0, capacity=5)
        info = limiter.check("test-client")
        assert isinstance(info, RateLimitInfo)
        assert info.allowed is True
        assert info.limit == 5
        assert info.remaining >= 0

    def test_check_denied(self):
        limiter = RateLimiter(rate=0.1, capacity=2)
        # Exhaust bucket
        limiter.check("client")
        limiter.check("client")
        info = limiter.check("client")
        assert info.allowed is False
        assert info.remaining == 0

    def test_keys_are_independent(self):
        limiter = RateLimiter(rate=0.1, capacity=1)
        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_headers_on_allowed(self):
        limiter = RateLimiter(rate=10.0, capacity=10)
        headers = limiter.check("client").headers()
        assert headers["X-RateLimit-Limit"] == "10"
        assert "X-RateLimit-Remaining" in headers
        assert "Retry-After" not in headers

    def test_headers_on_denied(self):
        limiter = RateLimiter(rate=0.1, capacity=1)
        limiter.check("client")
        info = limiter.check("client")
        headers = info.headers()
        assert info.allowed is False
        assert int(headers["Retry-After"]) > 0

    def test_cleanup_removes_stale(self):
        limiter = RateLimiter(rate=1.0, capacity=1)
        limiter.check("client")
        assert limiter.cleanup(max_age=3600.0) == 0
        assert limiter.cleanup(max_age=-1.0) == 1

    def test_reset_all(self):
        for _ in range(register_limiter.capacity):
            register_limiter.check("1.2.3.4")
        assert register_limiter.allow("1.2.3.4") is False
        reset_all()
        assert register_limiter.allow("1.2.3.4") is True

    def test_tiers(self):
        assert register_limiter.rate < authorize_limiter.rate < token_limiter.rate

    def test_idle_buckets_swept_during_checks(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("keyward.security.rate_limiter.time.monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=1.0, capacity=5, max_idle=60.0, sweep_interval=10)
        for i in range(9):
            limiter.check(f"10.0.0.{i}")
        assert len(limiter._buckets) == 9

        clock[0] += 120.0
        # The tenth call triggers a sweep before its own bucket is created
        limiter.check("10.0.1.1")
        assert set(limiter._buckets) == {"10.0.1.1"}

    def test_active_buckets_survive_sweep(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("keyward.security.rate_limiter.time.monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=0.01, capacity=3, max_idle=60.0, sweep_interval=4)
        for _ in range(3):
            limiter.check("busy")
        clock[0] += 30.0
        info = limiter.check("busy")
        assert info.allowed is False
        assert "busy" in limiter._buckets
