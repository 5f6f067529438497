"""
Tests for the fixed-window payment link rate limiter
"""

import time
from datetime import datetime, timezone

import pytest
from starlette.requests import Request

from d2_checkout.rate_limiter import PaymentLinkRateLimiter, get_client_key


def make_request(headers=None, client=("10.0.0.5", 51000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/v1/create-payment-link",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestPaymentLinkRateLimiter:
    def test_allows_quota_then_rejects(self):
        limiter = PaymentLinkRateLimiter(quota=3, window_seconds=60)

        decisions = [limiter.check("203.0.113.7") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[0].remaining == 2
        assert decisions[2].remaining == 0

    def test_retry_after_within_window(self):
        limiter = PaymentLinkRateLimiter(quota=1, window_seconds=60)
        limiter.check("203.0.113.7")
        decision = limiter.check("203.0.113.7")

        assert decision.allowed is False
        assert 1 <= decision.retry_after_seconds <= 61
        assert decision.reset_at > datetime.now(timezone.utc)

    def test_keys_are_independent(self):
        limiter = PaymentLinkRateLimiter(quota=1, window_seconds=60)
        assert limiter.check("a").allowed is True
        assert limiter.check("b").allowed is True
        assert limiter.check("a").allowed is False

    def test_reset_clears_counters(self):
        limiter = PaymentLinkRateLimiter(quota=1, window_seconds=60)
        limiter.check("a")
        limiter.reset()
        assert limiter.check("a").allowed is True

    @pytest.mark.slow
    def test_window_expiry(self):
        limiter = PaymentLinkRateLimiter(quota=1, window_seconds=1)
        assert limiter.check("a").allowed is True
        assert limiter.check("a").allowed is False

        time.sleep(1.1)

        assert limiter.check("a").allowed is True


class TestClientKey:
    def test_uses_first_forwarded_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_key(request) == "203.0.113.7"

    def test_falls_back_to_socket_address(self):
        assert get_client_key(make_request()) == "10.0.0.5"
