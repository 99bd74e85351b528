"""
Tests for sign-in link requests and the rate-limit backoff.

The auth provider is replaced with an httpx.MockTransport so each test
decides what the provider answers.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from support_portal.services.errors import UpstreamError, ValidationError
from support_portal.services.magic_link import (
    CooldownActiveError,
    MagicLinkService,
    is_rate_limited,
    next_backoff,
)

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeAuthProvider:
    """Answers each OTP request with the next queued response."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def rate_limited() -> httpx.Response:
    return httpx.Response(
        429, json={"error_code": "over_email_send_rate_limit", "msg": "Email rate limit exceeded"}
    )


class TestBackoffMath:
    @pytest.mark.parametrize(
        "previous, expected",
        [(None, 300), (0, 300), (100, 300), (300, 600), (600, 1200), (1200, 1800), (1800, 1800)],
    )
    def test_next_backoff(self, previous, expected):
        assert next_backoff(previous) == expected

    def test_rate_limit_detection(self):
        assert is_rate_limited(429, None, None)
        assert is_rate_limited(400, "over_email_send_rate_limit", None)
        assert is_rate_limited(400, None, "Email Rate Limit exceeded")
        assert not is_rate_limited(400, "validation_failed", "Invalid email")


class TestRequestLink:
    async def test_success(self, session):
        provider = FakeAuthProvider(httpx.Response(200, json={}))
        service = MagicLinkService(session, provider.client())

        result = await service.request_link("Jane@Acme.test", now=NOW)

        assert result.sent
        request = provider.requests[0]
        assert request.url.path.endswith("/otp")
        assert b"jane@acme.test" in request.content

    async def test_backoff_doubles_and_blocks_meanwhile(self, session):
        provider = FakeAuthProvider(rate_limited(), rate_limited())
        service = MagicLinkService(session, provider.client())

        first = await service.request_link("jane@acme.test", now=NOW)
        assert first.rate_limited
        assert first.retry_after_seconds == 300

        with pytest.raises(CooldownActiveError) as exc:
            await service.request_link("jane@acme.test", now=NOW + timedelta(seconds=60))
        assert exc.value.remaining_seconds == 240
        # The provider was not called during the cooldown
        assert len(provider.requests) == 1

        second = await service.request_link("jane@acme.test", now=NOW + timedelta(seconds=301))
        assert second.retry_after_seconds == 600

    async def test_success_resets_backoff(self, session):
        provider = FakeAuthProvider(rate_limited(), httpx.Response(200, json={}), rate_limited())
        service = MagicLinkService(session, provider.client())

        await service.request_link("jane@acme.test", now=NOW)
        sent = await service.request_link("jane@acme.test", now=NOW + timedelta(minutes=6))
        assert sent.sent

        again = await service.request_link("jane@acme.test", now=NOW + timedelta(minutes=7))
        assert again.retry_after_seconds == 300

    async def test_cooldown_is_per_email(self, session):
        provider = FakeAuthProvider(rate_limited(), httpx.Response(200, json={}))
        service = MagicLinkService(session, provider.client())

        await service.request_link("jane@acme.test", now=NOW)
        other = await service.request_link("hank@globex.test", now=NOW)
        assert other.sent

    async def test_other_errors_surface(self, session):
        provider = FakeAuthProvider(httpx.Response(400, json={"msg": "Signups not allowed"}))
        service = MagicLinkService(session, provider.client())

        with pytest.raises(UpstreamError):
            await service.request_link("jane@acme.test", now=NOW)
        assert await service.remaining_cooldown("jane@acme.test", NOW) == 0

    async def test_invalid_email(self, session):
        service = MagicLinkService(session, FakeAuthProvider().client())
        with pytest.raises(ValidationError):
            await service.request_link("not-an-email", now=NOW)
