"""Passwordless sign-in link requests with rate-limit backoff.

The auth provider throttles outgoing emails for longer than it admits, so
after a rate-limit response the portal refuses further requests for a
cooldown that doubles on each repeated rate limit (5 minutes up to 30).
A successful send resets the backoff. State is stored per email address.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import MagicLinkThrottle, as_utc, utcnow
from .errors import ConflictError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

BASE_COOLDOWN_SECONDS = 5 * 60
MAX_COOLDOWN_SECONDS = 30 * 60
RATE_LIMIT_CODE = "over_email_send_rate_limit"


class CooldownActiveError(ConflictError):
    """A previous rate limit is still cooling down."""

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Too many requests. Try again in {remaining_seconds}s.")


def next_backoff(previous: int | None) -> int:
    """min(1800, max(300, previous * 2)); an unset previous starts at 300."""
    doubled = previous * 2 if previous and previous > 0 else 0
    return min(MAX_COOLDOWN_SECONDS, max(BASE_COOLDOWN_SECONDS, doubled))


def is_rate_limited(status_code: int | None, code: str | None, message: str | None) -> bool:
    return (
        status_code == 429
        or code == RATE_LIMIT_CODE
        or "rate limit" in (message or "").lower()
    )


@dataclass
class MagicLinkResult:
    sent: bool
    rate_limited: bool = False
    retry_after_seconds: int | None = None


class MagicLinkService:
    def __init__(self, session: AsyncSession, http_client: httpx.AsyncClient | None = None):
        settings = get_settings()
        self.session = session
        self.http_client = http_client
        self.auth_url = settings.auth_url.rstrip("/")
        self.api_key = settings.auth_api_key
        self.app_url = settings.app_url

    async def _throttle(self, email: str) -> MagicLinkThrottle | None:
        result = await self.session.execute(
            select(MagicLinkThrottle).where(MagicLinkThrottle.email == email)
        )
        return result.scalar_one_or_none()

    async def remaining_cooldown(self, email: str, now: datetime | None = None) -> int:
        throttle = await self._throttle(_normalize(email))
        if throttle is None or throttle.cooldown_until is None:
            return 0
        remaining = (as_utc(throttle.cooldown_until) - as_utc(now or utcnow())).total_seconds()
        return max(0, math.ceil(remaining))

    async def request_link(
        self,
        email: str,
        redirect_to: str | None = None,
        now: datetime | None = None,
    ) -> MagicLinkResult:
        """Ask the auth provider to email a sign-in link.

        A rate limit is reported through the result rather than raised, so
        the new cooldown is committed with the request.
        """
        email = _normalize(email)
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required")
        now = as_utc(now or utcnow())

        remaining = await self.remaining_cooldown(email, now)
        if remaining > 0:
            raise CooldownActiveError(remaining)

        status_code, code, message = await self._send_otp(email, redirect_to)
        throttle = await self._throttle(email)

        if status_code < 400:
            if throttle is not None:
                throttle.backoff_seconds = None
                await self.session.flush()
            logger.info(f"Sign-in link sent to {email}")
            return MagicLinkResult(sent=True)

        if is_rate_limited(status_code, code, message):
            if throttle is None:
                throttle = MagicLinkThrottle(email=email)
                self.session.add(throttle)
            seconds = next_backoff(throttle.backoff_seconds)
            throttle.backoff_seconds = seconds
            throttle.cooldown_until = now + timedelta(seconds=seconds)
            await self.session.flush()
            logger.warning(f"Email rate limit for {email}, cooling down {seconds}s")
            return MagicLinkResult(sent=False, rate_limited=True, retry_after_seconds=seconds)

        logger.error(f"Auth provider rejected sign-in link for {email}: {status_code} {message}")
        raise UpstreamError(message or "Could not send sign-in link", status_code=status_code)

    async def _send_otp(
        self, email: str, redirect_to: str | None
    ) -> tuple[int, str | None, str | None]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        params = {"redirect_to": redirect_to or f"{self.app_url}/"}

        client = self.http_client or httpx.AsyncClient(timeout=15.0)
        try:
            response = await client.post(
                f"{self.auth_url}/otp",
                json={"email": email, "create_user": True},
                params=params,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Auth provider unreachable: {e}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if response.status_code < 400:
            return response.status_code, None, None

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("error_code") or body.get("code")
        message = body.get("msg") or body.get("message") or body.get("error_description")
        return response.status_code, str(code) if code else None, message


def _normalize(email: str) -> str:
    return (email or "").strip().lower()
