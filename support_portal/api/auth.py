"""Authentication API routes.

Sign-in is passwordless: the auth provider emails a magic link. This module
asks for the link (with rate-limit backoff), reports the caller's identity
and answers route-access checks for the web client.
"""

from uuid import uuid4

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr

from ..core import CurrentUserDep, SessionDep, get_settings
from ..core.permissions import capabilities_for, route_access
from ..core.security import create_access_token
from ..schemas import (
    LockoutResponse,
    MagicLinkRequest,
    MagicLinkResponse,
    MeResponse,
    RouteCheckResponse,
    UserRef,
)
from ..services.errors import PortalError
from ..services.identity import IdentityService, UserNotFoundError
from ..services.ops import payment_lockout
from ..services.organizations import OrganizationService
from .deps import MagicLinkServiceDep, http_error

router = APIRouter(prefix="/auth", tags=["authentication"])


class DevLoginRequest(BaseModel):
    """Dev login request - just email (no link sent)."""
    email: EmailStr
    full_name: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/magic-link", response_model=MagicLinkResponse)
async def request_magic_link(request: MagicLinkRequest, service: MagicLinkServiceDep):
    """Email a sign-in link.

    While a cooldown is active the request is refused with 429 and a
    Retry-After header. A fresh provider rate limit starts (or doubles) the
    cooldown and is also answered with 429.
    """
    try:
        result = await service.request_link(request.email, request.redirect_to)
    except PortalError as e:
        raise http_error(e)

    if result.rate_limited:
        # Returned rather than raised so the cooldown row is committed
        body = MagicLinkResponse(
            sent=False,
            rate_limited=True,
            retry_after_seconds=result.retry_after_seconds,
            message="Too many sign-in emails. Please wait before trying again.",
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=body.model_dump(mode="json"),
            headers={"Retry-After": str(result.retry_after_seconds)},
        )

    return MagicLinkResponse(sent=True, message="Check your email for a sign-in link.")


@router.post("/dev-login", response_model=TokenResponse)
async def dev_login(request: DevLoginRequest, session: SessionDep):
    """
    Development login - mint a token for an email without sending a link.

    Only available when debug is on outside production.
    """
    settings = get_settings()
    if not settings.debug or settings.environment == "production":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    identity = IdentityService(session)
    try:
        user = await identity.find_user_by_email(request.email)
    except UserNotFoundError:
        user = await identity.get_or_create_user(
            user_id=uuid4(), email=request.email, full_name=request.full_name
        )

    token = create_access_token(user.id, user.email, user.full_name)
    return TokenResponse(access_token=token, user_id=str(user.id))


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: CurrentUserDep, session: SessionDep):
    """Who am I: roles, landing page, capabilities and any payment lockout."""
    identity = current_user.identity
    lockout = None
    if identity.organization_id is not None:
        try:
            org = await OrganizationService(session).get(identity.organization_id)
        except PortalError as e:
            raise http_error(e)
        state = payment_lockout(org.account_status, org.payment_overdue_since)
        lockout = LockoutResponse(
            overdue=state.overdue,
            days_overdue=state.days_overdue,
            hard_lockout=state.hard_lockout,
            days_until_lockout=state.days_until_lockout,
        )

    return MeResponse(
        user=UserRef.model_validate(current_user.user),
        roles=sorted(current_user.roles, key=lambda r: r.value),
        primary_role=identity.primary_role,
        organization_id=identity.organization_id,
        landing_path=identity.landing_path,
        is_pending=identity.is_pending,
        capabilities=sorted(capabilities_for(current_user.roles)),
        lockout=lockout,
    )


@router.get("/route-access", response_model=RouteCheckResponse)
async def check_route(
    current_user: CurrentUserDep,
    path: str = Query(..., min_length=1),
):
    """Whether the caller may open a client-side route, and where to go if not."""
    decision = route_access(path, current_user.roles)
    return RouteCheckResponse(allowed=decision.allowed, redirect_to=decision.redirect_to)
