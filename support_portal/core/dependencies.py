"""FastAPI dependencies for authentication, authorization, and context."""

import logging
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AppRole, User
from .database import get_session
from .permissions import can, is_staff, landing_path
from .security import decode_token

if TYPE_CHECKING:
    from ..services.identity import Identity

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(self, user: User, identity: "Identity"):
        self.user = user
        self.identity = identity

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def roles(self) -> set[AppRole]:
        return self.identity.roles

    @property
    def organization_id(self) -> UUID | None:
        return self.identity.organization_id

    @property
    def is_staff(self) -> bool:
        return is_staff(self.roles)

    @property
    def is_client_only(self) -> bool:
        return self.roles == {AppRole.CLIENT}

    def can(self, action: str, resource: str) -> bool:
        return can(self.roles, action, resource)


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user.

    Validates the auth-service token, makes sure a profile row exists and
    resolves the user's roles. A user without roles is still returned.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = UUID(payload.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    # Imported here: the services package imports core modules at load time
    from ..services.identity import IdentityService

    identity_service = IdentityService(session)
    user = await identity_service.get_or_create_user(
        user_id=user_id,
        email=payload.email or f"{user_id}@users.local",
        full_name=payload.user_metadata.get("full_name"),
    )
    identity = await identity_service.resolve(user.id)
    return CurrentUser(user=user, identity=identity)


def require_roles(*roles: AppRole):
    """Build a dependency that admits users holding any of ``roles``.

    Denials carry the caller's landing path so the client can redirect.
    """
    allowed = set(roles)

    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if not current_user.roles & allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": "Insufficient role",
                    "redirect_to": landing_path(current_user.roles),
                },
            )
        return current_user

    return dependency


def require_capability(action: str, resource: str):
    """Build a dependency that checks one capability from the role tables."""

    def dependency(
        current_user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if not current_user.can(action, resource):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": f"Not allowed to {action} {resource}",
                    "redirect_to": landing_path(current_user.roles),
                },
            )
        return current_user

    return dependency


require_staff = require_roles(AppRole.SUPPORT, AppRole.ADMIN, AppRole.OPS)

# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
StaffDep = Annotated[CurrentUser, Depends(require_staff)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
