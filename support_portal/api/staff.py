"""Staff and role administration routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from ..core import CurrentUser, SessionDep, require_capability
from ..models import AppRole
from ..schemas import RoleGrant, StaffResponse, UserRef
from ..services.errors import PortalError
from ..services.identity import IdentityService
from .deps import http_error

router = APIRouter(prefix="/staff", tags=["staff"])

RoleManagerDep = Annotated[CurrentUser, Depends(require_capability("manage", "role"))]


def _staff_response(user, roles: set[AppRole]) -> StaffResponse:
    return StaffResponse(
        user=UserRef.model_validate(user),
        roles=sorted(roles, key=lambda r: r.value),
    )


@router.get("", response_model=list[StaffResponse])
async def list_staff(current_user: RoleManagerDep, session: SessionDep):
    """Users holding support, admin or ops, with all their roles."""
    staff = await IdentityService(session).list_users_with_roles()
    return [_staff_response(user, roles) for user, roles in staff]


@router.post("/roles", response_model=StaffResponse, status_code=status.HTTP_201_CREATED)
async def grant_role(request: RoleGrant, current_user: RoleManagerDep, session: SessionDep):
    """Grant a role to an existing user by email. Granting twice is a no-op."""
    identity = IdentityService(session)
    try:
        user = await identity.find_user_by_email(request.email)
        roles = await identity.grant_role(user.id, AppRole(request.role))
    except PortalError as e:
        raise http_error(e)
    return _staff_response(user, roles)


@router.delete("/{user_id}/roles/{role}", response_model=StaffResponse)
async def revoke_role(
    user_id: UUID,
    role: AppRole,
    current_user: RoleManagerDep,
    session: SessionDep,
):
    if user_id == current_user.id and role in (AppRole.ADMIN, AppRole.OPS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot remove your own administrative role",
        )
    identity = IdentityService(session)
    try:
        user = await identity.find_user(user_id)
        roles = await identity.revoke_role(user_id, role)
    except PortalError as e:
        raise http_error(e)
    return _staff_response(user, roles)
