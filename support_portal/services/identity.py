"""Identity and role resolution.

Maps an authenticated principal to its roles and, for clients, to the single
organization it belongs to. A user without roles is not an error: the portal
shows an "access pending" page until staff grant one.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.permissions import landing_path, primary_role
from ..models import AppRole, OrganizationMember, STAFF_ROLES, User, UserRole
from .errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class UserNotFoundError(NotFoundError):
    pass


class MembershipConflictError(ConflictError):
    """A client user may only belong to one organization."""
    pass


@dataclass
class Identity:
    """Resolved roles and tenant of a user."""

    user_id: UUID
    roles: set[AppRole] = field(default_factory=set)
    organization_id: UUID | None = None

    @property
    def primary_role(self) -> AppRole | None:
        return primary_role(self.roles)

    @property
    def landing_path(self) -> str:
        return landing_path(self.roles)

    @property
    def is_pending(self) -> bool:
        return not self.roles

    def has_role(self, role: AppRole) -> bool:
        return role in self.roles


class IdentityService:
    """Role resolver and role/membership administration."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_user(
        self,
        user_id: UUID,
        email: str,
        full_name: str | None = None,
    ) -> User:
        """Fetch the profile for an auth-service user, creating it on first sight."""
        user = await self.session.get(User, user_id)
        if user:
            if email and user.email != email:
                user.email = email
            if full_name and not user.full_name:
                user.full_name = full_name
            return user

        logger.info(f"Creating profile for new user {user_id} ({email})")
        user = User(id=user_id, email=email, full_name=full_name)
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_roles(self, user_id: UUID) -> set[AppRole]:
        result = await self.session.execute(
            select(UserRole.role).where(UserRole.user_id == user_id)
        )
        return {AppRole(r) for r in result.scalars().all()}

    async def get_client_organization(self, user_id: UUID) -> UUID | None:
        result = await self.session.execute(
            select(OrganizationMember.organization_id)
            .where(OrganizationMember.user_id == user_id)
            .order_by(OrganizationMember.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve(self, user_id: UUID) -> Identity:
        """Resolve roles and, when the user is a client, the owning organization."""
        roles = await self.get_roles(user_id)
        org_id = None
        if AppRole.CLIENT in roles:
            org_id = await self.get_client_organization(user_id)
            if org_id is None:
                logger.warning(f"Client user {user_id} has no organization membership")
        return Identity(user_id=user_id, roles=roles, organization_id=org_id)

    # =========================================================================
    # ROLE ADMINISTRATION
    # =========================================================================

    async def find_user(self, user_id: UUID) -> User:
        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def grant_role(self, user_id: UUID, role: AppRole) -> set[AppRole]:
        await self.find_user(user_id)

        roles = await self.get_roles(user_id)
        if role not in roles:
            self.session.add(UserRole(user_id=user_id, role=role))
            await self.session.flush()
            roles.add(role)
            logger.info(f"Granted role {role.value} to user {user_id}")
        return roles

    async def revoke_role(self, user_id: UUID, role: AppRole) -> set[AppRole]:
        await self.session.execute(
            delete(UserRole).where(UserRole.user_id == user_id, UserRole.role == role)
        )
        await self.session.flush()
        logger.info(f"Revoked role {role.value} from user {user_id}")
        return await self.get_roles(user_id)

    async def list_users_with_roles(
        self, roles: frozenset[AppRole] = STAFF_ROLES
    ) -> list[tuple[User, set[AppRole]]]:
        """Users holding any of ``roles``, with their full role set."""
        result = await self.session.execute(
            select(User, UserRole.role)
            .join(UserRole, UserRole.user_id == User.id)
            .order_by(User.email)
        )
        by_user: dict[UUID, tuple[User, set[AppRole]]] = {}
        for user, role in result.all():
            by_user.setdefault(user.id, (user, set()))[1].add(AppRole(role))
        return [
            (user, held) for user, held in by_user.values() if held & roles
        ]

    async def add_member(
        self,
        organization_id: UUID,
        user_id: UUID,
        is_primary_contact: bool = False,
    ) -> OrganizationMember:
        """Attach a user to an organization as a client."""
        existing = await self.get_client_organization(user_id)
        if existing is not None and existing != organization_id:
            raise MembershipConflictError(
                f"User {user_id} already belongs to organization {existing}"
            )
        if existing == organization_id:
            result = await self.session.execute(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.user_id == user_id,
                )
            )
            return result.scalar_one()

        member = OrganizationMember(
            organization_id=organization_id,
            user_id=user_id,
            is_primary_contact=is_primary_contact,
        )
        self.session.add(member)
        await self.grant_role(user_id, AppRole.CLIENT)
        await self.session.flush()
        return member

    async def find_user_by_email(self, email: str) -> User:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(f"No user with email {email}")
        return user

    async def list_members(self, organization_id: UUID) -> list[tuple[OrganizationMember, User]]:
        result = await self.session.execute(
            select(OrganizationMember, User)
            .join(User, User.id == OrganizationMember.user_id)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at)
        )
        return [(member, user) for member, user in result.all()]

    async def remove_member(self, organization_id: UUID, member_id: UUID) -> None:
        member = await self.session.get(OrganizationMember, member_id)
        if member is None or member.organization_id != organization_id:
            raise NotFoundError(f"Member {member_id} not found")
        await self.session.delete(member)
        await self.session.flush()
        logger.info(f"Removed user {member.user_id} from organization {organization_id}")
