"""Role-to-capability tables.

Every role check in the portal goes through this module: routers ask
``can(roles, action, resource)`` instead of comparing role names, route
families are gated by ``route_access``, and ticket status writes are checked
against ``TRANSITIONS`` before they reach the database.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from ..models import AppRole, TicketStatus

ALL_ROLES = frozenset(AppRole)
STAFF = frozenset({AppRole.SUPPORT, AppRole.ADMIN, AppRole.OPS})

# Priority used to pick the landing dashboard
ROLE_PRIORITY = (AppRole.OPS, AppRole.ADMIN, AppRole.SUPPORT, AppRole.CLIENT)

PENDING_PATH = "/pending"
LOGIN_PATH = "/login"


# =============================================================================
# CAPABILITIES
# =============================================================================

_CLIENT_CAPABILITIES = {
    "ticket:create",
    "ticket:read_own",
    "ticket:update_own",
    "ticket:reply",
    "hours:read_own",
    "document:read_own",
    "document:upload",
    "attachment:upload",
    "survey:submit",
    "billing:read_own",
    "kb:read",
    "notification:manage",
}

_SUPPORT_CAPABILITIES = {
    "ticket:create",
    "ticket:read",
    "ticket:update",
    "ticket:assign",
    "ticket:reply",
    "ticket:internal_note",
    "ticket:bulk_update",
    "time_log:create",
    "time_log:read",
    "attachment:upload",
    "document:read",
    "document:upload",
    "organization:read",
    "hours:read",
    "kb:read",
    "kb:draft",
    "notification:manage",
}

_ADMIN_CAPABILITIES = _SUPPORT_CAPABILITIES | {
    "organization:create",
    "organization:update",
    "role:manage",
    "kb:publish",
    "kb:delete",
    "kb:manage_categories",
    "hours:adjust",
    "allocation:manage",
    "billing:read",
    "ops:read",
}

_OPS_CAPABILITIES = {
    "ticket:read",
    "ticket:update",
    "ticket:assign",
    "ticket:reply",
    "ticket:internal_note",
    "ticket:bulk_update",
    "time_log:create",
    "time_log:read",
    "attachment:upload",
    "document:read",
    "organization:read",
    "organization:create",
    "organization:update",
    "role:manage",
    "hours:read",
    "hours:adjust",
    "allocation:manage",
    "billing:read",
    "ops:read",
    "kb:read",
    "kb:publish",
    "kb:delete",
    "kb:manage_categories",
    "notification:manage",
}

CAPABILITIES: dict[AppRole, frozenset[str]] = {
    AppRole.CLIENT: frozenset(_CLIENT_CAPABILITIES),
    AppRole.SUPPORT: frozenset(_SUPPORT_CAPABILITIES),
    AppRole.ADMIN: frozenset(_ADMIN_CAPABILITIES),
    AppRole.OPS: frozenset(_OPS_CAPABILITIES),
}


def capabilities_for(roles: Iterable[AppRole]) -> frozenset[str]:
    """Union of the capabilities of every held role."""
    caps: set[str] = set()
    for role in roles:
        caps |= CAPABILITIES.get(AppRole(role), frozenset())
    return frozenset(caps)


def can(roles: Iterable[AppRole], action: str, resource: str) -> bool:
    """Check whether any of ``roles`` grants ``action`` on ``resource``."""
    return f"{resource}:{action}" in capabilities_for(roles)


def is_staff(roles: Iterable[AppRole]) -> bool:
    return any(AppRole(r) in STAFF for r in roles)


def primary_role(roles: Iterable[AppRole]) -> AppRole | None:
    """Pick the dashboard role: ops > admin > support > client."""
    held = {AppRole(r) for r in roles}
    for role in ROLE_PRIORITY:
        if role in held:
            return role
    return None


def landing_path(roles: Iterable[AppRole]) -> str:
    """Where a signed-in user lands. No roles means access is pending."""
    role = primary_role(roles)
    if role is None:
        return PENDING_PATH
    return f"/{role.value}"


# =============================================================================
# ROUTE FAMILIES
# =============================================================================

ROUTE_FAMILIES: dict[str, frozenset[AppRole]] = {
    "/client": ALL_ROLES,
    "/support": STAFF,
    "/ops": STAFF,
}

# Legacy family kept for old bookmarks and notification links
LEGACY_ALIASES = {"/admin": "/support"}


@dataclass(frozen=True)
class RouteDecision:
    allowed: bool
    redirect_to: str | None = None


def _family(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def route_access(path: str, roles: Iterable[AppRole] | None) -> RouteDecision:
    """Decide whether ``roles`` may open ``path``.

    ``roles`` is None for an anonymous visitor.
    """
    for legacy, target in LEGACY_ALIASES.items():
        if _family(path, legacy):
            return RouteDecision(allowed=False, redirect_to=target + path[len(legacy):])

    if roles is None:
        return RouteDecision(allowed=False, redirect_to=LOGIN_PATH)

    held = {AppRole(r) for r in roles}
    for prefix, allowed_roles in ROUTE_FAMILIES.items():
        if _family(path, prefix):
            if held & allowed_roles:
                return RouteDecision(allowed=True)
            role = primary_role(held)
            return RouteDecision(
                allowed=False,
                redirect_to=f"/{role.value}" if role else LOGIN_PATH,
            )

    # Unknown paths render the not-found page
    return RouteDecision(allowed=True)


def ticket_path(roles: Iterable[AppRole], ticket_id: UUID | str | None) -> str | None:
    """Deep link for a notification's ticket.

    Admins land on the ticket list rather than the ticket itself.
    """
    if not ticket_id:
        return None
    held = {AppRole(r) for r in roles}
    if AppRole.ADMIN in held:
        return "/admin/tickets"
    if held & STAFF:
        return f"/support/tickets/{ticket_id}"
    return f"/client/tickets/{ticket_id}"


# =============================================================================
# TICKET STATUS TRANSITIONS
# =============================================================================

_S = TicketStatus

STAFF_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    _S.OPEN: frozenset({_S.IN_PROGRESS, _S.WAITING_ON_CLIENT, _S.RESOLVED, _S.CLOSED}),
    _S.IN_PROGRESS: frozenset({_S.OPEN, _S.WAITING_ON_CLIENT, _S.RESOLVED, _S.CLOSED}),
    _S.WAITING_ON_CLIENT: frozenset({_S.OPEN, _S.IN_PROGRESS, _S.RESOLVED, _S.CLOSED}),
    _S.RESOLVED: frozenset({_S.OPEN, _S.IN_PROGRESS, _S.CLOSED}),
    _S.CLOSED: frozenset({_S.OPEN}),
}

# Clients can only close their ticket or hand it back to the team
CLIENT_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    _S.OPEN: frozenset({_S.CLOSED}),
    _S.IN_PROGRESS: frozenset({_S.CLOSED}),
    _S.WAITING_ON_CLIENT: frozenset({_S.OPEN, _S.CLOSED}),
    _S.RESOLVED: frozenset({_S.OPEN, _S.CLOSED}),
    _S.CLOSED: frozenset({_S.OPEN}),
}


def allowed_transitions(
    roles: Iterable[AppRole], current: TicketStatus
) -> frozenset[TicketStatus]:
    """Statuses reachable from ``current`` for the given roles."""
    current = TicketStatus(current)
    held = {AppRole(r) for r in roles}
    allowed: set[TicketStatus] = set()
    if held & {AppRole.SUPPORT, AppRole.ADMIN, AppRole.OPS}:
        allowed |= STAFF_TRANSITIONS[current]
    if AppRole.CLIENT in held:
        allowed |= CLIENT_TRANSITIONS[current]
    return frozenset(allowed)


def can_transition(
    roles: Iterable[AppRole], current: TicketStatus, target: TicketStatus
) -> bool:
    if TicketStatus(current) == TicketStatus(target):
        return True
    return TicketStatus(target) in allowed_transitions(roles, current)
