"""Exception hierarchy shared by the portal services.

Routers translate these into HTTP responses; services never raise
``HTTPException`` themselves.
"""


class PortalError(Exception):
    """Base exception for portal operations."""
    pass


class NotFoundError(PortalError):
    """Requested resource does not exist (or is not visible to the caller)."""
    pass


class ValidationError(PortalError):
    """Input rejected before any write happened."""
    pass


class PermissionDeniedError(PortalError):
    """Caller is authenticated but not allowed to perform the operation."""
    pass


class ConflictError(PortalError):
    """Operation not allowed in the resource's current state."""
    pass


class UpstreamError(PortalError):
    """An external collaborator (storage, email, AI, auth) failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
