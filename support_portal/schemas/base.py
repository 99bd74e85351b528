"""Base schemas and common types for the Client Support Portal API."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..models import (
    AccountStatus,
    AppRole,
    NotificationType,
    TicketPriority,
    TicketStatus,
)

__all__ = [
    "AccountStatus",
    "AppRole",
    "NotificationType",
    "TicketPriority",
    "TicketStatus",
    "PortalBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    "UserRef",
    "MessageResponse",
]


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class PortalBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(PortalBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(PortalBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
    request_id: str | None = None


class MessageResponse(PortalBaseModel):
    message: str


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(PortalBaseModel):
    """Minimal user reference for embedding in responses."""

    id: UUID
    email: str
    full_name: str | None = None
    avatar_url: str | None = None

