"""Business logic services for the Client Support Portal."""

from .attachments import UploadManager
from .errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PortalError,
    UpstreamError,
    ValidationError,
)
from .hours import HourLedger, NoActiveAllocationError, TimeLogRecorder, Usage, compute_usage
from .identity import Identity, IdentityService
from .knowledge_base import KnowledgeBase, extract_keywords
from .magic_link import CooldownActiveError, MagicLinkService
from .notifications import EmailSender, NotificationService
from .ops import OpsService
from .organizations import OrganizationService
from .sla import SLABadge, SLALevel, classify_sla
from .storage import StorageClient
from .tickets import (
    InvalidAssigneeError,
    InvalidTransitionError,
    TicketEngine,
    TicketNotFoundError,
)

__all__ = [
    # Errors
    "PortalError",
    "NotFoundError",
    "ValidationError",
    "PermissionDeniedError",
    "ConflictError",
    "UpstreamError",
    # Identity
    "Identity",
    "IdentityService",
    # Tickets
    "TicketEngine",
    "TicketNotFoundError",
    "InvalidTransitionError",
    "InvalidAssigneeError",
    "SLABadge",
    "SLALevel",
    "classify_sla",
    # Hours
    "HourLedger",
    "TimeLogRecorder",
    "NoActiveAllocationError",
    "Usage",
    "compute_usage",
    # Notifications
    "NotificationService",
    "EmailSender",
    # Knowledge base
    "KnowledgeBase",
    "extract_keywords",
    # Files
    "StorageClient",
    "UploadManager",
    # Accounts
    "OrganizationService",
    "OpsService",
    "MagicLinkService",
    "CooldownActiveError",
]
