"""Client Support Portal API Schemas.

Schemas are organized by domain:
- base: Common types and errors
- tickets: Tickets, messages, surveys
- hours: Allocations and time logs
- notifications: Inbox and preferences
- knowledge_base: Categories, articles, AI drafts
- organizations: Organizations, members, staff, current user, sign-in
- ops: Files, billing, ops dashboard
"""

from .base import (
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    PortalBaseModel,
    UserRef,
)
from .hours import (
    AllocationCreate,
    AllocationResponse,
    AllocationUpdate,
    CurrentHoursResponse,
    HoursAdjustment,
    TimeLogCreate,
    TimeLogListResponse,
    TimeLogResponse,
    TimeLogUpdate,
)
from .knowledge_base import (
    ArticleCreate,
    ArticleDraftResponse,
    ArticleResponse,
    ArticleUpdate,
    CategoryCreate,
    CategoryResponse,
    DraftFromTicketRequest,
    ReplySuggestionResponse,
    ReplySuggestionsResponse,
    SimilarArticle,
    SimilarArticlesResponse,
)
from .notifications import (
    MarkAllResponse,
    NotificationListResponse,
    NotificationResponse,
    PreferencesResponse,
    PreferencesUpdate,
    UnreadCountResponse,
)
from .ops import (
    AttachmentResponse,
    BillingResponse,
    ChurnRiskResponse,
    DocumentResponse,
    OpsOverviewResponse,
    OrgUsageResponse,
    ProjectionPointResponse,
    SignedUrlResponse,
    UtilizationResponse,
)
from .organizations import (
    AccountStatusUpdate,
    LockoutResponse,
    MagicLinkRequest,
    MagicLinkResponse,
    MeResponse,
    MemberAdd,
    MemberResponse,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationSummaryResponse,
    OrganizationUpdate,
    RoleGrant,
    RouteCheckResponse,
    StaffResponse,
)
from .tickets import (
    AllocationUsage,
    AssignRequest,
    AssigneeResponse,
    BulkUpdateRequest,
    BulkUpdateResponse,
    MessageCreate,
    SLABadgeResponse,
    SLASummaryResponse,
    StatusChange,
    SurveyCreate,
    SurveyResponse,
    TicketContextResponse,
    TicketCreate,
    TicketListResponse,
    TicketMessageResponse,
    TicketResponse,
    TicketUpdate,
    TransitionsResponse,
)
