"""API routes for the client support portal."""

from fastapi import APIRouter

from .auth import router as auth_router
from .hours import router as hours_router
from .knowledge_base import router as knowledge_base_router
from .notifications import router as notifications_router
from .ops import router as ops_router
from .organizations import router as organizations_router
from .staff import router as staff_router
from .tickets import router as tickets_router

# Main API router
api_router = APIRouter()

# Sign-in, current user and route checks
api_router.include_router(auth_router)

# Ticket desk (tickets, replies, time logs, attachments)
api_router.include_router(tickets_router)
api_router.include_router(hours_router)

# Client accounts and staff administration
api_router.include_router(organizations_router)
api_router.include_router(staff_router)

api_router.include_router(notifications_router)
api_router.include_router(knowledge_base_router)
api_router.include_router(ops_router)

__all__ = ["api_router"]
