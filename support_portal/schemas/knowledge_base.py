"""Pydantic schemas for the knowledge base and AI drafting."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from .base import PortalBaseModel


class CategoryCreate(PortalBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    icon: str | None = Field(default=None, max_length=100)
    sort_order: int = 0


class CategoryResponse(PortalBaseModel):
    id: UUID
    name: str
    slug: str
    description: str | None = None
    icon: str | None = None
    sort_order: int | None = None


class ArticleCreate(PortalBaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    excerpt: str | None = None
    content: str | None = None
    category_id: UUID | None = None


class ArticleUpdate(PortalBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    excerpt: str | None = None
    content: str | None = None
    category_id: UUID | None = None
    clear_category: bool = False


class ArticleResponse(PortalBaseModel):
    id: UUID
    title: str
    slug: str
    excerpt: str | None = None
    content: str | None = None
    category_id: UUID | None = None
    author_id: UUID | None = None
    is_published: bool
    is_featured: bool
    published_at: datetime | None = None
    view_count: int
    created_at: datetime


class SimilarArticle(PortalBaseModel):
    id: UUID
    title: str
    slug: str
    excerpt: str | None = None
    is_published: bool


class SimilarArticlesResponse(PortalBaseModel):
    keywords: list[str]
    items: list[SimilarArticle]


class DraftFromTicketRequest(PortalBaseModel):
    ticket_id: UUID
    category_id: UUID | None = None


class ArticleDraftResponse(PortalBaseModel):
    """Unsaved draft; staff review it before creating the article."""

    title: str
    excerpt: str
    content: str
    similar: list[SimilarArticle] = []


class ReplySuggestionResponse(PortalBaseModel):
    label: str
    text: str


class ReplySuggestionsResponse(PortalBaseModel):
    suggestions: list[ReplySuggestionResponse]
