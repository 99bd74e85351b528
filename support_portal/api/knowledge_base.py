"""Knowledge base routes.

Everyone with a role reads published articles. Support drafts (by hand or
from a resolved ticket); admins and ops publish, feature and delete.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..core import CurrentUser, SessionDep, require_capability
from ..models import KBArticle
from ..schemas import (
    ArticleCreate,
    ArticleDraftResponse,
    ArticleResponse,
    ArticleUpdate,
    CategoryCreate,
    CategoryResponse,
    DraftFromTicketRequest,
    SimilarArticle,
    SimilarArticlesResponse,
)
from ..services.ai_drafting import DraftingAssistant
from ..services.errors import PortalError
from ..services.knowledge_base import (
    ArticleInput,
    ArticleNotFoundError,
    KnowledgeBase,
    extract_keywords,
)
from ..services.knowledge_base import ArticleUpdate as ArticleChanges
from .deps import TicketEngineDep, build_conversation, http_error

router = APIRouter(prefix="/kb", tags=["knowledge-base"])

KBReaderDep = Annotated[CurrentUser, Depends(require_capability("read", "kb"))]
DrafterDep = Annotated[CurrentUser, Depends(require_capability("draft", "kb"))]
PublisherDep = Annotated[CurrentUser, Depends(require_capability("publish", "kb"))]
DeleterDep = Annotated[CurrentUser, Depends(require_capability("delete", "kb"))]
CategoryManagerDep = Annotated[
    CurrentUser, Depends(require_capability("manage_categories", "kb"))
]


def get_knowledge_base(session: SessionDep) -> KnowledgeBase:
    return KnowledgeBase(session)


KnowledgeBaseDep = Annotated[KnowledgeBase, Depends(get_knowledge_base)]


def _can_see_drafts(current_user: CurrentUser) -> bool:
    return current_user.can("draft", "kb") or current_user.can("publish", "kb")


def _similar(articles: list[KBArticle]) -> list[SimilarArticle]:
    return [SimilarArticle.model_validate(a) for a in articles]


# =============================================================================
# CATEGORIES
# =============================================================================


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(current_user: KBReaderDep, kb: KnowledgeBaseDep):
    categories = await kb.list_categories()
    return [CategoryResponse.model_validate(c) for c in categories]


@router.post(
    "/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_category(
    request: CategoryCreate,
    current_user: CategoryManagerDep,
    kb: KnowledgeBaseDep,
):
    try:
        category = await kb.create_category(
            request.name, request.description, request.icon, request.sort_order
        )
    except PortalError as e:
        raise http_error(e)
    return CategoryResponse.model_validate(category)


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    current_user: CategoryManagerDep,
    kb: KnowledgeBaseDep,
):
    """Delete a category; its articles stay, uncategorized."""
    try:
        await kb.delete_category(category_id)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# ARTICLES
# =============================================================================


@router.get("/articles", response_model=list[ArticleResponse])
async def list_articles(
    current_user: KBReaderDep,
    kb: KnowledgeBaseDep,
    category_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    featured: bool = Query(default=False),
    include_drafts: bool = Query(default=False),
):
    """Published articles; staff who draft or publish may include drafts."""
    published_only = not (include_drafts and _can_see_drafts(current_user))
    articles = await kb.list_articles(
        published_only=published_only,
        category_id=category_id,
        search=search,
        featured_only=featured,
    )
    return [ArticleResponse.model_validate(a) for a in articles]


@router.get("/articles/similar", response_model=SimilarArticlesResponse)
async def similar_articles(
    current_user: DrafterDep,
    kb: KnowledgeBaseDep,
    title: str = Query(..., min_length=1, max_length=500),
):
    """Duplicate check while drafting: articles sharing a title keyword."""
    articles = await kb.find_similar(title)
    return SimilarArticlesResponse(keywords=extract_keywords(title), items=_similar(articles))


@router.get("/articles/by-slug/{slug}", response_model=ArticleResponse)
async def read_article(slug: str, current_user: KBReaderDep, kb: KnowledgeBaseDep):
    """Open an article by slug and count the view."""
    try:
        article = await kb.get_by_slug(slug, published_only=not _can_see_drafts(current_user))
        article = await kb.record_view(article)
    except PortalError as e:
        raise http_error(e)
    return ArticleResponse.model_validate(article)


@router.post(
    "/articles",
    response_model=ArticleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_article(
    request: ArticleCreate,
    current_user: DrafterDep,
    kb: KnowledgeBaseDep,
):
    """Save a draft. It stays unpublished until an admin publishes it."""
    try:
        article = await kb.create_draft(
            ArticleInput(
                title=request.title,
                excerpt=request.excerpt,
                content=request.content,
                category_id=request.category_id,
            ),
            author_id=current_user.id,
        )
    except PortalError as e:
        raise http_error(e)
    return ArticleResponse.model_validate(article)


@router.post("/articles/draft-from-ticket", response_model=ArticleDraftResponse)
async def draft_from_ticket(
    request: DraftFromTicketRequest,
    current_user: DrafterDep,
    kb: KnowledgeBaseDep,
    engine: TicketEngineDep,
    session: SessionDep,
):
    """Ask the language model for an article based on a ticket's public thread.

    Nothing is saved; the draft comes back with any similar existing articles.
    """
    try:
        ticket = await engine.get_ticket(request.ticket_id)
        category_name = None
        if request.category_id is not None:
            category_name = (await kb.get_category(request.category_id)).name

        messages = await engine.list_messages(ticket.id, include_internal=False)
        conversation = await build_conversation(session, messages)

        draft = await DraftingAssistant().draft_article(
            ticket.title, ticket.description, conversation, category_name
        )
    except PortalError as e:
        raise http_error(e)

    similar = await kb.find_similar(draft.title)
    return ArticleDraftResponse(
        title=draft.title,
        excerpt=draft.excerpt,
        content=draft.content,
        similar=_similar(similar),
    )


@router.get("/articles/{article_id}", response_model=ArticleResponse)
async def get_article(article_id: UUID, current_user: KBReaderDep, kb: KnowledgeBaseDep):
    try:
        article = await kb.get_article(article_id)
    except PortalError as e:
        raise http_error(e)
    if not article.is_published and not _can_see_drafts(current_user):
        raise http_error(ArticleNotFoundError(f"Article {article_id} not found"))
    return ArticleResponse.model_validate(article)


@router.patch("/articles/{article_id}", response_model=ArticleResponse)
async def update_article(
    article_id: UUID,
    request: ArticleUpdate,
    current_user: DrafterDep,
    kb: KnowledgeBaseDep,
):
    try:
        article = await kb.update_article(
            article_id,
            ArticleChanges(
                title=request.title,
                excerpt=request.excerpt,
                content=request.content,
                category_id=request.category_id,
                clear_category=request.clear_category,
            ),
        )
    except PortalError as e:
        raise http_error(e)
    return ArticleResponse.model_validate(article)


@router.post("/articles/{article_id}/publish", response_model=ArticleResponse)
async def toggle_publish(article_id: UUID, current_user: PublisherDep, kb: KnowledgeBaseDep):
    """Publish a draft, or unpublish a live article."""
    try:
        article = await kb.toggle_publish(article_id)
    except PortalError as e:
        raise http_error(e)
    return ArticleResponse.model_validate(article)


@router.post("/articles/{article_id}/feature", response_model=ArticleResponse)
async def toggle_featured(article_id: UUID, current_user: PublisherDep, kb: KnowledgeBaseDep):
    try:
        article = await kb.toggle_featured(article_id)
    except PortalError as e:
        raise http_error(e)
    return ArticleResponse.model_validate(article)


@router.delete("/articles/{article_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_article(article_id: UUID, current_user: DeleterDep, kb: KnowledgeBaseDep):
    try:
        await kb.delete_article(article_id)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
