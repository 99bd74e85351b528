"""Knowledge base store: categories, articles, drafts and duplicate check."""

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import KBArticle, KBCategory, utcnow
from .errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STOPWORDS = frozenset(
    {"the", "and", "for", "with", "how", "can", "not", "this", "that", "from"}
)
SIMILAR_LIMIT = 5


class ArticleNotFoundError(NotFoundError):
    pass


class CategoryNotFoundError(NotFoundError):
    pass


class CategoryConflictError(ConflictError):
    pass


def slugify(text: str) -> str:
    """Lowercase, collapse non-alphanumerics to '-', trim leading/trailing '-'."""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def extract_keywords(title: str) -> list[str]:
    """Keywords used by the duplicate check.

    >>> extract_keywords("How to fix the mobile menu!")
    ['fix', 'mobile', 'menu']
    """
    cleaned = re.sub(r"[^a-z0-9\s]", "", title.lower())
    return [w for w in cleaned.split() if len(w) >= 3 and w not in STOPWORDS]


@dataclass
class ArticleInput:
    title: str
    excerpt: str | None = None
    content: str | None = None
    category_id: UUID | None = None


@dataclass
class ArticleUpdate:
    title: str | None = None
    excerpt: str | None = None
    content: str | None = None
    category_id: UUID | None = None
    clear_category: bool = False


class KnowledgeBase:
    """Article and category persistence for the self-service help center."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(self) -> list[KBCategory]:
        result = await self.session.execute(
            select(KBCategory).order_by(KBCategory.sort_order.asc(), KBCategory.name)
        )
        return list(result.scalars().all())

    async def create_category(
        self,
        name: str,
        description: str | None = None,
        icon: str | None = None,
        sort_order: int = 0,
        slug: str | None = None,
    ) -> KBCategory:
        if not name or not name.strip():
            raise ValidationError("Category name is required")
        slug = slug or slugify(name)

        existing = await self.session.execute(select(KBCategory).where(KBCategory.slug == slug))
        if existing.scalar_one_or_none() is not None:
            raise CategoryConflictError(f"Category '{slug}' already exists")

        category = KBCategory(
            name=name.strip(),
            slug=slug,
            description=description,
            icon=icon,
            sort_order=sort_order,
        )
        self.session.add(category)
        await self.session.flush()
        return category

    async def get_category(self, category_id: UUID) -> KBCategory:
        category = await self.session.get(KBCategory, category_id)
        if category is None:
            raise CategoryNotFoundError(f"Category {category_id} not found")
        return category

    async def delete_category(self, category_id: UUID) -> None:
        """Delete a category. Its articles become uncategorized."""
        category = await self.get_category(category_id)
        result = await self.session.execute(
            select(KBArticle).where(KBArticle.category_id == category_id)
        )
        for article in result.scalars().all():
            article.category_id = None
        await self.session.delete(category)
        await self.session.flush()

    # =========================================================================
    # ARTICLES
    # =========================================================================

    async def list_articles(
        self,
        published_only: bool = True,
        category_id: UUID | None = None,
        search: str | None = None,
        featured_only: bool = False,
    ) -> list[KBArticle]:
        query = select(KBArticle)
        if published_only:
            query = query.where(KBArticle.is_published.is_(True))
        if featured_only:
            query = query.where(KBArticle.is_featured.is_(True))
        if category_id is not None:
            query = query.where(KBArticle.category_id == category_id)
        if search and search.strip():
            needle = search.strip()
            query = query.where(
                or_(
                    KBArticle.title.icontains(needle, autoescape=True),
                    KBArticle.excerpt.icontains(needle, autoescape=True),
                )
            )
        query = query.order_by(KBArticle.published_at.desc(), KBArticle.created_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_article(self, article_id: UUID) -> KBArticle:
        article = await self.session.get(KBArticle, article_id)
        if article is None:
            raise ArticleNotFoundError(f"Article {article_id} not found")
        return article

    async def get_by_slug(self, slug: str, published_only: bool = True) -> KBArticle:
        query = select(KBArticle).where(KBArticle.slug == slug)
        if published_only:
            query = query.where(KBArticle.is_published.is_(True))
        result = await self.session.execute(query.limit(1))
        article = result.scalar_one_or_none()
        if article is None:
            raise ArticleNotFoundError(f"Article '{slug}' not found")
        return article

    async def record_view(self, article: KBArticle) -> KBArticle:
        if article.is_published:
            article.view_count = (article.view_count or 0) + 1
            await self.session.flush()
        return article

    async def create_draft(self, input: ArticleInput, author_id: UUID | None) -> KBArticle:
        """Save an unpublished, unfeatured article for admin review."""
        if not input.title or not input.title.strip():
            raise ValidationError("Title is required")
        if input.category_id is not None:
            await self.get_category(input.category_id)

        article = KBArticle(
            title=input.title.strip(),
            slug=slugify(input.title),
            excerpt=input.excerpt or None,
            content=input.content or None,
            category_id=input.category_id,
            author_id=author_id,
            is_published=False,
            is_featured=False,
            view_count=0,
        )
        self.session.add(article)
        await self.session.flush()
        logger.info(f"Created draft article {article.id} ({article.slug})")
        return article

    async def update_article(self, article_id: UUID, input: ArticleUpdate) -> KBArticle:
        article = await self.get_article(article_id)
        if input.title is not None:
            if not input.title.strip():
                raise ValidationError("Title is required")
            article.title = input.title.strip()
            article.slug = slugify(input.title)
        if input.excerpt is not None:
            article.excerpt = input.excerpt or None
        if input.content is not None:
            article.content = input.content or None
        if input.clear_category:
            article.category_id = None
        elif input.category_id is not None:
            await self.get_category(input.category_id)
            article.category_id = input.category_id
        await self.session.flush()
        return article

    async def toggle_publish(self, article_id: UUID) -> KBArticle:
        article = await self.get_article(article_id)
        article.is_published = not article.is_published
        if article.is_published and article.published_at is None:
            article.published_at = utcnow()
        await self.session.flush()
        logger.info(
            f"Article {article_id} {'published' if article.is_published else 'unpublished'}"
        )
        return article

    async def toggle_featured(self, article_id: UUID) -> KBArticle:
        article = await self.get_article(article_id)
        article.is_featured = not article.is_featured
        await self.session.flush()
        return article

    async def delete_article(self, article_id: UUID) -> None:
        article = await self.get_article(article_id)
        await self.session.delete(article)
        await self.session.flush()

    # =========================================================================
    # DUPLICATE CHECK
    # =========================================================================

    async def find_similar(self, title: str, limit: int = SIMILAR_LIMIT) -> list[KBArticle]:
        """Articles whose title contains any keyword of ``title``. Unranked."""
        keywords = extract_keywords(title)
        if not keywords:
            return []
        result = await self.session.execute(
            select(KBArticle)
            .where(or_(*(KBArticle.title.icontains(kw, autoescape=True) for kw in keywords)))
            .limit(limit)
        )
        return list(result.scalars().all())
