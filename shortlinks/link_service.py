"""Short link service layer - link store, uniqueness and redirect resolution.

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                      Service Layer                          │
    │  ┌──────────────────┐  ┌──────────────────┐                 │
    │  │ ShortLinkService │  │ RedirectResolver │                 │
    │  │                  │  │                  │                 │
    │  │ • create         │  │ • resolve        │                 │
    │  │ • get / list     │  │ • increment      │                 │
    │  │ • update/delete  │  │   click count    │                 │
    │  │ • statistics     │  │                  │                 │
    │  └──────────────────┘  └──────────────────┘                 │
    └─────────────────────────────────────────────────────────────┘
                │                    │             │
                ▼                    ▼             ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐
    │   PostgreSQL    │  │ PostgreSQL (own │  │    Redis     │
    │ (request session)│ │ session per op) │  │ (LinkCache)  │
    └─────────────────┘  └─────────────────┘  └──────────────┘

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST /api/  │
    │ shortlinks  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Normalise & │
    │ validate URL│
    └──────┬──────┘
           ▼
    ┌─────────────┐  custom  ┌──────────────────────┐
    │ Slug given? │ ───────▶ │ format / reserved /  │
    └──────┬──────┘          │ exists (ci) checks   │
           │ no              └──────────────────────┘
           ▼
    ┌─────────────┐
    │ generate +  │  up to SLUG_MAX_ATTEMPTS,
    │ exists (ci) │  then SlugGenerationError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT      │  unique index race -> SlugTakenError
    └─────────────┘

Redirect Resolution Flow
------------------------
::
    ┌─────────────┐
    │ resolve()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐  hit   ┌─────────┐
    │ LinkCache   │ ─────▶ │ FOUND   │
    └──────┬──────┘        └─────────┘
           │ miss / cache error
           ▼
    ┌─────────────┐  none  ┌───────────┐
    │ SELECT (ci) │ ─────▶ │ NOT_FOUND │
    └──────┬──────┘        └───────────┘
           ▼
    ┌─────────────┐  no    ┌───────────┐
    │ is_valid()? │ ─────▶ │ INVALID   │
    └──────┬──────┘        └───────────┘
           ▼
    ┌─────────────┐
    │ cache URL,  │  TTL = min(24h, time to expiry)
    │ FOUND       │
    └─────────────┘

Key Behaviours
===============
- Every slug comparison is case-insensitive.
- Only valid links are cached; misses and invalid links are never cached.
- Cache failures on the redirect path are logged and fall back to the database.
- Update and delete evict before committing; if eviction fails the change
  is rolled back and CacheInvalidationError is raised.
- increment_click_count() never raises.
"""

import datetime
import logging
import time
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter, Histogram
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.cache import LinkCache
from shortlinks.config import Settings
from shortlinks.enums import CacheStatus, RequestStatus, ResolutionStatus, SortDirection, SortField
from shortlinks.exceptions import (
    CacheInvalidationError,
    InvalidSlugError,
    LinkNotFoundError,
    LinkValidationError,
    PermissionDeniedError,
    ReservedSlugError,
    SlugGenerationError,
    SlugTakenError,
)
from shortlinks.models import LinkVisit, ShortLink, as_utc, utcnow
from shortlinks.pagination import Page, PageRequest
from shortlinks.slugs import generate_random_slug, is_reserved_slug, is_valid_slug
from shortlinks.urls import validate_and_normalize

__all__ = [
    "LinkStatistics",
    "RedirectResolver",
    "Resolution",
    "ShortLinkService",
    "can_manage",
    "find_link_by_slug",
]

logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlinks_creation_requests_total",
    "Total short link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlinks_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
SLUG_COLLISIONS_TOTAL = Counter(
    "shortlinks_slug_collisions_total",
    "Randomly generated slugs that were already taken",
)
RESOLVE_REQUESTS_TOTAL = Counter(
    "shortlinks_resolve_requests_total",
    "Total slug resolutions by outcome",
    ["status", "cache_hit"],
)
RESOLVE_DURATION = Histogram(
    "shortlinks_resolve_duration_seconds",
    "Time taken to resolve a slug",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlinks_cache_errors_total",
    "Cache operations that failed",
    ["operation"],
)
CLICK_INCREMENTS_TOTAL = Counter(
    "shortlinks_click_increments_total",
    "Click count increments by outcome",
    ["status"],
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    url: str | None = None

    @property
    def found(self) -> bool:
        return self.status is ResolutionStatus.FOUND


@dataclass(frozen=True)
class LinkStatistics:
    total_links: int
    total_clicks: int
    active_links: int

    @property
    def average_clicks_per_link(self) -> float:
        return self.total_clicks / self.total_links if self.total_links else 0.0


_SORT_COLUMNS = {
    SortField.CREATED_AT: ShortLink.created_at,
    SortField.CLICK_COUNT: ShortLink.click_count,
    SortField.SLUG: ShortLink.slug,
}


def _slug_matches(slug: str):
    return func.lower(ShortLink.slug) == slug.lower()


def _valid_clause(now: datetime.datetime):
    return and_(
        ShortLink.is_active.is_(True),
        or_(ShortLink.expires_at.is_(None), ShortLink.expires_at > now),
    )


def _cache_ttl_for(link: ShortLink, default_ttl: int, now: datetime.datetime | None = None) -> int:
    expires_at = as_utc(link.expires_at)
    if expires_at is None:
        return default_ttl
    remaining = int((expires_at - (now or utcnow())).total_seconds())
    return min(default_ttl, remaining)


async def find_link_by_slug(session: AsyncSession, slug: str) -> ShortLink | None:
    result = await session.execute(select(ShortLink).where(_slug_matches(slug)))
    return result.scalar_one_or_none()


def can_manage(link: ShortLink, username: str, is_admin: bool) -> bool:
    """Owners manage their own links; admins manage everything."""
    if is_admin:
        return True
    return link.created_by is not None and link.created_by == username


# ============================================================================
# LINK STORE
# ============================================================================


class ShortLinkService:
    """Create, read, update and delete short links.

    Works on the request's database session. The cache is optional and only
    used to evict entries on update/delete and to warm new links.

    Example:
        >>> service = ShortLinkService(db, cache, settings)
        >>> link = await service.create_link("example.com", "docs", owner="alice")
        >>> link.original_url
        'https://example.com'
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: LinkCache | None,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._db = db
        self._cache = cache
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_context(cls, ctx: Any) -> "ShortLinkService":
        return cls(ctx.database, ctx.link_cache, ctx.settings, ctx.logger)

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_link(
        self,
        url: str,
        custom_slug: str | None = None,
        owner: str | None = None,
        expires_at: datetime.datetime | None = None,
    ) -> ShortLink:
        """Create a short link with a custom or generated slug.

        Raises:
            InvalidURLError: URL is not a well-formed http/https URL.
            InvalidSlugError / ReservedSlugError / SlugTakenError: custom slug rejected.
            LinkValidationError: expiry is not in the future.
            SlugGenerationError: no free slug within SLUG_MAX_ATTEMPTS.
        """
        start_time = time.perf_counter()
        try:
            normalized_url = validate_and_normalize(url)
            expires_at = as_utc(expires_at)
            if expires_at is not None and expires_at <= utcnow():
                raise LinkValidationError("Expiration must be in the future")

            if custom_slug is not None and custom_slug.strip():
                slug = await self._validate_custom_slug(custom_slug.strip())
            else:
                slug = await self._generate_unique_slug()

            link = await self._store_link(slug, normalized_url, owner, expires_at)
        except LinkValidationError as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Short link creation rejected: {exc}")
            raise
        except Exception as exc:
            LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"Short link creation error: {exc}")
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Created short link: {link.slug} -> {link.original_url} (by: {owner})")
        await self._warm_cache(link)
        return link

    async def get_link(self, slug: str) -> ShortLink | None:
        return await find_link_by_slug(self._db, slug)

    async def get_managed_link(self, slug: str, username: str, is_admin: bool) -> ShortLink:
        """Look up a link the caller may modify or inspect.

        Raises:
            LinkNotFoundError: No link with this slug.
            PermissionDeniedError: Caller is neither the owner nor an admin.
        """
        link = await self.get_link(slug)
        if link is None:
            raise LinkNotFoundError(slug)
        if not can_manage(link, username, is_admin):
            raise PermissionDeniedError(f"User '{username}' cannot manage short link '{link.slug}'")
        return link

    async def slug_exists(self, slug: str) -> bool:
        result = await self._db.execute(select(ShortLink.id).where(_slug_matches(slug)).limit(1))
        return result.first() is not None

    async def list_links(
        self,
        owner: str | None,
        page_request: PageRequest,
        sort_by: SortField = SortField.CREATED_AT,
        sort_dir: SortDirection = SortDirection.DESC,
    ) -> Page[ShortLink]:
        """List links, optionally restricted to one owner. owner=None lists everything."""
        filters = [] if owner is None else [ShortLink.created_by == owner]

        total = await self._db.scalar(select(func.count()).select_from(ShortLink).where(*filters))

        column = _SORT_COLUMNS[sort_by]
        ordering = column.asc() if sort_dir is SortDirection.ASC else column.desc()
        tiebreak = ShortLink.id.asc() if sort_dir is SortDirection.ASC else ShortLink.id.desc()
        result = await self._db.execute(
            select(ShortLink)
            .where(*filters)
            .order_by(ordering, tiebreak)
            .offset(page_request.offset)
            .limit(page_request.size)
        )
        return Page(request=page_request, total=total or 0, items=list(result.scalars().all()))

    async def update_link(self, link: ShortLink, changes: dict[str, Any]) -> ShortLink:
        """Apply an admin update. Accepted keys: url, is_active, expires_at."""
        if "url" in changes and changes["url"] is not None:
            link.original_url = validate_and_normalize(changes["url"])
        if "is_active" in changes and changes["is_active"] is not None:
            link.is_active = bool(changes["is_active"])
        if "expires_at" in changes:
            link.expires_at = as_utc(changes["expires_at"])

        self._db.add(link)
        await self._invalidate(link.slug)
        await self._db.commit()
        await self._db.refresh(link)
        self._logger.info(f"Updated short link: {link.slug}")
        return link

    async def delete_link(self, link: ShortLink) -> None:
        slug, link_id = link.slug, link.id
        # Visits outlive their link; detach them explicitly so this does not
        # depend on the database enforcing ON DELETE SET NULL.
        await self._db.execute(
            update(LinkVisit).where(LinkVisit.short_link_id == link_id).values(short_link_id=None)
        )
        await self._db.execute(sa_delete(ShortLink).where(ShortLink.id == link_id))
        await self._invalidate(slug)
        await self._db.commit()
        self._logger.info(f"Deleted short link: {slug}")

    async def get_statistics(self, owner: str | None = None) -> LinkStatistics:
        filters = [] if owner is None else [ShortLink.created_by == owner]
        row = (
            await self._db.execute(
                select(
                    func.count(ShortLink.id),
                    func.coalesce(func.sum(ShortLink.click_count), 0),
                    func.coalesce(func.sum(case((_valid_clause(utcnow()), 1), else_=0)), 0),
                ).where(*filters)
            )
        ).one()
        return LinkStatistics(total_links=int(row[0]), total_clicks=int(row[1]), active_links=int(row[2]))

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _validate_custom_slug(self, slug: str) -> str:
        if not is_valid_slug(slug):
            raise InvalidSlugError(slug)
        if is_reserved_slug(slug):
            raise ReservedSlugError(slug)
        if await self.slug_exists(slug):
            raise SlugTakenError(slug)
        return slug

    async def _generate_unique_slug(self) -> str:
        max_attempts = self._settings.SLUG_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            slug = generate_random_slug(self._settings.SLUG_LENGTH)
            if not await self.slug_exists(slug):
                return slug
            SLUG_COLLISIONS_TOTAL.inc()
            self._logger.warning(f"Slug collision detected: {slug}, attempt {attempt}")
        raise SlugGenerationError(max_attempts)

    async def _store_link(
        self,
        slug: str,
        url: str,
        owner: str | None,
        expires_at: datetime.datetime | None,
    ) -> ShortLink:
        link = ShortLink(
            slug=slug,
            original_url=url,
            click_count=0,
            is_active=True,
            expires_at=expires_at,
            created_by=owner,
        )
        try:
            self._db.add(link)
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            raise SlugTakenError(slug) from exc
        await self._db.refresh(link)
        assert link.id is not None, "link.id must be set after commit"
        return link

    async def _warm_cache(self, link: ShortLink) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set_url(link.slug, link.original_url, _cache_ttl_for(link, self._cache.ttl_seconds))
        except Exception as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache warm failed for {link.slug}: {exc}")

    async def _invalidate(self, slug: str) -> None:
        """Evict ahead of the commit. A failed eviction rolls the change back
        so an update or delete is never reported while the old URL stays cached."""
        if self._cache is None:
            return
        try:
            await self._cache.evict(slug)
        except Exception as exc:
            CACHE_ERRORS_TOTAL.labels(operation="evict").inc()
            self._logger.error(f"Cache eviction failed for {slug}, rolling back: {exc}")
            await self._db.rollback()
            raise CacheInvalidationError(slug) from exc


# ============================================================================
# REDIRECT RESOLVER
# ============================================================================


class RedirectResolver:
    """Slug -> URL resolution for the redirect path.

    Holds no request state: it opens a short-lived session per operation so
    it can serve both the request handler and detached background jobs.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LinkCache | None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._logger = logger or logging.getLogger(__name__)

    async def resolve(self, slug: str) -> Resolution:
        start_time = time.perf_counter()
        try:
            cached_url = await self._read_cache(slug)
            if cached_url:
                RESOLVE_REQUESTS_TOTAL.labels(status=ResolutionStatus.FOUND, cache_hit=CacheStatus.HIT).inc()
                self._logger.debug(f"Cache hit for {slug}")
                return Resolution(ResolutionStatus.FOUND, cached_url)

            async with self._session_factory() as session:
                link = await find_link_by_slug(session, slug)

            if link is None:
                resolution = Resolution(ResolutionStatus.NOT_FOUND)
            elif not link.is_valid():
                resolution = Resolution(ResolutionStatus.INVALID)
            else:
                await self._write_cache(link)
                resolution = Resolution(ResolutionStatus.FOUND, link.original_url)

            RESOLVE_REQUESTS_TOTAL.labels(status=resolution.status, cache_hit=CacheStatus.MISS).inc()
            return resolution
        finally:
            RESOLVE_DURATION.observe(time.perf_counter() - start_time)

    async def increment_click_count(self, slug: str) -> None:
        """Best-effort atomic increment. Never raises."""
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(ShortLink)
                    .where(_slug_matches(slug))
                    .values(click_count=ShortLink.click_count + 1)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
            CLICK_INCREMENTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.debug(f"Incremented click count for slug: {slug}")
        except Exception:
            CLICK_INCREMENTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.exception(f"Failed to increment click count for slug: {slug}")

    async def _read_cache(self, slug: str) -> str | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get_url(slug)
        except Exception as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {slug}, falling back to database: {exc}")
            return None

    async def _write_cache(self, link: ShortLink) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set_url(link.slug, link.original_url, _cache_ttl_for(link, self._cache.ttl_seconds))
        except Exception as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache write failed for {link.slug}: {exc}")
