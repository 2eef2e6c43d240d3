"""Visit recording and visit analytics.

Flow Diagram — VisitRecorder.record()
=====================================
::
    ┌──────────────────┐
    │ background job   │  (never on the request's await path)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ open own session │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   none   ┌───────────────────────┐
    │ SELECT link (ci) │ ───────▶ │ short_link_id = NULL  │
    └────────┬─────────┘          │ created_by = NULL     │
             ▼                    └───────────┬───────────┘
    ┌──────────────────┐                      │
    │ parse User-Agent │ ◀────────────────────┘
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   error  ┌───────────────┐
    │ INSERT visit     │ ───────▶ │ log + swallow │
    └──────────────────┘          └───────────────┘

Key Behaviours
===============
- One row per redirect-path request, including 404 and 500 outcomes.
- The requested slug is always stored (truncated to 50 characters).
- country_code is never written here.
- Queries are newest first; analytics group by day, country, device, browser.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import Counter
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.enums import RequestStatus
from shortlinks.link_service import find_link_by_slug
from shortlinks.models import LinkVisit
from shortlinks.pagination import Page, PageRequest
from shortlinks.user_agent import parse_user_agent

__all__ = ["VisitAnalytics", "VisitQueryService", "VisitRecorder"]

logger = logging.getLogger(__name__)

MAX_STORED_SLUG_LENGTH = 50

VISITS_RECORDED_TOTAL = Counter(
    "shortlinks_visits_recorded_total",
    "Visit rows written, by outcome of the write",
    ["status"],
)


@dataclass
class VisitAnalytics:
    total_visits: int
    visits_by_date: dict[str, int] = field(default_factory=dict)
    visits_by_country: dict[str, int] = field(default_factory=dict)
    visits_by_device: dict[str, int] = field(default_factory=dict)
    visits_by_browser: dict[str, int] = field(default_factory=dict)


class VisitRecorder:
    """Writes one LinkVisit per redirect-path request. Never raises."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._logger = logger or logging.getLogger(__name__)

    async def record(
        self,
        slug: str,
        ip_address: str | None,
        user_agent: str | None,
        referrer: str | None,
        status_code: int,
    ) -> None:
        try:
            async with self._session_factory() as session:
                link = await find_link_by_slug(session, slug)
                ua_info = parse_user_agent(user_agent)
                visit = LinkVisit(
                    short_link_id=link.id if link is not None else None,
                    slug=slug[:MAX_STORED_SLUG_LENGTH],
                    ip_address=ip_address[:45] if ip_address else ip_address,
                    user_agent=user_agent,
                    referrer=referrer,
                    status_code=status_code,
                    device_type=ua_info.device_type,
                    browser=ua_info.browser,
                    operating_system=ua_info.operating_system,
                    created_by=link.created_by if link is not None else None,
                )
                session.add(visit)
                await session.commit()
            VISITS_RECORDED_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.debug(f"Recorded visit: slug={slug}, status={status_code}, ip={ip_address}")
        except Exception:
            VISITS_RECORDED_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.exception(f"Failed to record visit for slug: {slug}")


class VisitQueryService:
    """Read side for visit logs: paginated listings, counts and breakdowns.

    Three scopes are supported and map onto one filter each:

    - link:   visits whose slug matches (case-insensitive) or that reference the link
    - owner:  visits denormalised onto a user via ``created_by``
    - all:    no filter (admin)
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @classmethod
    def from_context(cls, ctx: Any) -> "VisitQueryService":
        return cls(ctx.database)

    # ------------------------------------------------------------------ link

    async def list_for_link(self, slug: str, page_request: PageRequest) -> Page[LinkVisit]:
        return await self._page(self._link_filters(slug), page_request)

    async def count_for_link(self, slug: str) -> int:
        return await self._count(self._link_filters(slug))

    async def analytics_for_link(self, slug: str, link_id: int | None = None) -> VisitAnalytics:
        filters = [LinkVisit.short_link_id == link_id] if link_id is not None else self._link_filters(slug)
        return await self._analytics(filters)

    # ----------------------------------------------------------------- owner

    async def list_for_owner(self, owner: str, page_request: PageRequest) -> Page[LinkVisit]:
        return await self._page([LinkVisit.created_by == owner], page_request)

    async def count_for_owner(self, owner: str) -> int:
        return await self._count([LinkVisit.created_by == owner])

    async def analytics_for_owner(self, owner: str) -> VisitAnalytics:
        return await self._analytics([LinkVisit.created_by == owner])

    # ------------------------------------------------------------------- all

    async def list_all(self, page_request: PageRequest) -> Page[LinkVisit]:
        return await self._page([], page_request)

    async def analytics_all(self) -> VisitAnalytics:
        return await self._analytics([])

    # -------------------------------------------------------------- helpers

    @staticmethod
    def _link_filters(slug: str) -> list[Any]:
        return [func.lower(LinkVisit.slug) == slug[:MAX_STORED_SLUG_LENGTH].lower()]

    async def _count(self, filters: Sequence[Any]) -> int:
        total = await self._db.scalar(select(func.count(LinkVisit.id)).where(*filters))
        return int(total or 0)

    async def _page(self, filters: Sequence[Any], page_request: PageRequest) -> Page[LinkVisit]:
        total = await self._count(filters)
        result = await self._db.execute(
            select(LinkVisit)
            .where(*filters)
            .order_by(LinkVisit.created_at.desc(), LinkVisit.id.desc())
            .offset(page_request.offset)
            .limit(page_request.size)
        )
        return Page(request=page_request, total=total, items=list(result.scalars().all()))

    async def _group_counts(self, column: Any, filters: Sequence[Any], order_by_key: bool = False) -> dict[str, int]:
        count = func.count(LinkVisit.id)
        stmt = select(column, count).where(*filters, column.is_not(None)).group_by(column)
        stmt = stmt.order_by(column.asc()) if order_by_key else stmt.order_by(count.desc(), column.asc())
        result = await self._db.execute(stmt)
        return {str(key): int(total) for key, total in result.all()}

    async def _analytics(self, filters: Sequence[Any]) -> VisitAnalytics:
        return VisitAnalytics(
            total_visits=await self._count(filters),
            visits_by_date=await self._group_counts(func.date(LinkVisit.created_at), filters, order_by_key=True),
            visits_by_country=await self._group_counts(LinkVisit.country_code, filters),
            visits_by_device=await self._group_counts(LinkVisit.device_type, filters),
            visits_by_browser=await self._group_counts(LinkVisit.browser, filters),
        )
