"""Pydantic schemas for request/response validation in the short link API.

This module defines Pydantic models for API input validation and output
serialization. JSON field names are camelCase; Python attributes stay
snake_case (``populate_by_name`` accepts both on input).

Schema Hierarchy
=================
::
    CreateShortLinkRequest (Input)
    ├─ url: str
    ├─ slug: str | None (blank -> None)
    └─ expiresAt: datetime | None

    UpdateShortLinkRequest (Input, partial)
    └─ url? / isActive? / expiresAt?

    ShortLinkResponse (Output)
    ├─ id, slug, shortUrl (computed), originalUrl
    ├─ clickCount, isActive, createdBy
    └─ createdAt, updatedAt, expiresAt

    PageResponse[T] (Output)
    └─ content, totalElements, totalPages, currentPage, size

    VisitResponse / AnalyticsResponse / StatsResponse / CountResponse
    HealthResponse / LoginRequest / AuthResponse

Key Behaviours
===============
- URL and slug rules are enforced by the service layer (400), not here;
  schema failures are structural only (422).
- All datetime fields are timezone-aware on output.
- Models are configured for ORM attribute mapping.
"""

import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shortlinks.enums import HealthStatus
from shortlinks.link_service import LinkStatistics
from shortlinks.models import LinkVisit, ShortLink, User, as_utc
from shortlinks.pagination import Page
from shortlinks.visit_service import VisitAnalytics

__all__ = [
    "AnalyticsResponse",
    "AuthResponse",
    "CountResponse",
    "CreateShortLinkRequest",
    "HealthResponse",
    "LoginRequest",
    "PageResponse",
    "ShortLinkResponse",
    "StatsResponse",
    "UpdateShortLinkRequest",
    "VisitResponse",
]

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# INPUT
# ============================================================================


class CreateShortLinkRequest(CamelModel):
    url: str
    slug: str | None = None
    expires_at: datetime.datetime | None = None

    @field_validator("slug")
    @classmethod
    def blank_slug_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class UpdateShortLinkRequest(CamelModel):
    url: str | None = None
    is_active: bool | None = None
    expires_at: datetime.datetime | None = None


class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# ============================================================================
# OUTPUT
# ============================================================================


class ShortLinkResponse(CamelModel):
    id: int
    slug: str
    short_url: str
    original_url: str
    click_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    is_active: bool
    created_by: str | None = None

    @classmethod
    def from_link(cls, link: ShortLink, base_url: str) -> "ShortLinkResponse":
        return cls(
            id=link.id,
            slug=link.slug,
            short_url=f"{base_url.rstrip('/')}/{link.slug}",
            original_url=link.original_url,
            click_count=link.click_count,
            created_at=as_utc(link.created_at),
            updated_at=as_utc(link.updated_at),
            expires_at=as_utc(link.expires_at),
            is_active=link.is_active,
            created_by=link.created_by,
        )


class VisitResponse(CamelModel):
    id: int
    slug: str
    short_url: str
    created_at: datetime.datetime
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    status_code: int
    country_code: str | None = None
    device_type: str | None = None
    browser: str | None = None
    operating_system: str | None = None

    @classmethod
    def from_visit(cls, visit: LinkVisit, base_url: str) -> "VisitResponse":
        return cls(
            id=visit.id,
            slug=visit.slug,
            short_url=f"{base_url.rstrip('/')}/{visit.slug}",
            created_at=as_utc(visit.created_at),
            ip_address=visit.ip_address,
            user_agent=visit.user_agent,
            referrer=visit.referrer,
            status_code=visit.status_code,
            country_code=visit.country_code,
            device_type=visit.device_type,
            browser=visit.browser,
            operating_system=visit.operating_system,
        )


class PageResponse(CamelModel, Generic[T]):
    content: list[T]
    total_elements: int
    total_pages: int
    current_page: int
    size: int

    @classmethod
    def from_page(cls, page: Page, content: list[T]) -> "PageResponse[T]":
        return cls(
            content=content,
            total_elements=page.total,
            total_pages=page.total_pages,
            current_page=page.request.page,
            size=page.request.size,
        )


class StatsResponse(CamelModel):
    total_links: int
    total_clicks: int
    active_links: int
    average_clicks_per_link: float

    @classmethod
    def from_statistics(cls, stats: LinkStatistics) -> "StatsResponse":
        return cls(
            total_links=stats.total_links,
            total_clicks=stats.total_clicks,
            active_links=stats.active_links,
            average_clicks_per_link=stats.average_clicks_per_link,
        )


class CountResponse(CamelModel):
    slug: str | None = None
    username: str | None = None
    visit_count: int


class AnalyticsResponse(CamelModel):
    slug: str | None = None
    total_visits: int
    visits_by_date: dict[str, int]
    visits_by_country: dict[str, int]
    visits_by_device: dict[str, int]
    visits_by_browser: dict[str, int]

    @classmethod
    def from_analytics(cls, analytics: VisitAnalytics, slug: str | None = None) -> "AnalyticsResponse":
        return cls(
            slug=slug,
            total_visits=analytics.total_visits,
            visits_by_date=analytics.visits_by_date,
            visits_by_country=analytics.visits_by_country,
            visits_by_device=analytics.visits_by_device,
            visits_by_browser=analytics.visits_by_browser,
        )


class HealthResponse(CamelModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    service: str
    version: str
    timestamp: datetime.datetime


class AuthResponse(CamelModel):
    token: str | None = None
    username: str
    email: str
    roles: list[str]

    @classmethod
    def from_user(cls, user: User, token: str | None = None) -> "AuthResponse":
        return cls(token=token, username=user.username, email=user.email, roles=user.roles)
