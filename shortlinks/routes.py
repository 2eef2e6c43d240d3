"""FastAPI route definitions for the short link service.

This module provides all HTTP endpoints with dependency injection, domain
error translation and response serialization.

API Endpoint Overview
=====================
::
    GET    /health, /api/health                 HealthResponse (200)

    POST   /api/auth/login                      AuthResponse (200) or 401
    GET    /api/auth/me                         AuthResponse (200)

    POST   /api/shortlinks                      ShortLinkResponse (201) or 400/422
    GET    /api/shortlinks                      PageResponse (own links)
    GET    /api/shortlinks/all                  PageResponse (admin)
    GET    /api/shortlinks/stats                StatsResponse (own links)
    GET    /api/shortlinks/stats/all            StatsResponse (admin)
    GET    /api/shortlinks/:slug                ShortLinkResponse or 404
    PATCH  /api/shortlinks/:slug                ShortLinkResponse or 400/403/404/503
    DELETE /api/shortlinks/:slug                204 or 403/404/503

    GET    /api/visits[/count|/analytics]       own links' visits
    GET    /api/visits/link/:slug[/count|/analytics]   owner or admin
    GET    /api/visits/all[/analytics]          admin
    GET    /api/visits/redirects                admin, every redirect-path request

    GET    /:slug                               302 / 404 / 500 (plain text)

Redirect Flow Diagram
=====================
::
    ┌─────────────┐
    │ GET /:slug  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  dotted / reserved  ┌────────────────────┐
    │ screen slug │ ──────────────────▶ │ 404, no visit      │
    └──────┬──────┘                     └────────────────────┘
           ▼
    ┌─────────────┐  NOT_FOUND/INVALID  ┌────────────────────┐
    │ resolve()   │ ──────────────────▶ │ 404, submit visit  │
    └──────┬──────┘                     └────────────────────┘
           │ FOUND                 error ┌────────────────────┐
           │ ──────────────────────────▶ │ 500, submit visit  │
           ▼                             └────────────────────┘
    ┌─────────────┐
    │ submit click│
    │ + visit     │  (BackgroundDispatcher, not awaited)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 302 Location│
    └─────────────┘

Key Behaviours
===============
- The catch-all redirect route is registered last so it never shadows the API.
- Domain errors map to 400 / 403 / 404 / 500 / 503; schema errors stay 422.
- Every /api/shortlinks and /api/visits route requires a bearer token.
"""

import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy import text

from shortlinks.auth import authenticate, create_access_token, get_current_user, require_admin
from shortlinks.dependencies import (
    RequestContext,
    get_link_service,
    get_request_context,
    get_visit_query_service,
)
from shortlinks.enums import HealthStatus, SortDirection, SortField
from shortlinks.exceptions import (
    CacheInvalidationError,
    LinkNotFoundError,
    LinkValidationError,
    PermissionDeniedError,
    SlugGenerationError,
)
from shortlinks.link_service import ShortLinkService
from shortlinks.models import ShortLink, User
from shortlinks.pagination import Page, PageRequest
from shortlinks.schemas import (
    AnalyticsResponse,
    AuthResponse,
    CountResponse,
    CreateShortLinkRequest,
    HealthResponse,
    LoginRequest,
    PageResponse,
    ShortLinkResponse,
    StatsResponse,
    UpdateShortLinkRequest,
    VisitResponse,
)
from shortlinks.slugs import is_reserved_slug
from shortlinks.visit_service import VisitQueryService

__all__ = ["router"]

router = APIRouter()

NOT_FOUND_MESSAGE = "Short link not found"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def _page_request(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
) -> PageRequest:
    return PageRequest(page=page, size=size)


async def _managed_link(slug: str, user: User, service: ShortLinkService) -> ShortLink:
    try:
        return await service.get_managed_link(slug, user.username, user.is_admin)
    except LinkNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail="You do not have permission to manage this link") from exc


def _link_page(page: Page[ShortLink], ctx: RequestContext) -> PageResponse[ShortLinkResponse]:
    base_url = ctx.settings.BASE_URL
    return PageResponse[ShortLinkResponse].from_page(
        page, [ShortLinkResponse.from_link(link, base_url) for link in page.items]
    )


def _visit_page(page: Page, ctx: RequestContext) -> PageResponse[VisitResponse]:
    base_url = ctx.settings.BASE_URL
    return PageResponse[VisitResponse].from_page(
        page, [VisitResponse.from_visit(visit, base_url) for visit in page.items]
    )


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
@router.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.link_cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    overall = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.debug(f"Health check completed: {overall.value}")
    return HealthResponse(
        status=overall,
        database=db_status,
        cache=cache_status,
        service=ctx.settings.APP_NAME,
        version=ctx.settings.APP_VERSION,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )


# ============================================================================
# AUTH
# ============================================================================


@router.post("/api/auth/login", response_model=AuthResponse, tags=["auth"])
async def login(payload: LoginRequest, ctx: RequestContext = Depends(get_request_context)) -> AuthResponse:
    user = await authenticate(ctx.database, payload.username, payload.password)
    if user is None:
        ctx.logger.warning(f"Failed login for user: {payload.username}")
        raise HTTPException(status_code=401, detail="Invalid username or password")
    ctx.logger.info(f"User logged in: {user.username}")
    return AuthResponse.from_user(user, token=create_access_token(user, ctx.settings))


@router.get("/api/auth/me", response_model=AuthResponse, tags=["auth"])
async def current_user(user: User = Depends(get_current_user)) -> AuthResponse:
    return AuthResponse.from_user(user)


# ============================================================================
# SHORT LINKS
# ============================================================================


@router.post("/api/shortlinks", response_model=ShortLinkResponse, status_code=201, tags=["shortlinks"])
async def create_short_link(
    payload: CreateShortLinkRequest,
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> ShortLinkResponse:
    try:
        link = await service.create_link(payload.url, payload.slug, owner=user.username, expires_at=payload.expires_at)
    except LinkValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SlugGenerationError as exc:
        ctx.logger.error(f"Slug generation exhausted: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return ShortLinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/shortlinks", response_model=PageResponse[ShortLinkResponse], tags=["shortlinks"])
async def list_own_links(
    page_request: PageRequest = Depends(_page_request),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_dir: str = Query("desc", alias="sortDir"),
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> PageResponse[ShortLinkResponse]:
    page = await service.list_links(
        user.username, page_request, SortField.from_str(sort_by), SortDirection.from_str(sort_dir)
    )
    return _link_page(page, ctx)


@router.get("/api/shortlinks/all", response_model=PageResponse[ShortLinkResponse], tags=["shortlinks"])
async def list_all_links(
    page_request: PageRequest = Depends(_page_request),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_dir: str = Query("desc", alias="sortDir"),
    _admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> PageResponse[ShortLinkResponse]:
    page = await service.list_links(None, page_request, SortField.from_str(sort_by), SortDirection.from_str(sort_dir))
    return _link_page(page, ctx)


@router.get("/api/shortlinks/stats", response_model=StatsResponse, tags=["shortlinks"])
async def own_statistics(
    user: User = Depends(get_current_user),
    service: ShortLinkService = Depends(get_link_service),
) -> StatsResponse:
    return StatsResponse.from_statistics(await service.get_statistics(user.username))


@router.get("/api/shortlinks/stats/all", response_model=StatsResponse, tags=["shortlinks"])
async def all_statistics(
    _admin: User = Depends(require_admin),
    service: ShortLinkService = Depends(get_link_service),
) -> StatsResponse:
    return StatsResponse.from_statistics(await service.get_statistics(None))


@router.get("/api/shortlinks/{slug}", response_model=ShortLinkResponse, tags=["shortlinks"])
async def get_short_link(
    slug: str,
    _user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> ShortLinkResponse:
    link = await service.get_link(slug)
    if link is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return ShortLinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.patch("/api/shortlinks/{slug}", response_model=ShortLinkResponse, tags=["shortlinks"])
async def update_short_link(
    slug: str,
    payload: UpdateShortLinkRequest,
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> ShortLinkResponse:
    link = await _managed_link(slug, user, service)
    try:
        link = await service.update_link(link, payload.model_dump(exclude_unset=True))
    except LinkValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CacheInvalidationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ShortLinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.delete("/api/shortlinks/{slug}", status_code=204, tags=["shortlinks"])
async def delete_short_link(
    slug: str,
    user: User = Depends(get_current_user),
    service: ShortLinkService = Depends(get_link_service),
) -> Response:
    link = await _managed_link(slug, user, service)
    try:
        await service.delete_link(link)
    except CacheInvalidationError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# VISITS
# ============================================================================


@router.get("/api/visits", response_model=PageResponse[VisitResponse], tags=["visits"])
async def own_visits(
    page_request: PageRequest = Depends(_page_request),
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> PageResponse[VisitResponse]:
    return _visit_page(await visits.list_for_owner(user.username, page_request), ctx)


@router.get("/api/visits/count", response_model=CountResponse, tags=["visits"])
async def own_visit_count(
    user: User = Depends(get_current_user),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> CountResponse:
    return CountResponse(username=user.username, visit_count=await visits.count_for_owner(user.username))


@router.get("/api/visits/analytics", response_model=AnalyticsResponse, tags=["visits"])
async def own_visit_analytics(
    user: User = Depends(get_current_user),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> AnalyticsResponse:
    return AnalyticsResponse.from_analytics(await visits.analytics_for_owner(user.username))


@router.get("/api/visits/link/{slug}", response_model=PageResponse[VisitResponse], tags=["visits"])
async def link_visits(
    slug: str,
    page_request: PageRequest = Depends(_page_request),
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> PageResponse[VisitResponse]:
    await _managed_link(slug, user, service)
    return _visit_page(await visits.list_for_link(slug, page_request), ctx)


@router.get("/api/visits/link/{slug}/count", response_model=CountResponse, tags=["visits"])
async def link_visit_count(
    slug: str,
    user: User = Depends(get_current_user),
    service: ShortLinkService = Depends(get_link_service),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> CountResponse:
    await _managed_link(slug, user, service)
    return CountResponse(slug=slug, visit_count=await visits.count_for_link(slug))


@router.get("/api/visits/link/{slug}/analytics", response_model=AnalyticsResponse, tags=["visits"])
async def link_visit_analytics(
    slug: str,
    user: User = Depends(get_current_user),
    service: ShortLinkService = Depends(get_link_service),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> AnalyticsResponse:
    link = await _managed_link(slug, user, service)
    return AnalyticsResponse.from_analytics(await visits.analytics_for_link(link.slug, link.id), slug=link.slug)


@router.get("/api/visits/all", response_model=PageResponse[VisitResponse], tags=["visits"])
@router.get("/api/visits/redirects", response_model=PageResponse[VisitResponse], tags=["visits"])
async def all_visits(
    page_request: PageRequest = Depends(_page_request),
    _admin: User = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> PageResponse[VisitResponse]:
    return _visit_page(await visits.list_all(page_request), ctx)


@router.get("/api/visits/all/analytics", response_model=AnalyticsResponse, tags=["visits"])
async def all_visit_analytics(
    _admin: User = Depends(require_admin),
    visits: VisitQueryService = Depends(get_visit_query_service),
) -> AnalyticsResponse:
    return AnalyticsResponse.from_analytics(await visits.analytics_all())


# ============================================================================
# REDIRECT (registered last)
# ============================================================================


@router.get("/{slug}", tags=["redirect"])
async def redirect_to_url(slug: str, ctx: RequestContext = Depends(get_request_context)) -> Response:
    if "." in slug or is_reserved_slug(slug):
        ctx.logger.debug(f"Ignoring non-link path: /{slug}")
        return PlainTextResponse(NOT_FOUND_MESSAGE, status_code=404)

    ctx.logger.info(f"Redirect requested for slug: {slug}")
    try:
        resolution = await ctx.resolver.resolve(slug)
    except Exception:
        ctx.logger.exception(f"Redirect failed for slug: {slug}")
        _record_visit(ctx, slug, 500)
        return PlainTextResponse(INTERNAL_ERROR_MESSAGE, status_code=500)

    if not resolution.found:
        ctx.logger.warning(f"Redirect failed - {resolution.status.value}: {slug}")
        _record_visit(ctx, slug, 404)
        return PlainTextResponse(NOT_FOUND_MESSAGE, status_code=404)

    ctx.dispatcher.submit("click_count", ctx.resolver.increment_click_count, slug)
    _record_visit(ctx, slug, 302)
    ctx.logger.info(f"Redirect successful: {slug} -> {resolution.url} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=resolution.url, status_code=302)


def _record_visit(ctx: RequestContext, slug: str, status_code: int) -> None:
    ctx.dispatcher.submit(
        "visit",
        ctx.recorder.record,
        slug,
        ctx.client_ip,
        ctx.user_agent,
        ctx.referrer,
        status_code,
    )
