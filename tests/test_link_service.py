"""Unit and integration tests for the link store and redirect resolver.

Unit tests mock the database session the same way the service is used in
production; integration tests run against the SQLite test database.
"""

import asyncio
import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.config import Settings
from shortlinks.enums import ResolutionStatus, SortDirection, SortField
from shortlinks.exceptions import (
    CacheInvalidationError,
    InvalidSlugError,
    InvalidURLError,
    LinkNotFoundError,
    LinkValidationError,
    PermissionDeniedError,
    ReservedSlugError,
    SlugGenerationError,
    SlugTakenError,
)
from shortlinks.link_service import RedirectResolver, ShortLinkService, can_manage
from shortlinks.models import LinkVisit, ShortLink
from shortlinks.pagination import PageRequest
from shortlinks.visit_service import VisitRecorder

# ============================================================================
# TEST FIXTURES AND UTILITIES
# ============================================================================


def _execute_result(row=None) -> MagicMock:
    result = MagicMock()
    result.first.return_value = row
    return result


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock database session."""

    async def assign_id(instance) -> None:
        instance.id = 1

    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock(return_value=_execute_result())
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock(side_effect=assign_id)
    return db


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def mock_service(mock_database, mock_logger, settings: Settings) -> ShortLinkService:
    return ShortLinkService(mock_database, None, settings, mock_logger)


@pytest.fixture
def service(db_session, link_cache, settings: Settings) -> ShortLinkService:
    return ShortLinkService(db_session, link_cache, settings)


@pytest.fixture
def resolver(session_factory, link_cache) -> RedirectResolver:
    return RedirectResolver(session_factory, link_cache)


async def _fetch(session_factory, slug: str) -> ShortLink:
    async with session_factory() as session:
        result = await session.execute(select(ShortLink).where(ShortLink.slug == slug))
        return result.scalar_one()


# ============================================================================
# UNIT TESTS (mocked session)
# ============================================================================


@pytest.mark.asyncio
async def test_reserved_custom_slug_rejected_without_query(mock_service, mock_database):
    with pytest.raises(ReservedSlugError):
        await mock_service.create_link("https://example.com", "Admin")
    mock_database.execute.assert_not_awaited()
    mock_database.add.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_custom_slug_rejected(mock_service):
    with pytest.raises(InvalidSlugError):
        await mock_service.create_link("https://example.com", "no spaces")


@pytest.mark.asyncio
async def test_taken_custom_slug_rejected(mock_service, mock_database):
    mock_database.execute.return_value = _execute_result(row=(1,))
    with pytest.raises(SlugTakenError) as exc_info:
        await mock_service.create_link("https://example.com", "docs")
    assert str(exc_info.value) == "Slug 'docs' already exists"
    mock_database.add.assert_not_called()


@pytest.mark.asyncio
async def test_slug_generation_gives_up_after_max_attempts(mock_service, mock_database, settings):
    mock_database.execute.return_value = _execute_result(row=(1,))
    with patch("shortlinks.link_service.generate_random_slug", return_value="abc123"):
        with pytest.raises(SlugGenerationError) as exc_info:
            await mock_service.create_link("https://example.com")
    assert mock_database.execute.await_count == settings.SLUG_MAX_ATTEMPTS
    assert exc_info.value.attempts == settings.SLUG_MAX_ATTEMPTS
    assert not isinstance(exc_info.value, LinkValidationError)


@pytest.mark.asyncio
async def test_slug_generation_retries_on_collision(mock_service, mock_database):
    mock_database.execute.side_effect = [_execute_result(row=(1,)), _execute_result(row=None)]
    with patch("shortlinks.link_service.generate_random_slug", side_effect=["taken1", "free01"]):
        link = await mock_service.create_link("https://example.com")
    assert link.slug == "free01"


@pytest.mark.asyncio
async def test_insert_race_reported_as_slug_taken(mock_service, mock_database):
    mock_database.commit.side_effect = IntegrityError("INSERT", {}, Exception("unique"))
    with pytest.raises(SlugTakenError):
        await mock_service.create_link("https://example.com", "race")
    mock_database.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_invalid_url_rejected(mock_service, mock_database):
    with pytest.raises(InvalidURLError):
        await mock_service.create_link("not a url")
    mock_database.add.assert_not_called()


@pytest.mark.asyncio
async def test_past_expiry_rejected(mock_service):
    past = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=1)
    with pytest.raises(LinkValidationError):
        await mock_service.create_link("https://example.com", expires_at=past)


def test_can_manage():
    link = ShortLink(slug="x", original_url="https://example.com", created_by="alice")
    orphan = ShortLink(slug="y", original_url="https://example.com", created_by=None)
    assert can_manage(link, "alice", False)
    assert not can_manage(link, "bob", False)
    assert can_manage(link, "bob", True)
    assert not can_manage(orphan, "alice", False)
    assert can_manage(orphan, "root", True)


# ============================================================================
# LINK STORE INTEGRATION
# ============================================================================


@pytest.mark.asyncio
async def test_create_link_with_generated_slug(service):
    link = await service.create_link("example.com/docs", owner="alice")
    assert len(link.slug) == 6
    assert link.original_url == "https://example.com/docs"
    assert link.click_count == 0
    assert link.is_active is True
    assert link.created_by == "alice"
    assert link.created_at is not None


@pytest.mark.asyncio
async def test_custom_slug_unique_case_insensitively(service):
    await service.create_link("https://example.com", "Docs", owner="alice")
    with pytest.raises(SlugTakenError):
        await service.create_link("https://example.org", "docs", owner="bob")


@pytest.mark.asyncio
async def test_create_link_warms_cache(service, fake_redis):
    link = await service.create_link("https://example.com", "Warm")
    assert fake_redis.store["shortlink:warm"] == link.original_url


@pytest.mark.asyncio
async def test_get_link_is_case_insensitive(service):
    created = await service.create_link("https://example.com", "MixedCase")
    found = await service.get_link("mixedcase")
    assert found is not None
    assert found.id == created.id
    assert await service.get_link("missing") is None


@pytest.mark.asyncio
async def test_get_managed_link_checks_owner(service):
    await service.create_link("https://example.com", "Owned", owner="alice")
    assert (await service.get_managed_link("owned", "alice", False)).slug == "Owned"
    assert (await service.get_managed_link("OWNED", "root", True)).slug == "Owned"
    with pytest.raises(PermissionDeniedError):
        await service.get_managed_link("owned", "bob", False)
    with pytest.raises(LinkNotFoundError):
        await service.get_managed_link("missing", "alice", False)


@pytest.mark.asyncio
async def test_list_links_filters_sorts_and_paginates(service, db_session):
    for index in range(5):
        link = await service.create_link(f"https://example.com/{index}", f"link{index}", owner="alice")
        link.click_count = index * 10
    await db_session.commit()
    await service.create_link("https://example.com/other", "bobs", owner="bob")

    page = await service.list_links("alice", PageRequest(page=0, size=2), SortField.CLICK_COUNT, SortDirection.ASC)
    assert page.total == 5
    assert page.total_pages == 3
    assert [link.slug for link in page.items] == ["link0", "link1"]

    last = await service.list_links("alice", PageRequest(page=2, size=2), SortField.CLICK_COUNT, SortDirection.ASC)
    assert [link.slug for link in last.items] == ["link4"]

    everything = await service.list_links(None, PageRequest(page=0, size=100), SortField.SLUG, SortDirection.DESC)
    assert everything.total == 6
    assert everything.items[0].slug == "link4"


@pytest.mark.asyncio
async def test_update_link_renormalises_and_evicts(service, fake_redis):
    link = await service.create_link("https://example.com", "upd")
    assert "shortlink:upd" in fake_redis.store

    updated = await service.update_link(link, {"url": "example.org", "is_active": False})
    assert updated.original_url == "https://example.org"
    assert updated.is_active is False
    assert "shortlink:upd" not in fake_redis.store


@pytest.mark.asyncio
async def test_update_link_rejects_bad_url(service):
    link = await service.create_link("https://example.com", "bad-update")
    with pytest.raises(InvalidURLError):
        await service.update_link(link, {"url": "nope nope"})


@pytest.mark.asyncio
async def test_delete_link_keeps_visits(service, session_factory, fake_redis):
    link = await service.create_link("https://example.com", "gone", owner="alice")
    recorder = VisitRecorder(session_factory)
    await recorder.record("gone", "198.51.100.1", "curl/8.0", None, 302)

    await service.delete_link(link)

    assert await service.get_link("gone") is None
    assert "shortlink:gone" not in fake_redis.store
    async with session_factory() as session:
        visits = (await session.execute(select(LinkVisit))).scalars().all()
    assert len(visits) == 1
    assert visits[0].slug == "gone"
    assert visits[0].short_link_id is None


@pytest.mark.asyncio
async def test_delete_rolls_back_when_eviction_fails(service, fake_redis):
    link = await service.create_link("https://example.com", "keep", owner="alice")
    fake_redis.fail = True
    with pytest.raises(CacheInvalidationError):
        await service.delete_link(link)
    fake_redis.fail = False

    assert await service.get_link("keep") is not None
    assert fake_redis.store["shortlink:keep"] == "https://example.com"


@pytest.mark.asyncio
async def test_resolve_racing_a_delete_does_not_recache(service, resolver, fake_redis):
    link = await service.create_link("https://example.com", "racy")
    await fake_redis.delete("shortlink:racy")

    entered = asyncio.Event()
    release = asyncio.Event()
    original_setex = fake_redis.setex

    async def held_setex(key: str, ttl: int, value: str) -> bool:
        entered.set()
        await release.wait()
        return await original_setex(key, ttl, value)

    fake_redis.setex = held_setex
    pending = asyncio.create_task(resolver.resolve("racy"))
    await entered.wait()
    await service.delete_link(link)
    release.set()

    # The in-flight lookup read the row before the delete committed.
    assert (await pending).found
    assert "shortlink:racy" not in fake_redis.store
    assert (await resolver.resolve("racy")).status is ResolutionStatus.NOT_FOUND


@pytest.mark.asyncio
async def test_tombstone_blocks_recaching_after_update(service, link_cache, fake_redis):
    link = await service.create_link("https://example.com", "moved")
    await service.update_link(link, {"url": "https://example.org"})

    assert "shortlink:moved:gone" in fake_redis.store
    assert fake_redis.ttls["shortlink:moved:gone"] == 30
    assert await link_cache.set_url("moved", "https://example.com") is False
    assert "shortlink:moved" not in fake_redis.store


@pytest.mark.asyncio
async def test_statistics_count_only_valid_links_as_active(service, db_session):
    first = await service.create_link("https://example.com/1", "s1", owner="alice")
    second = await service.create_link("https://example.com/2", "s2", owner="alice")
    await service.create_link("https://example.com/3", "s3", owner="bob")
    first.click_count = 4
    second.click_count = 2
    second.is_active = False
    await db_session.commit()

    own = await service.get_statistics("alice")
    assert own.total_links == 2
    assert own.total_clicks == 6
    assert own.active_links == 1
    assert own.average_clicks_per_link == 3.0

    overall = await service.get_statistics(None)
    assert overall.total_links == 3
    assert overall.active_links == 2


@pytest.mark.asyncio
async def test_statistics_with_no_links(service):
    stats = await service.get_statistics("nobody")
    assert stats.total_links == 0
    assert stats.average_clicks_per_link == 0.0


# ============================================================================
# RESOLVER INTEGRATION
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_found_populates_cache(resolver, db_session, fake_redis):
    db_session.add(ShortLink(slug="Found", original_url="https://example.com/found"))
    await db_session.commit()

    resolution = await resolver.resolve("FOUND")
    assert resolution.status is ResolutionStatus.FOUND
    assert resolution.url == "https://example.com/found"
    assert fake_redis.store["shortlink:found"] == "https://example.com/found"
    assert fake_redis.ttls["shortlink:found"] == 86400


@pytest.mark.asyncio
async def test_resolve_uses_cache_hit(resolver, fake_redis):
    fake_redis.store["shortlink:cached"] = "https://example.com/cached"
    resolution = await resolver.resolve("Cached")
    assert resolution.found
    assert resolution.url == "https://example.com/cached"


@pytest.mark.asyncio
async def test_resolve_missing_is_not_cached(resolver, fake_redis):
    resolution = await resolver.resolve("nothing")
    assert resolution.status is ResolutionStatus.NOT_FOUND
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_resolve_inactive_and_expired_are_invalid(resolver, db_session, fake_redis):
    past = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=1)
    db_session.add(ShortLink(slug="off", original_url="https://example.com", is_active=False))
    db_session.add(ShortLink(slug="old", original_url="https://example.com", expires_at=past))
    await db_session.commit()

    assert (await resolver.resolve("off")).status is ResolutionStatus.INVALID
    assert (await resolver.resolve("old")).status is ResolutionStatus.INVALID
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_cache_ttl_never_outlives_expiry(resolver, db_session, fake_redis):
    soon = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(minutes=10)
    db_session.add(ShortLink(slug="soon", original_url="https://example.com", expires_at=soon))
    await db_session.commit()

    assert (await resolver.resolve("soon")).found
    assert 0 < fake_redis.ttls["shortlink:soon"] <= 600


@pytest.mark.asyncio
async def test_resolve_falls_back_to_database_when_cache_fails(resolver, db_session, fake_redis):
    db_session.add(ShortLink(slug="fallback", original_url="https://example.com/fb"))
    await db_session.commit()
    fake_redis.fail = True

    resolution = await resolver.resolve("fallback")
    assert resolution.found
    assert resolution.url == "https://example.com/fb"


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(resolver, db_session, session_factory):
    db_session.add(ShortLink(slug="hot", original_url="https://example.com"))
    await db_session.commit()

    await asyncio.gather(*(resolver.increment_click_count("HOT") for _ in range(25)))

    assert (await _fetch(session_factory, "hot")).click_count == 25


@pytest.mark.asyncio
async def test_increment_never_raises():
    broken_factory = MagicMock(side_effect=RuntimeError("database down"))
    resolver = RedirectResolver(broken_factory, None)
    await resolver.increment_click_count("anything")
