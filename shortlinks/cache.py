"""Redis client management and the slug -> URL cache.

The cache is a read-through copy of ``ShortLink.original_url`` for valid
links only. It is never a source of truth: entries expire after a fixed TTL
and are evicted whenever the underlying link is updated or deleted.

Flow Diagram — LinkCache.get_url()
==================================
::
    ┌─────────────┐
    │  resolve()  │
    └──────┬──────┘
           ▼
    ┌─────────────────────┐
    │ GET shortlink:<slug>│  (slug lowercased)
    └──────┬──────────────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Return  │  │ Return  │
│ None    │  │ URL     │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Build from an existing client**::
    cache = LinkCache(redis_client, ttl_seconds=86400)

**Step 2 — Cache-aside**::
    url = await cache.get_url("Docs")
    if url is None:
        ...
        await cache.set_url("docs", "https://example.org")

**Step 3 — Invalidate**::
    await cache.evict("docs")

Key Behaviours
===============
- Keys are ``<prefix>:<lowercased slug>`` so lookups are case-insensitive.
- evict() leaves a ``<key>:gone`` tombstone for a short TTL. set_url()
  refuses to write while it exists and re-checks it after SETEX, so a
  resolve that read the row before an update or delete committed cannot
  re-cache the old URL.
- Redis errors propagate; callers on the redirect path decide to log and
  fall back to the database.
- UTF-8 encoding with decode_responses for string operations.

Functions:
    create_redis():  Build a Redis client from a URL. The ServiceManager
        owns the resulting client and closes it on shutdown.
"""

import redis.asyncio as redis

__all__ = ["LinkCache", "create_redis"]


def create_redis(url: str) -> redis.Redis:
    return redis.from_url(url, encoding="utf-8", decode_responses=True)


class LinkCache:
    """Slug-keyed URL cache on top of a Redis client."""

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int,
        prefix: str = "shortlink",
        tombstone_ttl_seconds: int = 30,
    ) -> None:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        assert tombstone_ttl_seconds > 0, f"tombstone_ttl_seconds must be positive, got {tombstone_ttl_seconds!r}"
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix
        self._tombstone_ttl_seconds = tombstone_ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def key_for(self, slug: str) -> str:
        return f"{self._prefix}:{slug.lower()}"

    def tombstone_key_for(self, slug: str) -> str:
        return f"{self.key_for(slug)}:gone"

    async def get_url(self, slug: str) -> str | None:
        return await self._client.get(self.key_for(slug))

    async def set_url(self, slug: str, url: str, ttl_seconds: int | None = None) -> bool:
        """Cache ``url`` unless the slug was invalidated recently. Returns whether the entry was kept."""
        ttl = self._ttl_seconds if ttl_seconds is None else min(ttl_seconds, self._ttl_seconds)
        if ttl <= 0:
            return False
        if await self._client.get(self.tombstone_key_for(slug)) is not None:
            return False
        key = self.key_for(slug)
        await self._client.setex(key, ttl, url)
        # An evict() may have landed while SETEX was in flight.
        if await self._client.get(self.tombstone_key_for(slug)) is not None:
            await self._client.delete(key)
            return False
        return True

    async def evict(self, slug: str) -> None:
        """Drop the entry and block re-population for the tombstone TTL.

        The tombstone is written before the delete so a concurrent set_url()
        either lands before the delete or sees the tombstone afterwards.
        """
        await self._client.set(self.tombstone_key_for(slug), "1", ex=self._tombstone_ttl_seconds)
        await self._client.delete(self.key_for(slug))

    async def ping(self) -> bool:
        return bool(await self._client.ping())
