"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject the database session, the
link cache and the redirect-path collaborators into API endpoints, using a
singleton for shared resources to minimize per-request overhead.

Resource Ownership
==================
::
    ServiceManager (process-wide, built in lifespan)
    ├─ settings
    ├─ logger ("shortlinks")
    ├─ redis client ──▶ LinkCache
    ├─ session_factory (async_sessionmaker)
    ├─ dispatcher (BackgroundDispatcher)
    ├─ resolver (RedirectResolver)
    └─ recorder (VisitRecorder)

    RequestContext (per request)
    ├─ database (AsyncSession from get_db)
    ├─ request_id / trace_id
    └─ client_ip / user_agent / referrer

Key Behaviours
===============
- initialize() accepts explicit collaborators so tests can inject an
  in-memory cache and a SQLite session factory.
- Client IP is the first X-Forwarded-For entry, then X-Real-IP, then the
  socket peer, then "unknown".
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.background import BackgroundDispatcher
from shortlinks.cache import LinkCache, create_redis
from shortlinks.config import Settings, get_settings
from shortlinks.database import async_session, get_db
from shortlinks.link_service import RedirectResolver, ShortLinkService
from shortlinks.visit_service import VisitQueryService, VisitRecorder

__all__ = [
    "RequestContext",
    "ServiceManager",
    "extract_client_ip",
    "extract_referrer",
    "get_link_service",
    "get_request_context",
    "get_service_manager",
    "get_visit_query_service",
]

UNKNOWN_CLIENT_IP = "unknown"


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        redis_client: Any = None,
    ) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.redis = redis_client if redis_client is not None else create_redis(self.settings.REDIS_URL)
        self.link_cache = LinkCache(
            self.redis,
            ttl_seconds=self.settings.CACHE_TTL_SECONDS,
            prefix=self.settings.CACHE_KEY_PREFIX,
            tombstone_ttl_seconds=self.settings.CACHE_TOMBSTONE_TTL_SECONDS,
        )
        self.session_factory = session_factory or async_session
        self.dispatcher = BackgroundDispatcher(
            max_size=self.settings.BACKGROUND_QUEUE_SIZE,
            workers=self.settings.BACKGROUND_WORKERS,
        )
        self.resolver = RedirectResolver(self.session_factory, self.link_cache, self.logger)
        self.recorder = VisitRecorder(self.session_factory, self.logger)
        await self.dispatcher.start()
        self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortlinks")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.dispatcher.stop(timeout=self.settings.BACKGROUND_SHUTDOWN_TIMEOUT_SECONDS)
        if isinstance(self.redis, redis.Redis):
            await self.redis.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# CLIENT METADATA
# ============================================================================


def extract_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT_IP


def extract_referrer(request: Request) -> str | None:
    return request.headers.get("referer") or request.headers.get("referrer")


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referrer: Referer header, if any
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def link_cache(self) -> LinkCache:
        return self.service_manager.link_cache

    @property
    def dispatcher(self) -> BackgroundDispatcher:
        return self.service_manager.dispatcher

    @property
    def resolver(self) -> RedirectResolver:
        return self.service_manager.resolver

    @property
    def recorder(self) -> VisitRecorder:
        return self.service_manager.recorder

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000

    def short_url(self, slug: str) -> str:
        return f"{self.settings.BASE_URL.rstrip('/')}/{slug}"


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager.initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=extract_client_ip(request),
        referrer=extract_referrer(request),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> ShortLinkService:
    return ShortLinkService.from_context(ctx)


def get_visit_query_service(ctx: RequestContext = Depends(get_request_context)) -> VisitQueryService:
    return VisitQueryService.from_context(ctx)
