"""Shared enums for the short link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "CacheStatus",
    "DeviceType",
    "HealthStatus",
    "RequestStatus",
    "ResolutionStatus",
    "SortDirection",
    "SortField",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class ResolutionStatus(StrEnum):
    """Outcome of resolving a slug on the redirect path."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


class DeviceType(StrEnum):
    """Device classes derived from the User-Agent header."""

    BOT = "bot"
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class SortField(StrEnum):
    """Sortable short link columns, keyed by their API names."""

    CREATED_AT = "createdAt"
    CLICK_COUNT = "clickCount"
    SLUG = "slug"

    @classmethod
    def from_str(cls, value: str | None) -> "SortField":
        """Safely parse from string, falling back to CREATED_AT for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.CREATED_AT


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def from_str(cls, value: str | None) -> "SortDirection":
        """Anything other than 'asc' (case-insensitive) sorts descending."""
        if value is not None and value.lower() == cls.ASC:
            return cls.ASC
        return cls.DESC
