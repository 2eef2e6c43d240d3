"""Domain errors raised by the short link services.

Routes translate these into HTTP responses; background jobs never let them
escape.

Hierarchy
=========
::
    ShortLinkError
    ├─ LinkValidationError           -> 400
    │  ├─ InvalidURLError
    │  ├─ InvalidSlugError
    │  ├─ ReservedSlugError
    │  └─ SlugTakenError
    ├─ SlugGenerationError           -> 500 (configuration level)
    ├─ LinkNotFoundError             -> 404
    ├─ PermissionDeniedError         -> 403
    └─ CacheInvalidationError        -> 503
"""

__all__ = [
    "CacheInvalidationError",
    "InvalidSlugError",
    "InvalidURLError",
    "LinkNotFoundError",
    "LinkValidationError",
    "PermissionDeniedError",
    "ReservedSlugError",
    "ShortLinkError",
    "SlugGenerationError",
    "SlugTakenError",
]


class ShortLinkError(Exception):
    """Base class for every error raised by the short link domain."""


class LinkValidationError(ShortLinkError, ValueError):
    """User input was rejected. Never retried automatically."""


class InvalidURLError(LinkValidationError):
    def __init__(self, url: str | None) -> None:
        super().__init__("Invalid URL format")
        self.url = url


class InvalidSlugError(LinkValidationError):
    def __init__(self, slug: str) -> None:
        super().__init__("Invalid slug format. Use alphanumeric characters, hyphens, or underscores.")
        self.slug = slug


class ReservedSlugError(LinkValidationError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Slug '{slug}' is reserved and cannot be used")
        self.slug = slug


class SlugTakenError(LinkValidationError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Slug '{slug}' already exists")
        self.slug = slug


class SlugGenerationError(ShortLinkError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Unable to generate unique slug after {attempts} attempts")
        self.attempts = attempts


class LinkNotFoundError(ShortLinkError):
    def __init__(self, slug: str) -> None:
        super().__init__("Short link not found")
        self.slug = slug


class PermissionDeniedError(ShortLinkError):
    pass


class CacheInvalidationError(ShortLinkError):
    """The cached URL could not be evicted, so the change was not committed."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Could not invalidate cached URL for '{slug}', change not applied")
        self.slug = slug
