"""Target URL normalisation for new and updated short links."""

from urllib.parse import urlsplit

import validators

from shortlinks.exceptions import InvalidURLError

__all__ = ["ALLOWED_SCHEMES", "normalize_url", "validate_and_normalize"]

ALLOWED_SCHEMES = ("http", "https")


def normalize_url(url: str | None) -> str | None:
    """Trim and default to https:// when no http(s) scheme is present."""
    if url is None or not url.strip():
        return url
    trimmed = url.strip()
    if trimmed.lower().startswith(("http://", "https://")):
        return trimmed
    return f"https://{trimmed}"


def validate_and_normalize(url: str | None) -> str:
    normalized = normalize_url(url)
    if not normalized:
        raise InvalidURLError(url)
    if urlsplit(normalized).scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidURLError(url)
    # simple_host lets single-label hosts such as "localhost" through.
    if not validators.url(normalized, simple_host=True):
        raise InvalidURLError(url)
    return normalized
