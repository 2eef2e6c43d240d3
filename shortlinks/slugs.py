"""Slug generation and validation.

Slugs are the path segment after the host: ``https://sho.rt/<slug>``.

Key Behaviours
===============
- Random slugs are 6 characters from a 62-character alphabet, drawn with
  nanoid (backed by ``os.urandom``). Collision handling is the caller's job.
- Custom slugs are 1-50 characters of ``[A-Za-z0-9_-]``.
- Reserved slugs are path segments owned by other routes. The check is
  case-insensitive and every leading underscore is reserved, which covers
  ``_next`` and anything under it.

Functions:
    generate_random_slug():  Random base62 slug.
    is_valid_slug():  Format check for custom slugs.
    is_reserved_slug():  Reserved path check.
"""

import re

from nanoid import generate

__all__ = [
    "ALPHABET",
    "DEFAULT_SLUG_LENGTH",
    "MAX_SLUG_LENGTH",
    "RESERVED_SLUGS",
    "generate_random_slug",
    "is_reserved_slug",
    "is_valid_slug",
]

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_SLUG_LENGTH = 6
MAX_SLUG_LENGTH = 50
RESERVED_SLUGS = frozenset({"admin", "api", "favicon.ico"})

_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


def generate_random_slug(length: int = DEFAULT_SLUG_LENGTH) -> str:
    if not isinstance(length, int) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return generate(ALPHABET, length)


def is_valid_slug(candidate: str | None) -> bool:
    if not candidate:
        return False
    return _SLUG_PATTERN.fullmatch(candidate) is not None


def is_reserved_slug(candidate: str | None) -> bool:
    if candidate is None:
        return False
    lowered = candidate.lower()
    return lowered in RESERVED_SLUGS or lowered.startswith("_")
