"""Target URL normalisation tests."""

import pytest

from shortlinks.exceptions import InvalidURLError, LinkValidationError
from shortlinks.urls import normalize_url, validate_and_normalize


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("example.com", "https://example.com"),
        ("  example.com/path  ", "https://example.com/path"),
        ("http://example.com", "http://example.com"),
        ("HTTPS://Example.com", "HTTPS://Example.com"),
        ("", ""),
        (None, None),
    ],
)
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "https://example.com",
        "example.com/docs?x=1",
        "http://localhost:8080/health",
        "https://sub.example.co.uk/a/b#frag",
    ],
)
def test_validate_accepts_http_urls(raw):
    assert validate_and_normalize(raw).lower().startswith(("http://", "https://"))


@pytest.mark.parametrize("raw", ["", "   ", None, "not a url", "ftp://example.com/file", "javascript:alert(1)"])
def test_validate_rejects_bad_urls(raw):
    with pytest.raises(InvalidURLError) as exc_info:
        validate_and_normalize(raw)
    assert str(exc_info.value) == "Invalid URL format"


def test_invalid_url_is_a_validation_error():
    assert issubclass(InvalidURLError, LinkValidationError)
    assert issubclass(InvalidURLError, ValueError)
