"""User-Agent classification tests."""

import pytest

from shortlinks.user_agent import (
    UNKNOWN,
    parse_browser,
    parse_device_type,
    parse_operating_system,
    parse_user_agent,
)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.0.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Safari/604.1"
)
CHROME_ANDROID_PHONE = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
CHROME_ANDROID_TABLET = (
    "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15"
)
IE11 = "Mozilla/5.0 (Windows NT 6.1; Trident/7.0; rv:11.0) like Gecko"
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


@pytest.mark.parametrize(
    ("user_agent", "device", "browser", "operating_system"),
    [
        (CHROME_WINDOWS, "desktop", "Chrome", "Windows 10"),
        (EDGE_WINDOWS, "desktop", "Edge", "Windows 10"),
        (SAFARI_IPHONE, "mobile", "Safari", "iOS"),
        (SAFARI_IPAD, "tablet", "Safari", "iOS"),
        (CHROME_ANDROID_PHONE, "mobile", "Chrome", "Android"),
        (CHROME_ANDROID_TABLET, "mobile", "Chrome", "Android"),
        (FIREFOX_LINUX, "desktop", "Firefox", "Linux"),
        (SAFARI_MAC, "desktop", "Safari", "macOS"),
        (IE11, "desktop", "Internet Explorer", "Windows 7"),
        (GOOGLEBOT, "bot", UNKNOWN, UNKNOWN),
        ("curl/8.4.0", "bot", UNKNOWN, UNKNOWN),
    ],
)
def test_classification(user_agent, device, browser, operating_system):
    assert parse_device_type(user_agent) == device
    assert parse_browser(user_agent) == browser
    assert parse_operating_system(user_agent) == operating_system


@pytest.mark.parametrize("user_agent", [None, ""])
def test_missing_user_agent_yields_nulls(user_agent):
    info = parse_user_agent(user_agent)
    assert info.device_type is None
    assert info.browser is None
    assert info.operating_system is None


def test_unrecognised_user_agent():
    info = parse_user_agent("SomethingElse/1.0")
    assert info.device_type == "desktop"
    assert info.browser == UNKNOWN
    assert info.operating_system == UNKNOWN
