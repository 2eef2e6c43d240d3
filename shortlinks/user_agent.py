"""User-Agent classification for visit analytics.

Each classifier is an ordered list of ``(predicate, label)`` rules evaluated
top to bottom; the first match wins. Order encodes priority:

- device: bot > mobile > tablet > desktop
- browser: Edge > Chrome > Safari (Edge and Chrome both advertise "chrome"
  and "safari" tokens)
- OS: Android and iOS before Linux and macOS (their strings contain
  "linux" / "like mac os x")

A missing or empty header yields ``None`` for every field; a present but
unrecognised header yields ``"Unknown"`` for browser and OS.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from shortlinks.enums import DeviceType

__all__ = [
    "BROWSER_RULES",
    "DEVICE_RULES",
    "OS_RULES",
    "UNKNOWN",
    "UserAgentInfo",
    "parse_browser",
    "parse_device_type",
    "parse_operating_system",
    "parse_user_agent",
]

UNKNOWN = "Unknown"

Predicate = Callable[[str], bool]
Rule = tuple[Predicate, str]


def _any(*tokens: str) -> Predicate:
    return lambda ua: any(token in ua for token in tokens)


DEVICE_RULES: Sequence[Rule] = (
    (_any("bot", "crawler", "spider", "scraper", "curl", "wget"), DeviceType.BOT),
    (_any("mobile", "android", "iphone", "ipod", "blackberry", "windows phone"), DeviceType.MOBILE),
    (lambda ua: "tablet" in ua or "ipad" in ua or ("android" in ua and "mobile" not in ua), DeviceType.TABLET),
)

BROWSER_RULES: Sequence[Rule] = (
    (_any("edg"), "Edge"),
    (_any("chrome"), "Chrome"),
    (_any("safari"), "Safari"),
    (_any("firefox"), "Firefox"),
    (_any("opera", "opr"), "Opera"),
    (_any("msie", "trident"), "Internet Explorer"),
)

OS_RULES: Sequence[Rule] = (
    (_any("windows nt 10.0", "windows 10"), "Windows 10"),
    (_any("windows nt 6.3", "windows 8.1"), "Windows 8.1"),
    (_any("windows nt 6.2", "windows 8"), "Windows 8"),
    (_any("windows nt 6.1", "windows 7"), "Windows 7"),
    (_any("windows"), "Windows"),
    (_any("android"), "Android"),
    (_any("iphone", "ipad", "ipod"), "iOS"),
    (_any("mac os x", "macintosh"), "macOS"),
    (_any("linux"), "Linux"),
)


def _classify(user_agent: str | None, rules: Sequence[Rule], default: str) -> str | None:
    if not user_agent:
        return None
    ua = user_agent.lower()
    for predicate, label in rules:
        if predicate(ua):
            return str(label)
    return default


def parse_device_type(user_agent: str | None) -> str | None:
    return _classify(user_agent, DEVICE_RULES, DeviceType.DESKTOP.value)


def parse_browser(user_agent: str | None) -> str | None:
    return _classify(user_agent, BROWSER_RULES, UNKNOWN)


def parse_operating_system(user_agent: str | None) -> str | None:
    return _classify(user_agent, OS_RULES, UNKNOWN)


@dataclass(frozen=True)
class UserAgentInfo:
    device_type: str | None
    browser: str | None
    operating_system: str | None


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    return UserAgentInfo(
        device_type=parse_device_type(user_agent),
        browser=parse_browser(user_agent),
        operating_system=parse_operating_system(user_agent),
    )
