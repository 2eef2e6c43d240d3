"""Offset pagination shared by link and visit listings."""

import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

__all__ = ["Page", "PageRequest"]

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    page: int = 0
    size: int = 20

    def __post_init__(self) -> None:
        assert self.page >= 0, f"page must be non-negative, got {self.page!r}"
        assert self.size > 0, f"size must be positive, got {self.size!r}"

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class Page(Generic[T]):
    request: PageRequest
    total: int
    items: list[T] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.request.size) if self.total else 0
