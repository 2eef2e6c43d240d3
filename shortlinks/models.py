"""SQLAlchemy ORM models for the short link service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for links, visits and users.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ slug (VARCHAR(50), UNIQUE on lower(slug))
    ├─ original_url (TEXT NOT NULL)
    ├─ click_count (BIGINT DEFAULT 0)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ created_by (VARCHAR(255) NULL, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

    link_visits table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_link_id (FK short_links.id, NULL, ON DELETE SET NULL)
    ├─ slug (VARCHAR(50), INDEXED)
    ├─ ip_address / user_agent / referrer
    ├─ status_code (INTEGER)
    ├─ country_code / device_type / browser / operating_system
    ├─ created_by (VARCHAR(255), INDEXED)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)

    users table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ username (UNIQUE) / email (UNIQUE)
    ├─ password_hash (bcrypt)
    ├─ is_admin / is_enabled
    └─ created_at / last_login_at

Class Relationship Diagram
=========================
::
    ShortLink 1 ──── * LinkVisit
        ▲                 │
        └── created_by ───┘  (denormalised copy, no join needed)

Key Behaviours
===============
- Slugs are unique case-insensitively through an expression index.
- LinkVisit.slug is always stored, so requests for unknown slugs are kept.
- LinkVisit.created_by is copied from the link when the visit is written.
  There is no ownership transfer, so the copy cannot drift.
- Deleting a link keeps its visits; their short_link_id becomes NULL.

Classes:
    ShortLink:  A slug -> URL mapping with click tracking.
    LinkVisit:  One recorded request on the redirect path.
    User:  An account allowed to manage links.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlinks.database import Base

__all__ = ["LinkVisit", "ShortLink", "User", "as_utc", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Express a timestamp in UTC; naive values are taken to be UTC already (SQLite drops the offset on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(50), nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    visits: Mapped[list["LinkVisit"]] = relationship(back_populates="short_link", passive_deletes=True)

    def is_valid(self, now: datetime.datetime | None = None) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return as_utc(self.expires_at) > (now or utcnow())

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, slug='{self.slug}', clicks={self.click_count})>"


Index("ix_short_links_slug_lower", func.lower(ShortLink.slug), unique=True)


class LinkVisit(Base):
    __tablename__ = "link_visits"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_link_id: Mapped[int | None] = mapped_column(
        ForeignKey("short_links.id", ondelete="SET NULL"), nullable=True, index=True
    )
    slug: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    operating_system: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    short_link: Mapped[ShortLink | None] = relationship(back_populates="visits")

    def __repr__(self) -> str:
        return f"<LinkVisit(id={self.id}, slug='{self.slug}', status={self.status_code})>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_login_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def roles(self) -> list[str]:
        return ["USER", "ADMIN"] if self.is_admin else ["USER"]

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', admin={self.is_admin})>"
