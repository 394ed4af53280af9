"""SQLAlchemy ORM models for the link resolver.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(10) UNIQUE, INDEXED)
    ├─ destination_url (TEXT NOT NULL)
    ├─ is_active (BOOLEAN DEFAULT TRUE)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

Key Behaviours
===============
- Rows are created and soft-deleted (``is_active = false``) by the link
  management service; this service only reads them.
- ``click_count`` only ever grows, and only the analytics consumer writes it.
- A link whose ``expires_at`` is in the past resolves as not-found.

Classes:
    ShortLink:  A short code to destination URL mapping.
"""

import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from linkresolver.database import Base

__all__ = ["ShortLink"]


class ShortLink(Base):
    __tablename__ = "links"
    __table_args__ = (CheckConstraint("click_count >= 0", name="ck_links_click_count_non_negative"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true", nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, short_code='{self.short_code}', clicks={self.click_count})>"
