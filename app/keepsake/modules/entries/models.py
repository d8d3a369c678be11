from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.keepsake.models import Base

if TYPE_CHECKING:
    from app.keepsake.models import User


class Entry(Base):
    __tablename__ = "entries"
    __table_args__ = (
        Index("idx_entries_owner", "owner_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    birth_date: Mapped[date] = mapped_column(Date, nullable=False)
    death_date: Mapped[date] = mapped_column(Date, nullable=False)
    cause_of_death: Mapped[str | None] = mapped_column(String(240), nullable=True)
    location: Mapped[str | None] = mapped_column(String(240), nullable=True)
    primary_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", lazy="selectin")
    uploads: Mapped[list["UserUpload"]] = relationship(
        "UserUpload",
        back_populates="entry",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )


class UserUpload(Base):
    __tablename__ = "user_uploads"
    __table_args__ = (
        Index("idx_user_uploads_entry", "entry_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entry_id: Mapped[int] = mapped_column(ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)

    url: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str] = mapped_column(String(512), nullable=False)  # storage key
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    entry: Mapped[Entry] = relationship("Entry", back_populates="uploads")
