"""
CosmoCard Backend — User Model
================================

What:  ORM model for the `users` table of the registry.
Who:   Written by UserService on first verification (web) or first webhook
       import (Telegram); read by auth and card services.

Identity:
    user_id is human readable: U{YYYY_MM_DD}_{channel}-{seq:04d}, e.g.
    U2025_01_15_WF-0007. The sequence is the user count plus one, so two
    concurrent registrations can compute the same id; the primary key turns
    that race into an IntegrityError instead of a silent duplicate.
    email and telegram_chat_id are unique for the same reason.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cosmocard.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """A registered account. Never deleted; deletion is a manual flag."""

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    email: Mapped[Optional[str]] = mapped_column(String(320), unique=True, nullable=True)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # WF = web form, TG = Telegram (legacy webhook)
    channel_code: Mapped[str] = mapped_column(String(8), nullable=False, default="WF")
    channel_name: Mapped[str] = mapped_column(String(64), nullable=False, default="Web Form")

    language: Mapped[str] = mapped_column(String(8), nullable=False, default="ru")
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deletion_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    login_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<User(user_id='{self.user_id}', email='{self.email}')>"
