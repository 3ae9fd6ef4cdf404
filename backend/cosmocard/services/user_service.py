"""
CosmoCard Backend — User Service
==================================

What:  Finds and creates users in the registry and journals new users to the
       Users sheet.
Who:   AuthService on code verification (web form users, channel WF) and the
       legacy webhook import (Telegram users, channel TG).

Id generation:
    U{YYYY_MM_DD}_{channel}-{seq:04d}, seq = number of users + 1.
    Two concurrent registrations can compute the same id; the primary key
    rejects the second insert, which surfaces as ConflictError (409) and the
    client simply retries.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.exceptions import ConflictError, UpstreamError
from cosmocard.models.user import User
from cosmocard.services.sheets_service import SheetsService, sheets_service

logger = logging.getLogger(__name__)

CHANNELS = {
    "WF": "Web Form",
    "TG": "Telegram",
}


def generate_user_id(sequence: int, channel_code: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"U{now:%Y_%m_%d}_{channel_code}-{sequence:04d}"


def user_to_sheet_values(user: User) -> dict:
    return {
        "user_id": user.user_id,
        "created_at": user.created_at.isoformat() if user.created_at else "",
        "display_name": user.display_name,
        "email": user.email or "",
        "telegram_chat_id": user.telegram_chat_id or "",
        "channel_code": user.channel_code,
        "channel_name": user.channel_name,
        "language": user.language,
        "role": user.role,
        "status": user.status,
        "consent": "Да" if user.consent else "Нет",
        "consent_at": user.created_at.isoformat() if user.consent and user.created_at else "",
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else "",
        "login_count": user.login_count,
        "cards_count": 0,
        "deletion_requested": "Да" if user.deletion_requested else "Нет",
    }


class UserService:
    def __init__(self, sheets: Optional[SheetsService] = None):
        self.sheets = sheets if sheets is not None else sheets_service

    async def get(self, db: AsyncSession, user_id: str) -> Optional[User]:
        return await db.get(User, user_id)

    async def find_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def find_by_chat_id(self, db: AsyncSession, chat_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.telegram_chat_id == str(chat_id)))
        return result.scalar_one_or_none()

    async def get_or_create_by_email(
        self, db: AsyncSession, email: str, name: str = ""
    ) -> Tuple[User, bool]:
        existing = await self.find_by_email(db, email)
        if existing is not None:
            return existing, False
        user = await self._create(
            db,
            channel_code="WF",
            email=email.strip().lower(),
            display_name=name.strip() or email.split("@")[0],
        )
        return user, True

    async def get_or_create_by_chat_id(
        self, db: AsyncSession, chat_id: str, name: str = ""
    ) -> Tuple[User, bool]:
        existing = await self.find_by_chat_id(db, chat_id)
        if existing is not None:
            return existing, False
        user = await self._create(
            db,
            channel_code="TG",
            telegram_chat_id=str(chat_id),
            display_name=name.strip() or f"Telegram {chat_id}",
        )
        return user, True

    async def record_login(self, db: AsyncSession, user: User) -> None:
        user.login_count = (user.login_count or 0) + 1
        user.last_login_at = datetime.now(timezone.utc)
        await db.flush()

    async def _create(self, db: AsyncSession, channel_code: str, **fields) -> User:
        count = (await db.execute(select(func.count()).select_from(User))).scalar() or 0
        user = User(
            user_id=generate_user_id(count + 1, channel_code),
            channel_code=channel_code,
            channel_name=CHANNELS[channel_code],
            created_at=datetime.now(timezone.utc),
            **fields,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning("User id %s collided with a concurrent registration", user.user_id)
            raise ConflictError(
                message="Another registration is in progress; please retry",
                context={"user_id": user.user_id},
            ) from e
        logger.info("Created user %s (%s)", user.user_id, CHANNELS[channel_code])
        await self._export(user)
        return user

    async def _export(self, user: User) -> None:
        """Journal the new user to the Users sheet; the registry stays authoritative."""
        try:
            await self.sheets.append_user_row(user_to_sheet_values(user))
        except UpstreamError as e:
            logger.warning("Could not export user %s to the Users sheet: %s", user.user_id, e.message)


user_service = UserService()
