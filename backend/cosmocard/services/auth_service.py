"""
CosmoCard Backend — Email One-Time Code Authentication
========================================================

What:  Issues 6-digit email codes, verifies them, and mints bearer tokens.
How:   Codes live in an ExpiringCodeStore (10-minute TTL, single use).
       Tokens are HS256 JWTs (python-jose) carrying {userId, email, name}
       with a fixed 30-day expiry. There is no revocation: rotating
       JWT_SECRET invalidates every issued token.

Flows:
    Registration: send_registration_code(email, name) → verify_code → user created
    Login:        send_login_code(email) (user must exist) → verify_code

    Outside production the code is also returned in the API response so the
    web form can be exercised without a mail server.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.config import settings
from cosmocard.exceptions import AuthError, NotFoundError, ValidationError
from cosmocard.models.user import User
from cosmocard.services.code_store import CodeRejected, ExpiringCodeStore
from cosmocard.services.email_service import EmailService, email_service
from cosmocard.services.user_service import UserService, user_service

logger = logging.getLogger(__name__)

_REJECTION_MESSAGES = {
    "missing": "Код не найден или уже использован",
    "expired": "Срок действия кода истёк",
    "mismatch": "Неверный код",
}


@dataclass
class TokenClaims:
    user_id: str
    email: str
    name: str

    def as_dict(self) -> Dict[str, str]:
        return {"userId": self.user_id, "email": self.email, "name": self.name}


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _normalize_email(email: str) -> str:
    cleaned = (email or "").strip().lower()
    if not cleaned or "@" not in cleaned:
        raise ValidationError(message="Укажите корректный email", field="email")
    return cleaned


class AuthService:
    def __init__(
        self,
        code_store: Optional[ExpiringCodeStore] = None,
        mailer: Optional[EmailService] = None,
        users: Optional[UserService] = None,
    ):
        self.codes = (
            code_store
            if code_store is not None
            else ExpiringCodeStore(settings.verification_code_ttl)
        )
        self.mailer = mailer if mailer is not None else email_service
        self.users = users if users is not None else user_service

    # ── Codes ─────────────────────────────────────────────────────────────

    async def send_registration_code(self, email: str, name: str) -> Dict[str, Any]:
        email = _normalize_email(email)
        if not (name or "").strip():
            raise ValidationError(message="Укажите имя", field="name")
        return await self._issue_code(email, name.strip())

    async def send_login_code(self, db: AsyncSession, email: str) -> Dict[str, Any]:
        email = _normalize_email(email)
        user = await self.users.find_by_email(db, email)
        if user is None:
            raise NotFoundError(resource="user", resource_id=email)
        return await self._issue_code(email, user.display_name)

    async def _issue_code(self, email: str, name: str) -> Dict[str, Any]:
        code = generate_code()
        self.codes.put(email, code, name)
        sent = await self.mailer.send_verification_code(email, code, name)
        result: Dict[str, Any] = {"sent": sent}
        if not settings.is_production:
            result["code"] = code
        return result

    async def verify_code(self, db: AsyncSession, email: str, code: str) -> Tuple[str, User]:
        """
        Accept a code at most once and return (token, user).

        The first successful verification for an email creates the user. The
        code is discarded only after the user is stored, so a failed
        registration can be retried with the same code.
        """
        email = _normalize_email(email)
        if not (code or "").strip():
            raise ValidationError(message="Укажите код", field="code")
        try:
            entry = self.codes.check(email, code)
        except CodeRejected as e:
            logger.info("Verification code for %s rejected: %s", email, e.reason)
            raise AuthError(
                message=_REJECTION_MESSAGES[e.reason], context={"reason": e.reason}
            ) from e

        user, created = await self.users.get_or_create_by_email(db, email, entry.name)
        await self.users.record_login(db, user)
        self.codes.discard(email)
        if created:
            logger.info("Registered %s as %s", email, user.user_id)
        return self.create_token(user), user

    # ── Tokens ────────────────────────────────────────────────────────────

    def create_token(self, user: User) -> str:
        expires = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expire_days)
        claims = {
            "userId": user.user_id,
            "email": user.email or "",
            "name": user.display_name,
            "exp": int(expires.timestamp()),
        }
        return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    def verify_token(self, token: str) -> TokenClaims:
        if not token:
            raise AuthError(message="Токен не предоставлен")
        try:
            payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        except JWTError as e:
            raise AuthError(message="Недействительный или просроченный токен") from e
        user_id = payload.get("userId")
        if not user_id:
            raise AuthError(message="Недействительный токен")
        return TokenClaims(
            user_id=user_id,
            email=payload.get("email", ""),
            name=payload.get("name", ""),
        )


auth_service = AuthService()
