"""
FastAPI dependencies shared by the routes.

Services are provided through Depends so tests can swap them with
app.dependency_overrides instead of patching module globals.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header

from cosmocard.config import settings
from cosmocard.exceptions import AuthError
from cosmocard.services.auth_service import AuthService, TokenClaims, auth_service
from cosmocard.services.batch_service import BatchService, batch_service
from cosmocard.services.card_service import CardService, card_service

logger = logging.getLogger(__name__)


def get_auth_service() -> AuthService:
    return auth_service


def get_card_service() -> CardService:
    return card_service


def get_batch_service() -> BatchService:
    return batch_service


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Claims of the Bearer token in the Authorization header (401 if absent or invalid)."""
    if not authorization:
        raise AuthError(message="Требуется авторизация")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(message="Неверный формат заголовка Authorization")
    return auth.verify_token(token.strip())


async def require_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
) -> None:
    """Check X-Webhook-Secret; the check is off when no secret is configured."""
    if not settings.webhook_secret:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, settings.webhook_secret):
        logger.warning("Rejected request with invalid webhook secret")
        raise AuthError(message="Invalid webhook secret")
