"""
Legacy single-shot card import.

An external automation (the Telegram bot flow) posts everything at once:
chat id, product fields, INCI text or document URL and photo URLs. The card
gets the same folder layout and sheet row as a web form card; AI columns stay
blank until the batch sweep runs.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.database import get_db_session
from cosmocard.dependencies import get_card_service, require_webhook_secret
from cosmocard.schemas.card import WebhookRequest, WebhookResponse
from cosmocard.schemas.common import ErrorResponse
from cosmocard.services.card_service import CardService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhook"])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    dependencies=[Depends(require_webhook_secret)],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Create a card in one call (legacy bot flow)",
)
async def webhook(
    body: WebhookRequest,
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> WebhookResponse:
    return await cards.import_legacy_card(db, body)
