"""
CosmoCard Backend — Card Route Handlers
=========================================

What:  The card stage endpoints used by the web form.
How:   Each handler resolves the caller from the Bearer token, reads the body
       or multipart files, and delegates to CardService. Card ownership and
       stage prerequisites are checked by the service, not here.

Request Flow (multipart stages):
    1. FastAPI parses the form parts into UploadFile objects
    2. Parts are read into UploadedDocument (name, bytes, declared type)
    3. CardService validates count/size/type before touching the card
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.database import get_db_session
from cosmocard.dependencies import get_card_service, get_current_user
from cosmocard.schemas.card import (
    CardCreateRequest,
    CardCreateResponse,
    CardInfoRequest,
    CardInfoResponse,
    CardNameRequest,
    CardNameResponse,
    CardResponse,
    FeedbackRequest,
    FeedbackResponse,
    InciResponse,
    LabelResponse,
    LabelTextRequest,
    LabelUrlRequest,
    PhotosResponse,
)
from cosmocard.schemas.common import ErrorResponse
from cosmocard.services.auth_service import TokenClaims
from cosmocard.services.card_service import CardService
from cosmocard.services.file_service import UploadedDocument

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cards", tags=["Cards"])

_STAGE_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"description": "Card is not at the required stage", "model": ErrorResponse},
}


async def read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedDocument]:
    documents = []
    for upload in files or []:
        content = await upload.read()
        documents.append(
            UploadedDocument(
                filename=upload.filename or "file",
                content=content,
                mime_type=upload.content_type or "",
            )
        )
    return documents


@router.post(
    "/create",
    status_code=201,
    response_model=CardCreateResponse,
    responses=_STAGE_ERRORS,
    summary="Create a card with its Drive folders and sheet row",
)
async def create_card(
    body: CardCreateRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> CardCreateResponse:
    return await cards.create_card(
        db, user.user_id, body.product_name, body.purpose, body.application
    )


@router.get(
    "/{card_id}",
    response_model=CardResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get a card owned by the caller",
)
async def get_card(
    card_id: str,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> CardResponse:
    card = await cards.get_card(db, user.user_id, card_id)
    return CardResponse.model_validate(card)


@router.patch(
    "/{card_id}/info",
    response_model=CardInfoResponse,
    responses=_STAGE_ERRORS,
    summary="Update purpose and application",
)
async def update_info(
    card_id: str,
    body: CardInfoRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> CardInfoResponse:
    return await cards.update_info(db, user.user_id, card_id, body.purpose, body.application)


@router.post(
    "/{card_id}/label",
    response_model=LabelResponse,
    responses=_STAGE_ERRORS,
    summary="Upload 1-10 label files for AI extraction",
)
async def upload_label(
    card_id: str,
    label_files: Optional[List[UploadFile]] = File(default=None, alias="labelFile"),
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> LabelResponse:
    documents = await read_uploads(label_files)
    return await cards.process_label(db, user.user_id, card_id, documents)


@router.post(
    "/{card_id}/label-text",
    response_model=LabelResponse,
    responses=_STAGE_ERRORS,
    summary="Process label text typed by the user",
)
async def label_text(
    card_id: str,
    body: LabelTextRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> LabelResponse:
    return await cards.process_label_text(db, user.user_id, card_id, body.label_text)


@router.post(
    "/{card_id}/label-url",
    response_model=LabelResponse,
    responses=_STAGE_ERRORS,
    summary="Download a label from a URL and process it",
)
async def label_url(
    card_id: str,
    body: LabelUrlRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> LabelResponse:
    return await cards.process_label_url(db, user.user_id, card_id, body.label_url)


@router.post(
    "/{card_id}/inci",
    response_model=InciResponse,
    responses=_STAGE_ERRORS,
    summary="Upload the INCI document for AI composition analysis",
)
async def upload_inci(
    card_id: str,
    inci_files: Optional[List[UploadFile]] = File(default=None, alias="inciFile"),
    keep_percentages: bool = Form(default=False, alias="keepPercentages"),
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> InciResponse:
    documents = await read_uploads(inci_files)
    return await cards.process_inci(db, user.user_id, card_id, documents, keep_percentages)


@router.post(
    "/{card_id}/photos",
    response_model=PhotosResponse,
    responses=_STAGE_ERRORS,
    summary="Upload 1-10 product photos",
)
async def upload_photos(
    card_id: str,
    photos: Optional[List[UploadFile]] = File(default=None),
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> PhotosResponse:
    documents = await read_uploads(photos)
    return await cards.upload_photos(db, user.user_id, card_id, documents)


@router.patch(
    "/{card_id}/name",
    response_model=CardNameResponse,
    responses=_STAGE_ERRORS,
    summary="Rename the product (sheet and Drive folder)",
)
async def update_name(
    card_id: str,
    body: CardNameRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> CardNameResponse:
    if body.card_folder_id:
        logger.debug("Ignoring client cardFolderId for %s", card_id)
    return await cards.update_name(db, user.user_id, card_id, body.new_name)


@router.post(
    "/{card_id}/feedback",
    status_code=201,
    response_model=FeedbackResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Leave feedback on AI results",
)
async def submit_feedback(
    card_id: str,
    body: FeedbackRequest,
    user: TokenClaims = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    cards: CardService = Depends(get_card_service),
) -> FeedbackResponse:
    await cards.submit_feedback(
        db, user.user_id, card_id, body.result_type, body.feedback, body.corrections
    )
    return FeedbackResponse()
