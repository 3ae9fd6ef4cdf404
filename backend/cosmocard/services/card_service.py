"""
CosmoCard Backend — Card Service (Workflow Orchestrator)
==========================================================

What:  Sequences the card lifecycle across the registry, Drive, Sheets and Gemini.
Who:   Called by the card routes, the legacy webhook and the batch sweep.

Orchestration Flow:
    create ──▶ label ──▶ INCI ──▶ photos
       └────▶ info ─┘
    rename is allowed at any stage after create.

    Every stage call loads the card from the registry by card_id, checks that
    it belongs to the caller (404 otherwise) and that the prerequisite stage
    was reached (StaleStageError, 409 otherwise). Folder ids and product names
    always come from the registry, never from the client.

Partial failure handling:
    create   folder → photos folder → sheet row; a failure after the card
             folder exists deletes it and clears an appended row
             (CompensationLog), and the registry reservation rolls back.
    rename   sheet name cell first, then Drive folder; a failed rename
             restores the sheet cell.
    AI       AIUnavailable results leave AI fields untouched and mark the
             card ai_status='unavailable'; the request still succeeds.

Sheet writes:
    The registry keeps each card's sheet row number, so a stage writes its
    column range directly. Cards with no known row (legacy rows) fall back
    to a column-B scan; if the row is gone the sheet write is skipped and
    logged, the registry is still updated.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cosmocard.config import settings
from cosmocard.exceptions import (
    AuthError,
    CosmoCardError,
    DuplicateCardError,
    NotFoundError,
    StaleStageError,
    ValidationError,
)
from cosmocard.models.card import AIStatus, Card, CardFeedback, CardStage
from cosmocard.models.user import User
from cosmocard.schemas.card import (
    AISuggestions,
    Bilingual,
    CardCreateResponse,
    CardInfoResponse,
    CardNameResponse,
    DriveFolderInfo,
    InciAIResults,
    InciResponse,
    LabelFile,
    LabelResponse,
    PhotosResponse,
    UploadedFile,
    UploadedPhoto,
    WebhookRequest,
    WebhookResponse,
)
from cosmocard.services import sheet_layout as layout
from cosmocard.services.compensation import CompensationLog
from cosmocard.services.downloader import Downloader, downloader
from cosmocard.services.drive_service import DriveService, drive_service, file_url, folder_url
from cosmocard.services.file_service import FileService, UploadedDocument, file_service
from cosmocard.services.gemini_service import gemini_service
from cosmocard.services.llm_base import (
    AIUnavailable,
    Attachment,
    InciResult,
    LLMService,
)
from cosmocard.services.sheets_service import SheetsService, sheets_service
from cosmocard.services.user_service import UserService, user_service

logger = logging.getLogger(__name__)


def format_card_id(user_id: str, sequence: int) -> str:
    return f"CARD-{user_id}-C{sequence:04d}"


def card_to_sheet_values(card: Card) -> Dict[str, object]:
    """All 21 layout fields read from the card; row_id stays blank."""
    values: Dict[str, object] = {
        field: getattr(card, field, "") or "" for field in layout.CARD_FIELDS if field != "row_id"
    }
    values["row_id"] = ""
    return values


def _required(value: Optional[str], field: str, message: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(message=message, field=field)
    return cleaned


class CardService:
    """
    Card stage machine. Collaborators are injected so tests can substitute
    in-memory fakes; the defaults are the application singletons.
    """

    def __init__(
        self,
        drive: Optional[DriveService] = None,
        sheets: Optional[SheetsService] = None,
        llm: Optional[LLMService] = None,
        files: Optional[FileService] = None,
        users: Optional[UserService] = None,
        fetcher: Optional[Downloader] = None,
    ):
        self.drive = drive if drive is not None else drive_service
        self.sheets = sheets if sheets is not None else sheets_service
        self.llm = llm if llm is not None else gemini_service
        self.files = files if files is not None else file_service
        self.users = users if users is not None else user_service
        self.fetcher = fetcher if fetcher is not None else downloader

    # ══════════════════════════════════════════════════════════════════════
    # Registry helpers
    # ══════════════════════════════════════════════════════════════════════

    async def load_card(self, db: AsyncSession, user_id: str, card_id: str) -> Card:
        card = await db.get(Card, card_id)
        if card is None or card.user_id != user_id:
            raise NotFoundError(resource="card", resource_id=card_id)
        return card

    @staticmethod
    def require_stage(card: Card, required: CardStage) -> None:
        if not card.current_stage.at_least(required):
            raise StaleStageError(
                card_id=card.card_id,
                current_stage=card.stage,
                required_stage=required.value,
            )

    async def _next_sequence(self, db: AsyncSession, user_id: str) -> int:
        result = await db.execute(
            select(func.count()).select_from(Card).where(Card.user_id == user_id)
        )
        return (result.scalar() or 0) + 1

    async def _sheet_row(self, card: Card) -> Optional[int]:
        if card.sheet_row:
            return card.sheet_row
        found = await self.sheets.find_row_by_card_id(card.card_id)
        if found is None:
            logger.warning("Card %s has no sheet row; sheet export skipped", card.card_id)
            return None
        card.sheet_row = found.row_number
        return card.sheet_row

    # ══════════════════════════════════════════════════════════════════════
    # Stage: create
    # ══════════════════════════════════════════════════════════════════════

    async def create_card(
        self,
        db: AsyncSession,
        user_id: str,
        product_name: str,
        purpose: str,
        application: str,
        require_details: bool = True,
    ) -> CardCreateResponse:
        """
        Reserve a card id, provision Drive folders and append the sheet row.

        Workflow Steps:
            1. Validate product name, purpose, application (before any external call)
            2. Insert the card with sequence = user's card count + 1
               (unique (user_id, sequence) → DuplicateCardError on a race)
            3. Ensure the user folder, create "{card_id} {product_name}" and its
               photos subfolder
            4. Append the sheet row with blank label and AI columns

        Raises:
            ValidationError, DuplicateCardError, UpstreamError
        """
        product_name = _required(product_name, "productName", "Укажите название продукта")
        if require_details:
            purpose = _required(purpose, "purpose", 'Заполните поле "Назначение"')
            application = _required(application, "application", 'Заполните поле "Применение"')
        else:
            purpose = (purpose or "").strip()
            application = (application or "").strip()

        user = await db.get(User, user_id)
        if user is None:
            raise AuthError(message="Пользователь не найден", context={"user_id": user_id})

        card = await self._reserve_card(db, user_id, product_name, purpose, application)

        undo = CompensationLog(f"create {card.card_id}")
        try:
            await self._provision(card, undo)
            await db.flush()
        except Exception:
            failed = await undo.unwind()
            if failed:
                logger.error("Card %s left partial state: %s", card.card_id, ", ".join(failed))
            raise

        logger.info("Card %s created for %s (row %s)", card.card_id, user_id, card.sheet_row)
        return CardCreateResponse(
            card_id=card.card_id,
            card_folder_id=card.card_folder_id,
            user_folder_id=card.user_folder_id,
            photos_folder_id=card.photos_folder_id,
            sheet_row=card.sheet_row,
            folder_url=folder_url(card.card_folder_id),
            stage=card.stage,
        )

    async def _reserve_card(
        self, db: AsyncSession, user_id: str, product_name: str, purpose: str, application: str
    ) -> Card:
        sequence = await self._next_sequence(db, user_id)
        card = Card(
            card_id=format_card_id(user_id, sequence),
            user_id=user_id,
            sequence=sequence,
            product_name=product_name,
            purpose=purpose,
            application=application,
            stage=CardStage.CREATED.value,
            ai_status=AIStatus.PENDING.value,
        )
        db.add(card)
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning("Duplicate card sequence detected for %s", card.card_id)
            raise DuplicateCardError(card_id=card.card_id) from e
        return card

    async def _provision(self, card: Card, undo: CompensationLog) -> None:
        user_folder_id = await self.drive.ensure_user_folder(card.user_id)
        card_folder_id = await self.drive.create_folder(card.folder_name, user_folder_id)
        undo.push(f"delete folder {card_folder_id}", lambda: self.drive.delete_file(card_folder_id))

        photos_folder_id = await self.drive.create_folder(settings.photos_folder_name, card_folder_id)

        card.user_folder_id = user_folder_id
        card.card_folder_id = card_folder_id
        card.photos_folder_id = photos_folder_id

        row_number = await self.sheets.append_card_row(card_to_sheet_values(card))
        undo.push(f"clear sheet row {row_number}", lambda: self.sheets.clear_row(row_number))
        card.sheet_row = row_number

    # ══════════════════════════════════════════════════════════════════════
    # Stage: info
    # ══════════════════════════════════════════════════════════════════════

    async def update_info(
        self, db: AsyncSession, user_id: str, card_id: str, purpose: str, application: str
    ) -> CardInfoResponse:
        if not (purpose or "").strip() or not (application or "").strip():
            raise ValidationError(
                message='Заполните поля "Назначение" и "Применение"',
                field="purpose" if not (purpose or "").strip() else "application",
            )
        purpose = purpose.strip()
        application = application.strip()

        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.CREATED)

        row = await self._sheet_row(card)
        if row:
            await self.sheets.update_purpose_and_application(row, purpose, application)

        card.purpose = purpose
        card.application = application
        card.advance(CardStage.INFO_FILLED)
        await db.flush()
        logger.info("Purpose/application saved for %s", card_id)
        return CardInfoResponse(
            card_id=card.card_id,
            purpose=card.purpose,
            application=card.application,
            stage=card.stage,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Stage: label
    # ══════════════════════════════════════════════════════════════════════

    async def process_label(
        self, db: AsyncSession, user_id: str, card_id: str, documents: Sequence[UploadedDocument]
    ) -> LabelResponse:
        documents = self.files.validate_label_files(documents)
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.CREATED)
        return await self._label_from_documents(db, card, documents)

    async def process_label_url(
        self, db: AsyncSession, user_id: str, card_id: str, label_url: str
    ) -> LabelResponse:
        label_url = _required(label_url, "labelUrl", "Укажите ссылку на этикетку")
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.CREATED)
        document = await self.fetcher.download(label_url, basename="label")
        documents = self.files.validate_label_files([document])
        return await self._label_from_documents(db, card, documents)

    async def process_label_text(
        self, db: AsyncSession, user_id: str, card_id: str, label_text: str
    ) -> LabelResponse:
        label_text = _required(label_text, "labelText", "Введите текст этикетки")
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.CREATED)
        return await self._apply_label(db, card, label_text, [], [])

    async def _label_from_documents(
        self, db: AsyncSession, card: Card, documents: Sequence[UploadedDocument]
    ) -> LabelResponse:
        files_meta: List[LabelFile] = []
        text_parts: List[str] = []
        attachments: List[Attachment] = []

        for index, document in enumerate(documents):
            suffix = f" ({index + 1})" if len(documents) > 1 else ""
            name = f"Этикетка {card.product_name}{suffix}.{document.extension}"
            file_id = await self.drive.upload_file(
                name, document.content, document.mime_type, card.card_folder_id
            )
            files_meta.append(LabelFile(name=name, link=file_url(file_id), mime_type=document.mime_type))

            if document.is_image:
                attachments.append(Attachment(document.content, document.mime_type))
                continue
            text = await self.files.extract_text(document)
            if text:
                text_parts.append(text)
            elif document.is_pdf:
                # Scanned PDF without a text layer
                attachments.append(Attachment(document.content, document.mime_type))

        return await self._apply_label(db, card, "\n\n".join(text_parts), attachments, files_meta)

    async def _apply_label(
        self,
        db: AsyncSession,
        card: Card,
        label_text: str,
        attachments: Sequence[Attachment],
        files_meta: Sequence[LabelFile],
    ) -> LabelResponse:
        analysis = await self.llm.analyze_label(card.product_name, label_text, attachments)
        ai_available = not isinstance(analysis, AIUnavailable)

        if files_meta:
            card.label_link = files_meta[0].link

        suggestions = AISuggestions()
        if ai_available:
            card.label_info = analysis.label_info
            suggestions = AISuggestions(
                purpose=analysis.suggested_purpose.strip(),
                application=analysis.suggested_application.strip(),
            )
            # A non-empty suggestion replaces the stored value, including one typed by the user
            if suggestions.purpose:
                card.purpose = suggestions.purpose
            if suggestions.application:
                card.application = suggestions.application
        else:
            logger.warning("Label analysis unavailable for %s: %s", card.card_id, analysis.reason)
            if not card.label_info and label_text:
                card.label_info = label_text

        card.advance(CardStage.LABEL_PROCESSED)

        row = await self._sheet_row(card)
        if row:
            await self.sheets.update_label_info(row, card.label_link, card.label_info)
            if suggestions.purpose or suggestions.application:
                await self.sheets.update_purpose_and_application(row, card.purpose, card.application)

        await db.flush()
        logger.info("Label processed for %s (%d files, ai=%s)", card.card_id, len(files_meta), ai_available)
        return LabelResponse(
            card_id=card.card_id,
            label_link=card.label_link,
            label_file_name=", ".join(f.name for f in files_meta),
            label_files=list(files_meta),
            ai_suggestions=suggestions,
            label_info=card.label_info,
            purpose=card.purpose,
            application=card.application,
            ai_available=ai_available,
            stage=card.stage,
            message=(
                "Этикетка загружена и обработана AI"
                if ai_available
                else "Этикетка загружена, AI-анализ недоступен"
            ),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Stage: INCI
    # ══════════════════════════════════════════════════════════════════════

    async def process_inci(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        documents: Sequence[UploadedDocument],
        keep_percentages: bool = False,
    ) -> InciResponse:
        document = self.files.validate_inci_file(documents)
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.LABEL_PROCESSED)

        name = f"INCI {card.product_name}.{document.extension}"
        file_id = await self.drive.upload_file(
            name, document.content, document.mime_type, card.card_folder_id
        )
        inci_link = file_url(file_id)
        inci_text = await self.files.extract_text(document)

        attachments = []
        if document.is_image or (document.is_pdf and not inci_text):
            attachments.append(Attachment(document.content, document.mime_type))

        card.inci_text = inci_text
        card.inci_doc_link = inci_link

        analysis = await self.llm.analyze_inci(
            card.product_name, card.purpose, inci_text, attachments, keep_percentages
        )
        self.apply_inci_analysis(card, analysis)
        card.advance(CardStage.INCI_PROCESSED)

        row = await self._sheet_row(card)
        if row:
            await self.sheets.update_inci(row, card.inci_text, card.inci_doc_link)
            if card.ai_status == AIStatus.COMPLETED.value:
                await self.sheets.update_ai_compositions(row, analysis.as_fields())

        await db.flush()
        ai_available = card.ai_status == AIStatus.COMPLETED.value
        logger.info("INCI processed for %s (ai=%s)", card.card_id, ai_available)
        return InciResponse(
            card_id=card.card_id,
            inci_link=inci_link,
            inci_file_name=name,
            inci_text=inci_text,
            ai_available=ai_available,
            ai_results=self._inci_results(card) if ai_available else None,
            stage=card.stage,
            message=(
                "INCI загружен и обработан AI"
                if ai_available
                else "INCI загружен, AI-анализ недоступен"
            ),
        )

    @staticmethod
    def apply_inci_analysis(card: Card, analysis: InciResult) -> bool:
        """Copy the six composition fields onto the card; False if the AI was unavailable."""
        if isinstance(analysis, AIUnavailable):
            logger.warning("INCI analysis unavailable for %s: %s", card.card_id, analysis.reason)
            card.ai_status = AIStatus.UNAVAILABLE.value
            return False
        for field, value in analysis.as_fields().items():
            setattr(card, field, value)
        card.ai_status = AIStatus.COMPLETED.value
        return True

    @staticmethod
    def _inci_results(card: Card) -> InciAIResults:
        return InciAIResults(
            full_composition=Bilingual(ru=card.full_composition_ru, en=card.full_composition_en),
            active_ingredients=Bilingual(ru=card.active_ingredients_ru, en=card.active_ingredients_en),
            booklet_composition=Bilingual(
                ru=card.booklet_composition_ru, en=card.booklet_composition_en
            ),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Stage: photos
    # ══════════════════════════════════════════════════════════════════════

    async def upload_photos(
        self, db: AsyncSession, user_id: str, card_id: str, documents: Sequence[UploadedDocument]
    ) -> PhotosResponse:
        documents = self.files.validate_photos(documents)
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.INCI_PROCESSED)

        uploaded = []
        for document in documents:
            name = Path(document.filename).name
            file_id = await self.drive.upload_file(
                name, document.content, document.mime_type, card.photos_folder_id
            )
            uploaded.append(UploadedPhoto(name=name, id=file_id, url=file_url(file_id)))

        card.advance(CardStage.PHOTOS_UPLOADED)
        await db.flush()
        logger.info("Uploaded %d photos for %s", len(uploaded), card.card_id)
        return PhotosResponse(
            card_id=card.card_id,
            uploaded_photos=uploaded,
            count=len(uploaded),
            stage=card.stage,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Rename, read, feedback
    # ══════════════════════════════════════════════════════════════════════

    async def update_name(
        self, db: AsyncSession, user_id: str, card_id: str, new_name: str
    ) -> CardNameResponse:
        new_name = _required(new_name, "newName", "Укажите новое название")
        card = await self.load_card(db, user_id, card_id)
        self.require_stage(card, CardStage.CREATED)

        old_name = card.product_name
        folder_name = f"{card.card_id} {new_name}"
        undo = CompensationLog(f"rename {card.card_id}")

        row = await self._sheet_row(card)
        if row:
            await self.sheets.update_product_name(row, new_name)
            undo.push(
                f"restore sheet name on row {row}",
                lambda: self.sheets.update_product_name(row, old_name),
            )
        try:
            if card.card_folder_id:
                await self.drive.rename_folder(card.card_folder_id, folder_name)
        except Exception:
            await undo.unwind()
            raise

        card.product_name = new_name
        await db.flush()
        logger.info("Card %s renamed to '%s'", card.card_id, new_name)
        return CardNameResponse(card_id=card.card_id, product_name=new_name, folder_name=folder_name)

    async def get_card(self, db: AsyncSession, user_id: str, card_id: str) -> Card:
        return await self.load_card(db, user_id, card_id)

    async def submit_feedback(
        self,
        db: AsyncSession,
        user_id: str,
        card_id: str,
        result_type: str,
        feedback: str,
        corrections: str = "",
    ) -> CardFeedback:
        feedback = _required(feedback, "feedback", "Введите отзыв")
        card = await self.load_card(db, user_id, card_id)
        entry = CardFeedback(
            card_id=card.card_id,
            user_id=user_id,
            result_type=(result_type or "").strip(),
            feedback=feedback,
            corrections=(corrections or "").strip(),
        )
        db.add(entry)
        await db.flush()
        logger.info("Feedback on %s (%s) from %s", card.card_id, entry.result_type or "general", user_id)
        return entry

    # ══════════════════════════════════════════════════════════════════════
    # Legacy single-shot import (webhook)
    # ══════════════════════════════════════════════════════════════════════

    async def import_legacy_card(self, db: AsyncSession, payload: WebhookRequest) -> WebhookResponse:
        """
        Create a card in one call from an external automation.

        The user is resolved by Telegram chat id. The INCI document and
        photos are downloaded from their URLs; a file that fails to download
        or upload is logged and skipped. No AI analysis runs here; the batch
        sweep picks the card up later because its AI columns are blank.
        """
        chat_id = _required(payload.chat_id, "chatId", "Missing required field: chatId")
        product_name = _required(payload.product_name, "productName", "Missing required field: productName")

        user, _ = await self.users.get_or_create_by_chat_id(db, chat_id, payload.user_name)
        created = await self.create_card(
            db,
            user.user_id,
            product_name,
            payload.purpose,
            payload.application,
            require_details=False,
        )
        card = await self.load_card(db, user.user_id, created.card_id)
        uploaded: List[UploadedFile] = []

        inci_text = (payload.inci or "").strip()
        if payload.inci_doc_url:
            try:
                document = await self.fetcher.download(payload.inci_doc_url, basename=f"INCI {product_name}")
                file_id = await self.drive.upload_file(
                    document.filename, document.content, document.mime_type, card.card_folder_id
                )
                uploaded.append(UploadedFile(name=document.filename, id=file_id))
                card.inci_doc_link = file_url(file_id)
                if not inci_text:
                    inci_text = await self.files.extract_text(document)
            except CosmoCardError as e:
                logger.warning("INCI document for %s skipped: %s", card.card_id, e.message)

        for index, url in enumerate(payload.photo_urls, start=1):
            try:
                document = await self.fetcher.download(url, basename=f"photo_{index}")
                file_id = await self.drive.upload_file(
                    document.filename, document.content, document.mime_type, card.photos_folder_id
                )
                uploaded.append(UploadedFile(name=document.filename, id=file_id))
            except CosmoCardError as e:
                logger.warning("Photo %d for %s skipped: %s", index, card.card_id, e.message)

        card.inci_text = inci_text
        if (card.inci_text or card.inci_doc_link) and card.sheet_row:
            await self.sheets.update_inci(card.sheet_row, card.inci_text, card.inci_doc_link)
        await db.flush()

        logger.info("Legacy card %s imported with %d files", card.card_id, len(uploaded))
        return WebhookResponse(
            card_id=card.card_id,
            drive_folder=DriveFolderInfo(
                id=card.card_folder_id,
                url=folder_url(card.card_folder_id),
                uploaded_files=uploaded,
            ),
            sheet_row=card.sheet_row,
        )


card_service = CardService()
