"""
CosmoCard Backend — Batch AI Sweep
====================================

What:  Fills in AI composition columns (K:P) for rows that do not have them yet.
Why:   Cards imported through the webhook skip AI analysis, and cards whose
       analysis hit AIUnavailable keep blank columns until someone retries.
How:   Scans the card sheet, re-runs the INCI analysis for each pending row
       and writes K:P plus the registry copy when the card is known.
When:  POST /process-batch schedules one sweep as a background task.

A sweep is best effort and takes no lock: two overlapping sweeps may analyze
the same row twice, and the later write wins.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cosmocard.database import async_session_factory
from cosmocard.exceptions import CosmoCardError
from cosmocard.models.card import Card
from cosmocard.services import sheet_layout as layout
from cosmocard.services.card_service import CardService
from cosmocard.services.drive_service import DriveService, drive_service
from cosmocard.services.file_service import (
    DOCUMENT_TYPES,
    FileService,
    UploadedDocument,
    file_service,
)
from cosmocard.services.gemini_service import gemini_service
from cosmocard.services.llm_base import AIUnavailable, Attachment, LLMService
from cosmocard.services.sheets_service import SheetsService, sheets_service

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    processed: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"processed": self.processed, "skipped": self.skipped, "errors": self.errors}


def is_pending(row: Dict[str, str]) -> bool:
    """A row with a card id whose AI columns are all empty."""
    if not row.get("card_id", "").strip():
        return False
    return not any(row.get(field, "").strip() for field in layout.AI_FIELDS)


class BatchService:
    def __init__(
        self,
        sheets: Optional[SheetsService] = None,
        drive: Optional[DriveService] = None,
        llm: Optional[LLMService] = None,
        files: Optional[FileService] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.sheets = sheets if sheets is not None else sheets_service
        self.drive = drive if drive is not None else drive_service
        self.llm = llm if llm is not None else gemini_service
        self.files = files if files is not None else file_service
        self.session_factory = session_factory if session_factory is not None else async_session_factory

    async def pending_rows(self) -> List[Tuple[int, Dict[str, str]]]:
        rows = await self.sheets.get_rows()
        pending = []
        # Row 1 is the header
        for row_number, values in enumerate(rows[1:], start=2):
            data = layout.from_row(values, layout.CARD_FIELDS)
            if is_pending(data):
                pending.append((row_number, data))
        return pending

    async def process_pending(self) -> Dict[str, int]:
        """Run one sweep with its own session; returns processed/skipped/error counts."""
        report = BatchReport()
        try:
            pending = await self.pending_rows()
        except CosmoCardError as e:
            logger.error("Batch sweep could not read the sheet: %s", e.message)
            report.errors += 1
            return report.as_dict()

        logger.info("Batch sweep found %d pending rows", len(pending))
        async with self.session_factory() as session:
            for row_number, data in pending:
                try:
                    done = await self._process_row(session, row_number, data)
                    await session.commit()
                except CosmoCardError as e:
                    await session.rollback()
                    logger.error("Batch row %d (%s) failed: %s", row_number, data["card_id"], e.message)
                    report.errors += 1
                    continue
                if done:
                    report.processed += 1
                else:
                    report.skipped += 1

        logger.info(
            "Batch sweep finished: %d processed, %d skipped, %d errors",
            report.processed, report.skipped, report.errors,
        )
        return report.as_dict()

    async def _process_row(self, db: AsyncSession, row_number: int, data: Dict[str, str]) -> bool:
        card_id = data["card_id"]
        card = await db.get(Card, card_id)

        inci_text = data.get("inci_text", "").strip() or (card.inci_text if card else "")
        product_name = data.get("product_name") or (card.product_name if card else "")
        purpose = data.get("purpose") or (card.purpose if card else "")

        attachments: List[Attachment] = []
        if not inci_text and card is not None and card.card_folder_id:
            inci_text, attachments = await self._inputs_from_folder(card)

        if not inci_text and not attachments:
            logger.info("Batch row %d (%s) has no INCI input, skipped", row_number, card_id)
            return False

        analysis = await self.llm.analyze_inci(product_name, purpose, inci_text, attachments)
        if isinstance(analysis, AIUnavailable):
            logger.warning("Batch row %d (%s) skipped: %s", row_number, card_id, analysis.reason)
            return False

        await self.sheets.update_ai_compositions(row_number, analysis.as_fields())
        if card is not None:
            CardService.apply_inci_analysis(card, analysis)
            if not card.sheet_row:
                card.sheet_row = row_number
        logger.info("Batch row %d (%s) analyzed", row_number, card_id)
        return True

    async def _inputs_from_folder(self, card: Card) -> Tuple[str, List[Attachment]]:
        """INCI text from a file named "INCI ..." in the card folder, or the first image found."""
        files = await self.drive.list_files(card.card_folder_id)
        inci_file = next((f for f in files if f.get("name", "").startswith("INCI")), None)
        if inci_file is None:
            inci_file = next(
                (f for f in files if f.get("mimeType", "").startswith("image/")), None
            )
        if inci_file is None:
            return "", []

        fetched = await self.drive.get_file(inci_file["id"])
        mime_type = fetched.get("mimeType") or inci_file.get("mimeType", "")
        if mime_type not in DOCUMENT_TYPES.values():
            return "", []
        document = UploadedDocument(inci_file.get("name", "INCI"), fetched["content"], mime_type)
        text = await self.files.extract_text(document)
        if text:
            return text, []
        if document.is_image or document.is_pdf:
            return "", [Attachment(document.content, document.mime_type)]
        return "", []


batch_service = BatchService()
