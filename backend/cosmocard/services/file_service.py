"""
CosmoCard Backend — Upload Validation and Text Extraction
===========================================================

What:  Validates uploaded label, INCI and photo files and extracts text
       from PDFs and plain-text documents.
Why:   Files are stored in Drive, not on local disk; this service only checks
       what is accepted and turns documents into text for the AI prompt.
How:   Extension + declared content type check, size check, count check;
       pypdf for PDF text extraction (run on the thread pool).

Accepted types:
    Labels: PDF, images, plain text
    INCI:   PDF, images, plain text
    Photos: images only
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pypdf import PdfReader
from pypdf.errors import PdfReadError
from starlette.concurrency import run_in_threadpool

from cosmocard.config import settings
from cosmocard.exceptions import ValidationError

logger = logging.getLogger(__name__)

IMAGE_TYPES: Dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".gif": "image/gif",
}

DOCUMENT_TYPES: Dict[str, str] = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    **IMAGE_TYPES,
}

PDF_MIME = "application/pdf"
TEXT_MIME = "text/plain"


@dataclass
class UploadedDocument:
    filename: str
    content: bytes
    mime_type: str

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower().lstrip(".")

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/")


class FileService:
    """
    Lifecycle of an uploaded document:
        1. Route reads the multipart parts into UploadedDocument objects
        2. validate_* checks count, size and type (ValidationError → 400)
        3. extract_text turns PDFs and text files into prompt text
        4. Card service uploads the bytes to Drive and sends images as attachments
    """

    def __init__(self, max_file_size: Optional[int] = None):
        self.max_file_size = max_file_size or settings.max_file_size

    def resolve_mime_type(self, filename: str, declared: Optional[str], allowed: Dict[str, str]) -> str:
        """
        Accept a file when either its extension or its declared type is allowed.

        Browsers often send application/octet-stream for HEIC photos, so the
        extension wins when the declared type is generic.
        """
        ext = Path(filename or "").suffix.lower()
        declared = (declared or "").split(";")[0].strip().lower()
        if declared and declared in allowed.values():
            return declared
        if ext in allowed:
            return allowed[ext]
        raise ValidationError(
            message=(
                f"File '{filename}' has an unsupported type. "
                f"Allowed: {', '.join(sorted(allowed))}"
            ),
            field="file",
            context={"extension": ext, "content_type": declared},
        )

    def validate_size(self, document: UploadedDocument) -> None:
        if not document.content:
            raise ValidationError(message=f"File '{document.filename}' is empty", field="file")
        if len(document.content) > self.max_file_size:
            max_mb = self.max_file_size / (1024 * 1024)
            raise ValidationError(
                message=f"File '{document.filename}' is too large. Maximum size is {max_mb:.0f}MB",
                field="file",
                context={"size": len(document.content), "max_size": self.max_file_size},
            )

    def _validate(
        self,
        documents: Sequence[UploadedDocument],
        allowed: Dict[str, str],
        field: str,
        min_count: int,
        max_count: int,
    ) -> List[UploadedDocument]:
        if len(documents) < min_count:
            raise ValidationError(message="No files were uploaded", field=field)
        if len(documents) > max_count:
            raise ValidationError(
                message=f"Too many files: {len(documents)} (maximum {max_count})",
                field=field,
            )
        validated = []
        for document in documents:
            self.validate_size(document)
            mime_type = self.resolve_mime_type(document.filename, document.mime_type, allowed)
            validated.append(UploadedDocument(document.filename, document.content, mime_type))
        return validated

    def validate_label_files(self, documents: Sequence[UploadedDocument]) -> List[UploadedDocument]:
        return self._validate(documents, DOCUMENT_TYPES, "labelFile", 1, settings.max_label_files)

    def validate_inci_file(self, documents: Sequence[UploadedDocument]) -> UploadedDocument:
        return self._validate(documents, DOCUMENT_TYPES, "inciFile", 1, 1)[0]

    def validate_photos(self, documents: Sequence[UploadedDocument]) -> List[UploadedDocument]:
        return self._validate(documents, IMAGE_TYPES, "photos", 1, settings.max_photo_files)

    async def extract_text(self, document: UploadedDocument) -> str:
        """
        Text content of a PDF or plain-text document; "" for images.

        Unreadable PDFs are logged and yield "", so a scanned label still
        reaches the model as an attachment.
        """
        if document.is_pdf:
            try:
                return await run_in_threadpool(extract_pdf_text, document.content)
            except (PdfReadError, ValueError) as e:
                logger.warning("PDF text extraction failed for '%s': %s", document.filename, e)
                return ""
        if document.is_text:
            return document.content.decode("utf-8", errors="replace").strip()
        return ""


def extract_pdf_text(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content))
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n".join(page for page in pages if page).strip()


file_service = FileService()
