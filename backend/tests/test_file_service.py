"""
CosmoCard Backend — File Service Unit Tests
=============================================

What:  Tests for upload validation (type, size, count) and text extraction.
Why:   File validation is the boundary between user uploads and Drive/Gemini.
How:   In-memory UploadedDocument objects; PDFs come from the sample_pdf_bytes
       fixture and are read by the real pypdf.

Test Strategy:
    ✅ Extension or declared type accepted, case-insensitive
    ✅ Unsupported types rejected (photos accept images only)
    ✅ Size limits (empty, boundary, too large)
    ✅ File count limits per upload
    ✅ Text extraction for text and PDF, "" for images and unreadable PDFs
"""

from unittest.mock import patch

import pytest
from pypdf.errors import PdfReadError

from cosmocard.exceptions import ValidationError
from cosmocard.services.file_service import (
    DOCUMENT_TYPES,
    IMAGE_TYPES,
    FileService,
    UploadedDocument,
    extract_pdf_text,
)


def doc(filename: str, content: bytes = b"data", mime_type: str = "") -> UploadedDocument:
    return UploadedDocument(filename, content, mime_type)


class TestResolveMimeType:
    def setup_method(self):
        self.service = FileService()

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("label.jpg", "image/jpeg"),
            ("label.JPEG", "image/jpeg"),
            ("label.png", "image/png"),
            ("photo.HEIC", "image/heic"),
            ("label.pdf", "application/pdf"),
            ("inci.txt", "text/plain"),
        ],
    )
    def test_extension_resolves(self, filename, expected):
        assert self.service.resolve_mime_type(filename, "application/octet-stream", DOCUMENT_TYPES) == expected

    def test_declared_type_wins_when_allowed(self):
        assert self.service.resolve_mime_type("blob", "image/png; charset=binary", IMAGE_TYPES) == "image/png"

    def test_pdf_rejected_for_photos(self):
        with pytest.raises(ValidationError, match="unsupported type"):
            self.service.resolve_mime_type("scan.pdf", "application/pdf", IMAGE_TYPES)

    @pytest.mark.parametrize("filename", ["virus.exe", "archive.zip", "noextension"])
    def test_unknown_types_rejected(self, filename):
        with pytest.raises(ValidationError):
            self.service.resolve_mime_type(filename, None, DOCUMENT_TYPES)


class TestSizeAndCount:
    def setup_method(self):
        self.service = FileService(max_file_size=1024)

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(doc("label.jpg", b""))

    def test_size_boundary(self):
        self.service.validate_size(doc("label.jpg", b"x" * 1024))
        with pytest.raises(ValidationError, match="too large"):
            self.service.validate_size(doc("label.jpg", b"x" * 1025))

    def test_no_label_files(self):
        with pytest.raises(ValidationError, match="No files"):
            self.service.validate_label_files([])

    def test_inci_accepts_exactly_one_file(self):
        with pytest.raises(ValidationError, match="Too many files"):
            self.service.validate_inci_file([doc("a.txt"), doc("b.txt")])

        result = self.service.validate_inci_file([doc("inci.txt")])
        assert result.mime_type == "text/plain"

    def test_photos_limit(self):
        with patch("cosmocard.services.file_service.settings") as mock_settings:
            mock_settings.max_photo_files = 2
            with pytest.raises(ValidationError):
                self.service.validate_photos([doc(f"{i}.jpg") for i in range(3)])

    def test_photos_resolved(self):
        photos = self.service.validate_photos([doc("a.jpg"), doc("b.png")])
        assert [p.mime_type for p in photos] == ["image/jpeg", "image/png"]
        assert photos[0].is_image and photos[0].extension == "jpg"


class TestExtractText:
    def setup_method(self):
        self.service = FileService()

    @pytest.mark.asyncio
    async def test_plain_text(self):
        document = doc("inci.txt", "  Aqua, Glycerin 5%\n".encode("utf-8"), "text/plain")
        assert await self.service.extract_text(document) == "Aqua, Glycerin 5%"

    @pytest.mark.asyncio
    async def test_image_has_no_text(self):
        assert await self.service.extract_text(doc("label.jpg", b"\xff\xd8", "image/jpeg")) == ""

    @pytest.mark.asyncio
    async def test_pdf_text(self, sample_pdf_bytes):
        text = await self.service.extract_text(doc("label.pdf", sample_pdf_bytes, "application/pdf"))
        assert "Purpose: Moisturizing" in text

    def test_extract_pdf_text_reads_text_layer(self, sample_pdf_bytes):
        assert "Moisturizing" in extract_pdf_text(sample_pdf_bytes)

    @pytest.mark.asyncio
    async def test_unreadable_pdf(self):
        with patch(
            "cosmocard.services.file_service.extract_pdf_text", side_effect=PdfReadError("broken")
        ):
            text = await self.service.extract_text(doc("label.pdf", b"%PDF-1.4", "application/pdf"))
        assert text == ""
