"""
CosmoCard Backend — Test Configuration (conftest.py)
======================================================

What:  Shared fixtures: environment, SQLite registry, in-memory Drive/Sheets/AI fakes.
How:   The fakes subclass the real collaborators and replace only the calls
       that would reach Google, so the range/field helpers still run.

Fixture Hierarchy:
    Function-scoped:
    ├── session_factory / db_session: fresh SQLite registry per test (aiosqlite)
    ├── user: a registered web form user
    ├── fake_drive / fake_sheets / fake_llm: in-memory collaborators
    ├── card_service: CardService wired to the fakes
    └── test_client: HTTPX AsyncClient with the fakes and registry overridden
"""

import os

# Must run before any cosmocard import: settings and the retry decorator read them at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENVIRONMENT"] = "development"
os.environ["RETRY_MAX_ATTEMPTS"] = "1"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["WEBHOOK_SECRET"] = ""
os.environ["GOOGLE_SHEETS_ID"] = ""
os.environ["RATE_LIMIT_REQUESTS"] = "1000"

import itertools
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cosmocard.database import Base
from cosmocard.exceptions import UpstreamError
from cosmocard.models.card import Card, CardFeedback  # noqa: F401
from cosmocard.models.user import User
from cosmocard.services import sheet_layout as layout
from cosmocard.services.card_service import CardService
from cosmocard.services.drive_service import DriveService
from cosmocard.services.file_service import FileService
from cosmocard.services.llm_base import (
    AIUnavailable,
    Attachment,
    InciAnalysis,
    LabelAnalysis,
    LLMService,
)
from cosmocard.services.sheets_service import SheetsService
from cosmocard.services.user_service import UserService


# ══════════════════════════════════════════════════════════════════════════
# In-memory collaborators
# ══════════════════════════════════════════════════════════════════════════


class FakeDrive(DriveService):
    """Drive folders and files kept in a dict; `fail_on` names methods that raise."""

    def __init__(self):
        super().__init__(clients=MagicMock())
        self.items: Dict[str, Dict[str, Any]] = {}
        self.fail_on: set = set()
        self._ids = itertools.count(1)

    def _check(self, action: str) -> None:
        if action in self.fail_on:
            raise UpstreamError(service="drive", message=f"Google Drive {action} failed")

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    async def create_folder(self, name: str, parent_id: str) -> str:
        self._check("create_folder")
        folder_id = self._new_id("folder")
        self.items[folder_id] = {"name": name, "parent": parent_id, "mimeType": "folder"}
        return folder_id

    async def rename_folder(self, folder_id: str, new_name: str) -> None:
        self._check("rename_folder")
        self.items[folder_id]["name"] = new_name

    async def find_folder_by_name(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        parent = parent_id or "root"
        for item_id, item in self.items.items():
            if item["name"] == name and item["parent"] == parent and item["mimeType"] == "folder":
                return item_id
        return None

    async def ensure_user_folder(self, user_id: str) -> str:
        existing = await self.find_folder_by_name(user_id)
        if existing:
            return existing
        return await self.create_folder(user_id, "root")

    async def upload_file(self, name: str, content: bytes, mime_type: str, parent_id: str) -> str:
        self._check("upload_file")
        file_id = self._new_id("file")
        self.items[file_id] = {
            "name": name,
            "parent": parent_id,
            "mimeType": mime_type,
            "content": content,
        }
        return file_id

    async def list_files(self, parent_id: str) -> List[Dict[str, str]]:
        return [
            {"id": item_id, "name": item["name"], "mimeType": item["mimeType"]}
            for item_id, item in self.items.items()
            if item["parent"] == parent_id
        ]

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        item = self.items[file_id]
        return {"content": item.get("content", b""), "mimeType": item["mimeType"]}

    async def delete_file(self, file_id: str) -> None:
        # Deleting a folder removes its contents, as in Drive
        for child_id in [i for i, item in self.items.items() if item["parent"] == file_id]:
            await self.delete_file(child_id)
        self.items.pop(file_id, None)

    def children(self, parent_id: str) -> List[Dict[str, Any]]:
        return [item for item in self.items.values() if item["parent"] == parent_id]


class FakeSheets(SheetsService):
    """Card rows in a list with the header at row 1; range helpers are the real ones."""

    def __init__(self):
        super().__init__(clients=MagicMock())
        self.rows: List[List[str]] = [list(layout.CARD_HEADERS)]
        self.user_rows: List[List[str]] = []
        self.fail_on: set = set()

    def _check(self, action: str) -> None:
        if action in self.fail_on:
            raise UpstreamError(service="sheets", message=f"Google Sheets {action} failed")

    async def append_card_row(self, values) -> int:
        self._check("append_card_row")
        self.rows.append(layout.to_row(values))
        return len(self.rows)

    async def get_rows(self, sheet_name: Optional[str] = None, width: Optional[int] = None):
        return [list(row) for row in self.rows]

    async def update_fields(self, row_number: int, first_field: str, last_field: str, values) -> None:
        self._check("update_fields")
        fields = layout.fields_between(first_field, last_field)
        row = self.rows[row_number - 1]
        row.extend([""] * (len(layout.CARD_FIELDS) - len(row)))
        start = layout.CARD_FIELDS.index(first_field)
        for offset, value in enumerate(layout.to_row(values, fields)):
            row[start + offset] = value

    async def clear_row(self, row_number: int) -> None:
        self.rows[row_number - 1] = [""] * len(layout.CARD_FIELDS)

    async def append_user_row(self, values) -> int:
        self.user_rows.append(layout.to_row(values, layout.USER_FIELDS))
        return len(self.user_rows) + 1

    def row(self, row_number: int) -> Dict[str, str]:
        return layout.from_row(self.rows[row_number - 1])


class FakeLLM(LLMService):
    """Scripted analysis results; set `label_result` / `inci_result` per test."""

    def __init__(self):
        self.label_result: Any = LabelAnalysis(
            label_info="Крем для лица",
            suggested_purpose="",
            suggested_application="",
        )
        self.inci_result: Any = InciAnalysis(
            active_ingredients_ru="Глицерин",
            active_ingredients_en="Glycerin",
            booklet_composition_ru="Вода, Глицерин",
            booklet_composition_en="Water, Glycerin",
            full_composition_ru="Вода, Глицерин 5%",
            full_composition_en="Aqua, Glycerin 5%",
        )
        self.calls: List[Dict[str, Any]] = []

    async def analyze_label(
        self, product_name: str, label_text: str, attachments: Sequence[Attachment] = ()
    ):
        self.calls.append(
            {"kind": "label", "text": label_text, "attachments": list(attachments)}
        )
        return self.label_result

    async def analyze_inci(
        self,
        product_name: str,
        purpose: str,
        inci_text: str,
        attachments: Sequence[Attachment] = (),
        keep_percentages: bool = False,
    ):
        self.calls.append(
            {
                "kind": "inci",
                "text": inci_text,
                "attachments": list(attachments),
                "keep_percentages": keep_percentages,
            }
        )
        return self.inci_result

    async def health_check(self) -> bool:
        return not isinstance(self.inci_result, AIUnavailable)


# ══════════════════════════════════════════════════════════════════════════
# Registry
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session):
    user = User(
        user_id="U2024_01_15_WF-0001",
        email="anna@example.com",
        display_name="Anna",
    )
    db_session.add(user)
    await db_session.flush()
    return user


# ══════════════════════════════════════════════════════════════════════════
# Collaborators and services
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def fake_sheets():
    return FakeSheets()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_fetcher():
    fetcher = MagicMock()
    return fetcher


@pytest.fixture
def card_service(fake_drive, fake_sheets, fake_llm, fake_fetcher):
    return CardService(
        drive=fake_drive,
        sheets=fake_sheets,
        llm=fake_llm,
        files=FileService(),
        users=UserService(sheets=fake_sheets),
        fetcher=fake_fetcher,
    )


@pytest.fixture
def sample_image_bytes():
    """Smallest JPEG that passes type checks; not a decodable photo."""
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


def make_pdf(text: str) -> bytes:
    """One-page PDF with a Helvetica text layer; text must be ASCII without parentheses."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("ascii")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        xref_at,
    )
    return bytes(out)


@pytest.fixture
def sample_pdf_bytes():
    return make_pdf("Purpose: Moisturizing")


# ══════════════════════════════════════════════════════════════════════════
# HTTP client
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def test_client(session_factory, card_service, fake_sheets):
    """
    AsyncClient over the real app with the registry and collaborators replaced.

    Sessions commit per request like get_db_session does, so state carries
    across calls within one test.
    """
    from cosmocard.database import get_db_session
    from cosmocard.dependencies import get_auth_service, get_card_service
    from cosmocard.main import app
    from cosmocard.services.auth_service import AuthService
    from cosmocard.services.code_store import ExpiringCodeStore

    mailer = MagicMock()

    async def send_verification_code(email, code, name=""):
        return False

    mailer.send_verification_code = send_verification_code
    auth = AuthService(
        code_store=ExpiringCodeStore(600),
        mailer=mailer,
        users=UserService(sheets=fake_sheets),
    )

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_card_service] = lambda: card_service
    app.dependency_overrides[get_auth_service] = lambda: auth

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
