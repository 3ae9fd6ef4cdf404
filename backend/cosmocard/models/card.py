"""
CosmoCard Backend — Card Models
=================================

What:  ORM models for the `cards` and `card_feedback` tables.
Why:   The registry is the authoritative copy of a card: lookups are indexed
       by card_id, and the stage column decides which step may run next.
       The spreadsheet row is written from these fields at fixed positions.

Stage machine:
    created → info_filled → label_processed → inci_processed → photos_uploaded

    Stages are ordered by rank and only ever move forward. Label and info
    may run in either order after create; the INCI step needs a processed
    label, photos need a processed INCI.

Table Design:
    - card_id: CARD-{user_id}-C{sequence:04d}, primary key
    - (user_id, sequence) unique: a concurrent create that computed the same
      sequence fails on insert and surfaces as DuplicateCardError
    - ai_status: pending → completed | unavailable (AI fields left blank)
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from cosmocard.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CardStage(str, enum.Enum):
    CREATED = "created"
    INFO_FILLED = "info_filled"
    LABEL_PROCESSED = "label_processed"
    INCI_PROCESSED = "inci_processed"
    PHOTOS_UPLOADED = "photos_uploaded"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def at_least(self, other: "CardStage") -> bool:
        return self.rank >= other.rank

    def advance_to(self, target: "CardStage") -> "CardStage":
        """The later of the two stages; a card never moves backwards."""
        return target if target.rank > self.rank else self


_STAGE_ORDER = [
    CardStage.CREATED,
    CardStage.INFO_FILLED,
    CardStage.LABEL_PROCESSED,
    CardStage.INCI_PROCESSED,
    CardStage.PHOTOS_UPLOADED,
]


class AIStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    UNAVAILABLE = "unavailable"


class Card(Base):
    """One cosmetic product submission, mutated in place across the stages."""

    __tablename__ = "cards"

    card_id: Mapped[str] = mapped_column(String(96), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.user_id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False, default="")
    application: Mapped[str] = mapped_column(Text, nullable=False, default="")

    stage: Mapped[str] = mapped_column(
        String(32), nullable=False, default=CardStage.CREATED.value
    )
    ai_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AIStatus.PENDING.value
    )

    # ── Drive / Sheets placement ──────────────────────────────────────────
    user_folder_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    card_folder_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    photos_folder_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sheet_row: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # ── Label (E:F) ───────────────────────────────────────────────────────
    label_link: Mapped[str] = mapped_column(Text, nullable=False, default="")
    label_info: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # ── INCI (I:J) and AI-derived compositions (K:P) ──────────────────────
    inci_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    inci_doc_link: Mapped[str] = mapped_column(Text, nullable=False, default="")
    active_ingredients_ru: Mapped[str] = mapped_column(Text, nullable=False, default="")
    active_ingredients_en: Mapped[str] = mapped_column(Text, nullable=False, default="")
    booklet_composition_ru: Mapped[str] = mapped_column(Text, nullable=False, default="")
    booklet_composition_en: Mapped[str] = mapped_column(Text, nullable=False, default="")
    full_composition_ru: Mapped[str] = mapped_column(Text, nullable=False, default="")
    full_composition_en: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # ── Classification (Q:U), filled by operators in the sheet ────────────
    tnved_code: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    tnved_argument: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category_code: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    category_argument: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_cards_user_sequence"),
        Index("idx_cards_user_id", "user_id"),
    )

    @property
    def current_stage(self) -> CardStage:
        return CardStage(self.stage)

    def advance(self, target: CardStage) -> None:
        self.stage = self.current_stage.advance_to(target).value

    @property
    def folder_name(self) -> str:
        return f"{self.card_id} {self.product_name}"

    def __repr__(self) -> str:
        return f"<Card(card_id='{self.card_id}', stage='{self.stage}')>"


class CardFeedback(Base):
    """User feedback on AI results for a card."""

    __tablename__ = "card_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column(
        String(96), ForeignKey("cards.card_id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    result_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    corrections: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
