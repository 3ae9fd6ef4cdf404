"""Create registry tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates `users`, `cards` and `card_feedback`.
How:   Text columns default to '' so the sheet export never sees NULL.

Rollback: downgrade() drops all three tables.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMPTY = sa.text("''")


def _text(name: str) -> sa.Column:
    return sa.Column(name, sa.Text(), nullable=False, server_default=EMPTY)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("telegram_chat_id", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=False, server_default=EMPTY),
        sa.Column("channel_code", sa.String(8), nullable=False, server_default=sa.text("'WF'")),
        sa.Column(
            "channel_name", sa.String(64), nullable=False, server_default=sa.text("'Web Form'")
        ),
        sa.Column("language", sa.String(8), nullable=False, server_default=sa.text("'ru'")),
        sa.Column("role", sa.String(32), nullable=False, server_default=sa.text("'user'")),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'active'")),
        sa.Column("consent", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deletion_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("login_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_login_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("user_id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("telegram_chat_id"),
    )

    op.create_table(
        "cards",
        sa.Column("card_id", sa.String(96), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        _text("purpose"),
        _text("application"),
        sa.Column("stage", sa.String(32), nullable=False, server_default=sa.text("'created'")),
        sa.Column("ai_status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("user_folder_id", sa.String(128), nullable=True),
        sa.Column("card_folder_id", sa.String(128), nullable=True),
        sa.Column("photos_folder_id", sa.String(128), nullable=True),
        sa.Column("sheet_row", sa.Integer(), nullable=True),
        _text("label_link"),
        _text("label_info"),
        _text("inci_text"),
        _text("inci_doc_link"),
        _text("active_ingredients_ru"),
        _text("active_ingredients_en"),
        _text("booklet_composition_ru"),
        _text("booklet_composition_en"),
        _text("full_composition_ru"),
        _text("full_composition_en"),
        sa.Column("tnved_code", sa.String(32), nullable=False, server_default=EMPTY),
        _text("tnved_argument"),
        sa.Column("category_code", sa.String(32), nullable=False, server_default=EMPTY),
        sa.Column("category", sa.String(255), nullable=False, server_default=EMPTY),
        _text("category_argument"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("card_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"]),
        # A concurrent create that computed the same sequence fails here
        sa.UniqueConstraint("user_id", "sequence", name="uq_cards_user_sequence"),
    )
    op.create_index("idx_cards_user_id", "cards", ["user_id"])

    op.create_table(
        "card_feedback",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("card_id", sa.String(96), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("result_type", sa.String(64), nullable=False, server_default=EMPTY),
        _text("feedback"),
        _text("corrections"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["card_id"], ["cards.card_id"]),
    )
    op.create_index("ix_card_feedback_card_id", "card_feedback", ["card_id"])


def downgrade() -> None:
    op.drop_index("ix_card_feedback_card_id", table_name="card_feedback")
    op.drop_table("card_feedback")
    op.drop_index("idx_cards_user_id", table_name="cards")
    op.drop_table("cards")
    op.drop_table("users")
