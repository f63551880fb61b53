"""create board tables

Revision ID: 3f1c9a7e2b40
Revises:
Create Date: 2026-10-16 09:12:41.228907

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7e2b40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    # Stamped by the application, not the database; see TimestampMixin
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "boards",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("pair_code", sa.String(6), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("time_mode", sa.String(8), nullable=False, server_default="AUTO"),
        sa.Column("override_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("zoom_level", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("current_page", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_boards_pair_code", "boards", ["pair_code"], unique=True)
    op.create_index("ix_boards_time_mode", "boards", ["time_mode"])

    op.create_table(
        "horses",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "board_id",
            sa.String(32),
            sa.ForeignKey("boards.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("note", sa.String(200), nullable=True),
        sa.Column("note_expiry", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "feeds",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "board_id",
            sa.String(32),
            sa.ForeignKey("boards.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False, server_default="scoop"),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_level", sa.Float(), nullable=False, server_default="0"),
        sa.Column("low_stock_threshold", sa.Float(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "diet_entries",
        sa.Column(
            "horse_id",
            sa.String(32),
            sa.ForeignKey("horses.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
        sa.Column(
            "feed_id",
            sa.String(32),
            sa.ForeignKey("feeds.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
        sa.Column("am_amount", sa.Float(), nullable=True),
        sa.Column("pm_amount", sa.Float(), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("diet_entries")
    op.drop_table("feeds")
    op.drop_table("horses")
    op.drop_index("ix_boards_time_mode", table_name="boards")
    op.drop_index("ix_boards_pair_code", table_name="boards")
    op.drop_table("boards")
