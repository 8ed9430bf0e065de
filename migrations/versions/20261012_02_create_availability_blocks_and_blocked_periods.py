"""create availability blocks and blocked periods

Revision ID: 20261012_02
Revises: 20261012_01
Create Date: 2026-10-12 10:20:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261012_02"
down_revision: Union[str, None] = "20261012_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "availability_blocks",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("therapist_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_minute", sa.SmallInteger(), nullable=False),
        sa.Column("end_minute", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["therapist_id"], ["therapist_profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_blocks_day_of_week"),
        sa.CheckConstraint(
            "start_minute >= 0 AND start_minute < end_minute AND end_minute <= 1440",
            name="ck_availability_blocks_interval",
        ),
    )
    op.create_index("ix_availability_blocks_id", "availability_blocks", ["id"], unique=False)
    op.create_index(
        "ix_availability_blocks_therapist_day",
        "availability_blocks",
        ["therapist_id", "day_of_week"],
        unique=False,
    )

    op.create_table(
        "blocked_periods",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("therapist_id", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["therapist_id"], ["therapist_profiles.id"], ondelete="CASCADE"),
        sa.CheckConstraint("start_at < end_at", name="ck_blocked_periods_interval"),
    )
    op.create_index("ix_blocked_periods_id", "blocked_periods", ["id"], unique=False)
    op.create_index("ix_blocked_periods_therapist_id", "blocked_periods", ["therapist_id"], unique=False)
    op.create_index("ix_blocked_periods_start_at", "blocked_periods", ["start_at"], unique=False)
    op.create_index("ix_blocked_periods_end_at", "blocked_periods", ["end_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_blocked_periods_end_at", table_name="blocked_periods")
    op.drop_index("ix_blocked_periods_start_at", table_name="blocked_periods")
    op.drop_index("ix_blocked_periods_therapist_id", table_name="blocked_periods")
    op.drop_index("ix_blocked_periods_id", table_name="blocked_periods")
    op.drop_table("blocked_periods")
    op.drop_index("ix_availability_blocks_therapist_day", table_name="availability_blocks")
    op.drop_index("ix_availability_blocks_id", table_name="availability_blocks")
    op.drop_table("availability_blocks")
