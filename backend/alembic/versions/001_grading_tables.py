"""
001_grading_tables.py

Grading attempts and challenge progress

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the attempt log and progress tables."""

    # Append-only attempt log
    op.create_table(
        "grading_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("submission_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("content_version", sa.String(64), nullable=False),
        sa.Column(
            "status",
            sa.String(16),
            sa.CheckConstraint("status IN ('pass', 'fail', 'error')"),
            nullable=False,
        ),
        sa.Column(
            "score",
            sa.Float(),
            sa.CheckConstraint("score >= 0 AND score <= 100"),
            nullable=False,
        ),
        sa.Column(
            "termination_reason",
            sa.String(16),
            sa.CheckConstraint("termination_reason IN ('completed', 'timeout', 'fault')"),
            nullable=False,
        ),
        sa.Column("execution_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outcomes", sa.JSON(), nullable=False),
        sa.Column("runtime_logs", sa.JSON(), nullable=False),
        sa.Column("markup", sa.Text(), nullable=False, server_default=""),
        sa.Column("style", sa.Text(), nullable=False, server_default=""),
        sa.Column("script", sa.Text(), nullable=False, server_default=""),
        sa.Column("submitted_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index(
        "ix_grading_attempts_user_challenge",
        "grading_attempts",
        ["user_id", "challenge_id", "created_at"],
    )

    # One row per (user, challenge), guarded by an optimistic version
    op.create_table(
        "challenge_progress",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "status",
            sa.String(16),
            sa.CheckConstraint("status IN ('not_started', 'in_progress', 'completed')"),
            nullable=False,
        ),
        sa.Column("best_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "total_attempts",
            sa.Integer(),
            sa.CheckConstraint("total_attempts >= 0"),
            nullable=False,
            server_default="0",
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )


def downgrade() -> None:
    """Drop grading tables."""
    op.drop_table("challenge_progress")
    op.drop_index("ix_grading_attempts_user_challenge", table_name="grading_attempts")
    op.drop_table("grading_attempts")
