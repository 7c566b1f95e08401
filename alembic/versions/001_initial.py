"""Create meetings, recording_jobs and transcripts tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

- meetings: meetings synced from the calendar, with the tracking bot id
- recording_jobs: Recall.ai bots, unique per (owner_id, cleaned meeting_url)
- transcripts: normalized transcripts, unique per meeting_id

The two unique constraints are what make bot dedup and transcript storage
safe under concurrent requests and poll ticks. No foreign key constraints
(referential integrity is kept by MeetingRepository).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meeting_url", sa.Text(), nullable=True),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column(
            "status",
            sa.String(20),
            server_default=sa.text("'scheduled'"),
            nullable=False,
        ),
        sa.Column("bot_id", sa.String(200), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_meetings_owner_id", "meetings", ["owner_id"])
    op.create_index("ix_meetings_status", "meetings", ["status"])
    op.create_index("ix_meetings_bot_id", "meetings", ["bot_id"])

    # ── recording_jobs table ─────────────────────────────────────────────

    op.create_table(
        "recording_jobs",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("owner_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("meeting_url", sa.Text(), nullable=False),
        sa.Column("bot_name", sa.String(500), nullable=True),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "owner_id", "meeting_url", name="uq_recording_jobs_owner_url"
        ),
    )

    # ── transcripts table ────────────────────────────────────────────────

    op.create_table(
        "transcripts",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("meeting_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("bot_id", sa.String(200), nullable=True),
        sa.Column("content", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("speakers_data", sa.JSON(), nullable=True),
        sa.Column("words_data", sa.JSON(), nullable=True),
        sa.Column("duration", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("meeting_id", name="uq_transcripts_meeting"),
    )


def downgrade() -> None:
    op.drop_table("transcripts")
    op.drop_table("recording_jobs")
    op.drop_index("ix_meetings_bot_id", table_name="meetings")
    op.drop_index("ix_meetings_status", table_name="meetings")
    op.drop_index("ix_meetings_owner_id", table_name="meetings")
    op.drop_table("meetings")
