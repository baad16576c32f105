from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261017_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    video_status_enum = sa.Enum("processing", "ready", "error", "active", name="videostatus")
    sync_event_kind_enum = sa.Enum("created", "removed", name="synceventkind")
    sync_status_enum = sa.Enum("running", "succeeded", "failed", "timed_out", name="syncstatus")

    op.create_table(
        "video_assets",
        sa.Column("key", sa.String(length=1024), primary_key=True),
        sa.Column("bucket", sa.String(length=255), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("content_type", sa.String(length=255), nullable=True),
        sa.Column("last_modified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_s", sa.Float(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=2048), nullable=True),
        sa.Column("streaming_url", sa.String(length=2048), nullable=True),
        sa.Column("status", video_status_enum, nullable=False, server_default="processing"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_video_assets_status_upload_date", "video_assets", ["status", "upload_date"])

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(length=1024), nullable=False),
        sa.Column("event_kind", sync_event_kind_enum, nullable=False),
        sa.Column("status", sync_status_enum, nullable=False, server_default="running"),
        sa.Column("instance_id", sa.String(length=64), nullable=True),
        sa.Column("public_address", sa.String(length=255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_sync_runs_key", "sync_runs", ["key"])


def downgrade() -> None:
    op.drop_index("ix_sync_runs_key", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_video_assets_status_upload_date", table_name="video_assets")
    op.drop_table("video_assets")
    sa.Enum(name="syncstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="synceventkind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="videostatus").drop(op.get_bind(), checkfirst=True)
