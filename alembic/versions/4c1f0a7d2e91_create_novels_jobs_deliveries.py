"""create novels, epub_jobs, kindle_deliveries

Revision ID: 4c1f0a7d2e91
Revises:
Create Date: 2026-10-18 10:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4c1f0a7d2e91"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "novels",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=True),
        sa.Column("author", sa.String(length=256), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("source", "source_id", name="uq_novels_source_source_id"),
    )

    op.create_table(
        "epub_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("novel_id", sa.String(length=36), sa.ForeignKey("novels.id"), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("public_url", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_epub_jobs_novel_id", "epub_jobs", ["novel_id"])
    op.create_index("ix_epub_jobs_user_id", "epub_jobs", ["user_id"])
    op.create_index("ix_epub_jobs_status", "epub_jobs", ["status"])
    op.create_index("ix_epub_jobs_completed_at", "epub_jobs", ["completed_at"])

    op.create_table(
        "kindle_deliveries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("epub_jobs.id"), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_kindle_deliveries_job_id", "kindle_deliveries", ["job_id"])
    op.create_index("ix_kindle_deliveries_user_id", "kindle_deliveries", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_kindle_deliveries_user_id", table_name="kindle_deliveries")
    op.drop_index("ix_kindle_deliveries_job_id", table_name="kindle_deliveries")
    op.drop_table("kindle_deliveries")
    op.drop_index("ix_epub_jobs_completed_at", table_name="epub_jobs")
    op.drop_index("ix_epub_jobs_status", table_name="epub_jobs")
    op.drop_index("ix_epub_jobs_user_id", table_name="epub_jobs")
    op.drop_index("ix_epub_jobs_novel_id", table_name="epub_jobs")
    op.drop_table("epub_jobs")
    op.drop_table("novels")
