"""Initial permit portal schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001_initial_permits"
down_revision = None
branch_labels = None
depends_on = None


permit_status = sa.Enum("Pending", "Approved", "Rejected", name="permit_status")


def upgrade() -> None:
    op.create_table(
        "permits",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("permit_id", sa.String(length=32), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("passport_number", sa.String(), nullable=False),
        sa.Column("nationality", sa.String(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("employer", sa.String(), nullable=True),
        sa.Column("job_title", sa.String(), nullable=True),
        sa.Column("permit_start_date", sa.Date(), nullable=True),
        sa.Column("permit_expiry_date", sa.Date(), nullable=True),
        sa.Column("application_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", permit_status, nullable=False, server_default="Pending"),
        sa.Column("image", sa.String(), nullable=True),
        sa.Column("image_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_permits_permit_id", "permits", ["permit_id"], unique=True)
    op.create_index("ix_permits_passport_number", "permits", ["passport_number"])
    op.create_index("ix_permits_created_at", "permits", ["created_at"])

    op.create_table(
        "blob_files",
        sa.Column("id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("filename", sa.String(), nullable=False),
        sa.Column("content_type", sa.String(), nullable=False),
        sa.Column("length", sa.Integer(), nullable=False),
        sa.Column("chunk_size", sa.Integer(), nullable=False),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "blob_chunks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("file_id", sa.String(length=32), sa.ForeignKey("blob_files.id", ondelete="CASCADE"), nullable=False),
        sa.Column("n", sa.Integer(), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.UniqueConstraint("file_id", "n", name="uq_blob_chunks_file_n"),
    )
    op.create_index("ix_blob_chunks_file_id", "blob_chunks", ["file_id"])


def downgrade() -> None:
    op.drop_index("ix_blob_chunks_file_id", table_name="blob_chunks")
    op.drop_table("blob_chunks")
    op.drop_table("blob_files")
    op.drop_index("ix_permits_created_at", table_name="permits")
    op.drop_index("ix_permits_passport_number", table_name="permits")
    op.drop_index("ix_permits_permit_id", table_name="permits")
    op.drop_table("permits")
    permit_status.drop(op.get_bind(), checkfirst=True)
