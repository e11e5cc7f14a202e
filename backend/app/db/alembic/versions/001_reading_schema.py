"""Reading companion schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates document, page, chunk and conversation_message tables plus the
pgvector extension used for chunk embeddings.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

from backend.app.config import get_settings

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Must match the dimension the ORM and embedders use
EMBEDDING_DIMENSIONS = get_settings().embedding_dimensions


def upgrade() -> None:
    """Create all tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "document",
        sa.Column("document_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("total_pages", sa.Integer(), nullable=True),
        sa.Column("processing_state", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("processing_detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("idx_document_owner", "document", ["owner_id"])

    op.create_table(
        "page",
        sa.Column("page_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("document.document_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("page_number", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.UniqueConstraint("document_id", "page_number", name="uq_page_document_number"),
    )
    op.create_index("idx_page_document", "page", ["document_id"])

    op.create_table(
        "chunk",
        sa.Column("chunk_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("document.document_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "page_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("page.page_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.UniqueConstraint("page_id", "chunk_index", name="uq_chunk_page_index"),
    )
    op.create_index("idx_chunk_document", "chunk", ["document_id"])
    op.create_index("idx_chunk_page", "chunk", ["page_id"])
    op.execute(
        "CREATE INDEX idx_chunk_embedding ON chunk "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    op.create_table(
        "conversation_message",
        sa.Column("message_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("document.document_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint(
            "conversation_id", "position", name="uq_message_conversation_position"
        ),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("conversation_message")
    op.execute("DROP INDEX IF EXISTS idx_chunk_embedding")
    op.drop_index("idx_chunk_page", table_name="chunk")
    op.drop_index("idx_chunk_document", table_name="chunk")
    op.drop_table("chunk")
    op.drop_index("idx_page_document", table_name="page")
    op.drop_table("page")
    op.drop_index("idx_document_owner", table_name="document")
    op.drop_table("document")
