"""Document tree storage for the SQL store backend."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241101_01_document_nodes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "document_nodes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("path", sa.String(length=512), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_document_nodes_path", "document_nodes", ["path"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_document_nodes_path", table_name="document_nodes")
    op.drop_table("document_nodes")
