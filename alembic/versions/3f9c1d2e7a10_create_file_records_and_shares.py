"""create file records and shares

Revision ID: 3f9c1d2e7a10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3f9c1d2e7a10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "file_records",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("stored_name", sa.String(), nullable=False),
    sa.Column("original_name", sa.String(), nullable=False),
    sa.Column("blob_path", sa.String(), nullable=False),
    sa.Column("size_bytes", sa.BigInteger(), nullable=False),
    sa.Column("mime_type", sa.String(), nullable=False),
    sa.Column("owner_id", sa.String(), nullable=False),
    sa.Column("visibility", sa.String(), nullable=False),
    sa.Column("version", sa.Integer(), nullable=False),
    sa.Column("task_id", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("stored_name"),
    sa.UniqueConstraint("task_id", name="uq_file_records_task_id"),
  )
  op.create_index("idx_file_records_owner_id", "file_records", ["owner_id"], unique=False)
  op.create_index(
    "idx_file_records_visibility", "file_records", ["visibility"], unique=False
  )
  op.create_index(
    "idx_file_records_created_at", "file_records", ["created_at"], unique=False
  )

  op.create_table(
    "file_shares",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("file_id", sa.String(), nullable=False),
    sa.Column("principal_id", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(["file_id"], ["file_records.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint(
      "file_id", "principal_id", name="uq_file_shares_file_principal"
    ),
  )
  op.create_index(
    "idx_file_shares_principal_id", "file_shares", ["principal_id"], unique=False
  )


def downgrade() -> None:
  op.drop_index("idx_file_shares_principal_id", table_name="file_shares")
  op.drop_table("file_shares")
  op.drop_index("idx_file_records_created_at", table_name="file_records")
  op.drop_index("idx_file_records_visibility", table_name="file_records")
  op.drop_index("idx_file_records_owner_id", table_name="file_records")
  op.drop_table("file_records")
