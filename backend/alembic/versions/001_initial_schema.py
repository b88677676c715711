"""create mail_logs and email_records

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-02-12
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "mail_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("log_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hostname", sa.String(255), nullable=True),
        sa.Column("service", sa.String(100), nullable=True),
        sa.Column("process_id", sa.Integer(), nullable=True),
        sa.Column("transaction_id", sa.String(100), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("line_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("line_hash", name="uq_mail_logs_line_hash"),
    )
    op.create_index("ix_mail_logs_log_date", "mail_logs", ["log_date"])
    op.create_index("ix_mail_logs_service", "mail_logs", ["service"])
    op.create_index("ix_mail_logs_transaction_id", "mail_logs", ["transaction_id"])

    op.create_table(
        "email_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(100), nullable=False),
        sa.Column("log_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sender", sa.String(255), nullable=True),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("relay", sa.String(255), nullable=True),
        sa.Column("delay", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("dsn_code", sa.String(20), nullable=True),
        sa.Column("response_text", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("transaction_id", name="uq_email_records_transaction_id"),
    )
    op.create_index("ix_email_records_log_date", "email_records", ["log_date"])
    op.create_index("ix_email_records_sender", "email_records", ["sender"])
    op.create_index("ix_email_records_recipient", "email_records", ["recipient"])
    op.create_index("ix_email_records_status", "email_records", ["status"])


def downgrade() -> None:
    op.drop_table("email_records")
    op.drop_table("mail_logs")
