"""dashboard-owned tables touched by scheduled tasks (sessions, invoices, quotes)

Revision ID: 0001_dashboard_tables
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql


# revision identifiers, used by Alembic.
revision = "0001_dashboard_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    dt6 = sa.DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("session_token", sa.String(length=255), nullable=False),
        sa.Column("expires", dt6, nullable=False),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        sa.UniqueConstraint("session_token", name="uq_sessions_session_token"),
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])
    op.create_index("ix_sessions_expires", "sessions", ["expires"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("deleted_at", dt6, nullable=True),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("quote_number", sa.String(length=64), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'DRAFT'")),
        sa.Column("valid_until", dt6, nullable=False),
        sa.Column("deleted_at", dt6, nullable=True),
        sa.Column("created_at", dt6, nullable=False),
        sa.Column("updated_at", dt6, nullable=False),
        sa.UniqueConstraint("quote_number", name="uq_quotes_quote_number"),
        mysql_charset="utf8mb4",
        mysql_collate="utf8mb4_unicode_ci",
    )
    op.create_index("ix_quotes_status", "quotes", ["status"])
    op.create_index("ix_quotes_valid_until", "quotes", ["valid_until"])


def downgrade() -> None:
    op.drop_index("ix_quotes_valid_until", table_name="quotes")
    op.drop_index("ix_quotes_status", table_name="quotes")
    op.drop_table("quotes")

    op.drop_index("ix_invoices_due_date", table_name="invoices")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_table("invoices")

    op.drop_index("ix_sessions_expires", table_name="sessions")
    op.drop_index("ix_sessions_user_id", table_name="sessions")
    op.drop_table("sessions")
