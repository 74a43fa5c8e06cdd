"""Fee ledger tables

Revision ID: 001_fee_ledger
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_fee_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Document sequences table
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prefix", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_document_sequences"),
        sa.UniqueConstraint("prefix", "year", name="uq_document_sequences_prefix_year"),
    )

    # Audit logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("record_type", sa.String(100), nullable=False),
        sa.Column("record_id", sa.BigInteger(), nullable=False),
        sa.Column("record_label", sa.String(200), nullable=True),
        sa.Column("before", postgresql.JSONB(), nullable=True),
        sa.Column("after", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_record", "audit_logs", ["record_type", "record_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Collaborator mirrors: students and terms
    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("admission_number", sa.String(50), nullable=True),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("class_name", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_students"),
    )
    op.create_index(
        "ix_students_admission_number", "students", ["admission_number"], unique=True
    )
    op.create_index("ix_students_full_name", "students", ["full_name"])
    op.create_index("ix_students_status", "students", ["status"])

    op.create_table(
        "terms",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("term_number", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Draft"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_terms"),
        sa.UniqueConstraint("year", "term_number", name="uq_term_year_number"),
    )
    op.create_index("ix_terms_year", "terms", ["year"])
    op.create_index("ix_terms_status", "terms", ["status"])

    # Fee catalog
    op.create_table(
        "fee_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("is_compulsory", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("allow_installments", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("installments", sa.JSON(), nullable=False, server_default="[]"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_fee_items"),
    )
    op.create_index(
        "ix_fee_items_name_lower", "fee_items", [sa.text("lower(name)")], unique=True
    )

    # Invoices table
    op.create_table(
        "invoices",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="unpaid"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_invoices_student_id_students"
        ),
        sa.ForeignKeyConstraint(["term_id"], ["terms.id"], name="fk_invoices_term_id_terms"),
        sa.CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= total_amount",
            name="ck_invoices_amount_paid_bounds",
        ),
        sa.CheckConstraint("total_amount > 0", name="ck_invoices_total_amount_positive"),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_student_id", "invoices", ["student_id"])
    op.create_index("ix_invoices_term_id", "invoices", ["term_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"])

    # Invoice line items table
    op.create_table(
        "invoice_line_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("invoice_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_item_id", sa.BigInteger(), nullable=True),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_invoice_line_items"),
        sa.ForeignKeyConstraint(
            ["invoice_id"],
            ["invoices.id"],
            name="fk_invoice_line_items_invoice_id_invoices",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["fee_item_id"],
            ["fee_items.id"],
            name="fk_invoice_line_items_fee_item_id_fee_items",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])
    op.create_index("ix_invoice_line_items_fee_item_id", "invoice_line_items", ["fee_item_id"])

    # Payments table
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_number", sa.String(50), nullable=False),
        sa.Column("invoice_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False, server_default="payment"),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reverses_payment_id", sa.BigInteger(), nullable=True),
        sa.Column("recorded_by_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.ForeignKeyConstraint(
            ["invoice_id"], ["invoices.id"], name="fk_payments_invoice_id_invoices"
        ),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_payments_student_id_students"
        ),
        sa.ForeignKeyConstraint(
            ["reverses_payment_id"],
            ["payments.id"],
            name="fk_payments_reverses_payment_id_payments",
        ),
        sa.UniqueConstraint("reverses_payment_id", name="uq_payments_reverses_payment_id"),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_payment_number", "payments", ["payment_number"], unique=True)
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])
    op.create_index("ix_payments_student_id", "payments", ["student_id"])
    op.create_index("ix_payments_kind", "payments", ["kind"])
    op.create_index("ix_payments_recorded_at", "payments", ["recorded_at"])


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("invoice_line_items")
    op.drop_table("invoices")
    op.drop_index("ix_fee_items_name_lower", table_name="fee_items")
    op.drop_table("fee_items")
    op.drop_table("terms")
    op.drop_table("students")
    op.drop_table("audit_logs")
    op.drop_table("document_sequences")
