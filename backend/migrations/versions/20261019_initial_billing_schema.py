"""Initial billing schema: tenants, numbering, challans, bills, payments, sessions, imports

Revision ID: 20261019_initial_billing
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_billing"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        "vendors",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_name", sa.String(length=255), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("mobile_number", sa.String(length=32), nullable=True),
        sa.Column("gst_number", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_vendors_mobile_number", "vendors", ["mobile_number"], unique=True)
    op.create_index("ix_vendors_is_active", "vendors", ["is_active"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("business_name", sa.String(length=255), nullable=True),
        sa.Column("mobile_number", sa.String(length=32), nullable=False),
        sa.Column("gst_number", sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("created_by", "mobile_number", name="uq_customers_vendor_mobile"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_created_by", "customers", ["created_by"], unique=False)

    op.create_table(
        "gst_slabs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("slab_name", sa.String(length=64), nullable=False),
        sa.Column("rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("vendor_id", "slab_name", name="uq_gst_slabs_vendor_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_gst_slabs_vendor_id", "gst_slabs", ["vendor_id"], unique=False)

    op.create_table(
        "invoice_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("prefix", sa.String(length=10), nullable=False, server_default="INV"),
        sa.Column("start_count", sa.Integer(), nullable=False, server_default="1001"),
        sa.Column("current_count", sa.Integer(), nullable=False, server_default="1001"),
        sa.Column("invoice_template", sa.String(length=16), nullable=False, server_default="template1"),
        sa.Column("used_numbers", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoice_settings_vendor_id", "invoice_settings", ["vendor_id"], unique=True)

    op.create_table(
        "challans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("challan_number", sa.String(length=32), nullable=False),
        sa.Column("challan_date", sa.Date(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("gst_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_without_gst", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_with_gst", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="unpaid"),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("vendor_id", "challan_number", name="uq_challans_vendor_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("challans", schema=None) as batch_op:
        batch_op.create_index("ix_challans_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_challans_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_challans_status", ["status"], unique=False)
        batch_op.create_index("ix_challans_deleted_at", ["deleted_at"], unique=False)
        batch_op.create_index("ix_challans_vendor_date", ["vendor_id", "challan_date"], unique=False)
        batch_op.create_index("ix_challans_vendor_customer_status", ["vendor_id", "customer_id", "status"], unique=False)

    op.create_table(
        "challan_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("challan_id", sa.Integer(), sa.ForeignKey("challans.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("size", sa.String(length=64), nullable=True),
        sa.Column("qty", sa.Numeric(12, 2), nullable=False),
        sa.Column("price_per_unit", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("gst_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_with_gst", sa.Numeric(12, 2), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_challan_items_challan_id", "challan_items", ["challan_id"], unique=False)
    op.create_index("ix_challan_items_product_id", "challan_items", ["product_id"], unique=False)

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("bill_number", sa.String(length=64), nullable=False),
        sa.Column("invoice_prefix", sa.String(length=10), nullable=True),
        sa.Column("custom_invoice_prefix", sa.String(length=32), nullable=True),
        sa.Column("invoice_count", sa.Integer(), nullable=True),
        sa.Column("invoice_template", sa.String(length=16), nullable=False, server_default="template1"),
        sa.Column("bill_date", sa.Date(), nullable=False),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("gst_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("gst_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_without_gst", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_with_gst", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("pending_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("challan_ids", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("vendor_id", "bill_number", name="uq_bills_vendor_number"),
        sa.UniqueConstraint("vendor_id", "invoice_count", name="uq_bills_vendor_invoice_count"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("bills", schema=None) as batch_op:
        batch_op.create_index("ix_bills_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_bills_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_bills_invoice_count", ["invoice_count"], unique=False)
        batch_op.create_index("ix_bills_status", ["status"], unique=False)
        batch_op.create_index("ix_bills_deleted_at", ["deleted_at"], unique=False)
        batch_op.create_index("ix_bills_vendor_customer_status", ["vendor_id", "customer_id", "status"], unique=False)
        batch_op.create_index("ix_bills_vendor_date", ["vendor_id", "bill_date"], unique=False)

    op.create_table(
        "bill_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column("challan_id", sa.Integer(), sa.ForeignKey("challans.id"), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("qty", sa.Numeric(12, 2), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("total_with_gst", sa.Numeric(12, 2), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bill_items_bill_id", "bill_items", ["bill_id"], unique=False)
    op.create_index("ix_bill_items_challan_id", "bill_items", ["challan_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("payment_number", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=8), nullable=False),
        sa.Column("sub_type", sa.String(length=32), nullable=False, server_default="customer"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False, server_default="cash"),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=True),
        sa.Column("challan_id", sa.Integer(), sa.ForeignKey("challans.id"), nullable=True),
        sa.Column("total_outstanding", sa.Numeric(12, 2), nullable=True),
        sa.Column("outstanding_after_payment", sa.Numeric(12, 2), nullable=True),
        sa.Column("adjusted_invoices", sa.JSON(), nullable=True),
        sa.Column("is_opening_balance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("opening_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("financial_year_start", sa.Date(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("vendor_id", "payment_number", name="uq_payments_vendor_number"),
        sa.UniqueConstraint("vendor_id", "method", "financial_year_start", name="uq_payments_opening_balance"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_payments_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_payments_type", ["type"], unique=False)
        batch_op.create_index("ix_payments_sub_type", ["sub_type"], unique=False)
        batch_op.create_index("ix_payments_payment_date", ["payment_date"], unique=False)
        batch_op.create_index("ix_payments_status", ["status"], unique=False)
        batch_op.create_index("ix_payments_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_payments_challan_id", ["challan_id"], unique=False)
        batch_op.create_index("ix_payments_is_opening_balance", ["is_opening_balance"], unique=False)
        batch_op.create_index("ix_payments_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_payments_deleted_at", ["deleted_at"], unique=False)
        batch_op.create_index("ix_payments_vendor_customer_status", ["vendor_id", "customer_id", "status"], unique=False)
        batch_op.create_index("ix_payments_vendor_date", ["vendor_id", "payment_date"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("challan_id", sa.Integer(), sa.ForeignKey("challans.id"), nullable=True),
        sa.Column("challan_number", sa.String(length=32), nullable=True),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_transactions_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_transactions_type", ["type"], unique=False)
        batch_op.create_index("ix_transactions_challan_id", ["challan_id"], unique=False)
        batch_op.create_index("ix_transactions_bill_id", ["bill_id"], unique=False)
        batch_op.create_index("ix_transactions_payment_id", ["payment_id"], unique=False)
        batch_op.create_index(
            "ix_transactions_vendor_customer_date",
            ["vendor_id", "customer_id", "transaction_date"],
            unique=False,
        )
        batch_op.create_index("ix_transactions_challan_number", ["vendor_id", "challan_number"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)
        batch_op.create_index("ix_session_tokens_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_session_tokens_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_session_tokens_expires_at", ["expires_at"], unique=False)
        batch_op.create_index("ix_session_tokens_is_revoked", ["is_revoked"], unique=False)
        batch_op.create_index("ix_session_tokens_vendor_active", ["vendor_id", "is_revoked"], unique=False)

    op.create_table(
        "import_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="accepted"),
        sa.Column("source_file_name", sa.String(length=255), nullable=True),
        sa.Column("summary", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("import_jobs", schema=None) as batch_op:
        batch_op.create_index("ix_import_jobs_vendor_id", ["vendor_id"], unique=False)
        batch_op.create_index("ix_import_jobs_status", ["status"], unique=False)
        batch_op.create_index("ix_import_jobs_vendor_status", ["vendor_id", "status"], unique=False)


def downgrade():
    op.drop_table("import_jobs")
    op.drop_table("session_tokens")
    op.drop_table("transactions")
    op.drop_table("payments")
    op.drop_table("bill_items")
    op.drop_table("bills")
    op.drop_table("challan_items")
    op.drop_table("challans")
    op.drop_table("invoice_settings")
    op.drop_table("gst_slabs")
    op.drop_table("customers")
    op.drop_table("vendors")
