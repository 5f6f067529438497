"""Create catalog, purchase, download token and webhook event tables

Revision ID: 001_purchase_lifecycle
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_purchase_lifecycle"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "downloadable_pdfs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_premium", sa.Boolean(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("stripe_price_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_link_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_link_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_downloadable_pdfs_stripe_payment_link_id", "downloadable_pdfs", ["stripe_payment_link_id"])

    op.create_table(
        "stripe_customers",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
        sa.UniqueConstraint("stripe_customer_id"),
    )

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("pdf_id", sa.String(64), nullable=False),
        sa.Column("stripe_checkout_session_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("purchased_at", sa.DateTime(), nullable=True),
        sa.Column("email_sent_at", sa.DateTime(), nullable=True),
        sa.Column("email_resend_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_email_resent_at", sa.DateTime(), nullable=True),
        sa.Column("fulfillment_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["pdf_id"], ["downloadable_pdfs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_customer_email", "purchases", ["customer_email"])
    op.create_index("ix_purchases_pdf_id", "purchases", ["pdf_id"])
    op.create_index("ix_purchases_stripe_checkout_session_id", "purchases", ["stripe_checkout_session_id"], unique=True)
    op.create_index("ix_purchases_stripe_payment_intent_id", "purchases", ["stripe_payment_intent_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    # At most one completed purchase per user and PDF
    op.create_index(
        "uq_purchases_completed_user_pdf",
        "purchases",
        ["user_id", "pdf_id"],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
        sqlite_where=sa.text("status = 'completed'"),
    )

    op.create_table(
        "download_tokens",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("purchase_id", sa.String(36), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("max_downloads", sa.Integer(), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_download_tokens_purchase_id", "download_tokens", ["purchase_id"])
    op.create_index("ix_download_tokens_token", "download_tokens", ["token"], unique=True)
    op.create_index("ix_download_tokens_expires_at", "download_tokens", ["expires_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("stripe_event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_event_id"),
    )
    op.create_index("ix_webhook_events_status_created", "webhook_events", ["status", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_status_created", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("download_tokens")
    op.drop_index("uq_purchases_completed_user_pdf", table_name="purchases")
    op.drop_table("purchases")
    op.drop_table("stripe_customers")
    op.drop_table("downloadable_pdfs")
