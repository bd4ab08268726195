from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_dispatch_foundations"
down_revision = None
branch_labels = None
depends_on = None

def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]

def upgrade():
    op.create_table(
        "scheduled_orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("vendor_name", sa.String(length=255), nullable=True),
        sa.Column("vendor_address", sa.Text(), nullable=True),
        sa.Column("vendor_phone", sa.String(length=20), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=False),
        sa.Column("delivery_instructions", sa.Text(), nullable=True),
        sa.Column("contact_name", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=20), nullable=True),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("items", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("delivery_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("gratuity", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("internal_gratuity", sa.Numeric(10, 2), nullable=True),
        sa.Column("partner_gratuity", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="scheduled"),
        sa.Column("fulfillment_channel", sa.String(length=30), nullable=False, server_default="manual"),
        sa.Column("fulfillment_ref", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_scheduled_orders_status_scheduled_for", "scheduled_orders", ["status", "scheduled_for"])

    op.create_table(
        "order_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("scheduled_orders.id"), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_order_events_order_id", "order_events", ["order_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("scheduled_orders.id"), nullable=False),
        sa.Column("provider", sa.String(length=30), nullable=False, server_default="stripe"),
        sa.Column("provider_payment_id", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("refund_id", sa.String(length=255), nullable=True),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"])

    op.create_table(
        "doordash_deliveries",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("external_delivery_id", sa.String(length=64), nullable=False),
        sa.Column("provider_delivery_id", sa.String(length=120), nullable=True),
        sa.Column("scheduled_order_id", sa.String(), sa.ForeignKey("scheduled_orders.id"), nullable=True),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="pending"),
        sa.Column("pickup_address", sa.Text(), nullable=False),
        sa.Column("pickup_business_name", sa.String(length=255), nullable=True),
        sa.Column("pickup_phone_number", sa.String(length=20), nullable=True),
        sa.Column("dropoff_address", sa.Text(), nullable=False),
        sa.Column("dropoff_phone_number", sa.String(length=20), nullable=True),
        sa.Column("dropoff_contact_given_name", sa.String(length=120), nullable=True),
        sa.Column("dropoff_contact_family_name", sa.String(length=120), nullable=True),
        sa.Column("tip_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order_value_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fee_cents", sa.Integer(), nullable=True),
        sa.Column("dasher_name", sa.String(length=120), nullable=True),
        sa.Column("dasher_phone_number", sa.String(length=30), nullable=True),
        sa.Column("dasher_vehicle", sa.String(length=120), nullable=True),
        sa.Column("tracking_url", sa.Text(), nullable=True),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dropoff_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_dropoff_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("external_delivery_id", name="uq_doordash_deliveries_external_id"),
    )
    op.create_index("ix_doordash_deliveries_scheduled_order_id", "doordash_deliveries", ["scheduled_order_id"])

    op.create_table(
        "dispatch_attempts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("delivery_id", sa.String(), sa.ForeignKey("doordash_deliveries.id"), nullable=False),
        sa.Column("operation", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("request", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("response", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("error_code", sa.String(length=80), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_dispatch_attempts_delivery_id", "dispatch_attempts", ["delivery_id"])

def downgrade():
    op.drop_index("ix_dispatch_attempts_delivery_id", table_name="dispatch_attempts")
    op.drop_table("dispatch_attempts")
    op.drop_index("ix_doordash_deliveries_scheduled_order_id", table_name="doordash_deliveries")
    op.drop_table("doordash_deliveries")
    op.drop_index("ix_payments_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_order_events_order_id", table_name="order_events")
    op.drop_table("order_events")
    op.drop_index("ix_scheduled_orders_status_scheduled_for", table_name="scheduled_orders")
    op.drop_table("scheduled_orders")
