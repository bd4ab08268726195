from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class ScheduledOrder(TimestampMixin, Base):
    __tablename__ = "scheduled_orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ord"))
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)

    # Pickup (denormalized from the vendor at checkout)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vendor_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    vendor_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Dropoff
    delivery_address: Mapped[str] = mapped_column(Text, nullable=False)
    delivery_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # [{name, quantity, price, notes}], price in dollars as string
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    gratuity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Split written at dispatch time
    internal_gratuity: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    partner_gratuity: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # scheduled/confirmed/preparing/picked_up/out_for_delivery/delivered/cancelled
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="scheduled")

    fulfillment_channel: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")  # manual/doordash/direct
    fulfillment_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
