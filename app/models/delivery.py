from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class DeliveryRecord(TimestampMixin, Base):
    """
    Local mirror of a DoorDash Drive delivery.

    Rows are never deleted. `status` only ever holds provider vocabulary
    plus "dispatching" while the create call is in flight and "pending" when
    the provider never acknowledged it.
    """

    __tablename__ = "doordash_deliveries"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dly"))
    external_delivery_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider_delivery_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    scheduled_order_id: Mapped[str | None] = mapped_column(String, ForeignKey("scheduled_orders.id"), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(40), nullable=False, default="pending")

    pickup_address: Mapped[str] = mapped_column(Text, nullable=False)
    pickup_business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pickup_phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    dropoff_address: Mapped[str] = mapped_column(Text, nullable=False)
    dropoff_phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    dropoff_contact_given_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    dropoff_contact_family_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    tip_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    order_value_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fee_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    dasher_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    dasher_phone_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    dasher_vehicle: Mapped[str | None] = mapped_column(String(120), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dropoff_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_dropoff_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # created_at of the newest webhook event applied; older events are dropped
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DispatchAttempt(Base):
    __tablename__ = "dispatch_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("att"))
    delivery_id: Mapped[str] = mapped_column(String, ForeignKey("doordash_deliveries.id"), nullable=False, index=True)

    operation: Mapped[str] = mapped_column(String(30), nullable=False)  # create/cancel
    status: Mapped[str] = mapped_column(String(30), nullable=False)  # success/failed
    request: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # redacted
    response: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
