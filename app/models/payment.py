from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id
from app.models.base import Base, TimestampMixin


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("pay"))
    order_id: Mapped[str] = mapped_column(String, ForeignKey("scheduled_orders.id"), nullable=False, index=True)

    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="stripe")
    provider_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # payment intent

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)  # dollars
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")  # pending/completed/refunded/failed

    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
