from datetime import datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base


class OrderEvent(Base):
    """Append-only status timeline for an order."""

    __tablename__ = "order_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("oev"))
    order_id: Mapped[str] = mapped_column(String, ForeignKey("scheduled_orders.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
