from app.models.base import Base  # noqa: F401

from app.models.scheduled_order import ScheduledOrder  # noqa: F401
from app.models.order_event import OrderEvent  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.delivery import DeliveryRecord, DispatchAttempt  # noqa: F401
