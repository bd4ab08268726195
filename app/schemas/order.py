from typing import Literal

from pydantic import BaseModel, Field


class CancelOrderIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    requested_by: str = Field(min_length=1, max_length=100)
    refund_requested: bool = True


class CancellationOut(BaseModel):
    success: bool
    order_id: str
    refund_id: str | None = None
    refund_amount_cents: int | None = None
    refund_status: Literal["pending", "processed", "failed", "not_applicable"] = "not_applicable"
    provider_cancelled: bool = False
    error: str | None = None
    error_code: str | None = None


class CancellationPreviewOut(BaseModel):
    can_cancel: bool
    refund_percent: int
    refund_amount_cents: int
    reason: str
    order_status: str
