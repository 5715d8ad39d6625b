"""Pydantic v2 schemas for order delivery API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import DeliveryStatus, FinalZipStatus

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ApproveSelectionRequest(BaseModel):
    """Optional replacement selection submitted with the approval."""

    selected_keys: list[str] | None = Field(None, min_length=1)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gallery_id: str
    order_id: str
    delivery_status: DeliveryStatus
    selected_keys: list[str] = Field(default_factory=list)
    change_requests_blocked: bool = False
    final_zip_generating: bool | None = None
    final_zip_generating_since: datetime | None = None
    final_zip_error_attempts: int = 0
    delivered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class DeliveryCompletionResponse(BaseModel):
    order: OrderResponse
    job_id: str | None = None
    dispatched: bool


class FinalZipStatusResponse(BaseModel):
    gallery_id: str
    order_id: str
    status: FinalZipStatus
    zip_key: str
    zip_exists: bool
    zip_size_bytes: int | None = None
    generating_since: datetime | None = None
    error_attempts: int = 0
    last_error: str | None = None
