from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, validator

ORDER_STATUSES = ("pending", "completed", "failed", "cancelled")
PRODUCT_STATUSES = ("upcoming", "active", "drawn", "cancelled")


class ReserveRequest(BaseModel):
    product_id: int
    numbers: List[int] = Field(..., description="Ticket numbers to reserve.")
    order_id: Optional[int] = Field(None, description="Pending order to reuse, if any.")

    @validator("numbers")
    def validate_numbers(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("Select at least one number.")
        if len(set(value)) != len(value):
            raise ValueError("Numbers must be unique.")
        if any(n < 0 for n in value):
            raise ValueError("Numbers cannot be negative.")
        return sorted(value)


class ReserveResponse(BaseModel):
    order_id: int
    total: str
    numbers: List[int]
    reused_order: bool = False


class CheckoutResponse(BaseModel):
    order_id: int
    preference_id: str
    redirect_url: str


class FinalizeRequest(BaseModel):
    payment_id: Optional[str] = None


class OrderTransitionResponse(BaseModel):
    order_id: int
    previous_status: str
    status: str
    applied: bool


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    price_per_number: Decimal = Field(..., gt=0)
    total_numbers: int = Field(..., ge=1, description="Last valid ticket number (inclusive).")
    discount_min_quantity: Optional[int] = Field(None, ge=1)
    discount_percentage: Optional[int] = Field(None, ge=1, le=100)


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    price_per_number: Optional[Decimal] = Field(None, gt=0)
    total_numbers: Optional[int] = Field(None, ge=1)
    status: Optional[str] = None
    discount_min_quantity: Optional[int] = Field(None, ge=1)
    discount_percentage: Optional[int] = Field(None, ge=1, le=100)

    @validator("status")
    def validate_status(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in PRODUCT_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(PRODUCT_STATUSES)}.")
        return value


class DrawResponse(BaseModel):
    product_id: int
    winning_number: int
    winner_user_id: int
    order_id: Optional[int] = None


class OrderStatusUpdateRequest(BaseModel):
    status: str

    @validator("status")
    def validate_status(cls, value: str) -> str:
        if value not in ORDER_STATUSES:
            raise ValueError(f"Status must be one of {', '.join(ORDER_STATUSES)}.")
        return value


class MarkReadRequest(BaseModel):
    notification_ids: Optional[List[int]] = None
    mark_all_as_read: bool = False


class SweepResponse(BaseModel):
    cancelled_orders: List[int]
    reminded_orders: List[int]
    failures: int
