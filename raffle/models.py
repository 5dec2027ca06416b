from __future__ import annotations

import datetime as dt
import json
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from .types import OrderStatus, ProductStatus, TicketStatus

Base = declarative_base()


def _status_column(enum_cls, default):
    return Column(
        Enum(enum_cls, native_enum=False, length=16, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=default,
    )


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> Optional[str]:
    return f"{value:.2f}" if value is not None else None


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(512), nullable=True)
    price_per_number = Column(Numeric(10, 2), nullable=False)
    total_numbers = Column(Integer, nullable=False)
    status = _status_column(ProductStatus, ProductStatus.UPCOMING)
    winning_number = Column(Integer, nullable=True)
    winner_user_id = Column(Integer, nullable=True)
    discount_min_quantity = Column(Integer, nullable=True)
    discount_percentage = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    @property
    def ticket_count(self) -> int:
        # number range is inclusive: 0..total_numbers
        return self.total_numbers + 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "price_per_number": _money(self.price_per_number),
            "total_numbers": self.total_numbers,
            "status": self.status.value,
            "winning_number": self.winning_number,
            "winner_user_id": self.winner_user_id,
            "discount_min_quantity": self.discount_min_quantity,
            "discount_percentage": self.discount_percentage,
            "created_at": _iso(self.created_at),
        }


class Ticket(Base):
    __tablename__ = "raffle_numbers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    number_value = Column(Integer, nullable=False)
    status = _status_column(TicketStatus, TicketStatus.AVAILABLE)
    user_id = Column(Integer, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    reserved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("product_id", "number_value", name="uq_raffle_numbers_product_number"),
        Index("ix_raffle_numbers_order", "order_id"),
    )

    def to_dict(self) -> dict:
        return {
            "number_value": self.number_value,
            "status": self.status.value,
            "user_id": self.user_id,
        }


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    status = _status_column(OrderStatus, OrderStatus.PENDING)
    total_amount = Column(Numeric(10, 2), nullable=False)
    pending_selected_numbers = Column(Text, nullable=True)
    payment_details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    def set_numbers(self, numbers: List[int]) -> None:
        self.pending_selected_numbers = json.dumps(sorted(numbers))

    def get_numbers(self) -> List[int]:
        if not self.pending_selected_numbers:
            return []
        return json.loads(self.pending_selected_numbers)

    def append_payment_details(self, line: str) -> None:
        if not line:
            return
        if self.payment_details:
            self.payment_details = f"{self.payment_details}\n{line}"
        else:
            self.payment_details = line

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "status": self.status.value,
            "total_amount": _money(self.total_amount),
            "selected_numbers": self.get_numbers(),
            "payment_details": self.payment_details,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    message = Column(Text, nullable=False)
    link = Column(String(512), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message": self.message,
            "link": self.link,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }
