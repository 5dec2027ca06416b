from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional, Sequence

from .errors import ConflictError


class TicketStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class ProductStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    DRAWN = "drawn"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ProductStatus.DRAWN, ProductStatus.CANCELLED)

    def check_admin_transition(self, target: "ProductStatus") -> bool:
        """Return True when the admin change is a real transition, False for a no-op.

        `drawn` is only ever reached through the draw itself.
        """
        if target == self:
            return False
        if target not in _ADMIN_PRODUCT_TRANSITIONS[self]:
            raise ConflictError(
                f"product cannot move from {self.value} to {target.value}",
                current_status=self.value,
                requested_status=target.value,
            )
        return True


_ADMIN_PRODUCT_TRANSITIONS: Dict[ProductStatus, FrozenSet[ProductStatus]] = {
    ProductStatus.UPCOMING: frozenset({ProductStatus.ACTIVE, ProductStatus.CANCELLED}),
    ProductStatus.ACTIVE: frozenset({ProductStatus.CANCELLED}),
    ProductStatus.DRAWN: frozenset(),
    ProductStatus.CANCELLED: frozenset(),
}


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING

    def plan_transition(self, target: "OrderStatus") -> bool:
        """Return True if moving to `target` must be applied, False if it is a no-op.

        Raises ConflictError when the order would leave a terminal state.
        """
        if target == self:
            return False
        if self.is_terminal or target is OrderStatus.PENDING:
            raise ConflictError(
                f"order is already {self.value} and cannot become {target.value}",
                current_status=self.value,
                requested_status=target.value,
            )
        return True


PROVIDER_STATUS_MAP: Dict[str, Optional[OrderStatus]] = {
    "approved": OrderStatus.COMPLETED,
    "rejected": OrderStatus.FAILED,
    "cancelled": OrderStatus.FAILED,
    "refunded": OrderStatus.FAILED,
    "charged_back": OrderStatus.FAILED,
    "pending": None,
    "in_process": None,
    "authorized": None,
}


def normalize_provider_status(provider_status: Optional[str]) -> str:
    return (provider_status or "").strip().lower()


def map_provider_status(provider_status: Optional[str]) -> Optional[OrderStatus]:
    """Internal target status for a gateway payment status; None means leave the order alone."""
    return PROVIDER_STATUS_MAP.get(normalize_provider_status(provider_status))


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str = "user"
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class ReservationResult:
    order_id: int
    total: Decimal
    numbers: Sequence[int]
    reused_order: bool = False


@dataclass(frozen=True)
class TransitionResult:
    order_id: int
    previous_status: OrderStatus
    status: OrderStatus
    applied: bool
    tickets_affected: int = 0


@dataclass(frozen=True)
class DrawResult:
    product_id: int
    winning_number: int
    winner_user_id: int
    order_id: Optional[int]


@dataclass(frozen=True)
class CheckoutIntent:
    order_id: int
    preference_id: str
    redirect_url: str


@dataclass(frozen=True)
class SweepReport:
    cancelled_orders: Sequence[int] = field(default_factory=tuple)
    reminded_orders: Sequence[int] = field(default_factory=tuple)
    failures: int = 0
