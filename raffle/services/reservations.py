from __future__ import annotations

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select

from ..db import Database
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Product
from ..types import OrderStatus, ProductStatus, ReservationResult
from .inventory import InventoryStore
from .orders import OrderLedger

logger = logging.getLogger("raffle.reservations")

CENTS = Decimal("0.01")


def compute_total(
    price_per_number: Decimal,
    count: int,
    discount_min_quantity: Optional[int] = None,
    discount_percentage: Optional[int] = None,
) -> Decimal:
    total = Decimal(price_per_number) * count
    if discount_min_quantity and discount_percentage and count >= discount_min_quantity:
        total = total * (Decimal(1) - Decimal(discount_percentage) / Decimal(100))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_numbers(numbers: Sequence[int]) -> List[int]:
    if not numbers:
        raise ValidationError("at least one number must be selected")
    cleaned = []
    for value in numbers:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("numbers must be integers", invalid_numbers=[value])
        cleaned.append(value)
    duplicates = sorted({n for n in cleaned if cleaned.count(n) > 1})
    if duplicates:
        raise ValidationError("numbers must not repeat", duplicate_numbers=duplicates)
    return sorted(cleaned)


class ReservationEngine:
    """Locks tickets against a pending order; all or nothing."""

    def __init__(self, db: Database, inventory: InventoryStore, ledger: OrderLedger) -> None:
        self._db = db
        self._inventory = inventory
        self._ledger = ledger

    def reserve(
        self,
        user_id: int,
        product_id: int,
        numbers: Sequence[int],
        existing_order_id: Optional[int] = None,
        now: Optional[dt.datetime] = None,
    ) -> ReservationResult:
        selected = normalize_numbers(numbers)
        now = now or dt.datetime.utcnow()

        with self._db.session_scope() as session:
            product = session.scalars(select(Product).where(Product.id == product_id)).first()
            if product is None:
                raise NotFoundError(f"product {product_id} not found", product_id=product_id)
            out_of_range = [n for n in selected if n < 0 or n > product.total_numbers]
            if out_of_range:
                raise ValidationError(
                    f"numbers must be between 0 and {product.total_numbers}",
                    invalid_numbers=out_of_range,
                )
            if product.status is not ProductStatus.ACTIVE:
                raise ConflictError(
                    f"raffle is not open for sales (status {product.status.value})",
                    current_status=product.status.value,
                )

            order = None
            if existing_order_id is not None:
                order = self._ledger.lock(session, existing_order_id, user_id)
                if order is None or order.status is not OrderStatus.PENDING or order.product_id != product_id:
                    logger.info(
                        "Order %s cannot be reused by user %s; creating a new one", existing_order_id, user_id
                    )
                    order = None

            tickets = self._inventory.lock_numbers(session, product_id, selected)
            partition = self._inventory.partition(tickets, user_id, order.id if order is not None else None)
            if partition.conflicts:
                logger.info(
                    "User %s reservation on product %s conflicts on %s",
                    user_id, product_id, partition.conflicts,
                )
                raise ConflictError(
                    "some selected numbers are no longer available: "
                    + ", ".join(str(n) for n in partition.conflicts),
                    unavailable_numbers=partition.conflicts,
                )

            total = compute_total(
                product.price_per_number,
                len(selected),
                product.discount_min_quantity,
                product.discount_percentage,
            )
            reused = order is not None
            if order is None:
                order = self._ledger.create_pending(session, user_id, product_id, selected, total)
            else:
                released = self._inventory.release_order(session, order.id, keep=partition.held)
                logger.info("Released %s dropped reservations of order %s", released, order.id)
                order.total_amount = total
                order.set_numbers(selected)
                order.append_payment_details(f"Reservation updated: {', '.join(str(n) for n in selected)}")

            self._inventory.claim(session, product_id, partition.claimable, user_id, order.id, now)
            self._inventory.touch(session, order.id, partition.held, now)
            logger.info("Order %s reserved %s for user %s, total %s", order.id, selected, user_id, total)
            return ReservationResult(order_id=order.id, total=total, numbers=tuple(selected), reused_order=reused)
