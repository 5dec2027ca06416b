from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..db import Database
from ..errors import NotFoundError
from ..models import Order, Product
from ..types import OrderStatus, TicketStatus, TransitionResult
from .inventory import InventoryStore

logger = logging.getLogger("raffle.orders")


class OrderLedger:
    """Purchase intents and outcomes; the only writer of order status."""

    def __init__(self, db: Database, inventory: InventoryStore) -> None:
        self._db = db
        self._inventory = inventory

    def create_pending(
        self,
        session: Session,
        user_id: int,
        product_id: int,
        numbers: Sequence[int],
        total: Decimal,
        note: str = "Reservation created",
    ) -> Order:
        order = Order(
            user_id=user_id,
            product_id=product_id,
            status=OrderStatus.PENDING,
            total_amount=total,
        )
        order.set_numbers(list(numbers))
        order.append_payment_details(note)
        session.add(order)
        session.flush()
        return order

    def lock(self, session: Session, order_id: int, user_id: Optional[int] = None) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return session.scalars(stmt).first()

    def lock_or_404(self, session: Session, order_id: int, user_id: Optional[int] = None) -> Order:
        order = self.lock(session, order_id, user_id)
        if order is None:
            raise NotFoundError(f"order {order_id} not found", order_id=order_id)
        return order

    def transition(
        self,
        session: Session,
        order: Order,
        target: OrderStatus,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """Move a locked order to `target`, flipping exactly its reserved tickets.

        Re-applying the current status is a no-op and leaves tickets untouched.
        """
        previous = order.status
        if not previous.plan_transition(target):
            return TransitionResult(order.id, previous, previous, applied=False)

        if target is OrderStatus.COMPLETED:
            affected = self._inventory.sell_order(session, order.id)
        else:
            affected = self._inventory.release_order(session, order.id)

        order.status = target
        order.append_payment_details(note)
        session.flush()
        logger.info(
            "Order %s moved %s -> %s (%s tickets)", order.id, previous.value, target.value, affected
        )
        return TransitionResult(order.id, previous, target, applied=True, tickets_affected=affected)

    def append_payment_details(self, order_id: int, line: str) -> None:
        with self._db.session_scope() as session:
            order = self.lock_or_404(session, order_id)
            order.append_payment_details(line)

    def get_for_user(self, user_id: int, order_id: int) -> Dict[str, object]:
        with self._db.session_scope() as session:
            order = session.scalars(
                select(Order).where(Order.id == order_id, Order.user_id == user_id)
            ).first()
            if order is None:
                raise NotFoundError(f"order {order_id} not found", order_id=order_id)
            return order.to_dict()

    def list_for_user(self, user_id: int) -> List[Dict[str, object]]:
        with self._db.session_scope() as session:
            rows = session.execute(
                select(Order, Product.name)
                .join(Product, Product.id == Order.product_id)
                .where(Order.user_id == user_id)
                .order_by(desc(Order.created_at), desc(Order.id))
            ).all()
            result = []
            for order, product_name in rows:
                record = order.to_dict()
                record["product_name"] = product_name
                record["numbers"] = self._inventory.numbers_for_order(session, order.id)
                result.append(record)
            return result

    def list_recent(self, limit: int = 200) -> List[Dict[str, object]]:
        with self._db.session_scope() as session:
            rows = session.execute(
                select(Order, Product.name)
                .outerjoin(Product, Product.id == Order.product_id)
                .order_by(desc(Order.created_at), desc(Order.id))
                .limit(limit)
            ).all()
            result = []
            for order, product_name in rows:
                record = order.to_dict()
                record["product_name"] = product_name
                result.append(record)
            return result

    def detail(self, order_id: int) -> Dict[str, object]:
        with self._db.session_scope() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError(f"order {order_id} not found", order_id=order_id)
            tickets = self._inventory.tickets_for_order(session, order_id)
            return {
                "order": order.to_dict(),
                "numbers": [{"number_value": t.number_value, "status": t.status.value} for t in tickets],
            }

    def sold_numbers(self, session: Session, order_id: int) -> List[int]:
        return self._inventory.numbers_for_order(session, order_id, TicketStatus.SOLD)
