from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from sqlalchemy import select

from ..config import ReservationSettings
from ..db import Database
from ..errors import ConflictError
from ..models import Order, Product
from ..types import OrderStatus, SweepReport, TicketStatus
from . import notifications
from .inventory import InventoryStore
from .notifications import Notice, NotificationDispatcher
from .orders import OrderLedger

logger = logging.getLogger("raffle.expiry")


class ReservationSweeper:
    """Reclaims reservations that were never paid and nudges recent ones."""

    def __init__(
        self,
        db: Database,
        inventory: InventoryStore,
        ledger: OrderLedger,
        dispatcher: NotificationDispatcher,
        settings: ReservationSettings,
        app_url: str = "",
    ) -> None:
        self._db = db
        self._inventory = inventory
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._settings = settings
        self._app_url = app_url

    def expiry_cutoff(self, now: dt.datetime) -> dt.datetime:
        return now - dt.timedelta(hours=self._settings.ttl_hours)

    def _stale_candidates(self, cutoff: dt.datetime) -> List[int]:
        with self._db.session_scope() as session:
            stmt = (
                select(Order.id)
                .where(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
                .order_by(Order.id)
            )
            return list(session.scalars(stmt))

    def release_expired(self, now: Optional[dt.datetime] = None) -> SweepReport:
        now = now or dt.datetime.utcnow()
        cutoff = self.expiry_cutoff(now)
        cancelled: List[int] = []
        failures = 0
        for order_id in self._stale_candidates(cutoff):
            try:
                notice = self._cancel_if_expired(order_id, cutoff)
            except Exception:
                failures += 1
                logger.exception("Failed to cancel expired order %s", order_id)
                continue
            if notice is not None:
                cancelled.append(order_id)
                self._dispatcher.dispatch([notice])
        if cancelled or failures:
            logger.info("Expiry sweep cancelled %s orders (%s failures)", len(cancelled), failures)
        return SweepReport(cancelled_orders=tuple(cancelled), failures=failures)

    def _cancel_if_expired(self, order_id: int, cutoff: dt.datetime) -> Optional[Notice]:
        with self._db.session_scope() as session:
            order = self._ledger.lock(session, order_id)
            if order is None or order.status is not OrderStatus.PENDING:
                return None
            last_activity = self._inventory.latest_reservation(session, order_id) or order.created_at
            if last_activity >= cutoff:
                return None
            result = self._ledger.transition(
                session, order, OrderStatus.CANCELLED, f"Cancelled by expiry sweep, idle since {last_activity.isoformat()}"
            )
            if not result.applied:
                return None
            product = session.get(Product, order.product_id)
            return notifications.order_cancelled(
                order.user_id,
                product.name if product else f"#{order.product_id}",
                order.id,
                f"{self._app_url}/products/{order.product_id}",
            )

    def send_reminders(self, now: Optional[dt.datetime] = None) -> SweepReport:
        now = now or dt.datetime.utcnow()
        window_start = now - dt.timedelta(hours=self._settings.reminder_until_hours)
        window_end = now - dt.timedelta(hours=self._settings.reminder_after_hours)
        notices: List[Notice] = []
        with self._db.session_scope() as session:
            rows = session.execute(
                select(Order, Product.name)
                .join(Product, Product.id == Order.product_id)
                .where(
                    Order.status == OrderStatus.PENDING,
                    Order.created_at >= window_start,
                    Order.created_at <= window_end,
                )
                .order_by(Order.id)
            ).all()
            for order, product_name in rows:
                notice = self._reminder_for(session, order, product_name)
                if notice is not None:
                    notices.append(notice)
        delivered = self._dispatcher.dispatch(notices)
        return SweepReport(
            reminded_orders=tuple(n.context["order_id"] for n in notices),
            failures=len(notices) - delivered,
        )

    def remind_order(self, order_id: int) -> bool:
        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id)
            if order.status is not OrderStatus.PENDING:
                raise ConflictError(
                    f"reminders are only sent for pending orders (status {order.status.value})",
                    current_status=order.status.value,
                )
            product = session.get(Product, order.product_id)
            notice = self._reminder_for(session, order, product.name if product else "")
        if notice is None:
            return False
        return self._dispatcher.dispatch([notice]) == 1

    def _reminder_for(self, session, order: Order, product_name: str) -> Optional[Notice]:
        numbers = self._inventory.numbers_for_order(session, order.id, TicketStatus.RESERVED)
        if not numbers:
            return None
        return notifications.payment_reminder(
            order.user_id, product_name, order.id, numbers, f"{self._app_url}/my-numbers"
        )

    def run(self, now: Optional[dt.datetime] = None) -> SweepReport:
        now = now or dt.datetime.utcnow()
        expired = self.release_expired(now)
        reminded = self.send_reminders(now)
        return SweepReport(
            cancelled_orders=expired.cancelled_orders,
            reminded_orders=reminded.reminded_orders,
            failures=expired.failures + reminded.failures,
        )
