from __future__ import annotations

import logging
import secrets
from typing import List, Optional

from sqlalchemy import select

from ..db import Database
from ..errors import ConflictError, NotFoundError
from ..models import Order, Product, Ticket
from ..types import DrawResult, ProductStatus, TicketStatus
from . import notifications
from .notifications import Notice, NotificationDispatcher

logger = logging.getLogger("raffle.draws")


class DrawEngine:
    def __init__(
        self,
        db: Database,
        dispatcher: NotificationDispatcher,
        app_url: str = "",
        rng: Optional[secrets.SystemRandom] = None,
    ) -> None:
        self._db = db
        self._dispatcher = dispatcher
        self._app_url = app_url
        self._rng = rng or secrets.SystemRandom()

    def draw(self, product_id: int) -> DrawResult:
        notices: List[Notice] = []
        with self._db.session_scope() as session:
            product = session.scalars(
                select(Product)
                .where(Product.id == product_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if product is None:
                raise NotFoundError(f"product {product_id} not found", product_id=product_id)
            if product.status is not ProductStatus.ACTIVE:
                raise ConflictError(
                    f"draw not possible, product status is {product.status.value}",
                    current_status=product.status.value,
                )

            sold = session.execute(
                select(Ticket.number_value, Ticket.user_id, Ticket.order_id)
                .where(Ticket.product_id == product_id, Ticket.status == TicketStatus.SOLD)
                .order_by(Ticket.number_value)
            ).all()
            expected = product.ticket_count
            if len(sold) != expected:
                logger.info("Draw refused for product %s: %s of %s sold", product_id, len(sold), expected)
                raise ConflictError(
                    f"draw not possible, only {len(sold)} of {expected} numbers were sold",
                    sold_count=len(sold),
                    expected_count=expected,
                )

            number, user_id, order_id = self._rng.choice(sold)
            product.status = ProductStatus.DRAWN
            product.winning_number = number
            product.winner_user_id = user_id
            session.flush()
            logger.info("Product %s drawn: number %s, user %s", product_id, number, user_id)
            notices.append(
                notifications.winner(user_id, product.name, order_id, number, f"{self._app_url}/products/{product_id}")
            )
            result = DrawResult(product_id=product_id, winning_number=number, winner_user_id=user_id, order_id=order_id)

        self._dispatcher.dispatch(notices)
        return result

    def winner_notice_for_order(self, order_id: int) -> Notice:
        """Rebuild the winner notice for an order, which must hold the winning number."""
        with self._db.session_scope() as session:
            if session.get(Order, order_id) is None:
                raise NotFoundError(f"order {order_id} not found", order_id=order_id)
            row = session.execute(
                select(Ticket, Product)
                .join(Product, Product.id == Ticket.product_id)
                .where(Ticket.order_id == order_id, Ticket.status == TicketStatus.SOLD)
                .where(Product.status == ProductStatus.DRAWN)
                .where(Ticket.number_value == Product.winning_number)
            ).first()
            if row is None:
                raise ConflictError("this order does not hold the winning number", order_id=order_id)
            ticket, product = row
            return notifications.winner(
                ticket.user_id, product.name, order_id, ticket.number_value, f"{self._app_url}/products/{product.id}"
            )

    def resend_winner_notice(self, order_id: int) -> bool:
        notice = self.winner_notice_for_order(order_id)
        return self._dispatcher.dispatch([notice]) == 1
