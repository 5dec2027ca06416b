from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from ..db import Database
from ..errors import ConflictError, ValidationError
from ..models import Ticket
from ..types import TicketStatus

logger = logging.getLogger("raffle.inventory")


@dataclass
class Partition:
    claimable: List[int] = field(default_factory=list)
    held: List[int] = field(default_factory=list)
    conflicts: List[int] = field(default_factory=list)


class InventoryStore:
    """Ticket rows of every product and their available/reserved/sold lifecycle."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create_numbers(self, session: Session, product_id: int, last_number: int) -> int:
        rows = [{"product_id": product_id, "number_value": n, "status": TicketStatus.AVAILABLE}
                for n in range(0, last_number + 1)]
        session.execute(insert(Ticket), rows)
        return len(rows)

    def delete_numbers(self, session: Session, product_id: int) -> None:
        session.query(Ticket).filter(Ticket.product_id == product_id).delete(synchronize_session=False)

    def lock_numbers(self, session: Session, product_id: int, numbers: Sequence[int]) -> List[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.product_id == product_id, Ticket.number_value.in_(list(numbers)))
            .order_by(Ticket.number_value)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        tickets = list(session.scalars(stmt))
        found = {t.number_value for t in tickets}
        missing = sorted(set(numbers) - found)
        if missing:
            raise ValidationError(
                "one or more selected numbers do not exist for this product",
                invalid_numbers=missing,
            )
        return tickets

    @staticmethod
    def partition(tickets: Sequence[Ticket], user_id: int, order_id: Optional[int]) -> Partition:
        result = Partition()
        for ticket in tickets:
            if ticket.status == TicketStatus.AVAILABLE:
                result.claimable.append(ticket.number_value)
            elif (
                ticket.status == TicketStatus.RESERVED
                and ticket.user_id == user_id
                and order_id is not None
                and ticket.order_id == order_id
            ):
                result.held.append(ticket.number_value)
            else:
                result.conflicts.append(ticket.number_value)
        return result

    def claim(
        self,
        session: Session,
        product_id: int,
        numbers: Sequence[int],
        user_id: int,
        order_id: int,
        now: Optional[dt.datetime] = None,
    ) -> int:
        if not numbers:
            return 0
        now = now or dt.datetime.utcnow()
        result = session.execute(
            update(Ticket)
            .where(
                Ticket.product_id == product_id,
                Ticket.number_value.in_(list(numbers)),
                Ticket.status == TicketStatus.AVAILABLE,
            )
            .values(status=TicketStatus.RESERVED, user_id=user_id, order_id=order_id, reserved_at=now)
        )
        if result.rowcount != len(numbers):
            logger.error(
                "Claimed %s of %s tickets for order %s on product %s",
                result.rowcount, len(numbers), order_id, product_id,
            )
            raise ConflictError("selected numbers changed while reserving, try again")
        return result.rowcount

    def touch(self, session: Session, order_id: int, numbers: Sequence[int], now: dt.datetime) -> None:
        if not numbers:
            return
        session.execute(
            update(Ticket)
            .where(
                Ticket.order_id == order_id,
                Ticket.number_value.in_(list(numbers)),
                Ticket.status == TicketStatus.RESERVED,
            )
            .values(reserved_at=now)
        )

    def release_order(self, session: Session, order_id: int, keep: Sequence[int] = ()) -> int:
        """Free the order's reserved tickets, except the numbers in `keep`."""
        stmt = update(Ticket).where(Ticket.order_id == order_id, Ticket.status == TicketStatus.RESERVED)
        if keep:
            stmt = stmt.where(Ticket.number_value.not_in(list(keep)))
        result = session.execute(
            stmt.values(status=TicketStatus.AVAILABLE, user_id=None, order_id=None, reserved_at=None)
        )
        return result.rowcount

    def sell_order(self, session: Session, order_id: int) -> int:
        result = session.execute(
            update(Ticket)
            .where(Ticket.order_id == order_id, Ticket.status == TicketStatus.RESERVED)
            .values(status=TicketStatus.SOLD, reserved_at=None)
        )
        return result.rowcount

    def numbers_for_order(self, session: Session, order_id: int, status: Optional[TicketStatus] = None) -> List[int]:
        stmt = select(Ticket.number_value).where(Ticket.order_id == order_id)
        if status is not None:
            stmt = stmt.where(Ticket.status == status)
        return list(session.scalars(stmt.order_by(Ticket.number_value)))

    def tickets_for_order(self, session: Session, order_id: int) -> List[Ticket]:
        stmt = select(Ticket).where(Ticket.order_id == order_id).order_by(Ticket.number_value)
        return list(session.scalars(stmt))

    def latest_reservation(self, session: Session, order_id: int) -> Optional[dt.datetime]:
        stmt = select(func.max(Ticket.reserved_at)).where(
            Ticket.order_id == order_id, Ticket.status == TicketStatus.RESERVED
        )
        return session.scalar(stmt)

    def count_by_status(self, session: Session, product_id: int) -> Dict[str, int]:
        rows = session.execute(
            select(Ticket.status, func.count(Ticket.id))
            .where(Ticket.product_id == product_id)
            .group_by(Ticket.status)
        ).all()
        counts = {status.value: 0 for status in TicketStatus}
        for status, count in rows:
            counts[TicketStatus(status).value] = int(count)
        return counts

    def board(self, product_id: int) -> List[dict]:
        with self._db.session_scope() as session:
            tickets = session.scalars(
                select(Ticket).where(Ticket.product_id == product_id).order_by(Ticket.number_value)
            ).all()
            return [ticket.to_dict() for ticket in tickets]

    def availability(self, product_id: int, numbers: Sequence[int]) -> List[Dict[str, object]]:
        """Report, per requested number, whether it can be bought and who holds it otherwise."""
        with self._db.session_scope() as session:
            tickets = session.scalars(
                select(Ticket)
                .where(Ticket.product_id == product_id, Ticket.number_value.in_(list(numbers)))
                .order_by(Ticket.number_value)
            ).all()
            by_number = {t.number_value: t for t in tickets}
            report = []
            for number in sorted(set(numbers)):
                ticket = by_number.get(number)
                if ticket is None:
                    report.append({"number": number, "available": False, "status": None, "user_id": None})
                    continue
                report.append(
                    {
                        "number": number,
                        "available": ticket.status == TicketStatus.AVAILABLE,
                        "status": ticket.status.value,
                        "user_id": ticket.user_id,
                    }
                )
            return report
