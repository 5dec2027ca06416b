import datetime as dt
import tempfile
import threading
import unittest
from decimal import Decimal
from pathlib import Path
from unittest import mock

from sqlalchemy import func, select

from raffle.errors import ConflictError, NotFoundError, ValidationError
from raffle.models import Order
from raffle.services.reservations import compute_total
from raffle.tests.fakes import active_product, make_services, tickets
from raffle.types import OrderStatus, TicketStatus


class ComputeTotalTests(unittest.TestCase):
    def test_discount_applies_from_min_quantity(self) -> None:
        self.assertEqual(compute_total(Decimal("10"), 5, 5, 10), Decimal("45.00"))

    def test_no_discount_below_min_quantity(self) -> None:
        self.assertEqual(compute_total(Decimal("10"), 4, 5, 10), Decimal("40.00"))

    def test_rounds_half_up_to_cents(self) -> None:
        self.assertEqual(compute_total(Decimal("3.33"), 3, 2, 15), Decimal("8.49"))


class ReservationEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.services = make_services()
        self.product_id = active_product(self.services, discount_min_quantity=5, discount_percentage=10)
        self.engine = self.services.reservations

    def _order_count(self) -> int:
        with self.services.db.session_scope() as session:
            return session.scalar(select(func.count(Order.id)))

    def test_reserve_locks_tickets_to_a_new_pending_order(self) -> None:
        result = self.engine.reserve(7, self.product_id, [3, 1, 2])

        self.assertEqual(result.numbers, (1, 2, 3))
        self.assertEqual(result.total, Decimal("30.00"))
        self.assertFalse(result.reused_order)
        rows = tickets(self.services, self.product_id, [1, 2, 3, 4])
        for number in (1, 2, 3):
            self.assertEqual(rows[number].status, TicketStatus.RESERVED)
            self.assertEqual(rows[number].user_id, 7)
            self.assertEqual(rows[number].order_id, result.order_id)
            self.assertIsNotNone(rows[number].reserved_at)
        self.assertEqual(rows[4].status, TicketStatus.AVAILABLE)

        order = self.services.ledger.get_for_user(7, result.order_id)
        self.assertEqual(order["status"], OrderStatus.PENDING.value)
        self.assertEqual(order["selected_numbers"], [1, 2, 3])
        self.assertEqual(order["total_amount"], "30.00")

    def test_discount_through_reservation(self) -> None:
        five = self.engine.reserve(1, self.product_id, [10, 11, 12, 13, 14])
        four = self.engine.reserve(2, self.product_id, [20, 21, 22, 23])

        self.assertEqual(five.total, Decimal("45.00"))
        self.assertEqual(four.total, Decimal("40.00"))

    def test_conflict_names_exactly_the_sold_number(self) -> None:
        sold = self.engine.reserve(1, self.product_id, [2])
        self.services.reconciler.apply_admin_status(sold.order_id, OrderStatus.COMPLETED, admin_id=99)
        orders_before = self._order_count()

        with self.assertRaises(ConflictError) as ctx:
            self.engine.reserve(2, self.product_id, [1, 2, 3])

        self.assertEqual(ctx.exception.details["unavailable_numbers"], [2])
        rows = tickets(self.services, self.product_id, [1, 3])
        self.assertEqual(rows[1].status, TicketStatus.AVAILABLE)
        self.assertEqual(rows[3].status, TicketStatus.AVAILABLE)
        self.assertIsNone(rows[1].order_id)
        self.assertEqual(self._order_count(), orders_before)

    def test_reserved_by_another_user_is_a_conflict(self) -> None:
        self.engine.reserve(1, self.product_id, [5, 6])

        with self.assertRaises(ConflictError) as ctx:
            self.engine.reserve(2, self.product_id, [6, 7])

        self.assertEqual(ctx.exception.details["unavailable_numbers"], [6])
        self.assertEqual(tickets(self.services, self.product_id, [7])[7].status, TicketStatus.AVAILABLE)

    def test_single_ticket_contended_by_many_users(self) -> None:
        outcomes = []
        for user_id in range(1, 11):
            try:
                self.engine.reserve(user_id, self.product_id, [42])
                outcomes.append("ok")
            except ConflictError as exc:
                self.assertEqual(exc.details["unavailable_numbers"], [42])
                outcomes.append("conflict")

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("conflict"), 9)
        self.assertEqual(tickets(self.services, self.product_id, [42])[42].user_id, 1)

    def test_reusing_a_pending_order_releases_previous_selection(self) -> None:
        t0 = dt.datetime(2025, 5, 1, 10, 0, 0)
        t1 = t0 + dt.timedelta(hours=5)
        first = self.engine.reserve(4, self.product_id, [1, 2], now=t0)
        second = self.engine.reserve(4, self.product_id, [2, 3], existing_order_id=first.order_id, now=t1)

        self.assertEqual(second.order_id, first.order_id)
        self.assertTrue(second.reused_order)
        rows = tickets(self.services, self.product_id, [1, 2, 3])
        self.assertEqual(rows[1].status, TicketStatus.AVAILABLE)
        self.assertIsNone(rows[1].user_id)
        self.assertEqual(rows[2].order_id, first.order_id)
        self.assertEqual(rows[3].order_id, first.order_id)
        self.assertEqual(rows[2].reserved_at, t1)
        self.assertEqual(rows[3].reserved_at, t1)
        order = self.services.ledger.get_for_user(4, first.order_id)
        self.assertEqual(order["selected_numbers"], [2, 3])
        self.assertIn("Reservation updated: 2, 3", order["payment_details"])

    def test_reused_order_keeps_numbers_it_still_selects(self) -> None:
        first = self.engine.reserve(4, self.product_id, [1, 2])
        inventory = self.services.inventory

        with mock.patch.object(inventory, "claim", wraps=inventory.claim) as claim, \
                mock.patch.object(inventory, "touch", wraps=inventory.touch) as touch:
            self.engine.reserve(4, self.product_id, [2, 3], existing_order_id=first.order_id)

        self.assertEqual(list(claim.call_args.args[2]), [3])
        self.assertEqual(list(touch.call_args.args[2]), [2])

    def test_failed_reuse_keeps_previous_reservation(self) -> None:
        first = self.engine.reserve(4, self.product_id, [1, 2])
        self.engine.reserve(5, self.product_id, [9])

        with self.assertRaises(ConflictError):
            self.engine.reserve(4, self.product_id, [1, 9], existing_order_id=first.order_id)

        rows = tickets(self.services, self.product_id, [1, 2])
        self.assertEqual(rows[1].order_id, first.order_id)
        self.assertEqual(rows[2].status, TicketStatus.RESERVED)

    def test_foreign_order_id_is_not_reused(self) -> None:
        other = self.engine.reserve(1, self.product_id, [1])
        mine = self.engine.reserve(2, self.product_id, [2], existing_order_id=other.order_id)

        self.assertNotEqual(mine.order_id, other.order_id)
        self.assertEqual(tickets(self.services, self.product_id, [1])[1].order_id, other.order_id)

    def test_own_ticket_held_by_another_order_is_a_conflict(self) -> None:
        self.engine.reserve(3, self.product_id, [8])

        with self.assertRaises(ConflictError) as ctx:
            self.engine.reserve(3, self.product_id, [8])

        self.assertEqual(ctx.exception.details["unavailable_numbers"], [8])

    def test_out_of_range_numbers_are_rejected_before_locking(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.engine.reserve(1, self.product_id, [0, 100])

        self.assertEqual(ctx.exception.details["invalid_numbers"], [100])
        self.assertEqual(tickets(self.services, self.product_id, [0])[0].status, TicketStatus.AVAILABLE)

    def test_last_number_is_inclusive(self) -> None:
        result = self.engine.reserve(1, self.product_id, [0, 99])
        self.assertEqual(result.numbers, (0, 99))

    def test_malformed_selection(self) -> None:
        with self.assertRaises(ValidationError):
            self.engine.reserve(1, self.product_id, [])
        with self.assertRaises(ValidationError):
            self.engine.reserve(1, self.product_id, [4, 4])
        with self.assertRaises(NotFoundError):
            self.engine.reserve(1, 12345, [1])

    def test_product_must_be_active(self) -> None:
        upcoming = self.services.products.create_product(
            name="Console", price_per_number=Decimal("5"), total_numbers=10
        )
        with self.assertRaises(ConflictError) as ctx:
            self.engine.reserve(1, upcoming["id"], [1])
        self.assertEqual(ctx.exception.details["current_status"], "upcoming")


class ConcurrentReservationTests(unittest.TestCase):
    """Threads racing for one ticket on a file-backed database."""

    attempts = 8

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / "raffle.db"
        self.services = make_services(database_url=f"sqlite:///{db_path}")
        self.product_id = active_product(self.services, total_numbers=9)

    def tearDown(self) -> None:
        self.services.db.dispose()
        self._tmpdir.cleanup()

    def test_only_one_of_many_simultaneous_reservations_wins(self) -> None:
        barrier = threading.Barrier(self.attempts)
        outcomes = []

        def attempt(user_id: int) -> None:
            barrier.wait()
            try:
                self.services.reservations.reserve(user_id, self.product_id, [3])
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")
            except Exception as exc:
                outcomes.append(repr(exc))

        threads = [threading.Thread(target=attempt, args=(user_id,)) for user_id in range(1, self.attempts + 1)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(sorted(outcomes), ["conflict"] * (self.attempts - 1) + ["ok"])
        ticket = tickets(self.services, self.product_id, [3])[3]
        self.assertEqual(ticket.status, TicketStatus.RESERVED)
        with self.services.db.session_scope() as session:
            self.assertEqual(session.scalar(select(func.count(Order.id))), 1)
            order = session.get(Order, ticket.order_id)
            self.assertEqual(order.user_id, ticket.user_id)


class InventoryStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.services = make_services()
        self.product_id = active_product(self.services, total_numbers=9)

    def test_claim_refuses_rows_taken_since_the_availability_read(self) -> None:
        taken = self.services.reservations.reserve(1, self.product_id, [4])

        with self.assertRaises(ConflictError):
            with self.services.db.session_scope() as session:
                self.services.inventory.claim(session, self.product_id, [3, 4], user_id=2, order_id=taken.order_id)

        rows = tickets(self.services, self.product_id, [3, 4])
        self.assertEqual(rows[3].status, TicketStatus.AVAILABLE)
        self.assertEqual(rows[4].user_id, 1)

    def test_availability_report(self) -> None:
        self.services.reservations.reserve(1, self.product_id, [2])

        report = self.services.inventory.availability(self.product_id, [2, 3, 50])

        self.assertEqual(
            report,
            [
                {"number": 2, "available": False, "status": "reserved", "user_id": 1},
                {"number": 3, "available": True, "status": "available", "user_id": None},
                {"number": 50, "available": False, "status": None, "user_id": None},
            ],
        )

    def test_product_numbers_cover_inclusive_range(self) -> None:
        with self.services.db.session_scope() as session:
            counts = self.services.inventory.count_by_status(session, self.product_id)
        self.assertEqual(counts, {"available": 10, "reserved": 0, "sold": 0})


if __name__ == "__main__":
    unittest.main()
