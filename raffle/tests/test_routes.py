import json
import unittest
from unittest import mock

from raffle.app import create_app
from raffle.config import load_settings
from raffle.db import Database
from raffle.services.auth import JwtAuthService
from raffle.tests.fakes import (
    CRON_SECRET,
    FakePaymentProvider,
    RecordingSender,
    make_settings,
    signed_headers,
)


class RaffleRoutesTests(unittest.TestCase):
    def setUp(self) -> None:
        settings = make_settings()
        self.provider = FakePaymentProvider()
        self.sender = RecordingSender()
        self.app = create_app(
            settings,
            db=Database.from_url(settings.database_url),
            payment_provider=self.provider,
            notification_sender=self.sender,
        )
        self.client = self.app.test_client()
        self.tokens = JwtAuthService(settings.auth)

    def _headers(self, user_id: int = 1, role: str = "user"):
        token = self.tokens.issue(user_id, role=role, email=f"user{user_id}@example.com")
        return {"Authorization": f"Bearer {token}"}

    def _admin(self):
        return self._headers(99, role="admin")

    def _active_product(self, total_numbers: int = 9) -> int:
        created = self.client.post(
            "/admin/api/products",
            json={"name": "Bike", "price_per_number": "10.00", "total_numbers": total_numbers},
            headers=self._admin(),
        )
        self.assertEqual(created.status_code, 201)
        product_id = created.get_json()["id"]
        activated = self.client.put(
            f"/admin/api/products/{product_id}", json={"status": "active"}, headers=self._admin()
        )
        self.assertEqual(activated.status_code, 200)
        return product_id

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["status"], "ok")

    def test_purchase_flow_end_to_end(self) -> None:
        product_id = self._active_product()

        reserved = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [2, 1]}, headers=self._headers()
        )
        self.assertEqual(reserved.status_code, 201)
        body = reserved.get_json()
        self.assertEqual(body["numbers"], [1, 2])
        self.assertEqual(body["total"], "20.00")
        order_id = body["order_id"]

        checkout = self.client.post(f"/orders/{order_id}/checkout", headers=self._headers())
        self.assertEqual(checkout.status_code, 200)
        self.assertEqual(checkout.get_json()["preference_id"], f"pref-{order_id}")
        self.assertEqual(self.provider.preferences[0].payer_email, "user1@example.com")

        self.provider.add_payment("pay-77", "approved", order_id)
        webhook = self.client.post(
            "/payments/webhook",
            data=json.dumps({"data": {"id": "pay-77"}}),
            headers=signed_headers("pay-77"),
            content_type="application/json",
        )
        self.assertEqual(webhook.status_code, 200)
        self.assertEqual(webhook.get_json()["status"], "completed")

        status = self.client.get(f"/orders/{order_id}/status", headers=self._headers())
        self.assertEqual(status.get_json(), {"order_id": order_id, "status": "completed"})

        mine = self.client.get("/orders/mine", headers=self._headers()).get_json()["orders"]
        self.assertEqual(mine[0]["numbers"], [1, 2])
        self.assertEqual(mine[0]["product_name"], "Bike")

        board = self.client.get(f"/products/{product_id}").get_json()["numbers"]
        sold = [n["number_value"] for n in board if n["status"] == "sold"]
        self.assertEqual(sold, [1, 2])

    def test_conflict_body_lists_unavailable_numbers(self) -> None:
        product_id = self._active_product()
        self.client.post("/orders", json={"product_id": product_id, "numbers": [5]}, headers=self._headers(1))

        response = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [4, 5]}, headers=self._headers(2)
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["unavailable_numbers"], [5])

    def test_reserve_rejects_bad_payloads(self) -> None:
        product_id = self._active_product()
        duplicate = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [1, 1]}, headers=self._headers()
        )
        out_of_range = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [10]}, headers=self._headers()
        )
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(out_of_range.status_code, 400)
        self.assertEqual(out_of_range.get_json()["invalid_numbers"], [10])

    def test_authentication_is_required(self) -> None:
        self.assertEqual(self.client.post("/orders", json={}).status_code, 401)
        bad = self.client.get("/orders/mine", headers={"Authorization": "Bearer not-a-token"})
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(self.client.get("/admin/api/orders").status_code, 401)
        forbidden = self.client.get("/admin/api/orders", headers=self._headers())
        self.assertEqual(forbidden.status_code, 403)

    def test_orders_of_other_users_are_hidden(self) -> None:
        product_id = self._active_product()
        order_id = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [3]}, headers=self._headers(1)
        ).get_json()["order_id"]

        response = self.client.get(f"/orders/{order_id}", headers=self._headers(2))

        self.assertEqual(response.status_code, 404)

    def test_webhook_with_bad_signature(self) -> None:
        response = self.client.post(
            "/payments/webhook",
            data=json.dumps({"data": {"id": "pay-1"}}),
            headers=signed_headers("pay-1", secret="wrong"),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.provider.lookups, [])

    def test_webhook_acknowledges_unprocessable_events(self) -> None:
        self.provider.add_payment("pay-2", "approved", 4040)
        response = self.client.post(
            "/payments/webhook",
            data=json.dumps({"data": {"id": "pay-2"}}),
            headers=signed_headers("pay-2"),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["acknowledged"])

    def test_admin_draw_requires_a_sold_out_raffle(self) -> None:
        product_id = self._active_product(total_numbers=1)
        order_id = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [0]}, headers=self._headers()
        ).get_json()["order_id"]
        self.client.post(f"/admin/api/orders/{order_id}/complete", headers=self._admin())

        refused = self.client.post(f"/admin/api/products/{product_id}/draw", headers=self._admin())
        self.assertEqual(refused.status_code, 409)
        self.assertEqual(refused.get_json()["sold_count"], 1)

        second = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [1]}, headers=self._headers(2)
        ).get_json()["order_id"]
        self.client.put(f"/admin/api/orders/{second}", json={"status": "completed"}, headers=self._admin())

        drawn = self.client.post(f"/admin/api/products/{product_id}/draw", headers=self._admin())
        self.assertEqual(drawn.status_code, 200)
        self.assertIn(drawn.get_json()["winning_number"], (0, 1))
        winners = self.client.get("/winners").get_json()["winners"]
        self.assertEqual(winners[0]["product_id"], product_id)

    def test_admin_resends_payment_notice(self) -> None:
        product_id = self._active_product()
        order_id = self.client.post(
            "/orders", json={"product_id": product_id, "numbers": [6, 7]}, headers=self._headers()
        ).get_json()["order_id"]

        early = self.client.post(f"/admin/api/orders/{order_id}/notify-success", headers=self._admin())
        self.assertEqual(early.status_code, 409)
        self.assertEqual(early.get_json()["current_status"], "pending")

        self.client.post(f"/admin/api/orders/{order_id}/complete", headers=self._admin())
        self.sender.sent.clear()
        response = self.client.post(f"/admin/api/orders/{order_id}/notify-success", headers=self._admin())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"order_id": order_id, "delivered": True})
        self.assertEqual(self.sender.kinds(), ["payment_approved"])

    def test_admin_removes_volume_discount(self) -> None:
        created = self.client.post(
            "/admin/api/products",
            json={
                "name": "Bike",
                "price_per_number": "10.00",
                "total_numbers": 9,
                "discount_min_quantity": 3,
                "discount_percentage": 20,
            },
            headers=self._admin(),
        ).get_json()

        response = self.client.put(
            f"/admin/api/products/{created['id']}",
            json={"discount_min_quantity": None, "discount_percentage": None},
            headers=self._admin(),
        )

        product = response.get_json()["product"]
        self.assertIsNone(product["discount_min_quantity"])
        self.assertIsNone(product["discount_percentage"])
        self.assertEqual(product["price_per_number"], "10.00")

    def test_notifications_inbox(self) -> None:
        settings = make_settings()
        app = create_app(settings, db=Database.from_url(settings.database_url), payment_provider=self.provider)
        client = app.test_client()
        admin = self._admin()
        product = client.post(
            "/admin/api/products",
            json={"name": "Tv", "price_per_number": "5", "total_numbers": 5},
            headers=admin,
        ).get_json()
        client.put(f"/admin/api/products/{product['id']}", json={"status": "active"}, headers=admin)
        order_id = client.post(
            "/orders", json={"product_id": product["id"], "numbers": [1]}, headers=self._headers(3)
        ).get_json()["order_id"]
        client.post(f"/admin/api/orders/{order_id}/remind", headers=admin)

        inbox = client.get("/notifications", headers=self._headers(3)).get_json()["notifications"]
        self.assertEqual(len(inbox), 1)
        self.assertFalse(inbox[0]["is_read"])

        marked = client.put("/notifications", json={"mark_all_as_read": True}, headers=self._headers(3))
        self.assertEqual(marked.get_json()["updated"], 1)
        inbox = client.get("/notifications", headers=self._headers(3)).get_json()["notifications"]
        self.assertTrue(inbox[0]["is_read"])

    def test_cron_requires_secret(self) -> None:
        self.assertEqual(self.client.post("/cron/release-expired").status_code, 401)
        wrong = self.client.post("/cron/release-expired", headers={"Authorization": "Bearer nope"})
        self.assertEqual(wrong.status_code, 401)

        response = self.client.post(
            "/cron/release-expired", headers={"Authorization": f"Bearer {CRON_SECRET}"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"cancelled_orders": [], "reminded_orders": [], "failures": 0})


class SettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        load_settings.cache_clear()

    def tearDown(self) -> None:
        load_settings.cache_clear()

    def test_settings_from_environment(self) -> None:
        env = {
            "DATABASE_URL": "sqlite:///:memory:",
            "JWT_SECRET": "s3cret",
            "MP_WEBHOOK_SECRET": "hook",
            "RESERVATION_TTL_HOURS": "24",
            "CRON_SECRET": "cron",
        }
        with mock.patch.dict("os.environ", env, clear=True):
            settings = load_settings()

        self.assertEqual(settings.database_url, "sqlite:///:memory:")
        self.assertEqual(settings.auth.jwt_secret, "s3cret")
        self.assertEqual(settings.payments.webhook_secret, "hook")
        self.assertEqual(settings.reservations.ttl_hours, 24)
        self.assertEqual(settings.reservations.reminder_after_hours, 12)
        self.assertEqual(settings.cron_secret, "cron")


if __name__ == "__main__":
    unittest.main()
