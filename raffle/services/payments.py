from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

import requests

from ..config import PaymentSettings
from ..db import Database
from ..errors import ConflictError, NotFoundError, TransientError, ValidationError
from ..models import Product
from ..types import CheckoutIntent, OrderStatus, TicketStatus
from .inventory import InventoryStore
from .orders import OrderLedger

logger = logging.getLogger("raffle.payments")


@dataclass(frozen=True)
class CheckoutRequest:
    order_id: int
    product_id: int
    product_name: str
    numbers: Sequence[int]
    total: Decimal
    payer_email: Optional[str] = None


@dataclass(frozen=True)
class Preference:
    id: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentInfo:
    id: str
    status: str
    external_reference: Optional[str]


class PaymentProvider(Protocol):
    def create_preference(self, checkout: CheckoutRequest) -> Preference:
        ...

    def get_payment(self, payment_id: str) -> PaymentInfo:
        ...


class MercadoPagoClient:
    """Checkout preferences and payment lookups against the Mercado Pago REST API."""

    def __init__(self, settings: PaymentSettings, session: Optional[requests.Session] = None) -> None:
        if not settings.access_token:
            raise RuntimeError("MP_ACCESS_TOKEN is not configured.")
        self._settings = settings
        self._http = session or requests.Session()
        self._http.headers.update({"Authorization": f"Bearer {settings.access_token}"})

    def create_preference(self, checkout: CheckoutRequest) -> Preference:
        app_url = self._settings.app_url
        body = {
            "items": [
                {
                    "id": f"{checkout.product_id}-{checkout.order_id}",
                    "title": f"Raffle: {checkout.product_name} (order #{checkout.order_id})",
                    "description": "Numbers: " + ", ".join(str(n) for n in checkout.numbers),
                    "quantity": 1,
                    "currency_id": self._settings.currency_id,
                    "unit_price": float(checkout.total),
                }
            ],
            "back_urls": {
                "success": f"{app_url}/payment/success?order_id={checkout.order_id}",
                "failure": f"{app_url}/payment/failure?order_id={checkout.order_id}",
                "pending": f"{app_url}/payment/pending?order_id={checkout.order_id}",
            },
            "auto_return": "approved",
            "notification_url": f"{app_url}/payments/webhook?source_news=webhooks",
            "external_reference": str(checkout.order_id),
        }
        if checkout.payer_email:
            body["payer"] = {"email": checkout.payer_email}
        data = self._request("POST", "/checkout/preferences", json=body)
        try:
            return Preference(id=str(data["id"]), redirect_url=str(data["init_point"]))
        except KeyError as exc:
            raise ValueError(f"Preference response missing field: {exc}") from exc

    def get_payment(self, payment_id: str) -> PaymentInfo:
        data = self._request("GET", f"/v1/payments/{payment_id}")
        return PaymentInfo(
            id=str(data.get("id", payment_id)),
            status=str(data.get("status", "")),
            external_reference=data.get("external_reference"),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Mapping[str, Any]:
        url = f"{self._settings.api_base.rstrip('/')}{path}"
        try:
            resp = self._http.request(method, url, timeout=self._settings.timeout_seconds, **kwargs)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Payment provider call %s %s failed: %s", method, path, exc)
            raise TransientError("payment provider unavailable, try again") from exc
        data = resp.json()
        if not isinstance(data, Mapping):
            raise ValueError("Payment provider returned non-object payload")
        return data


class CheckoutService:
    def __init__(
        self,
        db: Database,
        inventory: InventoryStore,
        ledger: OrderLedger,
        provider: Optional[PaymentProvider],
    ) -> None:
        self._db = db
        self._inventory = inventory
        self._ledger = ledger
        self._provider = provider

    def create_checkout_intent(self, user_id: int, order_id: int, payer_email: Optional[str] = None) -> CheckoutIntent:
        if self._provider is None:
            raise TransientError("payments are not configured")

        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id, user_id)
            if order.status is not OrderStatus.PENDING:
                raise ConflictError(
                    f"order is {order.status.value}, checkout needs a pending order",
                    current_status=order.status.value,
                )
            numbers = self._inventory.numbers_for_order(session, order.id, TicketStatus.RESERVED)
            if not numbers:
                raise ValidationError("order has no reserved numbers", order_id=order_id)
            product = session.get(Product, order.product_id)
            if product is None:
                raise NotFoundError(f"product {order.product_id} not found")
            checkout = CheckoutRequest(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                numbers=tuple(numbers),
                total=order.total_amount,
                payer_email=payer_email,
            )

        preference = self._provider.create_preference(checkout)

        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id, user_id)
            if order.status is not OrderStatus.PENDING:
                raise ConflictError(
                    f"order became {order.status.value} while creating the checkout",
                    current_status=order.status.value,
                )
            order.append_payment_details(f"Preference ID: {preference.id}")

        logger.info("Checkout preference %s created for order %s", preference.id, order_id)
        return CheckoutIntent(order_id=order_id, preference_id=preference.id, redirect_url=preference.redirect_url)


def describe_payment(info: PaymentInfo, source: str, timestamp: str) -> str:
    return f"Payment ID: {info.id}, status: {info.status}, via {source} at {timestamp}"
