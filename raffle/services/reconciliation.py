from __future__ import annotations

import datetime as dt
import hashlib
import hmac
import json
import logging
from typing import Any, List, Mapping, Optional, Tuple, Union

from ..db import Database
from ..errors import ConflictError, IntegrityError, NotFoundError, TransientError, ValidationError
from ..models import Order, Product
from ..types import (
    PROVIDER_STATUS_MAP,
    OrderStatus,
    TransitionResult,
    map_provider_status,
    normalize_provider_status,
)
from . import notifications
from .notifications import Notice, NotificationDispatcher
from .orders import OrderLedger
from .payments import PaymentInfo, PaymentProvider, describe_payment

logger = logging.getLogger("raffle.reconciliation")


def parse_signature_header(header: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split an `x-signature` header of the form `ts=...,v1=...` into (ts, v1)."""
    if not header:
        return None, None
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.partition("=")
        if sep and key.strip() and value.strip():
            parts[key.strip()] = value.strip()
    return parts.get("ts"), parts.get("v1")


def build_manifest(event_id: str, request_id: Optional[str], timestamp: str) -> str:
    manifest = f"id:{event_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{timestamp};"
    return manifest


def sign_manifest(manifest: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    signature: Optional[str],
    request_id: Optional[str],
    event_id: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str],
) -> bool:
    """Check a gateway HMAC-SHA256 signature in constant time. Pure; no I/O."""
    if not (signature and event_id and timestamp and secret):
        return False
    expected = sign_manifest(build_manifest(str(event_id), request_id, str(timestamp)), secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8"))


def _event_id(body: Mapping[str, Any], query: Mapping[str, str]) -> Optional[str]:
    data = body.get("data") if isinstance(body, Mapping) else None
    if isinstance(data, Mapping) and data.get("id") is not None:
        return str(data["id"])
    return query.get("data.id") or None


def _now_iso() -> str:
    return dt.datetime.utcnow().replace(microsecond=0).isoformat() + "Z"


class PaymentReconciler:
    """Applies authoritative payment statuses to orders and their tickets."""

    def __init__(
        self,
        db: Database,
        ledger: OrderLedger,
        provider: Optional[PaymentProvider],
        dispatcher: NotificationDispatcher,
        webhook_secret: Optional[str],
        app_url: str = "",
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._provider = provider
        self._dispatcher = dispatcher
        self._secret = webhook_secret
        self._app_url = app_url

    def _require_provider(self) -> PaymentProvider:
        if self._provider is None:
            raise TransientError("payments are not configured")
        return self._provider

    def handle_payment_callback(
        self,
        headers: Mapping[str, str],
        raw_body: Union[bytes, str],
        query: Optional[Mapping[str, str]] = None,
    ) -> Optional[TransitionResult]:
        query = query or {}
        if isinstance(raw_body, bytes):
            raw_body = raw_body.decode("utf-8", errors="replace")
        try:
            body = json.loads(raw_body) if raw_body else {}
        except ValueError:
            body = None

        event_id = _event_id(body, query) if isinstance(body, Mapping) else None
        ts, v1 = parse_signature_header(headers.get("x-signature"))
        if not verify_signature(v1, headers.get("x-request-id"), event_id, ts, self._secret):
            logger.warning(
                "Rejected payment callback with invalid signature (event=%s, request_id=%s)",
                event_id, headers.get("x-request-id"),
            )
            raise IntegrityError("invalid signature")

        if not event_id:
            logger.info("Signed payment callback without payment id; nothing to do")
            return None

        info = self._require_provider().get_payment(event_id)
        order_id = self._order_id_from_reference(info)
        return self.apply_payment(order_id, info, source="webhook")

    def finalize_order_as_user(self, user_id: int, order_id: int, payment_id: Optional[str]) -> TransitionResult:
        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id, user_id)
            status = order.status
        if status is OrderStatus.COMPLETED:
            return TransitionResult(order_id, status, status, applied=False)
        if status is not OrderStatus.PENDING:
            raise ConflictError(
                f"order is {status.value} and cannot be finalized",
                current_status=status.value,
            )
        if not payment_id:
            raise ValidationError("payment_id is required to finalize an order")

        info = self._require_provider().get_payment(str(payment_id))
        if self._order_id_from_reference(info) != order_id:
            logger.warning(
                "User %s tried to finalize order %s with payment %s of another order",
                user_id, order_id, info.id,
            )
            raise ValidationError("payment does not belong to this order", payment_id=info.id)
        return self.apply_payment(order_id, info, source="user finalize", user_id=user_id)

    def apply_payment(
        self,
        order_id: int,
        info: PaymentInfo,
        source: str,
        user_id: Optional[int] = None,
    ) -> TransitionResult:
        normalized = normalize_provider_status(info.status)
        target = map_provider_status(normalized)
        notices: List[Notice] = []
        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id, user_id)
            previous = order.status
            if target is None:
                if normalized not in PROVIDER_STATUS_MAP:
                    logger.warning("Unknown payment status %r for order %s", info.status, order_id)
                if previous is OrderStatus.PENDING:
                    order.append_payment_details(describe_payment(info, source, _now_iso()))
                return TransitionResult(order_id, previous, previous, applied=False)

            result = self._ledger.transition(session, order, target, describe_payment(info, source, _now_iso()))
            if result.applied:
                notices.extend(self._notices_for(session, order, result.status))

        self._dispatcher.dispatch(notices)
        return result

    def apply_admin_status(self, order_id: int, target: OrderStatus, admin_id: int) -> TransitionResult:
        notices: List[Notice] = []
        with self._db.session_scope() as session:
            order = self._ledger.lock_or_404(session, order_id)
            note = f"Admin override by user {admin_id}: {target.value} at {_now_iso()}"
            result = self._ledger.transition(session, order, target, note)
            if result.applied:
                notices.extend(self._notices_for(session, order, result.status))
        self._dispatcher.dispatch(notices)
        return result

    def resend_payment_notice(self, order_id: int) -> bool:
        """Send the payment-approved notice of a completed order again, listing its sold numbers."""
        with self._db.session_scope() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError(f"order {order_id} not found", order_id=order_id)
            if order.status is not OrderStatus.COMPLETED:
                raise ConflictError(
                    f"payment notices are only sent for completed orders (status {order.status.value})",
                    current_status=order.status.value,
                )
            notices = self._notices_for(session, order, OrderStatus.COMPLETED)
        return self._dispatcher.dispatch(notices) == 1

    def _notices_for(self, session, order: Order, status: OrderStatus) -> List[Notice]:
        product = session.get(Product, order.product_id)
        product_name = product.name if product else f"#{order.product_id}"
        product_link = f"{self._app_url}/products/{order.product_id}"
        if status is OrderStatus.COMPLETED:
            numbers = self._ledger.sold_numbers(session, order.id)
            link = f"{self._app_url}/my-numbers"
            return [notifications.payment_approved(order.user_id, product_name, order.id, numbers, link)]
        if status is OrderStatus.FAILED:
            return [notifications.payment_failed(order.user_id, product_name, order.id, product_link)]
        if status is OrderStatus.CANCELLED:
            return [notifications.order_cancelled(order.user_id, product_name, order.id, product_link)]
        return []

    @staticmethod
    def _order_id_from_reference(info: PaymentInfo) -> int:
        try:
            order_id = int(str(info.external_reference))
        except (TypeError, ValueError):
            order_id = 0
        if order_id <= 0:
            raise ValidationError(
                "payment carries no valid order reference",
                payment_id=info.id,
                external_reference=info.external_reference,
            )
        return order_id
