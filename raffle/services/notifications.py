from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import requests
from sqlalchemy import desc, select, update

from ..db import Database
from ..models import Notification

logger = logging.getLogger("raffle.notifications")


class NotificationSender(Protocol):
    def notify(self, user_id: int, message: str, context: Mapping[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class Notice:
    user_id: int
    message: str
    context: Dict[str, Any] = field(default_factory=dict)


def _numbers(numbers: Iterable[int]) -> str:
    return ", ".join(str(n) for n in numbers)


def payment_approved(user_id: int, product_name: str, order_id: int, numbers: Sequence[int], link: str) -> Notice:
    message = (
        f"Payment for raffle {product_name} (order #{order_id}) was approved. "
        f"Your numbers: {_numbers(numbers)}. Good luck!"
    )
    return Notice(user_id, message, {"kind": "payment_approved", "order_id": order_id, "link": link})


def payment_failed(user_id: int, product_name: str, order_id: int, link: str) -> Notice:
    message = (
        f"Payment for raffle {product_name} (order #{order_id}) could not be processed. "
        "Your numbers were released; you can select them again and retry."
    )
    return Notice(user_id, message, {"kind": "payment_failed", "order_id": order_id, "link": link})


def order_cancelled(user_id: int, product_name: str, order_id: int, link: str) -> Notice:
    message = (
        f"Order #{order_id} for raffle {product_name} was cancelled for lack of payment. "
        "The reserved numbers are available to other participants again."
    )
    return Notice(user_id, message, {"kind": "order_cancelled", "order_id": order_id, "link": link})


def payment_reminder(user_id: int, product_name: str, order_id: int, numbers: Sequence[int], link: str) -> Notice:
    message = (
        f"Payment for raffle {product_name} (order #{order_id}) is still pending. "
        f"Numbers {_numbers(numbers)} are reserved for you; finish the payment to keep them."
    )
    return Notice(user_id, message, {"kind": "payment_reminder", "order_id": order_id, "link": link})


def winner(user_id: int, product_name: str, order_id: Optional[int], winning_number: int, link: str) -> Notice:
    order_ref = f" (order #{order_id})" if order_id is not None else ""
    message = (
        f"Congratulations! You won the raffle {product_name}{order_ref} "
        f"with number {winning_number:02d}. We will contact you about the prize."
    )
    return Notice(
        user_id,
        message,
        {"kind": "winner", "order_id": order_id, "winning_number": winning_number, "link": link},
    )


class DatabaseNotificationSender:
    """Stores notifications for the in-app inbox, each in its own transaction."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def notify(self, user_id: int, message: str, context: Mapping[str, Any]) -> None:
        with self._db.session_scope() as session:
            session.add(Notification(user_id=user_id, message=message, link=context.get("link")))


class HttpNotificationSender:
    """Posts notices to an outbound messaging gateway (email/WhatsApp bridge)."""

    def __init__(self, url: str, timeout_seconds: int = 5, session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._timeout = timeout_seconds
        self._http = session or requests.Session()

    def notify(self, user_id: int, message: str, context: Mapping[str, Any]) -> None:
        payload = {"user_id": user_id, "message": message, "context": dict(context)}
        resp = self._http.post(self._url, json=payload, timeout=self._timeout)
        resp.raise_for_status()


class CompositeNotificationSender:
    def __init__(self, senders: Sequence[NotificationSender]) -> None:
        self._senders = list(senders)

    def notify(self, user_id: int, message: str, context: Mapping[str, Any]) -> None:
        errors: List[Exception] = []
        for sender in self._senders:
            try:
                sender.notify(user_id, message, context)
            except Exception as exc:
                errors.append(exc)
                logger.exception("Notification sender %s failed for user %s", type(sender).__name__, user_id)
        if errors and len(errors) == len(self._senders):
            raise errors[0]


class NotificationDispatcher:
    """Delivers notices after the producing transaction committed.

    Delivery failures are logged and never reach the caller.
    """

    def __init__(self, sender: NotificationSender) -> None:
        self._sender = sender

    def dispatch(self, notices: Iterable[Notice]) -> int:
        delivered = 0
        for notice in notices:
            try:
                self._sender.notify(notice.user_id, notice.message, notice.context)
                delivered += 1
            except Exception:
                logger.exception(
                    "Failed to deliver %s notification to user %s",
                    notice.context.get("kind", "generic"),
                    notice.user_id,
                )
        return delivered


class NotificationInbox:
    def __init__(self, db: Database) -> None:
        self._db = db

    def list_for_user(self, user_id: int, limit: int = 50) -> List[Dict[str, object]]:
        with self._db.session_scope() as session:
            rows = session.scalars(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(desc(Notification.created_at), desc(Notification.id))
                .limit(limit)
            ).all()
            return [row.to_dict() for row in rows]

    def mark_read(self, user_id: int, notification_ids: Optional[Sequence[int]] = None) -> int:
        with self._db.session_scope() as session:
            stmt = update(Notification).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
            if notification_ids is not None:
                stmt = stmt.where(Notification.id.in_(list(notification_ids)))
            result = session.execute(
                stmt.values(is_read=True).execution_options(synchronize_session=False)
            )
            return result.rowcount
