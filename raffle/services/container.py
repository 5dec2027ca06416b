from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..config import AppSettings
from ..db import Database
from .auth import AuthService, JwtAuthService
from .draws import DrawEngine
from .expiry import ReservationSweeper
from .inventory import InventoryStore
from .notifications import (
    CompositeNotificationSender,
    DatabaseNotificationSender,
    HttpNotificationSender,
    NotificationDispatcher,
    NotificationInbox,
    NotificationSender,
)
from .orders import OrderLedger
from .payments import CheckoutService, MercadoPagoClient, PaymentProvider
from .products import ProductRepository
from .reconciliation import PaymentReconciler
from .reservations import ReservationEngine


@dataclass
class RaffleServices:
    db: Database
    auth: AuthService
    inventory: InventoryStore
    ledger: OrderLedger
    products: ProductRepository
    reservations: ReservationEngine
    checkout: CheckoutService
    reconciler: PaymentReconciler
    draws: DrawEngine
    sweeper: ReservationSweeper
    inbox: NotificationInbox


def default_notification_sender(settings: AppSettings, db: Database) -> NotificationSender:
    senders = [DatabaseNotificationSender(db)]
    if settings.notifications.webhook_url:
        senders.append(
            HttpNotificationSender(settings.notifications.webhook_url, settings.notifications.timeout_seconds)
        )
    return CompositeNotificationSender(senders)


def default_payment_provider(settings: AppSettings) -> Optional[PaymentProvider]:
    if not settings.payments.access_token:
        return None
    return MercadoPagoClient(settings.payments)


def build_services(
    settings: AppSettings,
    db: Optional[Database] = None,
    payment_provider: Optional[PaymentProvider] = None,
    notification_sender: Optional[NotificationSender] = None,
    auth_service: Optional[AuthService] = None,
) -> RaffleServices:
    db = db or Database.from_url(settings.database_url)
    app_url = settings.payments.app_url
    provider = payment_provider if payment_provider is not None else default_payment_provider(settings)
    sender = notification_sender or default_notification_sender(settings, db)
    dispatcher = NotificationDispatcher(sender)

    inventory = InventoryStore(db)
    ledger = OrderLedger(db, inventory)
    return RaffleServices(
        db=db,
        auth=auth_service or JwtAuthService(settings.auth),
        inventory=inventory,
        ledger=ledger,
        products=ProductRepository(db, inventory),
        reservations=ReservationEngine(db, inventory, ledger),
        checkout=CheckoutService(db, inventory, ledger, provider),
        reconciler=PaymentReconciler(
            db, ledger, provider, dispatcher, settings.payments.webhook_secret, app_url
        ),
        draws=DrawEngine(db, dispatcher, app_url),
        sweeper=ReservationSweeper(db, inventory, ledger, dispatcher, settings.reservations, app_url),
        inbox=NotificationInbox(db),
    )
