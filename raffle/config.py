from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class FlaskSettings:
    secret_key: str = "raffle-dev-secret"
    debug: bool = True


@dataclass(frozen=True)
class AuthSettings:
    jwt_secret: str = "raffle-dev-jwt-secret"
    jwt_algorithm: str = "HS256"


@dataclass(frozen=True)
class PaymentSettings:
    api_base: str = "https://api.mercadopago.com"
    access_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    app_url: str = "http://localhost:5000"
    currency_id: str = "BRL"
    timeout_seconds: int = 10


@dataclass(frozen=True)
class ReservationSettings:
    ttl_hours: int = 48
    reminder_after_hours: int = 12
    reminder_until_hours: int = 36


@dataclass(frozen=True)
class NotificationSettings:
    webhook_url: Optional[str] = None
    timeout_seconds: int = 5


@dataclass(frozen=True)
class AppSettings:
    database_url: str
    flask: FlaskSettings = field(default_factory=FlaskSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    payments: PaymentSettings = field(default_factory=PaymentSettings)
    reservations: ReservationSettings = field(default_factory=ReservationSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    cron_secret: Optional[str] = None


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return int(value)


@lru_cache(maxsize=1)
def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()

    flask_settings = FlaskSettings(
        secret_key=os.getenv("FLASK_SECRET_KEY", "raffle-dev-secret"),
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
    )

    auth_settings = AuthSettings(
        jwt_secret=os.getenv("JWT_SECRET", "raffle-dev-jwt-secret"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
    )

    payment_settings = PaymentSettings(
        api_base=os.getenv("MP_API_BASE", "https://api.mercadopago.com"),
        access_token=os.getenv("MP_ACCESS_TOKEN"),
        webhook_secret=os.getenv("MP_WEBHOOK_SECRET"),
        app_url=os.getenv("APP_URL", "http://localhost:5000").rstrip("/"),
        currency_id=os.getenv("MP_CURRENCY_ID", "BRL"),
        timeout_seconds=_int_from_env("MP_TIMEOUT_SECONDS", 10),
    )

    reservation_settings = ReservationSettings(
        ttl_hours=_int_from_env("RESERVATION_TTL_HOURS", 48),
        reminder_after_hours=_int_from_env("REMINDER_AFTER_HOURS", 12),
        reminder_until_hours=_int_from_env("REMINDER_UNTIL_HOURS", 36),
    )

    notification_settings = NotificationSettings(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
        timeout_seconds=_int_from_env("NOTIFY_TIMEOUT_SECONDS", 5),
    )

    return AppSettings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///raffle.db"),
        flask=flask_settings,
        auth=auth_settings,
        payments=payment_settings,
        reservations=reservation_settings,
        notifications=notification_settings,
        cron_secret=os.getenv("CRON_SECRET"),
    )
