# backend/retailops/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retailops.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )

    # Bearer tokens are signed with SECRET_KEY; 0 disables expiry
    TOKEN_MAX_AGE_SECONDS = int(os.environ.get("TOKEN_MAX_AGE_SECONDS", str(12 * 60 * 60)))

    # Calendar windows for reports are resolved in this timezone
    REPORT_TIMEZONE = os.environ.get("REPORT_TIMEZONE", "UTC")

    # Daily sales report guard rails
    DAILY_REPORT_MAX_DAYS_PAST = int(os.environ.get("DAILY_REPORT_MAX_DAYS_PAST", "365"))
    DAILY_REPORT_MAX_DAYS_FUTURE = int(os.environ.get("DAILY_REPORT_MAX_DAYS_FUTURE", "730"))
    DAILY_REPORT_DEFAULT_LIMIT = 1000
    DAILY_REPORT_MAX_LIMIT = 1000

    TICKET_MAX_ATTEMPTS = int(os.environ.get("TICKET_MAX_ATTEMPTS", "5"))

    # Outbound customer notifications (WhatsApp gateway + email relay)
    NOTIFICATIONS_ENABLED = _env_bool("NOTIFICATIONS_ENABLED", False)
    NOTIFY_WHATSAPP_URL = os.environ.get("NOTIFY_WHATSAPP_URL")
    NOTIFY_WHATSAPP_TOKEN = os.environ.get("NOTIFY_WHATSAPP_TOKEN")
    NOTIFY_WHATSAPP_FROM = os.environ.get("NOTIFY_WHATSAPP_FROM")
    NOTIFY_EMAIL_URL = os.environ.get("NOTIFY_EMAIL_URL")
    NOTIFY_EMAIL_API_KEY = os.environ.get("NOTIFY_EMAIL_API_KEY")
    NOTIFY_EMAIL_FROM = os.environ.get("NOTIFY_EMAIL_FROM", "no-reply@retailops.local")
    NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "10"))
    NOTIFY_MAX_ATTEMPTS = int(os.environ.get("NOTIFY_MAX_ATTEMPTS", "2"))
    NOTIFY_MAX_WORKERS = int(os.environ.get("NOTIFY_MAX_WORKERS", "4"))
    NOTIFY_RESPONSE_WAIT_SECONDS = float(os.environ.get("NOTIFY_RESPONSE_WAIT_SECONDS", "5"))
    STORE_DISPLAY_NAME = os.environ.get("STORE_DISPLAY_NAME", "Laptop Store")
    STORE_CONTACT_PHONE = os.environ.get("STORE_CONTACT_PHONE", "+91 98765 43210")


@dataclass(frozen=True)
class NotificationConfig:
    """
    Immutable notification settings, built once in create_app() and handed
    to the NotificationDispatcher. Business code never reads os.environ.
    """
    enabled: bool = False
    whatsapp_url: str | None = None
    whatsapp_token: str | None = None
    whatsapp_from: str | None = None
    email_url: str | None = None
    email_api_key: str | None = None
    email_from: str = "no-reply@retailops.local"
    timeout_seconds: float = 10.0
    max_attempts: int = 2
    max_workers: int = 4
    response_wait_seconds: float = 5.0
    store_display_name: str = "Laptop Store"
    store_contact_phone: str = ""

    @classmethod
    def from_mapping(cls, config: Mapping) -> "NotificationConfig":
        return cls(
            enabled=bool(config.get("NOTIFICATIONS_ENABLED", False)),
            whatsapp_url=config.get("NOTIFY_WHATSAPP_URL"),
            whatsapp_token=config.get("NOTIFY_WHATSAPP_TOKEN"),
            whatsapp_from=config.get("NOTIFY_WHATSAPP_FROM"),
            email_url=config.get("NOTIFY_EMAIL_URL"),
            email_api_key=config.get("NOTIFY_EMAIL_API_KEY"),
            email_from=config.get("NOTIFY_EMAIL_FROM") or "no-reply@retailops.local",
            timeout_seconds=float(config.get("NOTIFY_TIMEOUT_SECONDS", 10)),
            max_attempts=max(1, int(config.get("NOTIFY_MAX_ATTEMPTS", 2))),
            max_workers=max(1, int(config.get("NOTIFY_MAX_WORKERS", 4))),
            response_wait_seconds=float(config.get("NOTIFY_RESPONSE_WAIT_SECONDS", 5)),
            store_display_name=config.get("STORE_DISPLAY_NAME") or "Laptop Store",
            store_contact_phone=config.get("STORE_CONTACT_PHONE") or "",
        )
