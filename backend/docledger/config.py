# backend/docledger/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///docledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Human-readable numbers: {PREFIX}-{YEAR}-{value:0{pad}d}
    SEQUENCE_PAD = int(os.environ.get("SEQUENCE_PAD", "5"))
    SEQUENCE_PREFIXES = {
        "invoice": "INV",
        "quote": "QUO",
        "visit": "VIS",
        "product": "PRD",
        "customer": "CUS",
    }

    # Low-stock alert recipients. Platform super admins are opt-in.
    LOW_STOCK_NOTIFY_ROLES = _env_list("LOW_STOCK_NOTIFY_ROLES", "admin,key_user")
    LOW_STOCK_NOTIFY_SUPER_ADMINS = _env_bool("LOW_STOCK_NOTIFY_SUPER_ADMINS", False)

    # Retry policy for lock/deadlock failures on sequence and stock writes
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))
