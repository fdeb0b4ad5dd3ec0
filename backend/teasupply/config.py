# backend/teasupply/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/teasupply.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///teasupply.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Driver-level wait before a locked/unreachable store surfaces as a timeout
    STORAGE_TIMEOUT_SECONDS = _env_int("STORAGE_TIMEOUT_SECONDS", 10)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        ).split(",")
        if origin.strip()
    ]

    # Outbound mail (welcome mails for new suppliers)
    MAIL_HOST = os.environ.get("MAIL_HOST", "smtp.gmail.com")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USER = os.environ.get("MAIL_USER")
    MAIL_PASS = os.environ.get("MAIL_PASS")
    MAIL_FROM = os.environ.get("MAIL_FROM") or os.environ.get("MAIL_USER")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_TIMEOUT = _env_int("MAIL_TIMEOUT", 10)
    MAIL_ENABLED = _env_bool("MAIL_ENABLED", True)

    # Payment gateway
    PAYMENT_GATEWAY_PROVIDER = os.environ.get("PAYMENT_GATEWAY_PROVIDER", "mock")
    PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "https://sandbox.payhere.lk/pay/checkout")
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "LKR")

    # Supplier deactivation sweep (runs at startup, then every interval)
    SUPPLIER_SWEEP_ENABLED = _env_bool("SUPPLIER_SWEEP_ENABLED", False)
    SUPPLIER_SWEEP_INTERVAL_SECONDS = _env_int("SUPPLIER_SWEEP_INTERVAL_SECONDS", 24 * 60 * 60)


def engine_options_for(uri: str, timeout_seconds: int) -> dict:
    """Driver timeout options for the configured database URL."""
    if uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout_seconds}}
    if uri.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "connect_args": {
                "connect_timeout": timeout_seconds,
                "options": f"-c lock_timeout={timeout_seconds * 1000}",
            },
        }
    return {"pool_pre_ping": True}
