# backend/clinic/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/clinic.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///clinic.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]

    # Stripe (payment intents, Connect payouts, signed webhooks)
    PAYMENT_API_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    PAYMENT_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "whsec-dev")
    PAYMENT_WEBHOOK_TOLERANCE_SECONDS = _int_env("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", 300)
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")
    PAYMENT_ONBOARDING_REFRESH_URL = os.environ.get(
        "PAYMENT_ONBOARDING_REFRESH_URL", "http://localhost:5173/doctor/payouts/refresh"
    )
    PAYMENT_ONBOARDING_RETURN_URL = os.environ.get(
        "PAYMENT_ONBOARDING_RETURN_URL", "http://localhost:5173/doctor/payouts"
    )

    # Platform share of online appointment fees, in basis points (1000 = 10%)
    PLATFORM_FEE_BPS = _int_env("PLATFORM_FEE_BPS", 1000)

    # Outbound email via Resend; when RESEND_API_KEY is empty, mail is only logged
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
    EMAIL_SENDER = os.environ.get("EMAIL_SENDER", "no-reply@clinic.local")
    EMAIL_MAX_RETRIES = _int_env("EMAIL_MAX_RETRIES", 3)
    EMAIL_WORKERS = _int_env("EMAIL_WORKERS", 2)

    DEFAULT_LOW_STOCK_THRESHOLD = _int_env("DEFAULT_LOW_STOCK_THRESHOLD", 10)
    OTP_TTL_MINUTES = _int_env("OTP_TTL_MINUTES", 10)
