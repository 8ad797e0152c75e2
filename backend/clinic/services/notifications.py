# Overview: Outbound notification sink (email via Resend) used by account flows.

"""
Notification delivery.

Services call sink.notify(recipient, kind, params) and move on: delivery,
retries and failures are the sink's business, never the caller's. The email
sink hands each message to its own worker pool, so notify() returns before
anything is sent. A failed delivery is logged, not raised.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

import resend
from flask import current_app

logger = logging.getLogger(__name__)

KIND_WELCOME = "welcome"
KIND_OTP = "otp"
KIND_PASSWORD_RESET_CONFIRMATION = "password-reset-confirmation"

NOTIFICATION_KINDS = frozenset({KIND_WELCOME, KIND_OTP, KIND_PASSWORD_RESET_CONFIRMATION})


class NotificationSink(Protocol):
    def notify(self, recipient: str, kind: str, params: dict) -> None:
        ...


def render(kind: str, params: dict) -> tuple[str, str]:
    """Return (subject, text body) for a notification kind."""
    name = params.get("name") or "there"
    if kind == KIND_WELCOME:
        return (
            "Welcome to the clinic",
            f"Hi {name},\n\nYour {params.get('account_type', 'user')} account has been created.",
        )
    if kind == KIND_OTP:
        return (
            "Your password reset code",
            f"Hi {name},\n\nYour one-time code is {params['otp']}. "
            f"It expires in {params.get('ttl_minutes', 10)} minutes.",
        )
    if kind == KIND_PASSWORD_RESET_CONFIRMATION:
        return (
            "Your password was changed",
            f"Hi {name},\n\nYour password was reset. If this was not you, contact the clinic.",
        )
    raise ValueError(f"Unknown notification kind: {kind}")


class LoggingSink:
    """Development sink: writes notifications to the log instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str, dict]] = []

    def notify(self, recipient: str, kind: str, params: dict) -> None:
        subject, _ = render(kind, params)
        self.sent.append((recipient, kind, dict(params)))
        logger.info("Notification %s to %s: %s", kind, recipient, subject)


class ResendEmailSink:
    """Sends rendered mail through Resend on a background pool, with linear-backoff retries."""

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_workers: int = 2,
    ):
        resend.api_key = api_key
        self.sender = sender
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="clinic-email")

    @classmethod
    def from_config(cls, config) -> "ResendEmailSink":
        return cls(
            api_key=config["RESEND_API_KEY"],
            sender=config["EMAIL_SENDER"],
            max_retries=config["EMAIL_MAX_RETRIES"],
            max_workers=config["EMAIL_WORKERS"],
        )

    def notify(self, recipient: str, kind: str, params: dict) -> None:
        if not recipient:
            logger.warning("Dropping %s notification with no recipient", kind)
            return

        subject, body = render(kind, params)
        message = {"from": self.sender, "to": [recipient], "subject": subject, "text": body}
        self._executor.submit(self._deliver, recipient, kind, message)

    def _deliver(self, recipient: str, kind: str, message: dict) -> None:
        for attempt in range(self.max_retries + 1):
            try:
                response = resend.Emails.send(message)
                logger.info("Email %s sent to %s: %s", kind, recipient, response)
                return
            except Exception as exc:
                # Runs on a worker thread; there is no caller to raise to
                if attempt >= self.max_retries:
                    logger.error("Failed to send %s email to %s after %s attempts: %s",
                                 kind, recipient, attempt + 1, exc)
                    return
                logger.warning("Retry attempt %s for %s email to %s", attempt + 1, kind, recipient)
                time.sleep(self.retry_delay * (attempt + 1))

    def close(self, wait: bool = True) -> None:
        """Stop accepting mail; with wait=True, block until queued mail is delivered or given up."""
        self._executor.shutdown(wait=wait)


def build_sink(config) -> NotificationSink:
    if config.get("RESEND_API_KEY"):
        return ResendEmailSink.from_config(config)
    return LoggingSink()


def get_notification_sink() -> NotificationSink:
    return current_app.extensions["notification_sink"]
