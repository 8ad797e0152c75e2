# Overview: Payment processor collaborator (Stripe): payment intents, Connect payouts and signed webhooks.

"""
Payment processor client.

The clinic core only needs a handful of processor capabilities, captured by
the PaymentProcessor protocol. StripePaymentProcessor implements it with the
stripe SDK; tests substitute a fake that implements the same protocol. The
processor instance is created once in create_app() and handed to services
explicitly (see get_payment_processor()).

Charges are Stripe PaymentIntents: Charge.charge_id is the PaymentIntent id,
and that is what an appointment stores as its external charge id. Online
fees are destination charges: the doctor's Connect account receives the
transfer and the platform keeps application_fee_amount.

WEBHOOKS:
    Header:  "Stripe-Signature: t=<unix seconds>,v1=<hex hmac>"
construct_event() verifies the header with stripe.WebhookSignature (HMAC over
"<t>.<raw body>", constant-time compare, timestamp tolerance) and maps the
Stripe event onto a processor-neutral ProcessorEvent:

    payment_intent.succeeded        -> charge.succeeded
    charge.succeeded                -> charge.succeeded  (carries the receipt url)
    payment_intent.payment_failed   -> charge.failed
    transfer.created                -> transfer.completed
    transfer.reversed               -> transfer.failed

Any other Stripe event keeps its own type and is ignored downstream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Protocol

import stripe
from flask import current_app

from ..errors import ExternalServiceError, SignatureInvalidError

logger = logging.getLogger(__name__)

EVENT_CHARGE_SUCCEEDED = "charge.succeeded"
EVENT_CHARGE_FAILED = "charge.failed"
EVENT_TRANSFER_COMPLETED = "transfer.completed"
EVENT_TRANSFER_FAILED = "transfer.failed"

STRIPE_PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
STRIPE_PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
STRIPE_CHARGE_SUCCEEDED = "charge.succeeded"
STRIPE_TRANSFER_CREATED = "transfer.created"
STRIPE_TRANSFER_REVERSED = "transfer.reversed"


@dataclass(frozen=True)
class Charge:
    charge_id: str
    client_token: str


@dataclass(frozen=True)
class ProcessorEvent:
    """
    A verified processor callback.

    charge_id is the PaymentIntent the event concerns; for transfer events it
    is the intent the transfer originated from.
    """
    type: str
    charge_id: str | None
    event_id: str | None = None
    transfer_id: str | None = None
    receipt_url: str | None = None
    failure_reason: str | None = None


class PaymentProcessor(Protocol):
    def open_charge(self, amount_cents: int, payee_account: str | None, metadata: dict) -> Charge:
        ...

    def verify_callback(self, raw_payload: bytes, signature_header: str | None) -> ProcessorEvent:
        ...

    def create_payout_account(self, email: str) -> str:
        ...

    def create_onboarding_link(self, account_id: str) -> str:
        ...

    def payouts_enabled(self, account_id: str) -> bool:
        ...


# =============================================================================
# WEBHOOK EVENTS
# =============================================================================

def parse_event(body: dict) -> ProcessorEvent:
    """Map a decoded Stripe event onto a ProcessorEvent."""
    stripe_type = body["type"]
    data = body.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = {}

    if stripe_type == STRIPE_PAYMENT_INTENT_SUCCEEDED:
        return ProcessorEvent(type=EVENT_CHARGE_SUCCEEDED, event_id=body.get("id"), charge_id=obj.get("id"))

    if stripe_type == STRIPE_CHARGE_SUCCEEDED:
        return ProcessorEvent(
            type=EVENT_CHARGE_SUCCEEDED,
            event_id=body.get("id"),
            charge_id=obj.get("payment_intent"),
            receipt_url=obj.get("receipt_url"),
        )

    if stripe_type == STRIPE_PAYMENT_INTENT_FAILED:
        error = obj.get("last_payment_error") or {}
        return ProcessorEvent(
            type=EVENT_CHARGE_FAILED,
            event_id=body.get("id"),
            charge_id=obj.get("id"),
            failure_reason=error.get("message") if isinstance(error, dict) else None,
        )

    if stripe_type == STRIPE_TRANSFER_CREATED:
        return ProcessorEvent(
            type=EVENT_TRANSFER_COMPLETED,
            event_id=body.get("id"),
            charge_id=obj.get("source_transaction"),
            transfer_id=obj.get("id"),
        )

    if stripe_type == STRIPE_TRANSFER_REVERSED:
        return ProcessorEvent(
            type=EVENT_TRANSFER_FAILED,
            event_id=body.get("id"),
            charge_id=obj.get("source_transaction"),
            transfer_id=obj.get("id"),
            failure_reason="Transfer reversed",
        )

    return ProcessorEvent(type=stripe_type, event_id=body.get("id"), charge_id=obj.get("id"))


def construct_event(
    raw_payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = 300,
) -> ProcessorEvent:
    """Verify a webhook delivery and decode it. Raises SignatureInvalidError."""
    if not secret:
        raise SignatureInvalidError("Webhook secret is not configured")
    if not signature_header:
        raise SignatureInvalidError("Missing signature header")

    try:
        payload = raw_payload.decode("utf-8")
    except UnicodeDecodeError:
        raise SignatureInvalidError("Callback body is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance_seconds)
    except stripe.SignatureVerificationError as exc:
        raise SignatureInvalidError("Signature verification failed", {"reason": exc.user_message})

    try:
        body = json.loads(payload)
    except json.JSONDecodeError:
        raise SignatureInvalidError("Callback body is not valid JSON")
    if not isinstance(body, dict) or not isinstance(body.get("type"), str):
        raise SignatureInvalidError("Callback body has no event type")

    return parse_event(body)


# =============================================================================
# STRIPE CLIENT
# =============================================================================

class StripePaymentProcessor:
    """PaymentProcessor backed by the Stripe API (PaymentIntents and Connect)."""

    def __init__(
        self,
        *,
        api_key: str,
        webhook_secret: str,
        currency: str = "usd",
        platform_fee_bps: int = 0,
        webhook_tolerance_seconds: int = 300,
        onboarding_refresh_url: str = "",
        onboarding_return_url: str = "",
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.platform_fee_bps = platform_fee_bps
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        self.onboarding_refresh_url = onboarding_refresh_url
        self.onboarding_return_url = onboarding_return_url

    @classmethod
    def from_config(cls, config) -> "StripePaymentProcessor":
        return cls(
            api_key=config["PAYMENT_API_KEY"],
            webhook_secret=config["PAYMENT_WEBHOOK_SECRET"],
            currency=config["PAYMENT_CURRENCY"],
            platform_fee_bps=config["PLATFORM_FEE_BPS"],
            webhook_tolerance_seconds=config["PAYMENT_WEBHOOK_TOLERANCE_SECONDS"],
            onboarding_refresh_url=config["PAYMENT_ONBOARDING_REFRESH_URL"],
            onboarding_return_url=config["PAYMENT_ONBOARDING_RETURN_URL"],
        )

    def _call(self, action: str, fn, *args, **params):
        try:
            return fn(*args, api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", action, exc)
            if exc.http_status is None:
                raise ExternalServiceError("Payment processor is unavailable")
            raise ExternalServiceError(
                "Payment processor rejected the request",
                {"status_code": exc.http_status, "code": exc.code},
            )

    def open_charge(self, amount_cents: int, payee_account: str | None, metadata: dict) -> Charge:
        params = {
            "amount": amount_cents,
            "currency": self.currency,
            "automatic_payment_methods": {"enabled": True},
            # Stripe metadata values are strings
            "metadata": {key: str(value) for key, value in metadata.items()},
        }
        if payee_account:
            params["transfer_data"] = {"destination": payee_account}
            fee = amount_cents * self.platform_fee_bps // 10_000
            if fee > 0:
                params["application_fee_amount"] = fee

        intent = self._call("create payment intent", stripe.PaymentIntent.create, **params)
        if not intent.id or not intent.client_secret:
            raise ExternalServiceError("Payment processor returned an incomplete payment intent")
        return Charge(charge_id=intent.id, client_token=intent.client_secret)

    def verify_callback(self, raw_payload: bytes, signature_header: str | None) -> ProcessorEvent:
        event = construct_event(
            raw_payload,
            signature_header,
            self.webhook_secret,
            tolerance_seconds=self.webhook_tolerance_seconds,
        )
        # Transfers point at the underlying charge (ch_...); appointments store the intent
        if event.type in (EVENT_TRANSFER_COMPLETED, EVENT_TRANSFER_FAILED) \
                and event.charge_id and not event.charge_id.startswith("pi_"):
            charge = self._call("retrieve charge", stripe.Charge.retrieve, event.charge_id)
            event = replace(event, charge_id=charge.payment_intent)
        return event

    def create_payout_account(self, email: str) -> str:
        account = self._call(
            "create connected account",
            stripe.Account.create,
            type="express",
            email=email,
            capabilities={"transfers": {"requested": True}},
        )
        if not account.id:
            raise ExternalServiceError("Payment processor returned no account id")
        return account.id

    def create_onboarding_link(self, account_id: str) -> str:
        link = self._call(
            "create account link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=self.onboarding_refresh_url,
            return_url=self.onboarding_return_url,
            type="account_onboarding",
        )
        if not link.url:
            raise ExternalServiceError("Payment processor returned no onboarding url")
        return link.url

    def payouts_enabled(self, account_id: str) -> bool:
        account = self._call("retrieve account", stripe.Account.retrieve, account_id)
        return bool(account.payouts_enabled)


def get_payment_processor() -> PaymentProcessor:
    """The processor bound to the running app (see create_app)."""
    return current_app.extensions["payment_processor"]
