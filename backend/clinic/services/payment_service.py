"""
Payment Service - processor callbacks and doctor payout onboarding

STATE MACHINE (per appointment payment):
    status:           pending -> paid      (charge.succeeded)
                      pending -> failed    (charge.failed)
    transfer_status:  * -> completed       (transfer.completed)
                      * -> failed          (transfer.failed)

charge.succeeded also moves a booked appointment to confirmed. A later
charge.succeeded that carries a receipt url fills it in if it is still unset.

IDEMPOTENCE:
Processors retry and replay callbacks. Applying an event that is already
reflected in the row changes nothing and reports DUPLICATE. Events for
charges we do not know (the callback raced the booking commit, or concerns
an unrelated charge) are IGNORED, never errors. Nothing here touches the
completion cascade, so no replay can create a Treatment or PaymentRecord.

AUTHENTICITY:
handle_callback() verifies the signature before reading any row. A bad
signature raises SignatureInvalidError with the database untouched.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum

from ..errors import InvalidInputError
from ..extensions import db
from ..models import Appointment
from ..models.appointments import (
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    STATUS_BOOKED,
    STATUS_CONFIRMED,
    TRANSFER_COMPLETED,
    TRANSFER_FAILED,
)
from .account_service import get_doctor
from .concurrency import run_with_retry
from .processor import (
    EVENT_CHARGE_FAILED,
    EVENT_CHARGE_SUCCEEDED,
    EVENT_TRANSFER_COMPLETED,
    EVENT_TRANSFER_FAILED,
    PaymentProcessor,
    ProcessorEvent,
)

logger = logging.getLogger(__name__)


class EventOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


def _find_by_charge(charge_id: str | None) -> Appointment | None:
    if not charge_id:
        return None
    return db.session.query(Appointment).filter_by(payment_external_charge_id=charge_id).first()


# =============================================================================
# TRANSITIONS
# =============================================================================

def _charge_succeeded(appointment: Appointment, event: ProcessorEvent) -> EventOutcome:
    payment = appointment.payment
    if payment.status == PAYMENT_PAID:
        # payment_intent.succeeded and charge.succeeded both land here; only the latter has a receipt
        if event.receipt_url and not payment.receipt_url:
            appointment.payment = replace(payment, receipt_url=event.receipt_url)
            return EventOutcome.APPLIED
        return EventOutcome.DUPLICATE
    if payment.status != PAYMENT_PENDING:
        logger.warning("charge.succeeded for appointment %s in payment status %s; ignoring",
                       appointment.reference, payment.status)
        return EventOutcome.IGNORED

    appointment.payment = replace(
        payment,
        status=PAYMENT_PAID,
        receipt_url=event.receipt_url or payment.receipt_url,
    )
    if appointment.status == STATUS_BOOKED:
        appointment.status = STATUS_CONFIRMED
    return EventOutcome.APPLIED


def _charge_failed(appointment: Appointment, event: ProcessorEvent) -> EventOutcome:
    payment = appointment.payment
    if payment.status == PAYMENT_FAILED:
        return EventOutcome.DUPLICATE
    if payment.status != PAYMENT_PENDING:
        return EventOutcome.IGNORED

    appointment.payment = replace(payment, status=PAYMENT_FAILED)
    return EventOutcome.APPLIED


def _transfer_completed(appointment: Appointment, event: ProcessorEvent) -> EventOutcome:
    payment = appointment.payment
    if payment.transfer_status == TRANSFER_COMPLETED and payment.transfer_id == event.transfer_id:
        return EventOutcome.DUPLICATE

    appointment.payment = replace(
        payment,
        transfer_status=TRANSFER_COMPLETED,
        transfer_id=event.transfer_id or payment.transfer_id,
        transfer_error=None,
    )
    return EventOutcome.APPLIED


def _transfer_failed(appointment: Appointment, event: ProcessorEvent) -> EventOutcome:
    payment = appointment.payment
    reason = event.failure_reason or "Transfer failed"
    if payment.transfer_status == TRANSFER_FAILED and payment.transfer_error == reason:
        return EventOutcome.DUPLICATE

    appointment.payment = replace(
        payment,
        transfer_status=TRANSFER_FAILED,
        transfer_id=event.transfer_id or payment.transfer_id,
        transfer_error=reason,
    )
    return EventOutcome.APPLIED


_HANDLERS = {
    EVENT_CHARGE_SUCCEEDED: _charge_succeeded,
    EVENT_CHARGE_FAILED: _charge_failed,
    EVENT_TRANSFER_COMPLETED: _transfer_completed,
    EVENT_TRANSFER_FAILED: _transfer_failed,
}


def apply_event(event: ProcessorEvent) -> EventOutcome:
    """Apply one verified processor event to the matching appointment."""
    handler = _HANDLERS.get(event.type)
    if handler is None:
        logger.info("Ignoring processor event of type %s", event.type)
        return EventOutcome.IGNORED

    def _op():
        appointment = _find_by_charge(event.charge_id)
        if appointment is None:
            logger.info("No appointment for charge %s (%s); ignoring", event.charge_id, event.type)
            db.session.rollback()
            return EventOutcome.IGNORED

        outcome = handler(appointment, event)
        if outcome is EventOutcome.APPLIED:
            db.session.commit()
            logger.info("Applied %s to appointment %s", event.type, appointment.reference)
        else:
            db.session.rollback()
        return outcome

    return run_with_retry(_op)


def handle_callback(raw_payload: bytes, signature_header: str | None, processor: PaymentProcessor) -> EventOutcome:
    """
    Verify and apply a processor callback.

    Raises SignatureInvalidError before any database access when the payload
    is not authentic.
    """
    event = processor.verify_callback(raw_payload, signature_header)
    return apply_event(event)


# =============================================================================
# PAYOUT ONBOARDING
# =============================================================================

def setup_payout_account(doctor_id: int, processor: PaymentProcessor) -> dict:
    """
    Ensure the doctor has a payout account and return an onboarding link.

    The processor account is created once; later calls only issue a fresh
    onboarding link for it.
    """
    doctor = get_doctor(doctor_id)
    profile = doctor.doctor_profile

    if not profile.payout_account_id:
        profile.payout_account_id = processor.create_payout_account(doctor.email)
        profile.payout_enabled = False
        db.session.commit()
        logger.info("Created payout account for doctor %s", doctor.id)

    url = processor.create_onboarding_link(profile.payout_account_id)
    return {
        "payout_account_id": profile.payout_account_id,
        "payout_enabled": profile.payout_enabled,
        "onboarding_url": url,
    }


def refresh_payout_status(doctor_id: int, processor: PaymentProcessor) -> dict:
    """Ask the processor whether payouts are enabled and store the answer."""
    doctor = get_doctor(doctor_id)
    profile = doctor.doctor_profile
    if not profile.payout_account_id:
        raise InvalidInputError("Payout account has not been set up", {"doctor_id": doctor_id})

    enabled = processor.payouts_enabled(profile.payout_account_id)
    if profile.payout_enabled != enabled:
        profile.payout_enabled = enabled
        db.session.commit()

    return {
        "payout_account_id": profile.payout_account_id,
        "payout_enabled": profile.payout_enabled,
    }
