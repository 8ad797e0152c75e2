"""
Appointment Service - booking, status transitions and the completion cascade

WHY: Booking touches an external processor and a racy slot check; completion
writes three rows that must agree. Both are kept to one unit of work each.

BOOKING ORDER (nothing external happens before the cheap checks pass):
1. Validate input (date, time, teeth, amount, method).
2. Load the doctor; the amount must equal the doctor's configured fee.
3. Online payment requires a doctor with payouts enabled.
4. Slot check, insert, flush. The partial unique index on
   (doctor_id, appointment_date, appointment_time) settles concurrent bookings.
5. Open the charge (online only), store its id, commit.
A processor failure rolls the insert back, so no appointment exists without
its charge and no charge is requested for a slot that is taken.

KNOWN GAP: the charge is opened before the commit that stores its id. A
success callback delivered inside that window finds no appointment and is
acknowledged as ignored, so the processor does not resend it. The payment
then stays pending until a later callback for the same intent arrives
(charge.succeeded follows payment_intent.succeeded) or someone reconciles it
against the processor dashboard.

STATUS TRANSITIONS (doctor only):
    booked    -> confirmed | completed | cancelled
    confirmed -> completed | cancelled   (confirmed -> confirmed is a no-op)
    completed, cancelled: terminal, any further transition is a ConflictError

COMPLETION CASCADE:
status := completed, one Treatment, one PaymentRecord. The PaymentRecord is a
one-way snapshot of the appointment's payment value object (snapshot_payment)
and both rows are unique per appointment, so a cascade can never run twice.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, replace

from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    InvalidInputError,
    InvalidPaymentMethodError,
    NotFoundError,
    PayoutNotConfiguredError,
)
from ..extensions import db
from ..models import Appointment, AppointmentPayment, PaymentRecord, Treatment
from ..models.accounts import ACCOUNT_DOCTOR
from ..models.appointments import (
    BOOKING_METHODS,
    METHOD_CLINIC,
    METHOD_ONLINE,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    STATUS_BOOKED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    TRANSFER_PENDING,
)
from ..validation import MAX_PRICE_CENTS, coerce_positive_int
from clinic.time_utils import normalize_hhmm, parse_iso_date, utcnow
from .account_service import get_doctor
from .concurrency import run_with_retry
from .processor import PaymentProcessor
from .session_service import AuthContext

logger = logging.getLogger(__name__)

DEFAULT_TREATMENT_NOTES = "Treatment completed successfully"

# new status -> statuses it may be entered from
ALLOWED_TRANSITIONS = {
    STATUS_CONFIRMED: frozenset({STATUS_BOOKED}),
    STATUS_COMPLETED: frozenset({STATUS_BOOKED, STATUS_CONFIRMED}),
    STATUS_CANCELLED: frozenset({STATUS_BOOKED, STATUS_CONFIRMED}),
}

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class BookingResult:
    appointment: Appointment
    client_token: str | None = None

    def to_dict(self) -> dict:
        return {
            "appointment": self.appointment.to_dict(),
            "client_token": self.client_token,
        }


def generate_reference(doctor_id: int, appointment_date) -> str:
    """APP-XXXX-YYYY-ZZZZ: doctor id, date stamp, random suffix."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(4))
    return f"APP-{doctor_id % 10000:04d}-{appointment_date.toordinal() % 10000:04d}-{suffix}"


# =============================================================================
# VALIDATION
# =============================================================================

def _parse_booking_date(value):
    if not isinstance(value, str):
        raise InvalidInputError("date is required (YYYY-MM-DD)")
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise InvalidInputError("date must be an ISO date (YYYY-MM-DD)", {"date": value})
    if parsed < utcnow().date():
        raise InvalidInputError("Cannot book an appointment in the past", {"date": value})
    return parsed


def _parse_teeth(value) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidInputError("teeth must be a list of tooth numbers")
    teeth = []
    for tooth in value:
        if isinstance(tooth, bool) or not isinstance(tooth, int) or tooth < 0:
            raise InvalidInputError("teeth must be a list of tooth numbers", {"teeth": value})
        teeth.append(tooth)
    return teeth


def _load_appointment(appointment_id: int) -> Appointment:
    appointment = db.session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment not found", {"appointment_id": appointment_id})
    return appointment


def _slot_taken(doctor_id: int, appointment_date, appointment_time: str) -> bool:
    return db.session.query(Appointment.id).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == appointment_date,
        Appointment.appointment_time == appointment_time,
        Appointment.status != STATUS_CANCELLED,
    ).first() is not None


# =============================================================================
# BOOKING
# =============================================================================

def book_appointment(
    *,
    patient_id: int,
    doctor_id,
    date,
    time,
    problem,
    teeth=None,
    amount_cents,
    method,
    processor: PaymentProcessor,
) -> BookingResult:
    """
    Book a slot with a doctor.

    Returns:
        BookingResult(appointment, client_token). client_token is the
        processor's continuation token for online payment, None for clinic.

    Raises:
        InvalidInputError / InvalidPaymentMethodError: malformed request or fee mismatch
        NotFoundError: doctor does not exist
        PayoutNotConfiguredError: online payment to a doctor without payouts
        ConflictError: the slot is already booked
        ExternalServiceError: the processor could not open the charge
    """
    if not isinstance(method, str) or method not in BOOKING_METHODS:
        raise InvalidPaymentMethodError(method, BOOKING_METHODS)
    appointment_date = _parse_booking_date(date)
    appointment_time = normalize_hhmm(time)
    if appointment_time is None:
        raise InvalidInputError("time must be HH:MM (24h)", {"time": time})
    if not isinstance(problem, str) or not problem.strip():
        raise InvalidInputError("problem is required")
    tooth_list = _parse_teeth(teeth)
    amount = coerce_positive_int(amount_cents, "amount_cents", maximum=MAX_PRICE_CENTS)
    doctor_id = coerce_positive_int(doctor_id, "doctor_id")

    doctor = get_doctor(doctor_id)
    if not doctor.is_active:
        raise NotFoundError("Doctor not found", {"doctor_id": doctor_id})
    profile = doctor.doctor_profile

    if amount != profile.fee_cents:
        raise InvalidInputError(
            "Amount does not match the doctor's fee",
            {"amount_cents": amount, "fee_cents": profile.fee_cents},
        )

    if method == METHOD_ONLINE and not (profile.payout_account_id and profile.payout_enabled):
        raise PayoutNotConfiguredError(
            "Doctor has not completed payout setup; online payment is unavailable",
            {"doctor_id": doctor_id},
        )

    slot = {"doctor_id": doctor_id, "date": appointment_date.isoformat(), "time": appointment_time}
    if _slot_taken(doctor_id, appointment_date, appointment_time):
        raise ConflictError("This time slot is already booked", slot)

    appointment = Appointment(
        reference=generate_reference(doctor_id, appointment_date),
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        problem=problem.strip(),
        teeth=tooth_list,
        status=STATUS_BOOKED,
    )
    appointment.payment = AppointmentPayment(
        amount_cents=amount,
        status=PAYMENT_PENDING,
        method=method,
        # Only online fees are routed to the doctor through the processor
        transfer_status=TRANSFER_PENDING if method == METHOD_ONLINE else None,
    )

    try:
        db.session.add(appointment)
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("This time slot is already booked", slot)

    client_token = None
    if method == METHOD_ONLINE:
        try:
            charge = processor.open_charge(
                amount,
                profile.payout_account_id,
                {"appointment_id": appointment.id, "reference": appointment.reference},
            )
        except ExternalServiceError:
            db.session.rollback()
            raise
        except Exception as exc:
            db.session.rollback()
            logger.error("Opening charge for appointment booking failed: %s", exc)
            raise ExternalServiceError("Payment processor is unavailable")

        appointment.payment = replace(appointment.payment, external_charge_id=charge.charge_id)
        client_token = charge.client_token

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("This time slot is already booked", slot)

    logger.info("Booked appointment %s (%s payment)", appointment.reference, method)
    return BookingResult(appointment=appointment, client_token=client_token)


# =============================================================================
# READS
# =============================================================================

def _ordered(query):
    return query.order_by(
        Appointment.appointment_date.desc(),
        Appointment.appointment_time.desc(),
        Appointment.id.desc(),
    )


def list_doctor_appointments(doctor_id: int, status: str | None = None) -> list[Appointment]:
    query = db.session.query(Appointment).filter(Appointment.doctor_id == doctor_id)
    if status:
        query = query.filter(Appointment.status == status)
    return _ordered(query).all()


def list_appointments_for(auth: AuthContext, status: str | None = None) -> list[Appointment]:
    """Doctors see their schedule, admins everything, everyone else their own bookings."""
    if auth.subject_type == ACCOUNT_DOCTOR:
        return list_doctor_appointments(auth.subject_id, status)

    query = db.session.query(Appointment)
    if not auth.is_admin:
        query = query.filter(Appointment.patient_id == auth.subject_id)
    if status:
        query = query.filter(Appointment.status == status)
    return _ordered(query).all()


def get_appointment_for(appointment_id: int, auth: AuthContext) -> Appointment:
    appointment = _load_appointment(appointment_id)
    if not auth.is_admin and auth.subject_id not in (appointment.patient_id, appointment.doctor_id):
        raise ForbiddenError("Not authorized to view this appointment")
    return appointment


# =============================================================================
# TRANSITIONS
# =============================================================================

def snapshot_payment(appointment: Appointment) -> PaymentRecord:
    """One-way copy of the appointment's payment into a standalone ledger row."""
    payment = appointment.payment
    return PaymentRecord(
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        amount_cents=payment.amount_cents,
        status=payment.status,
        method=payment.method,
        transaction_id=payment.external_charge_id,
        receipt_url=payment.receipt_url,
    )


def _complete(appointment: Appointment, notes: str | None, payment_received: bool) -> None:
    appointment.status = STATUS_COMPLETED

    # Clinic payments are settled at the desk; the doctor records it on completion.
    if payment_received and appointment.payment.method == METHOD_CLINIC \
            and appointment.payment.status == PAYMENT_PENDING:
        appointment.payment = replace(appointment.payment, status=PAYMENT_PAID)

    db.session.add(Treatment(
        appointment_id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        treatment=appointment.problem,
        teeth=list(appointment.teeth or []),
        notes=notes or DEFAULT_TREATMENT_NOTES,
        treatment_date=appointment.appointment_date,
    ))
    db.session.add(snapshot_payment(appointment))


def mark_status(
    appointment_id: int,
    new_status: str,
    actor: AuthContext,
    *,
    notes: str | None = None,
    payment_received: bool = False,
) -> Appointment:
    """
    Move an appointment to confirmed, completed or cancelled.

    Raises:
        InvalidInputError: new_status is not a target status
        NotFoundError: no such appointment
        ForbiddenError: caller is not the appointment's doctor
        ConflictError: the transition is not allowed (including re-completion)
    """
    if new_status not in ALLOWED_TRANSITIONS:
        raise InvalidInputError(
            f"status must be one of {sorted(ALLOWED_TRANSITIONS)}",
            {"status": new_status},
        )

    def _op():
        appointment = _load_appointment(appointment_id)
        if appointment.doctor_id != actor.subject_id:
            raise ForbiddenError("Only the doctor can update appointment status")

        current = appointment.status
        if current == STATUS_CONFIRMED and new_status == STATUS_CONFIRMED:
            return appointment
        if current not in ALLOWED_TRANSITIONS[new_status]:
            raise ConflictError(
                f"Cannot change appointment from {current} to {new_status}",
                {"appointment_id": appointment.id, "status": current},
            )

        if new_status == STATUS_COMPLETED:
            _complete(appointment, notes, payment_received)
        else:
            appointment.status = new_status

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Appointment was already completed", {"appointment_id": appointment_id})

        logger.info("Appointment %s: %s -> %s", appointment.reference, current, new_status)
        return appointment

    return run_with_retry(_op)


def cancel_appointment(appointment_id: int, auth: AuthContext) -> Appointment:
    """Cancel on behalf of the patient or the doctor on the appointment."""
    def _op():
        appointment = _load_appointment(appointment_id)
        if auth.subject_id not in (appointment.patient_id, appointment.doctor_id):
            raise ForbiddenError("Not authorized to cancel this appointment")
        if appointment.is_terminal:
            raise ConflictError(
                f"Appointment is already {appointment.status}",
                {"appointment_id": appointment.id, "status": appointment.status},
            )
        appointment.status = STATUS_CANCELLED
        db.session.commit()
        return appointment

    return run_with_retry(_op)
