from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.orm import composite

from ..extensions import db
from clinic.time_utils import to_utc_z, utcnow

# Appointment lifecycle
STATUS_BOOKED = "booked"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

APPOINTMENT_STATUSES = (STATUS_BOOKED, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

# Patient-facing payment status
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"
PAYMENT_FAILED = "failed"

# How the patient pays
METHOD_ONLINE = "online"
METHOD_CLINIC = "clinic"
METHOD_NONE = "none"

BOOKING_METHODS = frozenset({METHOD_ONLINE, METHOD_CLINIC})

# Payout to the doctor, tracked separately from the patient-facing status
TRANSFER_PENDING = "pending"
TRANSFER_COMPLETED = "completed"
TRANSFER_FAILED = "failed"


@dataclass(frozen=True)
class AppointmentPayment:
    """
    Payment state owned by an Appointment.

    Frozen: the payment state machine replaces it wholesale with
    dataclasses.replace(), so no other object can hold a live reference to
    the appointment's payment fields.
    """
    amount_cents: int
    status: str = PAYMENT_PENDING
    method: str = METHOD_NONE
    external_charge_id: str | None = None
    receipt_url: str | None = None
    transfer_id: str | None = None
    transfer_status: str | None = None
    transfer_error: str | None = None

    def __composite_values__(self):
        return (
            self.amount_cents,
            self.status,
            self.method,
            self.external_charge_id,
            self.receipt_url,
            self.transfer_id,
            self.transfer_status,
            self.transfer_error,
        )

    def to_dict(self) -> dict:
        return {
            "amount_cents": self.amount_cents,
            "status": self.status,
            "method": self.method,
            "external_charge_id": self.external_charge_id,
            "receipt_url": self.receipt_url,
            "transfer_id": self.transfer_id,
            "transfer_status": self.transfer_status,
            "transfer_error": self.transfer_error,
        }


class Appointment(db.Model):
    """
    A booked slot between a patient and a doctor.

    SLOT UNIQUENESS: the partial unique index below allows one non-cancelled
    appointment per (doctor, date, time). The booking service checks first for
    a friendly error, the index settles concurrent bookings.

    payment_amount_cents is the doctor's fee at booking time and is never
    changed afterwards.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        db.Index(
            "uq_appointments_doctor_active_slot",
            "doctor_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        db.Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
        db.Index("ix_appointments_doctor_status", "doctor_id", "status"),
        db.CheckConstraint("payment_amount_cents > 0", name="ck_appointments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing reference, e.g. "APP-0007-4400-K3QZ"
    reference = db.Column(db.String(32), nullable=False, unique=True)

    patient_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    doctor_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    appointment_date = db.Column(db.Date, nullable=False)
    appointment_time = db.Column(db.String(5), nullable=False)  # "HH:MM"

    problem = db.Column(db.Text, nullable=False)
    teeth = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default=STATUS_BOOKED, index=True)

    payment_amount_cents = db.Column(db.Integer, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default=METHOD_NONE)
    payment_external_charge_id = db.Column(db.String(128), nullable=True, unique=True)
    payment_receipt_url = db.Column(db.String(512), nullable=True)
    payment_transfer_id = db.Column(db.String(128), nullable=True)
    payment_transfer_status = db.Column(db.String(16), nullable=True)
    payment_transfer_error = db.Column(db.String(255), nullable=True)

    payment = composite(
        AppointmentPayment,
        payment_amount_cents,
        payment_status,
        payment_method,
        payment_external_charge_id,
        payment_receipt_url,
        payment_transfer_id,
        payment_transfer_status,
        payment_transfer_error,
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    patient = db.relationship("Account", foreign_keys=[patient_id])
    doctor = db.relationship("Account", foreign_keys=[doctor_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} ref={self.reference} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "date": self.appointment_date.isoformat() if self.appointment_date else None,
            "time": self.appointment_time,
            "problem": self.problem,
            "teeth": list(self.teeth or []),
            "status": self.status,
            "payment": self.payment.to_dict(),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Treatment(db.Model):
    """Clinical record created exactly once, when an appointment completes."""
    __tablename__ = "treatments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, unique=True)
    doctor_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    treatment = db.Column(db.Text, nullable=False)
    teeth = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    treatment_date = db.Column(db.Date, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    appointment = db.relationship("Appointment", backref=db.backref("treatment", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "doctor_id": self.doctor_id,
            "patient_id": self.patient_id,
            "treatment": self.treatment,
            "teeth": list(self.teeth or []),
            "notes": self.notes,
            "date": self.treatment_date.isoformat(),
            "created_at": to_utc_z(self.created_at),
        }


class PaymentRecord(db.Model):
    """
    Standalone, auditable copy of an appointment's payment.

    IMMUTABLE: written once by the completion cascade from a snapshot of the
    appointment's payment value object; never updated.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.Index("ix_payment_records_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=False, unique=True)
    patient_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False)
    method = db.Column(db.String(16), nullable=False)
    transaction_id = db.Column(db.String(128), nullable=True)
    receipt_url = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    appointment = db.relationship("Appointment", backref=db.backref("payment_record", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "patient_id": self.patient_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "method": self.method,
            "transaction_id": self.transaction_id,
            "receipt_url": self.receipt_url,
            "created_at": to_utc_z(self.created_at),
        }
