# Overview: Flask API routes for appointments; parses input and returns JSON responses.

# backend/clinic/routes/appointments.py
"""
Appointment routes.

- Patients (account_type "user") book and cancel.
- Doctors see their schedule, move appointments through
  confirmed/completed/cancelled and read their earnings.
- Either party (or an admin) can read an appointment.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_subject_type
from ..errors import ClinicError, error_response
from ..models.accounts import ACCOUNT_DOCTOR, ACCOUNT_USER
from ..services import appointment_service, reporting_service
from ..services.processor import get_payment_processor

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@appointments_bp.post("/")
@require_auth
@require_subject_type(ACCOUNT_USER)
def book_route():
    """
    Book an appointment.

    Request body:
    {
        "doctor_id": 3, "date": "2026-11-02", "time": "09:30",
        "problem": "...", "teeth": [11, 12],
        "amount_cents": 5000, "payment_method": "online" | "clinic"
    }

    Returns 201 with the appointment and, for online payment, the processor's
    client_token to complete the charge client-side.
    """
    data = request.get_json(silent=True) or {}

    try:
        result = appointment_service.book_appointment(
            patient_id=g.auth.subject_id,
            doctor_id=data.get("doctor_id"),
            date=data.get("date"),
            time=data.get("time"),
            problem=data.get("problem"),
            teeth=data.get("teeth"),
            amount_cents=data.get("amount_cents"),
            method=data.get("payment_method"),
            processor=get_payment_processor(),
        )
        return jsonify(result.to_dict()), 201

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to book appointment")


@appointments_bp.get("/")
@require_auth
def list_mine_route():
    """Doctors get their schedule, patients their bookings. Optional ?status=."""
    appointments = appointment_service.list_appointments_for(g.auth, request.args.get("status"))
    return jsonify({"appointments": [a.to_dict() for a in appointments]}), 200


@appointments_bp.get("/<int:appointment_id>")
@require_auth
def get_route(appointment_id: int):
    try:
        appointment = appointment_service.get_appointment_for(appointment_id, g.auth)
        data = appointment.to_dict()
        if appointment.treatment is not None:
            data["treatment"] = appointment.treatment.to_dict()
        if appointment.payment_record is not None:
            data["payment_record"] = appointment.payment_record.to_dict()
        return jsonify({"appointment": data}), 200

    except ClinicError as e:
        return error_response(e)


@appointments_bp.get("/doctor/<int:doctor_id>")
@require_auth
def doctor_schedule_route(doctor_id: int):
    """A doctor's own schedule (admins may view any doctor's)."""
    if not g.auth.is_admin and g.auth.subject_id != doctor_id:
        return jsonify({"error": "forbidden", "message": "Not authorized to view this schedule"}), 403

    appointments = appointment_service.list_doctor_appointments(doctor_id, request.args.get("status"))
    return jsonify({"appointments": [a.to_dict() for a in appointments]}), 200


@appointments_bp.put("/<int:appointment_id>/status")
@require_auth
@require_subject_type(ACCOUNT_DOCTOR)
def mark_status_route(appointment_id: int):
    """
    Request body:
    {
        "status": "confirmed" | "completed" | "cancelled",
        "notes": "...",               # optional, stored on the treatment
        "payment_received": true      # optional, clinic payments settled at the desk
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        appointment = appointment_service.mark_status(
            appointment_id,
            data.get("status"),
            g.auth,
            notes=data.get("notes"),
            payment_received=data.get("payment_received") is True,
        )
        body = {"appointment": appointment.to_dict()}
        if appointment.treatment is not None:
            body["treatment"] = appointment.treatment.to_dict()
        return jsonify(body), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to update appointment status")


@appointments_bp.post("/<int:appointment_id>/cancel")
@require_auth
def cancel_route(appointment_id: int):
    try:
        appointment = appointment_service.cancel_appointment(appointment_id, g.auth)
        return jsonify({"appointment": appointment.to_dict()}), 200

    except ClinicError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to cancel appointment")


# =============================================================================
# DOCTOR EARNINGS
# =============================================================================

@appointments_bp.get("/earnings")
@require_auth
@require_subject_type(ACCOUNT_DOCTOR)
def earnings_route():
    """Query params: start, end (ISO dates), status (default completed)."""
    try:
        report = reporting_service.doctor_earnings(
            g.auth.subject_id,
            start=request.args.get("start"),
            end=request.args.get("end"),
            status=request.args.get("status"),
        )
        return jsonify(report), 200
    except ClinicError as e:
        return error_response(e)


@appointments_bp.get("/earnings-summary")
@require_auth
@require_subject_type(ACCOUNT_DOCTOR)
def earnings_summary_route():
    """Query params: period (daily|weekly|monthly|yearly) or start/end."""
    try:
        report = reporting_service.earnings_summary(
            g.auth.subject_id,
            request.args.get("period"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
        return jsonify(report), 200
    except ClinicError as e:
        return error_response(e)
