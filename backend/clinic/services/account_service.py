# Overview: Service-layer operations for accounts; encapsulates business logic and database work.

"""
Account Service

Patients ("user"), doctors, pharmacists and admins share one Account table;
doctors additionally own a DoctorProfile (fee, availability, payout account).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character required
- Password reset uses a six-digit one-time code, stored hashed, short-lived
- Resetting a password revokes every open session of the account; changing
  it revokes every session but the one that made the change
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InvalidInputError, NotFoundError, UnauthorizedError
from ..extensions import db
from ..models import Account, DoctorProfile
from ..models.accounts import ACCOUNT_DOCTOR, ACCOUNT_TYPES
from ..validation import (
    ACCOUNT_PROFILE_POLICY,
    DOCTOR_PROFILE_POLICY,
    enforce_rules_doctor_profile,
    validate_payload,
)
from clinic.time_utils import utcnow
from .notifications import KIND_OTP, KIND_PASSWORD_RESET_CONFIRMATION, KIND_WELCOME, NotificationSink
from .session_service import create_session, revoke_all_account_sessions

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises InvalidInputError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise InvalidInputError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise InvalidInputError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise InvalidInputError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise InvalidInputError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise InvalidInputError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (strength validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _normalize_email(email) -> str:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise InvalidInputError("A valid email is required")
    return email.strip().lower()


def _hash_otp(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFoundError("Account not found", {"account_id": account_id})
    return account


def get_doctor(doctor_id: int) -> Account:
    account = db.session.get(Account, doctor_id)
    if account is None or account.account_type != ACCOUNT_DOCTOR or account.doctor_profile is None:
        raise NotFoundError("Doctor not found", {"doctor_id": doctor_id})
    return account


def register_account(
    *,
    account_type: str,
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    doctor: dict | None = None,
    sink: NotificationSink | None = None,
) -> Account:
    """
    Create an account. Doctors must pass a `doctor` payload with at least
    specialization and fee_cents.

    Raises:
        InvalidInputError: unknown type, bad email, weak password, bad doctor fields
        ConflictError: email already registered
    """
    if account_type not in ACCOUNT_TYPES:
        raise InvalidInputError(f"account_type must be one of {list(ACCOUNT_TYPES)}")
    if not isinstance(name, str) or not name.strip():
        raise InvalidInputError("name is required")
    email = _normalize_email(email)

    profile_patch = None
    if account_type == ACCOUNT_DOCTOR:
        profile_patch = validate_payload(
            model=DoctorProfile,
            payload=doctor or {},
            policy=DOCTOR_PROFILE_POLICY,
            partial=False,
        )
        enforce_rules_doctor_profile(profile_patch)

    password_hash = hash_password(password)

    if db.session.query(Account.id).filter_by(email=email).first():
        raise ConflictError("Email already registered", {"email": email})

    account = Account(
        account_type=account_type,
        name=name.strip(),
        email=email,
        phone=(phone or "").strip() or None,
        password_hash=password_hash,
    )
    if profile_patch is not None:
        account.doctor_profile = DoctorProfile(**profile_patch)

    db.session.add(account)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered", {"email": email})

    if sink is not None:
        sink.notify(account.email, KIND_WELCOME, {"name": account.name, "account_type": account.account_type})
    return account


def authenticate(email: str, password: str) -> tuple[Account, str]:
    """
    Check credentials and open a session.

    Returns (account, plaintext_token). Raises UnauthorizedError on bad
    credentials or deactivated accounts, without saying which.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        raise UnauthorizedError("Invalid email or password")

    account = db.session.query(Account).filter_by(email=email.strip().lower()).first()
    if account is None or not account.is_active or not verify_password(password, account.password_hash):
        raise UnauthorizedError("Invalid email or password")

    _, token = create_session(account.id)
    return account, token


def update_profile(account_id: int, payload: dict) -> Account:
    """Update name/phone and, for doctors, the nested `doctor` fields."""
    payload = dict(payload or {})
    doctor_payload = payload.pop("doctor", None)

    account = get_account(account_id)
    patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_PROFILE_POLICY, partial=True)

    profile_patch = None
    if doctor_payload is not None:
        if account.doctor_profile is None:
            raise InvalidInputError("Only doctors have doctor profile fields")
        profile_patch = validate_payload(
            model=DoctorProfile,
            payload=doctor_payload,
            policy=DOCTOR_PROFILE_POLICY,
            partial=True,
        )
        enforce_rules_doctor_profile(profile_patch)

    for key, value in patch.items():
        setattr(account, key, value)
    for key, value in (profile_patch or {}).items():
        setattr(account.doctor_profile, key, value)

    db.session.commit()
    return account


def send_password_otp(email: str, sink: NotificationSink | None) -> None:
    """
    Issue a one-time reset code and send it by email.

    Unknown emails are accepted silently so the endpoint does not reveal
    which addresses are registered.
    """
    account = db.session.query(Account).filter_by(email=_normalize_email(email)).first()
    if account is None or not account.is_active:
        return

    ttl = current_app.config["OTP_TTL_MINUTES"]
    code = f"{secrets.randbelow(1_000_000):06d}"
    account.reset_otp_hash = _hash_otp(code)
    account.reset_otp_expires_at = utcnow() + timedelta(minutes=ttl)
    db.session.commit()

    if sink is not None:
        sink.notify(account.email, KIND_OTP, {"name": account.name, "otp": code, "ttl_minutes": ttl})


def reset_password_with_otp(email: str, otp: str, new_password: str, sink: NotificationSink | None) -> Account:
    account = db.session.query(Account).filter_by(email=_normalize_email(email)).first()
    if (
        account is None
        or not account.reset_otp_hash
        or not isinstance(otp, str)
        or account.reset_otp_expires_at is None
        or account.reset_otp_expires_at < utcnow()
        or not hmac.compare_digest(account.reset_otp_hash, _hash_otp(otp.strip()))
    ):
        raise InvalidInputError("Invalid or expired code")

    account.password_hash = hash_password(new_password)
    account.reset_otp_hash = None
    account.reset_otp_expires_at = None
    revoke_all_account_sessions(account.id, "Password reset", commit=False)
    db.session.commit()

    if sink is not None:
        sink.notify(account.email, KIND_PASSWORD_RESET_CONFIRMATION, {"name": account.name})
    return account


def change_password(
    account_id: int,
    old_password: str,
    new_password: str,
    *,
    current_token: str | None = None,
    sink: NotificationSink | None = None,
) -> Account:
    """
    Authenticated password change.

    The old password must match; every other session of the account is
    revoked, the one making the request (current_token) stays open.
    """
    account = get_account(account_id)
    if not isinstance(old_password, str) or not verify_password(old_password, account.password_hash):
        raise InvalidInputError("Old password is incorrect")
    if isinstance(new_password, str) and verify_password(new_password, account.password_hash):
        raise InvalidInputError("New password must differ from the old password")

    account.password_hash = hash_password(new_password)
    revoke_all_account_sessions(account.id, "Password changed", commit=False, keep_token=current_token)
    db.session.commit()

    if sink is not None:
        sink.notify(account.email, KIND_PASSWORD_RESET_CONFIRMATION, {"name": account.name})
    return account


def set_account_active(account_id: int, is_active: bool) -> Account:
    if not isinstance(is_active, bool):
        raise InvalidInputError("is_active must be a boolean")
    account = get_account(account_id)
    account.is_active = is_active
    if not is_active:
        revoke_all_account_sessions(account.id, "Account deactivated", commit=False)
    db.session.commit()
    return account


def list_accounts(account_type: str | None = None) -> list[Account]:
    query = db.session.query(Account)
    if account_type is not None:
        if account_type not in ACCOUNT_TYPES:
            raise InvalidInputError(f"account_type must be one of {list(ACCOUNT_TYPES)}")
        query = query.filter(Account.account_type == account_type)
    return query.order_by(Account.created_at.desc(), Account.id.desc()).all()


def list_doctors() -> list[Account]:
    return (
        db.session.query(Account)
        .filter(Account.account_type == ACCOUNT_DOCTOR, Account.is_active.is_(True))
        .order_by(Account.name.asc())
        .all()
    )
