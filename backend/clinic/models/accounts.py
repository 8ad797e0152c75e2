from __future__ import annotations

from ..extensions import db
from clinic.time_utils import to_utc_z, utcnow

ACCOUNT_USER = "user"
ACCOUNT_DOCTOR = "doctor"
ACCOUNT_PHARMACIST = "pharmacist"
ACCOUNT_ADMIN = "admin"

ACCOUNT_TYPES = (ACCOUNT_USER, ACCOUNT_DOCTOR, ACCOUNT_PHARMACIST, ACCOUNT_ADMIN)


class Account(db.Model):
    """
    Login identity for every kind of clinic subject.

    account_type decides what the subject may do:
    - user: patient, books appointments
    - doctor: provider, owns a DoctorProfile (fee, payout account)
    - pharmacist: runs the pharmacy inventory and point of sale
    - admin: dashboard, reports and access management
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.Index("ix_accounts_type_active", "account_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_type = db.Column(db.String(16), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Password reset one-time code (hashed, short-lived)
    reset_otp_hash = db.Column(db.String(255), nullable=True)
    reset_otp_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    doctor_profile = db.relationship(
        "DoctorProfile",
        back_populates="account",
        uselist=False,
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Account id={self.id} type={self.account_type} email={self.email!r}>"

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "account_type": self.account_type,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if self.doctor_profile is not None:
            data["doctor"] = self.doctor_profile.to_dict()
        return data


class DoctorProfile(db.Model):
    """Provider-only attributes: consultation fee and payout account."""
    __tablename__ = "doctor_profiles"
    __table_args__ = (
        db.CheckConstraint("fee_cents > 0", name="ck_doctor_profiles_fee_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, unique=True)

    specialization = db.Column(db.String(128), nullable=False)
    fee_cents = db.Column(db.Integer, nullable=False)

    available_days = db.Column(db.JSON, nullable=True)  # e.g. ["Monday", "Wednesday"]
    available_from = db.Column(db.String(5), nullable=True)  # "09:00"
    available_to = db.Column(db.String(5), nullable=True)  # "17:00"

    # Payment processor connected account that receives transfers
    payout_account_id = db.Column(db.String(128), nullable=True, unique=True)
    payout_enabled = db.Column(db.Boolean, nullable=False, default=False)

    account = db.relationship("Account", back_populates="doctor_profile")

    def to_dict(self) -> dict:
        return {
            "specialization": self.specialization,
            "fee_cents": self.fee_cents,
            "available_days": list(self.available_days or []),
            "available_from": self.available_from,
            "available_to": self.available_to,
            "payout_account_id": self.payout_account_id,
            "payout_enabled": self.payout_enabled,
        }


class SessionToken(db.Model):
    """
    Opaque bearer session for an Account.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout, 2-hour idle timeout
    - Revocable on logout or when the account is deactivated
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_account_active", "account_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    account = db.relationship("Account", backref=db.backref("sessions", lazy=True))
