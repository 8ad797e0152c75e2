# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

Every authenticated request resolves its bearer token into an AuthContext
(subject_id, subject_type). That is all the clinic core needs to know about
who is calling.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable on logout, password reset or account deactivation
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import Account, SessionToken
from clinic.time_utils import utcnow


# Configuration constants
SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, as seen by the services."""
    subject_id: int
    subject_type: str

    @property
    def is_admin(self) -> bool:
        return self.subject_type == "admin"


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(account_id: int) -> tuple[SessionToken, str]:
    """
    Create new session token for an account.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    account = db.session.get(Account, account_id)
    if not account:
        raise ValueError("Account not found")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        account_id=account.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> AuthContext | None:
    """
    Validate session token and return the caller's AuthContext.

    Returns None if:
    - Token is invalid, expired, or revoked
    - Account is deactivated (is_active=False)

    Updates last_used_at on successful validation (activity tracking).
    Always leaves the session committed, so callers start with a clean unit
    of work.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        db.session.commit()
        return None

    if session.expires_at < now:
        db.session.commit()
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        db.session.commit()
        return None

    account = session.account
    if not account or not account.is_active:
        _revoke(session, "Account deactivated")
        db.session.commit()
        return None

    session.last_used_at = now
    context = AuthContext(subject_id=account.id, subject_type=account.account_type)
    db.session.commit()
    return context


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke session token.

    Returns True if session was revoked, False if not found.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_all_account_sessions(
    account_id: int,
    reason: str = "Revoke all sessions",
    *,
    commit: bool = True,
    keep_token: str | None = None,
) -> int:
    """
    Revoke all active sessions for an account, except keep_token if given.

    WHY: Security response (password change or reset, deactivation). Forces
    re-authentication on all other devices.
    """
    query = db.session.query(SessionToken).filter_by(
        account_id=account_id,
        is_revoked=False
    )
    if keep_token:
        query = query.filter(SessionToken.token_hash != hash_token(keep_token))
    sessions = query.all()

    for session in sessions:
        _revoke(session, reason)

    if commit:
        db.session.commit()
    return len(sessions)


def cleanup_expired_sessions() -> int:
    """Delete expired or revoked sessions older than 30 days."""
    cutoff = utcnow() - timedelta(days=30)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < utcnow(),
            SessionToken.is_revoked.is_(True)
        ),
        SessionToken.created_at < cutoff
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
