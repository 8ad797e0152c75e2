"""
Pytest fixtures for clinic backend tests.

Provides an app bound to in-memory SQLite, a per-test table wipe, account /
doctor / item factories, and fakes for the two outbound collaborators
(payment processor and notification sink).
"""

import hashlib
import hmac
import json
import time

import bcrypt
import pytest

from clinic import create_app
from clinic.errors import ExternalServiceError
from clinic.extensions import db
from clinic.models import Account, DoctorProfile
from clinic.services import inventory_service
from clinic.services.processor import Charge, construct_event
from clinic.services.session_service import create_session

WEBHOOK_SECRET = "whsec_test_secret"
TEST_PASSWORD = "Password123!"


def build_signature_header(secret: str, raw_payload: bytes, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for a raw webhook body."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode("utf-8") + raw_payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


class FakePaymentProcessor:
    """In-memory PaymentProcessor; signs and verifies callbacks like the real one."""

    def __init__(self, secret: str = WEBHOOK_SECRET):
        self.secret = secret
        self.reset()

    def reset(self):
        self.charges = []
        self.fail_next_charge = False
        self.payout_accounts = []
        self.enabled_accounts = set()

    def open_charge(self, amount_cents, payee_account, metadata):
        if self.fail_next_charge:
            self.fail_next_charge = False
            raise ExternalServiceError("Payment processor is unavailable")
        charge_id = f"pi_test_{len(self.charges) + 1:04d}"
        self.charges.append({
            "id": charge_id,
            "amount_cents": amount_cents,
            "payee_account": payee_account,
            "metadata": dict(metadata),
        })
        return Charge(charge_id=charge_id, client_token=f"{charge_id}_secret")

    def verify_callback(self, raw_payload, signature_header):
        return construct_event(raw_payload, signature_header, self.secret)

    def create_payout_account(self, email):
        account_id = f"acct_test_{len(self.payout_accounts) + 1:04d}"
        self.payout_accounts.append((account_id, email))
        return account_id

    def create_onboarding_link(self, account_id):
        return f"https://payments.test/onboarding/{account_id}"

    def payouts_enabled(self, account_id):
        return account_id in self.enabled_accounts

    def signed_event(self, event_type, obj, *, timestamp=None):
        """Return (raw_body, signature_header) for a Stripe event wrapping obj."""
        body = {"id": f"evt_{int(time.time() * 1000)}", "type": event_type, "data": {"object": obj}}
        raw = json.dumps(body).encode("utf-8")
        return raw, build_signature_header(self.secret, raw, timestamp)


class RecordingNotificationSink:
    def __init__(self):
        self.sent = []

    def notify(self, recipient, kind, params):
        self.sent.append((recipient, kind, dict(params)))

    def last(self, kind):
        for recipient, sent_kind, params in reversed(self.sent):
            if sent_kind == kind:
                return recipient, params
        return None


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'PAYMENT_WEBHOOK_SECRET': WEBHOOK_SECRET,
    'DEFAULT_LOW_STOCK_THRESHOLD': 10,
    'PLATFORM_FEE_BPS': 1000,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        TEST_CONFIG,
        payment_processor=FakePaymentProcessor(),
        notification_sink=RecordingNotificationSink(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh tables and fresh collaborator state for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions["payment_processor"].reset()
        app.extensions["notification_sink"].sent.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def processor(app):
    return app.extensions["payment_processor"]


@pytest.fixture(scope='function')
def sink(app):
    return app.extensions["notification_sink"]


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow by design; hash the shared test password once."""
    return bcrypt.hashpw(TEST_PASSWORD.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')


@pytest.fixture(scope='function')
def make_account(db_session, password_hash):
    counter = {"n": 0}

    def _make(account_type="user", *, name=None, email=None, is_active=True):
        counter["n"] += 1
        account = Account(
            account_type=account_type,
            name=name or f"{account_type.title()} {counter['n']}",
            email=email or f"{account_type}{counter['n']}@clinic.test",
            password_hash=password_hash,
            is_active=is_active,
        )
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture(scope='function')
def make_doctor(db_session, make_account):
    def _make(*, fee_cents=5000, payout_enabled=True, name=None):
        account = make_account("doctor", name=name)
        account.doctor_profile = DoctorProfile(
            specialization="General Dentistry",
            fee_cents=fee_cents,
            available_days=["Monday", "Tuesday", "Wednesday"],
            available_from="09:00",
            available_to="17:00",
            payout_account_id=f"acct_doc_{account.id}" if payout_enabled else None,
            payout_enabled=payout_enabled,
        )
        db_session.commit()
        return account

    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    def _make(**overrides):
        payload = {
            "name": "Amoxicillin 500mg",
            "unit_price_cents": 1000,
            "unit_cost_cents": 600,
            "quantity_on_hand": 20,
            "low_stock_threshold": 5,
        }
        payload.update(overrides)
        return inventory_service.create_item(payload)

    return _make


@pytest.fixture(scope='function')
def patient(make_account):
    return make_account("user", name="Pat Patient")


@pytest.fixture(scope='function')
def doctor(make_doctor):
    return make_doctor(name="Dr. Dana")


@pytest.fixture(scope='function')
def pharmacist(make_account):
    return make_account("pharmacist", name="Phil Pharmacist")


@pytest.fixture(scope='function')
def admin(make_account):
    return make_account("admin", name="Ada Admin")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(account) -> dict:
    """Open a session for an account and return its Authorization headers."""
    _, token = create_session(account.id)
    return auth_headers(token)
