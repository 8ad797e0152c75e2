"""
Processor callback and payout onboarding tests.

Verifies:
- Unsigned, mis-signed or stale callbacks change nothing
- payment_intent.succeeded marks the payment paid and confirms a booked appointment
- Replays are acknowledged as duplicates and never cascade
- Callbacks for unknown charges are ignored, not errors
"""

import time
from datetime import timedelta

import pytest

from clinic.errors import InvalidInputError, SignatureInvalidError
from clinic.extensions import db
from clinic.models import Appointment, PaymentRecord, Treatment
from clinic.services import appointment_service, payment_service
from clinic.services.payment_service import EventOutcome
from clinic.services.processor import ProcessorEvent, construct_event, parse_event
from clinic.services.session_service import AuthContext
from clinic.time_utils import utcnow

from conftest import WEBHOOK_SECRET, build_signature_header, headers_for

WEBHOOK_URL = "/api/payments/webhook"


@pytest.fixture
def online_appointment(patient, doctor, processor):
    result = appointment_service.book_appointment(
        patient_id=patient.id,
        doctor_id=doctor.id,
        date=(utcnow().date() + timedelta(days=2)).isoformat(),
        time="11:00",
        problem="Crown fitting",
        amount_cents=5000,
        method="online",
        processor=processor,
    )
    return result.appointment


def _reload(appointment_id):
    db.session.expire_all()
    return db.session.get(Appointment, appointment_id)


def _post(client, raw, header):
    return client.post(
        WEBHOOK_URL,
        data=raw,
        content_type="application/json",
        headers={"Stripe-Signature": header} if header is not None else {},
    )


def _intent_succeeded(intent_id="pi_test_0001"):
    return "payment_intent.succeeded", {"id": intent_id, "object": "payment_intent", "status": "succeeded"}


class TestSignatureVerification:
    def test_valid_header(self):
        raw = b'{"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}'
        event = construct_event(raw, build_signature_header(WEBHOOK_SECRET, raw), WEBHOOK_SECRET)
        assert event == ProcessorEvent(type="charge.succeeded", charge_id="pi_1", event_id="evt_1")

    @pytest.mark.parametrize(
        "header",
        [None, "", "garbage", "t=abc,v1=deadbeef", "v1=deadbeef", "t=1700000000"],
    )
    def test_malformed_headers(self, header):
        with pytest.raises(SignatureInvalidError):
            construct_event(b'{"type": "charge.succeeded"}', header, WEBHOOK_SECRET)

    def test_wrong_secret(self):
        raw = b'{"type": "charge.succeeded"}'
        with pytest.raises(SignatureInvalidError):
            construct_event(raw, build_signature_header("whsec_other", raw), WEBHOOK_SECRET)

    def test_tampered_body(self):
        header = build_signature_header(WEBHOOK_SECRET, b'{"type": "charge.succeeded", "amount": 1}')
        with pytest.raises(SignatureInvalidError):
            construct_event(b'{"type": "charge.succeeded", "amount": 1000}', header, WEBHOOK_SECRET)

    def test_stale_timestamp(self):
        raw = b'{"type": "charge.succeeded"}'
        old = int(time.time()) - 3600
        with pytest.raises(SignatureInvalidError):
            construct_event(raw, build_signature_header(WEBHOOK_SECRET, raw, old), WEBHOOK_SECRET)

    def test_unconfigured_secret(self):
        raw = b'{"type": "charge.succeeded"}'
        with pytest.raises(SignatureInvalidError):
            construct_event(raw, build_signature_header(WEBHOOK_SECRET, raw), "")


class TestStripeEventMapping:
    def test_charge_succeeded_carries_intent_and_receipt(self):
        event = parse_event({
            "id": "evt_2",
            "type": "charge.succeeded",
            "data": {"object": {"id": "ch_9", "payment_intent": "pi_9", "receipt_url": "https://r.test/9"}},
        })
        assert event.type == "charge.succeeded"
        assert event.charge_id == "pi_9"
        assert event.receipt_url == "https://r.test/9"

    def test_payment_failed(self):
        event = parse_event({
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_9", "last_payment_error": {"message": "Your card was declined."}}},
        })
        assert event.type == "charge.failed"
        assert event.charge_id == "pi_9"
        assert event.failure_reason == "Your card was declined."

    def test_transfer_events(self):
        created = parse_event({
            "type": "transfer.created",
            "data": {"object": {"id": "tr_1", "source_transaction": "ch_9"}},
        })
        assert (created.type, created.charge_id, created.transfer_id) == ("transfer.completed", "ch_9", "tr_1")

        reversed_ = parse_event({
            "type": "transfer.reversed",
            "data": {"object": {"id": "tr_1", "source_transaction": "ch_9"}},
        })
        assert reversed_.type == "transfer.failed"
        assert reversed_.failure_reason == "Transfer reversed"

    def test_other_events_keep_their_type(self):
        event = parse_event({"type": "customer.created", "data": {"object": {"id": "cus_1"}}})
        assert event.type == "customer.created"

    def test_missing_object(self):
        event = parse_event({"type": "payment_intent.succeeded", "data": None})
        assert event.charge_id is None


class TestWebhookRoute:
    def test_bad_signature_changes_nothing(self, client, online_appointment, processor):
        raw, _ = processor.signed_event(*_intent_succeeded())
        resp = _post(client, raw, "t=1,v1=forged")

        assert resp.status_code == 400
        assert resp.json["error"] == "signature_invalid"
        assert _reload(online_appointment.id).payment.status == "pending"

    def test_missing_signature(self, client, online_appointment, processor):
        raw, _ = processor.signed_event(*_intent_succeeded())
        resp = _post(client, raw, None)
        assert resp.status_code == 400
        assert _reload(online_appointment.id).payment.status == "pending"

    def test_stale_replay_is_rejected(self, client, online_appointment, processor):
        raw, header = processor.signed_event(*_intent_succeeded(), timestamp=int(time.time()) - 3600)
        resp = _post(client, raw, header)
        assert resp.status_code == 400
        assert _reload(online_appointment.id).status == "booked"

    def test_payment_intent_succeeded(self, client, online_appointment, processor):
        raw, header = processor.signed_event(*_intent_succeeded())
        resp = _post(client, raw, header)

        assert resp.status_code == 200
        assert resp.json == {"received": True, "outcome": "applied"}
        appointment = _reload(online_appointment.id)
        assert appointment.payment.status == "paid"
        assert appointment.status == "confirmed"

    def test_charge_succeeded_adds_receipt_after_intent(self, client, online_appointment, processor):
        _post(client, *processor.signed_event(*_intent_succeeded()))

        raw, header = processor.signed_event("charge.succeeded", {
            "id": "ch_1",
            "payment_intent": "pi_test_0001",
            "receipt_url": "https://payments.test/receipts/1",
        })
        assert _post(client, raw, header).json["outcome"] == "applied"
        assert _post(client, raw, header).json["outcome"] == "duplicate"

        payment = _reload(online_appointment.id).payment
        assert payment.status == "paid"
        assert payment.receipt_url == "https://payments.test/receipts/1"

    def test_replay_is_duplicate_and_never_cascades(self, client, online_appointment, processor):
        raw, header = processor.signed_event(*_intent_succeeded())
        assert _post(client, raw, header).json["outcome"] == "applied"

        for _ in range(3):
            resp = _post(client, raw, header)
            assert resp.status_code == 200
            assert resp.json["outcome"] == "duplicate"

        assert db.session.query(Treatment).count() == 0
        assert db.session.query(PaymentRecord).count() == 0

    def test_payment_failed(self, client, online_appointment, processor):
        raw, header = processor.signed_event("payment_intent.payment_failed", {"id": "pi_test_0001"})
        assert _post(client, raw, header).json["outcome"] == "applied"
        assert _reload(online_appointment.id).payment.status == "failed"

    def test_unknown_charge_is_ignored(self, client, online_appointment, processor):
        raw, header = processor.signed_event(*_intent_succeeded("pi_someone_else"))
        resp = _post(client, raw, header)
        assert resp.status_code == 200
        assert resp.json["outcome"] == "ignored"
        assert _reload(online_appointment.id).payment.status == "pending"

    def test_unknown_event_type_is_ignored(self, client, online_appointment, processor):
        raw, header = processor.signed_event("customer.created", {"id": "cus_1"})
        assert _post(client, raw, header).json["outcome"] == "ignored"

    def test_body_without_type_is_rejected(self, client):
        raw = b'{"data": {}}'
        resp = _post(client, raw, build_signature_header(WEBHOOK_SECRET, raw))
        assert resp.status_code == 400


class TestApplyEvent:
    def test_charge_failed(self, online_appointment):
        event = ProcessorEvent(type="charge.failed", charge_id="pi_test_0001")
        assert payment_service.apply_event(event) is EventOutcome.APPLIED
        assert payment_service.apply_event(event) is EventOutcome.DUPLICATE

        appointment = _reload(online_appointment.id)
        assert appointment.payment.status == "failed"
        assert appointment.status == "booked"

    def test_success_after_failure_is_ignored(self, online_appointment):
        payment_service.apply_event(ProcessorEvent(type="charge.failed", charge_id="pi_test_0001"))
        outcome = payment_service.apply_event(ProcessorEvent(type="charge.succeeded", charge_id="pi_test_0001"))
        assert outcome is EventOutcome.IGNORED
        assert _reload(online_appointment.id).payment.status == "failed"

    def test_success_does_not_reopen_completed_appointment(self, online_appointment, doctor):
        appointment_service.mark_status(
            online_appointment.id, "completed", AuthContext(subject_id=doctor.id, subject_type="doctor")
        )

        outcome = payment_service.apply_event(ProcessorEvent(type="charge.succeeded", charge_id="pi_test_0001"))
        assert outcome is EventOutcome.APPLIED

        appointment = _reload(online_appointment.id)
        assert appointment.status == "completed"
        assert appointment.payment.status == "paid"
        assert db.session.query(Treatment).count() == 1

    def test_transfer_completed(self, online_appointment):
        event = ProcessorEvent(type="transfer.completed", charge_id="pi_test_0001", transfer_id="tr_1")
        assert payment_service.apply_event(event) is EventOutcome.APPLIED
        assert payment_service.apply_event(event) is EventOutcome.DUPLICATE

        payment = _reload(online_appointment.id).payment
        assert payment.transfer_status == "completed"
        assert payment.transfer_id == "tr_1"
        assert payment.transfer_error is None

    def test_transfer_failed_records_reason(self, online_appointment):
        event = ProcessorEvent(
            type="transfer.failed",
            charge_id="pi_test_0001",
            transfer_id="tr_2",
            failure_reason="account_closed",
        )
        assert payment_service.apply_event(event) is EventOutcome.APPLIED

        payment = _reload(online_appointment.id).payment
        assert payment.transfer_status == "failed"
        assert payment.transfer_error == "account_closed"
        # Patient-facing status is tracked separately from the payout
        assert payment.status == "pending"


class TestPayoutOnboarding:
    def test_setup_creates_account_once(self, make_doctor, processor):
        doc = make_doctor(payout_enabled=False)

        first = payment_service.setup_payout_account(doc.id, processor)
        assert first["payout_account_id"] == "acct_test_0001"
        assert first["payout_enabled"] is False
        assert first["onboarding_url"].endswith("/acct_test_0001")

        second = payment_service.setup_payout_account(doc.id, processor)
        assert second["payout_account_id"] == "acct_test_0001"
        assert len(processor.payout_accounts) == 1

    def test_refresh_picks_up_enabled_payouts(self, make_doctor, processor):
        doc = make_doctor(payout_enabled=False)
        payment_service.setup_payout_account(doc.id, processor)

        assert payment_service.refresh_payout_status(doc.id, processor)["payout_enabled"] is False
        processor.enabled_accounts.add("acct_test_0001")
        assert payment_service.refresh_payout_status(doc.id, processor)["payout_enabled"] is True

    def test_refresh_without_account(self, make_doctor, processor):
        doc = make_doctor(payout_enabled=False)
        with pytest.raises(InvalidInputError):
            payment_service.refresh_payout_status(doc.id, processor)

    def test_payout_routes_are_doctor_only(self, client, doctor, patient):
        resp = client.post("/api/accounts/me/payout", headers=headers_for(doctor))
        assert resp.status_code == 200
        assert resp.json["payout_account_id"] == f"acct_doc_{doctor.id}"

        resp = client.post("/api/accounts/me/payout", headers=headers_for(patient))
        assert resp.status_code == 403
