"""
Account, session and password-reset tests.

Verifies:
- Registration validates input and rejects duplicate emails
- Login issues a bearer token that every protected route accepts
- Logout, password reset and deactivation revoke sessions
- Password-reset codes are single use and never reveal unknown emails
"""

from datetime import timedelta

import pytest

from clinic.errors import ConflictError, InvalidInputError, NotFoundError, UnauthorizedError
from clinic.extensions import db
from clinic.models import Account, SessionToken
from clinic.services import account_service, session_service
from clinic.time_utils import utcnow

from conftest import TEST_PASSWORD, auth_headers, headers_for

NEW_PASSWORD = "N3w-Password!"


def _register(**overrides):
    params = {
        "account_type": "user",
        "name": "Robin Reg",
        "email": "robin@clinic.test",
        "password": TEST_PASSWORD,
    }
    params.update(overrides)
    return account_service.register_account(**params)


class TestRegistration:
    def test_register_patient_sends_welcome(self, sink):
        account = _register(email="  Robin@Clinic.TEST ", sink=sink)

        assert account.email == "robin@clinic.test"
        assert account.password_hash != TEST_PASSWORD
        assert account_service.verify_password(TEST_PASSWORD, account.password_hash)
        assert sink.last("welcome") == ("robin@clinic.test", {"name": "Robin Reg", "account_type": "user"})

    def test_register_doctor_with_profile(self):
        account = _register(
            account_type="doctor",
            email="doc@clinic.test",
            doctor={"specialization": "Orthodontics", "fee_cents": 12000, "available_from": "8:30"},
        )
        profile = account.doctor_profile
        assert profile.fee_cents == 12000
        assert profile.available_from == "08:30"
        assert profile.payout_enabled is False

    def test_doctor_needs_fee(self):
        with pytest.raises(InvalidInputError):
            _register(account_type="doctor", doctor={"specialization": "Endodontics"})
        with pytest.raises(InvalidInputError):
            _register(account_type="doctor", doctor={"specialization": "Endodontics", "fee_cents": 0})

    def test_duplicate_email(self):
        _register()
        with pytest.raises(ConflictError):
            _register(email="ROBIN@clinic.test")
        assert db.session.query(Account).count() == 1

    @pytest.mark.parametrize(
        "password",
        ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigitsHere!", "NoSpecial123"],
    )
    def test_weak_passwords(self, password):
        with pytest.raises(InvalidInputError):
            _register(password=password)

    @pytest.mark.parametrize(
        "overrides",
        [{"email": "not-an-email"}, {"email": None}, {"name": "  "}, {"account_type": "nurse"}],
    )
    def test_invalid_fields(self, overrides):
        with pytest.raises(InvalidInputError):
            _register(**overrides)


class TestLogin:
    def test_login_and_me(self, client, patient):
        resp = client.post("/api/accounts/login", json={"email": patient.email, "password": TEST_PASSWORD})
        assert resp.status_code == 200
        token = resp.json["token"]
        assert len(token) == 64

        resp = client.get("/api/accounts/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["account"]["id"] == patient.id
        assert "password_hash" not in resp.json["account"]

    @pytest.mark.parametrize(
        "body",
        [
            {"email": "user1@clinic.test", "password": "Wrong-Password1!"},
            {"email": "nobody@clinic.test", "password": TEST_PASSWORD},
            {"email": "user1@clinic.test"},
            {},
        ],
    )
    def test_bad_credentials(self, client, patient, body):
        resp = client.post("/api/accounts/login", json=body)
        assert resp.status_code == 401
        assert resp.json["error"] == "unauthorized"

    def test_inactive_account_cannot_log_in(self, make_account):
        account = make_account("user", is_active=False)
        with pytest.raises(UnauthorizedError):
            account_service.authenticate(account.email, TEST_PASSWORD)

    def test_logout_revokes_token(self, client, patient):
        headers = headers_for(patient)
        assert client.post("/api/accounts/logout", headers=headers).status_code == 200
        assert client.get("/api/accounts/me", headers=headers).status_code == 401

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer"}, {"Authorization": "Token abc"}, {"Authorization": "Bearer " + "0" * 64}],
    )
    def test_protected_route_rejects(self, client, headers):
        resp = client.get("/api/accounts/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json["error"] == "unauthorized"

    def test_expired_session(self, patient):
        session, token = session_service.create_session(patient.id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()
        assert session_service.validate_session(token) is None

    def test_idle_session_is_revoked(self, patient):
        session, token = session_service.create_session(patient.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db.session.commit()

        assert session_service.validate_session(token) is None
        db.session.expire_all()
        assert db.session.get(SessionToken, session.id).revoked_reason == "Idle timeout"


class TestProfile:
    def test_update_name_and_phone(self, client, patient):
        resp = client.put("/api/accounts/me", json={"name": "Pat P.", "phone": "555-0100"},
                          headers=headers_for(patient))
        assert resp.status_code == 200
        assert resp.json["account"]["name"] == "Pat P."
        assert resp.json["account"]["phone"] == "555-0100"

    def test_cannot_change_email_or_type(self, patient):
        with pytest.raises(InvalidInputError):
            account_service.update_profile(patient.id, {"account_type": "admin"})
        with pytest.raises(InvalidInputError):
            account_service.update_profile(patient.id, {"email": "new@clinic.test"})

    def test_doctor_updates_fee(self, doctor):
        account = account_service.update_profile(doctor.id, {"doctor": {"fee_cents": 6500}})
        assert account.doctor_profile.fee_cents == 6500

    def test_patient_has_no_doctor_fields(self, patient):
        with pytest.raises(InvalidInputError):
            account_service.update_profile(patient.id, {"doctor": {"fee_cents": 6500}})

    def test_doctor_directory_lists_active_doctors(self, client, doctor, make_doctor):
        hidden = make_doctor(name="Dr. Gone")
        account_service.set_account_active(hidden.id, False)

        resp = client.get("/api/accounts/doctors")
        assert resp.status_code == 200
        assert [d["id"] for d in resp.json["doctors"]] == [doctor.id]
        assert resp.json["doctors"][0]["doctor"]["fee_cents"] == 5000


class TestPasswordReset:
    def test_otp_flow(self, client, patient, sink):
        old_headers = headers_for(patient)

        resp = client.post("/api/accounts/otp", json={"email": patient.email})
        assert resp.status_code == 200
        recipient, params = sink.last("otp")
        assert recipient == patient.email
        assert len(params["otp"]) == 6

        resp = client.post("/api/accounts/reset-password", json={
            "email": patient.email,
            "otp": params["otp"],
            "new_password": NEW_PASSWORD,
        })
        assert resp.status_code == 200
        assert sink.last("password-reset-confirmation")[0] == patient.email

        # Old sessions are gone, the new password works, the code is spent
        assert client.get("/api/accounts/me", headers=old_headers).status_code == 401
        account_service.authenticate(patient.email, NEW_PASSWORD)
        with pytest.raises(InvalidInputError):
            account_service.reset_password_with_otp(patient.email, params["otp"], NEW_PASSWORD, sink)

    def test_wrong_code(self, patient, sink):
        account_service.send_password_otp(patient.email, sink)
        _, params = sink.last("otp")
        wrong = "000000" if params["otp"] != "000000" else "111111"

        with pytest.raises(InvalidInputError):
            account_service.reset_password_with_otp(patient.email, wrong, NEW_PASSWORD, sink)

    def test_expired_code(self, patient, sink):
        account_service.send_password_otp(patient.email, sink)
        _, params = sink.last("otp")
        account = db.session.get(Account, patient.id)
        account.reset_otp_expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(InvalidInputError):
            account_service.reset_password_with_otp(patient.email, params["otp"], NEW_PASSWORD, sink)

    def test_unknown_email_is_silent(self, client, sink):
        resp = client.post("/api/accounts/otp", json={"email": "ghost@clinic.test"})
        assert resp.status_code == 200
        assert sink.sent == []


class TestPasswordChange:
    def test_change_keeps_current_session_and_revokes_others(self, client, patient, sink):
        current = headers_for(patient)
        other = headers_for(patient)

        resp = client.post("/api/accounts/me/password", json={
            "old_password": TEST_PASSWORD,
            "new_password": NEW_PASSWORD,
        }, headers=current)
        assert resp.status_code == 200

        assert client.get("/api/accounts/me", headers=current).status_code == 200
        assert client.get("/api/accounts/me", headers=other).status_code == 401
        account_service.authenticate(patient.email, NEW_PASSWORD)
        with pytest.raises(UnauthorizedError):
            account_service.authenticate(patient.email, TEST_PASSWORD)
        assert sink.last("password-reset-confirmation")[0] == patient.email

    def test_wrong_old_password(self, client, patient):
        headers = headers_for(patient)
        resp = client.post("/api/accounts/me/password", json={
            "old_password": "Wrong-Password1!",
            "new_password": NEW_PASSWORD,
        }, headers=headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "invalid_input"
        account_service.authenticate(patient.email, TEST_PASSWORD)

    @pytest.mark.parametrize("new_password", ["weak", None, TEST_PASSWORD])
    def test_rejected_new_passwords(self, patient, new_password):
        with pytest.raises(InvalidInputError):
            account_service.change_password(patient.id, TEST_PASSWORD, new_password)
        account_service.authenticate(patient.email, TEST_PASSWORD)

    def test_requires_login(self, client):
        resp = client.post("/api/accounts/me/password", json={
            "old_password": TEST_PASSWORD,
            "new_password": NEW_PASSWORD,
        })
        assert resp.status_code == 401


class TestAdminAccess:
    def test_admin_self_registration_is_refused(self, client):
        resp = client.post("/api/accounts/register", json={
            "account_type": "admin",
            "name": "Sneaky",
            "email": "sneaky@clinic.test",
            "password": TEST_PASSWORD,
        })
        assert resp.status_code == 403
        assert db.session.query(Account).count() == 0

    def test_deactivation_revokes_sessions(self, client, admin, patient):
        patient_headers = headers_for(patient)
        assert client.get("/api/accounts/me", headers=patient_headers).status_code == 200

        resp = client.put(f"/api/admin/accounts/{patient.id}/access", json={"is_active": False},
                          headers=headers_for(admin))
        assert resp.status_code == 200
        assert resp.json["account"]["is_active"] is False

        assert client.get("/api/accounts/me", headers=patient_headers).status_code == 401
        assert db.session.query(SessionToken).filter_by(account_id=patient.id, is_revoked=False).count() == 0

    def test_admin_cannot_deactivate_self(self, client, admin):
        resp = client.put(f"/api/admin/accounts/{admin.id}/access", json={"is_active": False},
                          headers=headers_for(admin))
        assert resp.status_code == 409

    def test_access_flag_must_be_boolean(self, patient):
        with pytest.raises(InvalidInputError):
            account_service.set_account_active(patient.id, "no")

    def test_unknown_account(self):
        with pytest.raises(NotFoundError):
            account_service.set_account_active(424242, False)

    def test_list_accounts_by_type(self, client, admin, patient, doctor):
        resp = client.get("/api/admin/accounts?account_type=doctor", headers=headers_for(admin))
        assert [a["id"] for a in resp.json["accounts"]] == [doctor.id]
        resp = client.get("/api/admin/accounts?account_type=robot", headers=headers_for(admin))
        assert resp.status_code == 400
