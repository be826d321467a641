"""Tests for the requests-based API client."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from clinicflow.auth_security import create_access_token
from clinicflow.client import ApiClient, ApiError, jwt_is_expired, jwt_payload


def response(status_code=200, body=None):
    r = MagicMock()
    r.status_code = status_code
    r.ok = status_code < 400
    r.reason = "Error"
    r.json.return_value = body if body is not None else {}
    return r


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ApiClient("http://api.test/", token="tok", session=session)


class TestRequests:
    """Tests for how calls reach the API."""

    def test_bearer_token_and_timeout(self, client, session):
        session.request.return_value = response(body=[{"user_id": "d1", "name": "Dr. House"}])

        assert client.doctors() == [{"user_id": "d1", "name": "Dr. House"}]
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("GET", "http://api.test/api/doctors")
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}
        assert kwargs["timeout"] == 10

    def test_dates_are_serialized(self, client, session):
        session.request.return_value = response(201, {"id": "a1"})
        client.create_appointment({"appointment_date": date(2025, 3, 10), "appointment_time": "10:00"})
        assert session.request.call_args.kwargs["json"] == {"appointment_date": "2025-03-10", "appointment_time": "10:00"}

    def test_none_params_are_dropped(self, client, session):
        session.request.return_value = response(body=[])
        client.appointments(status="pending")
        assert session.request.call_args.kwargs["params"] == {"status": "pending"}

    def test_delete_profile(self, client, session):
        session.request.return_value = response(body={"ok": True})
        assert client.delete_profile("u1") == {"ok": True}
        assert session.request.call_args.args == ("DELETE", "http://api.test/api/profiles/u1")

    def test_gate_headers(self, client, session):
        session.request.return_value = response(body={})
        client.stats("1978")
        assert session.request.call_args.kwargs["headers"]["X-Stats-Pin"] == "1978"

        client.payment_report(3, 2025)
        assert "X-Access-Code" not in session.request.call_args.kwargs["headers"]

    def test_login_stores_token(self, session):
        session.post.return_value = response(body={"access_token": "new", "token_type": "bearer"})
        c = ApiClient("http://api.test", session=session)

        assert c.login(" Desk@Clinic.test ", "pw") == "new"
        assert c.token == "new"
        assert session.post.call_args.kwargs["data"] == {"username": "desk@clinic.test", "password": "pw"}


class TestErrors:
    def test_detail_becomes_message(self, client, session):
        session.request.return_value = response(400, {"detail": "Slot 10:00 AM is full (3/3)."})
        with pytest.raises(ApiError) as exc:
            client.create_appointment({})
        assert exc.value.status_code == 400
        assert exc.value.message == "Slot 10:00 AM is full (3/3)."

    def test_validation_errors_are_joined(self, client, session):
        session.request.return_value = response(
            422, {"detail": [{"loc": ["body", "contact_no"], "msg": "Value error, Contact number must be at least 10 digits"}]}
        )
        with pytest.raises(ApiError) as exc:
            client.create_appointment({})
        assert exc.value.message == "Contact number must be at least 10 digits"

    def test_unauthorized(self, client, session):
        session.request.return_value = response(401, {"detail": "Invalid token"})
        with pytest.raises(ApiError) as exc:
            client.me()
        assert exc.value.unauthorized

    def test_failed_login(self, session):
        session.post.return_value = response(401, {"detail": "Invalid credentials"})
        with pytest.raises(ApiError, match="Invalid credentials"):
            ApiClient("http://api.test", session=session).login("x@y.z", "bad")


class TestJwtHelpers:
    def test_payload_of_real_token(self):
        token = create_access_token("user-1", extra={"role": "doctor"})
        payload = jwt_payload(token)
        assert payload["sub"] == "user-1"
        assert payload["role"] == "doctor"
        assert not jwt_is_expired(token)

    def test_expired(self):
        token = create_access_token("user-1", expires_minutes=-5)
        assert jwt_is_expired(token)

    def test_garbage(self):
        assert jwt_payload("not-a-token") == {}
        assert jwt_payload("a.!!!.c") == {}
        assert not jwt_is_expired("not-a-token")
