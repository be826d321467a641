"""Tests for the REST API (FastAPI TestClient)."""

from datetime import date, timedelta

from clinicflow.api_main import app
from clinicflow.errors import NotFoundError

TOMORROW = (date.today() + timedelta(days=1)).isoformat()


def form(doctor, **overrides):
    body = {
        "patient_name": "Ravi Kumar",
        "patient_age": 34,
        "contact_no": "9876543210",
        "doctor_id": doctor["user_id"],
        "appointment_date": TOMORROW,
        "appointment_time": "10:00",
    }
    body.update(overrides)
    return body


def create(api, headers, doctor, **overrides):
    r = api.post("/api/appointments", json=form(doctor, **overrides), headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


class TestAuth:
    """Tests for signup, login and identity."""

    def test_signup_and_login(self, api):
        r = api.post(
            "/api/auth/signup",
            json={"name": "Dr. Grey", "email": "Grey@Clinic.test", "password": "secret123", "role": "doctor"},
        )
        assert r.status_code == 201
        assert r.json()["ok"] is True

        r = api.post("/api/auth/login", data={"username": "grey@clinic.test", "password": "secret123"})
        assert r.status_code == 200
        me = api.get("/api/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"}).json()
        assert me["email"] == "grey@clinic.test"
        assert me["role"] == "doctor"

    def test_duplicate_email(self, api, doctor):
        r = api.post(
            "/api/auth/signup",
            json={"name": "Dr. House", "email": "house@clinic.test", "password": "secret123", "role": "doctor"},
        )
        assert r.status_code == 400
        assert r.json()["detail"] == "Email already registered."

    def test_short_password_is_rejected(self, api):
        r = api.post(
            "/api/auth/signup",
            json={"name": "Dr. Grey", "email": "grey@clinic.test", "password": "123", "role": "doctor"},
        )
        assert r.status_code == 422

    def test_wrong_password(self, api, doctor):
        r = api.post("/api/auth/login", data={"username": "house@clinic.test", "password": "nope"})
        assert r.status_code == 401

    def test_no_token(self, api):
        assert api.get("/api/me").status_code == 401

    def test_garbage_token(self, api):
        assert api.get("/api/me", headers={"Authorization": "Bearer abc.def.ghi"}).status_code == 401


class TestAppointmentsApi:
    """Tests for booking and workflow endpoints."""

    def test_receptionist_books(self, api, desk_headers, doctor):
        a = create(api, desk_headers, doctor)
        assert a["status"] == "pending"
        assert a["doctor_name"] == "Dr. House"

    def test_doctor_cannot_book(self, api, doctor_headers, doctor):
        r = api.post("/api/appointments", json=form(doctor), headers=doctor_headers)
        assert r.status_code == 403

    def test_invalid_body(self, api, desk_headers, doctor):
        r = api.post("/api/appointments", json=form(doctor, contact_no="123"), headers=desk_headers)
        assert r.status_code == 422

    def test_full_slot_is_400(self, api, desk_headers, doctor):
        for i in range(3):
            create(api, desk_headers, doctor, patient_name=f"Patient {i}")
        r = api.post("/api/appointments", json=form(doctor, patient_name="Late"), headers=desk_headers)
        assert r.status_code == 400
        assert "is full" in r.json()["detail"]

    def test_unknown_doctor_is_404(self, api, desk_headers, doctor):
        r = api.post("/api/appointments", json=form(doctor, doctor_id="nope"), headers=desk_headers)
        assert r.status_code == 404
        assert r.json()["detail"] == "Doctor not found."

    def test_only_not_found_errors_map_to_404(self):
        assert NotFoundError in app.exception_handlers
        assert LookupError not in app.exception_handlers
        assert KeyError not in app.exception_handlers

    def test_doctor_approves(self, api, desk_headers, doctor_headers, doctor):
        a = create(api, desk_headers, doctor)
        r = api.post(f"/api/appointments/{a['id']}/status", json={"status": "approved"}, headers=doctor_headers)
        assert r.status_code == 200
        assert r.json()["status"] == "approved"

    def test_receptionist_cannot_approve(self, api, desk_headers, doctor):
        a = create(api, desk_headers, doctor)
        r = api.post(f"/api/appointments/{a['id']}/status", json={"status": "approved"}, headers=desk_headers)
        assert r.status_code == 403

    def test_deny_without_reason(self, api, desk_headers, doctor_headers, doctor):
        a = create(api, desk_headers, doctor)
        r = api.post(f"/api/appointments/{a['id']}/status", json={"status": "denied"}, headers=doctor_headers)
        assert r.status_code == 422

    def test_status_of_missing_appointment(self, api, doctor_headers):
        r = api.post("/api/appointments/missing/status", json={"status": "approved"}, headers=doctor_headers)
        assert r.status_code == 404

    def test_lists_are_role_filtered(self, api, desk_headers, doctor_headers, doctor, other_doctor):
        create(api, desk_headers, doctor)
        create(api, desk_headers, other_doctor, patient_name="Other Patient")
        assert len(api.get("/api/appointments", headers=desk_headers).json()) == 2
        assert len(api.get("/api/appointments", headers=doctor_headers).json()) == 1

    def test_reschedule(self, api, desk_headers, doctor_headers, doctor):
        a = create(api, desk_headers, doctor)
        api.post(f"/api/appointments/{a['id']}/status", json={"status": "approved"}, headers=doctor_headers)
        r = api.patch(f"/api/appointments/{a['id']}", json=form(doctor, appointment_time="11:15"), headers=desk_headers)
        assert r.status_code == 200
        assert r.json()["status"] == "pending"

    def test_delete(self, api, desk_headers, doctor):
        a = create(api, desk_headers, doctor)
        assert api.delete(f"/api/appointments/{a['id']}", headers=desk_headers).status_code == 200
        assert api.delete(f"/api/appointments/{a['id']}", headers=desk_headers).status_code == 404

    def test_slots_and_calendar(self, api, desk_headers, doctor):
        create(api, desk_headers, doctor)
        grid = api.get(
            "/api/slots", params={"doctor_id": doctor["user_id"], "day": TOMORROW}, headers=desk_headers
        ).json()
        assert grid["morning"][0] == {
            "time": "10:00",
            "label": "10:00 AM",
            "count": 1,
            "max_slots": 3,
            "available": True,
            "fill_level": "medium",
            "info": "1/3",
        }

        d = date.fromisoformat(TOMORROW)
        weeks = api.get("/api/calendar", params={"year": d.year, "month": d.month}, headers=desk_headers).json()
        assert all(len(w) == 7 for w in weeks)
        assert api.get("/api/calendar", params={"year": d.year, "month": 13}, headers=desk_headers).status_code == 422


class TestPaymentsAndReports:
    """Tests for payments, dashboards and gated reports."""

    def paid(self, api, desk_headers, doctor_headers, doctor):
        a = create(api, desk_headers, doctor)
        api.post(f"/api/appointments/{a['id']}/status", json={"status": "approved"}, headers=doctor_headers)
        r = api.post(
            "/api/payments",
            json={"appointment_id": a["id"], "payment_method": "cash", "appointment_fee": 500},
            headers=desk_headers,
        )
        assert r.status_code == 201, r.text
        return r.json()

    def test_payment_completes(self, api, desk_headers, doctor_headers, doctor):
        p = self.paid(api, desk_headers, doctor_headers, doctor)
        assert p["amount"] == 500
        r = api.post(
            "/api/payments",
            json={"appointment_id": p["appointment_id"], "payment_method": "cash", "amount": 100},
            headers=desk_headers,
        )
        assert r.status_code == 400

    def test_complete_without_payment(self, api, desk_headers, doctor_headers, doctor):
        a = create(api, desk_headers, doctor, requires_payment=False)
        api.post(f"/api/appointments/{a['id']}/status", json={"status": "approved"}, headers=doctor_headers)
        r = api.post(f"/api/appointments/{a['id']}/status", json={"status": "completed"}, headers=desk_headers)
        assert r.status_code == 200
        assert r.json()["status"] == "completed"

    def test_dashboard_per_role(self, api, desk_headers, doctor_headers, doctor):
        self.paid(api, desk_headers, doctor_headers, doctor)
        assert api.get("/api/dashboard", headers=doctor_headers).json()["completed"] == 1
        assert api.get("/api/dashboard", headers=desk_headers).json()["total_earnings"] == 500

    def test_stats_needs_pin(self, api, desk_headers):
        assert api.get("/api/stats", headers=desk_headers).status_code == 403
        assert api.get("/api/stats", headers={**desk_headers, "X-Stats-Pin": "0000"}).status_code == 403
        r = api.get("/api/stats", headers={**desk_headers, "X-Stats-Pin": "1978"})
        assert r.status_code == 200
        assert "monthly_earnings" in r.json()

    def test_report_amounts_need_access_code(self, api, desk_headers, doctor_headers, doctor):
        self.paid(api, desk_headers, doctor_headers, doctor)
        today = date.today()
        params = {"month": today.month, "year": today.year}

        hidden = api.get("/api/reports/payments", params=params, headers=desk_headers).json()
        assert hidden["amounts_visible"] is False
        assert hidden["rows"][0]["amount"] is None

        shown = api.get(
            "/api/reports/payments", params=params, headers={**desk_headers, "X-Access-Code": "creative10"}
        ).json()
        assert shown["total_revenue"] == 500

        history = api.get("/api/reports/history", headers={**desk_headers, "X-Access-Code": "creative10"}).json()
        assert history[0]["amount_paid"] == 500

    def test_reports_are_receptionist_only(self, api, doctor_headers):
        today = date.today()
        r = api.get("/api/reports/payments", params={"month": today.month, "year": today.year}, headers=doctor_headers)
        assert r.status_code == 403


class TestMaintenanceApi:
    def test_cleanup(self, api, desk_headers):
        r = api.post("/api/maintenance/cleanup-denied", headers=desk_headers)
        assert r.json() == {"success": True, "deleted": 0}

    def test_notifications_for_caller(self, api, desk_headers, doctor_headers, doctor):
        create(api, desk_headers, doctor)
        pending = api.get("/api/notifications/pending", headers=doctor_headers).json()
        assert [n["kind"] for n in pending] == ["NEW_APPOINTMENT"]
        assert api.get("/api/notifications/pending", headers=desk_headers).json() == []

        r = api.post(f"/api/notifications/{pending[0]['id']}/sent", headers=doctor_headers)
        assert r.json() == {"ok": True}

    def test_cannot_mark_someone_elses_notification(self, api, desk_headers, doctor_headers, doctor):
        create(api, desk_headers, doctor)
        pending = api.get("/api/notifications/pending", headers=doctor_headers).json()

        r = api.post(f"/api/notifications/{pending[0]['id']}/sent", headers=desk_headers)
        assert r.status_code == 404
        assert len(api.get("/api/notifications/pending", headers=doctor_headers).json()) == 1

    def test_patients(self, api, desk_headers, doctor):
        a = create(api, desk_headers, doctor)
        found = api.get("/api/patients/search", params={"name": "RAVI KUMAR"}, headers=desk_headers).json()
        assert found["id"] == a["patient_id"]

        r = api.patch(f"/api/patients/{a['patient_id']}", json={"blood_type": "B+"}, headers=desk_headers)
        assert r.json()["blood_type"] == "B+"
        history = api.get(f"/api/patients/{a['patient_id']}/appointments", headers=desk_headers).json()
        assert len(history) == 1
        assert api.get("/api/patients/missing", headers=desk_headers).status_code == 404


class TestProfilesApi:
    """Tests for staff profile endpoints."""

    def test_list(self, api, doctor_headers, receptionist):
        names = [p["name"] for p in api.get("/api/profiles", headers=doctor_headers).json()]
        assert names == ["Dr. House", "Front Desk"]

    def test_rename_and_change_role(self, api, desk_headers, other_doctor):
        url = f"/api/profiles/{other_doctor['user_id']}"
        r = api.patch(url, json={"name": "Dr. James Wilson"}, headers=desk_headers)
        assert r.status_code == 200
        assert r.json()["name"] == "Dr. James Wilson"

        r = api.patch(url, json={"role": "receptionist"}, headers=desk_headers)
        assert r.json()["role"] == "receptionist"
        assert api.get("/api/doctors", headers=desk_headers).json() == []

    def test_short_name(self, api, desk_headers, doctor):
        r = api.patch(f"/api/profiles/{doctor['user_id']}", json={"name": "X"}, headers=desk_headers)
        assert r.status_code == 400
        assert r.json()["detail"] == "Name must be at least 2 characters"

    def test_bad_role(self, api, desk_headers, doctor):
        r = api.patch(f"/api/profiles/{doctor['user_id']}", json={"role": "admin"}, headers=desk_headers)
        assert r.status_code == 422

    def test_missing_user(self, api, desk_headers):
        r = api.patch("/api/profiles/missing", json={"name": "Dr. Nobody"}, headers=desk_headers)
        assert r.status_code == 404
        assert r.json()["detail"] == "Profile not found."

    def test_doctor_cannot_edit(self, api, doctor_headers, doctor):
        r = api.patch(f"/api/profiles/{doctor['user_id']}", json={"name": "Dr. Greg"}, headers=doctor_headers)
        assert r.status_code == 403

    def test_delete(self, api, desk_headers, other_doctor):
        url = f"/api/profiles/{other_doctor['user_id']}"
        assert api.delete(url, headers=desk_headers).json() == {"ok": True}
        assert api.delete(url, headers=desk_headers).status_code == 404

    def test_delete_with_appointments(self, api, desk_headers, doctor):
        create(api, desk_headers, doctor)
        r = api.delete(f"/api/profiles/{doctor['user_id']}", headers=desk_headers)
        assert r.status_code == 400
        assert "has appointments" in r.json()["detail"]

    def test_cannot_delete_self(self, api, desk_headers, receptionist):
        r = api.delete(f"/api/profiles/{receptionist['user_id']}", headers=desk_headers)
        assert r.status_code == 400

    def test_doctor_cannot_delete(self, api, doctor_headers, other_doctor):
        r = api.delete(f"/api/profiles/{other_doctor['user_id']}", headers=doctor_headers)
        assert r.status_code == 403
