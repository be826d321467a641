"""Shared pytest fixtures."""

import os
import tempfile
from datetime import date, timedelta
from pathlib import Path

# Point the app at a throwaway database before clinicflow is imported
os.environ["DATABASE_URL"] = f"sqlite:///{Path(tempfile.mkdtemp()) / 'clinicflow_test.sqlite'}"

import pytest
from fastapi.testclient import TestClient

from clinicflow.api_main import app
from clinicflow.auth_service import get_profile, sign_up
from clinicflow.db import drop_db, init_db

PASSWORD = "secret123"
TOMORROW = date.today() + timedelta(days=1)


@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate every table for each test."""
    drop_db()
    init_db()
    yield


@pytest.fixture
def doctor():
    return get_profile(sign_up("house@clinic.test", PASSWORD, "Dr. House", "doctor"))


@pytest.fixture
def other_doctor():
    return get_profile(sign_up("wilson@clinic.test", PASSWORD, "Dr. Wilson", "doctor"))


@pytest.fixture
def receptionist():
    return get_profile(sign_up("desk@clinic.test", PASSWORD, "Front Desk", "receptionist"))


@pytest.fixture
def make_form(doctor):
    """Factory for a valid booking form; keyword arguments override fields."""

    def _make(**overrides):
        form = {
            "patient_name": "Ravi Kumar",
            "patient_age": 34,
            "contact_no": "9876543210",
            "doctor_id": doctor["user_id"],
            "appointment_date": TOMORROW,
            "appointment_time": "10:00",
            "reason_for_visit": "Fever",
        }
        form.update(overrides)
        return form

    return _make


@pytest.fixture
def api():
    return TestClient(app)


def login(api, email):
    r = api.post("/api/auth/login", data={"username": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def doctor_headers(api, doctor):
    return login(api, "house@clinic.test")


@pytest.fixture
def desk_headers(api, receptionist):
    return login(api, "desk@clinic.test")
