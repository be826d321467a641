from __future__ import annotations

import base64
import json
import logging
from datetime import date, datetime, timezone
from typing import Any

import requests

from .config import API_BASE

logger = logging.getLogger(__name__)

TIMEOUT = 10


class ApiError(Exception):
    """Non-2xx answer from the API; ``message`` is what the UI shows."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401


# =========================
# JWT helpers (UI only, signature not verified)
# =========================
def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def jwt_is_expired(token: str, leeway: int = 5) -> bool:
    exp = jwt_payload(token).get("exp")
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        return False
    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (exp_int - leeway)


def _error_message(r: requests.Response) -> str:
    try:
        detail = r.json().get("detail")
    except ValueError:
        return r.text or r.reason
    if isinstance(detail, list):
        # FastAPI request validation: [{"loc": [...], "msg": "..."}]
        return "; ".join(str(d.get("msg", "")).removeprefix("Value error, ") for d in detail)
    return str(detail or r.reason)


def _jsonable(payload: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, (date, datetime)) else v for k, v in payload.items()}


class ApiClient:
    """Thin requests wrapper over the ClinicFlow API. No retries: errors go straight to the caller."""

    def __init__(self, base_url: str = API_BASE, token: str | None = None, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update({k: v for k, v in extra.items() if v is not None})
        return headers

    def _request(
        self, method: str, path: str, params: dict | None = None, payload: dict | None = None, headers: dict | None = None
    ) -> Any:
        r = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(headers),
            params={k: v for k, v in (params or {}).items() if v is not None} or None,
            json=_jsonable(payload) if payload is not None else None,
            timeout=TIMEOUT,
        )
        if not r.ok:
            message = _error_message(r)
            logger.warning("%s %s failed: %s %s", method, path, r.status_code, message)
            raise ApiError(r.status_code, message)
        return r.json()

    def get(self, path: str, params: dict | None = None, headers: dict | None = None) -> Any:
        return self._request("GET", path, params=params, headers=headers)

    def post(self, path: str, payload: dict | None = None, params: dict | None = None) -> Any:
        return self._request("POST", path, params=params, payload=payload or {})

    def patch(self, path: str, payload: dict) -> Any:
        return self._request("PATCH", path, payload=payload)

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    # ---- auth
    def login(self, email: str, password: str) -> str:
        # OAuth2PasswordRequestForm => x-www-form-urlencoded
        r = self.session.post(
            f"{self.base_url}/api/auth/login",
            data={"username": email.strip().lower(), "password": password},
            timeout=TIMEOUT,
        )
        if not r.ok:
            raise ApiError(r.status_code, _error_message(r))
        self.token = r.json()["access_token"]
        return self.token

    def sign_up(self, name: str, email: str, password: str, role: str) -> str:
        res = self.post("/api/auth/signup", {"name": name, "email": email, "password": password, "role": role})
        return res["user_id"]

    def me(self) -> dict:
        return self.get("/api/me")

    def profiles(self) -> list[dict]:
        return self.get("/api/profiles")

    def update_profile(self, user_id: str, name: str | None = None, role: str | None = None) -> dict:
        return self.patch(f"/api/profiles/{user_id}", {"name": name, "role": role})

    def delete_profile(self, user_id: str) -> dict:
        return self.delete(f"/api/profiles/{user_id}")

    # ---- reference data
    def doctors(self) -> list[dict]:
        return self.get("/api/doctors")

    def patients(self) -> list[dict]:
        return self.get("/api/patients")

    def search_patient(self, name: str) -> dict | None:
        return self.get("/api/patients/search", params={"name": name})

    def update_patient(self, patient_id: str, changes: dict) -> dict:
        return self.patch(f"/api/patients/{patient_id}", changes)

    def patient_appointments(self, patient_id: str) -> list[dict]:
        return self.get(f"/api/patients/{patient_id}/appointments")

    # ---- appointments
    def appointments(self, day: date | None = None, status: str | None = None) -> list[dict]:
        return self.get("/api/appointments", params={"day": day.isoformat() if day else None, "status": status})

    def create_appointment(self, form: dict) -> dict:
        return self.post("/api/appointments", form)

    def update_appointment(self, appointment_id: str, changes: dict) -> dict:
        return self.patch(f"/api/appointments/{appointment_id}", changes)

    def set_status(self, appointment_id: str, status: str, denial_reason: str | None = None) -> dict:
        return self.post(
            f"/api/appointments/{appointment_id}/status", {"status": status, "denial_reason": denial_reason}
        )

    def delete_appointment(self, appointment_id: str) -> dict:
        return self.delete(f"/api/appointments/{appointment_id}")

    def slots(self, doctor_id: str, day: date) -> dict[str, list[dict]]:
        return self.get("/api/slots", params={"doctor_id": doctor_id, "day": day.isoformat()})

    def calendar(self, year: int, month: int) -> list[list[dict]]:
        return self.get("/api/calendar", params={"year": year, "month": month})

    # ---- payments and reports
    def record_payment(self, payment: dict) -> dict:
        return self.post("/api/payments", payment)

    def dashboard(self) -> dict:
        return self.get("/api/dashboard")

    def stats(self, pin: str, start: date | None = None, end: date | None = None) -> dict:
        return self.get(
            "/api/stats",
            params={"start": start.isoformat() if start else None, "end": end.isoformat() if end else None},
            headers={"X-Stats-Pin": pin},
        )

    def payment_report(
        self, month: int, year: int, search: str | None = None, access_code: str | None = None
    ) -> dict:
        return self.get(
            "/api/reports/payments",
            params={"month": month, "year": year, "search": search or None},
            headers={"X-Access-Code": access_code},
        )

    def history_report(
        self, month: int | None = None, year: int | None = None, search: str | None = None, access_code: str | None = None
    ) -> list[dict]:
        return self.get(
            "/api/reports/history",
            params={"month": month, "year": year, "search": search or None},
            headers={"X-Access-Code": access_code},
        )

    def pending_notifications(self, limit: int = 50) -> list[dict]:
        return self.get("/api/notifications/pending", params={"limit": limit})
