from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel

from .auth_models import User
from .auth_security import create_access_token, get_subject
from .auth_service import (
    authenticate,
    delete_profile,
    get_profile,
    get_user_by_id,
    list_profiles,
    sign_up,
    update_profile,
)
from .db import init_db
from .errors import NotFoundError
from .logging_setup import configure_logging
from .schemas import (
    AppointmentEditIn,
    AppointmentFormIn,
    PatientUpdateIn,
    PaymentIn,
    ProfileUpdateIn,
    SignUpIn,
    StatusUpdateIn,
)
from . import services

logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

app = FastAPI(title="ClinicFlow API", version="1.0.0")


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    init_db()


# =========================
# Errors -> HTTP
# =========================
@app.exception_handler(ValueError)
def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
def _permission_error(request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


# =========================
# Auth schemas
# =========================
class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    id: str
    email: str
    name: str
    role: str


# =========================
# Auth dependencies
# =========================
def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    # tolerate stray spaces/quotes pasted with the token
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    u = get_user_by_id(user_id)
    if not u or not u.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return u


def get_current_profile(user: User = Depends(get_current_user)) -> dict:
    profile = get_profile(user.id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Profile missing")
    return profile


def require_receptionist(profile: dict = Depends(get_current_profile)) -> dict:
    if profile["role"] != "receptionist":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Receptionists only")
    return profile


def require_stats_pin(x_stats_pin: str | None = Header(default=None)) -> None:
    if not services.check_stats_pin(x_stats_pin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid PIN")


# =========================
# AUTH endpoints
# =========================
@app.post("/api/auth/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignUpIn) -> dict[str, Any]:
    user_id = sign_up(payload.email, payload.password, payload.name, payload.role)
    return {"ok": True, "user_id": user_id}


@app.post("/api/auth/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends()) -> TokenOut:
    u = authenticate(form.username, form.password)
    if not u:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    profile = get_profile(u.id) or {}
    token = create_access_token(
        subject=u.id, extra={"email": u.email, "name": profile.get("name"), "role": profile.get("role")}
    )
    return TokenOut(access_token=token)


@app.get("/api/me", response_model=MeOut)
def me(user: User = Depends(get_current_user), profile: dict = Depends(get_current_profile)) -> MeOut:
    return MeOut(id=user.id, email=user.email, name=profile["name"], role=profile["role"])


# =========================
# Profiles
# =========================
@app.get("/api/profiles")
def api_profiles(profile: dict = Depends(get_current_profile)) -> list[dict]:
    return list_profiles()


@app.patch("/api/profiles/{user_id}")
def api_update_profile(
    user_id: str, payload: ProfileUpdateIn, profile: dict = Depends(require_receptionist)
) -> dict:
    return update_profile(user_id, name=payload.name, role=payload.role)


@app.delete("/api/profiles/{user_id}")
def api_delete_profile(user_id: str, profile: dict = Depends(require_receptionist)) -> dict[str, Any]:
    if user_id == profile["user_id"]:
        raise ValueError("You cannot delete your own profile.")
    delete_profile(user_id)
    return {"ok": True}


@app.get("/api/doctors")
def api_doctors(profile: dict = Depends(get_current_profile)) -> list[dict]:
    return services.list_doctors()


# =========================
# Patients
# =========================
@app.get("/api/patients")
def api_patients(profile: dict = Depends(get_current_profile)) -> list[dict]:
    return services.list_patients()


@app.get("/api/patients/search")
def api_search_patient(name: str = Query(...), profile: dict = Depends(get_current_profile)) -> dict | None:
    return services.search_patient_by_name(name)


@app.get("/api/patients/{patient_id}")
def api_patient(patient_id: str, profile: dict = Depends(get_current_profile)) -> dict:
    return services.get_patient(patient_id)


@app.patch("/api/patients/{patient_id}")
def api_update_patient(
    patient_id: str, payload: PatientUpdateIn, profile: dict = Depends(get_current_profile)
) -> dict:
    return services.update_patient(patient_id, payload)


@app.delete("/api/patients/{patient_id}")
def api_delete_patient(patient_id: str, profile: dict = Depends(require_receptionist)) -> dict[str, Any]:
    if not services.delete_patient(patient_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found.")
    return {"ok": True}


@app.get("/api/patients/{patient_id}/appointments")
def api_patient_appointments(patient_id: str, profile: dict = Depends(get_current_profile)) -> list[dict]:
    return services.patient_appointments(patient_id)


# =========================
# Appointments
# =========================
@app.get("/api/appointments")
def api_appointments(
    day: date | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    profile: dict = Depends(get_current_profile),
) -> list[dict]:
    return services.list_appointments(profile, day=day, status=status_filter)


@app.post("/api/appointments", status_code=status.HTTP_201_CREATED)
def api_create_appointment(payload: AppointmentFormIn, profile: dict = Depends(require_receptionist)) -> dict:
    return services.create_appointment(payload, receptionist_id=profile["user_id"])


@app.patch("/api/appointments/{appointment_id}")
def api_update_appointment(
    appointment_id: str, payload: AppointmentEditIn, profile: dict = Depends(require_receptionist)
) -> dict:
    return services.update_appointment(appointment_id, payload)


@app.post("/api/appointments/{appointment_id}/status")
def api_appointment_status(
    appointment_id: str, payload: StatusUpdateIn, profile: dict = Depends(get_current_profile)
) -> dict:
    return services.update_appointment_status(
        appointment_id, payload.status, denial_reason=payload.denial_reason, actor=profile
    )


@app.delete("/api/appointments/{appointment_id}")
def api_delete_appointment(appointment_id: str, profile: dict = Depends(require_receptionist)) -> dict[str, Any]:
    if not services.delete_appointment(appointment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appointment not found.")
    return {"ok": True}


@app.get("/api/slots")
def api_slots(
    doctor_id: str = Query(...), day: date = Query(...), profile: dict = Depends(get_current_profile)
) -> dict[str, list[dict]]:
    return services.day_slots(doctor_id, day)


@app.get("/api/calendar")
def api_calendar(
    year: int = Query(..., ge=1900, le=9999),
    month: int = Query(..., ge=1, le=12),
    profile: dict = Depends(get_current_profile),
) -> list[list[dict]]:
    return services.calendar_month(year, month, profile)


# =========================
# Payments
# =========================
@app.get("/api/payments")
def api_payments(profile: dict = Depends(require_receptionist)) -> list[dict]:
    return services.list_payments()


@app.post("/api/payments", status_code=status.HTTP_201_CREATED)
def api_create_payment(payload: PaymentIn, profile: dict = Depends(require_receptionist)) -> dict:
    return services.create_payment(payload)


# =========================
# Dashboards and reports
# =========================
@app.get("/api/dashboard")
def api_dashboard(profile: dict = Depends(get_current_profile)) -> dict:
    return services.dashboard(profile)


@app.get("/api/stats", dependencies=[Depends(require_stats_pin)])
def api_stats(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    profile: dict = Depends(require_receptionist),
) -> dict:
    return services.stats_overview(start=start, end=end)


@app.get("/api/reports/payments")
def api_payment_report(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(...),
    search: str | None = Query(default=None),
    x_access_code: str | None = Header(default=None),
    profile: dict = Depends(require_receptionist),
) -> dict:
    return services.payment_report(month, year, search, access_code=x_access_code)


@app.get("/api/reports/history")
def api_history_report(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None),
    search: str | None = Query(default=None),
    x_access_code: str | None = Header(default=None),
    profile: dict = Depends(require_receptionist),
) -> list[dict]:
    return services.appointment_history(month, year, search, access_code=x_access_code)


# =========================
# Maintenance / outbox
# =========================
@app.post("/api/maintenance/cleanup-denied")
def api_cleanup_denied(
    older_than_days: int | None = Query(default=None, ge=0), profile: dict = Depends(require_receptionist)
) -> dict[str, Any]:
    deleted = services.cleanup_denied_appointments(older_than_days)
    return {"success": True, "deleted": deleted}


@app.get("/api/notifications/pending")
def api_notifications_pending(limit: int = 50, profile: dict = Depends(get_current_profile)) -> list[dict]:
    return services.pending_notifications(recipient_id=profile["user_id"], limit=limit)


@app.post("/api/notifications/{notification_id}/sent")
def api_notification_sent(notification_id: int, profile: dict = Depends(get_current_profile)) -> dict[str, Any]:
    return {"ok": services.mark_notification_sent(notification_id, recipient_id=profile["user_id"])}
