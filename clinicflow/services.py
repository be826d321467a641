from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from . import stats
from .calendar_view import month_density
from .config import DENIED_RETENTION_DAYS, EARNINGS_ACCESS_CODE, STATS_PIN
from .db import db_session
from .errors import NotFoundError
from .models import (
    ALLOWED_TRANSITIONS,
    Appointment,
    AppointmentStatus,
    Notification,
    NotificationKind,
    Patient,
    Payment,
    Profile,
    Role,
)
from .schemas import (
    AppointmentEditIn,
    AppointmentFormIn,
    PatientUpdateIn,
    PaymentIn,
    StatusUpdateIn,
    validation_message,
)
from .slots import check_capacity, evening_slots, format_time_label, morning_slots, slot_availability

logger = logging.getLogger(__name__)


def _validate(model: type, data: Any):
    """Build a schema from a dict (or pass an instance through); errors become ValueError."""
    if isinstance(data, model):
        return data
    try:
        return model(**data)
    except ValidationError as e:
        raise ValueError(validation_message(e)) from None


# =========================
# Flat rows
# =========================
def _patient_flat(p: Patient) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "age": p.age,
        "contact_no": p.contact_no,
        "gender": p.gender,
        "location": p.location,
        "medical_history": p.medical_history,
        "allergies": p.allergies,
        "blood_type": p.blood_type,
        "current_medications": p.current_medications,
        "emergency_contact_name": p.emergency_contact_name,
        "emergency_contact_phone": p.emergency_contact_phone,
        "insurance_info": p.insurance_info,
        "created_at": p.created_at.isoformat(),
    }


def _appointment_flat(a: Appointment) -> dict:
    return {
        "id": a.id,
        "patient_id": a.patient_id,
        "patient_name": a.patient_name or (a.patient.name if a.patient else None),
        "patient_age": a.patient.age if a.patient else None,
        "contact_no": a.patient.contact_no if a.patient else None,
        "doctor_id": a.doctor_id,
        "doctor_name": a.doctor.name if a.doctor else None,
        "receptionist_id": a.receptionist_id,
        "receptionist_name": a.receptionist.name if a.receptionist else None,
        "appointment_date": a.appointment_date.isoformat(),
        "appointment_time": a.appointment_time,
        "reason_for_visit": a.reason_for_visit,
        "symptoms": a.symptoms,
        "status": a.status.value,
        "denial_reason": a.denial_reason,
        "is_walk_in": a.is_walk_in,
        "is_repeat": a.is_repeat,
        "previous_appointment_id": a.previous_appointment_id,
        "requires_payment": a.requires_payment,
        "created_at": a.created_at.isoformat(),
        "updated_at": a.updated_at.isoformat(),
    }


def _payment_flat(p: Payment) -> dict:
    a = p.appointment
    return {
        "id": p.id,
        "appointment_id": p.appointment_id,
        "amount": p.amount,
        "appointment_fee": p.appointment_fee,
        "test_payments": p.test_payments or [],
        "tests_done": p.tests_done,
        "payment_method": p.payment_method,
        "created_at": p.created_at.isoformat(),
        "patient_name": (a.patient_name or (a.patient.name if a.patient else None)) if a else None,
        "doctor_id": a.doctor_id if a else None,
        "doctor_name": a.doctor.name if a and a.doctor else None,
        "appointment_date": a.appointment_date.isoformat() if a else None,
        "appointment_time": a.appointment_time if a else None,
    }


def _notification_flat(n: Notification) -> dict:
    return {
        "id": n.id,
        "recipient_id": n.recipient_id,
        "kind": n.kind.value,
        "title": n.title,
        "body": n.body,
        "appointment_id": n.appointment_id,
        "created_at": n.created_at.isoformat(),
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
    }


def _notify(
    s: Session, recipient_id: str, kind: NotificationKind, title: str, body: str, appointment_id: str | None = None
) -> None:
    s.add(Notification(recipient_id=recipient_id, kind=kind, title=title, body=body, appointment_id=appointment_id))


def _get_profile(s: Session, user_id: str) -> Profile | None:
    return s.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()


def _get_appointment(s: Session, appointment_id: str) -> Appointment:
    a = s.get(Appointment, appointment_id)
    if not a:
        raise NotFoundError("Appointment not found.")
    return a


# =========================
# Doctors
# =========================
def list_doctors() -> list[dict]:
    with db_session() as s:
        rows = s.execute(
            select(Profile.user_id, Profile.name).where(Profile.role == Role.DOCTOR).order_by(Profile.name)
        ).all()
        return [{"user_id": r.user_id, "name": r.name} for r in rows]


# =========================
# Patients
# =========================
def list_patients() -> list[dict]:
    with db_session() as s:
        return [_patient_flat(p) for p in s.scalars(select(Patient).order_by(Patient.name))]


def get_patient(patient_id: str) -> dict:
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient not found.")
        return _patient_flat(p)


def search_patient_by_name(name: str) -> dict | None:
    """Case-insensitive exact match, used to pre-fill the intake form."""
    name = (name or "").strip()
    if not name:
        return None
    with db_session() as s:
        p = s.scalars(
            select(Patient).where(func.lower(Patient.name) == name.lower()).order_by(Patient.updated_at.desc())
        ).first()
        return _patient_flat(p) if p else None


def _upsert_patient(s: Session, name: str, age: int, contact_no: str, **extra: Any) -> Patient:
    """Same name and contact number means same patient: update it, otherwise insert."""
    p = s.execute(
        select(Patient).where(and_(Patient.name == name, Patient.contact_no == contact_no))
    ).scalars().first()
    if p:
        p.age = age
        for key, value in extra.items():
            if value is not None:
                setattr(p, key, value)
    else:
        p = Patient(name=name, age=age, contact_no=contact_no, **extra)
        s.add(p)
    s.flush()
    return p


def upsert_patient(
    name: str,
    age: int,
    contact_no: str,
    medical_history: str | None = None,
    gender: str | None = None,
    location: str | None = None,
) -> dict:
    data = _validate(PatientUpdateIn, {"name": name, "age": age, "contact_no": contact_no})
    with db_session() as s:
        p = _upsert_patient(
            s,
            data.name,
            data.age,
            data.contact_no,
            medical_history=medical_history,
            gender=gender,
            location=location,
        )
        return _patient_flat(p)


def update_patient(patient_id: str, changes: PatientUpdateIn | dict) -> dict:
    data = _validate(PatientUpdateIn, changes)
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            raise NotFoundError("Patient not found.")
        for key, value in data.model_dump(exclude_unset=True).items():
            if value is not None or key not in ("name", "age", "contact_no"):
                setattr(p, key, value)
        s.flush()
        return _patient_flat(p)


def delete_patient(patient_id: str) -> bool:
    """Delete the patient together with appointments and payments."""
    with db_session() as s:
        p = s.get(Patient, patient_id)
        if not p:
            return False
        s.delete(p)
        logger.info("Deleted patient %s", patient_id)
        return True


def patient_appointments(patient_id: str) -> list[dict]:
    """Appointment history of a patient, newest first, with what was paid."""
    with db_session() as s:
        rows = s.scalars(
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc())
        ).all()
        out = []
        for a in rows:
            item = _appointment_flat(a)
            item["payments"] = [
                {
                    "payment_method": p.payment_method,
                    "total": stats.payment_total(_payment_flat(p)),
                    "tests_done": stats.tests_done_label(_payment_flat(p)),
                }
                for p in a.payments
            ]
            out.append(item)
        return out


# =========================
# Appointments
# =========================
def list_appointments(
    profile: dict | None = None,
    doctor_id: str | None = None,
    day: date | None = None,
    status: str | None = None,
) -> list[dict]:
    """
    Appointments ordered by date and time.
    A doctor sees its own appointments, a receptionist the ones it booked.
    """
    q = select(Appointment)
    if profile and profile.get("role") == Role.DOCTOR.value:
        q = q.where(Appointment.doctor_id == profile["user_id"])
    elif profile and profile.get("role") == Role.RECEPTIONIST.value:
        q = q.where(Appointment.receptionist_id == profile["user_id"])
    if doctor_id:
        q = q.where(Appointment.doctor_id == doctor_id)
    if day:
        q = q.where(Appointment.appointment_date == day)
    if status:
        q = q.where(Appointment.status == AppointmentStatus(status))
    q = q.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())

    with db_session() as s:
        return [_appointment_flat(a) for a in s.scalars(q)]


def _day_rows(s: Session, doctor_id: str, day: date, exclude_id: str | None = None) -> list[dict]:
    q = select(Appointment.id, Appointment.appointment_time, Appointment.status).where(
        and_(Appointment.doctor_id == doctor_id, Appointment.appointment_date == day)
    )
    return [
        {"appointment_time": r.appointment_time, "status": r.status.value}
        for r in s.execute(q).all()
        if r.id != exclude_id
    ]


def day_slots(doctor_id: str, day: date) -> dict[str, list[dict]]:
    """Slot grid of a doctor's day split in morning and evening, with occupancy."""
    with db_session() as s:
        rows = _day_rows(s, doctor_id, day)
    availability = slot_availability(rows)
    return {
        "morning": [availability[t].as_dict() for t in morning_slots()],
        "evening": [availability[t].as_dict() for t in evening_slots()],
    }


def create_appointment(form: AppointmentFormIn | dict, receptionist_id: str) -> dict:
    """
    Intake of a new appointment:
    - creates or updates the patient (same name + contact)
    - checks the slot capacity (walk-ins skip it)
    - stores the appointment as pending and notifies the doctor
    """
    data = _validate(AppointmentFormIn, form)

    with db_session() as s:
        receptionist = _get_profile(s, receptionist_id)
        if not receptionist or receptionist.role != Role.RECEPTIONIST:
            raise PermissionError("Only receptionists can book appointments.")

        doctor = _get_profile(s, data.doctor_id)
        if not doctor or doctor.role != Role.DOCTOR:
            raise NotFoundError("Doctor not found.")

        if not data.is_walk_in:
            check_capacity(_day_rows(s, data.doctor_id, data.appointment_date), data.appointment_time)

        if data.previous_appointment_id and not s.get(Appointment, data.previous_appointment_id):
            raise NotFoundError("Previous appointment not found.")

        patient = _upsert_patient(
            s,
            data.patient_name,
            data.patient_age,
            data.contact_no,
            medical_history=data.medical_history,
            gender=data.gender,
            location=data.location,
        )

        a = Appointment(
            patient_id=patient.id,
            patient_name=data.patient_name,
            doctor_id=data.doctor_id,
            receptionist_id=receptionist_id,
            appointment_date=data.appointment_date,
            appointment_time=data.appointment_time,
            reason_for_visit=data.reason_for_visit,
            symptoms=data.symptoms,
            status=AppointmentStatus.PENDING,
            is_walk_in=data.is_walk_in,
            requires_payment=data.requires_payment,
            is_repeat=data.previous_appointment_id is not None,
            previous_appointment_id=data.previous_appointment_id,
        )
        s.add(a)
        s.flush()

        _notify(
            s,
            data.doctor_id,
            NotificationKind.NEW_APPOINTMENT,
            "New Appointment Created",
            f"Appointment for {data.patient_name} on {data.appointment_date:%d/%m/%Y} "
            f"at {format_time_label(data.appointment_time)} is awaiting approval.",
            a.id,
        )
        logger.info("Booked appointment %s for %s with doctor %s", a.id, data.patient_name, data.doctor_id)
        return _appointment_flat(a)


def update_appointment(appointment_id: str, changes: AppointmentEditIn | dict) -> dict:
    """
    Edit an appointment and its patient details.
    Moving it to another day or time sends it back to the doctor for approval.
    """
    data = _validate(AppointmentEditIn, changes)

    with db_session() as s:
        a = _get_appointment(s, appointment_id)

        doctor = _get_profile(s, data.doctor_id)
        if not doctor or doctor.role != Role.DOCTOR:
            raise NotFoundError("Doctor not found.")

        timing_changed = (
            data.appointment_date != a.appointment_date
            or data.appointment_time != a.appointment_time
            or data.doctor_id != a.doctor_id
        )
        if timing_changed:
            if a.status in (AppointmentStatus.COMPLETED, AppointmentStatus.MISSED):
                raise ValueError(f"A {a.status.value} appointment cannot be rescheduled.")
            if not a.is_walk_in:
                check_capacity(
                    _day_rows(s, data.doctor_id, data.appointment_date, exclude_id=a.id), data.appointment_time
                )

        p = a.patient
        p.name = data.patient_name
        p.age = data.patient_age
        p.contact_no = data.contact_no

        a.patient_name = data.patient_name
        a.doctor_id = data.doctor_id
        a.appointment_date = data.appointment_date
        a.appointment_time = data.appointment_time
        a.reason_for_visit = data.reason_for_visit
        a.symptoms = data.symptoms

        if timing_changed and a.status in (AppointmentStatus.APPROVED, AppointmentStatus.DENIED):
            a.status = AppointmentStatus.PENDING
            a.denial_reason = None
        if timing_changed:
            _notify(
                s,
                data.doctor_id,
                NotificationKind.RESCHEDULED,
                "Appointment Rescheduled",
                f"{data.patient_name} moved to {data.appointment_date:%d/%m/%Y} "
                f"at {format_time_label(data.appointment_time)}.",
                a.id,
            )
            logger.info("Rescheduled appointment %s", a.id)

        s.flush()
        s.refresh(a)
        return _appointment_flat(a)


def update_appointment_status(
    appointment_id: str, status: str, denial_reason: str | None = None, actor: dict | None = None
) -> dict:
    """
    Move an appointment along its workflow.
    - doctors approve or deny (with a reason) their own pending appointments
    - receptionists mark approved appointments as missed
    - completion goes through ``create_payment`` unless no payment is required
    ``actor`` is the caller's profile; None skips the role checks (CLI, jobs).
    """
    data = _validate(StatusUpdateIn, {"status": status, "denial_reason": denial_reason})
    target = AppointmentStatus(data.status)

    with db_session() as s:
        a = _get_appointment(s, appointment_id)

        if actor is not None:
            role = actor.get("role")
            if target in (AppointmentStatus.APPROVED, AppointmentStatus.DENIED):
                if role != Role.DOCTOR.value or actor.get("user_id") != a.doctor_id:
                    raise PermissionError("Only the assigned doctor can approve or deny.")
            elif role != Role.RECEPTIONIST.value:
                raise PermissionError("Only receptionists can change this status.")

        if target not in ALLOWED_TRANSITIONS[a.status]:
            logger.warning("Rejected transition %s -> %s on %s", a.status.value, target.value, a.id)
            raise ValueError(f"Cannot change a {a.status.value} appointment to {target.value}.")
        if target == AppointmentStatus.COMPLETED and a.requires_payment:
            raise ValueError("Record a payment to complete this appointment.")

        a.status = target
        a.denial_reason = data.denial_reason.strip() if target == AppointmentStatus.DENIED else None

        if target in (AppointmentStatus.APPROVED, AppointmentStatus.DENIED):
            kind = NotificationKind.APPROVED if target == AppointmentStatus.APPROVED else NotificationKind.DENIED
            body = f"Appointment for {a.patient_name} on {a.appointment_date:%d/%m/%Y} was {target.value}."
            if a.denial_reason:
                body += f" Reason: {a.denial_reason}"
            _notify(s, a.receptionist_id, kind, f"Appointment {target.value.capitalize()}", body, a.id)
        elif target == AppointmentStatus.MISSED:
            _notify(
                s,
                a.doctor_id,
                NotificationKind.MISSED,
                "Appointment Missed",
                f"{a.patient_name} did not show up on {a.appointment_date:%d/%m/%Y}.",
                a.id,
            )

        logger.info("Appointment %s is now %s", a.id, target.value)
        s.flush()
        s.refresh(a)
        return _appointment_flat(a)


def delete_appointment(appointment_id: str) -> bool:
    with db_session() as s:
        a = s.get(Appointment, appointment_id)
        if not a:
            return False
        s.delete(a)
        logger.info("Deleted appointment %s", appointment_id)
        return True


def cleanup_denied_appointments(older_than_days: int | None = None, now: datetime | None = None) -> int:
    """Purge denied appointments last touched before the retention window. Returns how many."""
    days = DENIED_RETENTION_DAYS if older_than_days is None else older_than_days
    cutoff = (now or datetime.now()) - timedelta(days=days)

    with db_session() as s:
        old = s.scalars(
            select(Appointment).where(
                and_(Appointment.status == AppointmentStatus.DENIED, Appointment.updated_at < cutoff)
            )
        ).all()
        for a in old:
            s.delete(a)
        logger.info("Cleaned up %d denied appointments older than %d days", len(old), days)
        return len(old)


# =========================
# Payments
# =========================
def create_payment(payment: PaymentIn | dict) -> dict:
    """Record the payment of an approved appointment and mark it completed."""
    data = _validate(PaymentIn, payment)

    with db_session() as s:
        a = _get_appointment(s, data.appointment_id)
        if a.status != AppointmentStatus.APPROVED:
            raise ValueError(f"Only approved appointments can be paid (this one is {a.status.value}).")
        if a.payments:
            raise ValueError("Payment already recorded for this appointment.")

        tests = [t.model_dump() for t in data.test_payments]
        p = Payment(
            appointment_id=a.id,
            amount=round(data.amount, 2),
            appointment_fee=data.appointment_fee,
            test_payments=tests or None,
            tests_done=data.tests_done or (", ".join(t["test_name"] for t in tests) or None),
            payment_method=data.payment_method,
        )
        s.add(p)
        a.status = AppointmentStatus.COMPLETED
        s.flush()
        s.refresh(p)
        logger.info("Recorded payment of %.2f (%s) for appointment %s", p.amount, p.payment_method, a.id)
        return _payment_flat(p)


def list_payments() -> list[dict]:
    with db_session() as s:
        return [_payment_flat(p) for p in s.scalars(select(Payment).order_by(Payment.created_at.desc()))]


# =========================
# Views and reports
# =========================
def calendar_month(year: int, month: int, profile: dict | None = None, today: date | None = None) -> list[list[dict]]:
    weeks = month_density(list_appointments(profile), year, month, today=today)
    return [[cell.as_dict() for cell in week] for week in weeks]


def dashboard(profile: dict, today: date | None = None) -> dict:
    appointments = list_appointments(profile)
    if profile.get("role") == Role.DOCTOR.value:
        return stats.doctor_dashboard(appointments, today)
    return stats.receptionist_dashboard(appointments, list_payments(), today)


def check_stats_pin(pin: str | None) -> bool:
    return pin == STATS_PIN


def check_access_code(code: str | None) -> bool:
    return code == EARNINGS_ACCESS_CODE


def stats_overview(today: date | None = None, start: date | None = None, end: date | None = None) -> dict:
    return stats.stats_overview(list_patients(), list_appointments(), list_payments(), today, start, end)


def payment_report(month: int, year: int, search: str | None = None, access_code: str | None = None) -> dict:
    return stats.payment_report(list_payments(), month, year, search, show_amounts=check_access_code(access_code))


def appointment_history(
    month: int | None = None, year: int | None = None, search: str | None = None, access_code: str | None = None
) -> list[dict]:
    return stats.appointment_history(
        list_appointments(), list_payments(), month, year, search, show_payments=check_access_code(access_code)
    )


# =========================
# Notification outbox
# =========================
def pending_notifications(recipient_id: str | None = None, limit: int = 50) -> list[dict]:
    """Notifications not sent yet (sent_at is NULL), oldest first."""
    q = select(Notification).where(Notification.sent_at.is_(None))
    if recipient_id:
        q = q.where(Notification.recipient_id == recipient_id)
    q = q.order_by(Notification.created_at.asc(), Notification.id.asc()).limit(limit)
    with db_session() as s:
        return [_notification_flat(n) for n in s.scalars(q)]


def mark_notification_sent(notification_id: int, recipient_id: str | None = None) -> bool:
    """False when already sent. With ``recipient_id`` only that user's notifications can be marked."""
    with db_session() as s:
        n = s.get(Notification, notification_id)
        if not n or (recipient_id and n.recipient_id != recipient_id):
            raise NotFoundError("Notification not found.")
        if n.sent_at is not None:
            return False
        n.sent_at = datetime.now()
        return True
