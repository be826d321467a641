from __future__ import annotations

import logging
import random
from datetime import date, datetime, time, timedelta

from sqlalchemy import delete, select

from .auth_models import User
from .auth_service import sign_up
from .db import db_session
from .models import Appointment, AppointmentStatus, Notification, Patient, Payment, Profile, Role
from .slots import DEFAULT_MAX_SLOTS, generate_slots, max_slots

logger = logging.getLogger(__name__)


# =========================
# Demo accounts
# =========================
DEMO_PASSWORD = "clinic123"

DEMO_ACCOUNTS = [
    ("Dr. Anil Mehta", "anil.mehta@clinic.local", "doctor"),
    ("Dr. Priya Sharma", "priya.sharma@clinic.local", "doctor"),
    ("Reception Desk", "reception@clinic.local", "receptionist"),
]


def seed_base(password: str = DEMO_PASSWORD) -> list[str]:
    """
    Demo accounts (idempotent):
    - two doctors
    - one receptionist
    Returns the e-mails created in this run.
    """
    created = []
    for name, email, role in DEMO_ACCOUNTS:
        with db_session() as s:
            exists = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if exists is None:
            sign_up(email, password, name, role)
            created.append(email)
    logger.info("Seeded %d demo accounts", len(created))
    return created


# =========================
# Demo data (last 90 days)
# =========================
RANDOM_SEED = 42
DAYS_BACK = 90
PATIENTS_COUNT = 120

# clinic traffic by weekday (0=mon...6=sun)
TRAFFIC_FACTOR = {
    0: 1.15,
    1: 1.05,
    2: 1.00,
    3: 1.05,
    4: 1.10,
    5: 0.60,
    6: 0.00,  # closed
}

FIRST_NAMES = [
    "Rahul", "Amit", "Vikram", "Suresh", "Arjun", "Karan", "Rohan", "Manoj",
    "Sneha", "Pooja", "Anjali", "Kavya", "Neha", "Divya", "Meera", "Ritu",
]
LAST_NAMES = ["Patel", "Singh", "Kumar", "Gupta", "Reddy", "Iyer", "Nair", "Joshi", "Verma", "Das"]
LOCATIONS = ["Andheri", "Bandra", "Dadar", "Powai", "Thane", "Vashi", None]
REASONS = [None, "Fever", "Follow-up", "Back pain", "Routine check-up", "Cough and cold", "Skin rash"]
LAB_TESTS = [("CBC", 300.0), ("Blood Sugar", 150.0), ("Lipid Profile", 600.0), ("X-Ray", 500.0), ("ECG", 400.0)]
FEES = [300.0, 400.0, 500.0]
METHOD_WEIGHTS = {"cash": 4, "upi": 3, "card": 2, "google_pay": 2, "paytm": 1, "phonepe": 1}


def _random_phone() -> str:
    return f"9{random.randint(100000000, 999999999)}"


def _status_for_day(day: date, today: date) -> AppointmentStatus:
    """Past days are mostly completed; today and the future are still open."""
    delta = (today - day).days
    r = random.random()
    if delta >= 1:
        if r < 0.82:
            return AppointmentStatus.COMPLETED
        if r < 0.92:
            return AppointmentStatus.MISSED
        return AppointmentStatus.DENIED
    if r < 0.55:
        return AppointmentStatus.APPROVED
    if r < 0.9:
        return AppointmentStatus.PENDING
    return AppointmentStatus.DENIED


def reset_demo_data() -> None:
    """Delete patients, appointments, payments and notifications (accounts are kept)."""
    with db_session() as s:
        s.execute(delete(Notification))
        s.execute(delete(Payment))
        s.execute(delete(Appointment))
        s.execute(delete(Patient))


def _seed_patients(s) -> list[Patient]:
    patients = []
    for _ in range(PATIENTS_COUNT):
        p = Patient(
            name=f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
            age=random.randint(1, 85),
            contact_no=_random_phone(),
            gender=random.choice(["Male", "Female", "Other", None]),
            location=random.choice(LOCATIONS),
        )
        s.add(p)
        patients.append(p)
    s.flush()
    return patients


def _add_payment(s, a: Appointment, paid_at: datetime) -> None:
    fee = random.choice(FEES)
    tests = [{"test_name": n, "amount": amt} for n, amt in random.sample(LAB_TESTS, k=random.choice([0, 0, 0, 1, 2]))]
    s.add(
        Payment(
            appointment_id=a.id,
            amount=fee + sum(t["amount"] for t in tests),
            appointment_fee=fee,
            test_payments=tests or None,
            tests_done=", ".join(t["test_name"] for t in tests) or None,
            payment_method=random.choices(list(METHOD_WEIGHTS), weights=list(METHOD_WEIGHTS.values()), k=1)[0],
            created_at=paid_at,
        )
    )


def generate_demo_data(days_back: int = DAYS_BACK, today: date | None = None, reset: bool = True) -> int:
    """
    ~90 days of appointments and payments so that the calendar and the reports have something to show.
    Slot capacity is respected; returns the number of appointments created.
    """
    random.seed(RANDOM_SEED)
    today = today or date.today()
    if reset:
        reset_demo_data()

    with db_session() as s:
        doctors = list(s.scalars(select(Profile).where(Profile.role == Role.DOCTOR)).all())
        receptionists = list(s.scalars(select(Profile).where(Profile.role == Role.RECEPTIONIST)).all())
        if not doctors or not receptionists:
            raise RuntimeError("No demo accounts. Run seed first.")

        patients = _seed_patients(s)
        slots = generate_slots()
        created = 0

        day = today - timedelta(days=days_back)
        while day <= today + timedelta(days=7):
            factor = TRAFFIC_FACTOR[day.weekday()]
            if factor <= 0:
                day += timedelta(days=1)
                continue

            for doctor in doctors:
                cap = max(3, int(12 * factor + random.randint(-3, 3)))
                used: dict[str, int] = {}
                for slot in random.sample(slots, k=min(cap, len(slots))):
                    if used.get(slot, 0) >= min(max_slots(slot), DEFAULT_MAX_SLOTS):
                        continue
                    used[slot] = used.get(slot, 0) + 1

                    patient = random.choice(patients)
                    st = _status_for_day(day, today)
                    booked_at = datetime.combine(day - timedelta(days=random.randint(0, 5)), time(9, 0))
                    a = Appointment(
                        patient_id=patient.id,
                        patient_name=patient.name,
                        doctor_id=doctor.user_id,
                        receptionist_id=random.choice(receptionists).user_id,
                        appointment_date=day,
                        appointment_time=slot,
                        reason_for_visit=random.choice(REASONS),
                        status=st,
                        denial_reason="Doctor unavailable" if st == AppointmentStatus.DENIED else None,
                        is_walk_in=random.random() < 0.1,
                        created_at=booked_at,
                        updated_at=booked_at,
                    )
                    s.add(a)
                    s.flush()
                    if st == AppointmentStatus.COMPLETED:
                        h, m = map(int, slot.split(":"))
                        _add_payment(s, a, datetime.combine(day, time(h, m)) + timedelta(minutes=20))
                    created += 1

            day += timedelta(days=1)

    logger.info("Generated %d demo appointments", created)
    return created
