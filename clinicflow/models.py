from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .auth_models import User, new_uuid
from .db import Base


class Role(enum.Enum):
    DOCTOR = "doctor"
    RECEPTIONIST = "receptionist"


class AppointmentStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    COMPLETED = "completed"
    MISSED = "missed"


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.APPROVED})
INACTIVE_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.DENIED, AppointmentStatus.MISSED})

# status -> statuses reachable from it
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.APPROVED, AppointmentStatus.DENIED}),
    AppointmentStatus.APPROVED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.MISSED}),
    AppointmentStatus.DENIED: frozenset({AppointmentStatus.PENDING}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.MISSED: frozenset(),
}


class NotificationKind(enum.Enum):
    NEW_APPOINTMENT = "NEW_APPOINTMENT"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    RESCHEDULED = "RESCHEDULED"
    MISSED = "MISSED"


PAYMENT_METHODS: dict[str, str] = {
    "cash": "Cash",
    "card": "Credit/Debit Card",
    "upi": "UPI",
    "google_pay": "Google Pay",
    "paytm": "Paytm",
    "phonepe": "PhonePe",
}


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    user: Mapped["User"] = relationship(back_populates="profile")

    def __repr__(self) -> str:
        return f"Profile({self.name}, {self.role.value})"


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    contact_no: Mapped[str] = mapped_column(String(30), nullable=False)

    gender: Mapped[str | None] = mapped_column(String(30), nullable=True)
    location: Mapped[str | None] = mapped_column(String(120), nullable=True)
    medical_history: Mapped[str | None] = mapped_column(Text, nullable=True)
    allergies: Mapped[str | None] = mapped_column(Text, nullable=True)
    blood_type: Mapped[str | None] = mapped_column(String(5), nullable=True)
    current_medications: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    insurance_info: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="patient", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Patient({self.name}, {self.age})"


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    patient_id: Mapped[str] = mapped_column(ForeignKey("patients.id"), nullable=False)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("profiles.user_id"), nullable=False)
    receptionist_id: Mapped[str] = mapped_column(ForeignKey("profiles.user_id"), nullable=False)

    # name at booking time, survives patient edits
    patient_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM

    reason_for_visit: Mapped[str | None] = mapped_column(Text, nullable=True)
    symptoms: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus), default=AppointmentStatus.PENDING, nullable=False
    )
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_walk_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_repeat: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    previous_appointment_id: Mapped[str | None] = mapped_column(ForeignKey("appointments.id"), nullable=True)
    requires_payment: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    patient: Mapped["Patient"] = relationship(back_populates="appointments")
    doctor: Mapped["Profile"] = relationship(foreign_keys=[doctor_id])
    receptionist: Mapped["Profile"] = relationship(foreign_keys=[receptionist_id])
    payments: Mapped[list["Payment"]] = relationship(back_populates="appointment", cascade="all, delete-orphan")
    notifications: Mapped[list["Notification"]] = relationship(
        back_populates="appointment", cascade="all, delete-orphan"
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    appointment_id: Mapped[str] = mapped_column(ForeignKey("appointments.id"), nullable=False)

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    appointment_fee: Mapped[float | None] = mapped_column(Float, nullable=True)
    # [{"test_name": "...", "amount": 250.0}, ...]
    test_payments: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    tests_done: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    appointment: Mapped["Appointment"] = relationship(back_populates="payments")


class Notification(Base):
    """Outbox row; delivery is done by an external push service."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(Enum(NotificationKind), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    appointment_id: Mapped[str | None] = mapped_column(ForeignKey("appointments.id"), nullable=True)

    appointment: Mapped["Appointment"] = relationship(back_populates="notifications")
