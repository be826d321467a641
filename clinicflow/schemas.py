from __future__ import annotations

import re
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .models import PAYMENT_METHODS
from .slots import parse_time

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validation_message(exc: ValidationError) -> str:
    """First error of a ValidationError, without pydantic's prefix."""
    errors = exc.errors()
    if not errors:
        return str(exc)
    msg = errors[0].get("msg", "")
    return msg.removeprefix("Value error, ")


def _check_patient_name(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Patient name is required")
    return v


def _check_age(v: int) -> int:
    if v < 1:
        raise ValueError("Age must be at least 1")
    if v > 150:
        raise ValueError("Age must be less than 150")
    return v


def _check_contact(v: str) -> str:
    v = (v or "").strip()
    if len(v) < 10:
        raise ValueError("Contact number must be at least 10 digits")
    return v


# =========================
# Auth
# =========================
class SignUpIn(BaseModel):
    name: str
    email: str
    password: str
    role: Literal["doctor", "receptionist"]

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters")
        return v


class ProfileUpdateIn(BaseModel):
    name: str | None = None
    role: Literal["doctor", "receptionist"] | None = None


# =========================
# Patients / appointments
# =========================
class PatientFields(BaseModel):
    patient_name: str
    patient_age: int
    contact_no: str
    medical_history: str | None = None
    gender: str | None = None
    location: str | None = None

    @field_validator("patient_name")
    @classmethod
    def check_name(cls, v: str) -> str:
        return _check_patient_name(v)

    @field_validator("patient_age")
    @classmethod
    def check_age(cls, v: int) -> int:
        return _check_age(v)

    @field_validator("contact_no")
    @classmethod
    def check_contact(cls, v: str) -> str:
        return _check_contact(v)


class AppointmentEditIn(PatientFields):
    doctor_id: str
    appointment_date: date
    appointment_time: str
    reason_for_visit: str | None = None
    symptoms: str | None = None

    @field_validator("doctor_id")
    @classmethod
    def check_doctor(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Please select a doctor")
        return v.strip()

    @field_validator("appointment_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return parse_time(v)


class AppointmentFormIn(AppointmentEditIn):
    is_walk_in: bool = False
    # false lets the appointment be completed without a payment
    requires_payment: bool = True
    # set when booking a follow-up of an earlier visit
    previous_appointment_id: str | None = None


class PatientUpdateIn(BaseModel):
    name: str | None = None
    age: int | None = None
    contact_no: str | None = None
    gender: str | None = None
    location: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    blood_type: str | None = None
    current_medications: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    insurance_info: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str | None) -> str | None:
        return None if v is None else _check_patient_name(v)

    @field_validator("age")
    @classmethod
    def check_age(cls, v: int | None) -> int | None:
        return None if v is None else _check_age(v)

    @field_validator("contact_no")
    @classmethod
    def check_contact(cls, v: str | None) -> str | None:
        return None if v is None else _check_contact(v)


class StatusUpdateIn(BaseModel):
    status: Literal["pending", "approved", "denied", "completed", "missed"]
    denial_reason: str | None = None

    @model_validator(mode="after")
    def check_denial_reason(self) -> "StatusUpdateIn":
        if self.status == "denied" and not (self.denial_reason or "").strip():
            raise ValueError("Please provide a reason for denial")
        return self


# =========================
# Payments
# =========================
class LabTestPaymentIn(BaseModel):
    test_name: str = Field(..., min_length=1)
    amount: float = Field(..., ge=0)


class PaymentIn(BaseModel):
    appointment_id: str
    payment_method: str
    amount: float | None = None
    appointment_fee: float | None = Field(default=None, ge=0)
    test_payments: list[LabTestPaymentIn] = Field(default_factory=list)
    tests_done: str | None = None

    @field_validator("payment_method")
    @classmethod
    def check_method(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in PAYMENT_METHODS:
            raise ValueError("Please select a payment method")
        return v

    @model_validator(mode="after")
    def compute_total(self) -> "PaymentIn":
        # the breakdown, when given, is the amount
        if self.appointment_fee is not None or self.test_payments:
            self.amount = (self.appointment_fee or 0) + sum(t.amount for t in self.test_payments)
        if self.amount is None or self.amount < 0.01:
            raise ValueError("Amount must be greater than 0")
        return self
