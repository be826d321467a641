from __future__ import annotations

import logging

from pydantic import ValidationError
from sqlalchemy import delete, or_, select

from .auth_models import User
from .auth_security import hash_password, verify_password
from .db import db_session
from .errors import NotFoundError
from .models import Appointment, Notification, Profile, Role
from .schemas import SignUpIn, validation_message

logger = logging.getLogger(__name__)


def _profile_flat(p: Profile) -> dict:
    return {"id": p.id, "user_id": p.user_id, "name": p.name, "role": p.role.value}


def sign_up(email: str, password: str, name: str, role: str) -> str:
    """Create the account and its profile. Returns the user id."""
    try:
        data = SignUpIn(email=email, password=password, name=name, role=role)
    except ValidationError as e:
        raise ValueError(validation_message(e)) from None

    with db_session() as s:
        exists = s.execute(select(User).where(User.email == data.email)).scalar_one_or_none()
        if exists:
            raise ValueError("Email already registered.")

        u = User(email=data.email, password_hash=hash_password(data.password), is_active=True)
        s.add(u)
        s.flush()
        s.add(Profile(user_id=u.id, name=data.name, role=Role(data.role)))
        logger.info("Signed up %s as %s", data.email, data.role)
        return u.id


def authenticate(email: str, password: str) -> User | None:
    email = email.strip().lower()
    with db_session() as s:
        u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not u or not u.is_active:
            return None
        if not verify_password(password, u.password_hash):
            logger.warning("Failed login for %s", email)
            return None
        return u


def get_user_by_id(user_id: str) -> User | None:
    with db_session() as s:
        return s.get(User, user_id)


def get_profile(user_id: str) -> dict | None:
    with db_session() as s:
        p = s.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()
        return _profile_flat(p) if p else None


def list_profiles() -> list[dict]:
    with db_session() as s:
        rows = s.scalars(select(Profile).order_by(Profile.name)).all()
        return [_profile_flat(p) for p in rows]


def update_profile(user_id: str, name: str | None = None, role: str | None = None) -> dict:
    with db_session() as s:
        p = s.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()
        if not p:
            raise NotFoundError("Profile not found.")
        if name is not None:
            if len(name.strip()) < 2:
                raise ValueError("Name must be at least 2 characters")
            p.name = name.strip()
        if role is not None:
            try:
                p.role = Role(role)
            except ValueError:
                raise ValueError("Role must be doctor or receptionist") from None
        s.flush()
        return _profile_flat(p)


def delete_profile(user_id: str) -> None:
    """Remove an account, its profile and its notifications. Accounts referenced by appointments stay."""
    with db_session() as s:
        u = s.get(User, user_id)
        if not u:
            raise NotFoundError("Profile not found.")
        booked = s.execute(
            select(Appointment.id)
            .where(or_(Appointment.doctor_id == user_id, Appointment.receptionist_id == user_id))
            .limit(1)
        ).first()
        if booked:
            raise ValueError("This profile has appointments and cannot be deleted.")
        s.execute(delete(Notification).where(Notification.recipient_id == user_id))
        s.delete(u)
        logger.info("Deleted profile %s", user_id)
