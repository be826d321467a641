"""
ClinicFlow backend.

Structure:
- config.py        : environment settings (.env)
- logging_setup.py : logging configuration
- db.py            : SQLAlchemy engine and sessions
- models.py        : ORM models and enums
- auth_*.py        : users, password hashing, JWT
- schemas.py       : form validation (pydantic)
- slots.py         : slot grid and booking capacity
- calendar_view.py : month calendar density
- stats.py         : revenue and patient analytics
- services.py      : use cases (patients, appointments, payments, outbox)
- api_main.py      : FastAPI application
- client.py        : HTTP client used by the Streamlit UI
- seed.py          : demo accounts and generated history
- cli.py           : command line
"""
