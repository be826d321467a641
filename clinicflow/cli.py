from __future__ import annotations

import argparse
import json
import logging
from datetime import date

from .auth_service import list_profiles
from .db import init_db
from .logging_setup import configure_logging
from .seed import DEMO_PASSWORD, generate_demo_data, seed_base
from .services import (
    cleanup_denied_appointments,
    create_appointment,
    create_payment,
    day_slots,
    list_appointments,
    list_doctors,
    list_patients,
    mark_notification_sent,
    pending_notifications,
    stats_overview,
    update_appointment_status,
    upsert_patient,
)

logger = logging.getLogger(__name__)


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    print("Database ready.")


def cmd_seed(args: argparse.Namespace) -> None:
    created = seed_base(args.password)
    if created:
        print(f"Created {len(created)} demo accounts (password: {args.password}):")
        for email in created:
            print(f"  {email}")
    else:
        print("Demo accounts already present.")


def cmd_demo_data(args: argparse.Namespace) -> None:
    seed_base()
    n = generate_demo_data(days_back=args.days, reset=not args.keep)
    print(f"Generated {n} appointments over the last {args.days} days.")


def cmd_list(args: argparse.Namespace) -> None:
    if args.entity == "doctors":
        for d in list_doctors():
            print(f"{d['user_id']} | {d['name']}")
    elif args.entity == "patients":
        for p in list_patients():
            print(f"{p['id']} | {p['name']} ({p['age']}) | {p['contact_no']}")
    elif args.entity == "profiles":
        for p in list_profiles():
            print(f"{p['user_id']} | {p['name']} | {p['role']}")
    elif args.entity == "appointments":
        day = date.fromisoformat(args.day) if args.day else None
        for a in list_appointments(day=day, status=args.status):
            print(
                f"{a['id']} | {a['appointment_date']} {a['appointment_time']} | "
                f"{a['patient_name']} -> {a['doctor_name']} | {a['status']}"
            )


def cmd_add_patient(args: argparse.Namespace) -> None:
    p = upsert_patient(args.name, args.age, args.contact, gender=args.gender, location=args.location)
    print(f"Patient saved: {p['id']}")


def cmd_book(args: argparse.Namespace) -> None:
    a = create_appointment(
        {
            "patient_name": args.name,
            "patient_age": args.age,
            "contact_no": args.contact,
            "doctor_id": args.doctor_id,
            "appointment_date": args.date,
            "appointment_time": args.time,
            "reason_for_visit": args.reason,
            "is_walk_in": args.walk_in,
            "requires_payment": not args.no_payment,
        },
        receptionist_id=args.receptionist_id,
    )
    print(f"Appointment {a['id']} booked for {a['appointment_date']} {a['appointment_time']} ({a['status']}).")


def cmd_status(args: argparse.Namespace) -> None:
    a = update_appointment_status(args.appointment_id, args.status, denial_reason=args.reason)
    print(f"Appointment {a['id']} is now {a['status']}.")


def cmd_pay(args: argparse.Namespace) -> None:
    tests = []
    for item in args.test or []:
        name, _, amount = item.partition("=")
        tests.append({"test_name": name, "amount": float(amount or 0)})
    p = create_payment(
        {
            "appointment_id": args.appointment_id,
            "payment_method": args.method,
            "appointment_fee": args.fee,
            "test_payments": tests,
        }
    )
    print(f"Payment {p['id']}: {p['amount']:.2f} via {p['payment_method']}. Appointment completed.")


def cmd_slots(args: argparse.Namespace) -> None:
    grid = day_slots(args.doctor_id, date.fromisoformat(args.date))
    for band in ("morning", "evening"):
        print(band.capitalize())
        for s in grid[band]:
            mark = " " if s["available"] else "x"
            print(f"  [{mark}] {s['label']:>8}  {s['info']}")


def cmd_stats(args: argparse.Namespace) -> None:
    start = date.fromisoformat(args.start) if args.start else None
    end = date.fromisoformat(args.end) if args.end else None
    print(json.dumps(stats_overview(start=start, end=end), indent=2))


def cmd_cleanup(args: argparse.Namespace) -> None:
    n = cleanup_denied_appointments(args.days)
    print(f"Deleted {n} denied appointments.")


def cmd_notifications(args: argparse.Namespace) -> None:
    """
    Stand-in for the push service:
    - reads the pending notifications
    - prints them
    - marks them as sent (with --mark-sent)
    """
    pending = pending_notifications(limit=args.limit)
    if not pending:
        print("No pending notifications.")
        return

    for n in pending:
        print(f"[{n['id']}] {n['kind']} | {n['created_at']} | {n['title']}: {n['body']}")
        if args.mark_sent:
            mark_notification_sent(n["id"])

    if args.mark_sent:
        print("Notifications marked as sent.")


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("clinicflow.api_main:app", host=args.host, port=args.port, reload=args.reload)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="clinicflow", description="ClinicFlow CLI (admin and simulated external systems)")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create the database tables")
    p_init.set_defaults(func=cmd_init)

    p_seed = sub.add_parser("seed", help="Create the demo doctor and receptionist accounts")
    p_seed.add_argument("--password", default=DEMO_PASSWORD)
    p_seed.set_defaults(func=cmd_seed)

    p_demo = sub.add_parser("demo-data", help="Generate appointments and payments for the last days")
    p_demo.add_argument("--days", type=int, default=90)
    p_demo.add_argument("--keep", action="store_true", help="Do not wipe existing patients and appointments")
    p_demo.set_defaults(func=cmd_demo_data)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["doctors", "patients", "profiles", "appointments"])
    p_list.add_argument("--day", default=None, help="Appointments of this day (YYYY-MM-DD)")
    p_list.add_argument("--status", default=None, choices=["pending", "approved", "denied", "completed", "missed"])
    p_list.set_defaults(func=cmd_list)

    p_addp = sub.add_parser("add-patient", help="Create or update a patient (same name + contact)")
    p_addp.add_argument("--name", required=True)
    p_addp.add_argument("--age", type=int, required=True)
    p_addp.add_argument("--contact", required=True)
    p_addp.add_argument("--gender", default=None)
    p_addp.add_argument("--location", default=None)
    p_addp.set_defaults(func=cmd_add_patient)

    p_book = sub.add_parser("book", help="Book an appointment")
    p_book.add_argument("--receptionist-id", required=True)
    p_book.add_argument("--doctor-id", required=True)
    p_book.add_argument("--name", required=True)
    p_book.add_argument("--age", type=int, required=True)
    p_book.add_argument("--contact", required=True)
    p_book.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_book.add_argument("--time", required=True, help="HH:MM, e.g. 10:15")
    p_book.add_argument("--reason", default=None)
    p_book.add_argument("--walk-in", action="store_true", help="Walk-in: skip the slot limit")
    p_book.add_argument("--no-payment", action="store_true", help="Allow completion without a payment")
    p_book.set_defaults(func=cmd_book)

    p_status = sub.add_parser("status", help="Change the status of an appointment")
    p_status.add_argument("--appointment-id", required=True)
    p_status.add_argument("--status", required=True, choices=["pending", "approved", "denied", "completed", "missed"])
    p_status.add_argument("--reason", default=None, help="Required when denying")
    p_status.set_defaults(func=cmd_status)

    p_pay = sub.add_parser("pay", help="Record the payment of an approved appointment")
    p_pay.add_argument("--appointment-id", required=True)
    p_pay.add_argument("--method", required=True)
    p_pay.add_argument("--fee", type=float, required=True)
    p_pay.add_argument("--test", action="append", help="Lab test as NAME=AMOUNT (repeatable)")
    p_pay.set_defaults(func=cmd_pay)

    p_slots = sub.add_parser("slots", help="Slot occupancy of a doctor's day")
    p_slots.add_argument("--doctor-id", required=True)
    p_slots.add_argument("--date", required=True)
    p_slots.set_defaults(func=cmd_slots)

    p_stats = sub.add_parser("stats", help="Statistics overview as JSON")
    p_stats.add_argument("--start", default=None)
    p_stats.add_argument("--end", default=None)
    p_stats.set_defaults(func=cmd_stats)

    p_clean = sub.add_parser("cleanup", help="Delete old denied appointments")
    p_clean.add_argument("--days", type=int, default=None, help="Retention in days (default from config)")
    p_clean.set_defaults(func=cmd_cleanup)

    p_not = sub.add_parser("notifications", help="Read and deliver pending notifications (simulation)")
    p_not.add_argument("--limit", type=int, default=50)
    p_not.add_argument("--mark-sent", action="store_true", help="Mark them as sent after printing")
    p_not.set_defaults(func=cmd_notifications)

    p_serve = sub.add_parser("serve", help="Run the API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    init_db()  # tables always exist
    try:
        args.func(args)
    except (ValueError, LookupError, PermissionError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
