"""
Reporting over flat rows (dicts) as returned by ``services``.

Payments carry the joined appointment fields (``patient_name``,
``doctor_name``, ``appointment_date``...). Months are 1-12.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Mapping, Sequence

from .calendar_view import as_date

NOT_SPECIFIED = "Not Specified"
AGE_GROUPS = ["0-17", "18-29", "30-44", "45-59", "60+"]


def as_datetime(value: datetime | date | str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return datetime.fromisoformat(str(value))


# =========================
# Payments
# =========================
def payment_total(payment: Mapping) -> float:
    """Fee plus lab tests when the breakdown is present, the plain amount otherwise."""
    fee = payment.get("appointment_fee")
    tests = payment.get("test_payments") or []
    if fee is not None or tests:
        return float(fee or 0) + sum(float(t.get("amount") or 0) for t in tests)
    return float(payment.get("amount") or 0)


def tests_done_label(payment: Mapping) -> str:
    tests = payment.get("test_payments") or []
    if tests:
        return ", ".join(t["test_name"] for t in tests)
    return payment.get("tests_done") or "None"


def total_revenue(payments: Iterable[Mapping]) -> float:
    return round(sum(payment_total(p) for p in payments), 2)


def payment_method_breakdown(payments: Iterable[Mapping]) -> dict[str, float]:
    out: dict[str, float] = {}
    for p in payments:
        out[p["payment_method"]] = out.get(p["payment_method"], 0.0) + payment_total(p)
    return {k: round(v, 2) for k, v in out.items()}


# =========================
# Filters
# =========================
def in_month(value: datetime | date | str, month: int, year: int) -> bool:
    d = as_datetime(value)
    return d.month == month and d.year == year


def filter_by_month(rows: Iterable[Mapping], month: int, year: int, key: str = "created_at") -> list[Mapping]:
    return [r for r in rows if r.get(key) and in_month(r[key], month, year)]


def filter_by_date_range(
    rows: Iterable[Mapping], start: date | None = None, end: date | None = None, key: str = "created_at"
) -> list[Mapping]:
    """Rows whose ``key`` falls between start and end, both included. Open ends are unbounded."""
    out = []
    for r in rows:
        if not r.get(key):
            continue
        d = as_datetime(r[key]).date()
        if start and d < start:
            continue
        if end and d > end:
            continue
        out.append(r)
    return out


def matches_search(row: Mapping, term: str | None, fields: Sequence[str]) -> bool:
    if not term:
        return True
    term = term.lower()
    return any(term in str(row.get(f) or "").lower() for f in fields)


def monthly_earnings(payments: Iterable[Mapping], today: date | None = None) -> float:
    today = today or date.today()
    return total_revenue(filter_by_month(payments, today.month, today.year))


# =========================
# Patient distributions
# =========================
def distribution(rows: Iterable[Mapping], key: str, default: str = NOT_SPECIFIED) -> list[dict]:
    """Count rows per value of ``key``, in order of first appearance."""
    counts: dict[str, int] = {}
    for r in rows:
        name = r.get(key) or default
        counts[name] = counts.get(name, 0) + 1
    return [{"name": k, "value": v} for k, v in counts.items()]


def age_group(age: int) -> str:
    if age < 18:
        return "0-17"
    if age < 30:
        return "18-29"
    if age < 45:
        return "30-44"
    if age < 60:
        return "45-59"
    return "60+"


def age_distribution(patients: Iterable[Mapping]) -> list[dict]:
    grouped = distribution(({"group": age_group(int(p["age"]))} for p in patients), "group")
    return sorted(grouped, key=lambda item: AGE_GROUPS.index(item["name"]))


def patient_stats(patients: Sequence[Mapping]) -> dict:
    return {
        "total": len(patients),
        "gender": distribution(patients, "gender"),
        "age": age_distribution(patients),
        "location": distribution(patients, "location"),
    }


# =========================
# Dashboards
# =========================
def doctor_dashboard(appointments: Sequence[Mapping], today: date | None = None) -> dict:
    today = today or date.today()
    return {
        "pending": sum(1 for a in appointments if a["status"] == "pending"),
        "today": sum(
            1 for a in appointments if a["status"] == "approved" and as_date(a["appointment_date"]) == today
        ),
        "completed": sum(1 for a in appointments if a["status"] == "completed"),
    }


def receptionist_dashboard(
    appointments: Sequence[Mapping], payments: Sequence[Mapping], today: date | None = None
) -> dict:
    today = today or date.today()
    this_month = [a for a in appointments if in_month(a["appointment_date"], today.month, today.year)]
    return {
        "total_earnings": total_revenue(payments),
        "today": sum(1 for a in appointments if as_date(a["appointment_date"]) == today),
        "completed_today": sum(
            1 for a in appointments if a["status"] == "completed" and as_date(a["appointment_date"]) == today
        ),
        "completed_this_month": sum(1 for a in this_month if a["status"] == "completed"),
        "total_this_month": len(this_month),
        "pending_or_denied": sum(1 for a in appointments if a["status"] in ("pending", "denied")),
    }


# =========================
# Reports
# =========================
def payment_report_rows(payments: Iterable[Mapping]) -> list[dict]:
    return [
        {
            "payment_id": p["id"],
            "patient_name": p.get("patient_name") or "Unknown",
            "doctor_name": p.get("doctor_name") or "Unknown",
            "appointment_date": p.get("appointment_date") or "",
            "appointment_time": p.get("appointment_time") or "",
            "amount": round(payment_total(p), 2),
            "payment_method": p["payment_method"],
            "tests_done": tests_done_label(p),
            "created_at": p["created_at"],
        }
        for p in payments
    ]


def payment_report(
    payments: Iterable[Mapping],
    month: int,
    year: int,
    search: str | None = None,
    show_amounts: bool = False,
) -> dict:
    """
    Monthly payment report:
    - rows of the month matching the search (patient, doctor, method)
    - total revenue and per-method breakdown
    Amounts are blanked unless ``show_amounts``.
    """
    rows = [
        r
        for r in payment_report_rows(filter_by_month(payments, month, year))
        if matches_search(r, search, ("patient_name", "doctor_name", "payment_method"))
    ]
    report = {
        "month": month,
        "year": year,
        "count": len(rows),
        "rows": rows,
        "total_revenue": total_revenue(rows),
        "breakdown": payment_method_breakdown(rows),
        "amounts_visible": show_amounts,
    }
    if not show_amounts:
        for r in rows:
            r["amount"] = None
        report["total_revenue"] = None
        report["breakdown"] = {k: None for k in report["breakdown"]}
    return report


def appointment_history(
    appointments: Iterable[Mapping],
    payments: Iterable[Mapping],
    month: int | None = None,
    year: int | None = None,
    search: str | None = None,
    show_payments: bool = False,
) -> list[dict]:
    """Completed appointments joined with their payment, newest first. A month without a year means this year."""
    if month and year is None:
        year = date.today().year
    by_appointment = {p["appointment_id"]: p for p in payments}
    out = []
    for a in appointments:
        if a["status"] != "completed":
            continue
        if month and year and not in_month(a["appointment_date"], month, year):
            continue
        if not matches_search(a, search, ("patient_name", "doctor_name", "contact_no")):
            continue
        p = by_appointment.get(a["id"])
        out.append(
            {
                "patient_name": a.get("patient_name") or "Unknown",
                "patient_age": a.get("patient_age") or 0,
                "contact_no": a.get("contact_no") or "",
                "appointment_date": str(a["appointment_date"]),
                "appointment_time": a["appointment_time"],
                "doctor_name": a.get("doctor_name") or "Unknown",
                "status": a["status"],
                "amount_paid": round(payment_total(p), 2) if p and show_payments else None,
                "payment_method": p["payment_method"] if p else "",
                "tests_done": tests_done_label(p) if p else "",
                "reason_for_visit": a.get("reason_for_visit") or "",
                "symptoms": a.get("symptoms") or "",
            }
        )
    out.sort(key=lambda r: (r["appointment_date"], r["appointment_time"]), reverse=True)
    return out


def revenue_by_doctor(payments: Iterable[Mapping]) -> list[dict]:
    totals: dict[str, float] = {}
    for p in payments:
        name = p.get("doctor_name") or "Unknown"
        totals[name] = totals.get(name, 0.0) + payment_total(p)
    return sorted(({"name": k, "value": round(v, 2)} for k, v in totals.items()), key=lambda x: -x["value"])


def revenue_by_day(payments: Iterable[Mapping]) -> list[dict]:
    totals: dict[date, float] = {}
    for p in payments:
        d = as_datetime(p["created_at"]).date()
        totals[d] = totals.get(d, 0.0) + payment_total(p)
    return [{"date": d.isoformat(), "value": round(v, 2)} for d, v in sorted(totals.items())]


def stats_overview(
    patients: Sequence[Mapping],
    appointments: Sequence[Mapping],
    payments: Sequence[Mapping],
    today: date | None = None,
    start: date | None = None,
    end: date | None = None,
) -> dict:
    """Numbers behind the statistics page, optionally restricted to a date range."""
    today = today or date.today()
    ranged = filter_by_date_range(payments, start, end) if (start or end) else list(payments)
    return {
        "monthly_earnings": monthly_earnings(payments, today),
        "patients": patient_stats(patients),
        "revenue": {
            "total": total_revenue(ranged),
            "by_method": payment_method_breakdown(ranged),
            "by_doctor": revenue_by_doctor(ranged),
            "by_day": revenue_by_day(ranged),
        },
        "appointments": distribution(appointments, "status"),
    }
