from __future__ import annotations

import calendar
from datetime import date

import requests
import streamlit as st

from clinicflow.client import ApiClient, ApiError, jwt_is_expired, jwt_payload
from clinicflow.config import API_BASE
from clinicflow.models import PAYMENT_METHODS

st.set_page_config(page_title="ClinicFlow", layout="wide")

SESSION_EXPIRED = "Session expired. Log out from the sidebar and log in again."
FILL_BADGE = {"full": "🔴", "high": "🟠", "medium": "🟡", "low": "🟢"}
INTENSITY_BADGE = ["", "▁", "▃", "▅", "▇"]


def client() -> ApiClient:
    return ApiClient(API_BASE, token=st.session_state.get("token"))


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str) and len(token) > 0


def do_logout() -> None:
    for key in ("token", "auth_error", "stats_unlocked", "access_code"):
        st.session_state.pop(key, None)
    st.rerun()


def show_error(e: Exception) -> None:
    """401 invalidates the session, everything else is shown as is."""
    if isinstance(e, ApiError) and e.unauthorized:
        st.session_state["auth_error"] = SESSION_EXPIRED
        st.error(SESSION_EXPIRED)
    elif isinstance(e, ApiError):
        st.error(e.message)
    elif isinstance(e, requests.RequestException):
        st.error(f"API unreachable: {e}")
    else:
        st.error(str(e))


# =========================
# Sidebar login
# =========================
with st.sidebar:
    st.header("Access")

    if not is_logged_in():
        mode = st.radio("Mode", ["Login", "Sign up"], horizontal=True, key="auth_mode")
        email = st.text_input("Email", key="login_email")
        password = st.text_input("Password", type="password", key="login_pass")

        if mode == "Sign up":
            name = st.text_input("Full name", key="signup_name")
            role = st.selectbox("Role", ["receptionist", "doctor"], key="signup_role")

        if st.button(mode, key="auth_btn"):
            try:
                api = client()
                if mode == "Sign up":
                    api.sign_up(name, email, password, role)
                st.session_state["token"] = api.login(email, password)
                st.session_state.pop("auth_error", None)
                st.rerun()
            except ApiError as e:
                st.error("Invalid credentials." if e.unauthorized else e.message)
            except requests.RequestException as e:
                st.error(f"API unreachable: {e}")
    else:
        # identity from the token, no /api/me round trip on every rerun
        claims = jwt_payload(st.session_state["token"])
        st.write(f"**{claims.get('name') or claims.get('email')}**")
        st.caption(claims.get("role", ""))

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")


st.title("ClinicFlow")

if not is_logged_in():
    st.info("Log in from the sidebar to continue.")
    st.stop()

token = st.session_state["token"]
if jwt_is_expired(token):
    st.error(SESSION_EXPIRED)
    st.stop()

api = client()
role = jwt_payload(token).get("role")


# =========================
# Dashboard
# =========================
try:
    counters = api.dashboard()
except (ApiError, requests.RequestException) as e:
    show_error(e)
    st.stop()

if role == "doctor":
    c1, c2, c3 = st.columns(3)
    c1.metric("Pending approval", counters["pending"])
    c2.metric("Today", counters["today"])
    c3.metric("Completed", counters["completed"])
else:
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Today", counters["today"])
    c2.metric("Completed today", counters["completed_today"])
    c3.metric("This month", f"{counters['completed_this_month']}/{counters['total_this_month']}")
    c4.metric("Pending or denied", counters["pending_or_denied"])


def appointment_line(a: dict) -> str:
    line = (
        f"**{a['appointment_date']} {a['appointment_time']}** | {a['patient_name']} "
        f"({a.get('patient_age') or '-'}) | Dr: {a.get('doctor_name') or '-'} | {a['status']}"
    )
    if a.get("is_walk_in"):
        line += " | walk-in"
    if a.get("denial_reason"):
        line += f" | reason: {a['denial_reason']}"
    return line


def render_calendar() -> None:
    today = date.today()
    c1, c2 = st.columns(2)
    year = c1.number_input("Year", min_value=2000, max_value=2100, value=today.year, key="cal_year")
    month = c2.selectbox(
        "Month", list(range(1, 13)), index=today.month - 1, format_func=lambda m: calendar.month_name[m], key="cal_month"
    )
    try:
        weeks = api.calendar(int(year), int(month))
    except (ApiError, requests.RequestException) as e:
        show_error(e)
        return

    header = st.columns(7)
    for col, name in zip(header, ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]):
        col.markdown(f"**{name}**")
    for week in weeks:
        cols = st.columns(7)
        for col, cell in zip(cols, week):
            day = int(cell["date"][8:])
            text = f"{day}" if cell["in_month"] else f"<span style='color:gray'>{day}</span>"
            if cell["is_today"]:
                text = f"**[{text}]**"
            if cell["active"]:
                text += f" {INTENSITY_BADGE[cell['intensity']]} {cell['active']}"
            if cell["inactive"]:
                text += f" <span style='color:gray'>({cell['inactive']})</span>"
            col.markdown(text, unsafe_allow_html=True)


# =========================
# Doctor screens
# =========================
if role == "doctor":
    tab_pending, tab_today, tab_cal = st.tabs(["Pending", "Schedule", "Calendar"])

    with tab_pending:
        try:
            pending = api.appointments(status="pending")
        except (ApiError, requests.RequestException) as e:
            show_error(e)
            pending = []
        if not pending:
            st.info("No appointments waiting for approval.")
        for a in pending:
            with st.container(border=True):
                st.markdown(appointment_line(a))
                if a.get("reason_for_visit") or a.get("symptoms"):
                    st.caption(f"{a.get('reason_for_visit') or ''} {a.get('symptoms') or ''}")
                c1, c2, c3 = st.columns([1, 1, 3])
                reason = c3.text_input("Denial reason", key=f"deny_reason_{a['id']}")
                if c1.button("Approve", key=f"approve_{a['id']}"):
                    try:
                        api.set_status(a["id"], "approved")
                        st.toast("Appointment approved")
                        st.rerun()
                    except (ApiError, requests.RequestException) as e:
                        show_error(e)
                if c2.button("Deny", key=f"deny_{a['id']}"):
                    try:
                        api.set_status(a["id"], "denied", denial_reason=reason)
                        st.toast("Appointment denied")
                        st.rerun()
                    except (ApiError, requests.RequestException) as e:
                        show_error(e)

    with tab_today:
        day = st.date_input("Day", value=date.today(), key="doc_day")
        try:
            items = api.appointments(day=day)
        except (ApiError, requests.RequestException) as e:
            show_error(e)
            items = []
        if not items:
            st.info("No appointments for this day.")
        for a in items:
            st.markdown(f"- {appointment_line(a)}")

    with tab_cal:
        render_calendar()

    st.stop()


# =========================
# Receptionist screens
# =========================
tab_new, tab_list, tab_cal, tab_pay, tab_reports, tab_notif = st.tabs(
    ["New appointment", "Appointments", "Calendar", "Payments", "Reports", "Notifications"]
)

with tab_new:
    st.subheader("Book an appointment")
    try:
        doctors = api.doctors()
    except (ApiError, requests.RequestException) as e:
        show_error(e)
        doctors = []

    lookup = st.text_input("Search an existing patient by name", key="lookup_name")
    found = {}
    if lookup.strip():
        try:
            found = api.search_patient(lookup.strip()) or {}
        except (ApiError, requests.RequestException) as e:
            show_error(e)
        if found:
            st.caption(f"Found {found['name']} ({found['age']}), {found['contact_no']}")

    c1, c2, c3 = st.columns(3)
    patient_name = c1.text_input("Patient name", value=found.get("name", ""), key="new_name")
    patient_age = c2.number_input("Age", min_value=1, max_value=150, value=found.get("age") or 30, key="new_age")
    contact_no = c3.text_input("Contact number", value=found.get("contact_no", ""), key="new_contact")
    c1, c2 = st.columns(2)
    gender = c1.selectbox("Gender", ["", "Male", "Female", "Other"], key="new_gender")
    location = c2.text_input("Location", value=found.get("location") or "", key="new_location")

    doctor = st.selectbox("Doctor", options=doctors, format_func=lambda d: d["name"], key="new_doctor")
    day = st.date_input("Date", value=date.today(), min_value=date.today(), key="new_date")
    walk_in = st.checkbox("Walk-in (no slot limit)", key="new_walk_in")
    no_payment = st.checkbox("No payment needed", key="new_no_payment")

    chosen_time = None
    if doctor:
        try:
            grid = api.slots(doctor["user_id"], day)
        except (ApiError, requests.RequestException) as e:
            show_error(e)
            grid = {"morning": [], "evening": []}
        options = [s for band in ("morning", "evening") for s in grid[band] if s["available"] or walk_in]
        slot = st.selectbox(
            "Time",
            options=options,
            format_func=lambda s: f"{FILL_BADGE[s['fill_level']]} {s['label']}  {s['info']}",
            key="new_slot",
        )
        chosen_time = slot["time"] if slot else None

    reason = st.text_input("Reason for visit", key="new_reason")
    symptoms = st.text_area("Symptoms", height=80, key="new_symptoms")

    if st.button("Book", key="new_submit", disabled=not doctors):
        form = {
            "patient_name": patient_name,
            "patient_age": int(patient_age),
            "contact_no": contact_no,
            "gender": gender or None,
            "location": location or None,
            "doctor_id": doctor["user_id"] if doctor else "",
            "appointment_date": day,
            "appointment_time": chosen_time or "",
            "reason_for_visit": reason or None,
            "symptoms": symptoms or None,
            "is_walk_in": walk_in,
            "requires_payment": not no_payment,
        }
        try:
            res = api.create_appointment(form)
            st.success(f"Booked {res['patient_name']} on {res['appointment_date']} at {res['appointment_time']}.")
        except (ApiError, requests.RequestException) as e:
            show_error(e)

with tab_list:
    st.subheader("Appointments")
    status_filter = st.selectbox(
        "Status", ["", "pending", "approved", "denied", "completed", "missed"], key="list_status"
    )
    try:
        items = api.appointments(status=status_filter or None)
    except (ApiError, requests.RequestException) as e:
        show_error(e)
        items = []
    if not items:
        st.info("No appointments.")
    for a in items:
        with st.container(border=True):
            st.markdown(appointment_line(a))
            c1, c2, c3 = st.columns(3)
            if a["status"] == "approved" and c1.button("Mark missed", key=f"missed_{a['id']}"):
                try:
                    api.set_status(a["id"], "missed")
                    st.rerun()
                except (ApiError, requests.RequestException) as e:
                    show_error(e)
            if a["status"] == "denied" and c2.button("Send back to doctor", key=f"pending_{a['id']}"):
                try:
                    api.set_status(a["id"], "pending")
                    st.rerun()
                except (ApiError, requests.RequestException) as e:
                    show_error(e)
            if c3.button("Delete", key=f"delete_{a['id']}"):
                try:
                    api.delete_appointment(a["id"])
                    st.toast("Appointment deleted")
                    st.rerun()
                except (ApiError, requests.RequestException) as e:
                    show_error(e)

with tab_cal:
    render_calendar()

with tab_pay:
    st.subheader("Record a payment")
    try:
        approved = api.appointments(status="approved")
    except (ApiError, requests.RequestException) as e:
        show_error(e)
        approved = []

    appt = st.selectbox(
        "Appointment",
        options=approved,
        format_func=lambda a: f"{a['appointment_date']} {a['appointment_time']} {a['patient_name']} ({a.get('doctor_name')})",
        key="pay_appt",
    )
    fee = st.number_input("Appointment fee", min_value=0.0, value=500.0, step=50.0, key="pay_fee")
    n_tests = st.number_input("Lab tests", min_value=0, max_value=10, value=0, key="pay_n_tests")
    tests = []
    for i in range(int(n_tests)):
        c1, c2 = st.columns([2, 1])
        name = c1.text_input(f"Test {i + 1}", key=f"pay_test_{i}")
        amount = c2.number_input("Amount", min_value=0.0, step=50.0, key=f"pay_test_amount_{i}")
        tests.append({"test_name": name, "amount": amount})
    method = st.selectbox(
        "Payment method", list(PAYMENT_METHODS), format_func=lambda k: PAYMENT_METHODS[k], key="pay_method"
    )
    st.metric("Total", f"{fee + sum(t['amount'] for t in tests):.2f}")

    if st.button("Record payment", key="pay_submit", disabled=not approved):
        try:
            api.record_payment(
                {"appointment_id": appt["id"], "payment_method": method, "appointment_fee": fee, "test_payments": tests}
            )
            st.success("Payment recorded. Appointment completed.")
        except (ApiError, requests.RequestException) as e:
            show_error(e)

with tab_reports:
    today = date.today()
    st.subheader("Monthly payments")
    c1, c2, c3, c4 = st.columns(4)
    month = c1.selectbox(
        "Month", list(range(1, 13)), index=today.month - 1, format_func=lambda m: calendar.month_name[m], key="rep_month"
    )
    year = c2.number_input("Year", min_value=2000, max_value=2100, value=today.year, key="rep_year")
    search = c3.text_input("Search", key="rep_search")
    access_code = c4.text_input("Access code", type="password", key="rep_code")

    try:
        report = api.payment_report(int(month), int(year), search, access_code or None)
        if not report["amounts_visible"]:
            st.caption("Enter the access code to see the amounts.")
        else:
            st.metric("Revenue", f"{report['total_revenue']:.2f}")
            st.write(report["breakdown"])
        st.dataframe(report["rows"], use_container_width=True)

        st.subheader("Patient history")
        st.dataframe(
            api.history_report(int(month), int(year), search, access_code or None), use_container_width=True
        )
    except (ApiError, requests.RequestException) as e:
        show_error(e)

    st.subheader("Statistics")
    if not st.session_state.get("stats_unlocked"):
        pin = st.text_input("PIN", type="password", key="stats_pin")
        if st.button("Unlock", key="stats_unlock"):
            try:
                api.stats(pin)
                st.session_state["stats_unlocked"] = pin
                st.rerun()
            except ApiError as e:
                st.error("Incorrect PIN" if e.status_code == 403 else e.message)
    else:
        try:
            overview = api.stats(st.session_state["stats_unlocked"])
            st.metric("Earnings this month", f"{overview['monthly_earnings']:.2f}")
            c1, c2, c3 = st.columns(3)
            c1.bar_chart({d["name"]: d["value"] for d in overview["patients"]["age"]})
            c2.bar_chart({d["name"]: d["value"] for d in overview["patients"]["gender"]})
            c3.bar_chart({d["name"]: d["value"] for d in overview["appointments"]})
            st.line_chart({d["date"]: d["value"] for d in overview["revenue"]["by_day"]})
        except (ApiError, requests.RequestException) as e:
            show_error(e)

    if st.button("Clean up old denied appointments", key="cleanup_btn"):
        try:
            res = api.post("/api/maintenance/cleanup-denied")
            st.toast(f"Deleted {res['deleted']} denied appointments")
        except (ApiError, requests.RequestException) as e:
            show_error(e)

with tab_notif:
    st.subheader("Pending notifications")
    try:
        pending = api.pending_notifications(limit=200)
        if not pending:
            st.info("No pending notifications.")
        for n in pending:
            st.write(f"[{n['id']}] **{n['title']}** | {n['body']}")
    except (ApiError, requests.RequestException) as e:
        show_error(e)
