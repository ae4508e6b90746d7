"""Streamlit app for campaign call-time management."""

from __future__ import annotations

from datetime import date
from typing import Iterable

import pandas as pd
import streamlit as st
from dotenv import load_dotenv

from calltime import (
    DONOR_TYPES,
    AuthenticationError,
    BulkImporter,
    CallTimeError,
    CallTimeStore,
    Identity,
    SessionStore,
    Settings,
    configure_logging,
    donor_display_name,
    login_client,
    login_manager,
    read_tabular,
    scoped_donor,
)

CALL_STATUSES = [
    "Not Contacted",
    "Left Voicemail",
    "No Answer",
    "Call Back",
    "Pledged",
    "Contributed",
    "Declined",
    "Wrong Number",
]
NOTE_TYPES = ["General", "Relationship", "Ask Strategy", "Follow-up", "Do Not Call"]
RESEARCH_CATEGORIES = ["Background", "Giving Capacity", "Interests", "Connections", "Talking Points"]

load_dotenv()
SETTINGS = Settings.from_env()
configure_logging(SETTINGS.log_level)
STORE = CallTimeStore(SETTINGS.db_path)


@st.cache_resource
def _session_store() -> SessionStore:
    return SessionStore(SETTINGS.session_ttl_seconds)


def _inject_styles() -> None:
    st.markdown(
        """
        <style>
          @import url('https://fonts.googleapis.com/css2?family=Space+Grotesk:wght@500;700&family=Public+Sans:wght@400;500;600;700&display=swap');

          :root {
            --ct-navy-700: #1b2a4a;
            --ct-red-600: #b3261e;
            --ct-blue-500: #2f5aa8;
            --ct-paper-100: #f5f3ef;
            --ct-card: #ffffff;
            --ct-text: #1c1b1a;
            --ct-muted: #4a4846;
          }

          .stApp {
            background: linear-gradient(170deg, var(--ct-paper-100) 0%, #eef1f6 60%, #f8fbff 100%);
            color: var(--ct-text);
          }

          html, body, [class*="css"] {
            font-family: "Public Sans", "Trebuchet MS", sans-serif;
          }

          .ct-hero {
            background: linear-gradient(124deg, var(--ct-navy-700), var(--ct-blue-500));
            border-radius: 18px;
            padding: 1.2rem 1.25rem;
            box-shadow: 0 16px 30px rgba(27, 42, 74, 0.28);
            margin-bottom: 1rem;
          }

          .ct-hero,
          .ct-hero h1,
          .ct-hero p {
            color: #ffffff !important;
          }

          .ct-hero h1 {
            margin: 0;
            font-family: "Space Grotesk", "Arial Black", sans-serif;
            font-size: clamp(1.45rem, 2.6vw, 2.2rem);
          }

          .ct-hero p {
            margin: 0.55rem 0 0;
            max-width: 78ch;
            font-weight: 500;
          }

          .metric-card {
            border-radius: 14px;
            border: 1px solid rgba(201, 199, 197, 0.6);
            background: var(--ct-card);
            padding: 0.75rem 0.8rem;
            min-height: 108px;
          }

          .metric-label {
            margin: 0;
            color: var(--ct-muted);
            font-weight: 600;
            font-size: 0.84rem;
          }

          .metric-value {
            margin: 0.3rem 0 0;
            color: var(--ct-navy-700);
            font-family: "Space Grotesk", "Arial Black", sans-serif;
            font-size: 1.45rem;
          }

          .metric-sub {
            margin: 0.4rem 0 0;
            color: #5a5a58;
            font-size: 0.82rem;
          }

          .section-note {
            color: #555453;
            font-weight: 500;
            margin-top: -0.2rem;
            margin-bottom: 0.8rem;
          }

          .stButton > button {
            background: linear-gradient(120deg, var(--ct-blue-500), var(--ct-navy-700));
            color: #ffffff;
            border-radius: 0.6rem;
            font-weight: 600;
          }
        </style>
        """,
        unsafe_allow_html=True,
    )


def _render_metric_card(title: str, value: str, subtitle: str) -> None:
    st.markdown(
        f"""
        <div class="metric-card">
          <p class="metric-label">{title}</p>
          <p class="metric-value">{value}</p>
          <p class="metric-sub">{subtitle}</p>
        </div>
        """,
        unsafe_allow_html=True,
    )


def _hero(subtitle: str) -> None:
    st.markdown(
        f"""
        <div class="ct-hero">
          <h1>Call Time Desk</h1>
          <p>{subtitle}</p>
        </div>
        """,
        unsafe_allow_html=True,
    )


def _format_currency(amount: float | None) -> str:
    if amount is None:
        return "-"
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _donor_option_label(row: dict) -> str:
    return f"{donor_display_name(row)} (#{row['id']})"


def _client_option_label(row: dict) -> str:
    if row.get("candidate"):
        return f"{row['name']} - {row['candidate']}"
    return row["name"]


def _table_or_info(frame: pd.DataFrame, empty_message: str) -> None:
    if frame.empty:
        st.info(empty_message)
        return
    st.dataframe(frame, use_container_width=True, hide_index=True)


def _rows_to_dicts(rows: Iterable) -> list[dict]:
    return [dict(row) for row in rows]


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _current_identity() -> Identity | None:
    token = st.session_state.get("session_token")
    if not token:
        return None
    try:
        return _session_store().resolve(token)
    except AuthenticationError:
        st.session_state.pop("session_token", None)
        return None


def _sign_out() -> None:
    token = st.session_state.pop("session_token", None)
    if token:
        _session_store().revoke(token)


def render_login() -> None:
    st.markdown("### Sign In")
    manager_col, client_col = st.columns(2, gap="large")

    with manager_col:
        st.markdown("#### Finance Manager")
        with st.form("manager-login-form"):
            password = st.text_input("Manager Password", type="password")
            if st.form_submit_button("Sign In as Manager", use_container_width=True):
                try:
                    st.session_state.session_token = login_manager(_session_store(), SETTINGS, password)
                    st.rerun()
                except AuthenticationError as exc:
                    st.error(str(exc))

    with client_col:
        st.markdown("#### Candidate Portal")
        clients = STORE.list_clients()
        if not clients:
            st.info("No clients have been set up yet.")
            return
        client_map = {row["id"]: row for row in clients}
        with st.form("client-login-form"):
            client_id = st.selectbox(
                "Campaign",
                options=list(client_map.keys()),
                format_func=lambda value: _client_option_label(client_map[value]),
            )
            password = st.text_input("Portal Password", type="password")
            if st.form_submit_button("Sign In to Portal", use_container_width=True):
                try:
                    st.session_state.session_token = login_client(
                        _session_store(), STORE, int(client_id), password
                    )
                    st.rerun()
                except AuthenticationError as exc:
                    st.error(str(exc))


def render_overview_tab() -> None:
    overview = STORE.manager_overview()
    stats = overview["statistics"]
    clients = overview["clients"]

    metric_columns = st.columns(4)
    with metric_columns[0]:
        _render_metric_card("Donors", str(stats["total_donors"]), "Records in the shared directory")
    with metric_columns[1]:
        _render_metric_card("Unassigned", str(stats["unassigned_donors"]), "No active client")
    with metric_columns[2]:
        _render_metric_card(
            "Active Clients",
            str(stats["active_clients"]),
            f"of {stats['total_clients']} campaigns",
        )
    with metric_columns[3]:
        raised = sum(row["total_raised"] or 0 for row in clients)
        _render_metric_card("Raised on Calls", _format_currency(raised), "Across all clients")

    st.markdown("### Client Pulse")
    overview_df = pd.DataFrame(
        [
            {
                "Client": row["name"],
                "Candidate": row.get("candidate") or "-",
                "Office": row.get("office") or "-",
                "Assigned Donors": int(row["assigned_donors"]),
                "Calls": int(row["total_calls"]),
                "Pledged": _format_currency(row["total_pledged"]),
                "Raised": _format_currency(row["total_raised"]),
                "Goal": _format_currency(row.get("fundraising_goal")),
            }
            for row in clients
        ]
    )
    _table_or_info(overview_df, "No clients yet. Add a campaign in the Clients tab.")

    if clients:
        chart_df = pd.DataFrame(
            {"Client": [row["name"] for row in clients], "Raised": [row["total_raised"] for row in clients]}
        ).set_index("Client")
        st.bar_chart(chart_df["Raised"], color="#2F5AA8")


def render_clients_tab() -> None:
    st.markdown("### Clients")
    st.markdown(
        "<p class='section-note'>Campaigns whose candidates make calls from the shared donor directory.</p>",
        unsafe_allow_html=True,
    )

    left, right = st.columns([1, 1.3], gap="large")

    with left:
        st.markdown("#### Add Client")
        with st.form("client-create-form", clear_on_submit=True):
            name = st.text_input("Client Name *")
            candidate = st.text_input("Candidate")
            office = st.text_input("Office")
            manager_name = st.text_input("Finance Manager")
            contact_email = st.text_input("Contact Email")
            contact_phone = st.text_input("Contact Phone")
            launch_date = st.date_input("Launch Date", value=None)
            fundraising_goal = st.text_input("Fundraising Goal", placeholder="$250,000")
            portal_password = st.text_input("Initial Portal Password", type="password")
            notes = st.text_area("Notes", height=90)

            if st.form_submit_button("Create Client", use_container_width=True):
                try:
                    STORE.create_client(
                        name=name,
                        candidate=candidate,
                        office=office,
                        manager_name=manager_name,
                        contact_email=contact_email,
                        contact_phone=contact_phone,
                        launch_date=_iso(launch_date),
                        fundraising_goal=fundraising_goal,
                        notes=notes,
                        portal_password=portal_password or None,
                    )
                    st.success("Client created.")
                    st.rerun()
                except ValueError as exc:
                    st.error(str(exc))

    with right:
        clients = STORE.list_clients()
        if not clients:
            st.info("No clients yet.")
            return
        client_map = {row["id"]: row for row in clients}
        selected_id = st.selectbox(
            "Open Client",
            options=list(client_map.keys()),
            format_func=lambda value: _client_option_label(client_map[value]),
            key="client-edit-select",
        )
        summary = STORE.client_summary(selected_id)

        summary_cols = st.columns(3)
        with summary_cols[0]:
            st.metric("Assigned Donors", str(summary["assigned_donors"]))
        with summary_cols[1]:
            st.metric("Raised", _format_currency(summary["total_raised"]))
        with summary_cols[2]:
            progress = summary["goal_progress_percent"]
            st.metric("Goal Progress", f"{progress}%" if progress is not None else "-")

        with st.form("client-edit-form"):
            name = st.text_input("Client Name *", value=summary["name"])
            candidate = st.text_input("Candidate", value=summary.get("candidate") or "")
            office = st.text_input("Office", value=summary.get("office") or "")
            goal = summary.get("fundraising_goal")
            fundraising_goal = st.text_input("Fundraising Goal", value="" if goal is None else str(goal))
            sheet_url = st.text_input("Sheet URL", value=summary.get("sheet_url") or "")
            notes = st.text_area("Notes", value=summary.get("notes") or "", height=90)
            if st.form_submit_button("Save Client", use_container_width=True):
                try:
                    STORE.update_client(
                        selected_id,
                        {
                            "name": name,
                            "candidate": candidate,
                            "office": office,
                            "fundraising_goal": fundraising_goal,
                            "sheet_url": sheet_url,
                            "notes": notes,
                        },
                    )
                    st.success("Client updated.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

        with st.form("client-password-form", clear_on_submit=True):
            password = st.text_input("New Portal Password", type="password")
            needs_reset = st.checkbox("Require a reset on next sign-in", value=True)
            if st.form_submit_button("Set Portal Password", use_container_width=True):
                try:
                    STORE.set_client_password(selected_id, password, needs_reset=needs_reset)
                    st.success("Portal password updated.")
                except CallTimeError as exc:
                    st.error(str(exc))

        confirm = st.checkbox("I understand deleting removes this client's assignments and notes.")
        if st.button("Delete Client", disabled=not confirm, key="client-delete"):
            STORE.delete_client(selected_id)
            st.success("Client deleted.")
            st.rerun()


def _donor_form_fields(prefix: str, donor: dict | None = None) -> dict:
    donor = donor or {}
    current_type = donor.get("donor_type") or DONOR_TYPES[0]
    donor_type = st.radio(
        "Donor Type",
        options=list(DONOR_TYPES),
        index=list(DONOR_TYPES).index(current_type),
        horizontal=True,
        key=f"{prefix}-type",
    )
    name_cols = st.columns(2)
    with name_cols[0]:
        first_name = st.text_input("First Name", value=donor.get("first_name") or "", key=f"{prefix}-first")
    with name_cols[1]:
        last_name = st.text_input("Last Name", value=donor.get("last_name") or "", key=f"{prefix}-last")
    business_name = st.text_input(
        "Business / Committee Name", value=donor.get("business_name") or "", key=f"{prefix}-business"
    )
    email = st.text_input("Email", value=donor.get("email") or "", key=f"{prefix}-email")
    phone = st.text_input("Phone", value=donor.get("phone") or "", key=f"{prefix}-phone")
    employer = st.text_input("Employer", value=donor.get("employer") or "", key=f"{prefix}-employer")
    occupation = st.text_input("Occupation", value=donor.get("occupation") or "", key=f"{prefix}-occupation")
    street_address = st.text_input(
        "Street Address", value=donor.get("street_address") or "", key=f"{prefix}-street"
    )
    city_cols = st.columns([2, 1, 1])
    with city_cols[0]:
        city = st.text_input("City", value=donor.get("city") or "", key=f"{prefix}-city")
    with city_cols[1]:
        state = st.text_input("State", value=donor.get("state") or "", key=f"{prefix}-state")
    with city_cols[2]:
        postal_code = st.text_input("ZIP", value=donor.get("postal_code") or "", key=f"{prefix}-zip")
    ask = donor.get("suggested_ask")
    suggested_ask = st.text_input(
        "Suggested Ask", value="" if ask is None else str(ask), key=f"{prefix}-ask"
    )
    tags = st.text_input("Tags", value=donor.get("tags") or "", key=f"{prefix}-tags")
    notes = st.text_area("Notes", value=donor.get("notes") or "", height=80, key=f"{prefix}-notes")
    return {
        "donor_type": donor_type,
        "first_name": first_name,
        "last_name": last_name,
        "business_name": business_name,
        "email": email,
        "phone": phone,
        "employer": employer,
        "occupation": occupation,
        "street_address": street_address,
        "city": city,
        "state": state,
        "postal_code": postal_code,
        "suggested_ask": suggested_ask,
        "tags": tags,
        "notes": notes,
    }


def render_donors_tab() -> None:
    st.markdown("### Donor Directory")
    st.markdown(
        "<p class='section-note'>One shared record per donor, assigned to the campaigns that call them.</p>",
        unsafe_allow_html=True,
    )

    clients = STORE.list_clients()
    client_map = {row["id"]: row for row in clients}
    left, right = st.columns([1, 1.4], gap="large")

    with left:
        st.markdown("#### Add Donor")
        with st.form("donor-create-form", clear_on_submit=True):
            payload = _donor_form_fields("donor-create")
            assigned = st.multiselect(
                "Assign to Clients",
                options=list(client_map.keys()),
                format_func=lambda value: _client_option_label(client_map[value]),
            )
            exclusive = st.checkbox("Exclusive to one client")
            if st.form_submit_button("Create Donor", use_container_width=True):
                try:
                    payload["exclusive_donor"] = exclusive
                    STORE.create_donor(payload, assigned, assigned_by=SETTINGS.default_assigned_by)
                    st.success("Donor created.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

    with right:
        filter_cols = st.columns([2, 1.4, 1])
        with filter_cols[0]:
            search_term = st.text_input("Search Donors", placeholder="Name, employer, email, or phone")
        with filter_cols[1]:
            donor_types = st.multiselect("Donor Types", options=list(DONOR_TYPES))
        with filter_cols[2]:
            smart_search = st.toggle("Fuzzy", value=True)

        donor_rows = STORE.list_donors(
            search_term=search_term, donor_types=donor_types, smart_search=smart_search
        )
        directory_df = pd.DataFrame(
            [
                {
                    "ID": row["id"],
                    "Donor": donor_display_name(row),
                    "Type": row["donor_type"],
                    "Clients": ", ".join(row["assigned_clients"]) or "Unassigned",
                    "Exclusive": "Yes" if row["exclusive_donor"] else "",
                    "Suggested Ask": _format_currency(row.get("suggested_ask")),
                    "Lifetime Given": _format_currency(row["total_given"]),
                    "Last Gift Year": row.get("last_gift_year") or "-",
                    "Email": row.get("email") or "-",
                }
                for row in donor_rows
            ]
        )
        _table_or_info(directory_df, "No donors yet. Add one or upload a spreadsheet.")

        if not donor_rows:
            return
        donor_map = {row["id"]: row for row in donor_rows}
        selected_id = st.selectbox(
            "Open Donor",
            options=list(donor_map.keys()),
            format_func=lambda donor_id: _donor_option_label(donor_map[donor_id]),
        )
        donor = STORE.get_donor(selected_id)
        st.caption(
            "Assigned to: "
            + (", ".join(client["client_name"] for client in donor["assigned_clients"]) or "nobody")
        )

        with st.form(f"donor-edit-form-{selected_id}"):
            payload = _donor_form_fields(f"donor-edit-{selected_id}", donor)
            exclusive = st.checkbox("Exclusive", value=bool(donor["exclusive_donor"]))
            exclusive_client = st.selectbox(
                "Locked to Client",
                options=[None, *client_map.keys()],
                index=(
                    [None, *client_map.keys()].index(donor["exclusive_client_id"])
                    if donor["exclusive_client_id"] in client_map
                    else 0
                ),
                format_func=lambda value: "-" if value is None else _client_option_label(client_map[value]),
            )
            if st.form_submit_button("Save Donor", use_container_width=True):
                payload["exclusive_donor"] = exclusive
                payload["exclusive_client_id"] = exclusive_client
                try:
                    STORE.update_donor(selected_id, payload, assigned_by=SETTINGS.default_assigned_by)
                    st.success("Donor updated.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

        history_df = pd.DataFrame(
            [
                {
                    "Year": row["year"],
                    "Candidate": row["candidate"],
                    "Office": row.get("office_sought") or "-",
                    "Amount": _format_currency(row["amount"]),
                    "In-kind": "Yes" if row["is_inkind"] else "",
                }
                for row in donor["history"]
            ]
        )
        st.markdown("##### Giving History")
        _table_or_info(history_df, "No contributions on file.")

        if st.button("Delete Donor", key=f"donor-delete-{selected_id}"):
            STORE.delete_donor(selected_id)
            st.success("Donor deleted.")
            st.rerun()


def render_assignments_tab() -> None:
    st.markdown("### Assignments")
    st.markdown(
        "<p class='section-note'>Exclusive donors follow their newest client; other assignments go inactive.</p>",
        unsafe_allow_html=True,
    )

    clients = STORE.list_clients()
    if not clients:
        st.info("Add a client before assigning donors.")
        return
    client_map = {row["id"]: row for row in clients}
    client_id = st.selectbox(
        "Client",
        options=list(client_map.keys()),
        format_func=lambda value: _client_option_label(client_map[value]),
        key="assignment-client",
    )
    donor_rows = STORE.list_donors()
    donor_map = {row["id"]: row for row in donor_rows}

    left, right = st.columns(2, gap="large")
    with left:
        st.markdown("#### Bulk Assign")
        with st.form("bulk-assign-form", clear_on_submit=True):
            donor_ids = st.multiselect(
                "Donors",
                options=[row["id"] for row in donor_rows if client_id not in row["assigned_client_ids"]],
                format_func=lambda donor_id: _donor_option_label(donor_map[donor_id]),
            )
            priority = st.number_input("Priority", min_value=1, max_value=10, value=1)
            if st.form_submit_button("Assign Donors", use_container_width=True):
                try:
                    count = STORE.bulk_assign(
                        client_id, donor_ids, assigned_by=SETTINGS.default_assigned_by, priority_level=priority
                    )
                    st.success(f"Assigned {count} donors.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

        st.markdown("#### Assign with Ask")
        with st.form("single-assign-form", clear_on_submit=True):
            donor_id = st.selectbox(
                "Donor",
                options=list(donor_map.keys()),
                format_func=lambda value: _donor_option_label(donor_map[value]),
            )
            custom_ask = st.text_input("Custom Ask", placeholder="$2,900")
            assignment_notes = st.text_area("Assignment Notes", height=80)
            if st.form_submit_button("Save Assignment", use_container_width=True):
                try:
                    STORE.assign(
                        client_id,
                        donor_id,
                        assigned_by=SETTINGS.default_assigned_by,
                        custom_ask_amount=custom_ask,
                        assignment_notes=assignment_notes,
                    )
                    st.success("Assignment saved.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

    with right:
        st.markdown("#### Current Queue")
        queue = STORE.list_client_donors(client_id)
        queue_df = pd.DataFrame(
            [
                {
                    "ID": row["id"],
                    "Donor": donor_display_name(row),
                    "Priority": row["priority_level"],
                    "Ask": _format_currency(row["effective_ask"]),
                    "Exclusive": "Yes" if row["exclusive_donor"] else "",
                    "Last Status": row["last_call_status"],
                }
                for row in queue
            ]
        )
        _table_or_info(queue_df, "No donors assigned to this client.")

        if queue:
            queue_map = {row["id"]: row for row in queue}
            target = st.selectbox(
                "Queue Donor",
                options=list(queue_map.keys()),
                format_func=lambda value: _donor_option_label(queue_map[value]),
            )
            action_cols = st.columns(3)
            with action_cols[0]:
                if st.button("Unassign", key="assignment-unassign"):
                    STORE.unassign(client_id, target)
                    st.rerun()
            with action_cols[1]:
                if st.button("Make Exclusive", key="assignment-lock"):
                    moved = STORE.set_exclusive(target, client_id, assigned_by=SETTINGS.default_assigned_by)
                    st.success(f"Locked to this client; {moved} other assignments deactivated.")
                    st.rerun()
            with action_cols[2]:
                if st.button("Clear Exclusive", key="assignment-unlock"):
                    STORE.clear_exclusive(target)
                    st.rerun()


def render_history_tab() -> None:
    st.markdown("### Giving History")

    donor_rows = STORE.list_donors()
    left, right = st.columns([1, 1.3], gap="large")

    with left:
        st.markdown("#### Record Contribution")
        if not donor_rows:
            st.info("Add donors before recording contributions.")
        else:
            donor_map = {row["id"]: row for row in donor_rows}
            donor_id = st.selectbox(
                "Donor",
                options=list(donor_map.keys()),
                format_func=lambda value: _donor_option_label(donor_map[value]),
                key="history-donor",
            )
            with st.form("contribution-form", clear_on_submit=True):
                year = st.number_input("Year", min_value=1900, max_value=2100, value=date.today().year)
                candidate = st.text_input("Candidate *")
                office_sought = st.text_input("Office Sought")
                amount = st.text_input("Amount *", placeholder="$500")
                is_inkind = st.checkbox("In-kind")
                if st.form_submit_button("Add Contribution", use_container_width=True):
                    try:
                        STORE.add_contribution(
                            donor_id,
                            {
                                "year": year,
                                "candidate": candidate,
                                "office_sought": office_sought,
                                "amount": amount,
                                "is_inkind": is_inkind,
                            },
                        )
                        st.success("Contribution recorded.")
                        st.rerun()
                    except CallTimeError as exc:
                        st.error(str(exc))

            entries = STORE.list_history(donor_id)
            if entries:
                entry_map = {row["id"]: row for row in entries}
                entry_id = st.selectbox(
                    "Entry",
                    options=list(entry_map.keys()),
                    format_func=lambda value: (
                        f"{entry_map[value]['year']} {entry_map[value]['candidate']} "
                        f"{_format_currency(entry_map[value]['amount'])}"
                    ),
                )
                if st.button("Remove Entry", key="history-remove"):
                    STORE.remove_contribution(donor_id, entry_id)
                    st.rerun()

    with right:
        st.markdown("#### Search Contributions")
        options = STORE.contribution_filter_options()
        filter_cols = st.columns(2)
        with filter_cols[0]:
            candidate = st.selectbox("Candidate", options=[None, *options["candidates"]])
            min_amount = st.text_input("Minimum", key="history-min")
        with filter_cols[1]:
            year = st.selectbox("Year", options=[None, *options["years"]])
            max_amount = st.text_input("Maximum", key="history-max")

        if candidate is None and year is None:
            st.info("Select a candidate or year to search.")
            return
        try:
            results = STORE.search_contributions(
                candidate=candidate, year=year, min_amount=min_amount, max_amount=max_amount
            )
        except CallTimeError as exc:
            st.error(str(exc))
            return

        st.metric("Matched Total", _format_currency(results["total_amount"]), f"{results['entry_count']} gifts")
        results_df = pd.DataFrame(
            [
                {
                    "Donor": donor["name"],
                    "Type": donor["donor_type"],
                    "Gifts": len(donor["entries"]),
                    "Total": _format_currency(donor["total_amount"]),
                    "Email": donor.get("email") or "-",
                }
                for donor in results["donors"]
            ]
        )
        _table_or_info(results_df, "No contributions matched.")


def render_import_tab() -> None:
    st.markdown("### Bulk Import")
    st.markdown(
        "<p class='section-note'>CSV or Excel sheets. Existing donors are matched by id, email, "
        "or name with phone or ZIP; empty cells never erase stored values.</p>",
        unsafe_allow_html=True,
    )

    clients = STORE.list_clients()
    client_map = {row["id"]: row for row in clients}
    upload = st.file_uploader("Donor Spreadsheet", type=["csv", "xlsx", "xls"])
    fallback_client_id = st.selectbox(
        "Assign rows without a client to",
        options=[None, *client_map.keys()],
        format_func=lambda value: "Nobody" if value is None else _client_option_label(client_map[value]),
    )

    if upload is None:
        return
    try:
        rows = read_tabular(upload, filename=upload.name)
    except ValueError as exc:
        st.error(f"Could not read {upload.name}: {exc}")
        return
    st.caption(f"{len(rows)} rows read from {upload.name}.")
    st.dataframe(pd.DataFrame(rows).head(20), use_container_width=True, hide_index=True)

    if st.button("Run Import", key="import-run"):
        try:
            result = BulkImporter(STORE).import_rows(
                rows, fallback_client_id=fallback_client_id, assigned_by=SETTINGS.default_assigned_by
            )
        except CallTimeError as exc:
            st.error(str(exc))
            return
        result_cols = st.columns(4)
        result_cols[0].metric("Created", result.created)
        result_cols[1].metric("Updated", result.updated)
        result_cols[2].metric("Skipped", result.skipped)
        result_cols[3].metric("Contributions", result.contributions_added)
        if result.errors:
            st.warning(f"{len(result.errors)} issues")
            st.dataframe(pd.DataFrame({"Issue": result.errors}), use_container_width=True, hide_index=True)


def render_manager_workspace() -> None:
    tabs = st.tabs(["Overview", "Clients", "Donors", "Assignments", "Giving History", "Import"])
    with tabs[0]:
        render_overview_tab()
    with tabs[1]:
        render_clients_tab()
    with tabs[2]:
        render_donors_tab()
    with tabs[3]:
        render_assignments_tab()
    with tabs[4]:
        render_history_tab()
    with tabs[5]:
        render_import_tab()


def _render_donor_detail(identity: Identity, client_id: int, donor_id: int) -> None:
    scoped_donor(STORE, identity, client_id, donor_id)
    detail = STORE.get_client_donor_detail(client_id, donor_id)
    donor = detail["donor"]
    assignment = detail["assignment"]

    st.markdown(f"#### {donor_display_name(donor)}")
    ask = assignment.get("custom_ask_amount") or donor.get("suggested_ask")
    st.caption(
        f"{donor.get('phone') or '-'} | {donor.get('email') or '-'} | "
        f"{donor.get('employer') or donor.get('contact_name') or '-'} | Ask {_format_currency(ask)}"
    )
    if assignment.get("assignment_notes"):
        st.info(assignment["assignment_notes"])

    history_tab, calls_tab, research_tab, notes_tab = st.tabs(["Giving", "Calls", "Research", "Notes"])

    with history_tab:
        history_df = pd.DataFrame(
            [
                {
                    "Year": row["year"],
                    "Candidate": row["candidate"],
                    "Office": row.get("office_sought") or "-",
                    "Amount": _format_currency(row["amount"]),
                }
                for row in detail["history"]
            ]
        )
        _table_or_info(history_df, "No giving history on file.")

    with calls_tab:
        with st.form(f"call-outcome-form-{donor_id}", clear_on_submit=True):
            status = st.selectbox("Status", CALL_STATUSES[1:])
            pledge_amount = st.text_input("Pledge")
            contribution_amount = st.text_input("Contributed")
            follow_up_date = st.date_input("Follow-up", value=None)
            next_action = st.text_input("Next Action")
            call_quality = st.slider("Call Quality", min_value=1, max_value=5, value=3)
            outcome_notes = st.text_area("Call Notes", height=80)
            if st.form_submit_button("Log Call", use_container_width=True):
                try:
                    STORE.record_call_outcome(
                        client_id,
                        donor_id,
                        status,
                        outcome_notes=outcome_notes,
                        follow_up_date=_iso(follow_up_date),
                        pledge_amount=pledge_amount,
                        contribution_amount=contribution_amount,
                        next_action=next_action,
                        call_quality=call_quality,
                    )
                    st.success("Call logged.")
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))
        calls_df = pd.DataFrame(
            [
                {
                    "Date": row["call_date"],
                    "Status": row["status"],
                    "Pledged": _format_currency(row["pledge_amount"]),
                    "Raised": _format_currency(row["contribution_amount"]),
                    "Follow-up": row.get("follow_up_date") or "-",
                    "Notes": row.get("outcome_notes") or "",
                }
                for row in detail["call_history"]
            ]
        )
        _table_or_info(calls_df, "No calls logged yet.")

    with research_tab:
        with st.form(f"research-form-{donor_id}", clear_on_submit=True):
            category = st.selectbox("Category", RESEARCH_CATEGORIES)
            content = st.text_area("Research", height=100)
            if st.form_submit_button("Save Research", use_container_width=True):
                try:
                    STORE.save_research(client_id, donor_id, category, content)
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))
        for row in detail["research"]:
            st.markdown(f"**{row['research_category']}**")
            st.write(row.get("research_content") or "")

    with notes_tab:
        with st.form(f"note-form-{donor_id}", clear_on_submit=True):
            note_type = st.selectbox("Type", NOTE_TYPES)
            note_content = st.text_area("Note", height=80)
            is_important = st.checkbox("Important")
            if st.form_submit_button("Add Note", use_container_width=True):
                try:
                    STORE.add_note(client_id, donor_id, note_type, note_content, is_important=is_important)
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))
        notes_df = pd.DataFrame(
            [
                {
                    "Created": row["created_at"],
                    "Type": row["note_type"],
                    "Important": "Yes" if row["is_important"] else "",
                    "Note": row.get("note_content") or "",
                }
                for row in detail["notes"]
            ]
        )
        _table_or_info(notes_df, "No notes yet.")


def render_client_portal(identity: Identity) -> None:
    client_id = identity.require_client(int(identity.client_id))
    summary = STORE.client_summary(client_id)

    metric_columns = st.columns(4)
    with metric_columns[0]:
        _render_metric_card("Call Queue", str(summary["assigned_donors"]), "Active donors")
    with metric_columns[1]:
        _render_metric_card("Calls Logged", str(summary["total_calls"]), f"{summary['call_sessions']} sessions")
    with metric_columns[2]:
        _render_metric_card("Pledged", _format_currency(summary["total_pledged"]), "From logged calls")
    with metric_columns[3]:
        progress = summary["goal_progress_percent"]
        _render_metric_card(
            "Raised",
            _format_currency(summary["total_raised"]),
            f"{progress}% of goal" if progress is not None else "No goal set",
        )

    if summary.get("portal_password_needs_reset"):
        st.warning("Please choose a new portal password.")
        with st.form("portal-password-reset", clear_on_submit=True):
            new_password = st.text_input("New Password", type="password")
            confirm_password = st.text_input("Confirm Password", type="password")
            if st.form_submit_button("Update Password", use_container_width=True):
                if new_password != confirm_password:
                    st.error("Passwords do not match.")
                else:
                    try:
                        STORE.set_client_password(client_id, new_password)
                        st.success("Password updated.")
                        st.rerun()
                    except CallTimeError as exc:
                        st.error(str(exc))

    session_id = st.session_state.get("call_session_id")
    if session_id is None:
        if st.button("Start Call Session", key="session-start"):
            st.session_state.call_session_id = STORE.start_call_session(client_id)
            st.rerun()
    else:
        with st.form("session-end-form"):
            attempted = st.number_input("Calls Attempted", min_value=0, value=0)
            completed = st.number_input("Calls Completed", min_value=0, value=0)
            total_pledged = st.text_input("Total Pledged")
            session_notes = st.text_area("Session Notes", height=70)
            if st.form_submit_button("End Call Session", use_container_width=True):
                try:
                    STORE.end_call_session(
                        client_id, session_id, attempted, completed, total_pledged, session_notes
                    )
                    st.session_state.pop("call_session_id", None)
                    st.rerun()
                except CallTimeError as exc:
                    st.error(str(exc))

    queue = STORE.list_client_donors(client_id)
    st.markdown("### Call Queue")
    queue_df = pd.DataFrame(
        [
            {
                "Donor": donor_display_name(row),
                "Phone": row.get("phone") or "-",
                "Ask": _format_currency(row["effective_ask"]),
                "Priority": row["priority_level"],
                "Last Status": row["last_call_status"],
                "Follow-up": row.get("follow_up_date") or "-",
                "Calls": row["total_calls"],
            }
            for row in queue
        ]
    )
    _table_or_info(queue_df, "Your finance team has not assigned any donors yet.")
    if not queue:
        return

    queue_map = {row["id"]: row for row in queue}
    donor_id = st.selectbox(
        "Open Donor",
        options=list(queue_map.keys()),
        format_func=lambda value: _donor_option_label(queue_map[value]),
        key="portal-donor",
    )
    try:
        _render_donor_detail(identity, client_id, donor_id)
    except CallTimeError as exc:
        st.error(str(exc))


def main() -> None:
    st.set_page_config(
        page_title="Call Time Desk",
        page_icon=":telephone_receiver:",
        layout="wide",
    )
    try:
        SETTINGS.validate()
    except ValueError as exc:
        st.error(str(exc))
        st.stop()
    STORE.init_db()
    _inject_styles()

    identity = _current_identity()
    if identity is None:
        _hero("Shared donor directory, client call queues and call-time results.")
        render_login()
        return

    if identity.is_manager:
        _hero("Finance manager workspace.")
    else:
        _hero(f"Candidate portal for {STORE.get_client(int(identity.client_id))['name']}.")
    if st.sidebar.button("Sign Out", key="sign-out"):
        _sign_out()
        st.rerun()

    if identity.is_manager:
        render_manager_workspace()
    else:
        render_client_portal(identity)


if __name__ == "__main__":
    main()
