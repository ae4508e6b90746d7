"""SQLite-backed persistence layer for campaign call time."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from werkzeug.security import check_password_hash, generate_password_hash

from calltime import donors, history, ledger
from calltime.db import connect, lastrowid, row_to_dict, rows_to_dicts, transaction
from calltime.errors import (
    ClientNotFoundError,
    DonorNotAssignedError,
    RecordNotFoundError,
    ValidationError,
)
from calltime.normalize import (
    DONOR_TYPES,
    clean_text,
    parse_currency,
    parse_date,
    parse_integer,
)
from calltime.schema import MigrationReport, migrate

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

_CLIENT_FIELDS = (
    "name",
    "candidate",
    "office",
    "manager_name",
    "contact_email",
    "contact_phone",
    "launch_date",
    "fundraising_goal",
    "notes",
    "sheet_url",
)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _optional_amount(value: Any, field: str) -> float | None:
    amount = parse_currency(value)
    if amount is None:
        if clean_text(value) is not None:
            raise ValidationError(f"{field} must be an amount.", field=field)
        return None
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative.", field=field)
    return amount


def _optional_int(value: Any, field: str, minimum: int | None = None) -> int | None:
    number = parse_integer(value)
    if number is None:
        if clean_text(value) is not None:
            raise ValidationError(f"{field} must be a whole number.", field=field)
        return None
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}.", field=field)
    return number


def _optional_date(value: Any, field: str) -> str | None:
    parsed = parse_date(value)
    if parsed is None and clean_text(value) is not None:
        raise ValidationError(f"{field} must be a date.", field=field)
    return parsed


def _client_values(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for field in _CLIENT_FIELDS:
        if field not in values:
            continue
        if field == "fundraising_goal":
            cleaned[field] = _optional_amount(values[field], field)
        elif field == "launch_date":
            cleaned[field] = _optional_date(values[field], field)
        else:
            cleaned[field] = _clean(values[field])
    if "name" in cleaned and not cleaned["name"]:
        raise ValidationError("Client name is required.", field="name")
    return cleaned


def _donor_dict(row: sqlite3.Row) -> dict[str, Any]:
    donor = {key: row[key] for key in row.keys()}
    for flag in ("is_business", "exclusive_donor"):
        if flag in donor:
            donor[flag] = bool(donor[flag])
    return donor


class CallTimeStore:
    """Persistence operations for clients, donors, assignments, history and call notes."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as connection, transaction(connection):
            yield connection

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with closing(self._connect()) as connection:
            yield connection

    @contextmanager
    def batch(self) -> Iterator[sqlite3.Connection]:
        """One write transaction spanning several repository calls."""
        with self._transaction() as connection:
            yield connection

    def init_db(self) -> MigrationReport:
        with self._reading() as connection:
            connection.execute("PRAGMA journal_mode = WAL")
            return migrate(connection)

    # Clients

    def create_client(
        self,
        name: str,
        candidate: str | None = None,
        office: str | None = None,
        manager_name: str | None = None,
        contact_email: str | None = None,
        contact_phone: str | None = None,
        launch_date: str | None = None,
        fundraising_goal: Any = None,
        notes: str | None = None,
        sheet_url: str | None = None,
        portal_password: str | None = None,
    ) -> int:
        values = _client_values(
            {
                "name": name,
                "candidate": candidate,
                "office": office,
                "manager_name": manager_name,
                "contact_email": contact_email,
                "contact_phone": contact_phone,
                "launch_date": launch_date,
                "fundraising_goal": fundraising_goal,
                "notes": notes,
                "sheet_url": sheet_url,
            }
        )
        password_hash = None
        if portal_password is not None:
            password_hash = generate_password_hash(self._checked_password(portal_password))

        columns = [*values, "portal_password"]
        placeholders = ", ".join("?" for _ in columns)
        with self._transaction() as connection:
            cursor = connection.execute(
                f"INSERT INTO clients ({', '.join(columns)}) VALUES ({placeholders})",
                [*values.values(), password_hash],
            )
            client_id = lastrowid(cursor)
        logger.info("Created client %s (%s)", client_id, values["name"])
        return client_id

    def update_client(self, client_id: int, changes: Mapping[str, Any]) -> None:
        values = _client_values(changes)
        if not values:
            return
        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            connection.execute(
                f"UPDATE clients SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                [*values.values(), client_id],
            )

    def get_client(self, client_id: int) -> dict[str, Any]:
        with self._reading() as connection:
            rows = ledger.client_overview_rows(connection, client_id)
        if not rows:
            raise ClientNotFoundError(client_id)
        return dict(rows[0])

    def list_clients(self) -> list[dict[str, Any]]:
        with self._reading() as connection:
            return rows_to_dicts(ledger.client_overview_rows(connection))

    def delete_client(self, client_id: int) -> None:
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            connection.execute(
                """
                UPDATE donors
                SET exclusive_donor = 0,
                    exclusive_client_id = NULL,
                    updated_at = CURRENT_TIMESTAMP
                WHERE exclusive_client_id = ?
                """,
                (client_id,),
            )
            connection.execute("DELETE FROM clients WHERE id = ?", (client_id,))
        logger.info("Deleted client %s", client_id)

    @staticmethod
    def _checked_password(password: str) -> str:
        if password is None or len(password.strip()) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Portal passwords need at least {MIN_PASSWORD_LENGTH} characters.",
                field="password",
            )
        return password

    def set_client_password(
        self,
        client_id: int,
        password: str,
        needs_reset: bool = False,
    ) -> None:
        password_hash = generate_password_hash(self._checked_password(password))
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            connection.execute(
                """
                UPDATE clients
                SET portal_password = ?,
                    portal_password_needs_reset = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (password_hash, 1 if needs_reset else 0, client_id),
            )

    def verify_client_password(self, client_id: int, password: str) -> bool:
        with self._reading() as connection:
            row = connection.execute(
                "SELECT portal_password FROM clients WHERE id = ?",
                (client_id,),
            ).fetchone()
        if row is None or not row["portal_password"] or not password:
            return False
        return check_password_hash(row["portal_password"], password)

    # Donors

    def create_donor(
        self,
        payload: Mapping[str, Any],
        assigned_client_ids: Iterable[int] = (),
        assigned_by: str | None = None,
    ) -> int:
        """Create a donor and seed its assignments as one atomic write."""
        record = donors.build_donor_record(payload)
        client_ids = sorted({int(client_id) for client_id in assigned_client_ids})
        with self._transaction() as connection:
            donor_id = donors.create_donor(connection, record, client_ids, assigned_by=assigned_by)
        logger.info("Created donor %s assigned to %s", donor_id, client_ids)
        return donor_id

    def update_donor(
        self,
        donor_id: int,
        payload: Mapping[str, Any],
        assigned_by: str | None = None,
    ) -> None:
        with self._transaction() as connection:
            existing = donors.require_donor(connection, donor_id)
            record = donors.build_donor_record(payload, existing=existing)
            deactivated = donors.update_donor(
                connection, donor_id, record, existing, assigned_by=assigned_by
            )
        if deactivated:
            logger.info(
                "Locked donor %s to client %s; deactivated %s assignments",
                donor_id,
                record["exclusive_client_id"],
                deactivated,
            )

    def get_donor(self, donor_id: int) -> dict[str, Any]:
        with self._reading() as connection:
            row = donors.require_donor(connection, donor_id)
            assigned = rows_to_dicts(ledger.clients_for_donor(connection, donor_id))
            giving = history.list_history(connection, donor_id)

        donor = _donor_dict(row)
        donor["assigned_clients"] = assigned
        donor["assigned_client_ids"] = sorted(client["client_id"] for client in assigned)
        donor["history"] = giving
        return donor

    def list_donors(
        self,
        search_term: str = "",
        donor_types: Iterable[str] | None = None,
        smart_search: bool = False,
    ) -> list[dict[str, Any]]:
        cleaned_search = search_term.strip()
        types = [donor_type for donor_type in (donor_types or []) if donor_type]
        unknown = [donor_type for donor_type in types if donor_type not in DONOR_TYPES]
        if unknown:
            raise ValidationError(f"Unknown donor type: {', '.join(unknown)}", field="donor_type")

        base_select = """
            SELECT
                d.*,
                (
                    SELECT COALESCE(SUM(amount), 0)
                    FROM giving_history g
                    WHERE g.donor_id = d.id
                ) AS total_given,
                (
                    SELECT MAX(year)
                    FROM giving_history g
                    WHERE g.donor_id = d.id
                ) AS last_gift_year
            FROM donors d
        """
        filters: list[str] = []
        params: list[Any] = []
        if types:
            filters.append(f"d.donor_type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        if cleaned_search and not smart_search:
            searchable = (
                "name",
                "business_name",
                "first_name",
                "last_name",
                "email",
                "phone",
                "employer",
                "city",
            )
            filters.append(
                "("
                + " OR ".join(f"COALESCE(d.{column}, '') LIKE ?" for column in searchable)
                + ")"
            )
            params.extend([f"%{cleaned_search}%"] * len(searchable))

        where_sql = f" WHERE {' AND '.join(filters)}" if filters else ""
        order_sql = " ORDER BY d.name COLLATE NOCASE, d.id"

        with self._reading() as connection:
            rows = connection.execute(f"{base_select}{where_sql}{order_sql}", params).fetchall()
            assignments = connection.execute(
                """
                SELECT a.donor_id, a.client_id, c.name AS client_name
                FROM donor_assignments a
                JOIN clients c ON c.id = a.client_id
                WHERE a.is_active = 1
                ORDER BY a.client_id
                """
            ).fetchall()

        if cleaned_search and smart_search:
            rows = donors.search_donor_rows(rows, cleaned_search)

        by_donor: dict[int, list[sqlite3.Row]] = {}
        for assignment in assignments:
            by_donor.setdefault(assignment["donor_id"], []).append(assignment)

        results = []
        for row in rows:
            donor = _donor_dict(row)
            active = by_donor.get(row["id"], [])
            donor["assigned_client_ids"] = [assignment["client_id"] for assignment in active]
            donor["assigned_clients"] = [assignment["client_name"] for assignment in active]
            donor["assignment_count"] = len(active)
            results.append(donor)
        return results

    def delete_donor(self, donor_id: int) -> None:
        with self._transaction() as connection:
            donors.require_donor(connection, donor_id)
            connection.execute("DELETE FROM donors WHERE id = ?", (donor_id,))
        logger.info("Deleted donor %s", donor_id)

    # Assignments

    def assign(
        self,
        client_id: int,
        donor_id: int,
        priority_level: Any = None,
        assigned_by: str | None = None,
        custom_ask_amount: Any = None,
        assignment_notes: str | None = None,
    ) -> int:
        priority = _optional_int(priority_level, "priority_level", minimum=1)
        custom_ask = _optional_amount(custom_ask_amount, "custom_ask_amount")

        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            donor = donors.require_donor(connection, donor_id)
            deactivated = ledger.place_assignment(
                connection,
                client_id,
                donor_id,
                exclusive=bool(donor["exclusive_donor"]),
                priority_level=priority,
                assigned_by=_clean(assigned_by),
                custom_ask_amount=custom_ask,
                assignment_notes=_clean(assignment_notes),
            )
            assignment = ledger.assignment_for(connection, client_id, donor_id)
        if deactivated:
            logger.info(
                "Moved exclusive donor %s to client %s; deactivated %s assignments",
                donor_id,
                client_id,
                deactivated,
            )
        return int(assignment["id"])

    def unassign(self, client_id: int, donor_id: int) -> bool:
        with self._transaction() as connection:
            return ledger.unassign(connection, client_id, donor_id)

    def bulk_assign(
        self,
        client_id: int,
        donor_ids: Iterable[int],
        assigned_by: str | None = None,
        priority_level: Any = None,
    ) -> int:
        priority = _optional_int(priority_level, "priority_level", minimum=1)
        unique_ids = sorted({int(donor_id) for donor_id in donor_ids})
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            for donor_id in unique_ids:
                donor = donors.require_donor(connection, donor_id)
                ledger.place_assignment(
                    connection,
                    client_id,
                    donor_id,
                    exclusive=bool(donor["exclusive_donor"]),
                    priority_level=priority,
                    assigned_by=_clean(assigned_by),
                )
        logger.info("Assigned %s donors to client %s", len(unique_ids), client_id)
        return len(unique_ids)

    def set_exclusive(
        self,
        donor_id: int,
        client_id: int,
        assigned_by: str | None = None,
    ) -> int:
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            donors.require_donor(connection, donor_id)
            return ledger.enforce_exclusive(connection, donor_id, client_id, assigned_by=assigned_by)

    def clear_exclusive(self, donor_id: int) -> None:
        with self._transaction() as connection:
            donors.require_donor(connection, donor_id)
            connection.execute(
                """
                UPDATE donors
                SET exclusive_donor = 0,
                    exclusive_client_id = NULL,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (donor_id,),
            )

    def get_clients_for_donor(self, donor_id: int) -> list[dict[str, Any]]:
        with self._reading() as connection:
            donors.require_donor(connection, donor_id)
            return rows_to_dicts(ledger.clients_for_donor(connection, donor_id))

    def list_client_donors(self, client_id: int) -> list[dict[str, Any]]:
        with self._reading() as connection:
            ledger.require_client(connection, client_id)
            return [_donor_dict(row) for row in ledger.active_donors_for_client(connection, client_id)]

    def manager_overview(self) -> dict[str, Any]:
        with self._reading() as connection:
            clients = rows_to_dicts(ledger.client_overview_rows(connection))
            statistics = ledger.directory_statistics(connection)
        return {"clients": clients, "statistics": statistics}

    def client_summary(self, client_id: int) -> dict[str, Any]:
        with self._reading() as connection:
            rows = ledger.client_overview_rows(connection, client_id)
            if not rows:
                raise ClientNotFoundError(client_id)
            sessions = connection.execute(
                "SELECT COUNT(*) AS count FROM call_sessions WHERE client_id = ?",
                (client_id,),
            ).fetchone()

        summary = dict(rows[0])
        goal = summary["fundraising_goal"]
        summary["goal_progress_percent"] = (
            round(summary["total_raised"] / goal * 100, 1) if goal else None
        )
        summary["call_sessions"] = int(sessions["count"])
        return summary

    # Client-scoped access

    def _require_access(
        self,
        connection: sqlite3.Connection,
        client_id: int,
        donor_id: int,
    ) -> sqlite3.Row:
        ledger.require_client(connection, client_id)
        donor = donors.require_donor(connection, donor_id)
        assignment = ledger.assignment_for(connection, client_id, donor_id)
        if assignment is None or not assignment["is_active"]:
            raise DonorNotAssignedError(client_id, donor_id)
        return donor

    def ensure_client_has_donor(self, client_id: int, donor_id: int) -> dict[str, Any]:
        with self._reading() as connection:
            return _donor_dict(self._require_access(connection, client_id, donor_id))

    def get_client_donor_detail(self, client_id: int, donor_id: int) -> dict[str, Any]:
        """One client's view of a donor: shared facts plus its private annotations."""
        with self._reading() as connection:
            donor = _donor_dict(self._require_access(connection, client_id, donor_id))
            assignment = row_to_dict(ledger.assignment_for(connection, client_id, donor_id))
            research = connection.execute(
                """
                SELECT *
                FROM client_donor_research
                WHERE client_id = ? AND donor_id = ?
                ORDER BY research_category COLLATE NOCASE
                """,
                (client_id, donor_id),
            ).fetchall()
            notes = connection.execute(
                """
                SELECT *
                FROM client_donor_notes
                WHERE client_id = ? AND donor_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (client_id, donor_id),
            ).fetchall()
            calls = connection.execute(
                """
                SELECT *
                FROM call_outcomes
                WHERE client_id = ? AND donor_id = ?
                ORDER BY call_date DESC, id DESC
                """,
                (client_id, donor_id),
            ).fetchall()
            giving = history.list_history(connection, donor_id)

        return {
            "donor": donor,
            "assignment": assignment,
            "research": rows_to_dicts(research),
            "notes": rows_to_dicts(notes),
            "call_history": rows_to_dicts(calls),
            "history": giving,
        }

    # Giving history

    def list_history(self, donor_id: int) -> list[dict[str, Any]]:
        with self._reading() as connection:
            donors.require_donor(connection, donor_id)
            return history.list_history(connection, donor_id)

    def add_contribution(self, donor_id: int, payload: Mapping[str, Any]) -> int:
        with self._transaction() as connection:
            donors.require_donor(connection, donor_id)
            return history.add_contribution(connection, donor_id, payload)

    def update_contribution(
        self,
        donor_id: int,
        entry_id: int,
        payload: Mapping[str, Any],
    ) -> None:
        with self._transaction() as connection:
            donors.require_donor(connection, donor_id)
            history.update_contribution(connection, donor_id, entry_id, payload)

    def remove_contribution(self, donor_id: int, entry_id: int) -> None:
        with self._transaction() as connection:
            donors.require_donor(connection, donor_id)
            history.remove_contribution(connection, donor_id, entry_id)

    def search_contributions(
        self,
        candidate: str | None = None,
        year: Any = None,
        min_amount: Any = None,
        max_amount: Any = None,
    ) -> dict[str, Any]:
        parsed_year = _optional_int(year, "year")
        with self._reading() as connection:
            return history.search_contributions(
                connection,
                candidate=candidate,
                year=parsed_year,
                min_amount=min_amount,
                max_amount=max_amount,
            )

    def contribution_filter_options(self) -> dict[str, list[Any]]:
        with self._reading() as connection:
            return history.contribution_filter_options(connection)

    # Call outcomes, research and notes

    def record_call_outcome(
        self,
        client_id: int,
        donor_id: int,
        status: str | None,
        outcome_notes: str | None = None,
        follow_up_date: Any = None,
        pledge_amount: Any = None,
        contribution_amount: Any = None,
        next_action: str | None = None,
        call_duration: Any = None,
        call_quality: Any = None,
    ) -> int:
        clean_status = _clean(status)
        if not clean_status:
            raise ValidationError("Call status is required.", field="status")
        quality = _optional_int(call_quality, "call_quality")
        if quality is not None and not 1 <= quality <= 5:
            raise ValidationError("Call quality must be between 1 and 5.", field="call_quality")
        values = (
            client_id,
            donor_id,
            clean_status,
            _clean(outcome_notes),
            _optional_date(follow_up_date, "follow_up_date"),
            _optional_amount(pledge_amount, "pledge_amount"),
            _optional_amount(contribution_amount, "contribution_amount"),
            _clean(next_action),
            _optional_int(call_duration, "call_duration", minimum=0),
            quality,
        )

        with self._transaction() as connection:
            self._require_access(connection, client_id, donor_id)
            cursor = connection.execute(
                """
                INSERT INTO call_outcomes (
                    client_id,
                    donor_id,
                    status,
                    outcome_notes,
                    follow_up_date,
                    pledge_amount,
                    contribution_amount,
                    next_action,
                    call_duration,
                    call_quality
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values,
            )
            return lastrowid(cursor)

    def list_call_outcomes(self, client_id: int, donor_id: int) -> list[dict[str, Any]]:
        with self._reading() as connection:
            self._require_access(connection, client_id, donor_id)
            rows = connection.execute(
                """
                SELECT *
                FROM call_outcomes
                WHERE client_id = ? AND donor_id = ?
                ORDER BY call_date DESC, id DESC
                """,
                (client_id, donor_id),
            ).fetchall()
        return rows_to_dicts(rows)

    def save_research(
        self,
        client_id: int,
        donor_id: int,
        research_category: str | None,
        research_content: str | None,
    ) -> int:
        """Upsert one research category; the latest content wins."""
        category = _clean(research_category)
        if not category:
            raise ValidationError("Research category is required.", field="research_category")

        with self._transaction() as connection:
            self._require_access(connection, client_id, donor_id)
            connection.execute(
                """
                INSERT INTO client_donor_research (
                    client_id, donor_id, research_category, research_content
                )
                VALUES (?, ?, ?, ?)
                ON CONFLICT (client_id, donor_id, research_category) DO UPDATE SET
                    research_content = excluded.research_content,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (client_id, donor_id, category, _clean(research_content)),
            )
            row = connection.execute(
                """
                SELECT id
                FROM client_donor_research
                WHERE client_id = ? AND donor_id = ? AND research_category = ?
                """,
                (client_id, donor_id, category),
            ).fetchone()
            return int(row["id"])

    def add_note(
        self,
        client_id: int,
        donor_id: int,
        note_type: str | None,
        note_content: str | None = None,
        is_private: bool = True,
        is_important: bool = False,
    ) -> int:
        clean_type = _clean(note_type)
        if not clean_type:
            raise ValidationError("Note type is required.", field="note_type")

        with self._transaction() as connection:
            self._require_access(connection, client_id, donor_id)
            cursor = connection.execute(
                """
                INSERT INTO client_donor_notes (
                    client_id, donor_id, note_type, note_content, is_private, is_important
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    client_id,
                    donor_id,
                    clean_type,
                    _clean(note_content),
                    1 if is_private else 0,
                    1 if is_important else 0,
                ),
            )
            return lastrowid(cursor)

    # Call sessions

    def start_call_session(self, client_id: int) -> int:
        with self._transaction() as connection:
            ledger.require_client(connection, client_id)
            cursor = connection.execute(
                "INSERT INTO call_sessions (client_id) VALUES (?)",
                (client_id,),
            )
            return lastrowid(cursor)

    def end_call_session(
        self,
        client_id: int,
        session_id: int,
        calls_attempted: Any = 0,
        calls_completed: Any = 0,
        total_pledged: Any = None,
        session_notes: str | None = None,
    ) -> None:
        attempted = _optional_int(calls_attempted, "calls_attempted", minimum=0) or 0
        completed = _optional_int(calls_completed, "calls_completed", minimum=0) or 0
        if completed > attempted:
            raise ValidationError(
                "Completed calls cannot exceed attempted calls.", field="calls_completed"
            )
        pledged = _optional_amount(total_pledged, "total_pledged") or 0.0

        with self._transaction() as connection:
            cursor = connection.execute(
                """
                UPDATE call_sessions
                SET session_end = CURRENT_TIMESTAMP,
                    calls_attempted = ?,
                    calls_completed = ?,
                    total_pledged = ?,
                    session_notes = ?
                WHERE id = ? AND client_id = ?
                """,
                (attempted, completed, pledged, _clean(session_notes), session_id, client_id),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("Call session not found")

    def list_call_sessions(self, client_id: int) -> list[dict[str, Any]]:
        with self._reading() as connection:
            rows = connection.execute(
                """
                SELECT *
                FROM call_sessions
                WHERE client_id = ?
                ORDER BY session_start DESC, id DESC
                """,
                (client_id,),
            ).fetchall()
        return rows_to_dicts(rows)
