"""Client/donor assignments and the aggregates built on them."""

from __future__ import annotations

import sqlite3
from typing import Any

from calltime.errors import ClientNotFoundError

CLIENT_PUBLIC_COLUMNS = (
    "id",
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
    "portal_password_needs_reset",
    "created_at",
    "updated_at",
)


def require_client(connection: sqlite3.Connection, client_id: int) -> sqlite3.Row:
    row = connection.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
    if row is None:
        raise ClientNotFoundError(client_id)
    return row


def assign(
    connection: sqlite3.Connection,
    client_id: int,
    donor_id: int,
    priority_level: int | None = None,
    assigned_by: str | None = None,
    custom_ask_amount: float | None = None,
    assignment_notes: str | None = None,
) -> int:
    """Upsert the (client, donor) assignment and mark it active.

    Omitted metadata keeps its stored value, so reactivating an assignment
    restores its earlier custom ask and notes.
    """
    connection.execute(
        """
        INSERT INTO donor_assignments (
            client_id,
            donor_id,
            assigned_by,
            priority_level,
            custom_ask_amount,
            assignment_notes,
            is_active
        )
        VALUES (
            :client_id,
            :donor_id,
            :assigned_by,
            COALESCE(:priority_level, 1),
            :custom_ask_amount,
            :assignment_notes,
            1
        )
        ON CONFLICT (client_id, donor_id) DO UPDATE SET
            assigned_date = CASE
                WHEN donor_assignments.is_active = 0 THEN CURRENT_TIMESTAMP
                ELSE donor_assignments.assigned_date
            END,
            assigned_by = COALESCE(:assigned_by, donor_assignments.assigned_by),
            priority_level = COALESCE(:priority_level, donor_assignments.priority_level),
            custom_ask_amount = COALESCE(:custom_ask_amount, donor_assignments.custom_ask_amount),
            assignment_notes = COALESCE(:assignment_notes, donor_assignments.assignment_notes),
            is_active = 1
        """,
        {
            "client_id": client_id,
            "donor_id": donor_id,
            "assigned_by": assigned_by,
            "priority_level": priority_level,
            "custom_ask_amount": custom_ask_amount,
            "assignment_notes": assignment_notes,
        },
    )
    row = connection.execute(
        "SELECT id FROM donor_assignments WHERE client_id = ? AND donor_id = ?",
        (client_id, donor_id),
    ).fetchone()
    return int(row["id"])


def unassign(connection: sqlite3.Connection, client_id: int, donor_id: int) -> bool:
    cursor = connection.execute(
        """
        UPDATE donor_assignments
        SET is_active = 0
        WHERE client_id = ? AND donor_id = ? AND is_active = 1
        """,
        (client_id, donor_id),
    )
    return cursor.rowcount > 0


def enforce_exclusive(
    connection: sqlite3.Connection,
    donor_id: int,
    client_id: int,
    assigned_by: str | None = None,
    priority_level: int | None = None,
    custom_ask_amount: float | None = None,
    assignment_notes: str | None = None,
) -> int:
    """Lock a donor to one client inside the caller's transaction.

    Returns how many other assignments were deactivated.
    """
    deactivated = connection.execute(
        """
        UPDATE donor_assignments
        SET is_active = 0
        WHERE donor_id = ? AND client_id != ? AND is_active = 1
        """,
        (donor_id, client_id),
    ).rowcount
    assign(
        connection,
        client_id,
        donor_id,
        priority_level=priority_level,
        assigned_by=assigned_by,
        custom_ask_amount=custom_ask_amount,
        assignment_notes=assignment_notes,
    )
    connection.execute(
        """
        UPDATE donors
        SET exclusive_donor = 1,
            exclusive_client_id = ?,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (client_id, donor_id),
    )
    return deactivated


def active_client_ids(connection: sqlite3.Connection, donor_id: int) -> list[int]:
    rows = connection.execute(
        """
        SELECT client_id
        FROM donor_assignments
        WHERE donor_id = ? AND is_active = 1
        ORDER BY client_id
        """,
        (donor_id,),
    ).fetchall()
    return [int(row["client_id"]) for row in rows]


def clients_for_donor(connection: sqlite3.Connection, donor_id: int) -> list[sqlite3.Row]:
    return connection.execute(
        """
        SELECT
            c.id AS client_id,
            c.name AS client_name,
            c.candidate,
            a.priority_level,
            a.custom_ask_amount,
            a.assignment_notes,
            a.assigned_by,
            a.assigned_date
        FROM donor_assignments a
        JOIN clients c ON c.id = a.client_id
        WHERE a.donor_id = ? AND a.is_active = 1
        ORDER BY c.name COLLATE NOCASE, c.id
        """,
        (donor_id,),
    ).fetchall()


def assignment_for(
    connection: sqlite3.Connection,
    client_id: int,
    donor_id: int,
) -> sqlite3.Row | None:
    return connection.execute(
        "SELECT * FROM donor_assignments WHERE client_id = ? AND donor_id = ?",
        (client_id, donor_id),
    ).fetchone()


def active_donors_for_client(connection: sqlite3.Connection, client_id: int) -> list[sqlite3.Row]:
    """The client's call queue: active assignments, highest priority first."""
    return connection.execute(
        """
        SELECT
            d.*,
            a.priority_level,
            a.custom_ask_amount,
            a.assignment_notes,
            a.assigned_by,
            a.assigned_date,
            COALESCE(a.custom_ask_amount, d.suggested_ask) AS effective_ask,
            COALESCE(last_call.status, 'Not Contacted') AS last_call_status,
            last_call.call_date AS last_call_date,
            last_call.follow_up_date AS follow_up_date,
            COALESCE(call_stats.total_calls, 0) AS total_calls
        FROM donor_assignments a
        JOIN donors d ON d.id = a.donor_id
        LEFT JOIN (
            SELECT donor_id, COUNT(*) AS total_calls
            FROM call_outcomes
            WHERE client_id = :client_id
            GROUP BY donor_id
        ) call_stats ON call_stats.donor_id = d.id
        LEFT JOIN call_outcomes last_call ON last_call.id = (
            SELECT co.id
            FROM call_outcomes co
            WHERE co.client_id = :client_id AND co.donor_id = d.id
            ORDER BY co.call_date DESC, co.id DESC
            LIMIT 1
        )
        WHERE a.client_id = :client_id AND a.is_active = 1
        ORDER BY a.priority_level DESC, a.assigned_date ASC, d.name COLLATE NOCASE, d.id
        """,
        {"client_id": client_id},
    ).fetchall()


def client_overview_rows(
    connection: sqlite3.Connection,
    client_id: int | None = None,
) -> list[sqlite3.Row]:
    """Per-client totals.

    Call outcomes are aggregated per client before joining so a donor with
    many outcomes is counted once per outcome, never once per assignment.
    """
    client_columns = ", ".join(f"c.{column}" for column in CLIENT_PUBLIC_COLUMNS)
    where_sql = "WHERE c.id = :client_id" if client_id is not None else ""
    return connection.execute(
        f"""
        SELECT
            {client_columns},
            COALESCE(assigned.assigned_donors, 0) AS assigned_donors,
            COALESCE(outcomes.total_calls, 0) AS total_calls,
            COALESCE(outcomes.total_pledged, 0) AS total_pledged,
            COALESCE(outcomes.total_raised, 0) AS total_raised
        FROM clients c
        LEFT JOIN (
            SELECT client_id, COUNT(*) AS assigned_donors
            FROM donor_assignments
            WHERE is_active = 1
            GROUP BY client_id
        ) assigned ON assigned.client_id = c.id
        LEFT JOIN (
            SELECT
                client_id,
                COUNT(*) AS total_calls,
                SUM(COALESCE(pledge_amount, 0)) AS total_pledged,
                SUM(COALESCE(contribution_amount, 0)) AS total_raised
            FROM call_outcomes
            GROUP BY client_id
        ) outcomes ON outcomes.client_id = c.id
        {where_sql}
        ORDER BY c.name COLLATE NOCASE, c.id
        """,
        {"client_id": client_id},
    ).fetchall()


def directory_statistics(connection: sqlite3.Connection) -> dict[str, Any]:
    row = connection.execute(
        """
        SELECT
            (SELECT COUNT(*) FROM donors) AS total_donors,
            (
                SELECT COUNT(*)
                FROM donors d
                WHERE NOT EXISTS (
                    SELECT 1
                    FROM donor_assignments a
                    WHERE a.donor_id = d.id AND a.is_active = 1
                )
            ) AS unassigned_donors,
            (
                SELECT COUNT(DISTINCT client_id)
                FROM donor_assignments
                WHERE is_active = 1
            ) AS active_clients,
            (SELECT COUNT(*) FROM clients) AS total_clients
        """
    ).fetchone()
    return {key: int(row[key]) for key in row.keys()}


def place_assignment(
    connection: sqlite3.Connection,
    client_id: int,
    donor_id: int,
    exclusive: bool,
    priority_level: int | None = None,
    assigned_by: str | None = None,
    custom_ask_amount: float | None = None,
    assignment_notes: str | None = None,
) -> int:
    """Assign a donor, moving the lock when the donor is exclusive.

    Returns how many other assignments were deactivated.
    """
    if exclusive:
        return enforce_exclusive(
            connection,
            donor_id,
            client_id,
            assigned_by=assigned_by,
            priority_level=priority_level,
            custom_ask_amount=custom_ask_amount,
            assignment_notes=assignment_notes,
        )
    assign(
        connection,
        client_id,
        donor_id,
        priority_level=priority_level,
        assigned_by=assigned_by,
        custom_ask_amount=custom_ask_amount,
        assignment_notes=assignment_notes,
    )
    return 0
