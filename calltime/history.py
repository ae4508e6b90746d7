"""Giving history: contributions recorded against a donor, shared by all clients."""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable, Mapping

from calltime.db import lastrowid
from calltime.errors import RecordNotFoundError, ValidationError
from calltime.normalize import Contribution, clean_text, parse_currency, transform_contribution_rows

HISTORY_ORDER_SQL = (
    "year DESC, candidate COLLATE NOCASE ASC, COALESCE(office_sought, '') COLLATE NOCASE ASC, "
    "amount DESC, entry_key ASC"
)

_HISTORY_COLUMNS = "id, donor_id, year, candidate, office_sought, amount, is_inkind, entry_key, created_at"


def _history_dict(row: sqlite3.Row) -> dict[str, Any]:
    entry = {key: row[key] for key in row.keys()}
    entry["is_inkind"] = bool(entry["is_inkind"])
    return entry


def list_history(connection: sqlite3.Connection, donor_id: int) -> list[dict[str, Any]]:
    rows = connection.execute(
        f"""
        SELECT {_HISTORY_COLUMNS}
        FROM giving_history
        WHERE donor_id = ?
        ORDER BY {HISTORY_ORDER_SQL}
        """,
        (donor_id,),
    ).fetchall()
    return [_history_dict(row) for row in rows]


def validate_contribution(payload: Mapping[str, Any] | Contribution) -> Contribution:
    if isinstance(payload, Contribution):
        return payload
    entries, errors = transform_contribution_rows([payload])
    if errors:
        detail = errors[0].split(": ", 1)[-1]
        raise ValidationError(f"Invalid contribution: {detail}.")
    if not entries:
        raise ValidationError("Contribution requires a year, candidate and amount.")
    return entries[0]


def _unique_entry_key(
    connection: sqlite3.Connection,
    donor_id: int,
    entry_key: str,
    exclude_id: int | None = None,
) -> str:
    candidate_key = entry_key
    suffix = 2
    while True:
        row = connection.execute(
            "SELECT id FROM giving_history WHERE donor_id = ? AND entry_key = ?",
            (donor_id, candidate_key),
        ).fetchone()
        if row is None or row["id"] == exclude_id:
            return candidate_key
        candidate_key = f"{entry_key}-{suffix}"
        suffix += 1


def add_contribution(
    connection: sqlite3.Connection,
    donor_id: int,
    payload: Mapping[str, Any] | Contribution,
) -> int:
    entry = validate_contribution(payload)
    entry_key = _unique_entry_key(connection, donor_id, entry.entry_key)
    cursor = connection.execute(
        """
        INSERT INTO giving_history (
            donor_id, year, candidate, office_sought, amount, is_inkind, entry_key
        )
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            donor_id,
            entry.year,
            entry.candidate,
            entry.office_sought,
            entry.amount,
            1 if entry.is_inkind else 0,
            entry_key,
        ),
    )
    return lastrowid(cursor)


def _require_entry(connection: sqlite3.Connection, donor_id: int, entry_id: int) -> sqlite3.Row:
    row = connection.execute(
        "SELECT * FROM giving_history WHERE id = ? AND donor_id = ?",
        (entry_id, donor_id),
    ).fetchone()
    if row is None:
        raise RecordNotFoundError("Contribution not found")
    return row


def update_contribution(
    connection: sqlite3.Connection,
    donor_id: int,
    entry_id: int,
    payload: Mapping[str, Any],
) -> None:
    existing = _require_entry(connection, donor_id, entry_id)
    merged = {
        "year": existing["year"],
        "candidate": existing["candidate"],
        "office_sought": existing["office_sought"],
        "amount": existing["amount"],
        "is_inkind": existing["is_inkind"],
    }
    merged.update({key: value for key, value in payload.items() if key != "id"})
    merged.pop("entry_key", None)
    entry = validate_contribution(merged)
    entry_key = _unique_entry_key(connection, donor_id, entry.entry_key, exclude_id=entry_id)
    connection.execute(
        """
        UPDATE giving_history
        SET year = ?, candidate = ?, office_sought = ?, amount = ?, is_inkind = ?, entry_key = ?
        WHERE id = ?
        """,
        (
            entry.year,
            entry.candidate,
            entry.office_sought,
            entry.amount,
            1 if entry.is_inkind else 0,
            entry_key,
            entry_id,
        ),
    )


def remove_contribution(connection: sqlite3.Connection, donor_id: int, entry_id: int) -> None:
    _require_entry(connection, donor_id, entry_id)
    connection.execute("DELETE FROM giving_history WHERE id = ?", (entry_id,))


def merge_contributions(
    connection: sqlite3.Connection,
    donor_id: int,
    entries: Iterable[Contribution],
) -> int:
    """Union entries into the donor's history by entry key; returns rows added.

    Repeats of one key within a batch are distinct gifts, keyed `-2`, `-3` by
    occurrence.
    """
    added = 0
    occurrences: dict[str, int] = {}
    for entry in entries:
        occurrences[entry.entry_key] = occurrences.get(entry.entry_key, 0) + 1
        count = occurrences[entry.entry_key]
        entry_key = entry.entry_key if count == 1 else f"{entry.entry_key}-{count}"
        cursor = connection.execute(
            """
            INSERT INTO giving_history (
                donor_id, year, candidate, office_sought, amount, is_inkind, entry_key
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (donor_id, entry_key) DO NOTHING
            """,
            (
                donor_id,
                entry.year,
                entry.candidate,
                entry.office_sought,
                entry.amount,
                1 if entry.is_inkind else 0,
                entry_key,
            ),
        )
        added += cursor.rowcount
    return added


def search_contributions(
    connection: sqlite3.Connection,
    candidate: str | None = None,
    year: int | None = None,
    min_amount: Any = None,
    max_amount: Any = None,
) -> dict[str, Any]:
    clean_candidate = clean_text(candidate)
    if clean_candidate is None and year is None:
        raise ValidationError("Select a candidate or year before searching.", field="candidate")

    filters = []
    params: list[Any] = []
    if clean_candidate is not None:
        filters.append("g.candidate = ? COLLATE NOCASE")
        params.append(clean_candidate)
    if year is not None:
        filters.append("g.year = ?")
        params.append(year)
    for raw, operator in ((min_amount, ">="), (max_amount, "<=")):
        bound = parse_currency(raw)
        if bound is None:
            if clean_text(raw) is not None:
                raise ValidationError(f"Amount filter {raw!r} is not a number.", field="amount")
            continue
        filters.append(f"g.amount {operator} ?")
        params.append(bound)

    where_sql = " AND ".join(filters)
    rows = connection.execute(
        f"""
        SELECT
            g.id, g.donor_id, g.year, g.candidate, g.office_sought, g.amount,
            g.is_inkind, g.entry_key, g.created_at,
            d.name AS donor_name, d.donor_type, d.email, d.phone
        FROM giving_history g
        JOIN donors d ON d.id = g.donor_id
        WHERE {where_sql}
        ORDER BY d.name COLLATE NOCASE, d.id,
            g.year DESC, g.candidate COLLATE NOCASE, g.amount DESC, g.entry_key
        """,
        params,
    ).fetchall()

    donors: dict[int, dict[str, Any]] = {}
    years: dict[int, dict[str, Any]] = {}
    for row in rows:
        entry = _history_dict(row)
        donor = donors.setdefault(
            row["donor_id"],
            {
                "donor_id": row["donor_id"],
                "name": row["donor_name"],
                "donor_type": row["donor_type"],
                "email": row["email"],
                "phone": row["phone"],
                "entries": [],
                "total_amount": 0.0,
            },
        )
        for key in ("donor_name", "donor_type", "email", "phone"):
            entry.pop(key, None)
        donor["entries"].append(entry)
        donor["total_amount"] += entry["amount"]

        year_summary = years.setdefault(
            row["year"], {"year": row["year"], "total_amount": 0.0, "entry_count": 0}
        )
        year_summary["total_amount"] += entry["amount"]
        year_summary["entry_count"] += 1

    return {
        "donors": list(donors.values()),
        "years": [years[key] for key in sorted(years, reverse=True)],
        "total_amount": sum(donor["total_amount"] for donor in donors.values()),
        "entry_count": len(rows),
    }


def contribution_filter_options(connection: sqlite3.Connection) -> dict[str, list[Any]]:
    candidates = connection.execute(
        """
        SELECT candidate
        FROM giving_history
        WHERE TRIM(COALESCE(candidate, '')) != ''
        GROUP BY candidate COLLATE NOCASE
        ORDER BY candidate COLLATE NOCASE
        """
    ).fetchall()
    years = connection.execute(
        "SELECT DISTINCT year FROM giving_history WHERE year IS NOT NULL ORDER BY year DESC"
    ).fetchall()
    return {
        "candidates": [row["candidate"] for row in candidates],
        "years": [int(row["year"]) for row in years],
    }
