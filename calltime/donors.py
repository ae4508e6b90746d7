"""Donor records: identity resolution, validation and directory search."""

from __future__ import annotations

import re
import sqlite3
from difflib import SequenceMatcher
from typing import Any, Mapping

from calltime import ledger
from calltime.db import lastrowid
from calltime.errors import DonorNotFoundError, ValidationError
from calltime.normalize import (
    INDIVIDUAL,
    ORGANIZATION_DONOR_TYPES,
    canonicalize_row,
    clean_text,
    normalize_column_name,
    normalize_postal_code,
    normalize_state,
    parse_boolean_flag,
    parse_integer,
    parse_suggested_ask,
    reconcile_address,
    resolve_donor_type,
)

DONOR_TEXT_FIELDS = (
    "business_name",
    "first_name",
    "last_name",
    "contact_name",
    "phone",
    "alternate_phone",
    "email",
    "employer",
    "occupation",
    "job_title",
    "tags",
    "last_gift_note",
    "notes",
    "bio",
    "photo_url",
)
ADDRESS_FIELDS = ("street_address", "address_line2", "city", "state", "postal_code")
_COMBINED_ADDRESS_FIELDS = ("full_address", "city_state_zip")

WRITABLE_COLUMNS = (
    "client_id",
    "name",
    "donor_type",
    "is_business",
    *DONOR_TEXT_FIELDS,
    *ADDRESS_FIELDS,
    "suggested_ask",
    "exclusive_donor",
    "exclusive_client_id",
)


def _normalize_token(value: str | None) -> str:
    return normalize_column_name(value)


def _normalize_digits(value: str | None) -> str:
    if value is None:
        return ""
    return re.sub(r"\D", "", value)


def _join_name(first: str | None, last: str | None) -> str | None:
    return clean_text(" ".join(part for part in (first, last) if part))


def donor_display_name(row: sqlite3.Row | Mapping[str, Any]) -> str:
    if row["donor_type"] in ORGANIZATION_DONOR_TYPES:
        return row["business_name"] or row["name"] or "Unnamed organization"
    return row["name"] or _join_name(row["first_name"], row["last_name"]) or "Unnamed donor"


def _apply_address(record: dict[str, Any], fields: Mapping[str, Any]) -> None:
    if any(key in fields for key in _COMBINED_ADDRESS_FIELDS):
        address = reconcile_address(
            full_address=fields.get("full_address"),
            street_address=fields.get("street_address"),
            address_line2=fields.get("address_line2"),
            city_state_zip=fields.get("city_state_zip"),
            city=fields.get("city"),
            state=fields.get("state"),
            postal_code=fields.get("postal_code"),
        )
        record.update(address.as_dict())
        return

    if "street_address" in fields:
        record["street_address"] = clean_text(fields["street_address"])
    if "address_line2" in fields:
        record["address_line2"] = clean_text(fields["address_line2"])
    if "city" in fields:
        record["city"] = clean_text(fields["city"])
    if "state" in fields:
        record["state"] = normalize_state(fields["state"])
    if "postal_code" in fields:
        record["postal_code"] = normalize_postal_code(fields["postal_code"])


def _resolve_organization_name(record: dict[str, Any]) -> None:
    organization_name = record.get("business_name") or record.get("name") or record.get("employer")
    if not organization_name:
        raise ValidationError(
            "Business or campaign donors require a business name.",
            field="business_name",
        )
    record["business_name"] = organization_name
    record["name"] = organization_name

    contact = _join_name(record.get("first_name"), record.get("last_name"))
    if contact and not record.get("contact_name"):
        record["contact_name"] = contact
    record["first_name"] = None
    record["last_name"] = None


def _resolve_individual_name(record: dict[str, Any]) -> None:
    first = record.get("first_name")
    last = record.get("last_name")
    name = record.get("name") or _join_name(first, last)
    if not name:
        raise ValidationError(
            "Individual donors require a name or a first and last name.",
            field="name",
        )

    if not first or not last:
        tokens = name.split()
        first = first or tokens[0]
        last = last or clean_text(" ".join(tokens[1:]))

    record["name"] = name
    record["first_name"] = first
    record["last_name"] = last
    if record.get("business_name"):
        record["employer"] = record.get("employer") or record["business_name"]
        record["business_name"] = None


def build_donor_record(
    payload: Mapping[str, Any],
    existing: Mapping[str, Any] | None = None,
    clear_blanks: bool = True,
) -> dict[str, Any]:
    """Merge a loose payload onto an existing donor and validate the result.

    With ``clear_blanks`` an update payload can clear a field by sending it
    empty; imports pass ``False`` so empty cells never erase stored values.
    Raises ``ValidationError`` before anything is written.
    """
    fields = canonicalize_row(payload, keep_blank=clear_blanks and existing is not None)
    record: dict[str, Any] = {column: None for column in WRITABLE_COLUMNS}
    if existing is not None:
        record.update({column: existing[column] for column in WRITABLE_COLUMNS})

    if "name" in fields:
        record["name"] = clean_text(fields["name"])
    elif existing is not None and ("first_name" in fields or "last_name" in fields):
        record["name"] = None
    for column in DONOR_TEXT_FIELDS:
        if column in fields:
            record[column] = clean_text(fields[column])
    _apply_address(record, fields)

    if "suggested_ask" in fields:
        raw_ask = fields["suggested_ask"]
        record["suggested_ask"] = parse_suggested_ask(raw_ask)
        if record["suggested_ask"] is None and clean_text(raw_ask) is not None:
            raise ValidationError(f"Suggested ask {raw_ask!r} is not an amount.", field="suggested_ask")
    if "client_id" in fields:
        record["client_id"] = parse_integer(fields["client_id"])

    if existing is None or "donor_type" in fields or "is_business" in fields:
        context = {**record, **{key: fields[key] for key in ("is_business",) if key in fields}}
        record["donor_type"] = resolve_donor_type(fields.get("donor_type"), context)
    record["is_business"] = 1 if record["donor_type"] in ORGANIZATION_DONOR_TYPES else 0

    if record["donor_type"] == INDIVIDUAL:
        _resolve_individual_name(record)
    else:
        _resolve_organization_name(record)

    if "exclusive_donor" in fields:
        current = bool(record["exclusive_donor"])
        record["exclusive_donor"] = parse_boolean_flag(fields["exclusive_donor"], default=current)
    record["exclusive_donor"] = 1 if record["exclusive_donor"] else 0
    if "exclusive_client_id" in fields:
        record["exclusive_client_id"] = parse_integer(fields["exclusive_client_id"])
    if not record["exclusive_donor"]:
        record["exclusive_client_id"] = None

    return record


def insert_donor(connection: sqlite3.Connection, record: Mapping[str, Any]) -> int:
    columns = ", ".join(WRITABLE_COLUMNS)
    placeholders = ", ".join(f":{column}" for column in WRITABLE_COLUMNS)
    cursor = connection.execute(
        f"INSERT INTO donors ({columns}) VALUES ({placeholders})",
        {column: record.get(column) for column in WRITABLE_COLUMNS},
    )
    return lastrowid(cursor)


def update_donor_row(
    connection: sqlite3.Connection,
    donor_id: int,
    record: Mapping[str, Any],
) -> None:
    assignments = ", ".join(f"{column} = :{column}" for column in WRITABLE_COLUMNS)
    params = {column: record.get(column) for column in WRITABLE_COLUMNS}
    params["id"] = donor_id
    connection.execute(
        f"UPDATE donors SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = :id",
        params,
    )


def fetch_donor(connection: sqlite3.Connection, donor_id: int) -> sqlite3.Row | None:
    return connection.execute("SELECT * FROM donors WHERE id = ?", (donor_id,)).fetchone()


def require_donor(connection: sqlite3.Connection, donor_id: int) -> sqlite3.Row:
    row = fetch_donor(connection, donor_id)
    if row is None:
        raise DonorNotFoundError(donor_id)
    return row


def find_matching_donor(
    connection: sqlite3.Connection,
    record: Mapping[str, Any],
    donor_id: int | None = None,
) -> sqlite3.Row | None:
    """Find an existing donor by id, email, name + phone, or name + postal code."""
    if donor_id is not None:
        row = fetch_donor(connection, donor_id)
        if row is not None:
            return row

    email = clean_text(record.get("email"))
    if email:
        row = connection.execute(
            "SELECT * FROM donors WHERE LOWER(TRIM(email)) = ? ORDER BY id LIMIT 1",
            (email.lower(),),
        ).fetchone()
        if row is not None:
            return row

    name_token = _normalize_token(record.get("name"))
    if not name_token:
        return None
    phone_digits = _normalize_digits(record.get("phone"))
    postal = clean_text(record.get("postal_code"))
    if not phone_digits and not postal:
        return None

    for row in connection.execute("SELECT * FROM donors ORDER BY id").fetchall():
        if _normalize_token(row["name"]) != name_token:
            continue
        if phone_digits and phone_digits in (
            _normalize_digits(row["phone"]),
            _normalize_digits(row["alternate_phone"]),
        ):
            return row
        if postal and postal == row["postal_code"]:
            return row
    return None


def _similarity(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


def donor_search_score(row: sqlite3.Row | Mapping[str, Any], search_term: str) -> float:
    query_norm = _normalize_token(search_term)
    if not query_norm:
        return 0.0

    query_digits = _normalize_digits(search_term)
    name_norm = _normalize_token(row["name"])
    first_norm = _normalize_token(row["first_name"])
    last_norm = _normalize_token(row["last_name"])
    business_norm = _normalize_token(row["business_name"])
    employer_norm = _normalize_token(row["employer"])
    email_norm = _normalize_token(row["email"])
    searchable = [name_norm, first_norm, last_norm, business_norm, employer_norm, email_norm]

    score = 0.0
    if any(query_norm == value for value in searchable if value):
        score += 240
    elif any(query_norm in value for value in searchable if value):
        score += 150

    if len(query_digits) >= 4:
        for phone in (row["phone"], row["alternate_phone"]):
            phone_digits = _normalize_digits(phone)
            if phone_digits and query_digits in phone_digits:
                score += 240 if query_digits == phone_digits else 150
                break

    best_ratio = max(_similarity(query_norm, value) for value in searchable)
    if best_ratio >= 0.9:
        score += 120
    elif best_ratio >= 0.8:
        score += 80
    elif best_ratio >= 0.7:
        score += 45

    if first_norm.startswith(query_norm) or last_norm.startswith(query_norm):
        score += 70
    return score


def search_donor_rows(
    rows: list[sqlite3.Row],
    search_term: str,
    threshold: float = 55,
) -> list[sqlite3.Row]:
    scored = [(donor_search_score(row, search_term), row) for row in rows]
    scored = [(score, row) for score, row in scored if score >= threshold]
    scored.sort(key=lambda item: (-item[0], (item[1]["name"] or "").casefold(), item[1]["id"]))
    return [row for _, row in scored]


def create_donor(
    connection: sqlite3.Connection,
    record: dict[str, Any],
    client_ids: list[int],
    assigned_by: str | None = None,
) -> int:
    """Insert a validated donor and its initial assignments in the caller's transaction."""
    for client_id in client_ids:
        ledger.require_client(connection, client_id)

    exclusive_client_id = None
    if record["exclusive_donor"]:
        exclusive_client_id = record["exclusive_client_id"]
        if exclusive_client_id is None:
            if len(client_ids) != 1:
                raise ValidationError(
                    "Exclusive donors must be locked to exactly one client.",
                    field="exclusive_client_id",
                )
            exclusive_client_id = client_ids[0]
        elif any(client_id != exclusive_client_id for client_id in client_ids):
            raise ValidationError(
                "Exclusive donors cannot be assigned to other clients.",
                field="exclusive_client_id",
            )
        ledger.require_client(connection, exclusive_client_id)
        record["exclusive_client_id"] = exclusive_client_id
        client_ids = [exclusive_client_id]

    if record["client_id"] is not None:
        ledger.require_client(connection, record["client_id"])
    elif client_ids:
        record["client_id"] = client_ids[0]

    donor_id = insert_donor(connection, record)
    for client_id in client_ids:
        ledger.place_assignment(
            connection,
            client_id,
            donor_id,
            exclusive=client_id == exclusive_client_id,
            assigned_by=assigned_by,
        )
    return donor_id


def update_donor(
    connection: sqlite3.Connection,
    donor_id: int,
    record: dict[str, Any],
    existing: sqlite3.Row,
    assigned_by: str | None = None,
) -> int:
    """Write a validated donor; returns assignments deactivated by an exclusivity lock."""
    if record["exclusive_donor"]:
        exclusive_client_id = record["exclusive_client_id"]
        if exclusive_client_id is None:
            active = ledger.active_client_ids(connection, donor_id)
            if len(active) != 1:
                raise ValidationError(
                    "Choose the client this exclusive donor is locked to.",
                    field="exclusive_client_id",
                )
            exclusive_client_id = active[0]
        ledger.require_client(connection, exclusive_client_id)
        record["exclusive_client_id"] = exclusive_client_id

    update_donor_row(connection, donor_id, record)
    if not record["exclusive_donor"]:
        return 0
    # an unchanged lock must not reactivate assignments turned off since
    if existing["exclusive_donor"] and existing["exclusive_client_id"] == record["exclusive_client_id"]:
        return 0
    return ledger.enforce_exclusive(
        connection, donor_id, record["exclusive_client_id"], assigned_by=assigned_by
    )
