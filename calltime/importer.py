"""Bulk import of spreadsheet rows into donors, assignments and giving history."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import IO, Any, Iterable, Mapping

import pandas as pd

from calltime import donors, history, ledger
from calltime.db import savepoint
from calltime.errors import CallTimeError, ValidationError
from calltime.normalize import (
    canonicalize_row,
    clean_text,
    extract_contribution_fields,
    normalize_column_name,
    normalize_postal_code,
    parse_currency,
    parse_integer,
    transform_contribution_rows,
)
from calltime.store import CallTimeStore

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")


@dataclass
class ImportResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    contributions_added: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def read_tabular(source: str | Path | IO[Any], filename: str | None = None) -> list[dict[str, Any]]:
    """Parse a CSV or Excel upload into rows keyed by header; blank cells become None."""
    name = filename or getattr(source, "name", None) or str(source)
    if str(name).lower().endswith(EXCEL_SUFFIXES):
        frame = pd.read_excel(source, dtype=object)
    else:
        frame = pd.read_csv(source, dtype=str, keep_default_na=False)

    frame = frame.loc[:, [not str(column).startswith("Unnamed:") for column in frame.columns]]
    frame = frame.astype(object).where(pd.notna(frame), None)

    rows = []
    for record in frame.to_dict(orient="records"):
        rows.append(
            {
                str(key).strip(): (None if isinstance(value, str) and not value.strip() else value)
                for key, value in record.items()
            }
        )
    return rows


class BulkImporter:
    """Runs parsed rows through normalization and upserts them in one transaction."""

    def __init__(self, store: CallTimeStore) -> None:
        self.store = store

    def import_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        fallback_client_id: int | None = None,
        assigned_by: str = "import",
    ) -> ImportResult:
        result = ImportResult()
        with self.store.batch() as connection:
            if fallback_client_id is not None:
                ledger.require_client(connection, fallback_client_id)
            client_ids, client_labels = _client_index(connection)

            for number, row in enumerate(rows, start=1):
                if not isinstance(row, Mapping):
                    result.skipped += 1
                    result.errors.append(f"Row {number}: row is not a set of named fields")
                    continue
                try:
                    with savepoint(connection, "import_row"):
                        outcome = self._import_row(
                            connection,
                            row,
                            client_ids,
                            client_labels,
                            fallback_client_id,
                            assigned_by,
                            number,
                            result,
                        )
                except (CallTimeError, sqlite3.IntegrityError) as exc:
                    result.skipped += 1
                    result.errors.append(f"Row {number}: {exc}")
                    logger.warning("Import row %s rejected: %s", number, exc)
                    continue

                if outcome == "created":
                    result.created += 1
                elif outcome == "updated":
                    result.updated += 1
                else:
                    result.skipped += 1

        logger.info(
            "Import finished: created=%s updated=%s skipped=%s contributions=%s errors=%s",
            result.created,
            result.updated,
            result.skipped,
            result.contributions_added,
            len(result.errors),
        )
        return result

    def _import_row(
        self,
        connection: sqlite3.Connection,
        row: Mapping[str, Any],
        client_ids: set[int],
        client_labels: dict[str, int],
        fallback_client_id: int | None,
        assigned_by: str,
        number: int,
        result: ImportResult,
    ) -> str:
        fields = canonicalize_row(row)
        contribution_groups = extract_contribution_fields(row)
        if isinstance(row.get("history"), list):
            contribution_groups.extend(item for item in row["history"] if isinstance(item, Mapping))
        if not fields and not contribution_groups:
            return "blank"

        client_id = _resolve_client(fields, client_ids, client_labels, fallback_client_id)
        priority = parse_integer(fields.get("priority_level"))
        if fields.get("priority_level") is not None and (priority is None or priority < 1):
            raise ValidationError(f"Invalid priority {fields['priority_level']!r}", field="priority_level")
        custom_ask = parse_currency(fields.get("custom_ask_amount"))
        if fields.get("custom_ask_amount") is not None and (custom_ask is None or custom_ask < 0):
            raise ValidationError(
                f"Invalid custom ask {fields['custom_ask_amount']!r}", field="custom_ask_amount"
            )

        existing = donors.find_matching_donor(
            connection,
            _identity_probe(fields),
            donor_id=parse_integer(fields.get("id")),
        )
        if existing is None:
            record = donors.build_donor_record(row)
            if record["exclusive_donor"] and record["exclusive_client_id"] is None and client_id:
                record["exclusive_client_id"] = client_id
            donor_id = donors.create_donor(
                connection,
                record,
                [client_id] if client_id is not None else [],
                assigned_by=assigned_by,
            )
            outcome = "created"
        else:
            donor_id = int(existing["id"])
            record = donors.build_donor_record(row, existing=existing, clear_blanks=False)
            if record["exclusive_donor"] and "exclusive_donor" in fields and client_id is not None:
                record["exclusive_client_id"] = client_id
            donors.update_donor(connection, donor_id, record, existing, assigned_by=assigned_by)
            outcome = "updated"

        if client_id is not None:
            ledger.place_assignment(
                connection,
                client_id,
                donor_id,
                exclusive=bool(record["exclusive_donor"]),
                priority_level=priority,
                assigned_by=assigned_by,
                custom_ask_amount=custom_ask,
                assignment_notes=clean_text(fields.get("assignment_notes")),
            )

        entries, errors = transform_contribution_rows(contribution_groups)
        for error in errors:
            result.errors.append(f"Row {number}: {error}")
            logger.warning("Import row %s: %s", number, error)
        result.contributions_added += history.merge_contributions(connection, donor_id, entries)
        return outcome


def _client_index(connection: sqlite3.Connection) -> tuple[set[int], dict[str, int]]:
    ids: set[int] = set()
    labels: dict[str, int] = {}
    for row in connection.execute("SELECT id, name, candidate FROM clients ORDER BY id").fetchall():
        ids.add(int(row["id"]))
        for label in (row["name"], row["candidate"]):
            token = normalize_column_name(label)
            if token:
                labels.setdefault(token, int(row["id"]))
    return ids, labels


def _resolve_client(
    fields: Mapping[str, Any],
    client_ids: set[int],
    client_labels: dict[str, int],
    fallback_client_id: int | None,
) -> int | None:
    """Explicit id, then name/candidate label, then the caller's fallback."""
    raw_id = fields.get("client_id")
    if raw_id is not None:
        client_id = parse_integer(raw_id)
        if client_id in client_ids:
            return client_id
        raise ValidationError(f"Client {raw_id!r} not found", field="client_id")

    label = fields.get("client")
    if label is not None:
        client_id = parse_integer(label)
        if client_id is not None and client_id in client_ids:
            return client_id
        token = normalize_column_name(label)
        if token in client_labels:
            return client_labels[token]
        raise ValidationError(f"Client {label!r} not found", field="client")

    return fallback_client_id


def _identity_probe(fields: Mapping[str, Any]) -> dict[str, Any]:
    first = clean_text(fields.get("first_name"))
    last = clean_text(fields.get("last_name"))
    name = (
        clean_text(fields.get("name"))
        or clean_text(" ".join(part for part in (first, last) if part))
        or clean_text(fields.get("business_name"))
    )
    return {
        "name": name,
        "email": clean_text(fields.get("email")),
        "phone": clean_text(fields.get("phone")),
        "postal_code": normalize_postal_code(fields.get("postal_code")),
    }
