"""Startup schema migration for the call-time SQLite store.

Tables are described as data (``TableSpec``). On every start each table is
inspected once, classified into a ``MigrationState`` and brought forward:
missing tables are created, missing columns are added, and tables whose
foreign keys or unique keys no longer match are rebuilt through a shadow
table. A failure in one table is logged and the remaining tables still
migrate; only the base ``clients``/``donors`` tables are fatal.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from calltime.errors import SchemaError
from calltime.normalize import (
    DONOR_TYPES,
    ORGANIZATION_DONOR_TYPES,
    contribution_key,
    resolve_donor_type,
)

logger = logging.getLogger(__name__)

LEGACY_DONOR_TABLE = "client_donors"
_SHADOW_SUFFIX = "__rebuild"


class MigrationState(enum.Enum):
    CURRENT = "current"
    MISSING = "missing"
    LEGACY_REFERENCE = "legacy-reference"
    LEGACY_SHAPE = "legacy-shape"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    definition: str
    add_definition: str | None = None
    fill_with: str | None = None

    def ddl_for_add(self) -> str:
        return self.add_definition or self.definition


@dataclass(frozen=True)
class ForeignKey:
    column: str
    table: str
    on_delete: str = "CASCADE"


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: tuple[ColumnSpec, ...]
    foreign_keys: tuple[ForeignKey, ...] = ()
    unique: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[tuple[str, str], ...] = ()
    rebuildable: bool = True
    required: bool = False

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def create_sql(self, table_name: str | None = None) -> str:
        parts = [f"{column.name} {column.definition}" for column in self.columns]
        parts.extend(f"UNIQUE ({', '.join(columns)})" for columns in self.unique)
        parts.extend(
            f"FOREIGN KEY ({key.column}) REFERENCES {key.table}(id) ON DELETE {key.on_delete}"
            for key in self.foreign_keys
        )
        body = ",\n    ".join(parts)
        return f"CREATE TABLE {table_name or self.name} (\n    {body}\n)"

    def index_sql(self) -> list[str]:
        return [
            f"CREATE INDEX IF NOT EXISTS {index_name} ON {self.name} ({columns})"
            for index_name, columns in self.indexes
        ]


def _id() -> ColumnSpec:
    return ColumnSpec("id", "INTEGER PRIMARY KEY AUTOINCREMENT")


def _timestamp(name: str) -> ColumnSpec:
    return ColumnSpec(
        name,
        "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP",
        add_definition="TEXT",
        fill_with="CURRENT_TIMESTAMP",
    )


def _text(name: str) -> ColumnSpec:
    return ColumnSpec(name, "TEXT")


def _required_int(name: str) -> ColumnSpec:
    return ColumnSpec(name, "INTEGER NOT NULL", add_definition="INTEGER")


def _client_reference(name: str) -> ColumnSpec:
    return ColumnSpec(
        name,
        "INTEGER",
        add_definition="INTEGER REFERENCES clients(id) ON DELETE SET NULL",
    )


CLIENTS = TableSpec(
    name="clients",
    columns=(
        _id(),
        ColumnSpec("name", "TEXT NOT NULL", add_definition="TEXT"),
        _text("candidate"),
        _text("office"),
        _text("manager_name"),
        _text("contact_email"),
        _text("contact_phone"),
        _text("launch_date"),
        ColumnSpec("fundraising_goal", "REAL"),
        _text("notes"),
        _text("sheet_url"),
        _text("portal_password"),
        ColumnSpec("portal_password_needs_reset", "INTEGER NOT NULL DEFAULT 1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    ),
    rebuildable=False,
    required=True,
)

DONORS = TableSpec(
    name="donors",
    columns=(
        _id(),
        _client_reference("client_id"),
        ColumnSpec("name", "TEXT NOT NULL", add_definition="TEXT"),
        ColumnSpec("donor_type", "TEXT NOT NULL DEFAULT 'individual'"),
        ColumnSpec("is_business", "INTEGER NOT NULL DEFAULT 0"),
        _text("business_name"),
        _text("first_name"),
        _text("last_name"),
        _text("contact_name"),
        _text("phone"),
        _text("alternate_phone"),
        _text("email"),
        _text("street_address"),
        _text("address_line2"),
        _text("city"),
        _text("state"),
        _text("postal_code"),
        _text("employer"),
        _text("occupation"),
        _text("job_title"),
        _text("tags"),
        ColumnSpec("suggested_ask", "REAL"),
        _text("last_gift_note"),
        _text("notes"),
        _text("bio"),
        _text("photo_url"),
        ColumnSpec("exclusive_donor", "INTEGER NOT NULL DEFAULT 0"),
        _client_reference("exclusive_client_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    ),
    foreign_keys=(
        ForeignKey("client_id", "clients", "SET NULL"),
        ForeignKey("exclusive_client_id", "clients", "SET NULL"),
    ),
    indexes=(
        ("idx_donors_email", "email"),
        ("idx_donors_exclusive_client", "exclusive_client_id"),
    ),
    rebuildable=False,
    required=True,
)

DONOR_ASSIGNMENTS = TableSpec(
    name="donor_assignments",
    columns=(
        _id(),
        _required_int("client_id"),
        _required_int("donor_id"),
        _timestamp("assigned_date"),
        _text("assigned_by"),
        ColumnSpec("priority_level", "INTEGER NOT NULL DEFAULT 1"),
        ColumnSpec("custom_ask_amount", "REAL"),
        ColumnSpec("is_active", "INTEGER NOT NULL DEFAULT 1"),
        _text("assignment_notes"),
    ),
    foreign_keys=(
        ForeignKey("client_id", "clients"),
        ForeignKey("donor_id", "donors"),
    ),
    unique=(("client_id", "donor_id"),),
    indexes=(
        ("idx_donor_assignments_client", "client_id, is_active"),
        ("idx_donor_assignments_donor", "donor_id, is_active"),
    ),
)

GIVING_HISTORY = TableSpec(
    name="giving_history",
    columns=(
        _id(),
        _required_int("donor_id"),
        ColumnSpec("year", "INTEGER NOT NULL", add_definition="INTEGER"),
        ColumnSpec("candidate", "TEXT NOT NULL", add_definition="TEXT"),
        _text("office_sought"),
        ColumnSpec("amount", "REAL NOT NULL", add_definition="REAL"),
        ColumnSpec("is_inkind", "INTEGER NOT NULL DEFAULT 0"),
        _text("entry_key"),
        _timestamp("created_at"),
    ),
    foreign_keys=(ForeignKey("donor_id", "donors"),),
    unique=(("donor_id", "entry_key"),),
    indexes=(("idx_giving_history_donor", "donor_id, year"),),
)

CALL_OUTCOMES = TableSpec(
    name="call_outcomes",
    columns=(
        _id(),
        _required_int("client_id"),
        _required_int("donor_id"),
        _timestamp("call_date"),
        ColumnSpec("status", "TEXT NOT NULL", add_definition="TEXT"),
        _text("outcome_notes"),
        _text("follow_up_date"),
        ColumnSpec("pledge_amount", "REAL"),
        ColumnSpec("contribution_amount", "REAL"),
        _text("next_action"),
        ColumnSpec("call_duration", "INTEGER"),
        ColumnSpec(
            "call_quality",
            "INTEGER CHECK (call_quality IS NULL OR call_quality BETWEEN 1 AND 5)",
            add_definition="INTEGER",
        ),
        _timestamp("created_at"),
    ),
    foreign_keys=(
        ForeignKey("client_id", "clients"),
        ForeignKey("donor_id", "donors"),
    ),
    indexes=(
        ("idx_call_outcomes_client", "client_id"),
        ("idx_call_outcomes_donor", "donor_id"),
    ),
)

CLIENT_DONOR_RESEARCH = TableSpec(
    name="client_donor_research",
    columns=(
        _id(),
        _required_int("client_id"),
        _required_int("donor_id"),
        ColumnSpec("research_category", "TEXT NOT NULL", add_definition="TEXT"),
        _text("research_content"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    ),
    foreign_keys=(
        ForeignKey("client_id", "clients"),
        ForeignKey("donor_id", "donors"),
    ),
    unique=(("client_id", "donor_id", "research_category"),),
    indexes=(("idx_client_donor_research", "client_id, donor_id"),),
)

CLIENT_DONOR_NOTES = TableSpec(
    name="client_donor_notes",
    columns=(
        _id(),
        _required_int("client_id"),
        _required_int("donor_id"),
        ColumnSpec("note_type", "TEXT NOT NULL DEFAULT 'general'"),
        _text("note_content"),
        ColumnSpec("is_private", "INTEGER NOT NULL DEFAULT 1"),
        ColumnSpec("is_important", "INTEGER NOT NULL DEFAULT 0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    ),
    foreign_keys=(
        ForeignKey("client_id", "clients"),
        ForeignKey("donor_id", "donors"),
    ),
    indexes=(("idx_client_donor_notes", "client_id, donor_id"),),
)

CALL_SESSIONS = TableSpec(
    name="call_sessions",
    columns=(
        _id(),
        _required_int("client_id"),
        _timestamp("session_start"),
        _text("session_end"),
        ColumnSpec("calls_attempted", "INTEGER NOT NULL DEFAULT 0"),
        ColumnSpec("calls_completed", "INTEGER NOT NULL DEFAULT 0"),
        ColumnSpec("total_pledged", "REAL NOT NULL DEFAULT 0"),
        _text("session_notes"),
    ),
    foreign_keys=(ForeignKey("client_id", "clients"),),
    indexes=(("idx_call_sessions_client", "client_id"),),
)

TABLES: tuple[TableSpec, ...] = (
    CLIENTS,
    DONORS,
    DONOR_ASSIGNMENTS,
    GIVING_HISTORY,
    CALL_OUTCOMES,
    CLIENT_DONOR_RESEARCH,
    CLIENT_DONOR_NOTES,
    CALL_SESSIONS,
)


@dataclass
class MigrationReport:
    states: dict[str, MigrationState] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)
    added_columns: dict[str, list[str]] = field(default_factory=dict)
    rebuilt: list[str] = field(default_factory=list)
    backfilled: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    adopted_legacy_donors: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures


def _schema_objects(connection: sqlite3.Connection) -> dict[str, str]:
    rows = connection.execute(
        """
        SELECT name, type
        FROM sqlite_master
        WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
        """
    ).fetchall()
    return {str(row[0]): str(row[1]) for row in rows}


def _table_columns(connection: sqlite3.Connection, table_name: str) -> list[str]:
    rows = connection.execute(f"PRAGMA table_info({table_name})").fetchall()
    return [str(row[1]) for row in rows]


def _foreign_keys(connection: sqlite3.Connection, table_name: str) -> dict[str, str]:
    rows = connection.execute(f"PRAGMA foreign_key_list({table_name})").fetchall()
    return {str(row[3]): str(row[2]) for row in rows}


def _unique_keys(connection: sqlite3.Connection, table_name: str) -> set[frozenset[str]]:
    keys: set[frozenset[str]] = set()
    for index in connection.execute(f"PRAGMA index_list({table_name})").fetchall():
        if not index[2]:
            continue
        info = connection.execute(f"PRAGMA index_info({index[1]})").fetchall()
        keys.add(frozenset(str(row[2]) for row in info))
    return keys


def inspect_table(connection: sqlite3.Connection, spec: TableSpec) -> MigrationState:
    objects = _schema_objects(connection)
    if objects.get(spec.name) != "table":
        return MigrationState.MISSING

    expected_targets = {key.column: key.table for key in spec.foreign_keys}
    actual = _foreign_keys(connection, spec.name)
    for column, target in actual.items():
        if expected_targets.get(column, target) != target or objects.get(target) != "table":
            return MigrationState.LEGACY_REFERENCE

    if any(actual.get(column) != target for column, target in expected_targets.items()):
        return MigrationState.LEGACY_SHAPE
    unique_keys = _unique_keys(connection, spec.name)
    if any(frozenset(columns) not in unique_keys for columns in spec.unique):
        return MigrationState.LEGACY_SHAPE
    return MigrationState.CURRENT


@contextmanager
def _step(connection: sqlite3.Connection) -> Iterator[None]:
    connection.execute("BEGIN IMMEDIATE")
    try:
        yield
    except BaseException:
        connection.execute("ROLLBACK")
        raise
    connection.execute("COMMIT")


def _sequence_value(connection: sqlite3.Connection, table_name: str) -> int:
    exists = connection.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
    ).fetchone()
    if not exists:
        return 0
    row = connection.execute(
        "SELECT seq FROM sqlite_sequence WHERE name = ?", (table_name,)
    ).fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def _legacy_indexes(
    connection: sqlite3.Connection,
    spec: TableSpec,
    kept_columns: set[str],
) -> list[str]:
    spec_index_names = {index_name for index_name, _ in spec.indexes}
    statements = []
    rows = connection.execute(
        """
        SELECT name, sql
        FROM sqlite_master
        WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL
        """,
        (spec.name,),
    ).fetchall()
    for name, sql in rows:
        if name in spec_index_names:
            continue
        info = connection.execute(f"PRAGMA index_info({name})").fetchall()
        if all(str(row[2]) in kept_columns for row in info):
            statements.append(str(sql))
    return statements


def rebuild_table(connection: sqlite3.Connection, spec: TableSpec) -> int:
    """Rebuild ``spec.name`` through a shadow table, preserving shared columns.

    Runs inside the caller's transaction and returns the number of rows copied.
    """
    shadow = f"{spec.name}{_SHADOW_SUFFIX}"
    old_columns = _table_columns(connection, spec.name)
    shared = [column for column in spec.column_names if column in old_columns]
    column_sql = ", ".join(shared)

    prior_sequence = _sequence_value(connection, spec.name)
    legacy_indexes = _legacy_indexes(connection, spec, set(spec.column_names))

    connection.execute(f"DROP TABLE IF EXISTS {shadow}")
    connection.execute(spec.create_sql(shadow))
    order_sql = " ORDER BY id" if "id" in shared else ""
    connection.execute(
        f"INSERT OR REPLACE INTO {shadow} ({column_sql}) "
        f"SELECT {column_sql} FROM {spec.name}{order_sql}"
    )
    copied = connection.execute(f"SELECT COUNT(*) FROM {shadow}").fetchone()[0]

    connection.execute(f"DROP TABLE {spec.name}")
    connection.execute(f"ALTER TABLE {shadow} RENAME TO {spec.name}")

    for statement in [*spec.index_sql(), *legacy_indexes]:
        connection.execute(statement)

    max_id = connection.execute(f"SELECT COALESCE(MAX(id), 0) FROM {spec.name}").fetchone()[0]
    sequence = max(prior_sequence, int(max_id))
    if sequence:
        cursor = connection.execute(
            "UPDATE sqlite_sequence SET seq = ? WHERE name = ?", (sequence, spec.name)
        )
        if cursor.rowcount == 0:
            connection.execute(
                "INSERT INTO sqlite_sequence (name, seq) VALUES (?, ?)", (spec.name, sequence)
            )

    logger.info("Rebuilt table %s (%s rows, sequence %s)", spec.name, copied, sequence)
    return int(copied)


def _add_missing_columns(connection: sqlite3.Connection, spec: TableSpec) -> list[str]:
    existing = set(_table_columns(connection, spec.name))
    added = []
    for column in spec.columns:
        if column.name in existing:
            continue
        connection.execute(f"ALTER TABLE {spec.name} ADD COLUMN {column.name} {column.ddl_for_add()}")
        if column.fill_with:
            connection.execute(
                f"UPDATE {spec.name} SET {column.name} = {column.fill_with} WHERE {column.name} IS NULL"
            )
        logger.info("Added column %s.%s", spec.name, column.name)
        added.append(column.name)
    return added


def _migrate_table(
    connection: sqlite3.Connection,
    spec: TableSpec,
    state: MigrationState,
    report: MigrationReport,
) -> None:
    if state is MigrationState.MISSING:
        connection.execute(spec.create_sql())
        report.created.append(spec.name)
        logger.info("Created table %s", spec.name)
    elif state is not MigrationState.CURRENT and spec.rebuildable:
        rebuild_table(connection, spec)
        report.rebuilt.append(spec.name)
    else:
        if state is not MigrationState.CURRENT:
            logger.warning("Table %s is in state %s but cannot be rebuilt", spec.name, state.value)
        added = _add_missing_columns(connection, spec)
        if added:
            report.added_columns[spec.name] = added

    for statement in spec.index_sql():
        connection.execute(statement)


def _adopt_legacy_donor_table(connection: sqlite3.Connection, report: MigrationReport) -> None:
    objects = _schema_objects(connection)
    legacy_kind = objects.get(LEGACY_DONOR_TABLE)
    if legacy_kind != "table":
        return
    if DONORS.name in objects:
        logger.warning(
            "Both %s and legacy %s tables exist; leaving the legacy table untouched",
            DONORS.name,
            LEGACY_DONOR_TABLE,
        )
        return
    with _step(connection):
        connection.execute(f"ALTER TABLE {LEGACY_DONOR_TABLE} RENAME TO {DONORS.name}")
    report.adopted_legacy_donors = True
    logger.info("Renamed legacy table %s to %s", LEGACY_DONOR_TABLE, DONORS.name)


def _ensure_compat_view(connection: sqlite3.Connection) -> None:
    if LEGACY_DONOR_TABLE in _schema_objects(connection):
        return
    with _step(connection):
        connection.execute(f"CREATE VIEW {LEGACY_DONOR_TABLE} AS SELECT * FROM {DONORS.name}")


def _backfill_donor_types(connection: sqlite3.Connection, report: MigrationReport) -> int:
    changed = 0
    if "donor_type" in report.added_columns.get(DONORS.name, []):
        changed += connection.execute(
            """
            UPDATE donors
            SET donor_type = CASE WHEN is_business = 1 THEN 'business' ELSE 'individual' END
            """
        ).rowcount

    placeholders = ", ".join("?" for _ in DONOR_TYPES)
    odd_rows = connection.execute(
        f"""
        SELECT id, donor_type, is_business, business_name, first_name, last_name
        FROM donors
        WHERE donor_type IS NULL OR donor_type NOT IN ({placeholders})
        """,
        DONOR_TYPES,
    ).fetchall()
    for row in odd_rows:
        context = {
            "is_business": row[2],
            "business_name": row[3],
            "first_name": row[4],
            "last_name": row[5],
        }
        connection.execute(
            "UPDATE donors SET donor_type = ? WHERE id = ?",
            (resolve_donor_type(row[1], context), row[0]),
        )
        changed += 1

    organization_types = tuple(sorted(ORGANIZATION_DONOR_TYPES))
    changed += connection.execute(
        """
        UPDATE donors
        SET is_business = CASE WHEN donor_type IN (?, ?) THEN 1 ELSE 0 END
        WHERE is_business IS NULL
           OR is_business != CASE WHEN donor_type IN (?, ?) THEN 1 ELSE 0 END
        """,
        organization_types * 2,
    ).rowcount
    return changed


def _backfill_donor_names(connection: sqlite3.Connection) -> int:
    changed = connection.execute(
        """
        UPDATE donors
        SET name = TRIM(COALESCE(first_name, '') || ' ' || COALESCE(last_name, ''))
        WHERE donor_type = 'individual'
          AND (name IS NULL OR TRIM(name) = '')
          AND TRIM(COALESCE(first_name, '') || COALESCE(last_name, '')) != ''
        """
    ).rowcount
    changed += connection.execute(
        """
        UPDATE donors
        SET name = business_name
        WHERE donor_type != 'individual'
          AND (name IS NULL OR TRIM(name) = '')
          AND TRIM(COALESCE(business_name, '')) != ''
        """
    ).rowcount
    changed += connection.execute(
        """
        UPDATE donors
        SET business_name = name
        WHERE donor_type != 'individual'
          AND TRIM(COALESCE(business_name, '')) = ''
          AND TRIM(COALESCE(name, '')) != ''
        """
    ).rowcount
    changed += connection.execute(
        """
        UPDATE donors
        SET contact_name = CASE
                WHEN TRIM(COALESCE(contact_name, '')) != '' THEN contact_name
                ELSE NULLIF(TRIM(COALESCE(first_name, '') || ' ' || COALESCE(last_name, '')), '')
            END,
            first_name = NULL,
            last_name = NULL
        WHERE donor_type != 'individual'
          AND (first_name IS NOT NULL OR last_name IS NOT NULL)
        """
    ).rowcount
    changed += connection.execute(
        "UPDATE donors SET exclusive_donor = 0 WHERE exclusive_donor IS NULL"
    ).rowcount
    return changed


def _backfill_entry_keys(connection: sqlite3.Connection) -> int:
    rows = connection.execute(
        """
        SELECT id, donor_id, year, candidate, office_sought, amount
        FROM giving_history
        WHERE entry_key IS NULL OR TRIM(entry_key) = ''
        ORDER BY id
        """
    ).fetchall()
    for row_id, donor_id, year, candidate, office, amount in rows:
        key = contribution_key(int(year or 0), str(candidate or ""), float(amount or 0), office)
        taken = connection.execute(
            "SELECT 1 FROM giving_history WHERE donor_id = ? AND entry_key = ?",
            (donor_id, key),
        ).fetchone()
        if taken:
            key = f"{key}-{row_id}"
        connection.execute("UPDATE giving_history SET entry_key = ? WHERE id = ?", (key, row_id))
    return len(rows)


_BACKFILLS = (
    ("donor_types", _backfill_donor_types),
    ("donor_names", lambda connection, report: _backfill_donor_names(connection)),
    ("entry_keys", lambda connection, report: _backfill_entry_keys(connection)),
)


@contextmanager
def _migration_mode(connection: sqlite3.Connection) -> Iterator[None]:
    previous_isolation = connection.isolation_level
    connection.isolation_level = None
    connection.execute("PRAGMA foreign_keys = OFF")
    connection.execute("PRAGMA legacy_alter_table = ON")
    try:
        yield
    finally:
        connection.execute("PRAGMA legacy_alter_table = OFF")
        connection.execute("PRAGMA foreign_keys = ON")
        connection.isolation_level = previous_isolation


def _check_recognizable(connection: sqlite3.Connection) -> None:
    objects = _schema_objects(connection)
    if not objects:
        return
    known = {CLIENTS.name, DONORS.name, LEGACY_DONOR_TABLE}
    if not known.intersection(objects):
        raise SchemaError(
            "Database holds tables but none of clients, donors or client_donors; "
            "refusing to migrate an unrelated database."
        )


def migrate(connection: sqlite3.Connection) -> MigrationReport:
    """Bring the schema to the current version; safe to run on every start."""
    report = MigrationReport()
    with _migration_mode(connection):
        _check_recognizable(connection)
        _adopt_legacy_donor_table(connection, report)

        for spec in TABLES:
            state = inspect_table(connection, spec)
            report.states[spec.name] = state
            try:
                with _step(connection):
                    _migrate_table(connection, spec, state, report)
            except sqlite3.Error as exc:
                if spec.required:
                    raise SchemaError(f"Cannot prepare base table {spec.name}: {exc}") from exc
                logger.exception("Migration of table %s failed; continuing", spec.name)
                report.failures[spec.name] = str(exc)

        try:
            _ensure_compat_view(connection)
        except sqlite3.Error as exc:
            logger.exception("Could not create compatibility view %s", LEGACY_DONOR_TABLE)
            report.failures[LEGACY_DONOR_TABLE] = str(exc)

        for name, backfill in _BACKFILLS:
            try:
                with _step(connection):
                    changed = backfill(connection, report)
            except sqlite3.Error as exc:
                logger.exception("Backfill %s failed; continuing", name)
                report.failures[f"backfill:{name}"] = str(exc)
                continue
            if changed:
                report.backfilled[name] = changed
                logger.info("Backfill %s updated %s rows", name, changed)

        try:
            violations = connection.execute("PRAGMA foreign_key_check").fetchall()
        except sqlite3.Error as exc:
            logger.warning("Foreign key check could not run: %s", exc)
        else:
            if violations:
                logger.warning("Foreign key check found %s orphaned rows", len(violations))

    logger.info(
        "Schema migration finished: created=%s rebuilt=%s added=%s failures=%s",
        report.created,
        report.rebuilt,
        sum(len(columns) for columns in report.added_columns.values()),
        sorted(report.failures),
    )
    return report
