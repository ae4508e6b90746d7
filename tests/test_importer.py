from __future__ import annotations

import io

import pandas as pd
import pytest

from calltime.errors import ClientNotFoundError
from calltime.importer import BulkImporter, read_tabular
from calltime.store import CallTimeStore


def _build_store(tmp_path) -> CallTimeStore:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "calltime_import_test.db"
    store = CallTimeStore(db_path)
    store.init_db()
    return store


def test_bad_contribution_is_reported_and_rest_of_row_commits(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rows = [
        {
            "First Name": "Dana",
            "Last Name": "Whitfield",
            "Email": "dana@example.org",
            "Contribution1Year": "2022",
            "Contribution1Candidate": "Jane Doe",
            "Contribution1Amount": "$250",
            "Contribution2Year": "2024",
            "Contribution2Candidate": "Alex Kim",
        },
        {"Name": "Morgan Hale", "Phone": "402-555-0199"},
    ]

    result = BulkImporter(store).import_rows(rows)

    assert result.created == 2
    assert result.updated == 0
    assert result.contributions_added == 1
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Row 1:")
    assert "amount" in result.errors[0]

    donors = {row["name"]: row for row in store.list_donors()}
    assert set(donors) == {"Dana Whitfield", "Morgan Hale"}
    history = store.list_history(donors["Dana Whitfield"]["id"])
    assert [(entry["year"], entry["candidate"], entry["amount"]) for entry in history] == [
        (2022, "Jane Doe", 250.0)
    ]


def test_reimport_matches_by_email_and_unions_history(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    importer = BulkImporter(store)
    first_run = [
        {
            "Full Name": "Dana Whitfield",
            "Email Address": "Dana@Example.org",
            "Phone": "402-555-0101",
            "Giving1Year": "2022",
            "Giving1Recipient": "Jane Doe",
            "Giving1Amount": "250",
        }
    ]
    second_run = [
        {
            "Full Name": "Dana Whitfield",
            "Email Address": "dana@example.org",
            "Phone": "",
            "Employer": "Mercy Hospital",
            "Giving1Year": "2022",
            "Giving1Recipient": "Jane Doe",
            "Giving1Amount": "250",
            "Giving2Year": "2024",
            "Giving2Recipient": "Alex Kim",
            "Giving2Amount": "1,000",
        }
    ]

    assert importer.import_rows(first_run).created == 1
    result = importer.import_rows(second_run)

    assert result.created == 0
    assert result.updated == 1
    assert result.contributions_added == 1
    assert result.errors == []

    [donor] = store.list_donors()
    assert donor["phone"] == "402-555-0101"
    assert donor["employer"] == "Mercy Hospital"
    history = store.list_history(donor["id"])
    assert [(entry["year"], entry["candidate"]) for entry in history] == [
        (2024, "Alex Kim"),
        (2022, "Jane Doe"),
    ]


def test_identical_gifts_in_one_row_are_both_kept(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    importer = BulkImporter(store)
    row = {
        "Name": "Dana Whitfield",
        "Email": "dana@example.org",
        "Contribution1Year": "2022",
        "Contribution1Candidate": "Jane Doe",
        "Contribution1Amount": "500",
        "Contribution2Year": "2022",
        "Contribution2Candidate": "Jane Doe",
        "Contribution2Amount": "$500",
    }

    first = importer.import_rows([row])
    again = importer.import_rows([row])

    assert first.contributions_added == 2
    assert first.errors == []
    assert again.contributions_added == 0
    [donor] = store.list_donors()
    history = store.list_history(donor["id"])
    assert sorted(entry["entry_key"] for entry in history) == [
        "2022-jane-doe-500-00",
        "2022-jane-doe-500-00-2",
    ]


def test_name_and_phone_match_without_email(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    importer = BulkImporter(store)

    importer.import_rows([{"Name": "Morgan Hale", "Cell": "(402) 555-0199", "Zip": "68102"}])
    result = importer.import_rows([{"Name": "morgan hale", "Phone Number": "402.555.0199", "Notes": "Met at gala"}])

    assert result.updated == 1
    [donor] = store.list_donors()
    assert donor["notes"] == "Met at gala"
    assert donor["postal_code"] == "68102"


def test_client_resolution_by_id_label_and_fallback(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rivera = store.create_client("Friends of Rivera", candidate="Ana Rivera")
    chen = store.create_client("Chen for Council")
    rows = [
        {"Name": "Dana Whitfield", "Client ID": str(chen)},
        {"Name": "Morgan Hale", "Client": "ana rivera", "Priority": "4", "Custom Ask": "$2,500"},
        {"Name": "Riley Stone"},
        {"Name": "Lee Ortega", "Client": "Nobody Campaign"},
        {"Name": "Sam Wu", "Client ID": "9999"},
    ]

    result = BulkImporter(store).import_rows(rows, fallback_client_id=chen)

    assert result.created == 3
    assert result.skipped == 2
    assert result.errors[0].startswith("Row 4:")
    assert "Nobody Campaign" in result.errors[0]
    assert result.errors[1].startswith("Row 5:")

    queue = {row["name"]: row for row in store.list_client_donors(rivera)}
    assert set(queue) == {"Morgan Hale"}
    assert queue["Morgan Hale"]["priority_level"] == 4
    assert queue["Morgan Hale"]["effective_ask"] == 2500.0
    assert {row["name"] for row in store.list_client_donors(chen)} == {"Dana Whitfield", "Riley Stone"}
    assert {row["name"] for row in store.list_donors()} == {"Dana Whitfield", "Morgan Hale", "Riley Stone"}


def test_exclusive_rows_lock_to_the_resolved_client(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rivera = store.create_client("Friends of Rivera")
    chen = store.create_client("Chen for Council")
    donor_id = store.create_donor({"name": "Dana Whitfield", "email": "dana@example.org"}, [rivera])

    result = BulkImporter(store).import_rows(
        [{"Email": "dana@example.org", "Client": "Chen for Council", "Exclusive": "Yes"}]
    )

    assert result.updated == 1
    donor = store.get_donor(donor_id)
    assert donor["exclusive_client_id"] == chen
    assert donor["assigned_client_ids"] == [chen]


def test_invalid_rows_are_skipped_without_aborting(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rows = [
        {"Name": "", "Email": ""},
        {"Donor Type": "Business", "First Name": "Pat"},
        {"Name": "Dana Whitfield", "Ask": "call me"},
        ["not", "a", "row"],
        {"Name": "Morgan Hale", "Priority": "high", "Client": ""},
        {"Name": "Riley Stone"},
    ]

    result = BulkImporter(store).import_rows(rows)  # type: ignore[arg-type]

    assert result.created == 1
    assert result.skipped == 5
    assert [error.split(":", 1)[0] for error in result.errors] == ["Row 2", "Row 3", "Row 4", "Row 5"]
    assert [row["name"] for row in store.list_donors()] == ["Riley Stone"]


def test_unknown_fallback_client_is_rejected(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)

    with pytest.raises(ClientNotFoundError):
        BulkImporter(store).import_rows([{"Name": "Dana Whitfield"}], fallback_client_id=9999)
    assert store.list_donors() == []


def test_read_tabular_csv_and_excel(tmp_path) -> None:  # type: ignore[no-untyped-def]
    csv_text = "First Name,Last Name,Zip,Unnamed: 3\nDana,Whitfield,02134,\nMorgan,,68102,\n"

    rows = read_tabular(io.StringIO(csv_text), filename="donors.csv")

    assert rows == [
        {"First Name": "Dana", "Last Name": "Whitfield", "Zip": "02134"},
        {"First Name": "Morgan", "Last Name": None, "Zip": "68102"},
    ]

    pytest.importorskip("openpyxl")
    workbook = tmp_path / "donors.xlsx"
    pd.DataFrame(
        {"Name": ["Dana Whitfield", None], "Ask": [2500, 1000]}
    ).to_excel(workbook, index=False)

    excel_rows = read_tabular(workbook)
    assert excel_rows[0] == {"Name": "Dana Whitfield", "Ask": 2500}
    assert excel_rows[1]["Name"] is None
