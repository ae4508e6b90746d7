from __future__ import annotations

import pytest

from calltime.errors import (
    ClientNotFoundError,
    DonorNotAssignedError,
    DonorNotFoundError,
    RecordNotFoundError,
    ValidationError,
)
from calltime.store import CallTimeStore


def _build_store(tmp_path) -> CallTimeStore:  # type: ignore[no-untyped-def]
    db_path = tmp_path / "calltime_test.db"
    store = CallTimeStore(db_path)
    store.init_db()
    return store


def _assignment_rows(store: CallTimeStore, donor_id: int) -> dict[int, int]:
    with store.batch() as connection:
        rows = connection.execute(
            "SELECT client_id, is_active FROM donor_assignments WHERE donor_id = ?",
            (donor_id,),
        ).fetchall()
    return {row["client_id"]: row["is_active"] for row in rows}


def test_organization_donors_require_a_business_name(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)

    with pytest.raises(ValidationError) as excinfo:
        store.create_donor({"donor_type": "business", "first_name": "Pat"})
    assert excinfo.value.field == "business_name"

    pac_id = store.create_donor(
        {
            "Donor Type": "Campaign",
            "Committee Name": "Neighbors for Progress PAC",
            "First Name": "Pat",
            "Last Name": "Lee",
        }
    )
    pac = store.get_donor(pac_id)

    assert pac["donor_type"] == "campaign"
    assert pac["name"] == "Neighbors for Progress PAC"
    assert pac["contact_name"] == "Pat Lee"
    assert pac["first_name"] is None
    assert pac["is_business"] is True


def test_business_donors_accept_an_employer_or_a_name(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)

    by_employer = store.get_donor(store.create_donor({"donor_type": "business", "employer": "Acme Corp"}))
    by_name = store.get_donor(
        store.create_donor({"Donor Type": "Company", "Name": "Harbor Freight Partners"})
    )

    assert by_employer["business_name"] == "Acme Corp"
    assert by_employer["name"] == "Acme Corp"
    assert by_name["business_name"] == "Harbor Freight Partners"
    for donor in (by_employer, by_name):
        assert donor["donor_type"] == "business"
        assert donor["first_name"] is None
        assert donor["last_name"] is None


def test_individual_names_are_split_and_business_moves_to_employer(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)

    maria = store.get_donor(store.create_donor({"name": "Maria de la Cruz"}))
    assert maria["first_name"] == "Maria"
    assert maria["last_name"] == "de la Cruz"

    sam = store.get_donor(
        store.create_donor({"first_name": "Sam", "last_name": "Wu", "business_name": "Wu Dental"})
    )
    assert sam["donor_type"] == "individual"
    assert sam["name"] == "Sam Wu"
    assert sam["employer"] == "Wu Dental"
    assert sam["business_name"] is None

    with pytest.raises(ValidationError) as excinfo:
        store.create_donor({"email": "nobody@example.org"})
    assert excinfo.value.field == "name"


def test_update_with_blank_value_clears_field(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    donor_id = store.create_donor({"name": "Avery Mills", "phone": "555-0101", "email": "avery@example.org"})

    store.update_donor(donor_id, {"phone": "", "suggested_ask": "$2,900"})

    donor = store.get_donor(donor_id)
    assert donor["phone"] is None
    assert donor["email"] == "avery@example.org"
    assert donor["suggested_ask"] == 2900.0

    with pytest.raises(DonorNotFoundError):
        store.update_donor(9999, {"name": "Ghost"})


def test_assignment_upsert_keeps_metadata_across_reactivation(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera", candidate="Ana Rivera")
    donor_id = store.create_donor({"name": "Dana Whitfield"})

    assignment_id = store.assign(
        client_id,
        donor_id,
        custom_ask_amount="$1,000",
        assignment_notes="Knows the candidate from school board days",
    )
    assert store.assign(client_id, donor_id, priority_level=3) == assignment_id

    detail = store.get_client_donor_detail(client_id, donor_id)
    assert detail["assignment"]["priority_level"] == 3
    assert detail["assignment"]["custom_ask_amount"] == 1000.0
    assert detail["assignment"]["assignment_notes"].startswith("Knows the candidate")

    assert store.unassign(client_id, donor_id) is True
    assert store.unassign(client_id, donor_id) is False
    assert store.list_client_donors(client_id) == []

    assert store.assign(client_id, donor_id) == assignment_id
    queue = store.list_client_donors(client_id)
    assert [row["id"] for row in queue] == [donor_id]
    assert queue[0]["effective_ask"] == 1000.0
    assert queue[0]["last_call_status"] == "Not Contacted"

    with pytest.raises(ValidationError):
        store.assign(client_id, donor_id, priority_level=0)
    with pytest.raises(ValidationError):
        store.assign(client_id, donor_id, custom_ask_amount="a lot")


def test_exclusive_lock_deactivates_other_assignments(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    first = store.create_client("Friends of Rivera")
    second = store.create_client("Chen for Council")
    donor_id = store.create_donor({"name": "Dana Whitfield"}, [first, second])

    assert store.get_donor(donor_id)["assigned_client_ids"] == [first, second]

    assert store.set_exclusive(donor_id, second) == 1
    donor = store.get_donor(donor_id)
    assert donor["exclusive_donor"] is True
    assert donor["exclusive_client_id"] == second
    assert donor["assigned_client_ids"] == [second]
    assert _assignment_rows(store, donor_id) == {first: 0, second: 1}

    store.assign(first, donor_id)
    donor = store.get_donor(donor_id)
    assert donor["exclusive_client_id"] == first
    assert donor["assigned_client_ids"] == [first]
    assert _assignment_rows(store, donor_id) == {first: 1, second: 0}

    store.update_donor(donor_id, {"exclusive_donor": False})
    donor = store.get_donor(donor_id)
    assert donor["exclusive_donor"] is False
    assert donor["exclusive_client_id"] is None
    assert donor["assigned_client_ids"] == [first]


def test_first_exclusive_assignment_has_nothing_to_deactivate(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    first = store.create_client("Friends of Rivera")
    second = store.create_client("Chen for Council")

    donor_id = store.create_donor({"name": "Morgan Hale", "exclusive_donor": "yes"}, [first])
    donor = store.get_donor(donor_id)
    assert donor["exclusive_client_id"] == first
    assert donor["assigned_client_ids"] == [first]

    with pytest.raises(ValidationError):
        store.create_donor({"name": "Riley Stone", "exclusive_donor": True}, [first, second])
    with pytest.raises(ValidationError):
        store.create_donor({"name": "Riley Stone", "exclusive_donor": True})

    other_id = store.create_donor({"name": "Riley Stone"}, [second])
    store.update_donor(other_id, {"exclusive_donor": "locked"})
    assert store.get_donor(other_id)["exclusive_client_id"] == second

    store.bulk_assign(first, [donor_id, other_id])
    assert store.get_donor(other_id)["assigned_client_ids"] == [first]
    assert _assignment_rows(store, other_id) == {first: 1, second: 0}


def test_editing_a_locked_donor_keeps_its_assignment_turned_off(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    donor_id = store.create_donor({"name": "Dana Whitfield", "email": "dana@example.org"}, [client_id])
    store.set_exclusive(donor_id, client_id)
    assert store.unassign(client_id, donor_id) is True

    store.update_donor(donor_id, {"phone": "402-555-0100"})

    donor = store.get_donor(donor_id)
    assert donor["phone"] == "402-555-0100"
    assert donor["exclusive_client_id"] == client_id
    assert donor["assigned_client_ids"] == []
    assert _assignment_rows(store, donor_id) == {client_id: 0}

    store.update_donor(donor_id, {"exclusive_client_id": client_id, "notes": "Prefers mornings"})
    assert store.get_donor(donor_id)["assigned_client_ids"] == []


def test_overview_totals_do_not_fan_out(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    rivera = store.create_client("Friends of Rivera", fundraising_goal="$1,900")
    chen = store.create_client("Chen for Council")
    dana = store.create_donor({"name": "Dana Whitfield"}, [rivera, chen])
    morgan = store.create_donor({"name": "Morgan Hale"}, [rivera])
    store.assign(rivera, morgan, priority_level=5)

    store.record_call_outcome(rivera, dana, "Pledged", pledge_amount=100, contribution_amount=60)
    store.record_call_outcome(rivera, dana, "Contributed", pledge_amount=75, contribution_amount=40)
    store.record_call_outcome(rivera, morgan, "Pledged", pledge_amount="$125", contribution_amount=90)

    overview = store.manager_overview()
    totals = {row["id"]: row for row in overview["clients"]}

    assert totals[rivera]["assigned_donors"] == 2
    assert totals[rivera]["total_calls"] == 3
    assert totals[rivera]["total_pledged"] == 300
    assert totals[rivera]["total_raised"] == 190
    assert totals[chen]["assigned_donors"] == 1
    assert totals[chen]["total_calls"] == 0
    assert totals[chen]["total_raised"] == 0
    assert overview["statistics"] == {
        "total_donors": 2,
        "unassigned_donors": 0,
        "active_clients": 2,
        "total_clients": 2,
    }
    assert "portal_password" not in totals[rivera]

    summary = store.client_summary(rivera)
    assert summary["goal_progress_percent"] == 10.0

    queue = store.list_client_donors(rivera)
    assert [row["id"] for row in queue] == [morgan, dana]
    assert queue[1]["total_calls"] == 2
    assert queue[1]["last_call_status"] == "Contributed"


def test_client_scoped_access_distinguishes_missing_from_unassigned(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    other_client = store.create_client("Chen for Council")
    donor_id = store.create_donor({"name": "Dana Whitfield"}, [other_client])

    with pytest.raises(DonorNotAssignedError) as excinfo:
        store.ensure_client_has_donor(client_id, donor_id)
    assert excinfo.value.status == 403
    assert str(excinfo.value) == "Donor not assigned to client"

    with pytest.raises(DonorNotFoundError) as missing:
        store.ensure_client_has_donor(client_id, 9999)
    assert missing.value.status == 404

    with pytest.raises(ClientNotFoundError):
        store.ensure_client_has_donor(9999, donor_id)

    with pytest.raises(DonorNotAssignedError):
        store.record_call_outcome(client_id, donor_id, "Pledged")
    with pytest.raises(DonorNotAssignedError):
        store.save_research(client_id, donor_id, "Background", "Retired surgeon")

    store.assign(client_id, donor_id)
    assert store.ensure_client_has_donor(client_id, donor_id)["id"] == donor_id
    store.unassign(client_id, donor_id)
    with pytest.raises(DonorNotAssignedError):
        store.add_note(client_id, donor_id, "General", "Left a message")


def test_call_outcome_validation(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    donor_id = store.create_donor({"name": "Dana Whitfield"}, [client_id])

    with pytest.raises(ValidationError) as excinfo:
        store.record_call_outcome(client_id, donor_id, "  ")
    assert excinfo.value.field == "status"
    with pytest.raises(ValidationError):
        store.record_call_outcome(client_id, donor_id, "Pledged", call_quality=7)
    with pytest.raises(ValidationError):
        store.record_call_outcome(client_id, donor_id, "Pledged", pledge_amount="-20")

    store.record_call_outcome(
        client_id,
        donor_id,
        "Call Back",
        follow_up_date="2024-11-02",
        call_quality="4",
        call_duration=12,
    )
    outcomes = store.list_call_outcomes(client_id, donor_id)
    assert len(outcomes) == 1
    assert outcomes[0]["follow_up_date"] == "2024-11-02"
    assert outcomes[0]["call_quality"] == 4
    assert store.list_client_donors(client_id)[0]["follow_up_date"] == "2024-11-02"


def test_research_upserts_by_category_and_notes_need_a_type(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    other_client = store.create_client("Chen for Council")
    donor_id = store.create_donor({"name": "Dana Whitfield"}, [client_id, other_client])

    research_id = store.save_research(client_id, donor_id, "Background", "Retired surgeon")
    assert store.save_research(client_id, donor_id, "Background", "Retired surgeon, sits on hospital board") == research_id
    store.save_research(other_client, donor_id, "Background", "Met at fundraiser")

    with pytest.raises(ValidationError):
        store.save_research(client_id, donor_id, "", "Nothing")
    with pytest.raises(ValidationError):
        store.add_note(client_id, donor_id, None, "Untyped")

    store.add_note(client_id, donor_id, "Ask Strategy", "Lead with healthcare", is_important=True)

    detail = store.get_client_donor_detail(client_id, donor_id)
    assert [row["research_content"] for row in detail["research"]] == [
        "Retired surgeon, sits on hospital board"
    ]
    assert detail["notes"][0]["note_type"] == "Ask Strategy"
    assert detail["notes"][0]["is_important"] == 1
    assert store.get_client_donor_detail(other_client, donor_id)["notes"] == []


def test_deleting_a_client_cascades_annotations_and_keeps_donors(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    donor_id = store.create_donor({"name": "Dana Whitfield", "exclusive_donor": True}, [client_id])
    store.record_call_outcome(client_id, donor_id, "Pledged", pledge_amount=500)
    store.add_note(client_id, donor_id, "General", "Prefers mornings")
    store.start_call_session(client_id)

    store.delete_client(client_id)

    donor = store.get_donor(donor_id)
    assert donor["exclusive_donor"] is False
    assert donor["exclusive_client_id"] is None
    assert donor["client_id"] is None
    assert donor["assigned_client_ids"] == []
    with pytest.raises(ClientNotFoundError):
        store.get_client(client_id)
    with store.batch() as connection:
        for table in ("donor_assignments", "call_outcomes", "client_donor_notes", "call_sessions"):
            assert connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0


def test_deleting_a_donor_cascades_history(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    donor_id = store.create_donor({"name": "Dana Whitfield"}, [client_id])
    store.add_contribution(donor_id, {"year": 2022, "candidate": "Jane Doe", "amount": 250})

    store.delete_donor(donor_id)

    assert store.list_donors() == []
    assert store.list_client_donors(client_id) == []
    with pytest.raises(DonorNotFoundError):
        store.list_history(donor_id)


def test_portal_passwords(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)

    with pytest.raises(ValidationError):
        store.create_client("Friends of Rivera", portal_password="short")
    with pytest.raises(ValidationError):
        store.create_client("   ")

    client_id = store.create_client("Friends of Rivera", portal_password="initial-pass")
    assert store.get_client(client_id)["portal_password_needs_reset"] == 1
    assert store.verify_client_password(client_id, "initial-pass")

    store.set_client_password(client_id, "correct horse battery")

    assert store.verify_client_password(client_id, "correct horse battery")
    assert not store.verify_client_password(client_id, "initial-pass")
    assert not store.verify_client_password(client_id, "")
    assert not store.verify_client_password(9999, "correct horse battery")
    assert store.get_client(client_id)["portal_password_needs_reset"] == 0

    no_password = store.create_client("Chen for Council")
    assert not store.verify_client_password(no_password, "anything-at-all")

    with pytest.raises(ClientNotFoundError):
        store.set_client_password(9999, "correct horse battery")


def test_client_updates_validate_fields(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")

    store.update_client(client_id, {"office": "State Senate", "fundraising_goal": "$50,000"})
    client = store.get_client(client_id)
    assert client["office"] == "State Senate"
    assert client["fundraising_goal"] == 50000.0

    with pytest.raises(ValidationError):
        store.update_client(client_id, {"name": ""})
    with pytest.raises(ValidationError):
        store.update_client(client_id, {"launch_date": "someday"})
    with pytest.raises(ClientNotFoundError):
        store.update_client(9999, {"office": "Mayor"})


def test_call_sessions(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    other_client = store.create_client("Chen for Council")

    session_id = store.start_call_session(client_id)

    with pytest.raises(ValidationError):
        store.end_call_session(client_id, session_id, calls_attempted=3, calls_completed=5)
    with pytest.raises(RecordNotFoundError):
        store.end_call_session(other_client, session_id, calls_attempted=3, calls_completed=2)

    store.end_call_session(
        client_id,
        session_id,
        calls_attempted=12,
        calls_completed=7,
        total_pledged="$4,500",
        session_notes="Strong night",
    )

    sessions = store.list_call_sessions(client_id)
    assert len(sessions) == 1
    assert sessions[0]["calls_completed"] == 7
    assert sessions[0]["total_pledged"] == 4500.0
    assert sessions[0]["session_end"] is not None
    assert store.list_call_sessions(other_client) == []
    assert store.client_summary(client_id)["call_sessions"] == 1


def test_giving_history_round_trip_and_order(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    donor_id = store.create_donor({"name": "Dana Whitfield"})

    store.add_contribution(donor_id, {"year": 2020, "candidate": "Jane Doe", "amount": "$100"})
    first_alex = store.add_contribution(donor_id, {"year": 2024, "candidate": "Alex Kim", "amount": 50})
    store.add_contribution(donor_id, {"year": 2024, "candidate": "Alex Kim", "amount": 50})
    store.add_contribution(
        donor_id, {"year": 2024, "candidate": "Alex Kim", "amount": 50, "office_sought": "Mayor"}
    )

    history = store.list_history(donor_id)
    assert [(row["year"], row["candidate"], row["office_sought"]) for row in history] == [
        (2024, "Alex Kim", None),
        (2024, "Alex Kim", None),
        (2024, "Alex Kim", "Mayor"),
        (2020, "Jane Doe", None),
    ]
    assert [row["entry_key"] for row in history[:2]] == ["2024-alex-kim-50-00", "2024-alex-kim-50-00-2"]

    with pytest.raises(ValidationError) as excinfo:
        store.add_contribution(donor_id, {"year": 2024, "candidate": "Alex Kim"})
    assert "missing amount" in str(excinfo.value)

    store.update_contribution(donor_id, first_alex, {"year": 2022, "amount": 75})
    updated = [row for row in store.list_history(donor_id) if row["id"] == first_alex][0]
    assert updated["entry_key"] == "2022-alex-kim-75-00"
    assert updated["candidate"] == "Alex Kim"

    store.remove_contribution(donor_id, first_alex)
    assert first_alex not in {row["id"] for row in store.list_history(donor_id)}
    with pytest.raises(RecordNotFoundError):
        store.remove_contribution(donor_id, first_alex)


def test_contribution_search(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    dana = store.create_donor({"name": "Dana Whitfield"})
    morgan = store.create_donor({"name": "Morgan Hale"})
    store.add_contribution(dana, {"year": 2022, "candidate": "Jane Doe", "amount": 250})
    store.add_contribution(dana, {"year": 2024, "candidate": "Jane Doe", "amount": 500})
    store.add_contribution(morgan, {"year": 2024, "candidate": "jane doe", "amount": 100})
    store.add_contribution(morgan, {"year": 2024, "candidate": "Alex Kim", "amount": 1000})

    results = store.search_contributions(candidate="JANE DOE")

    assert [donor["donor_id"] for donor in results["donors"]] == [dana, morgan]
    assert results["entry_count"] == 3
    assert results["total_amount"] == 850
    assert results["years"] == [
        {"year": 2024, "total_amount": 600, "entry_count": 2},
        {"year": 2022, "total_amount": 250, "entry_count": 1},
    ]

    bounded = store.search_contributions(candidate="Jane Doe", min_amount="$200")
    assert [donor["donor_id"] for donor in bounded["donors"]] == [dana]

    by_year = store.search_contributions(year="2024", max_amount=150)
    assert [donor["donor_id"] for donor in by_year["donors"]] == [morgan]

    with pytest.raises(ValidationError):
        store.search_contributions()

    options = store.contribution_filter_options()
    assert len(options["candidates"]) == 2
    assert options["years"] == [2024, 2022]


def test_directory_search_and_type_filter(tmp_path) -> None:  # type: ignore[no-untyped-def]
    store = _build_store(tmp_path)
    client_id = store.create_client("Friends of Rivera")
    dana = store.create_donor({"name": "Dana Whitfield", "phone": "(402) 555-0101"}, [client_id])
    acme = store.create_donor({"donor_type": "business", "business_name": "Acme Roofing"})

    assert [row["id"] for row in store.list_donors(search_term="Whitfield")] == [dana]
    assert store.list_donors(search_term="Whitfeld") == []
    assert [row["id"] for row in store.list_donors(search_term="Whitfeld", smart_search=True)] == [dana]

    businesses = store.list_donors(donor_types=["business"])
    assert [row["id"] for row in businesses] == [acme]
    assert businesses[0]["assignment_count"] == 0

    everyone = {row["id"]: row for row in store.list_donors()}
    assert everyone[dana]["assigned_client_ids"] == [client_id]
    assert everyone[dana]["assigned_clients"] == ["Friends of Rivera"]

    with pytest.raises(ValidationError):
        store.list_donors(donor_types=["household"])
