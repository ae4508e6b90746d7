"""Normalization of loosely-labeled donor and contribution data.

Spreadsheet exports and API payloads name the same attribute in many ways
("First Name", "first_name", "FirstName"). Everything here is pure: values in,
canonical values out. ``None`` is the single "unknown" sentinel; it is never
conflated with zero or an empty string.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

import pandas as pd

INDIVIDUAL = "individual"
BUSINESS = "business"
CAMPAIGN = "campaign"

DONOR_TYPES = (INDIVIDUAL, BUSINESS, CAMPAIGN)
ORGANIZATION_DONOR_TYPES = frozenset({BUSINESS, CAMPAIGN})


def normalize_column_name(label: Any) -> str:
    if label is None:
        return ""
    return re.sub(r"[^a-z0-9]", "", str(label).lower())


def _is_missing(value: Any) -> bool:
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    return isinstance(value, float) and math.isnan(value)


def _is_blank(value: Any) -> bool:
    if _is_missing(value):
        return True
    return isinstance(value, str) and not value.strip()


def clean_text(value: Any) -> str | None:
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    stripped = str(value).strip()
    return stripped or None


COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("Donor ID", "donorId", "Record ID"),
    "donor_type": ("Donor Type", "Type", "Category", "Entity Type", "Record Type", "Kind"),
    "is_business": ("Is Business", "isBusiness", "Business Entity", "isBusinessEntity"),
    "name": ("Full Name", "Donor Name", "Donor", "Display Name"),
    "first_name": ("First", "Given Name", "FName"),
    "last_name": ("Last", "Surname", "Family Name", "LName"),
    "business_name": (
        "Business Name",
        "Organization",
        "Organization Name",
        "Organisation",
        "Company Name",
        "Committee Name",
        "PAC Name",
        "Entity Name",
    ),
    "contact_name": ("Contact Name", "Contact Person", "Primary Contact"),
    "phone": (
        "Phone Number",
        "Primary Phone",
        "Mobile",
        "Mobile Phone",
        "Cell",
        "Cell Phone",
        "Telephone",
        "Tel",
    ),
    "alternate_phone": (
        "Alt Phone",
        "Alternate Phone Number",
        "Secondary Phone",
        "Phone 2",
        "Other Phone",
        "Home Phone",
        "Work Phone",
        "Office Phone",
    ),
    "email": ("Email Address", "E-mail", "Primary Email", "Email 1"),
    "full_address": ("Address", "Mailing Address", "Home Address", "Full Address"),
    "street_address": (
        "Street",
        "Street Address",
        "Address 1",
        "Address Line 1",
        "Mailing Street",
        "Street 1",
    ),
    "address_line2": ("Address 2", "Address Line 2", "Street 2", "Apt", "Suite", "Unit"),
    "city_state_zip": ("City State Zip", "City, State Zip", "City/State/Zip", "CSZ"),
    "city": ("Mailing City", "Town"),
    "state": ("Mailing State", "ST", "Province"),
    "postal_code": ("Zip", "Zip Code", "Zipcode", "Postal", "Postcode", "Mailing Zip"),
    "employer": ("Company", "Employer Name", "Works For"),
    "occupation": ("Profession", "Industry", "Sector"),
    "job_title": ("Title", "Position", "Role"),
    "tags": ("Tag", "Labels", "Segment", "Segments", "Keywords"),
    "suggested_ask": ("Ask", "Ask Amount", "Suggested Ask", "Target Ask", "Ask Target"),
    "last_gift_note": ("Last Gift", "Giving History", "Last Gift Note"),
    "notes": ("Note", "Donor Notes", "donorNotes", "Comments"),
    "bio": ("Biography", "Background", "Profile"),
    "photo_url": ("Photo", "Picture", "pictureUrl", "Image", "Image URL", "Headshot"),
    "exclusive_donor": ("Exclusive", "Exclusive Donor", "Locked", "Lock"),
    "exclusive_client_id": ("Exclusive Client ID", "Locked Client ID", "Locked To"),
    "client_id": ("Client ID", "Campaign ID"),
    "client": ("Client", "Client Name", "Campaign", "Assigned Client", "Assign To"),
    "priority_level": ("Priority", "Priority Level", "Call Priority"),
    "custom_ask_amount": ("Custom Ask", "Custom Ask Amount", "Client Ask"),
    "assignment_notes": ("Assignment Notes", "Assignment Note"),
}

CONTRIBUTION_ALIASES: dict[str, tuple[str, ...]] = {
    "entry_key": ("entryKey", "Entry ID", "Contribution ID", "id"),
    "year": ("Election Year", "Cycle", "Contribution Year"),
    "candidate": ("Recipient", "Candidate Name", "Committee"),
    "office_sought": ("Office", "officeSought", "Office Sought"),
    "amount": ("Contribution", "Contribution Amount", "Gift Amount", "Total"),
    "is_inkind": ("In Kind", "In-Kind", "inKind", "isInkind"),
}


def _alias_keys(aliases: Mapping[str, tuple[str, ...]]) -> dict[str, tuple[str, ...]]:
    keys: dict[str, tuple[str, ...]] = {}
    for field, labels in aliases.items():
        ordered = dict.fromkeys(normalize_column_name(label) for label in (field, *labels))
        keys[field] = tuple(ordered)
    return keys


_DONOR_FIELD_KEYS = _alias_keys(COLUMN_ALIASES)
_CONTRIBUTION_FIELD_KEYS = _alias_keys(CONTRIBUTION_ALIASES)


def _row_index(row: Mapping[str, Any]) -> dict[str, list[Any]]:
    index: dict[str, list[Any]] = {}
    for key, value in row.items():
        index.setdefault(normalize_column_name(key), []).append(value)
    return index


def _first_present(
    index: Mapping[str, list[Any]],
    keys: Iterable[str],
) -> tuple[bool, Any]:
    seen = False
    for key in keys:
        for value in index.get(key, ()):
            seen = True
            if not _is_blank(value):
                return True, value
    return seen, None


def lookup_field(
    row: Mapping[str, Any],
    field: str,
    aliases: Mapping[str, tuple[str, ...]] | None = None,
) -> Any:
    """Return the first non-empty value among the labels known for ``field``."""
    keys = _DONOR_FIELD_KEYS if aliases is None else _alias_keys(aliases)
    _, value = _first_present(_row_index(row), keys.get(field, (normalize_column_name(field),)))
    return value


def canonicalize_row(row: Mapping[str, Any], keep_blank: bool = False) -> dict[str, Any]:
    """Map a free-form row onto canonical donor field names.

    Blank cells are dropped unless ``keep_blank`` is set, in which case a
    column that is present but empty yields ``None`` (an explicit clear).
    """
    index = _row_index(row)
    canonical: dict[str, Any] = {}
    for field, keys in _DONOR_FIELD_KEYS.items():
        seen, value = _first_present(index, keys)
        if value is not None:
            canonical[field] = value
        elif seen and keep_blank:
            canonical[field] = None
    return canonical


_DONOR_TYPE_ALIASES = {
    INDIVIDUAL: (
        "individual",
        "person",
        "personal",
        "people",
        "household",
        "family",
        "ind",
        "indiv",
        "donor",
    ),
    BUSINESS: (
        "business",
        "company",
        "corporation",
        "corporate",
        "corp",
        "organization",
        "organisation",
        "org",
        "llc",
        "inc",
        "firm",
        "nonprofit",
        "foundation",
        "union",
        "entity",
        "trust",
    ),
    CAMPAIGN: (
        "campaign",
        "committee",
        "pac",
        "superpac",
        "politicalactioncommittee",
        "candidatecommittee",
        "party",
        "partycommittee",
    ),
}

_DONOR_TYPE_LOOKUP = {
    normalize_column_name(alias): donor_type
    for donor_type, aliases in _DONOR_TYPE_ALIASES.items()
    for alias in aliases
}

_CAMPAIGN_HINT = re.compile(r"campaign|committee|pac")
_BUSINESS_HINT = re.compile(r"business|company|organi[sz]ation|corp|llc")


def resolve_donor_type(value: Any, context: Mapping[str, Any] | None = None) -> str:
    token = normalize_column_name(clean_text(value))
    if token in DONOR_TYPES:
        return token
    if token in _DONOR_TYPE_LOOKUP:
        return _DONOR_TYPE_LOOKUP[token]
    if token:
        if _CAMPAIGN_HINT.search(token):
            return CAMPAIGN
        if _BUSINESS_HINT.search(token):
            return BUSINESS

    if context:
        if parse_boolean_flag(lookup_field(context, "is_business"), default=False):
            return BUSINESS
        has_person_name = lookup_field(context, "first_name") or lookup_field(context, "last_name")
        if lookup_field(context, "business_name") and not has_person_name:
            return BUSINESS

    return INDIVIDUAL


_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_CURRENCY_NOISE = re.compile(r"[\s$€£¥,]|usd", re.IGNORECASE)


def parse_currency(value: Any) -> float | None:
    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None

    text = str(value).strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = _CURRENCY_NOISE.sub("", text)
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    elif text.startswith("+"):
        text = text[1:]

    if not _NUMBER_PATTERN.fullmatch(text):
        return None

    amount = float(text)
    return -amount if negative else amount


_ASK_PATTERN = re.compile(r"^\s*\$?\s*(?P<number>\d[\d,]*(?:\.\d+)?)\s*(?P<suffix>[kKmM])?(?![A-Za-z])")
_ASK_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


def parse_suggested_ask(value: Any) -> float | None:
    """Parse an ask amount; shorthand (``1.5k``) and ranges (lower bound) allowed."""
    amount = parse_currency(value)
    if amount is not None:
        return amount if amount >= 0 else None
    if not isinstance(value, str):
        return None

    match = _ASK_PATTERN.match(value)
    if match is None:
        return None
    number = float(match["number"].replace(",", ""))
    suffix = (match["suffix"] or "").lower()
    return round(number * _ASK_MULTIPLIERS.get(suffix, 1), 2)


def parse_integer(value: Any) -> int | None:
    if _is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        number = float(value)
        if math.isfinite(number) and number.is_integer():
            return int(number)
        return None

    text = str(value).strip().replace(",", "")
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)
    if re.fullmatch(r"[+-]?\d+\.0*", text):
        return int(float(text))
    return None


def parse_year(value: Any) -> int | None:
    year = parse_integer(value)
    if year is None and isinstance(value, str):
        match = re.search(r"\b(\d{4})\b", value)
        if match:
            year = int(match.group(1))
    if year is None or not 1900 <= year <= 2100:
        return None
    return year


_TRUE_FLAGS = frozenset(
    {"yes", "y", "true", "t", "1", "on", "locked", "lock", "exclusive", "x", "checked"}
)
_FALSE_FLAGS = frozenset({"no", "n", "false", "f", "0", "off", "unlock", "unlocked", "unchecked"})


def parse_boolean_flag(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if _is_missing(value):
        return default
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return default

    token = str(value).strip().lower()
    if token in _TRUE_FLAGS:
        return True
    if token in _FALSE_FLAGS:
        return False
    return default


def parse_date(value: Any) -> str | None:
    if _is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = clean_text(value)
    if text is None:
        return None
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()


_STATE_NAMES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "district of columbia": "DC", "florida": "FL", "georgia": "GA", "hawaii": "HI",
    "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME",
    "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE",
    "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM",
    "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI",
    "south carolina": "SC", "south dakota": "SD", "tennessee": "TN", "texas": "TX",
    "utah": "UT", "vermont": "VT", "virginia": "VA", "washington": "WA",
    "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY", "puerto rico": "PR",
    "guam": "GU", "virgin islands": "VI",
}
_STATE_CODES = frozenset(_STATE_NAMES.values())

_STREET_SUFFIXES = frozenset(
    {
        "st", "street", "ave", "avenue", "rd", "road", "dr", "drive", "blvd",
        "boulevard", "ln", "lane", "way", "ct", "court", "pl", "place", "pkwy",
        "parkway", "cir", "circle", "hwy", "highway", "ter", "terrace", "trl",
        "trail", "sq", "square", "loop", "row",
    }
)
_UNIT_WORDS = frozenset({"apt", "apartment", "suite", "ste", "unit", "fl", "floor", "bldg", "rm", "room"})
_ZIP_TAIL = re.compile(r"[\s,]*(\d{5}(?:-\d{4})?)$")


def _state_code(text: str) -> str | None:
    token = text.strip().rstrip(".")
    if token.upper() in _STATE_CODES:
        return token.upper()
    return _STATE_NAMES.get(" ".join(token.lower().split()))


def normalize_state(value: Any) -> str | None:
    text = clean_text(value)
    if text is None:
        return None
    return _state_code(text) or text


def normalize_postal_code(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if _is_missing(value) or not float(value).is_integer():
            return None
        value = str(int(value))
    text = clean_text(value)
    if text is None:
        return None
    if re.fullmatch(r"\d{3,4}", text):
        return text.zfill(5)
    if re.fullmatch(r"\d{9}", text):
        return f"{text[:5]}-{text[5:]}"
    return text


@dataclass(frozen=True)
class Address:
    street_address: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return asdict(self)


def _split_city_state_zip(text: str) -> tuple[str | None, str | None, str | None] | None:
    remainder = text.strip().rstrip(",").strip()
    postal = None
    zip_match = _ZIP_TAIL.search(remainder)
    if zip_match:
        postal = zip_match.group(1)
        remainder = remainder[: zip_match.start()].strip().rstrip(",").strip()

    if "," in remainder:
        city_part, state_part = remainder.rsplit(",", 1)
        code = _state_code(state_part)
        if code:
            return clean_text(city_part), code, postal

    tokens = remainder.split()
    for width in (3, 2, 1):
        if len(tokens) < width:
            continue
        code = _state_code(" ".join(tokens[-width:]))
        if code:
            city = " ".join(tokens[:-width]).rstrip(",").strip()
            return city or None, code, postal

    if postal and not tokens:
        return None, None, postal
    return None


def _split_street_from_city(text: str) -> tuple[str | None, str | None, str | None]:
    """Split "123 Main St Apt 4 Springfield" into street, unit and city."""
    tokens = text.split()
    suffix_index = None
    for position, token in enumerate(tokens[1:-1], start=1):
        if token.lower().rstrip(".") in _STREET_SUFFIXES:
            suffix_index = position
    if suffix_index is None:
        return text, None, None

    street = " ".join(tokens[: suffix_index + 1])
    rest = tokens[suffix_index + 1 :]
    unit = None
    if rest and rest[0].startswith("#"):
        unit, rest = rest[0], rest[1:]
    elif len(rest) > 2 and rest[0].lower().rstrip(".") in _UNIT_WORDS:
        unit, rest = " ".join(rest[:2]), rest[2:]
    return street, unit, " ".join(rest) or None


def parse_full_address(blob: str) -> Address:
    segments = [segment.strip() for segment in re.split(r"[\r\n]+|,", blob) if segment.strip()]
    if not segments:
        return Address()

    city = state = postal = None
    tail = _split_city_state_zip(segments[-1])
    if tail is not None:
        city, state, postal = tail
        segments = segments[:-1]
        if city is None and segments and not segments[-1][0].isdigit():
            city = segments.pop()

    unit = None
    if city and city[0].isdigit() and not segments:
        street, unit, city = _split_street_from_city(city)
        segments = [street] if street else []

    if not segments:
        return Address(address_line2=unit, city=city, state=state, postal_code=postal)

    line2_parts = [part for part in (unit, *segments[1:]) if part]
    return Address(
        street_address=segments[0],
        address_line2=", ".join(line2_parts) or None,
        city=city,
        state=state,
        postal_code=postal,
    )


def reconcile_address(
    full_address: Any = None,
    street_address: Any = None,
    address_line2: Any = None,
    city_state_zip: Any = None,
    city: Any = None,
    state: Any = None,
    postal_code: Any = None,
) -> Address:
    """Merge discrete address cells with parsed combined cells.

    Discrete values always win; parsed fragments only fill the gaps.
    """
    street = clean_text(street_address)
    line2 = clean_text(address_line2)
    clean_city = clean_text(city)
    clean_state = normalize_state(state)
    postal = normalize_postal_code(postal_code)

    combined = clean_text(city_state_zip)
    if combined is None and clean_city and "," in clean_city and clean_state is None:
        combined, clean_city = clean_city, None
    if combined:
        parsed = _split_city_state_zip(combined)
        if parsed is not None:
            parsed_city, parsed_state, parsed_postal = parsed
            clean_city = clean_city or parsed_city
            clean_state = clean_state or parsed_state
            postal = postal or parsed_postal
        elif not any(char.isdigit() for char in combined):
            clean_city = clean_city or combined

    blob = clean_text(full_address)
    if blob is None and street and "," in street and (clean_city is None or clean_state is None):
        blob, street = street, None
    if blob:
        parsed_address = parse_full_address(blob)
        if street is None:
            street = parsed_address.street_address
            line2 = line2 or parsed_address.address_line2
        elif line2 is None and parsed_address.street_address == street:
            line2 = parsed_address.address_line2
        clean_city = clean_city or parsed_address.city
        clean_state = clean_state or parsed_address.state
        postal = postal or parsed_address.postal_code

    return Address(
        street_address=street,
        address_line2=line2,
        city=clean_city,
        state=clean_state,
        postal_code=postal,
    )


@dataclass(frozen=True)
class Contribution:
    year: int
    candidate: str
    amount: float
    office_sought: str | None = None
    is_inkind: bool = False
    entry_key: str = ""
    id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def contribution_key(
    year: int,
    candidate: str,
    amount: float,
    office_sought: str | None = None,
) -> str:
    parts = [str(year), candidate, office_sought or "", f"{amount:.2f}"]
    return _slug("-".join(part for part in parts if part))


def _entry_value(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def history_sort_key(entry: Any) -> tuple[Any, ...]:
    year = _entry_value(entry, "year") or 0
    amount = _entry_value(entry, "amount") or 0
    return (
        -int(year),
        (_entry_value(entry, "candidate") or "").casefold(),
        (_entry_value(entry, "office_sought") or "").casefold(),
        -float(amount),
        str(_entry_value(entry, "entry_key") or ""),
    )


def sort_history(entries: Iterable[Any]) -> list[Any]:
    """Year descending, then candidate, then office; never insertion order."""
    return sorted(entries, key=history_sort_key)


_CONTRIBUTION_PREFIXES = (
    "contribution",
    "contributions",
    "givinghistory",
    "giving",
    "donation",
    "donations",
    "gift",
    "history",
)
_CONTRIBUTION_SUFFIXES = {
    "year": "year",
    "cycle": "year",
    "candidate": "candidate",
    "recipient": "candidate",
    "office": "office_sought",
    "officesought": "office_sought",
    "amount": "amount",
    "inkind": "is_inkind",
    "isinkind": "is_inkind",
    "id": "entry_key",
}


def _alternation(options: Iterable[str]) -> str:
    return "|".join(sorted(options, key=len, reverse=True))


CONTRIBUTION_FIELD_PATTERN = re.compile(
    rf"^(?P<prefix>{_alternation(_CONTRIBUTION_PREFIXES)})"
    rf"(?P<index>\d*)"
    rf"(?P<field>{_alternation(_CONTRIBUTION_SUFFIXES)})$"
)

_CONTRIBUTION_CORE_FIELDS = frozenset({"year", "candidate", "amount", "office_sought"})


def extract_contribution_fields(row: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Group ``contribution1Year``-style columns into one dict per index."""
    groups: dict[int, dict[str, Any]] = {}
    for key, value in row.items():
        match = CONTRIBUTION_FIELD_PATTERN.match(normalize_column_name(key))
        if match is None or _is_blank(value):
            continue
        index = int(match["index"] or 0)
        field = _CONTRIBUTION_SUFFIXES[match["field"]]
        groups.setdefault(index, {}).setdefault(field, value)

    return [
        groups[index]
        for index in sorted(groups)
        if _CONTRIBUTION_CORE_FIELDS.intersection(groups[index])
    ]


def transform_contribution_rows(
    rows: Iterable[Any],
    label: str = "Contribution",
) -> tuple[list[Contribution], list[str]]:
    """Validate loose contribution rows; bad rows become error strings."""
    entries: list[Contribution] = []
    errors: list[str] = []

    for position, raw in enumerate(rows, start=1):
        if not isinstance(raw, Mapping):
            errors.append(f"{label} {position}: unreadable entry")
            continue

        index = _row_index(raw)
        values = {
            field: _first_present(index, keys)[1]
            for field, keys in _CONTRIBUTION_FIELD_KEYS.items()
        }
        if all(value is None for value in values.values()):
            continue

        year = parse_year(values["year"])
        candidate = clean_text(values["candidate"])
        amount = parse_currency(values["amount"])

        problems = []
        for field, parsed in (("year", year), ("candidate", candidate), ("amount", amount)):
            if parsed is not None:
                continue
            raw_value = values[field]
            if raw_value is None:
                problems.append(f"missing {field}")
            else:
                problems.append(f"invalid {field} {str(raw_value).strip()!r}")
        if problems:
            errors.append(f"{label} {position}: " + "; ".join(problems))
            continue

        office = clean_text(values["office_sought"])
        entries.append(
            Contribution(
                year=year,
                candidate=candidate,
                amount=amount,
                office_sought=office,
                is_inkind=parse_boolean_flag(values["is_inkind"], default=False),
                entry_key=clean_text(values["entry_key"])
                or contribution_key(year, candidate, amount, office),
            )
        )

    return entries, errors
