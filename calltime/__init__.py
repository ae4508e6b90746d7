"""Data and helpers for the campaign call-time app."""

from .config import Settings, configure_logging
from .donors import donor_display_name
from .errors import (
    AuthenticationError,
    CallTimeError,
    ClientNotFoundError,
    DonorNotAssignedError,
    DonorNotFoundError,
    NotFoundError,
    RecordNotFoundError,
    SchemaError,
    ValidationError,
)
from .importer import BulkImporter, ImportResult, read_tabular
from .normalize import DONOR_TYPES
from .schema import MigrationReport
from .sessions import Identity, SessionStore, login_client, login_manager, scoped_donor
from .store import CallTimeStore

__all__ = [
    "AuthenticationError",
    "BulkImporter",
    "CallTimeError",
    "CallTimeStore",
    "ClientNotFoundError",
    "DONOR_TYPES",
    "DonorNotAssignedError",
    "DonorNotFoundError",
    "Identity",
    "ImportResult",
    "MigrationReport",
    "NotFoundError",
    "RecordNotFoundError",
    "SchemaError",
    "SessionStore",
    "Settings",
    "ValidationError",
    "configure_logging",
    "donor_display_name",
    "login_client",
    "login_manager",
    "read_tabular",
    "scoped_donor",
]
