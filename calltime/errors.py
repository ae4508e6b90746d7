"""Error types raised by the call-time core.

Each error carries a machine-readable ``kind`` and the HTTP-style ``status``
an outer layer should map it to.
"""

from __future__ import annotations


class CallTimeError(Exception):
    kind = "error"
    status = 500


class ValidationError(CallTimeError, ValueError):
    kind = "validation"
    status = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(CallTimeError, LookupError):
    kind = "not_found"
    status = 404


class ClientNotFoundError(NotFoundError):
    def __init__(self, client_id: int) -> None:
        super().__init__("Client not found")
        self.client_id = client_id


class DonorNotFoundError(NotFoundError):
    def __init__(self, donor_id: int) -> None:
        super().__init__("Donor not found")
        self.donor_id = donor_id


class RecordNotFoundError(NotFoundError):
    pass


class DonorNotAssignedError(CallTimeError, PermissionError):
    kind = "not_assigned"
    status = 403

    def __init__(self, client_id: int, donor_id: int) -> None:
        super().__init__("Donor not assigned to client")
        self.client_id = client_id
        self.donor_id = donor_id


class AuthenticationError(CallTimeError):
    kind = "unauthenticated"
    status = 401


class SchemaError(CallTimeError, RuntimeError):
    """The database cannot be brought to a usable schema."""

    kind = "schema"
