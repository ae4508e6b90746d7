"""Bearer-token sessions scoping requests to the manager or a single client."""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable

from calltime.config import Settings
from calltime.errors import AuthenticationError
from calltime.store import CallTimeStore

logger = logging.getLogger(__name__)

MANAGER = "manager"
CLIENT = "client"


@dataclass(frozen=True)
class Identity:
    role: str
    client_id: int | None = None

    @classmethod
    def manager(cls) -> Identity:
        return cls(role=MANAGER)

    @classmethod
    def client(cls, client_id: int) -> Identity:
        return cls(role=CLIENT, client_id=client_id)

    @property
    def is_manager(self) -> bool:
        return self.role == MANAGER

    def require_manager(self) -> None:
        if not self.is_manager:
            raise AuthenticationError("Manager access required")

    def require_client(self, client_id: int) -> int:
        """Return the client id this identity may act for."""
        if self.is_manager or self.client_id == client_id:
            return client_id
        raise AuthenticationError("Session is not scoped to this client")


@dataclass(frozen=True)
class _Session:
    identity: Identity
    expires_at: float


class SessionStore:
    """In-memory token store; expired sessions are evicted on lookup."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Session TTL must be positive.")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, _Session] = {}

    def issue(self, identity: Identity) -> str:
        self.purge_expired()
        token = secrets.token_urlsafe(32)
        self._sessions[token] = _Session(identity, self._clock() + self.ttl_seconds)
        logger.debug("Issued %s session", identity.role)
        return token

    def resolve(self, token: str | None) -> Identity:
        if not token:
            raise AuthenticationError("Missing session token")
        session = self._sessions.get(token)
        if session is None:
            raise AuthenticationError("Unknown session token")
        if session.expires_at <= self._clock():
            del self._sessions[token]
            logger.debug("Expired %s session", session.identity.role)
            raise AuthenticationError("Session expired")
        return session.identity

    def revoke(self, token: str) -> bool:
        removed = self._sessions.pop(token, None) is not None
        if removed:
            logger.debug("Revoked session")
        return removed

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [token for token, session in self._sessions.items() if session.expires_at <= now]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


def login_manager(sessions: SessionStore, settings: Settings, password: str) -> str:
    expected = settings.manager_password
    if not expected or not hmac.compare_digest(password.encode(), expected.encode()):
        raise AuthenticationError("Invalid manager password")
    return sessions.issue(Identity.manager())


def login_client(
    sessions: SessionStore,
    store: CallTimeStore,
    client_id: int,
    password: str,
) -> str:
    if not store.verify_client_password(client_id, password):
        raise AuthenticationError("Invalid client credentials")
    return sessions.issue(Identity.client(client_id))


def scoped_donor(
    store: CallTimeStore,
    identity: Identity,
    client_id: int,
    donor_id: int,
) -> dict[str, Any]:
    """Resolve a donor for a client-scoped request, enforcing the session scope first."""
    return store.ensure_client_has_donor(identity.require_client(client_id), donor_id)
