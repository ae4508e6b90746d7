"""Environment-driven settings for the call-time app."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_DB_PATH = Path(".data/calltime.db")
DEFAULT_SESSION_TTL_SECONDS = 8 * 60 * 60

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    manager_password: str | None = None
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    log_level: str = "INFO"
    default_assigned_by: str = "manager"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        ttl = _int_setting(env, "CALLTIME_SESSION_TTL", DEFAULT_SESSION_TTL_SECONDS)
        if ttl <= 0:
            raise ValueError("CALLTIME_SESSION_TTL must be positive.")

        return cls(
            db_path=Path(env.get("CALLTIME_DB_PATH") or DEFAULT_DB_PATH),
            manager_password=env.get("CALLTIME_MANAGER_PASSWORD") or None,
            session_ttl_seconds=ttl,
            log_level=(env.get("CALLTIME_LOG_LEVEL") or "INFO").strip().upper(),
            default_assigned_by=(env.get("CALLTIME_ASSIGNED_BY") or "manager").strip(),
        )

    def validate(self) -> None:
        """Fail fast if settings required by the operator app are missing."""
        missing = []
        if not self.manager_password:
            missing.append("CALLTIME_MANAGER_PASSWORD")
        if missing:
            raise ValueError(
                "Missing required environment variables: " + ", ".join(missing)
            )


def configure_logging(level: str = "INFO") -> None:
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logging.basicConfig(level=numeric_level, format=_LOG_FORMAT)
