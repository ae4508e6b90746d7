from __future__ import annotations

import logging
from pathlib import Path

import pytest

from calltime.config import DEFAULT_DB_PATH, DEFAULT_SESSION_TTL_SECONDS, Settings, configure_logging


def test_defaults_apply_when_environment_is_empty() -> None:
    settings = Settings.from_env({})

    assert settings.db_path == DEFAULT_DB_PATH
    assert settings.manager_password is None
    assert settings.session_ttl_seconds == DEFAULT_SESSION_TTL_SECONDS
    assert settings.log_level == "INFO"
    assert settings.default_assigned_by == "manager"


def test_environment_overrides() -> None:
    settings = Settings.from_env(
        {
            "CALLTIME_DB_PATH": "/tmp/calltime.db",
            "CALLTIME_MANAGER_PASSWORD": "call-time-secret",
            "CALLTIME_SESSION_TTL": " 900 ",
            "CALLTIME_LOG_LEVEL": "debug",
            "CALLTIME_ASSIGNED_BY": "Finance Director",
        }
    )

    assert settings.db_path == Path("/tmp/calltime.db")
    assert settings.manager_password == "call-time-secret"
    assert settings.session_ttl_seconds == 900
    assert settings.log_level == "DEBUG"
    assert settings.default_assigned_by == "Finance Director"
    settings.validate()


def test_bad_session_ttl_is_rejected() -> None:
    with pytest.raises(ValueError, match="CALLTIME_SESSION_TTL"):
        Settings.from_env({"CALLTIME_SESSION_TTL": "eight hours"})
    with pytest.raises(ValueError, match="positive"):
        Settings.from_env({"CALLTIME_SESSION_TTL": "0"})


def test_validate_requires_manager_password() -> None:
    with pytest.raises(ValueError, match="CALLTIME_MANAGER_PASSWORD"):
        Settings.from_env({}).validate()


def test_configure_logging_accepts_unknown_levels(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("debug")
    configure_logging("chatty")

    assert calls[0]["level"] == logging.DEBUG
    assert calls[1]["level"] == logging.INFO
