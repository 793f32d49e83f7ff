"""Unit tests for session context persistence."""

import logging
from pathlib import Path

import pytest

from services.shared.session import (
    SessionContext,
    UserRole,
    clear_session,
    load_session,
    save_session,
)


def test_missing_file_yields_default(tmp_path: Path) -> None:
    context = load_session(tmp_path / "session.json")

    assert context == SessionContext()
    assert context.can_write is True
    assert context.is_admin is False


def test_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    saved = SessionContext(
        user_email="ceo@fungus.cl", role=UserRole.CEO, company_logo="data:image/png;base64,AAA"
    )

    save_session(saved, path)
    loaded = load_session(path)

    assert loaded == saved
    assert loaded.is_admin is True


def test_guest_session_is_read_only() -> None:
    assert SessionContext(guest_mode=True).can_write is False


def test_corrupt_file_yields_default(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "session.json"
    path.write_text('{"role": "OWNER"', encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        context = load_session(path)

    assert context == SessionContext()
    assert "Ignoring unreadable session file" in caplog.text


def test_clear_session(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    save_session(SessionContext(user_email="a@b.cl"), path)

    clear_session(path)
    clear_session(path)

    assert not path.exists()
