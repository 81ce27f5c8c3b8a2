import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from qr_attendance.modules.errors import StorageError, ValidationError
from qr_attendance.modules.session_manager import SessionManager

from conftest import T0


def test_active_session_lifecycle(sessions, roster):
    class_id = roster["class_id"]

    assert asyncio.run(sessions.get_active_session(class_id)) is None

    created = asyncio.run(sessions.create_session(class_id, "prof1"))
    assert created is not None
    assert asyncio.run(sessions.get_active_session(class_id)) == created

    assert asyncio.run(sessions.end_session(created.id)) is True
    # End time is still in the future, but the session was stopped
    assert asyncio.run(sessions.get_active_session(class_id)) is None


def test_created_session_spans_total_session_length(sessions, roster):
    created = asyncio.run(sessions.create_session(roster["class_id"], "prof1"))

    assert created.start_time == T0
    assert created.end_time == T0 + timedelta(minutes=20)
    assert created.is_active
    assert created.class_id == roster["class_id"]
    assert created.created_by == "prof1"
    assert len(created.session_token) == 64


def test_create_session_requires_class_id(sessions):
    with pytest.raises(ValidationError):
        asyncio.run(sessions.create_session("", "prof1"))
    with pytest.raises(ValidationError):
        asyncio.run(sessions.create_session(None, "prof1"))


def test_active_session_disappears_once_end_time_passes(sessions, clock, roster):
    class_id = roster["class_id"]
    asyncio.run(sessions.create_session(class_id, "prof1"))

    clock.advance(minutes=19, seconds=59)
    assert asyncio.run(sessions.get_active_session(class_id)) is not None

    clock.advance(seconds=1)
    assert asyncio.run(sessions.get_active_session(class_id)) is None


def test_active_session_is_the_most_recent(sessions, clock, roster):
    class_id = roster["class_id"]
    asyncio.run(sessions.create_session(class_id, "prof1"))
    clock.advance(minutes=1)
    newer = asyncio.run(sessions.create_session(class_id, "prof1"))

    assert asyncio.run(sessions.get_active_session(class_id)).id == newer.id


def test_end_session_is_idempotent(sessions, roster):
    created = asyncio.run(sessions.create_session(roster["class_id"], "prof1"))

    assert asyncio.run(sessions.end_session(created.id)) is True
    assert asyncio.run(sessions.end_session(created.id)) is True
    assert asyncio.run(sessions.end_session(99999)) is True
    assert asyncio.run(sessions.get_session(created.id)).is_active is False


def test_storage_failures_become_plain_results(clock, caplog):
    db = MagicMock()
    db.execute = AsyncMock(side_effect=StorageError("database is locked"))
    db.fetch_one = AsyncMock(side_effect=StorageError("database is locked"))
    manager = SessionManager(db, clock=clock)

    with caplog.at_level(logging.ERROR):
        assert asyncio.run(manager.end_session(1)) is False
        assert asyncio.run(manager.get_active_session(1)) is None
        assert asyncio.run(manager.create_session(1, "prof1")) is None

    assert any("database is locked" in record.getMessage() for record in caplog.records)


def test_is_claimable_checks_flag_and_end_time(sessions, clock, roster):
    created = asyncio.run(sessions.create_session(roster["class_id"], "prof1"))

    assert sessions.is_claimable(created)
    assert sessions.is_claimable(created, T0 + timedelta(minutes=20))
    assert not sessions.is_claimable(created, T0 + timedelta(minutes=20, seconds=1))

    asyncio.run(sessions.end_session(created.id))
    assert not sessions.is_claimable(asyncio.run(sessions.get_session(created.id)))
