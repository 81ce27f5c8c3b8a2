import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from qr_attendance.modules.attendance_manager import AttendanceManager, should_upgrade
from qr_attendance.modules.errors import StorageError, ValidationError
from qr_attendance.modules.models import to_db_timestamp
from qr_attendance.modules.time_windows import AttendanceTimeConfig, TimeWindowClassifier
from qr_attendance.modules.token_redeemer import RedemptionResult, TokenRedeemer

from conftest import T0


@pytest.fixture
def session(sessions, roster):
    return asyncio.run(sessions.create_session(roster["class_id"], "prof1"))


def _scan(attendance, issuer, session, student_id):
    token = asyncio.run(issuer.issue_token(session.id))
    return asyncio.run(attendance.mark_attendance(token, student_id))


def _seed_record(db, roster, status, marked_at=T0 - timedelta(days=1)):
    db.execute_update(
        """INSERT INTO attendance_records (student_id, class_id, status, marked_at, notes)
           VALUES (?, ?, ?, ?, ?)""",
        (roster["student_id"], roster["class_id"], status, to_db_timestamp(marked_at), "seeded"),
    )


@pytest.mark.parametrize(
    "existing,new,expected",
    [
        (None, "present", True),
        (None, "late", True),
        (None, "expired", False),
        ("absent", "late", True),
        ("absent", "present", True),
        ("late", "present", True),
        ("late", "late", False),
        ("present", "present", False),
        ("present", "late", False),
        ("excused", "present", False),
        ("excused", "late", False),
    ],
)
def test_should_upgrade(existing, new, expected):
    assert should_upgrade(existing, new) is expected


def test_first_scan_creates_present_record(attendance, issuer, clock, session, roster):
    clock.advance(minutes=2)

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.success
    assert outcome.status == "present"
    assert outcome.message == "Attendance marked as present"

    record = asyncio.run(attendance.get_record(roster["student_id"], roster["class_id"]))
    assert record.status == "present"
    assert record.marked_at == T0 + timedelta(minutes=2)
    assert record.notes == "Marked via QR code scan - present"


def test_rescan_with_same_status_changes_nothing(attendance, issuer, clock, session, roster):
    _scan(attendance, issuer, session, roster["student_id"])
    clock.advance(minutes=1)

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.success
    assert outcome.status == "present"
    assert outcome.message == "Attendance already marked as present"
    record = asyncio.run(attendance.get_record(roster["student_id"], roster["class_id"]))
    assert record.marked_at == T0


def test_absent_record_upgrades_to_late(attendance, issuer, db, clock, session, roster):
    _seed_record(db, roster, "absent")
    clock.advance(minutes=12)

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.success
    assert outcome.status == "late"
    assert outcome.message == "Attendance updated to late"
    record = asyncio.run(attendance.get_record(roster["student_id"], roster["class_id"]))
    assert record.status == "late"
    assert record.notes == "Updated via QR code scan - late"


def test_late_record_upgrades_to_present(attendance, issuer, db, session, roster):
    _seed_record(db, roster, "late")

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.status == "present"


def test_present_record_is_not_downgraded(attendance, issuer, db, clock, session, roster):
    _seed_record(db, roster, "present")
    clock.advance(minutes=15)

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.success
    assert outcome.status == "present"


def test_excused_record_is_never_overwritten(attendance, issuer, db, session, roster):
    _seed_record(db, roster, "excused")

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.success
    assert outcome.status == "excused"
    record = asyncio.run(attendance.get_record(roster["student_id"], roster["class_id"]))
    assert record.status == "excused"
    assert record.notes == "seeded"


def test_student_without_enrollment_is_rejected(attendance, issuer, students, session):
    outsider = students.create_student("2024009", "Ana", "Cruz", "ana@student.edu")

    outcome = _scan(attendance, issuer, session, outsider)

    assert not outcome.success
    assert outcome.http_status == 403
    assert outcome.error == "Student not enrolled in this course"


def test_inactive_enrollment_is_rejected(attendance, issuer, students, session, roster):
    students.enroll_student(roster["student_id"], roster["course_id"], is_active=False)

    outcome = _scan(attendance, issuer, session, roster["student_id"])

    assert outcome.http_status == 403


def test_unknown_student_does_not_consume_token(attendance, issuer, db, session):
    token = asyncio.run(issuer.issue_token(session.id))

    outcome = asyncio.run(attendance.mark_attendance(token, 777))

    assert outcome.http_status == 404
    assert outcome.error == "Student not found"
    assert db.execute_query("SELECT is_used FROM qr_tokens", fetch_all=False)["is_used"] == 0


def test_reused_token_gets_generic_error(attendance, issuer, session, roster):
    token = asyncio.run(issuer.issue_token(session.id))
    asyncio.run(attendance.mark_attendance(token, roster["student_id"]))

    outcome = asyncio.run(attendance.mark_attendance(token, roster["student_id"]))

    assert not outcome.success
    assert outcome.http_status == 400
    assert outcome.to_dict() == {"success": False, "error": "Invalid or expired token"}


def test_token_of_stopped_session_gets_same_error_as_unknown_token(attendance, issuer, sessions,
                                                                  session, roster):
    token = asyncio.run(issuer.issue_token(session.id))
    asyncio.run(sessions.end_session(session.id))

    stopped = asyncio.run(attendance.mark_attendance(token, roster["student_id"]))
    unknown = asyncio.run(attendance.mark_attendance("f" * 64, roster["student_id"]))

    assert stopped.to_dict() == unknown.to_dict() == {
        "success": False, "error": "Invalid or expired token"}
    assert stopped.http_status == unknown.http_status == 400


def test_expired_classification_is_rejected(db, issuer, students, clock, session, roster):
    classifier = TimeWindowClassifier(AttendanceTimeConfig(5, 10, 20))
    manager = AttendanceManager(db, TokenRedeemer(db, classifier, clock=clock), students, clock=clock)
    clock.advance(minutes=15)

    outcome = _scan(manager, issuer, session, roster["student_id"])

    assert not outcome.success
    assert outcome.error == "Attendance window has closed"
    assert asyncio.run(manager.get_record(roster["student_id"], roster["class_id"])) is None


def test_empty_token_is_rejected(attendance, roster):
    outcome = asyncio.run(attendance.mark_attendance("  ", roster["student_id"]))

    assert outcome.http_status == 400
    assert outcome.error_type == "validation_error"


def test_concurrent_scans_by_one_student_leave_one_record(attendance, issuer, db, session, roster):
    tokens = [asyncio.run(issuer.issue_token(session.id)) for _ in range(4)]

    async def scan_all():
        return await asyncio.gather(
            *(attendance.mark_attendance(token, roster["student_id"]) for token in tokens))

    outcomes = asyncio.run(scan_all())

    assert all(outcome.success for outcome in outcomes)
    assert {outcome.status for outcome in outcomes} == {"present"}
    rows = db.execute_query("SELECT * FROM attendance_records")
    assert len(rows) == 1


def test_attendance_count_includes_present_and_late_only(attendance, issuer, students, db, session, roster):
    _scan(attendance, issuer, session, roster["student_id"])
    for number, status in (("2024002", "late"), ("2024003", "absent"), ("2024004", "excused")):
        other = students.create_student(number, "Test", number)
        db.execute_update(
            "INSERT INTO attendance_records (student_id, class_id, status) VALUES (?, ?, ?)",
            (other, roster["class_id"], status),
        )

    assert asyncio.run(attendance.get_attendance_count(roster["class_id"])) == 2
    assert asyncio.run(attendance.get_attendance_count(9999)) == 0


def test_attendance_count_requires_class_id(attendance):
    with pytest.raises(ValidationError):
        asyncio.run(attendance.get_attendance_count(""))


def test_storage_failure_during_upsert_is_a_generic_error(clock, caplog):
    db = MagicMock()
    db.fetch_one = AsyncMock(side_effect=StorageError("database is locked"))
    redeemer = MagicMock()
    redeemer.redeem = AsyncMock(return_value=RedemptionResult(
        ok=True, session=MagicMock(class_id=1), classification="present"))
    students = MagicMock()
    students.get_student = AsyncMock(return_value={"id": 1})
    students.is_actively_enrolled = AsyncMock(return_value=True)
    manager = AttendanceManager(db, redeemer, students, clock=clock)

    with caplog.at_level(logging.ERROR):
        outcome = asyncio.run(manager.mark_attendance("a" * 64, 1))

    assert outcome.http_status == 500
    assert outcome.error == "Failed to mark attendance"
    assert "database is locked" not in outcome.to_dict()["error"]
    assert any("database is locked" in record.getMessage() for record in caplog.records)
