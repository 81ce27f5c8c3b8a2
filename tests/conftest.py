from datetime import datetime, timedelta, timezone

import pytest

from qr_attendance.modules.attendance_manager import AttendanceManager
from qr_attendance.modules.database_manager import DatabaseManager
from qr_attendance.modules.session_manager import SessionManager
from qr_attendance.modules.student_manager import StudentManager
from qr_attendance.modules.time_windows import TimeWindowClassifier
from qr_attendance.modules.token_issuer import TokenIssuer
from qr_attendance.modules.token_redeemer import TokenRedeemer

T0 = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / "attendance.db")
    yield manager
    manager.close_all_connections()


@pytest.fixture
def classifier():
    return TimeWindowClassifier()


@pytest.fixture
def sessions(db, classifier, clock):
    return SessionManager(db, classifier, clock=clock)


@pytest.fixture
def issuer(db, clock):
    return TokenIssuer(db, lifetime_seconds=5, clock=clock)


@pytest.fixture
def redeemer(db, classifier, clock):
    return TokenRedeemer(db, classifier, clock=clock)


@pytest.fixture
def students(db):
    return StudentManager(db)


@pytest.fixture
def attendance(db, redeemer, students, clock):
    return AttendanceManager(db, redeemer, students, clock=clock)


@pytest.fixture
def roster(students):
    """One course with one class and one actively enrolled student."""
    course_id = students.create_course("FIT1043", "Introduction to Data Science")
    class_id = students.create_class(course_id, "Week 1 Lecture", "2026-10-19")
    student_id = students.create_student("2024001", "Juan", "Dela Cruz", "juan@student.edu")
    students.enroll_student(student_id, course_id)
    return {"course_id": course_id, "class_id": class_id, "student_id": student_id}
