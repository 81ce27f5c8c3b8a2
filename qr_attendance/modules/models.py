"""
Data Models Module - QR Attendance Session Core

Plain data classes for the rows the attendance core reads and writes, the
attendance status constants and the timestamp helpers used to store times
in SQLite.

Timestamps are kept as timezone-aware UTC datetimes in Python and stored as
fixed-width ISO-8601 strings, so comparing the stored strings in SQL gives
the same ordering as comparing the datetimes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attendance status constants
STATUS_PRESENT = 'present'
STATUS_LATE = 'late'
STATUS_ABSENT = 'absent'
STATUS_EXCUSED = 'excused'
STATUS_EXPIRED = 'expired'


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """
    Convert a datetime to the string stored in the database.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_db_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class AttendanceSession:
    """A time-boxed window during which a class's attendance can be claimed."""
    id: int
    class_id: int
    session_token: str
    start_time: datetime
    end_time: datetime
    is_active: bool
    created_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], prefix: str = '') -> 'AttendanceSession':
        return cls(
            id=row[f'{prefix}id'],
            class_id=row[f'{prefix}class_id'],
            session_token=row[f'{prefix}session_token'],
            start_time=from_db_timestamp(row[f'{prefix}start_time']),
            end_time=from_db_timestamp(row[f'{prefix}end_time']),
            is_active=bool(row[f'{prefix}is_active']),
            created_by=row.get(f'{prefix}created_by'),
        )

    def to_dict(self) -> Dict[str, Any]:
        # The session secret stays server side
        return {
            'id': self.id,
            'classId': self.class_id,
            'startTime': self.start_time.isoformat(),
            'endTime': self.end_time.isoformat(),
            'isActive': self.is_active,
            'createdBy': self.created_by,
        }


@dataclass
class AttendanceRecord:
    """Data class for attendance record structure."""
    id: Optional[int]
    student_id: int
    class_id: int
    status: str
    marked_at: Optional[datetime]
    notes: Optional[str]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AttendanceRecord':
        marked_at = row.get('marked_at')
        return cls(
            id=row['id'],
            student_id=row['student_id'],
            class_id=row['class_id'],
            status=row['status'],
            marked_at=from_db_timestamp(marked_at) if marked_at else None,
            notes=row.get('notes'),
        )
