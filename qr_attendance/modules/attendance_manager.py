"""
Attendance Manager Module - QR Attendance Session Core

This module turns a scanned rotating token into an attendance record. It
is the only layer that produces user-facing messages; everything below it
reports plain results.

Features:
- Scan processing: student check, token redemption, enrollment check
- Monotonic status upgrade (absent < late < present, excused is final)
- Race-safe record upsert for repeated scans by the same student
- Present/late attendance count for presenter polling
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from qr_attendance.modules.errors import (
    DuplicateRecordError, NotFoundError, StorageError, ValidationError
)
from qr_attendance.modules.models import (
    AttendanceRecord, STATUS_ABSENT, STATUS_EXCUSED, STATUS_EXPIRED,
    STATUS_LATE, STATUS_PRESENT, to_db_timestamp, utc_now
)

STATUS_RANK = {
    STATUS_ABSENT: 0,
    STATUS_LATE: 1,
    STATUS_PRESENT: 2,
}


def should_upgrade(existing_status: Optional[str], new_status: str) -> bool:
    """
    Whether a scan-derived status may replace an existing record's status.

    Only strict improvements count. Excused records are never touched by a
    scan and expired classifications never write anything.
    """
    if new_status not in (STATUS_PRESENT, STATUS_LATE):
        return False
    if existing_status is None:
        return True
    if existing_status == STATUS_EXCUSED:
        return False
    return STATUS_RANK[new_status] > STATUS_RANK.get(existing_status, STATUS_RANK[STATUS_PRESENT])


@dataclass
class ScanOutcome:
    """Result of processing one attendance scan."""
    success: bool
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    http_status: int = 200
    record: Optional[AttendanceRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {'success': True, 'status': self.status, 'message': self.message}
        return {'success': False, 'error': self.error}


class AttendanceManager:
    """
    Attendance marking for QR scans.
    Coordinates the token redeemer, the student manager and the attendance
    records table.
    """

    def __init__(self, database_manager, redeemer, student_manager,
                 clock: Callable[[], datetime] = utc_now, max_retries: int = 3):
        """
        Initialize the attendance manager.

        Args:
            database_manager: Database manager instance
            redeemer: TokenRedeemer used to consume scanned tokens
            student_manager: StudentManager used for student and enrollment checks
            clock: Callable returning the current aware UTC datetime
            max_retries (int): Attempts at the record upsert before giving up
        """
        self.db = database_manager
        self.redeemer = redeemer
        self.students = student_manager
        self.clock = clock
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)

    async def mark_attendance(self, token_value: str, student_id) -> ScanOutcome:
        """
        Process a QR scan for a student.

        Args:
            token_value (str): Token decoded from the QR code or typed in
            student_id: Database id of the scanning student

        Returns:
            ScanOutcome: Outcome with the resulting status or an error message
        """
        try:
            if not token_value or not str(token_value).strip():
                raise ValidationError('Token is required')
            if student_id is None or str(student_id).strip() == '':
                raise ValidationError('Student ID is required')

            student = await self.students.get_student(student_id)
            if not student:
                raise NotFoundError('Student not found')

            redemption = await self.redeemer.redeem(token_value)
            # One message for every rejected token, closed sessions included
            if not redemption.ok or redemption.session is None:
                return self._reject('Invalid or expired token', 'invalid_token', 400)

            classification = redemption.classification
            class_id = redemption.session.class_id

            if classification == STATUS_EXPIRED:
                return self._reject('Attendance window has closed', 'window_closed', 400)

            if not await self.students.is_actively_enrolled(student['id'], class_id):
                self.logger.warning(f"Student {student['id']} scanned for class {class_id} without enrollment")
                return self._reject('Student not enrolled in this course', 'not_enrolled', 403)

            return await self._apply_status(student['id'], class_id, classification)

        except ValidationError as e:
            return self._reject(str(e), 'validation_error', 400)
        except NotFoundError as e:
            return self._reject(str(e), 'not_found', 404)
        except StorageError as e:
            self.logger.error(f"Attendance scan processing failed: {str(e)}")
            return self._reject('Failed to mark attendance', 'database_error', 500)

    def _reject(self, error: str, error_type: str, http_status: int) -> ScanOutcome:
        return ScanOutcome(success=False, error=error, error_type=error_type, http_status=http_status)

    async def _apply_status(self, student_id, class_id, new_status: str) -> ScanOutcome:
        """
        Create or upgrade the (student, class) record.

        Concurrent scans by the same student are resolved by the unique
        (student, class) constraint and a compare-and-swap on the previous
        status; the loser re-reads the record and applies the rule again.
        """
        for _ in range(self.max_retries):
            existing = await self.get_record(student_id, class_id, raise_errors=True)

            if existing is None:
                try:
                    record = await self._insert_record(student_id, class_id, new_status)
                except DuplicateRecordError:
                    self.logger.info(f"Concurrent insert for student {student_id}, class {class_id}; retrying")
                    continue
                self.logger.info(f"Attendance marked: student {student_id}, class {class_id}, status {new_status}")
                return ScanOutcome(success=True, status=new_status,
                                   message=f"Attendance marked as {new_status}", record=record)

            if not should_upgrade(existing.status, new_status):
                return ScanOutcome(success=True, status=existing.status,
                                   message=f"Attendance already marked as {existing.status}",
                                   record=existing)

            record = await self._update_record(existing, new_status)
            if record is None:
                self.logger.info(f"Record {existing.id} changed during update; retrying")
                continue
            self.logger.info(f"Attendance updated: student {student_id}, class {class_id}, "
                             f"{existing.status} -> {new_status}")
            return ScanOutcome(success=True, status=new_status,
                               message=f"Attendance updated to {new_status}", record=record)

        self.logger.error(f"Gave up updating attendance for student {student_id}, class {class_id}")
        return self._reject('Failed to update attendance', 'concurrency_conflict', 500)

    async def _insert_record(self, student_id, class_id, status: str) -> AttendanceRecord:
        marked_at = self.clock()
        notes = f"Marked via QR code scan - {status}"
        record_id = await self.db.execute(
            """INSERT INTO attendance_records (student_id, class_id, status, marked_at, notes)
               VALUES (?, ?, ?, ?, ?)""",
            (student_id, class_id, status, to_db_timestamp(marked_at), notes)
        )
        return AttendanceRecord(record_id, student_id, class_id, status, marked_at, notes)

    async def _update_record(self, existing: AttendanceRecord, status: str) -> Optional[AttendanceRecord]:
        marked_at = self.clock()
        notes = f"Updated via QR code scan - {status}"
        updated = await self.db.execute(
            """UPDATE attendance_records
               SET status = ?, marked_at = ?, notes = ?, updated_at = CURRENT_TIMESTAMP
               WHERE id = ? AND status = ?""",
            (status, to_db_timestamp(marked_at), notes, existing.id, existing.status)
        )
        if updated != 1:
            return None
        return AttendanceRecord(existing.id, existing.student_id, existing.class_id,
                                status, marked_at, notes)

    async def get_record(self, student_id, class_id,
                         raise_errors: bool = False) -> Optional[AttendanceRecord]:
        """
        Get the attendance record of a student for a class.

        Args:
            student_id: Student database id
            class_id: Class id
            raise_errors (bool): Propagate StorageError instead of returning None

        Returns:
            AttendanceRecord: The record or None
        """
        try:
            row = await self.db.fetch_one(
                "SELECT * FROM attendance_records WHERE student_id = ? AND class_id = ?",
                (student_id, class_id)
            )
        except StorageError as e:
            if raise_errors:
                raise
            self.logger.error(f"Failed to get attendance record: {str(e)}")
            return None

        return AttendanceRecord.from_row(row) if row else None

    async def get_attendance_count(self, class_id) -> Optional[int]:
        """
        Count present and late records of a class.

        Returns:
            int: The count, or None if the store was unavailable

        Raises:
            ValidationError: If class_id is empty
        """
        if class_id is None or str(class_id).strip() == '':
            raise ValidationError('Class ID is required')

        try:
            row = await self.db.fetch_one(
                """SELECT COUNT(*) AS count FROM attendance_records
                   WHERE class_id = ? AND status IN (?, ?)""",
                (class_id, STATUS_PRESENT, STATUS_LATE)
            )
        except StorageError as e:
            self.logger.error(f"Failed to get attendance count for class {class_id}: {str(e)}")
            return None

        return row['count'] if row else 0
