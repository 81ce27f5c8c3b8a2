"""
Session Manager Module - QR Attendance Session Core

This module owns the lifecycle of QR attendance sessions: a presenter opens
a session for a class, the session stays claimable until it is ended or
its end time passes, and presenters can look up the session currently
running for a class.

A session's end time is fixed at creation (start plus the total session
length). Expiry is checked whenever a session is read or a token is
redeemed; nothing sweeps sessions in the background.
"""

import logging
import secrets
from typing import Callable, Optional
from datetime import datetime

from qr_attendance.modules.errors import StorageError, ValidationError
from qr_attendance.modules.models import (
    AttendanceSession, to_db_timestamp, utc_now
)
from qr_attendance.modules.time_windows import TimeWindowClassifier


class SessionManager:
    """
    Creates, looks up and ends attendance sessions.

    Storage failures never escape this class: lookups return None and
    ending a session returns False.
    """

    def __init__(self, database_manager, classifier: Optional[TimeWindowClassifier] = None,
                 clock: Callable[[], datetime] = utc_now, secret_bytes: int = 32):
        """
        Initialize the session manager.

        Args:
            database_manager: Database manager instance
            classifier: Classifier supplying the total session length
            clock: Callable returning the current aware UTC datetime
            secret_bytes (int): Entropy of the per-session audit secret
        """
        self.db = database_manager
        self.classifier = classifier or TimeWindowClassifier()
        self.clock = clock
        self.secret_bytes = secret_bytes
        self.logger = logging.getLogger(__name__)

    async def create_session(self, class_id, created_by=None) -> Optional[AttendanceSession]:
        """
        Open a new attendance session for a class.

        This does not look for a session that is already running; callers
        check get_active_session first.

        Args:
            class_id: Class the session belongs to
            created_by: Presenter who opened the session

        Returns:
            AttendanceSession: The created session, or None if it could not be stored

        Raises:
            ValidationError: If class_id is empty
        """
        if class_id is None or str(class_id).strip() == '':
            raise ValidationError('Class ID is required')

        start_time = self.clock()
        end_time = self.classifier.session_end(start_time)
        session_token = secrets.token_hex(self.secret_bytes)

        try:
            session_id = await self.db.execute(
                """INSERT INTO qr_attendance_sessions
                   (class_id, session_token, start_time, end_time, created_by, is_active)
                   VALUES (?, ?, ?, ?, ?, 1)""",
                (class_id, session_token, to_db_timestamp(start_time),
                 to_db_timestamp(end_time), created_by)
            )
        except StorageError as e:
            self.logger.error(f"Error creating QR session for class {class_id}: {str(e)}")
            return None

        self.logger.info(f"QR session {session_id} created for class {class_id} by {created_by}")

        # Read back so ids carry the column types the store assigned
        stored = await self.get_session(session_id)
        if stored is not None:
            return stored
        return AttendanceSession(
            id=session_id,
            class_id=class_id,
            session_token=session_token,
            start_time=start_time,
            end_time=end_time,
            is_active=True,
            created_by=created_by,
        )

    async def get_active_session(self, class_id) -> Optional[AttendanceSession]:
        """
        Get the most recent session of a class that is active and not past its end.

        Args:
            class_id: Class to look up

        Returns:
            AttendanceSession: The running session or None
        """
        try:
            row = await self.db.fetch_one(
                """SELECT * FROM qr_attendance_sessions
                   WHERE class_id = ? AND is_active = 1 AND end_time > ?
                   ORDER BY start_time DESC, id DESC
                   LIMIT 1""",
                (class_id, to_db_timestamp(self.clock()))
            )
        except StorageError as e:
            self.logger.error(f"Error getting active session for class {class_id}: {str(e)}")
            return None

        return AttendanceSession.from_row(row) if row else None

    async def get_session(self, session_id) -> Optional[AttendanceSession]:
        """Get a session by id regardless of its state, or None."""
        try:
            row = await self.db.fetch_one(
                "SELECT * FROM qr_attendance_sessions WHERE id = ?",
                (session_id,)
            )
        except StorageError as e:
            self.logger.error(f"Error getting session {session_id}: {str(e)}")
            return None

        return AttendanceSession.from_row(row) if row else None

    async def end_session(self, session_id) -> bool:
        """
        Mark a session inactive. Ending an inactive or unknown session is a no-op.

        Returns:
            bool: False only when the store could not be updated
        """
        try:
            updated = await self.db.execute(
                "UPDATE qr_attendance_sessions SET is_active = 0 WHERE id = ?",
                (session_id,)
            )
        except StorageError as e:
            self.logger.error(f"Error ending session {session_id}: {str(e)}")
            return False

        if updated:
            self.logger.info(f"QR session {session_id} ended")
        return True

    def is_claimable(self, session: AttendanceSession, now: Optional[datetime] = None) -> bool:
        """Whether a session is active and its end time has not passed."""
        if now is None:
            now = self.clock()
        return session.is_active and now <= session.end_time
