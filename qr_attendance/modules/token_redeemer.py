"""
Token Redeemer Module - QR Attendance Session Core

This module validates a scanned rotating token and consumes it. A token is
accepted at most once: the final step is a conditional update that only
flips the used flag if it is still unset, so two simultaneous scans of the
same token (a shared screenshot, a retried request) cannot both succeed.

A failed redemption never says why it failed. Unknown, used, expired and
raced tokens all produce the same result.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from qr_attendance.modules.errors import ConcurrencyConflict, StorageError, ValidationError
from qr_attendance.modules.models import (
    AttendanceSession, STATUS_EXPIRED, from_db_timestamp, utc_now
)
from qr_attendance.modules.time_windows import TimeWindowClassifier


@dataclass
class RedemptionResult:
    """Outcome of one redemption attempt."""
    ok: bool
    session: Optional[AttendanceSession] = None
    classification: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'session': self.session.to_dict() if self.session else None,
            'classification': self.classification,
        }


class TokenRedeemer:
    """
    Redeems rotating tokens against their session's time windows.
    """

    def __init__(self, database_manager, classifier: Optional[TimeWindowClassifier] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.db = database_manager
        self.classifier = classifier or TimeWindowClassifier()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def redeem(self, token_value: str) -> RedemptionResult:
        """
        Validate a token and consume it.

        Args:
            token_value (str): Token string decoded from the QR code

        Returns:
            RedemptionResult: ok with the session and classification when the
            token was claimed; not ok otherwise, with classification
            "expired" when the session itself is over

        Raises:
            ValidationError: If token_value is empty
        """
        if not token_value or not str(token_value).strip():
            raise ValidationError('Token is required')
        token_value = str(token_value).strip()

        try:
            row = await self._find_unused_token(token_value)
        except StorageError as e:
            self.logger.error(f"Error looking up token {token_value[:8]}...: {str(e)}")
            return RedemptionResult(ok=False)

        if row is None:
            self.logger.warning(f"Rejected unknown or used token {token_value[:8]}...")
            return RedemptionResult(ok=False)

        now = self.clock()
        if now > from_db_timestamp(row['expires_at']):
            self.logger.warning(f"Rejected expired token {token_value[:8]}...")
            return RedemptionResult(ok=False)

        session = AttendanceSession.from_row(row, prefix='session_')
        if not session.is_active or now > session.end_time:
            self.logger.info(f"Rejected token for closed session {session.id}")
            return RedemptionResult(ok=False, classification=STATUS_EXPIRED)

        window = self.classifier.classify(session.start_time, now)

        try:
            await self._claim(row['id'])
        except ConcurrencyConflict:
            self.logger.warning(f"Token {token_value[:8]}... was claimed by a concurrent scan")
            return RedemptionResult(ok=False)
        except StorageError as e:
            self.logger.error(f"Error claiming token {token_value[:8]}...: {str(e)}")
            return RedemptionResult(ok=False)

        self.logger.info(f"Token redeemed for session {session.id}: {window.status}")
        return RedemptionResult(ok=True, session=session, classification=window.status)

    async def _find_unused_token(self, token_value: str) -> Optional[Dict[str, Any]]:
        return await self.db.fetch_one(
            """SELECT t.id, t.session_id, t.expires_at,
                      s.class_id AS session_class_id,
                      s.session_token AS session_session_token,
                      s.start_time AS session_start_time, s.end_time AS session_end_time,
                      s.is_active AS session_is_active, s.created_by AS session_created_by
               FROM qr_tokens t
               JOIN qr_attendance_sessions s ON t.session_id = s.id
               WHERE t.token = ? AND t.is_used = 0""",
            (token_value,)
        )

    async def _claim(self, token_id: int):
        """
        Flip the used flag only if no one else has.

        Raises:
            ConcurrencyConflict: If the token was already claimed
        """
        claimed = await self.db.execute(
            "UPDATE qr_tokens SET is_used = 1 WHERE id = ? AND is_used = 0",
            (token_id,)
        )
        if claimed != 1:
            raise ConcurrencyConflict(f"Token {token_id} already claimed")
