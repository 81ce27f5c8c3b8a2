"""
Time Window Module - QR Attendance Session Core

Classifies how long after a session started a claim arrives. A session is
split into a present window, a late window and everything after that,
which is expired.

Every function here is pure: callers pass both the session start and the
current time, so tests can use fixed clocks.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from qr_attendance.modules.models import (
    STATUS_PRESENT, STATUS_LATE, STATUS_EXPIRED, utc_now
)


@dataclass(frozen=True)
class AttendanceTimeConfig:
    """Window durations, configured per deployment."""
    present_window_minutes: float = 10
    late_window_minutes: float = 20
    total_session_minutes: float = 20

    @classmethod
    def from_mapping(cls, settings) -> 'AttendanceTimeConfig':
        """Build from a Flask config or any mapping with the ATTENDANCE_* keys."""
        defaults = cls()
        return cls(
            present_window_minutes=settings.get(
                'ATTENDANCE_PRESENT_WINDOW_MINUTES', defaults.present_window_minutes),
            late_window_minutes=settings.get(
                'ATTENDANCE_LATE_WINDOW_MINUTES', defaults.late_window_minutes),
            total_session_minutes=settings.get(
                'ATTENDANCE_TOTAL_SESSION_MINUTES', defaults.total_session_minutes),
        )


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    status: str
    label: str


@dataclass(frozen=True)
class WindowStatus:
    """Classification of one instant within a session."""
    status: str
    time_remaining_seconds: int
    window_label: str
    can_mark_attendance: bool


class TimeWindowClassifier:
    """
    Maps elapsed time since session start onto present/late/expired.

    A claim at exactly the present boundary still counts as present, and a
    claim at exactly the late boundary still counts as late. Anything past
    the total session length is expired even if the late window is longer.
    """

    def __init__(self, config: Optional[AttendanceTimeConfig] = None):
        self.config = config or AttendanceTimeConfig()

    @property
    def session_duration(self) -> timedelta:
        return timedelta(minutes=self.config.total_session_minutes)

    def session_end(self, session_start: datetime) -> datetime:
        return session_start + self.session_duration

    def get_time_windows(self, session_start: datetime) -> List[TimeWindow]:
        """
        Calculate the labelled windows of a session.

        Args:
            session_start (datetime): When the session started

        Returns:
            List[TimeWindow]: Present, late and expired windows in order
        """
        present_end = session_start + timedelta(minutes=self.config.present_window_minutes)
        session_end = self.session_end(session_start)
        late_end = min(session_start + timedelta(minutes=self.config.late_window_minutes), session_end)

        return [
            TimeWindow(session_start, present_end, STATUS_PRESENT, 'Present Window'),
            TimeWindow(present_end, late_end, STATUS_LATE, 'Late Window'),
            TimeWindow(late_end, session_end, STATUS_EXPIRED, 'Expired'),
        ]

    def classify(self, session_start: datetime,
                 current_time: Optional[datetime] = None) -> WindowStatus:
        """
        Classify the current time against a session's windows.

        Args:
            session_start (datetime): When the session started
            current_time (datetime): Instant to classify, defaults to now

        Returns:
            WindowStatus: Status, seconds left in the current window, window
            label and whether attendance can still be marked
        """
        if current_time is None:
            current_time = utc_now()

        # Clock skew can put the claim slightly before the start
        elapsed = max(current_time - session_start, timedelta(0))
        present_limit = timedelta(minutes=self.config.present_window_minutes)
        late_limit = min(timedelta(minutes=self.config.late_window_minutes), self.session_duration)

        if elapsed > self.session_duration:
            return WindowStatus(STATUS_EXPIRED, 0, 'Session Ended', False)

        if elapsed <= present_limit:
            status, boundary, label = STATUS_PRESENT, present_limit, 'Present Window'
        elif elapsed <= late_limit:
            status, boundary, label = STATUS_LATE, late_limit, 'Late Window'
        else:
            return WindowStatus(STATUS_EXPIRED, 0, 'Session Ended', False)

        remaining = max(0, math.floor((boundary - elapsed).total_seconds()))
        return WindowStatus(status, remaining, label, True)

    def is_session_active(self, session_start: datetime,
                          current_time: Optional[datetime] = None) -> bool:
        if current_time is None:
            current_time = utc_now()
        return current_time < self.session_end(session_start)

    def get_session_progress(self, session_start: datetime,
                             current_time: Optional[datetime] = None) -> float:
        """Percentage of the session that has elapsed, clamped to 0-100."""
        if current_time is None:
            current_time = utc_now()
        total = self.session_duration.total_seconds()
        if total <= 0:
            return 100.0
        elapsed = (current_time - session_start).total_seconds()
        return min(100.0, max(0.0, elapsed / total * 100))

    @staticmethod
    def format_time_remaining(seconds: int) -> str:
        """Format seconds as M:SS."""
        minutes, secs = divmod(max(0, int(seconds)), 60)
        return f"{minutes}:{secs:02d}"

    def validate_attendance_time(self, session_start: datetime,
                                 current_time: Optional[datetime] = None) -> Tuple[bool, str, Optional[str]]:
        """
        Check whether attendance can be marked right now.

        Returns:
            Tuple[bool, str, Optional[str]]: (can_mark, status, reason)
        """
        window = self.classify(session_start, current_time)
        if not window.can_mark_attendance:
            return False, STATUS_EXPIRED, 'Attendance window has closed'
        return True, window.status, None
