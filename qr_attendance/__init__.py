# QR Attendance Session Core - Package
"""
Rotating QR code attendance sessions.

A presenter opens a session for a class and displays tokens that rotate
every few seconds; a student redeems one token to be marked present or
late. build_services() wires the components together once per process.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from .modules.database_manager import DatabaseManager
from .modules.time_windows import AttendanceTimeConfig, TimeWindowClassifier
from .modules.session_manager import SessionManager
from .modules.token_issuer import TokenIssuer, TokenRotator
from .modules.token_redeemer import TokenRedeemer, RedemptionResult
from .modules.attendance_manager import AttendanceManager, ScanOutcome, should_upgrade
from .modules.student_manager import StudentManager
from .modules.qr_generator import QRGenerator
from .modules.models import utc_now

__version__ = "1.0.0"
__description__ = "Rotating QR code attendance sessions with single-use tokens"

__all__ = [
    'AttendanceServices',
    'build_services',
    'DatabaseManager',
    'AttendanceTimeConfig',
    'TimeWindowClassifier',
    'SessionManager',
    'TokenIssuer',
    'TokenRotator',
    'TokenRedeemer',
    'RedemptionResult',
    'AttendanceManager',
    'ScanOutcome',
    'should_upgrade',
    'StudentManager',
    'QRGenerator',
]


@dataclass
class AttendanceServices:
    """The attendance core components of one process."""
    db: DatabaseManager
    classifier: TimeWindowClassifier
    sessions: SessionManager
    issuer: TokenIssuer
    rotator: TokenRotator
    redeemer: TokenRedeemer
    students: StudentManager
    attendance: AttendanceManager
    qr_generator: QRGenerator


def build_services(settings: Mapping, clock: Callable[[], datetime] = utc_now) -> AttendanceServices:
    """
    Construct every component from a configuration mapping.

    Args:
        settings: Flask config or any mapping with the config.py keys
        clock: Callable returning the current aware UTC datetime

    Returns:
        AttendanceServices: Wired components sharing one database manager
    """
    db = DatabaseManager(
        settings['DATABASE_PATH'],
        timeout=settings.get('DATABASE_TIMEOUT', 30.0),
        journal_mode=settings.get('DATABASE_JOURNAL_MODE', 'WAL'),
    )
    classifier = TimeWindowClassifier(AttendanceTimeConfig.from_mapping(settings))
    sessions = SessionManager(db, classifier, clock=clock)
    issuer = TokenIssuer(
        db,
        lifetime_seconds=settings.get('QR_TOKEN_LIFETIME_SECONDS', 5),
        entropy_bytes=settings.get('QR_TOKEN_ENTROPY_BYTES', 32),
        clock=clock,
    )
    rotator = TokenRotator(
        issuer, sessions,
        interval_seconds=settings.get('QR_TOKEN_ROTATION_INTERVAL_SECONDS', 5),
    )
    redeemer = TokenRedeemer(db, classifier, clock=clock)
    students = StudentManager(db)
    attendance = AttendanceManager(
        db, redeemer, students,
        clock=clock,
        max_retries=settings.get('ATTENDANCE_UPSERT_MAX_RETRIES', 3),
    )
    qr_generator = QRGenerator(
        box_size=settings.get('QR_CODE_SIZE', 10),
        border=settings.get('QR_CODE_BORDER', 4),
    )
    return AttendanceServices(db, classifier, sessions, issuer, rotator,
                              redeemer, students, attendance, qr_generator)
