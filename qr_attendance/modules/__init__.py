# QR Attendance Session Core - Modules Package
"""
Core modules of the rotating QR attendance session service.

- database_manager: SQLite storage for sessions, tokens and attendance records
- time_windows: present/late/expired classification of elapsed session time
- session_manager: attendance session lifecycle
- token_issuer: rotating token issuance, expiry purge and rotation scheduling
- token_redeemer: single-use token redemption
- attendance_manager: scan processing and attendance record upgrades
- student_manager: student and enrollment lookups
- qr_generator: QR code rendering of rotating tokens
"""
