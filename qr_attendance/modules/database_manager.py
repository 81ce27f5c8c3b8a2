"""
Database Manager Module - QR Attendance Session Core

This module handles all database operations for the attendance core.
It owns the SQLite connection handling and schema creation, and exposes
both a synchronous query interface and an asynchronous one for the
session, token and attendance components.

Features:
- SQLite connection management (one connection per thread)
- Idempotent schema creation
- Query and update execution
- Transaction support
- Async wrappers that run storage calls off the event loop
- Translation of sqlite3 failures into StorageError
"""

import asyncio
import sqlite3
import logging
from contextlib import contextmanager
import threading
import os

from qr_attendance.modules.errors import StorageError, DuplicateRecordError


class DatabaseManager:
    """
    Database management class for the attendance core.
    Handles connection management, schema creation and data manipulation
    with proper error handling and transaction support.
    """

    def __init__(self, db_path, timeout=30.0, journal_mode='WAL'):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database
            journal_mode (str): SQLite journal mode
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # Initialize database schema if it doesn't exist
        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=self.timeout
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all necessary tables for the attendance core.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute(f"PRAGMA journal_mode = {self.journal_mode}")

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS courses (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        course_code VARCHAR(20) UNIQUE NOT NULL,
                        course_name VARCHAR(100) NOT NULL,
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # A class is one meeting of a course
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS classes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        course_id INTEGER NOT NULL,
                        class_name VARCHAR(100) NOT NULL,
                        class_date DATE,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (course_id) REFERENCES courses(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS students (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_number VARCHAR(20) UNIQUE NOT NULL,
                        first_name VARCHAR(50) NOT NULL,
                        last_name VARCHAR(50) NOT NULL,
                        email VARCHAR(100) UNIQUE,
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS student_enrollments (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        course_id INTEGER NOT NULL,
                        is_active BOOLEAN DEFAULT 1,
                        enrolled_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES students(id),
                        FOREIGN KEY (course_id) REFERENCES courses(id),
                        UNIQUE(student_id, course_id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS qr_attendance_sessions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        class_id INTEGER NOT NULL,
                        session_token VARCHAR(128) NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        created_by VARCHAR(100),
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (class_id) REFERENCES classes(id)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS qr_tokens (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id INTEGER NOT NULL,
                        token VARCHAR(128) UNIQUE NOT NULL,
                        expires_at TEXT NOT NULL,
                        is_used BOOLEAN DEFAULT 0,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (session_id) REFERENCES qr_attendance_sessions(id)
                            ON DELETE CASCADE
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance_records (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id INTEGER NOT NULL,
                        class_id INTEGER NOT NULL,
                        status VARCHAR(20) NOT NULL,
                        marked_at TEXT,
                        notes TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (student_id) REFERENCES students(id),
                        FOREIGN KEY (class_id) REFERENCES classes(id),
                        UNIQUE(student_id, class_id)
                    )
                """)

                # Create indexes for the lookups the core performs
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_class ON qr_attendance_sessions(class_id, is_active)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_tokens_expiry ON qr_tokens(expires_at)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_records_class ON attendance_records(class_id, status)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_enrollments_student ON student_enrollments(student_id)")

                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                if fetch_all:
                    results = cursor.fetchall()
                    return [dict(row) for row in results]
                else:
                    result = cursor.fetchone()
                    return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                conn.commit()

                # Return last inserted row ID for INSERT statements
                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                else:
                    return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        Run several statements on one connection as a single unit.
        Commits when the block finishes, rolls back and re-raises otherwise.

        Yields:
            sqlite3.Connection: The calling thread's connection
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    # Async interface used by the session, token and attendance components.
    # Each call runs in a worker thread with that thread's own connection.

    async def fetch_one(self, query, params=None):
        """Run a SELECT off the event loop and return the first row or None."""
        return await self._run(self.execute_query, query, params, False)

    async def fetch_all(self, query, params=None):
        """Run a SELECT off the event loop and return all rows."""
        return await self._run(self.execute_query, query, params, True)

    async def execute(self, query, params=None):
        """
        Run an INSERT, UPDATE or DELETE off the event loop.

        Returns:
            int: Last inserted row ID for INSERT, affected row count otherwise
        """
        return await self._run(self.execute_update, query, params)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.IntegrityError as e:
            if 'UNIQUE' in str(e).upper():
                raise DuplicateRecordError(str(e)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    def close_all_connections(self):
        """Close the calling thread's database connection."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except Exception as e:
            self.logger.error(f"Error closing connections: {str(e)}")
