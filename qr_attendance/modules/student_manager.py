"""
Student Manager Module - QR Attendance Session Core

Students, courses, classes and enrollments. These are maintained by the
CRUD side of the application; the attendance core only needs to resolve a
student and check that they are actively enrolled in the course a class
belongs to. The synchronous creation helpers exist for seeding and tests.
"""

import logging
from typing import Any, Dict, Optional

from qr_attendance.modules.errors import StorageError


class StudentManager:
    """
    Student and enrollment lookups for attendance marking.
    """

    def __init__(self, database_manager):
        """
        Initialize the student manager.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create_course(self, course_code: str, course_name: str) -> int:
        return self.db.execute_update(
            "INSERT INTO courses (course_code, course_name) VALUES (?, ?)",
            (course_code, course_name)
        )

    def create_class(self, course_id: int, class_name: str, class_date: Optional[str] = None) -> int:
        return self.db.execute_update(
            "INSERT INTO classes (course_id, class_name, class_date) VALUES (?, ?, ?)",
            (course_id, class_name, class_date)
        )

    def create_student(self, student_number: str, first_name: str, last_name: str,
                       email: Optional[str] = None, is_active: bool = True) -> int:
        student_id = self.db.execute_update(
            """INSERT INTO students (student_number, first_name, last_name, email, is_active)
               VALUES (?, ?, ?, ?, ?)""",
            (student_number, first_name, last_name, email, 1 if is_active else 0)
        )
        self.logger.info(f"Student {student_number} created")
        return student_id

    def enroll_student(self, student_id: int, course_id: int, is_active: bool = True) -> int:
        """
        Enroll a student in a course, or update the active flag of an
        existing enrollment.

        Returns:
            int: Id of the enrollment row
        """
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO student_enrollments (student_id, course_id, is_active)
                   VALUES (?, ?, ?)
                   ON CONFLICT(student_id, course_id) DO UPDATE SET is_active = excluded.is_active""",
                (student_id, course_id, 1 if is_active else 0)
            )
            # lastrowid is not set when the conflict branch runs
            row = conn.execute(
                "SELECT id FROM student_enrollments WHERE student_id = ? AND course_id = ?",
                (student_id, course_id)
            ).fetchone()

        return row['id']

    async def get_student(self, student_id) -> Optional[Dict[str, Any]]:
        """
        Get an active student by database id.

        Returns:
            Dict[str, Any]: Student row or None
        """
        try:
            return await self.db.fetch_one(
                "SELECT * FROM students WHERE id = ? AND is_active = 1",
                (student_id,)
            )
        except StorageError as e:
            self.logger.error(f"Failed to get student {student_id}: {str(e)}")
            return None

    async def get_student_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.db.fetch_one(
                "SELECT * FROM students WHERE email = ? AND is_active = 1",
                (email,)
            )
        except StorageError as e:
            self.logger.error(f"Failed to get student by email: {str(e)}")
            return None

    async def is_actively_enrolled(self, student_id, class_id) -> bool:
        """
        Check that a student has an active enrollment in the course owning a class.

        Returns:
            bool: False when not enrolled, the class is unknown or the lookup failed
        """
        try:
            row = await self.db.fetch_one(
                """SELECT e.id FROM student_enrollments e
                   JOIN classes c ON c.course_id = e.course_id
                   WHERE e.student_id = ? AND c.id = ? AND e.is_active = 1""",
                (student_id, class_id)
            )
        except StorageError as e:
            self.logger.error(f"Failed to check enrollment of student {student_id}: {str(e)}")
            return False

        return row is not None
