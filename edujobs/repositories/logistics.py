"""Repository for classes, sessions and schedule-email recipients."""

from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


class LogisticsRepository:
    def __init__(self, pool):
        self.pool = pool

    async def get_session(self, center_id: str, session_id: str) -> Optional[dict[str, Any]]:
        """Current session state with class and course names, or None if deleted."""
        query = """
            SELECT s.id, s.class_id, s.start_time, s.end_time, s.room_name,
                   c.name AS class_name, co.name AS course_name
            FROM class_sessions s
            JOIN classes c ON c.id = s.class_id
            JOIN courses co ON co.id = c.course_id
            WHERE s.id = $1 AND s.center_id = $2
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, session_id, center_id)
        if row is None:
            return None
        return {
            "id": row["id"],
            "class_id": row["class_id"],
            "start_time": row["start_time"].isoformat(),
            "end_time": row["end_time"].isoformat(),
            "room_name": row["room_name"],
            "class_name": row["class_name"],
            "course_name": row["course_name"],
        }

    async def get_class_info(self, center_id: str, class_id: str) -> dict[str, str]:
        query = """
            SELECT c.name AS class_name, co.name AS course_name
            FROM classes c JOIN courses co ON co.id = c.course_id
            WHERE c.id = $1 AND c.center_id = $2
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, class_id, center_id)
        return {
            "course_name": row["course_name"] if row else "Course",
            "class_name": row["class_name"] if row else "Class",
        }

    async def get_class_recipients(self, center_id: str, class_id: str) -> list[dict[str, Any]]:
        """Teacher and enrolled students who opted into schedule emails and have an address."""
        query = """
            SELECT u.id, u.email, u.name, u.preferred_language
            FROM classes c JOIN users u ON u.id = c.teacher_id
            WHERE c.id = $1 AND c.center_id = $2
              AND u.email_schedule_notifications AND u.email IS NOT NULL
            UNION ALL
            SELECT u.id, u.email, u.name, u.preferred_language
            FROM class_students cs
            JOIN classes c ON c.id = cs.class_id
            JOIN users u ON u.id = cs.student_id
            WHERE cs.class_id = $1 AND c.center_id = $2
              AND u.email_schedule_notifications AND u.email IS NOT NULL
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, class_id, center_id)
        return [dict(r) for r in rows]
