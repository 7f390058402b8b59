"""Repository for email delivery logs and intervention logs."""

from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class NotificationsRepository:
    def __init__(self, pool):
        self.pool = pool

    async def log_email(
        self,
        *,
        recipient_id: Optional[str],
        center_id: str,
        email_type: str,
        status: str,
        subject: Optional[str] = None,
        error: Optional[str] = None,
        delivery_id: Optional[str] = None,
    ) -> None:
        query = """
            INSERT INTO email_logs
                (id, recipient_id, center_id, type, status, subject, error, delivery_id)
            VALUES (gen_random_uuid()::text, $1, $2, $3, $4, $5, $6, $7)
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query, recipient_id, center_id, email_type, status, subject, error, delivery_id
            )

    async def update_intervention(
        self, center_id: str, log_id: str, status: str, error: Optional[str] = None
    ) -> None:
        query = """
            UPDATE intervention_logs
            SET status = $3,
                error = $4,
                sent_at = CASE WHEN $3 = 'SENT' THEN NOW() ELSE sent_at END
            WHERE id = $1 AND center_id = $2
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, log_id, center_id, status, error)

    async def get_intervention_student(self, center_id: str, log_id: str) -> Optional[str]:
        query = "SELECT student_id FROM intervention_logs WHERE id = $1 AND center_id = $2"
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, log_id, center_id)
