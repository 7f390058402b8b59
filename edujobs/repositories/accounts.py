"""Repository for users, memberships and centers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class DeletionCandidate:
    """State of a user awaiting deletion."""

    id: str
    email: Optional[str]
    name: Optional[str]
    preferred_language: Optional[str]
    deletion_requested_at: Optional[datetime]


class AccountsRepository:
    """Users, center memberships and identity links."""

    def __init__(self, pool):
        self.pool = pool

    async def get_center_name(self, center_id: str) -> Optional[str]:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT name FROM centers WHERE id = $1", center_id)

    async def existing_member_emails(self, center_id: str, emails: list[str]) -> set[str]:
        """Lower-cased emails that already have a membership in the center."""
        query = """
            SELECT lower(u.email) AS email
            FROM users u
            JOIN center_memberships m ON m.user_id = u.id
            WHERE m.center_id = $1 AND lower(u.email) = ANY($2::text[])
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, center_id, [e.lower() for e in emails])
        return {r["email"] for r in rows}

    async def create_invited_member(
        self, center_id: str, email: str, name: Optional[str], role: str
    ) -> str:
        """Create the user if missing and an INVITED membership, atomically.

        Returns the user id.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                user = await conn.fetchrow(
                    "SELECT id, name FROM users WHERE lower(email) = lower($1) FOR UPDATE",
                    email,
                )
                if user is None:
                    user_id = await conn.fetchval(
                        """
                        INSERT INTO users (id, email, name)
                        VALUES (gen_random_uuid()::text, $1, $2)
                        RETURNING id
                        """,
                        email,
                        name,
                    )
                else:
                    user_id = user["id"]
                    if not user["name"] and name:
                        await conn.execute(
                            "UPDATE users SET name = $2 WHERE id = $1", user_id, name
                        )
                await conn.execute(
                    """
                    INSERT INTO center_memberships (id, center_id, user_id, role, status)
                    VALUES (gen_random_uuid()::text, $1, $2, $3, 'INVITED')
                    """,
                    center_id,
                    user_id,
                    role,
                )
        return user_id

    async def get_deletion_candidate(self, user_id: str) -> Optional[DeletionCandidate]:
        query = """
            SELECT id, email, name, preferred_language, deletion_requested_at
            FROM users WHERE id = $1
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, user_id)
        if row is None:
            return None
        return DeletionCandidate(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            preferred_language=row["preferred_language"],
            deletion_requested_at=row["deletion_requested_at"],
        )

    async def unassign_teacher(self, user_id: str) -> int:
        """Detach the user from classes they teach. Returns the class count."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "UPDATE classes SET teacher_id = NULL WHERE teacher_id = $1", user_id
            )
        return int(result.split()[-1])

    async def get_identity_uids(self, user_id: str, provider: str = "FIREBASE") -> list[str]:
        query = """
            SELECT provider_user_id FROM auth_accounts
            WHERE user_id = $1 AND provider = $2
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, user_id, provider)
        return [r["provider_user_id"] for r in rows]

    async def delete_user_data(self, user_id: str) -> dict[str, int]:
        """Delete everything owned by the user in foreign-key order, in one transaction."""
        statements = [
            ("memberships", "DELETE FROM center_memberships WHERE user_id = $1"),
            ("auth_accounts", "DELETE FROM auth_accounts WHERE user_id = $1"),
            ("enrollments", "DELETE FROM class_students WHERE student_id = $1"),
            ("notifications", "DELETE FROM notifications WHERE user_id = $1"),
            ("users", "DELETE FROM users WHERE id = $1"),
        ]
        counts: dict[str, int] = {}
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for label, sql in statements:
                    result = await conn.execute(sql, user_id)
                    counts[label] = int(result.split()[-1])
        logger.info("user_data_deleted", user_id=user_id, **counts)
        return counts
