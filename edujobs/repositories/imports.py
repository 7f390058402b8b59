"""Repository for CSV import logs and their rows."""

from dataclasses import dataclass
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ImportRow:
    id: str
    row_number: int
    email: str
    name: Optional[str]
    role: str

    @classmethod
    def from_row(cls, row) -> "ImportRow":
        return cls(
            id=row["id"],
            row_number=row["row_number"],
            email=row["email"],
            name=row["name"],
            role=row["role"],
        )


class ImportsRepository:
    def __init__(self, pool):
        self.pool = pool

    async def import_exists(self, import_id: str, center_id: str) -> bool:
        query = "SELECT 1 FROM csv_import_logs WHERE id = $1 AND center_id = $2"
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, import_id, center_id) is not None

    async def fetch_rows(
        self, import_id: str, row_ids: list[str], status: str
    ) -> list[ImportRow]:
        query = """
            SELECT id, row_number, email, name, role
            FROM csv_import_row_logs
            WHERE import_log_id = $1 AND id = ANY($2::text[]) AND status = $3
            ORDER BY row_number
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, import_id, row_ids, status)
        return [ImportRow.from_row(r) for r in rows]

    async def update_row_statuses(self, outcomes: list[dict]) -> int:
        """Persist per-row outcomes: ``{row_id, status, error}`` dicts."""
        if not outcomes:
            return 0
        async with self.pool.acquire() as conn:
            await conn.executemany(
                "UPDATE csv_import_row_logs SET status = $2, error_message = $3 WHERE id = $1",
                [(o["row_id"], o["status"], o.get("error")) for o in outcomes],
            )
        return len(outcomes)

    async def finalize(
        self, import_id: str, status: str, imported: int, failed: int
    ) -> None:
        query = """
            UPDATE csv_import_logs
            SET status = $2,
                imported_rows = imported_rows + $3,
                failed_rows = failed_rows + $4,
                completed_at = NOW()
            WHERE id = $1
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, import_id, status, imported, failed)
        logger.info(
            "import_finalized", import_id=import_id, status=status, imported=imported, failed=failed
        )
