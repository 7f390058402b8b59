"""PostgreSQL run store (function_runs / function_steps)."""

import hashlib
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from edujobs.core.resilience import with_db_retry
from edujobs.engine.models import Run, StepRecord
from edujobs.engine.store import RunStore
from edujobs.engine.types import ClaimResult, RunStatus, StepStatus

logger = structlog.get_logger(__name__)

_TERMINAL = [s.value for s in RunStatus if s.is_terminal]


def concurrency_lock_key(concurrency_key: str) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    h = hashlib.sha256(f"function_runs:{concurrency_key}".encode()).digest()[:8]
    return int.from_bytes(h, byteorder="big", signed=True)


def _dumps(value: Any) -> str:
    return json.dumps(value)


def _loads(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresRunStore(RunStore):
    """Run store backed by asyncpg. Every method is one transaction."""

    def __init__(self, pool):
        self._pool = pool

    async def _call(self, operation):
        return await with_db_retry(self._pool, operation)

    def _row_to_run(self, row) -> Run:
        return Run(
            id=row["id"],
            function_id=row["function_id"],
            event_id=row["event_id"],
            event=_loads(row["event"]) or {},
            status=RunStatus(row["status"]),
            attempt=row["attempt"],
            concurrency_key=row["concurrency_key"],
            run_after=row["run_after"],
            locked_by=row["locked_by"],
            locked_at=row["locked_at"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            output=_loads(row["output"]),
            error=row["error"],
        )

    def _row_to_step(self, row) -> StepRecord:
        return StepRecord(
            run_id=row["run_id"],
            step_name=row["step_name"],
            status=StepStatus(row["status"]),
            attempts=row["attempts"],
            result=_loads(row["result"]),
            error=row["error"],
            wake_at=row["wake_at"],
            position=row["position"],
            updated_at=row["updated_at"],
        )

    async def create_run(self, function_id, event, concurrency_key=None):
        query = """
            INSERT INTO function_runs (id, function_id, event_id, event, concurrency_key)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            ON CONFLICT (function_id, event_id) DO NOTHING
            RETURNING *
        """

        async def op(conn):
            row = await conn.fetchrow(
                query,
                uuid.uuid4().hex,
                function_id,
                event["id"],
                _dumps(event),
                concurrency_key,
            )
            if row is not None:
                return row, True
            existing = await conn.fetchrow(
                "SELECT * FROM function_runs WHERE function_id = $1 AND event_id = $2",
                function_id,
                event["id"],
            )
            return existing, False

        row, created = await self._call(op)
        return self._row_to_run(row), created

    async def get_run(self, run_id):
        row = await self._call(
            lambda conn: conn.fetchrow("SELECT * FROM function_runs WHERE id = $1", run_id)
        )
        return self._row_to_run(row) if row else None

    async def get_status(self, run_id):
        status = await self._call(
            lambda conn: conn.fetchval(
                "SELECT status FROM function_runs WHERE id = $1", run_id
            )
        )
        return RunStatus(status) if status else None

    async def get_run_for_event(self, function_id, event_id):
        row = await self._call(
            lambda conn: conn.fetchrow(
                "SELECT * FROM function_runs WHERE function_id = $1 AND event_id = $2",
                function_id,
                event_id,
            )
        )
        return self._row_to_run(row) if row else None

    async def list_runs(self, function_id=None, status=None, limit=50, offset=0):
        conditions = []
        params: list[Any] = []
        param_idx = 1

        if function_id:
            conditions.append(f"function_id = ${param_idx}")
            params.append(function_id)
            param_idx += 1

        if status:
            conditions.append(f"status = ${param_idx}")
            params.append(RunStatus(status).value)
            param_idx += 1

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        query = f"""
            SELECT * FROM function_runs
            {where_clause}
            ORDER BY created_at DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        count_query = f"SELECT COUNT(*) AS total FROM function_runs {where_clause}"

        async def op(conn):
            rows = await conn.fetch(query, *params, limit, offset)
            count_row = await conn.fetchrow(count_query, *params)
            return rows, count_row

        rows, count_row = await self._call(op)
        total = count_row["total"] if count_row else 0
        return [self._row_to_run(r) for r in rows], total

    async def acquire_run(self, run_id, worker_id, concurrency_limit, lock_timeout_s):
        async def op(conn):
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT * FROM function_runs WHERE id = $1 FOR UPDATE", run_id
                )
                if row is None:
                    return ClaimResult.NOT_FOUND, None
                run = self._row_to_run(row)
                if run.status.is_terminal:
                    return ClaimResult.TERMINAL, run

                now = datetime.now(timezone.utc)
                if (
                    run.locked_by
                    and run.locked_at
                    and run.locked_at > now - timedelta(seconds=lock_timeout_s)
                ):
                    return ClaimResult.BUSY, None

                if concurrency_limit is not None:
                    scope = run.concurrency_key or run.function_id
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock($1)", concurrency_lock_key(scope)
                    )
                    # Sleeping or backing-off runs do not hold a slot
                    holding = await conn.fetchval(
                        """
                        SELECT COUNT(*) FROM function_runs
                        WHERE concurrency_key IS NOT DISTINCT FROM $1
                          AND function_id = $2
                          AND status = 'running'
                          AND id <> $3
                          AND (
                            (locked_by IS NOT NULL
                             AND locked_at > now() - make_interval(secs => $4))
                            OR run_after <= now()
                          )
                        """,
                        run.concurrency_key,
                        run.function_id,
                        run_id,
                        float(lock_timeout_s),
                    )
                    if holding >= concurrency_limit:
                        return ClaimResult.THROTTLED, None

                row = await conn.fetchrow(
                    """
                    UPDATE function_runs SET
                        status = 'running',
                        started_at = COALESCE(started_at, now()),
                        locked_by = $2,
                        locked_at = now()
                    WHERE id = $1
                    RETURNING *
                    """,
                    run_id,
                    worker_id,
                )
                return ClaimResult.ACQUIRED, self._row_to_run(row)

        claim, run = await self._call(op)
        if claim == ClaimResult.ACQUIRED:
            logger.debug("run_acquired", run_id=run_id, worker_id=worker_id)
        return claim, run

    async def release_run(self, run_id, worker_id, run_after):
        query = """
            UPDATE function_runs SET
                locked_by = NULL,
                locked_at = NULL,
                run_after = $3
            WHERE id = $1 AND locked_by = $2
        """
        await self._call(lambda conn: conn.execute(query, run_id, worker_id, run_after))

    async def defer_run(self, run_id, run_after):
        query = """
            UPDATE function_runs SET run_after = $2
            WHERE id = $1 AND status <> ALL($3::text[])
        """
        await self._call(lambda conn: conn.execute(query, run_id, run_after, _TERMINAL))

    async def finish_run(self, run_id, status, output=None, error=None):
        query = """
            UPDATE function_runs SET
                status = $2,
                output = $3::jsonb,
                error = $4,
                completed_at = now(),
                locked_by = NULL,
                locked_at = NULL
            WHERE id = $1 AND status <> ALL($5::text[])
            RETURNING *
        """

        async def op(conn):
            row = await conn.fetchrow(
                query, run_id, status.value, _dumps(output), error, _TERMINAL
            )
            if row is None:
                row = await conn.fetchrow("SELECT * FROM function_runs WHERE id = $1", run_id)
            return row

        row = await self._call(op)
        return self._row_to_run(row) if row else None

    async def cancel_matching(
        self, function_id, match_path, value, exclude_event_id, reason, event_ts=None
    ):
        query = """
            UPDATE function_runs SET
                status = 'cancelled',
                error = $5,
                completed_at = now()
            WHERE function_id = $1
              AND status <> ALL($6::text[])
              AND event #>> $2::text[] = $3
              AND event_id <> $4
              AND ($7::bigint IS NULL OR COALESCE((event->>'ts')::bigint, 0) <= $7)
            RETURNING id
        """
        rows = await self._call(
            lambda conn: conn.fetch(
                query,
                function_id,
                match_path.split("."),
                str(value),
                exclude_event_id,
                reason,
                _TERMINAL,
                event_ts,
            )
        )
        return [r["id"] for r in rows]

    async def increment_attempt(self, run_id):
        return await self._call(
            lambda conn: conn.fetchval(
                "UPDATE function_runs SET attempt = attempt + 1 WHERE id = $1 RETURNING attempt",
                run_id,
            )
        )

    async def get_steps(self, run_id):
        rows = await self._call(
            lambda conn: conn.fetch(
                "SELECT * FROM function_steps WHERE run_id = $1 ORDER BY position", run_id
            )
        )
        return {r["step_name"]: self._row_to_step(r) for r in rows}

    async def save_step(self, record):
        query = """
            INSERT INTO function_steps
                (run_id, step_name, status, attempts, result, error, wake_at, position)
            VALUES (
                $1, $2, $3, $4, $5::jsonb, $6, $7,
                (SELECT COUNT(*) FROM function_steps WHERE run_id = $1)
            )
            ON CONFLICT (run_id, step_name) DO UPDATE SET
                status = EXCLUDED.status,
                attempts = EXCLUDED.attempts,
                result = EXCLUDED.result,
                error = EXCLUDED.error,
                wake_at = EXCLUDED.wake_at,
                updated_at = now()
            WHERE function_steps.status <> 'succeeded'
            RETURNING *
        """

        async def op(conn):
            row = await conn.fetchrow(
                query,
                record.run_id,
                record.step_name,
                record.status.value,
                record.attempts,
                _dumps(record.result),
                record.error,
                record.wake_at,
            )
            if row is None:
                row = await conn.fetchrow(
                    "SELECT * FROM function_steps WHERE run_id = $1 AND step_name = $2",
                    record.run_id,
                    record.step_name,
                )
            return row

        return self._row_to_step(await self._call(op))

    async def due_runs(self, limit, lock_timeout_s):
        query = """
            SELECT id FROM function_runs
            WHERE status <> ALL($1::text[])
              AND run_after <= now()
              AND (locked_by IS NULL OR locked_at < now() - make_interval(secs => $2))
            ORDER BY run_after
            LIMIT $3
        """
        rows = await self._call(
            lambda conn: conn.fetch(query, _TERMINAL, float(lock_timeout_s), limit)
        )
        return [r["id"] for r in rows]

    async def reap_stale_locks(self, lock_timeout_s):
        query = """
            UPDATE function_runs SET
                locked_by = NULL,
                locked_at = NULL
            WHERE locked_by IS NOT NULL
              AND locked_at < now() - make_interval(secs => $1)
            RETURNING id
        """
        rows = await self._call(lambda conn: conn.fetch(query, float(lock_timeout_s)))
        count = len(rows)
        if count > 0:
            logger.warning("stale_run_locks_reaped", count=count)
        return count

    async def ping(self) -> bool:
        try:
            await self._call(lambda conn: conn.fetchval("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("run_store_ping_failed", error=str(e))
            return False
