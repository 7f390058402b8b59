#!/usr/bin/env python3
"""Apply the run store schema: function_runs and function_steps tables."""
import asyncio
import asyncpg
import os

SCHEMA = """
CREATE TABLE IF NOT EXISTS function_runs (
    id TEXT PRIMARY KEY,
    function_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    event JSONB NOT NULL,
    status TEXT NOT NULL DEFAULT 'scheduled'
        CHECK (status IN ('scheduled', 'running', 'completed', 'failed', 'cancelled')),
    attempt INTEGER NOT NULL DEFAULT 0,
    concurrency_key TEXT,
    run_after TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    locked_by TEXT,
    locked_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    output JSONB,
    error TEXT,
    UNIQUE (function_id, event_id)
);

CREATE INDEX IF NOT EXISTS idx_function_runs_due
    ON function_runs(run_after)
    WHERE status IN ('scheduled', 'running');
CREATE INDEX IF NOT EXISTS idx_function_runs_concurrency
    ON function_runs(concurrency_key)
    WHERE status = 'running';
CREATE INDEX IF NOT EXISTS idx_function_runs_function ON function_runs(function_id);
CREATE INDEX IF NOT EXISTS idx_function_runs_created ON function_runs(created_at DESC);

CREATE TABLE IF NOT EXISTS function_steps (
    run_id TEXT NOT NULL REFERENCES function_runs(id) ON DELETE CASCADE,
    step_name TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending', 'succeeded', 'failed')),
    attempts INTEGER NOT NULL DEFAULT 0,
    result JSONB,
    error TEXT,
    wake_at TIMESTAMPTZ,
    position INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (run_id, step_name)
);
"""


async def main():
    conn = await asyncpg.connect(os.environ["DATABASE_URL"], statement_cache_size=0)
    try:
        await conn.execute(SCHEMA)
        print("Run store schema applied")

        count = await conn.fetchval(
            """
            SELECT COUNT(*) FROM information_schema.tables
            WHERE table_name IN ('function_runs', 'function_steps')
            """
        )
        print(f"{count} run store tables present")
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(main())
