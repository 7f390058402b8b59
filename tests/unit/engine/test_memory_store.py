"""Tests for the in-memory run store."""

from datetime import datetime, timedelta, timezone

import pytest

from edujobs.engine import ClaimResult, InMemoryRunStore, RunStatus, StepRecord, StepStatus


def event(event_id="e1", **data):
    return {"name": "a/b", "id": event_id, "data": data}


@pytest.fixture
def store():
    return InMemoryRunStore()


class TestCreateRun:
    @pytest.mark.asyncio
    async def test_same_event_same_function_is_deduplicated(self, store):
        first, created = await store.create_run("fn", event())
        second, again = await store.create_run("fn", event())

        assert created is True
        assert again is False
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_same_event_different_function(self, store):
        a, _ = await store.create_run("fn-a", event())
        b, created = await store.create_run("fn-b", event())

        assert created is True
        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_returned_run_is_a_copy(self, store):
        run, _ = await store.create_run("fn", event(user_id="u1"))
        run.event["data"]["user_id"] = "changed"

        stored = await store.get_run(run.id)
        assert stored.event["data"]["user_id"] == "u1"


class TestListRuns:
    @pytest.mark.asyncio
    async def test_filters_and_pagination(self, store):
        for i in range(5):
            await store.create_run("fn-a" if i % 2 == 0 else "fn-b", event(f"e{i}"))

        runs, total = await store.list_runs(function_id="fn-a", limit=2)

        assert total == 3
        assert len(runs) == 2
        assert all(r.function_id == "fn-a" for r in runs)

        page, _ = await store.list_runs(function_id="fn-a", limit=2, offset=2)
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_status_filter(self, store):
        run, _ = await store.create_run("fn", event("e1"))
        await store.create_run("fn", event("e2"))
        await store.finish_run(run.id, RunStatus.COMPLETED, output=1)

        runs, total = await store.list_runs(status=RunStatus.COMPLETED)

        assert total == 1
        assert runs[0].id == run.id


class TestAcquire:
    @pytest.mark.asyncio
    async def test_acquire_moves_to_running(self, store):
        run, _ = await store.create_run("fn", event())

        claim, acquired = await store.acquire_run(run.id, "w1", None, 900)

        assert claim == ClaimResult.ACQUIRED
        assert acquired.status == RunStatus.RUNNING
        assert acquired.started_at is not None

    @pytest.mark.asyncio
    async def test_locked_run_is_busy(self, store):
        run, _ = await store.create_run("fn", event())
        await store.acquire_run(run.id, "w1", None, 900)

        claim, _ = await store.acquire_run(run.id, "w2", None, 900)

        assert claim == ClaimResult.BUSY

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self, store):
        run, _ = await store.create_run("fn", event())
        await store.acquire_run(run.id, "w1", None, 900)

        claim, _ = await store.acquire_run(run.id, "w2", None, 0)

        assert claim == ClaimResult.ACQUIRED

    @pytest.mark.asyncio
    async def test_concurrency_limit_per_key(self, store):
        a, _ = await store.create_run("fn", event("e1"), concurrency_key="fn:u1")
        b, _ = await store.create_run("fn", event("e2"), concurrency_key="fn:u1")
        c, _ = await store.create_run("fn", event("e3"), concurrency_key="fn:u2")

        await store.acquire_run(a.id, "w", 1, 900)
        await store.release_run(a.id, "w", datetime.now(timezone.utc))

        assert (await store.acquire_run(b.id, "w", 1, 900))[0] == ClaimResult.THROTTLED
        assert (await store.acquire_run(c.id, "w", 1, 900))[0] == ClaimResult.ACQUIRED

        await store.finish_run(a.id, RunStatus.COMPLETED)
        assert (await store.acquire_run(b.id, "w", 1, 900))[0] == ClaimResult.ACQUIRED

    @pytest.mark.asyncio
    async def test_sleeping_run_does_not_hold_slot(self, store):
        a, _ = await store.create_run("fn", event("e1"), concurrency_key="fn:u1")
        b, _ = await store.create_run("fn", event("e2"), concurrency_key="fn:u1")
        wake_at = datetime.now(timezone.utc) + timedelta(days=7)

        await store.acquire_run(a.id, "w", 1, 900)
        await store.release_run(a.id, "w", wake_at)

        claim, _ = await store.acquire_run(b.id, "w", 1, 900)
        assert claim == ClaimResult.ACQUIRED
        await store.release_run(b.id, "w", datetime.now(timezone.utc))

        # b is between steps, so a waking up must wait for it
        assert (await store.acquire_run(a.id, "w", 1, 900))[0] == ClaimResult.THROTTLED

    @pytest.mark.asyncio
    async def test_terminal_and_missing(self, store):
        run, _ = await store.create_run("fn", event())
        await store.finish_run(run.id, RunStatus.FAILED, error="boom")

        claim, terminal = await store.acquire_run(run.id, "w", None, 900)
        assert claim == ClaimResult.TERMINAL
        assert terminal.error == "boom"

        claim, missing = await store.acquire_run("nope", "w", None, 900)
        assert claim == ClaimResult.NOT_FOUND
        assert missing is None


class TestFinishAndCancel:
    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, store):
        run, _ = await store.create_run("fn", event())
        await store.finish_run(run.id, RunStatus.CANCELLED, error="stop")

        again = await store.finish_run(run.id, RunStatus.COMPLETED, output="late")

        assert again.status == RunStatus.CANCELLED
        assert again.output is None

    @pytest.mark.asyncio
    async def test_cancel_matching_skips_triggering_event(self, store):
        old, _ = await store.create_run("fn", event("e1", session_id="s1"))
        other, _ = await store.create_run("fn", event("e2", session_id="s2"))
        new, _ = await store.create_run("fn", event("e3", session_id="s1"))

        cancelled = await store.cancel_matching(
            "fn", "data.session_id", "s1", exclude_event_id="e3", reason="replaced"
        )

        assert cancelled == [old.id]
        assert (await store.get_status(new.id)) == RunStatus.SCHEDULED
        assert (await store.get_status(other.id)) == RunStatus.SCHEDULED
        assert (await store.get_run(old.id)).error == "replaced"

    @pytest.mark.asyncio
    async def test_cancel_matching_keeps_runs_from_newer_events(self, store):
        older, _ = await store.create_run("fn", {**event("e1", session_id="s1"), "ts": 1000})
        newer, _ = await store.create_run("fn", {**event("e2", session_id="s1"), "ts": 3000})

        cancelled = await store.cancel_matching(
            "fn", "data.session_id", "s1", exclude_event_id="c1", reason="stop", event_ts=2000
        )

        assert cancelled == [older.id]
        assert (await store.get_status(newer.id)) == RunStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_get_run_for_event(self, store):
        run, _ = await store.create_run("fn", event("e1"))

        assert (await store.get_run_for_event("fn", "e1")).id == run.id
        assert await store.get_run_for_event("other", "e1") is None


class TestSteps:
    @pytest.mark.asyncio
    async def test_positions_follow_first_save(self, store):
        run, _ = await store.create_run("fn", event())
        await store.save_step(StepRecord(run.id, "b", StepStatus.FAILED, attempts=1))
        await store.save_step(StepRecord(run.id, "a", StepStatus.SUCCEEDED, attempts=1))
        await store.save_step(StepRecord(run.id, "b", StepStatus.SUCCEEDED, attempts=2))

        steps = await store.get_steps(run.id)

        assert steps["b"].position == 0
        assert steps["a"].position == 1
        assert steps["b"].attempts == 2

    @pytest.mark.asyncio
    async def test_succeeded_step_is_never_overwritten(self, store):
        run, _ = await store.create_run("fn", event())
        await store.save_step(StepRecord(run.id, "s", StepStatus.SUCCEEDED, result=1))

        saved = await store.save_step(StepRecord(run.id, "s", StepStatus.FAILED, error="x"))

        assert saved.status == StepStatus.SUCCEEDED
        assert saved.result == 1


class TestDueRuns:
    @pytest.mark.asyncio
    async def test_due_runs_excludes_future_locked_and_terminal(self, store):
        due, _ = await store.create_run("fn", event("e1"))
        future, _ = await store.create_run("fn", event("e2"))
        locked, _ = await store.create_run("fn", event("e3"))
        done, _ = await store.create_run("fn", event("e4"))

        await store.defer_run(future.id, datetime.now(timezone.utc) + timedelta(hours=1))
        await store.acquire_run(locked.id, "w", None, 900)
        await store.finish_run(done.id, RunStatus.COMPLETED)

        assert await store.due_runs(10, 900) == [due.id]

    @pytest.mark.asyncio
    async def test_reap_stale_locks(self, store):
        run, _ = await store.create_run("fn", event())
        await store.acquire_run(run.id, "w", None, 900)

        assert await store.reap_stale_locks(0) == 1
        assert (await store.get_run(run.id)).locked_by is None
