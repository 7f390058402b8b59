"""Tests for the session schedule-change and cancellation emails."""

import pytest

from edujobs.engine import RunStatus
from edujobs.functions import session_email

CHANGE_EVENT = {
    "name": "logistics/session.schedule-changed",
    "data": {
        "session_id": "sess-1",
        "center_id": "center-1",
        "class_id": "class-1",
        "previous_start_time": "2026-03-03T02:00:00Z",
        "previous_end_time": "2026-03-03T03:30:00Z",
        "previous_room_name": "101",
    },
}

CANCEL_EVENT = {
    "name": "logistics/session.cancelled",
    "data": {
        "center_id": "center-1",
        "class_id": "class-1",
        "original_start_time": "2026-03-03T02:00:00Z",
        "original_end_time": "2026-03-03T03:30:00Z",
        "room_name": "101",
    },
}

RECIPIENTS = [
    {"id": "teacher-1", "email": "teacher@example.com", "name": "Mai", "preferred_language": "vi"},
    {"id": "student-1", "email": "student@example.com", "name": "Tom", "preferred_language": "en"},
]


@pytest.fixture
def session_services(services):
    services.logistics.get_session.return_value = {
        "course_name": "IELTS Prep",
        "class_name": "Evening A",
        "start_time": "2026-03-04T02:00:00Z",
        "end_time": "2026-03-04T03:30:00Z",
        "room_name": "202",
    }
    services.logistics.get_class_recipients.return_value = RECIPIENTS
    services.logistics.get_class_info.return_value = {
        "course_name": "IELTS Prep",
        "class_name": "Evening A",
    }
    services.accounts.get_center_name.return_value = "Sunrise Academy"
    services.notifications.log_email.return_value = None
    return services


class TestScheduleChange:
    @pytest.mark.asyncio
    async def test_sends_localized_email_per_recipient(
        self, make_engine, run_event, session_services, transport
    ):
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CHANGE_EVENT, "id": "chg-1"})
        run_id = result.runs[0]["run_id"]

        assert outcomes[run_id].output == {
            "status": "completed",
            "sent": 2,
            "failed": 0,
            "skipped": 0,
        }
        subjects = {m["to"]: m["subject"] for m in transport.sent}
        assert subjects["teacher@example.com"] == "Lịch học thay đổi: IELTS Prep - Evening A"
        assert subjects["student@example.com"] == "Schedule Changed: IELTS Prep - Evening A"
        assert transport.sent[0]["idempotency_key"] == f"{run_id}:send-email-teacher-1"
        assert "https://app.example.com/center-1/logistics/scheduler" in transport.sent[1]["html"]

        session_services.notifications.log_email.assert_any_await(
            recipient_id="student-1",
            center_id="center-1",
            email_type="schedule-change",
            status="sent",
            subject="Schedule Changed: IELTS Prep - Evening A",
            error=None,
            delivery_id="msg-2",
        )

    @pytest.mark.asyncio
    async def test_debounce_sleeps_before_fetching(self, make_engine, session_services):
        engine = make_engine(session_email.register, session_services)
        run_id = (await engine.ingest([{**CHANGE_EVENT, "id": "chg-1"}])).runs[0]["run_id"]

        result = await engine.advance(run_id)

        assert result.next_step == "debounce-rapid-edits"
        assert result.resume_at is not None
        session_services.logistics.get_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rapid_edits_send_once(self, make_engine, session_services, transport):
        engine = make_engine(session_email.register, session_services)

        first = await engine.ingest([{**CHANGE_EVENT, "id": "chg-1"}])
        await engine.advance(first.runs[0]["run_id"])
        second = await engine.ingest([{**CHANGE_EVENT, "id": "chg-2"}])
        third = await engine.ingest([{**CHANGE_EVENT, "id": "chg-3"}])

        assert second.cancelled == [first.runs[0]["run_id"]]
        assert third.cancelled == [second.runs[0]["run_id"]]

        run_ids = [r.runs[0]["run_id"] for r in (first, second, third)]
        outcomes = await engine.drain(run_ids)

        assert outcomes[run_ids[0]].run_status == RunStatus.CANCELLED
        assert outcomes[run_ids[1]].run_status == RunStatus.CANCELLED
        assert outcomes[run_ids[2]].run_status == RunStatus.COMPLETED
        assert len(transport.sent) == len(RECIPIENTS)

    @pytest.mark.asyncio
    async def test_other_sessions_are_not_debounced(self, make_engine, session_services):
        engine = make_engine(session_email.register, session_services)
        first = await engine.ingest([{**CHANGE_EVENT, "id": "chg-1"}])

        other = {**CHANGE_EVENT, "id": "chg-2", "data": {**CHANGE_EVENT["data"], "session_id": "sess-2"}}
        second = await engine.ingest([other])

        assert second.cancelled == []
        assert (await engine.store.get_status(first.runs[0]["run_id"])) == RunStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_deleted_session(self, make_engine, run_event, session_services, transport):
        session_services.logistics.get_session.return_value = None
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CHANGE_EVENT, "id": "chg-1"})

        assert outcomes[result.runs[0]["run_id"]].output == {"status": "session-deleted"}
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_failed_send_is_recorded(self, make_engine, run_event, session_services, transport):
        transport.fail_for.add("teacher@example.com")
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CHANGE_EVENT, "id": "chg-1"})
        output = outcomes[result.runs[0]["run_id"]].output

        assert output["sent"] == 1
        assert output["failed"] == 1
        failed_log = session_services.notifications.log_email.await_args_list[0].kwargs
        assert failed_log["status"] == "failed"
        assert "mailbox unavailable" in failed_log["error"]

    @pytest.mark.asyncio
    async def test_skipped_without_transport(self, make_engine, run_event, session_services):
        session_services.email = None
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CHANGE_EVENT, "id": "chg-1"})

        assert outcomes[result.runs[0]["run_id"]].output["skipped"] == 2
        logged = session_services.notifications.log_email.await_args_list[0].kwargs
        assert logged["status"] == "skipped"
        assert logged["subject"] is None


class TestCancellation:
    @pytest.mark.asyncio
    async def test_sends_immediately(self, make_engine, run_event, session_services, transport):
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CANCEL_EVENT, "id": "cxl-1"})
        run_id = result.runs[0]["run_id"]

        assert outcomes[run_id].output["sent"] == 2
        steps = await engine.store.get_steps(run_id)
        assert all(s.wake_at is None for s in steps.values())
        assert {m["subject"] for m in transport.sent} == {
            "Buổi học đã bị hủy: IELTS Prep - Evening A",
            "Session Cancelled: IELTS Prep - Evening A",
        }

    @pytest.mark.asyncio
    async def test_bulk_cancellation(self, make_engine, run_event, session_services, transport):
        event = {
            **CANCEL_EVENT,
            "id": "cxl-2",
            "data": {**CANCEL_EVENT["data"], "is_bulk": True, "deleted_count": 4},
        }
        engine = make_engine(session_email.register, session_services)

        await run_event(engine, event)

        english = next(m for m in transport.sent if m["to"] == "student@example.com")
        assert english["subject"] == "4 Sessions Cancelled: IELTS Prep - Evening A"
        assert "onwards" in english["html"]

    @pytest.mark.asyncio
    async def test_no_recipients(self, make_engine, run_event, session_services):
        session_services.logistics.get_class_recipients.return_value = []
        engine = make_engine(session_email.register, session_services)

        result, outcomes = await run_event(engine, {**CANCEL_EVENT, "id": "cxl-3"})

        assert outcomes[result.runs[0]["run_id"]].output == {"status": "no-recipients", "sent": 0}
        session_services.logistics.get_class_info.assert_not_awaited()
