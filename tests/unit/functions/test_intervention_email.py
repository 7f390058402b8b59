"""Tests for the intervention email job."""

import pytest

from edujobs.engine import RunStatus
from edujobs.functions import intervention_email

EVENT = {
    "name": "student-health/intervention.send",
    "id": "int-1",
    "data": {
        "intervention_log_id": "ilog-1",
        "center_id": "center-1",
        "recipient_email": "parent@example.com",
        "subject": "About Minh's attendance",
        "body": "<p>Minh has missed three sessions.</p>",
    },
}


@pytest.fixture
def intervention_services(services):
    services.notifications.update_intervention.return_value = None
    services.notifications.get_intervention_student.return_value = "student-9"
    services.notifications.log_email.return_value = None
    return services


@pytest.mark.asyncio
async def test_sends_and_records(make_engine, run_event, intervention_services, transport):
    engine = make_engine(intervention_email.register, intervention_services)

    result, outcomes = await run_event(engine, EVENT)
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].output == {"status": "sent", "error": None}
    assert transport.sent == [
        {
            "to": "parent@example.com",
            "subject": "About Minh's attendance",
            "html": "<p>Minh has missed three sessions.</p>",
            "idempotency_key": f"{run_id}:send-email",
        }
    ]
    intervention_services.notifications.update_intervention.assert_awaited_once_with(
        "center-1", "ilog-1", "SENT", None
    )
    intervention_services.notifications.log_email.assert_awaited_once_with(
        recipient_id="student-9",
        center_id="center-1",
        email_type="intervention",
        status="sent",
        subject="About Minh's attendance",
        error=None,
        delivery_id="msg-1",
    )


@pytest.mark.asyncio
async def test_failed_send_marks_log_failed(
    make_engine, run_event, intervention_services, transport
):
    transport.fail_for.add("parent@example.com")
    engine = make_engine(intervention_email.register, intervention_services)

    result, outcomes = await run_event(engine, EVENT)
    outcome = outcomes[result.runs[0]["run_id"]]

    # Delivery failure is an outcome, not a run failure
    assert outcome.run_status == RunStatus.COMPLETED
    assert outcome.output["status"] == "failed"
    args = intervention_services.notifications.update_intervention.await_args.args
    assert args[2] == "FAILED"
    assert "mailbox unavailable" in args[3]


@pytest.mark.asyncio
async def test_skipped_without_transport(make_engine, run_event, intervention_services):
    intervention_services.email = None
    engine = make_engine(intervention_email.register, intervention_services)

    result, outcomes = await run_event(engine, EVENT)

    assert outcomes[result.runs[0]["run_id"]].output == {
        "status": "skipped",
        "reason": "no-api-key",
    }
    intervention_services.notifications.update_intervention.assert_awaited_once_with(
        "center-1", "ilog-1", "SKIPPED"
    )
    intervention_services.notifications.log_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_email_log_skipped_when_student_unknown(
    make_engine, run_event, intervention_services
):
    intervention_services.notifications.get_intervention_student.return_value = None
    engine = make_engine(intervention_email.register, intervention_services)

    result, outcomes = await run_event(engine, EVENT)
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].output["status"] == "sent"
    steps = await engine.store.get_steps(run_id)
    assert steps["log-email"].result is False
    intervention_services.notifications.log_email.assert_not_awaited()
