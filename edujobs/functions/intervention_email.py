"""Teacher-written intervention emails to a student's guardian."""

from typing import Any

from edujobs.engine import FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.services import JobServices, idempotency_key
from edujobs.schemas import EmailStatus, InterventionPayload

FUNCTION_ID = "intervention-email"
TRIGGER = "student-health/intervention.send"


async def send_intervention(ctx: RunContext) -> dict[str, Any]:
    data: InterventionPayload = ctx.data
    services: JobServices = ctx.services

    if services.email is None:
        await ctx.step.run(
            "mark-skipped",
            services.notifications.update_intervention,
            data.center_id,
            data.intervention_log_id,
            "SKIPPED",
        )
        ctx.log.warning("intervention_email_skipped", reason="no email transport")
        return {"status": "skipped", "reason": "no-api-key"}

    async def send():
        try:
            delivery_id = await services.email.send(
                data.recipient_email,
                data.subject,
                data.body,
                idempotency_key=idempotency_key(ctx.run_id, "send-email"),
            )
        except Exception as e:
            ctx.log.warning("intervention_email_failed", error=str(e))
            return {"sent": False, "error": str(e)}
        return {"sent": True, "error": None, "delivery_id": delivery_id}

    result = await ctx.step.run("send-email", send)

    await ctx.step.run(
        "update-intervention-log",
        services.notifications.update_intervention,
        data.center_id,
        data.intervention_log_id,
        "SENT" if result["sent"] else "FAILED",
        result["error"],
    )

    async def log_email():
        student_id = await services.notifications.get_intervention_student(
            data.center_id, data.intervention_log_id
        )
        if student_id is None:
            return False
        await services.notifications.log_email(
            recipient_id=student_id,
            center_id=data.center_id,
            email_type="intervention",
            status=(EmailStatus.SENT if result["sent"] else EmailStatus.FAILED).value,
            subject=data.subject,
            error=result["error"],
            delivery_id=result.get("delivery_id"),
        )
        return True

    await ctx.step.run("log-email", log_email)

    return {"status": "sent" if result["sent"] else "failed", "error": result["error"]}


def register(registry: FunctionRegistry) -> None:
    registry.function(
        FUNCTION_ID,
        TRIGGER,
        name="Intervention email",
        retry=RetryPolicy(max_attempts=4),
        payload_model=InterventionPayload,
    )(send_intervention)
