"""Schedule-change and cancellation emails for class sessions.

Schedule changes are debounced: each new change event for a session cancels
the sleeping run of the previous one, so only the last edit sends email.
Cancellations are definitive and go out immediately.
"""

from typing import Any, Callable

from edujobs.engine import CancelOn, FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.services import JobServices, center_name_or_default, idempotency_key
from edujobs.schemas import EmailStatus, ScheduleChangedPayload, SessionCancelledPayload
from edujobs.services.email import render_schedule_change, render_session_cancelled
from edujobs.services.email.formatting import resolve_locale

SCHEDULE_CHANGE_ID = "session-email-notification"
SCHEDULE_CHANGE_TRIGGER = "logistics/session.schedule-changed"
CANCELLATION_ID = "session-cancellation-email"
CANCELLATION_TRIGGER = "logistics/session.cancelled"

DEBOUNCE = "2m"


async def deliver_to_recipients(
    ctx: RunContext,
    recipients: list[dict],
    email_type: str,
    center_id: str,
    render: Callable[[dict], Any],
) -> dict[str, Any]:
    """Render, send and record one message per recipient, each as its own steps."""
    services: JobServices = ctx.services
    statuses: list[str] = []

    for recipient in recipients:
        rid = recipient["id"]
        message = await ctx.step.run(f"render-{rid}", lambda r=recipient: render(r).as_dict())

        send_step = f"send-email-{rid}"

        async def send(recipient=recipient, message=message, send_step=send_step):
            if services.email is None or not recipient.get("email"):
                return {"status": EmailStatus.SKIPPED.value}
            try:
                delivery_id = await services.email.send(
                    recipient["email"],
                    message["subject"],
                    message["html"],
                    idempotency_key=idempotency_key(ctx.run_id, send_step),
                )
            except Exception as e:
                ctx.log.warning("email_delivery_failed", recipient_id=recipient["id"], error=str(e))
                return {"status": EmailStatus.FAILED.value, "error": str(e)}
            return {"status": EmailStatus.SENT.value, "delivery_id": delivery_id}

        result = await ctx.step.run(send_step, send)

        async def record(rid=rid, message=message, result=result):
            await services.notifications.log_email(
                recipient_id=rid,
                center_id=center_id,
                email_type=email_type,
                status=result["status"],
                subject=message["subject"] if result["status"] != EmailStatus.SKIPPED.value else None,
                error=result.get("error"),
                delivery_id=result.get("delivery_id"),
            )
            return result["status"]

        statuses.append(await ctx.step.run(f"record-delivery-{rid}", record))

    return {
        "status": "completed",
        "sent": statuses.count(EmailStatus.SENT.value),
        "failed": statuses.count(EmailStatus.FAILED.value),
        "skipped": statuses.count(EmailStatus.SKIPPED.value),
    }


async def notify_schedule_change(ctx: RunContext) -> dict[str, Any]:
    data: ScheduleChangedPayload = ctx.data
    services: JobServices = ctx.services

    await ctx.step.sleep("debounce-rapid-edits", DEBOUNCE)

    # Re-read so the email reflects the final state after rapid edits
    session = await ctx.step.run(
        "fetch-session", services.logistics.get_session, data.center_id, data.session_id
    )
    if session is None:
        return {"status": "session-deleted"}

    recipients = await ctx.step.run(
        "fetch-recipients", services.logistics.get_class_recipients, data.center_id, data.class_id
    )
    if not recipients:
        return {"status": "no-recipients", "sent": 0}

    center_name = await ctx.step.run(
        "fetch-center-name", center_name_or_default, services, data.center_id, "ClassLite"
    )
    tz = services.settings.display_timezone
    schedule_url = services.schedule_url(data.center_id)

    def render(recipient: dict):
        return render_schedule_change(
            course_name=session["course_name"],
            class_name=session["class_name"],
            old_start=data.previous_start_time,
            old_end=data.previous_end_time,
            new_start=session["start_time"],
            new_end=session["end_time"],
            old_room=data.previous_room_name,
            new_room=session["room_name"],
            schedule_url=schedule_url,
            center_name=center_name,
            recipient_name=recipient.get("name"),
            locale=resolve_locale(recipient.get("preferred_language")),
            tz=tz,
        )

    return await deliver_to_recipients(ctx, recipients, "schedule-change", data.center_id, render)


async def notify_session_cancelled(ctx: RunContext) -> dict[str, Any]:
    data: SessionCancelledPayload = ctx.data
    services: JobServices = ctx.services

    recipients = await ctx.step.run(
        "fetch-recipients", services.logistics.get_class_recipients, data.center_id, data.class_id
    )
    if not recipients:
        return {"status": "no-recipients", "sent": 0}

    class_info = await ctx.step.run(
        "fetch-class-info", services.logistics.get_class_info, data.center_id, data.class_id
    )
    center_name = await ctx.step.run(
        "fetch-center-name", center_name_or_default, services, data.center_id, "ClassLite"
    )
    tz = services.settings.display_timezone
    schedule_url = services.schedule_url(data.center_id)

    def render(recipient: dict):
        return render_session_cancelled(
            course_name=class_info["course_name"],
            class_name=class_info["class_name"],
            start=data.original_start_time,
            end=data.original_end_time,
            room=data.room_name,
            schedule_url=schedule_url,
            center_name=center_name,
            recipient_name=recipient.get("name"),
            locale=resolve_locale(recipient.get("preferred_language")),
            tz=tz,
            is_bulk=data.is_bulk,
            deleted_count=data.deleted_count,
        )

    return await deliver_to_recipients(ctx, recipients, "session-cancelled", data.center_id, render)


def register(registry: FunctionRegistry) -> None:
    registry.function(
        SCHEDULE_CHANGE_ID,
        SCHEDULE_CHANGE_TRIGGER,
        name="Session schedule change email",
        retry=RetryPolicy(max_attempts=4),
        cancel_on=(CancelOn(event=SCHEDULE_CHANGE_TRIGGER, match="data.session_id"),),
        payload_model=ScheduleChangedPayload,
    )(notify_schedule_change)
    registry.function(
        CANCELLATION_ID,
        CANCELLATION_TRIGGER,
        name="Session cancellation email",
        retry=RetryPolicy(max_attempts=4),
        payload_model=SessionCancelledPayload,
    )(notify_session_cancelled)
