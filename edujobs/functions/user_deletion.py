"""Scheduled account deletion after a grace period.

A ``user/deletion.cancelled`` event for the same user cancels the run while
it sleeps. The timestamp check covers a cancel-then-re-request sequence:
only the run created for the latest request proceeds.
"""

from datetime import timezone
from typing import Any

from edujobs.engine import CancelOn, ConcurrencyLimit, FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.services import JobServices, idempotency_key
from edujobs.schemas import UserDeletionPayload
from edujobs.services.email import render_account_deleted
from edujobs.services.email.formatting import resolve_locale

FUNCTION_ID = "user-deletion"
TRIGGER = "user/deletion.scheduled"
CANCEL_EVENT = "user/deletion.cancelled"
DELETED_EVENT = "user/deleted"


def _same_instant(a, b) -> bool:
    if a is None or b is None:
        return False
    if a.tzinfo is None:
        a = a.replace(tzinfo=timezone.utc)
    if b.tzinfo is None:
        b = b.replace(tzinfo=timezone.utc)
    # Millisecond precision, matching what producers serialize
    return int(a.timestamp() * 1000) == int(b.timestamp() * 1000)


async def delete_user(ctx: RunContext) -> dict[str, Any]:
    data: UserDeletionPayload = ctx.data
    services: JobServices = ctx.services
    user_id = data.user_id

    await ctx.step.sleep("wait-grace-period", f"{services.settings.deletion_grace_period_days}d")

    async def check_status():
        user = await services.accounts.get_deletion_candidate(user_id)
        if user is None or not _same_instant(user.deletion_requested_at, data.deletion_requested_at):
            return {"proceed": False}
        # Captured now; the address is gone once the data is deleted
        return {
            "proceed": True,
            "email": user.email,
            "name": user.name,
            "locale": resolve_locale(user.preferred_language),
        }

    status = await ctx.step.run("check-deletion-status", check_status)
    if not status["proceed"]:
        return {"status": "cancelled", "message": "Deletion was cancelled or user not found"}

    unassigned = await ctx.step.run(
        "archive-owned-entities", services.accounts.unassign_teacher, user_id
    )

    async def revoke_auth():
        uids = await services.accounts.get_identity_uids(user_id)
        revoked = 0
        for uid in uids:
            # A missing account counts as revoked
            if await services.identity.delete_user(uid):
                revoked += 1
        return {"accounts": len(uids), "revoked": revoked}

    await ctx.step.run("revoke-auth", revoke_auth)

    deleted = await ctx.step.run("delete-user-data", services.accounts.delete_user_data, user_id)

    async def notify():
        if services.email is None or not status.get("email"):
            return {"status": "skipped"}
        message = render_account_deleted(recipient_name=status.get("name"), locale=status["locale"])
        delivery_id = await services.email.send(
            status["email"],
            message.subject,
            message.html,
            idempotency_key=idempotency_key(ctx.run_id, "notify"),
        )
        return {"status": "sent", "delivery_id": delivery_id}

    notified = await ctx.step.run("notify", notify)

    await ctx.step.send_event(
        "emit-user-deleted",
        {"name": DELETED_EVENT, "data": {"user_id": user_id}, "id": f"user-deleted-{user_id}"},
    )

    return {
        "status": "completed",
        "message": f"User {user_id} has been deleted",
        "classes_unassigned": unassigned,
        "deleted": deleted,
        "notification": notified["status"],
    }


def register(registry: FunctionRegistry) -> None:
    registry.function(
        FUNCTION_ID,
        TRIGGER,
        name="User deletion",
        retry=RetryPolicy(max_attempts=4),
        concurrency=ConcurrencyLimit(limit=1, key="event.data.user_id"),
        cancel_on=(CancelOn(event=CANCEL_EVENT, match="data.user_id"),),
        payload_model=UserDeletionPayload,
    )(delete_user)
