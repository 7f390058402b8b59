"""Bulk CSV user import.

Rows are processed in batches. Each batch is its own durable step, so a
failure in batch N never rolls back batches already committed.
"""

import re
from typing import Any, Optional
from urllib.parse import quote

from edujobs.engine import ConcurrencyLimit, FatalJobError, FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.services import JobServices, center_name_or_default, idempotency_key
from edujobs.schemas import CsvImportPayload, ImportRowStatus, ImportStatus
from edujobs.services.email import render_invitation

FUNCTION_ID = "csv-import-batch"
TRIGGER = "csv-import/process-batch"

ALLOWED_ROLES = {"ADMIN", "TEACHER", "STUDENT"}
MAX_NAME_LENGTH = 100
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def chunk(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _outcome(row_id: str, status: ImportRowStatus, error: Optional[str] = None) -> dict:
    return {"row_id": row_id, "status": status.value, "error": error}


def validate_rows(rows: list[dict]) -> dict[str, list[dict]]:
    """Split rows into valid rows and INVALID outcomes."""
    valid: list[dict] = []
    outcomes: list[dict] = []
    for row in rows:
        email = (row.get("email") or "").strip()
        role = (row.get("role") or "").strip().upper()
        name = (row.get("name") or "").strip()
        if not _EMAIL_RE.match(email):
            outcomes.append(_outcome(row["id"], ImportRowStatus.INVALID, "Invalid email address"))
        elif role not in ALLOWED_ROLES:
            outcomes.append(_outcome(row["id"], ImportRowStatus.INVALID, f"Unknown role: {row.get('role')}"))
        elif len(name) > MAX_NAME_LENGTH:
            outcomes.append(
                _outcome(row["id"], ImportRowStatus.INVALID, f"Name exceeds {MAX_NAME_LENGTH} characters")
            )
        else:
            valid.append({**row, "email": email, "role": role, "name": name or None})
    return {"rows": valid, "outcomes": outcomes}


def dedupe_rows(rows: list[dict], existing_emails: set[str]) -> dict[str, list[dict]]:
    """Drop repeated emails within the batch and emails already in the center.

    The first occurrence of an email in the file wins.
    """
    seen: set[str] = set()
    kept: list[dict] = []
    outcomes: list[dict] = []
    for row in rows:
        key = row["email"].lower()
        if key in existing_emails:
            outcomes.append(
                _outcome(
                    row["id"],
                    ImportRowStatus.DUPLICATE_IN_CENTER,
                    "User already has membership in this center",
                )
            )
        elif key in seen:
            outcomes.append(
                _outcome(row["id"], ImportRowStatus.DUPLICATE_IN_FILE, "Duplicate email in import")
            )
        else:
            seen.add(key)
            kept.append(row)
    return {"rows": kept, "outcomes": outcomes}


def final_status(imported: int, failed: int) -> ImportStatus:
    if failed == 0:
        return ImportStatus.COMPLETED
    if imported == 0:
        return ImportStatus.FAILED
    return ImportStatus.PARTIAL


async def import_users(ctx: RunContext) -> dict[str, Any]:
    data: CsvImportPayload = ctx.data
    services: JobServices = ctx.services
    settings = services.settings

    async def verify_ownership():
        if not await services.imports.import_exists(data.import_log_id, data.center_id):
            raise FatalJobError("Import not found or does not belong to this center")
        return True

    await ctx.step.run("verify-ownership", verify_ownership)

    async def fetch_rows():
        status = ImportRowStatus.FAILED if data.is_retry else ImportRowStatus.VALID
        rows = await services.imports.fetch_rows(
            data.import_log_id, data.selected_row_ids, status.value
        )
        return [
            {"id": r.id, "row_number": r.row_number, "email": r.email, "name": r.name, "role": r.role}
            for r in rows
        ]

    rows = await ctx.step.run("fetch-rows", fetch_rows)
    if not rows:
        return {"status": "no_rows", "message": "No valid rows to process"}

    validated = await ctx.step.run("validate-rows", validate_rows, rows)

    async def dedupe():
        candidates = validated["rows"]
        existing = await services.accounts.existing_member_emails(
            data.center_id, [r["email"] for r in candidates]
        )
        return dedupe_rows(candidates, existing)

    deduped = await ctx.step.run("dedupe-rows", dedupe)
    rejected = validated["outcomes"] + deduped["outcomes"]

    center_name = await ctx.step.run(
        "fetch-center", center_name_or_default, services, data.center_id, "Your Center"
    )

    outcomes: list[dict] = []
    batches = chunk(deduped["rows"], settings.import_batch_size)
    for i, batch in enumerate(batches):

        async def process_batch(batch=batch):
            results = []
            for row in batch:
                try:
                    await services.accounts.create_invited_member(
                        data.center_id, row["email"], row["name"], row["role"]
                    )
                except Exception as e:
                    ctx.log.warning("import_row_failed", row_id=row["id"], error=str(e))
                    results.append(_outcome(row["id"], ImportRowStatus.FAILED, str(e)))
                else:
                    results.append(_outcome(row["id"], ImportRowStatus.IMPORTED))
            return results

        batch_results = await ctx.step.run(f"process-batch-{i}", process_batch)
        outcomes.extend(batch_results)

        await ctx.step.run(
            f"update-batch-{i}-statuses", services.imports.update_row_statuses, batch_results
        )

        step_name = f"send-invitations-{i}"

        async def send_invitations(batch=batch, batch_results=batch_results, step_name=step_name):
            if services.email is None:
                return {"sent": 0, "failed": 0, "skipped": len(batch)}
            imported_ids = {
                o["row_id"] for o in batch_results if o["status"] == ImportRowStatus.IMPORTED.value
            }
            sent = failed = 0
            for row in batch:
                if row["id"] not in imported_ids:
                    continue
                message = render_invitation(
                    center_name=center_name,
                    role=row["role"],
                    signup_url=f"{settings.webapp_url.rstrip('/')}/sign-up?email={quote(row['email'])}",
                    recipient_name=row["name"],
                )
                try:
                    await services.email.send(
                        row["email"],
                        message.subject,
                        message.html,
                        idempotency_key=f"{idempotency_key(ctx.run_id, step_name)}:{row['id']}",
                    )
                    sent += 1
                except Exception as e:
                    # Invitation failures never fail the row
                    ctx.log.warning("invitation_send_failed", row_id=row["id"], error=str(e))
                    failed += 1
            return {"sent": sent, "failed": failed, "skipped": 0}

        await ctx.step.run(step_name, send_invitations)

        if i < len(batches) - 1:
            await ctx.step.sleep(f"batch-delay-{i}", "1s")

    imported = sum(1 for o in outcomes if o["status"] == ImportRowStatus.IMPORTED.value)
    failed = len(outcomes) + len(rejected) - imported
    status = final_status(imported, failed)

    async def finalize():
        await services.imports.update_row_statuses(rejected)
        await services.imports.finalize(data.import_log_id, status.value, imported, failed)
        return status.value

    await ctx.step.run("finalize-import", finalize)

    return {
        "status": status.value,
        "imported_rows": imported,
        "failed_rows": failed,
        "total_processed": len(rows),
        "outcomes": rejected + outcomes,
    }


def register(registry: FunctionRegistry) -> None:
    registry.function(
        FUNCTION_ID,
        TRIGGER,
        name="CSV import batch",
        retry=RetryPolicy(max_attempts=4),
        concurrency=ConcurrencyLimit(limit=1, key="event.data.center_id"),
        payload_model=CsvImportPayload,
    )(import_users)
