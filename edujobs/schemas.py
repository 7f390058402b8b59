"""Pydantic models for event payloads and API request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Event data keys are snake_case; concurrency keys and cancel matches resolve against them.
PAYLOAD_CONFIG = ConfigDict(extra="ignore")


# ===========================================
# Enums
# ===========================================


class ImportRowStatus(str, Enum):
    VALID = "VALID"
    IMPORTED = "IMPORTED"
    FAILED = "FAILED"
    INVALID = "INVALID"
    DUPLICATE_IN_FILE = "DUPLICATE_IN_FILE"
    DUPLICATE_IN_CENTER = "DUPLICATE_IN_CENTER"


class ImportStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class EmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


# ===========================================
# Event payloads
# ===========================================


class CsvImportPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    import_log_id: str
    selected_row_ids: list[str]
    center_id: str
    requesting_user_id: Optional[str] = None
    is_retry: bool = False


class UserDeletionPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    user_id: str
    deletion_requested_at: datetime


class ScheduleChangedPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    session_id: str
    center_id: str
    class_id: str
    previous_start_time: datetime
    previous_end_time: datetime
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    previous_room_name: Optional[str] = None
    new_room_name: Optional[str] = None


class SessionCancelledPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    center_id: str
    class_id: str
    original_start_time: datetime
    original_end_time: datetime
    room_name: Optional[str] = None
    is_bulk: bool = False
    deleted_count: Optional[int] = Field(default=None, ge=1)


class InterventionPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    intervention_log_id: str
    center_id: str
    recipient_email: str
    subject: str
    body: str


class QuestionTypeRequest(BaseModel):
    type: str
    count: int = Field(default=5, ge=1, le=40)


class QuestionGenerationPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    job_id: str
    exercise_id: str
    center_id: str
    question_types: list[QuestionTypeRequest] = Field(..., min_length=1)
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    passage_text: Optional[str] = None
    document_key: Optional[str] = None
    document_mime_type: Optional[str] = None


class GradingPayload(BaseModel):
    model_config = PAYLOAD_CONFIG

    job_id: str
    submission_id: str
    center_id: str


# ===========================================
# Webhook
# ===========================================


class StepCallback(BaseModel):
    """Body of the PUT step callback."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    run_id: str = Field(..., validation_alias=AliasChoices("run_id", "runId"))
    function_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("function_id", "functionId", "fnId")
    )
    step: Optional[str] = None


# ===========================================
# Admin runs API
# ===========================================


class StepView(BaseModel):
    name: str
    status: str
    attempts: int
    position: int
    result: Any = None
    error: Optional[str] = None
    wake_at: Optional[datetime] = None


class RunView(BaseModel):
    id: str
    function_id: str
    event_id: str
    status: str
    attempt: int
    event: dict[str, Any]
    concurrency_key: Optional[str] = None
    run_after: Optional[datetime] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Any = None
    error: Optional[str] = None
    steps: Optional[list[StepView]] = None


class RunListResponse(BaseModel):
    runs: list[RunView]
    total: int
    limit: int
    offset: int


class CancelRunRequest(BaseModel):
    reason: str = Field(default="Cancelled by admin", max_length=500)


# ===========================================
# Health
# ===========================================


class DependencyHealth(BaseModel):
    status: Literal["ok", "error", "unconfigured"]
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded", "error"]
    version: str
    engine_mode: str
    functions: int
    store: DependencyHealth
    llm: DependencyHealth
    email: DependencyHealth
