"""AI question generation for Reading exercises.

One ``generate-{type}`` step per requested question type: the model is
prompted, its JSON output parsed and validated, and the result converted to
the exercise section format inside the same step. Malformed output raises a
retryable error, so a retry re-prompts the model.
"""

from typing import Any

from edujobs.engine import FatalJobError, FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.services import JobServices
from edujobs.schemas import QuestionGenerationPayload
from edujobs.services.answers import normalize_correct_answer
from edujobs.services.generation import generate_structured, truncate_tokens
from edujobs.services.question_prompts import (
    QUESTION_TYPES,
    build_generation_prompt,
    build_system_prompt,
    get_type_spec,
    transform_to_section,
)

FUNCTION_ID = "exercise-question-generation"
TRIGGER = "exercises/generate-questions"

TYPE_DELAY = "2s"


def payload_field(ctx: RunContext, name: str) -> Any:
    """Read a payload field whether or not the payload validated."""
    if isinstance(ctx.data, dict):
        return ctx.data.get(name)
    return getattr(ctx.data, name, None)


async def generate_section(
    services: JobServices, passage: str, question_type: str, count: int, difficulty: str
) -> dict[str, Any]:
    spec = get_type_spec(question_type)
    parsed = await generate_structured(
        services.llm,
        build_generation_prompt(passage, count),
        spec.output_model,
        system=build_system_prompt(question_type, count, difficulty),
    )
    section = transform_to_section(question_type, parsed).model_dump()
    for question in section["questions"]:
        question["correctAnswer"] = normalize_correct_answer(question.get("correctAnswer"))
    return section


async def generate_questions(ctx: RunContext) -> dict[str, Any]:
    data: QuestionGenerationPayload = ctx.data
    services: JobServices = ctx.services
    settings = services.settings

    unsupported = [qt.type for qt in data.question_types if qt.type not in QUESTION_TYPES]
    if unsupported:
        raise FatalJobError(f"Unsupported question type for AI generation: {', '.join(unsupported)}")

    await ctx.step.run(
        "mark-processing", services.exercises.set_generation_status, data.job_id, "processing"
    )

    async def extract_source_text():
        if data.passage_text and data.passage_text.strip():
            text = data.passage_text
        elif data.document_key:
            if services.documents is None:
                raise FatalJobError("Document storage is not configured")
            content = await services.documents.fetch(data.document_key)
            text = services.extractor.extract(content, data.document_mime_type or "")
        else:
            raise FatalJobError("Exercise has no passage text or source document")
        if not text.strip():
            raise FatalJobError("Source document contains no extractable text")
        return truncate_tokens(
            text, settings.max_passage_tokens, encoding=settings.tokenizer_encoding
        )

    passage = await ctx.step.run("extract-source-text", extract_source_text)

    sections: list[dict[str, Any]] = []
    for i, qt in enumerate(data.question_types):
        section = await ctx.step.run(
            f"generate-{qt.type}",
            generate_section,
            services,
            passage,
            qt.type,
            qt.count,
            data.difficulty,
        )
        sections.append(section)
        if i < len(data.question_types) - 1:
            await ctx.step.sleep(f"delay-after-{qt.type}", TYPE_DELAY)

    saved = await ctx.step.run(
        "save-to-database",
        services.exercises.save_sections,
        data.center_id,
        data.exercise_id,
        sections,
    )

    await ctx.step.run(
        "mark-completed",
        services.exercises.set_generation_status,
        data.job_id,
        "completed",
        None,
        {"sectionCount": saved},
    )

    return {
        "status": "completed",
        "section_count": saved,
        "question_count": sum(len(s["questions"]) for s in sections),
    }


async def mark_generation_failed(ctx: RunContext, exc: BaseException) -> None:
    job_id = payload_field(ctx, "job_id")
    if not job_id:
        return
    services: JobServices = ctx.services
    await services.exercises.set_generation_status(job_id, "failed", error=str(exc))


def register(registry: FunctionRegistry) -> None:
    registry.function(
        FUNCTION_ID,
        TRIGGER,
        name="Exercise question generation",
        retry=RetryPolicy(max_attempts=4),
        on_failure=mark_generation_failed,
        payload_model=QuestionGenerationPayload,
    )(generate_questions)
