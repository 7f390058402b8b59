"""Submission grading: objective scoring plus AI feedback for open-ended skills.

Objective answers are scored locally with the answer matcher. Writing and
Speaking submissions also get a band-score analysis from the LLM, with inline
highlights anchored to character offsets in the student's text.
"""

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from edujobs.engine import FatalJobError, FunctionRegistry, RetryPolicy, RunContext
from edujobs.functions.question_generation import payload_field
from edujobs.functions.services import JobServices
from edujobs.schemas import GradingPayload
from edujobs.services.generation import MalformedOutputError, generate_structured
from edujobs.services.grading_prompts import MAX_HIGHLIGHTS, get_grading_prompt
from edujobs.services.llm_base import LLMRateLimitError, LLMTimeoutError
from edujobs.services.scoring import grade_answer

FUNCTION_ID = "grading-analyze-submission"
TRIGGER = "grading/analyze-submission"

OPEN_ENDED_SKILLS = {"WRITING", "SPEAKING"}
PRE_API_DELAY = "1s"


def classify_error(exc: BaseException) -> str:
    """Bucket a failure into the category stored on the grading job."""
    cause = exc.__cause__ or exc
    if isinstance(cause, LLMTimeoutError):
        return "api_timeout"
    if isinstance(cause, LLMRateLimitError):
        return "rate_limit"
    if isinstance(cause, MalformedOutputError):
        return "invalid_response"
    if isinstance(cause, PydanticValidationError):
        return "validation_error"

    message = str(cause).lower()
    if "timeout" in message or "timed out" in message or "deadline" in message:
        return "api_timeout"
    if ("rate" in message and "limit" in message) or "429" in message or "quota" in message:
        return "rate_limit"
    if "json" in message or "parse" in message or "unexpected token" in message:
        return "invalid_response"
    if "validation" in message or "schema" in message:
        return "validation_error"
    return "other"


def collect_student_text(answers: list[dict[str, Any]]) -> str:
    """Join the free-text answers (essays or speaking transcripts)."""
    parts = []
    for answer in answers:
        value = answer.get("answer")
        if not isinstance(value, dict):
            continue
        text = value.get("text") or value.get("transcript")
        if isinstance(text, str) and text.strip():
            parts.append(text.strip())
    return "\n\n".join(parts)


def score_objective(answers: list[dict[str, Any]]) -> dict[str, Any]:
    results = []
    for answer in answers:
        options = answer.get("options")
        options = dict(options) if isinstance(options, dict) else {}
        if answer.get("word_limit") is not None and "wordLimit" not in options:
            options["wordLimit"] = answer["word_limit"]
        graded = grade_answer(
            answer["question_type"],
            answer.get("answer"),
            answer.get("correct_answer"),
            case_sensitive=answer.get("case_sensitive", False),
            options=options,
        )
        if graded is None:
            continue
        results.append(
            {"answer_id": answer["id"], "is_correct": graded.is_correct, "score": graded.score}
        )
    return {
        "results": results,
        "correct": sum(1 for r in results if r["is_correct"]),
        "total": len(results),
        "score": round(sum(r["score"] for r in results), 2),
    }


def aggregate(objective: dict[str, Any], analysis: Optional[dict[str, Any]]) -> dict[str, Any]:
    if analysis is not None:
        return {
            "overall_score": analysis["overallScore"],
            "criteria_scores": analysis["criteriaScores"],
            "general_feedback": analysis["generalFeedback"],
            "highlights": analysis["highlights"],
            "answer_results": objective["results"],
        }
    return {
        "overall_score": objective["score"] if objective["total"] else None,
        "criteria_scores": {
            "objective": {
                "correct": objective["correct"],
                "total": objective["total"],
                "score": objective["score"],
            }
        },
        "general_feedback": None,
        "highlights": [],
        "answer_results": objective["results"],
    }


async def analyze_open_ended(
    services: JobServices, skill: str, student_text: str, question_prompt: Optional[str]
) -> dict[str, Any]:
    prompt, output_model = get_grading_prompt(skill, student_text, question_prompt)
    parsed = await generate_structured(services.llm, prompt, output_model)
    result = parsed.model_dump()
    text_length = len(student_text)
    # Drop highlights whose offsets fall outside the text
    highlights = [
        h
        for h in result["highlights"]
        if h["startOffset"] <= h["endOffset"] <= text_length
    ]
    result["highlights"] = highlights[:MAX_HIGHLIGHTS]
    return result


async def grade_submission(ctx: RunContext) -> dict[str, Any]:
    data: GradingPayload = ctx.data
    services: JobServices = ctx.services
    grading = services.grading

    async def mark_processing():
        await grading.set_job_status(data.job_id, "processing")
        await grading.set_submission_status(data.center_id, data.submission_id, "AI_PROCESSING")

    await ctx.step.run("mark-processing", mark_processing)

    async def load():
        submission = await grading.load_submission(data.center_id, data.submission_id)
        if submission is None:
            raise FatalJobError(f"Submission {data.submission_id} not found")
        return submission

    submission = await ctx.step.run("load-submission", load)
    skill = submission["skill"]
    answers = submission["answers"]

    objective = await ctx.step.run("score-objective", score_objective, answers)

    analysis = None
    if skill in OPEN_ENDED_SKILLS:
        student_text = collect_student_text(answers)
        if student_text:
            question_prompt = submission.get("writing_prompt") or next(
                (a["question_text"] for a in answers if a.get("question_text")), None
            )
            await ctx.step.sleep("pre-api-delay", PRE_API_DELAY)
            analysis = await ctx.step.run(
                "analyze-open-ended",
                analyze_open_ended,
                services,
                skill,
                student_text,
                question_prompt,
            )
        elif not objective["total"]:
            raise FatalJobError("No student text found in submission answers")

    feedback = aggregate(objective, analysis)

    feedback_id = await ctx.step.run(
        "save-feedback",
        grading.replace_feedback,
        data.center_id,
        data.submission_id,
        overall_score=feedback["overall_score"],
        criteria_scores=feedback["criteria_scores"],
        general_feedback=feedback["general_feedback"],
        highlights=feedback["highlights"],
        answer_results=feedback["answer_results"],
    )

    async def mark_completed():
        await grading.set_job_status(data.job_id, "completed")
        await grading.set_submission_status(data.center_id, data.submission_id, "SUBMITTED")

    await ctx.step.run("mark-completed", mark_completed)

    return {
        "status": "completed",
        "feedback_id": feedback_id,
        "overall_score": feedback["overall_score"],
        "highlight_count": len(feedback["highlights"]),
        "objective_correct": objective["correct"],
        "objective_total": objective["total"],
    }


async def mark_grading_failed(ctx: RunContext, exc: BaseException) -> None:
    job_id = payload_field(ctx, "job_id")
    if not job_id:
        return
    services: JobServices = ctx.services
    await services.grading.set_job_status(
        job_id, "failed", error=str(exc), error_category=classify_error(exc)
    )
    center_id = payload_field(ctx, "center_id")
    submission_id = payload_field(ctx, "submission_id")
    if center_id and submission_id:
        # Back to a state teachers can retry from
        await services.grading.set_submission_status(center_id, submission_id, "SUBMITTED")


def register(registry: FunctionRegistry) -> None:
    registry.function(
        FUNCTION_ID,
        TRIGGER,
        name="Submission grading",
        retry=RetryPolicy(max_attempts=4),
        on_failure=mark_grading_failed,
        payload_model=GradingPayload,
    )(grade_submission)
