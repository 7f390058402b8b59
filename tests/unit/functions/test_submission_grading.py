"""Tests for the submission grading job."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from edujobs.engine import RunStatus
from edujobs.functions import submission_grading
from edujobs.functions.submission_grading import (
    aggregate,
    classify_error,
    collect_student_text,
    score_objective,
)
from edujobs.services.generation import MalformedOutputError
from edujobs.services.llm_base import LLMRateLimitError, LLMTimeoutError

ESSAY = "Some people believe that cities are too crowded. I agree with this view."

EVENT = {
    "name": "grading/analyze-submission",
    "id": "grade-1",
    "data": {"job_id": "gjob-1", "submission_id": "sub-1", "center_id": "center-1"},
}

WRITING_ANALYSIS = {
    "overallScore": 6.3,
    "criteriaScores": {
        "taskAchievement": 6,
        "coherence": 6.5,
        "lexicalResource": 6,
        "grammaticalRange": 7,
    },
    "generalFeedback": "Clear position, limited development.",
    "highlights": [
        {
            "type": "vocabulary",
            "startOffset": 0,
            "endOffset": 11,
            "content": "Vague opener",
            "suggestedFix": "Many residents",
            "severity": "suggestion",
            "confidence": 0.7,
            "originalContextSnippet": "Some people",
        },
        {
            "type": "grammar",
            "startOffset": 60,
            "endOffset": 9999,
            "content": "Out of range",
            "severity": "error",
            "confidence": 0.9,
            "originalContextSnippet": "view.",
        },
    ],
}


def objective_answers():
    return [
        {
            "id": "a1",
            "question_type": "R1_MCQ_SINGLE",
            "answer": {"answer": "B"},
            "correct_answer": {"answer": "b"},
        },
        {
            "id": "a2",
            "question_type": "R3_TFNG",
            "answer": {"answer": "TRUE"},
            "correct_answer": {"answer": "NOT_GIVEN"},
        },
    ]


@pytest.fixture
def grading_services(services):
    services.grading.set_job_status.return_value = None
    services.grading.set_submission_status.return_value = None
    services.grading.replace_feedback.return_value = "fb-1"
    services.grading.load_submission.return_value = {
        "skill": "WRITING",
        "writing_prompt": "Are cities too crowded?",
        "answers": [
            {"id": "w1", "question_type": "W2_ESSAY", "answer": {"text": ESSAY}},
        ],
    }
    services.llm = MagicMock()
    services.llm.generate_text = AsyncMock(return_value=json.dumps(WRITING_ANALYSIS))
    return services


class TestClassifyError:
    def test_typed_errors(self):
        assert classify_error(LLMTimeoutError()) == "api_timeout"
        assert classify_error(LLMRateLimitError()) == "rate_limit"
        assert classify_error(MalformedOutputError("bad")) == "invalid_response"

    def test_uses_cause(self):
        wrapper = RuntimeError("step failed")
        wrapper.__cause__ = LLMRateLimitError()
        assert classify_error(wrapper) == "rate_limit"

    def test_pydantic_validation_error(self):
        class Model(BaseModel):
            score: int

        with pytest.raises(PydanticValidationError) as exc_info:
            Model.model_validate({"score": "high"})
        assert classify_error(exc_info.value) == "validation_error"

    @pytest.mark.parametrize(
        "message, category",
        [
            ("Deadline exceeded", "api_timeout"),
            ("Request timed out", "api_timeout"),
            ("HTTP 429 from upstream", "rate_limit"),
            ("Quota exhausted", "rate_limit"),
            ("Unexpected token < in JSON", "invalid_response"),
            ("schema mismatch", "validation_error"),
            ("connection reset", "other"),
        ],
    )
    def test_message_heuristics(self, message, category):
        assert classify_error(RuntimeError(message)) == category


class TestHelpers:
    def test_collect_student_text(self):
        answers = [
            {"answer": {"text": "  First essay. "}},
            {"answer": {"transcript": "Spoken part."}},
            {"answer": {"answer": "B"}},
            {"answer": "plain"},
            {"answer": {"text": "   "}},
        ]
        assert collect_student_text(answers) == "First essay.\n\nSpoken part."

    def test_score_objective_skips_ungradable(self):
        answers = objective_answers() + [
            {"id": "w1", "question_type": "W2_ESSAY", "answer": {"text": ESSAY}}
        ]

        result = score_objective(answers)

        assert result["correct"] == 1
        assert result["total"] == 2
        assert result["score"] == 1.0
        assert [r["answer_id"] for r in result["results"]] == ["a1", "a2"]

    def test_score_objective_applies_word_limit(self):
        answers = [
            {
                "id": "t1",
                "question_type": "R6_SHORT_ANSWER",
                "answer": {"answer": "the big blue sea"},
                "correct_answer": {"answer": "the big blue sea"},
                "word_limit": 2,
            }
        ]

        assert score_objective(answers)["correct"] == 0

    def test_aggregate_objective_only(self):
        objective = {"results": [], "correct": 3, "total": 4, "score": 3.0}

        feedback = aggregate(objective, None)

        assert feedback["overall_score"] == 3.0
        assert feedback["criteria_scores"] == {
            "objective": {"correct": 3, "total": 4, "score": 3.0}
        }
        assert feedback["highlights"] == []

    def test_aggregate_without_gradable_answers(self):
        objective = {"results": [], "correct": 0, "total": 0, "score": 0}
        assert aggregate(objective, None)["overall_score"] is None


class TestGradingJob:
    @pytest.mark.asyncio
    async def test_writing_submission(self, make_engine, run_event, grading_services):
        engine = make_engine(submission_grading.register, grading_services)

        result, outcomes = await run_event(engine, EVENT)
        run_id = result.runs[0]["run_id"]
        outcome = outcomes[run_id]

        assert outcome.run_status == RunStatus.COMPLETED
        assert outcome.output["feedback_id"] == "fb-1"
        assert outcome.output["overall_score"] == 6.5
        assert outcome.output["highlight_count"] == 1

        prompt = grading_services.llm.generate_text.await_args.args[0]
        assert "TASK PROMPT:\nAre cities too crowded?" in prompt
        assert ESSAY in prompt

        saved = grading_services.grading.replace_feedback.await_args
        assert saved.args == ("center-1", "sub-1")
        assert saved.kwargs["criteria_scores"]["grammaticalRange"] == 7.0
        assert [h["content"] for h in saved.kwargs["highlights"]] == ["Vague opener"]

        statuses = [c.args for c in grading_services.grading.set_submission_status.await_args_list]
        assert statuses == [
            ("center-1", "sub-1", "AI_PROCESSING"),
            ("center-1", "sub-1", "SUBMITTED"),
        ]
        grading_services.grading.set_job_status.assert_any_await("gjob-1", "completed")
        assert "pre-api-delay" in await engine.store.get_steps(run_id)

    @pytest.mark.asyncio
    async def test_objective_submission_skips_model(
        self, make_engine, run_event, grading_services
    ):
        grading_services.grading.load_submission.return_value = {
            "skill": "READING",
            "answers": objective_answers(),
        }
        engine = make_engine(submission_grading.register, grading_services)

        result, outcomes = await run_event(engine, EVENT)
        output = outcomes[result.runs[0]["run_id"]].output

        assert output["overall_score"] == 1.0
        assert (output["objective_correct"], output["objective_total"]) == (1, 2)
        grading_services.llm.generate_text.assert_not_awaited()
        saved = grading_services.grading.replace_feedback.await_args.kwargs
        assert saved["general_feedback"] is None
        assert saved["answer_results"] == [
            {"answer_id": "a1", "is_correct": True, "score": 1.0},
            {"answer_id": "a2", "is_correct": False, "score": 0.0},
        ]

    @pytest.mark.asyncio
    async def test_empty_writing_fails_and_reverts_submission(
        self, make_engine, run_event, grading_services
    ):
        grading_services.grading.load_submission.return_value = {
            "skill": "WRITING",
            "answers": [{"id": "w1", "question_type": "W2_ESSAY", "answer": {"text": ""}}],
        }
        engine = make_engine(submission_grading.register, grading_services)

        result, outcomes = await run_event(engine, EVENT)
        outcome = outcomes[result.runs[0]["run_id"]]

        assert outcome.run_status == RunStatus.FAILED
        assert "No student text" in outcome.error
        grading_services.grading.set_job_status.assert_any_await(
            "gjob-1", "failed", error=outcome.error, error_category="other"
        )
        last_status = grading_services.grading.set_submission_status.await_args
        assert last_status.args == ("center-1", "sub-1", "SUBMITTED")

    @pytest.mark.asyncio
    async def test_persistent_malformed_output_is_categorized(
        self, make_engine, run_event, grading_services
    ):
        grading_services.llm.generate_text.return_value = "not json at all"
        engine = make_engine(submission_grading.register, grading_services)

        result, outcomes = await run_event(engine, EVENT)
        run_id = result.runs[0]["run_id"]

        assert outcomes[run_id].run_status == RunStatus.FAILED
        assert grading_services.llm.generate_text.await_count == 4
        failed = grading_services.grading.set_job_status.await_args
        assert failed.args == ("gjob-1", "failed")
        assert failed.kwargs["error_category"] == "invalid_response"
        grading_services.grading.replace_feedback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_submission_is_fatal(self, make_engine, run_event, grading_services):
        grading_services.grading.load_submission.return_value = None
        engine = make_engine(submission_grading.register, grading_services)

        result, outcomes = await run_event(engine, EVENT)
        run_id = result.runs[0]["run_id"]

        assert outcomes[run_id].run_status == RunStatus.FAILED
        steps = await engine.store.get_steps(run_id)
        assert steps["load-submission"].attempts == 1
