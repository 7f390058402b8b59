"""Tests for the AI question generation job."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from edujobs.engine import RunStatus
from edujobs.functions import question_generation
from edujobs.services.extraction import PDF_MIME

TFNG_OUTPUT = {
    "questions": [
        {"questionText": "The river flows north.", "correctAnswer": "FALSE"},
        {"questionText": "The delta is fertile.", "correctAnswer": "TRUE"},
    ]
}

SHORT_ANSWER_OUTPUT = {
    "questions": [{"questionText": "Where does it end?", "correctAnswer": "the sea"}]
}


def generation_event(event_id="gen-1", **overrides):
    data = {
        "job_id": "job-1",
        "exercise_id": "ex-1",
        "center_id": "center-1",
        "question_types": [
            {"type": "R3_TFNG", "count": 2},
            {"type": "R6_SHORT_ANSWER", "count": 1},
        ],
        "difficulty": "medium",
        "passage_text": "The river flows south into a fertile delta and ends at the sea.",
    }
    data.update(overrides)
    return {"name": "exercises/generate-questions", "id": event_id, "data": data}


@pytest.fixture
def generation_services(services):
    services.llm = MagicMock()
    services.llm.generate_text = AsyncMock(
        side_effect=[json.dumps(TFNG_OUTPUT), f"```json\n{json.dumps(SHORT_ANSWER_OUTPUT)}\n```"]
    )
    services.exercises.set_generation_status.return_value = None
    services.exercises.save_sections.return_value = 2
    return services


@pytest.mark.asyncio
async def test_generates_one_section_per_type(make_engine, run_event, generation_services):
    engine = make_engine(question_generation.register, generation_services)

    result, outcomes = await run_event(engine, generation_event())
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].output == {
        "status": "completed",
        "section_count": 2,
        "question_count": 3,
    }

    center_id, exercise_id, sections = generation_services.exercises.save_sections.await_args.args
    assert (center_id, exercise_id) == ("center-1", "ex-1")
    assert [s["sectionType"] for s in sections] == ["R3_TFNG", "R6_SHORT_ANSWER"]
    assert sections[0]["questions"][0]["correctAnswer"] == {"answer": "FALSE"}

    calls = generation_services.exercises.set_generation_status.await_args_list
    assert calls[0].args == ("job-1", "processing")
    assert calls[-1].args == ("job-1", "completed", None, {"sectionCount": 2})

    steps = await engine.store.get_steps(run_id)
    assert "delay-after-R3_TFNG" in steps
    assert "delay-after-R6_SHORT_ANSWER" not in steps


@pytest.mark.asyncio
async def test_generated_answer_keys_are_cleaned(make_engine, run_event, generation_services):
    messy = {
        "questions": [
            {
                "questionText": "Where does it end?",
                "correctAnswer": "  the\u00a0 sea ",
                "acceptedVariants": [" sea  "],
            }
        ]
    }
    generation_services.llm.generate_text = AsyncMock(
        side_effect=[json.dumps(TFNG_OUTPUT), json.dumps(messy)]
    )
    engine = make_engine(question_generation.register, generation_services)

    await run_event(engine, generation_event())

    sections = generation_services.exercises.save_sections.await_args.args[2]
    assert sections[1]["questions"][0]["correctAnswer"] == {
        "answer": "the sea",
        "acceptedVariants": ["sea"],
        "strictWordOrder": True,
    }


@pytest.mark.asyncio
async def test_prompts_carry_type_instructions(make_engine, run_event, generation_services):
    engine = make_engine(question_generation.register, generation_services)

    await run_event(engine, generation_event())

    first = generation_services.llm.generate_text.await_args_list[0]
    assert "True/False/Not Given" in first.kwargs["system"]
    assert "fertile delta" in first.args[0]


@pytest.mark.asyncio
async def test_extracts_text_from_document(make_engine, run_event, generation_services):
    generation_services.documents.fetch.return_value = b"%PDF-bytes"
    generation_services.extractor = MagicMock()
    generation_services.extractor.extract.return_value = "Extracted reading passage."
    engine = make_engine(question_generation.register, generation_services)

    event = generation_event(
        passage_text=None, document_key="uploads/passage.pdf", document_mime_type=PDF_MIME
    )
    result, outcomes = await run_event(engine, event)
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].run_status == RunStatus.COMPLETED
    generation_services.documents.fetch.assert_awaited_once_with("uploads/passage.pdf")
    generation_services.extractor.extract.assert_called_once_with(b"%PDF-bytes", PDF_MIME)
    steps = await engine.store.get_steps(run_id)
    assert steps["extract-source-text"].result == "Extracted reading passage."


@pytest.mark.asyncio
async def test_malformed_output_is_retried(make_engine, run_event, generation_services):
    generation_services.llm.generate_text.side_effect = [
        "Sorry, I cannot help with that.",
        json.dumps(TFNG_OUTPUT),
        json.dumps(SHORT_ANSWER_OUTPUT),
    ]
    engine = make_engine(question_generation.register, generation_services)

    result, outcomes = await run_event(engine, generation_event())
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].run_status == RunStatus.COMPLETED
    assert generation_services.llm.generate_text.await_count == 3
    steps = await engine.store.get_steps(run_id)
    assert steps["generate-R3_TFNG"].attempts == 2


@pytest.mark.asyncio
async def test_unsupported_type_fails_before_any_step(
    make_engine, run_event, generation_services
):
    engine = make_engine(question_generation.register, generation_services)
    event = generation_event(question_types=[{"type": "W1_TASK_1", "count": 1}])

    result, outcomes = await run_event(engine, event)
    run_id = result.runs[0]["run_id"]
    outcome = outcomes[run_id]

    assert outcome.run_status == RunStatus.FAILED
    assert "W1_TASK_1" in outcome.error
    assert await engine.store.get_steps(run_id) == {}
    generation_services.llm.generate_text.assert_not_awaited()
    generation_services.exercises.set_generation_status.assert_awaited_once()
    call = generation_services.exercises.set_generation_status.await_args
    assert call.args == ("job-1", "failed")
    assert "Unsupported question type" in call.kwargs["error"]


@pytest.mark.asyncio
async def test_missing_source_marks_job_failed(make_engine, run_event, generation_services):
    engine = make_engine(question_generation.register, generation_services)

    result, outcomes = await run_event(engine, generation_event(passage_text="   "))
    outcome = outcomes[result.runs[0]["run_id"]]

    assert outcome.run_status == RunStatus.FAILED
    assert "no passage text" in outcome.error
    last = generation_services.exercises.set_generation_status.await_args
    assert last.args == ("job-1", "failed")


@pytest.mark.asyncio
async def test_missing_provider_is_not_retried(make_engine, run_event, generation_services):
    generation_services.llm = None
    engine = make_engine(question_generation.register, generation_services)

    result, outcomes = await run_event(engine, generation_event())
    run_id = result.runs[0]["run_id"]

    assert outcomes[run_id].run_status == RunStatus.FAILED
    steps = await engine.store.get_steps(run_id)
    assert steps["generate-R3_TFNG"].attempts == 1
    generation_services.exercises.save_sections.assert_not_awaited()
