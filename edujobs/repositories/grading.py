"""Repository for grading jobs, submissions and feedback."""

import json
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


def _json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class GradingRepository:
    def __init__(self, pool):
        self.pool = pool

    async def set_job_status(
        self,
        job_id: str,
        status: str,
        error: Optional[str] = None,
        error_category: Optional[str] = None,
    ) -> None:
        query = """
            UPDATE grading_jobs
            SET status = $2, error = $3, error_category = $4, updated_at = NOW()
            WHERE id = $1
        """
        async with self.pool.acquire() as conn:
            await conn.execute(query, job_id, status, error, error_category)

    async def set_submission_status(self, center_id: str, submission_id: str, status: str) -> None:
        query = "UPDATE submissions SET status = $3 WHERE id = $1 AND center_id = $2"
        async with self.pool.acquire() as conn:
            await conn.execute(query, submission_id, center_id, status)

    async def load_submission(self, center_id: str, submission_id: str) -> Optional[dict[str, Any]]:
        """Exercise skill and prompt plus every answer with its question and key."""
        header_query = """
            SELECT e.skill, e.writing_prompt
            FROM submissions s
            JOIN assignments a ON a.id = s.assignment_id
            JOIN exercises e ON e.id = a.exercise_id
            WHERE s.id = $1 AND s.center_id = $2
        """
        answers_query = """
            SELECT sa.id, sa.question_id, sa.answer,
                   q.question_type, q.question_text, q.correct_answer, q.options,
                   q.word_limit, q.case_sensitive
            FROM submission_answers sa
            JOIN questions q ON q.id = sa.question_id
            WHERE sa.submission_id = $1
            ORDER BY q.order_index
        """
        async with self.pool.acquire() as conn:
            header = await conn.fetchrow(header_query, submission_id, center_id)
            if header is None:
                return None
            answers = await conn.fetch(answers_query, submission_id)
        return {
            "skill": header["skill"],
            "writing_prompt": header["writing_prompt"],
            "answers": [
                {
                    "id": a["id"],
                    "question_id": a["question_id"],
                    "answer": _json(a["answer"]),
                    "question_type": a["question_type"],
                    "question_text": a["question_text"],
                    "correct_answer": _json(a["correct_answer"]),
                    "options": _json(a["options"]),
                    "word_limit": a["word_limit"],
                    "case_sensitive": bool(a["case_sensitive"]),
                }
                for a in answers
            ],
        }

    async def replace_feedback(
        self,
        center_id: str,
        submission_id: str,
        *,
        overall_score: Optional[float],
        criteria_scores: Optional[dict[str, Any]],
        general_feedback: Optional[str],
        highlights: list[dict[str, Any]],
        answer_results: list[dict[str, Any]],
    ) -> str:
        """Replace the submission's feedback and highlights, and store per-answer scores."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM submission_feedback WHERE submission_id = $1 AND center_id = $2",
                    submission_id,
                    center_id,
                )
                feedback_id = await conn.fetchval(
                    """
                    INSERT INTO submission_feedback
                        (id, center_id, submission_id, overall_score, criteria_scores,
                         general_feedback)
                    VALUES (gen_random_uuid()::text, $1, $2, $3, $4::jsonb, $5)
                    RETURNING id
                    """,
                    center_id,
                    submission_id,
                    overall_score,
                    json.dumps(criteria_scores) if criteria_scores is not None else None,
                    general_feedback,
                )
                if highlights:
                    await conn.executemany(
                        """
                        INSERT INTO ai_feedback_items
                            (id, center_id, submission_feedback_id, type, content,
                             start_offset, end_offset, original_context_snippet,
                             suggested_fix, severity, confidence)
                        VALUES (gen_random_uuid()::text, $1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        """,
                        [
                            (
                                center_id,
                                feedback_id,
                                h["type"],
                                h["content"],
                                h["startOffset"],
                                h["endOffset"],
                                h["originalContextSnippet"],
                                h.get("suggestedFix"),
                                h["severity"],
                                h["confidence"],
                            )
                            for h in highlights
                        ],
                    )
                if answer_results:
                    await conn.executemany(
                        "UPDATE submission_answers SET is_correct = $2, score = $3 WHERE id = $1",
                        [(r["answer_id"], r["is_correct"], r["score"]) for r in answer_results],
                    )
        return feedback_id
