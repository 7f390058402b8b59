"""Repository for AI generation jobs and exercise sections."""

import json
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


class ExercisesRepository:
    def __init__(self, pool):
        self.pool = pool

    async def set_generation_status(
        self,
        job_id: str,
        status: str,
        error: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
    ) -> None:
        query = """
            UPDATE ai_generation_jobs
            SET status = $2, error = $3, result = COALESCE($4::jsonb, result), updated_at = NOW()
            WHERE id = $1
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                query, job_id, status, error, json.dumps(result) if result is not None else None
            )

    async def save_sections(
        self, center_id: str, exercise_id: str, sections: list[dict[str, Any]]
    ) -> int:
        """Append sections after the current highest order index, in one transaction.

        Returns the number of sections created.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                next_index = await conn.fetchval(
                    """
                    SELECT COALESCE(MAX(order_index) + 1, 0)
                    FROM question_sections WHERE exercise_id = $1 AND center_id = $2
                    """,
                    exercise_id,
                    center_id,
                )
                for section in sections:
                    section_id = await conn.fetchval(
                        """
                        INSERT INTO question_sections
                            (id, exercise_id, center_id, section_type, instructions, order_index)
                        VALUES (gen_random_uuid()::text, $1, $2, $3, $4, $5)
                        RETURNING id
                        """,
                        exercise_id,
                        center_id,
                        section["sectionType"],
                        section["instructions"],
                        next_index,
                    )
                    next_index += 1
                    await conn.executemany(
                        """
                        INSERT INTO questions
                            (id, section_id, center_id, question_text, question_type,
                             options, correct_answer, order_index, word_limit)
                        VALUES (gen_random_uuid()::text, $1, $2, $3, $4,
                                $5::jsonb, $6::jsonb, $7, $8)
                        """,
                        [
                            (
                                section_id,
                                center_id,
                                q["questionText"],
                                q["questionType"],
                                json.dumps(q.get("options")),
                                json.dumps(q.get("correctAnswer")),
                                i,
                                q.get("wordLimit"),
                            )
                            for i, q in enumerate(section["questions"])
                        ],
                    )
        logger.info("sections_saved", exercise_id=exercise_id, count=len(sections))
        return len(sections)
