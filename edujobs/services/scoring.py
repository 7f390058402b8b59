"""Deterministic scoring of objective question types.

Answer shapes (student answer / answer key):

- R1, R3, R4, L2 single: ``{"answer": str}``
- R2, L2 multi: ``{"answers": [str]}``
- R5, R6, R8, L5, L6: ``{"answer"}`` / ``{"answer", "acceptedVariants", "strictWordOrder"}``
- R7: ``{"blanks": {id: word}}``
- R9-R12, L3: ``{"matches": {id: option}}``
- R13, L1: ``{"blanks": {id: str}}`` / ``{"blanks": {id: {"answer", "acceptedVariants", ...}}}``
- R14, L4: ``{"labels": {id: str}}`` / labels as plain strings or structured entries
"""

from dataclasses import dataclass
from typing import Any, Optional

from edujobs.services.answers import (
    check_word_limit,
    matches_answer,
    matches_exact_mapping,
    migrate_ntf_answer,
    normalize,
)

OBJECTIVE_TYPES = frozenset(
    {
        "R1_MCQ_SINGLE",
        "R2_MCQ_MULTI",
        "R3_TFNG",
        "R4_YNNG",
        "R5_SENTENCE_COMPLETION",
        "R6_SHORT_ANSWER",
        "R7_SUMMARY_WORD_BANK",
        "R8_SUMMARY_PASSAGE",
        "R9_MATCHING_HEADINGS",
        "R10_MATCHING_INFORMATION",
        "R11_MATCHING_FEATURES",
        "R12_MATCHING_SENTENCE_ENDINGS",
        "R13_NOTE_TABLE_FLOWCHART",
        "R14_DIAGRAM_LABELLING",
        "L1_FORM_NOTE_TABLE",
        "L2_MCQ",
        "L3_MATCHING",
        "L4_MAP_PLAN_LABELLING",
        "L5_SENTENCE_COMPLETION",
        "L6_SHORT_ANSWER",
    }
)

_SINGLE_CHOICE = {"R1_MCQ_SINGLE", "R3_TFNG", "R4_YNNG"}
_TEXT = {
    "R5_SENTENCE_COMPLETION",
    "R6_SHORT_ANSWER",
    "R8_SUMMARY_PASSAGE",
    "L5_SENTENCE_COMPLETION",
    "L6_SHORT_ANSWER",
}
_MATCHING = {
    "R9_MATCHING_HEADINGS",
    "R10_MATCHING_INFORMATION",
    "R11_MATCHING_FEATURES",
    "R12_MATCHING_SENTENCE_ENDINGS",
    "L3_MATCHING",
}
_NOTE_TABLE = {"R13_NOTE_TABLE_FLOWCHART", "L1_FORM_NOTE_TABLE"}
_DIAGRAM = {"R14_DIAGRAM_LABELLING", "L4_MAP_PLAN_LABELLING"}


@dataclass(frozen=True)
class GradeResult:
    is_correct: bool
    score: float

    @classmethod
    def binary(cls, ok: bool) -> "GradeResult":
        return cls(ok, 1.0 if ok else 0.0)

    @classmethod
    def partial(cls, correct: int, total: int) -> "GradeResult":
        return cls(correct == total, correct / total if total else 0.0)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _within_limit(text: str, word_limit: Optional[int]) -> bool:
    return word_limit is None or check_word_limit(text, word_limit)


def _grade_text(
    student: dict[str, Any],
    key: dict[str, Any],
    case_sensitive: bool,
    word_limit: Optional[int],
) -> GradeResult:
    answer = _text(student.get("answer"))
    if not _within_limit(answer, word_limit):
        return GradeResult.binary(False)
    return GradeResult.binary(
        matches_answer(
            answer,
            _text(key.get("answer")),
            key.get("acceptedVariants") or [],
            case_sensitive,
            key.get("strictWordOrder", True),
        )
    )


def _grade_multi(student: dict[str, Any], key: dict[str, Any], case_sensitive: bool) -> GradeResult:
    chosen = sorted(normalize(_text(a), case_sensitive) for a in student.get("answers") or [])
    expected = sorted(normalize(_text(a), case_sensitive) for a in key.get("answers") or [])
    return GradeResult.binary(chosen == expected)


def _grade_record(
    student: Any, key: Any, case_sensitive: bool
) -> Optional[GradeResult]:
    expected = key if isinstance(key, dict) else {}
    if not expected:
        return None
    given = student if isinstance(student, dict) else {}
    mapping = matches_exact_mapping(
        {k: normalize(_text(v), case_sensitive) for k, v in given.items()},
        {k: normalize(_text(v), case_sensitive) for k, v in expected.items()},
    )
    return GradeResult.partial(mapping["correct"], mapping["total"])


def _grade_blanks(
    student: Any,
    key: Any,
    case_sensitive: bool,
    word_limit: Optional[int],
) -> Optional[GradeResult]:
    expected = migrate_ntf_answer(key) if isinstance(key, dict) else {}
    if not expected:
        return None
    given = student if isinstance(student, dict) else {}
    correct = 0
    for blank_id, blank in expected.items():
        answer = _text(given.get(blank_id))
        if _within_limit(answer, word_limit) and matches_answer(
            answer,
            _text(blank["answer"]),
            blank["acceptedVariants"],
            case_sensitive,
            blank["strictWordOrder"],
        ):
            correct += 1
    return GradeResult.partial(correct, len(expected))


def _grade_labels(student: Any, key: Any, case_sensitive: bool) -> Optional[GradeResult]:
    expected = key if isinstance(key, dict) else {}
    if not expected:
        return None
    given = student if isinstance(student, dict) else {}
    correct = 0
    for label_id, label in expected.items():
        answer = _text(given.get(label_id))
        if isinstance(label, str):
            ok = matches_answer(answer, label, [], case_sensitive)
        elif isinstance(label, dict):
            ok = matches_answer(
                answer,
                _text(label.get("answer")),
                label.get("acceptedVariants") or [],
                case_sensitive,
                label.get("strictWordOrder", True),
            )
        else:
            ok = False
        if ok:
            correct += 1
    return GradeResult.partial(correct, len(expected))


def grade_answer(
    question_type: str,
    student_answer: Any,
    correct_answer: Any,
    case_sensitive: bool = False,
    options: Optional[dict[str, Any]] = None,
) -> Optional[GradeResult]:
    """Score one answer. Returns None when the type or answer is not gradable."""
    if question_type not in OBJECTIVE_TYPES:
        return None
    if not isinstance(student_answer, dict) or not isinstance(correct_answer, dict):
        return None

    word_limit = (options or {}).get("wordLimit")
    if not isinstance(word_limit, int):
        word_limit = None

    if question_type in _SINGLE_CHOICE:
        return GradeResult.binary(
            normalize(_text(student_answer.get("answer")), case_sensitive)
            == normalize(_text(correct_answer.get("answer")), case_sensitive)
        )
    if question_type == "R2_MCQ_MULTI":
        return _grade_multi(student_answer, correct_answer, case_sensitive)
    if question_type == "L2_MCQ":
        if "answers" in correct_answer:
            return _grade_multi(student_answer, correct_answer, case_sensitive)
        return GradeResult.binary(
            normalize(_text(student_answer.get("answer")), case_sensitive)
            == normalize(_text(correct_answer.get("answer")), case_sensitive)
        )
    if question_type in _TEXT:
        return _grade_text(student_answer, correct_answer, case_sensitive, word_limit)
    if question_type == "R7_SUMMARY_WORD_BANK":
        return _grade_record(
            student_answer.get("blanks"), correct_answer.get("blanks"), case_sensitive
        )
    if question_type in _MATCHING:
        return _grade_record(
            student_answer.get("matches"), correct_answer.get("matches"), case_sensitive
        )
    if question_type in _NOTE_TABLE:
        return _grade_blanks(
            student_answer.get("blanks"),
            correct_answer.get("blanks"),
            case_sensitive,
            word_limit,
        )
    if question_type in _DIAGRAM:
        return _grade_labels(
            student_answer.get("labels"), correct_answer.get("labels"), case_sensitive
        )
    return None
