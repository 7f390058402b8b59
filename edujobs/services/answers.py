"""Answer normalization and matching for objective question types."""

import re
from typing import Any, Iterable, Optional

_WHITESPACE = re.compile(r"\s+")
_WHITESPACE_NBSP = re.compile(r"[\s\u00a0]+")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text.strip())


def normalize(text: str, case_sensitive: bool = False) -> str:
    """Trim, collapse whitespace runs to one space, and lower-case unless case-sensitive."""
    collapsed = _collapse(text)
    return collapsed if case_sensitive else collapsed.lower()


def matches_answer(
    student_answer: str,
    correct_answer: str,
    variants: Optional[Iterable[str]] = None,
    case_sensitive: bool = False,
    strict_word_order: bool = True,
) -> bool:
    """True if the student answer equals the correct answer or any accepted variant.

    Comparison is on normalized forms, never substrings. With
    ``strict_word_order=False`` the sorted word lists are compared instead,
    so duplicate words still have to appear the same number of times.
    """
    student = normalize(student_answer, case_sensitive)
    candidates = [correct_answer, *(variants or [])]

    if strict_word_order:
        return any(normalize(c, case_sensitive) == student for c in candidates)

    student_words = sorted(w for w in student.split(" ") if w)
    for candidate in candidates:
        candidate_words = sorted(w for w in normalize(candidate, case_sensitive).split(" ") if w)
        if candidate_words == student_words:
            return True
    return False


def check_word_limit(text: str, limit: int) -> bool:
    """Empty text always passes; otherwise the word count must not exceed ``limit``."""
    trimmed = text.strip()
    if not trimmed:
        return True
    return len(_collapse(trimmed).split(" ")) <= limit


def matches_exact_mapping(
    student_matches: dict[str, Any], correct_matches: dict[str, Any]
) -> dict[str, Any]:
    """Partial credit for matching types: ``{"correct", "total", "score"}``."""
    total = len(correct_matches)
    correct = sum(1 for key, value in correct_matches.items() if student_matches.get(key) == value)
    return {"correct": correct, "total": total, "score": correct / total if total else 0}


def migrate_ntf_answer(blanks: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Convert flat ``{"1": "text"}`` note/table blanks to the structured form.

    Entries already structured keep their values; missing fields get defaults.
    """
    result: dict[str, dict[str, Any]] = {}
    for key, value in blanks.items():
        if isinstance(value, str):
            result[key] = {"answer": value, "acceptedVariants": [], "strictWordOrder": True}
        elif isinstance(value, dict) and "answer" in value:
            result[key] = {
                "answer": value["answer"],
                "acceptedVariants": value.get("acceptedVariants") or [],
                "strictWordOrder": value.get("strictWordOrder", True),
            }
    return result


def normalize_answer_on_save(text: str) -> str:
    """Trim and collapse whitespace (including NBSP) while keeping case."""
    return _WHITESPACE_NBSP.sub(" ", text).strip()


def _normalize_items(values: list[Any]) -> list[Any]:
    return [normalize_answer_on_save(v) if isinstance(v, str) else v for v in values]


def normalize_correct_answer(answer: Any) -> Any:
    """Recursively clean the string values of a stored answer key."""
    if not isinstance(answer, dict):
        return answer

    result: dict[str, Any] = {}
    for key, value in answer.items():
        if key == "answer" and isinstance(value, str):
            result[key] = normalize_answer_on_save(value)
        elif key in ("acceptedVariants", "answers") and isinstance(value, list):
            result[key] = _normalize_items(value)
        elif key in ("blanks", "labels", "matches") and isinstance(value, dict):
            record = {}
            for r_key, r_value in value.items():
                if isinstance(r_value, str):
                    record[r_key] = normalize_answer_on_save(r_value)
                elif isinstance(r_value, dict):
                    record[r_key] = normalize_correct_answer(r_value)
                else:
                    record[r_key] = r_value
            result[key] = record
        else:
            result[key] = value
    return result
