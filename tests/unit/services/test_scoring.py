"""Tests for objective question scoring."""

import pytest

from edujobs.services.scoring import GradeResult, grade_answer


class TestSingleChoice:
    @pytest.mark.parametrize("qtype", ["R1_MCQ_SINGLE", "R3_TFNG", "R4_YNNG", "L2_MCQ"])
    def test_case_insensitive_match(self, qtype):
        result = grade_answer(qtype, {"answer": " true "}, {"answer": "TRUE"})
        assert result == GradeResult(True, 1.0)

    def test_wrong_choice(self):
        assert grade_answer("R1_MCQ_SINGLE", {"answer": "B"}, {"answer": "A"}).score == 0.0


class TestMultiChoice:
    def test_order_does_not_matter(self):
        result = grade_answer("R2_MCQ_MULTI", {"answers": ["C", "a"]}, {"answers": ["A", "C"]})
        assert result.is_correct

    def test_subset_is_wrong(self):
        result = grade_answer("R2_MCQ_MULTI", {"answers": ["A"]}, {"answers": ["A", "C"]})
        assert not result.is_correct

    def test_listening_multi(self):
        result = grade_answer("L2_MCQ", {"answers": ["B", "D"]}, {"answers": ["D", "B"]})
        assert result.is_correct


class TestTextAnswers:
    def test_variant_accepted(self):
        result = grade_answer(
            "R6_SHORT_ANSWER",
            {"answer": "UK"},
            {"answer": "United Kingdom", "acceptedVariants": ["UK"]},
        )
        assert result.is_correct

    def test_word_limit_exceeded(self):
        result = grade_answer(
            "R5_SENTENCE_COMPLETION",
            {"answer": "the very old river"},
            {"answer": "the very old river"},
            options={"wordLimit": 3},
        )
        assert not result.is_correct

    def test_case_sensitive_flag(self):
        result = grade_answer(
            "L6_SHORT_ANSWER", {"answer": "paris"}, {"answer": "Paris"}, case_sensitive=True
        )
        assert not result.is_correct


class TestPartialCredit:
    def test_matching_headings(self):
        result = grade_answer(
            "R9_MATCHING_HEADINGS",
            {"matches": {"A": "ii", "B": "iv"}},
            {"matches": {"A": "ii", "B": "iii"}},
        )
        assert result == GradeResult(False, 0.5)

    def test_word_bank(self):
        result = grade_answer(
            "R7_SUMMARY_WORD_BANK",
            {"blanks": {"1": "Forest", "2": "river"}},
            {"blanks": {"1": "forest", "2": "river"}},
        )
        assert result == GradeResult(True, 1.0)

    def test_note_table_with_flat_key(self):
        result = grade_answer(
            "R13_NOTE_TABLE_FLOWCHART",
            {"blanks": {"1": "coal", "2": "steam engine", "3": ""}},
            {"blanks": {"1": "coal", "2": "steam", "3": "iron"}},
        )
        assert result.score == pytest.approx(1 / 3)

    def test_note_table_structured_key_with_word_limit(self):
        result = grade_answer(
            "L1_FORM_NOTE_TABLE",
            {"blanks": {"1": "green street", "2": "a b c"}},
            {
                "blanks": {
                    "1": {"answer": "Green Street", "acceptedVariants": []},
                    "2": {"answer": "a b c"},
                }
            },
            options={"wordLimit": 2},
        )
        assert result.score == pytest.approx(0.5)

    def test_diagram_labels(self):
        result = grade_answer(
            "R14_DIAGRAM_LABELLING",
            {"labels": {"1": "valve", "2": "pump"}},
            {"labels": {"1": "Valve", "2": {"answer": "piston", "acceptedVariants": ["pump"]}}},
        )
        assert result.is_correct


class TestUngradable:
    def test_open_ended_type(self):
        assert grade_answer("W1_TASK_1", {"text": "essay"}, {"answer": "x"}) is None

    def test_missing_key(self):
        assert grade_answer("R1_MCQ_SINGLE", {"answer": "A"}, None) is None

    def test_empty_record_key(self):
        assert grade_answer("R11_MATCHING_FEATURES", {"matches": {}}, {"matches": {}}) is None
