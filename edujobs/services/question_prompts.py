"""Prompts, output schemas and section transforms for IELTS Reading question generation.

One entry per question type R1..R14:
- a type instruction embedded in the shared system prompt
- a pydantic model the model output is validated against
- a transform from validated output into the exercise section format
"""

from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field

# ===========================================
# System prompt
# ===========================================

IELTS_SYSTEM_PROMPT = """You are an experienced IELTS examiner and question writer. Generate high-quality IELTS Reading questions based on the provided passage. Follow these rules strictly:
- Questions must be answerable ONLY from the passage text provided
- Each question must test a different aspect of the passage
- Difficulty calibration matters, follow the specified difficulty level
- Generate exactly the requested number of questions
- All answers must be verifiable against the passage"""  # noqa: E501

DIFFICULTY_INSTRUCTIONS = {
    "easy": "Easy difficulty: Use straightforward vocabulary, correct answers use passage words directly, obvious distractors that are clearly wrong.",  # noqa: E501
    "medium": "Medium difficulty: Use paraphrased statements, plausible distractors using passage vocabulary, some inference required.",  # noqa: E501
    "hard": "Hard difficulty: Heavy paraphrasing, subtle distractors requiring careful reading, NOT_GIVEN requires deep topic understanding, synonym variants in answers.",  # noqa: E501
}


# ===========================================
# Output schemas
# ===========================================


class OptionItem(BaseModel):
    label: str
    text: str


class MCQSingleQuestion(BaseModel):
    questionText: str
    options: list[OptionItem] = Field(min_length=4, max_length=4)
    correctAnswer: str


class MCQSingleOutput(BaseModel):
    questions: list[MCQSingleQuestion]


class MCQMultiQuestion(BaseModel):
    questionText: str
    options: list[OptionItem] = Field(min_length=5, max_length=7)
    correctAnswers: list[str] = Field(min_length=2, max_length=3)
    maxSelections: int


class MCQMultiOutput(BaseModel):
    questions: list[MCQMultiQuestion]


class TFNGQuestion(BaseModel):
    questionText: str
    correctAnswer: Literal["TRUE", "FALSE", "NOT_GIVEN"]


class TFNGOutput(BaseModel):
    questions: list[TFNGQuestion]


class YNNGQuestion(BaseModel):
    questionText: str
    correctAnswer: Literal["YES", "NO", "NOT_GIVEN"]


class YNNGOutput(BaseModel):
    questions: list[YNNGQuestion]


class TextAnswerQuestion(BaseModel):
    questionText: str
    correctAnswer: str
    acceptedVariants: list[str] = Field(default_factory=list)
    wordLimit: Optional[int] = None


class TextAnswerOutput(BaseModel):
    questions: list[TextAnswerQuestion]


class WordBankBlank(BaseModel):
    blankIndex: str
    correctAnswer: str


class WordBankOutput(BaseModel):
    summaryText: str
    wordBank: list[str]
    questions: list[WordBankBlank]


class MatchPair(BaseModel):
    sourceIndex: str
    targetIndex: str


class MatchingOutput(BaseModel):
    sourceItems: list[str]
    targetItems: list[str]
    matches: list[MatchPair]
    questionText: str


class BlankAnswer(BaseModel):
    blankId: str
    answer: str
    acceptedVariants: list[str] = Field(default_factory=list)


class NoteTableFlowchartOutput(BaseModel):
    subFormat: Literal["note", "table", "flowchart"]
    structure: str
    wordLimit: int
    blanks: list[BlankAnswer]
    questionText: str


class DiagramLabel(BaseModel):
    labelId: str
    answer: str
    acceptedVariants: list[str] = Field(default_factory=list)


class DiagramLabellingOutput(BaseModel):
    labels: list[DiagramLabel]
    questionText: str


# ===========================================
# Section format
# ===========================================


class GeneratedQuestion(BaseModel):
    questionText: str
    questionType: str
    options: Optional[dict[str, Any]] = None
    correctAnswer: Optional[dict[str, Any]] = None
    wordLimit: Optional[int] = None


class GeneratedSection(BaseModel):
    sectionType: str
    instructions: str
    questions: list[GeneratedQuestion]


# ===========================================
# Transforms
# ===========================================


def _mcq_single(qtype: str, out: MCQSingleOutput) -> GeneratedSection:
    return GeneratedSection(
        sectionType=qtype,
        instructions="Choose the correct letter, A, B, C or D.",
        questions=[
            GeneratedQuestion(
                questionText=q.questionText,
                questionType=qtype,
                options={"items": [o.model_dump() for o in q.options]},
                correctAnswer={"answer": q.correctAnswer},
            )
            for q in out.questions
        ],
    )


def _mcq_multi(qtype: str, out: MCQMultiOutput) -> GeneratedSection:
    return GeneratedSection(
        sectionType=qtype,
        instructions="Choose the correct letters.",
        questions=[
            GeneratedQuestion(
                questionText=q.questionText,
                questionType=qtype,
                options={
                    "items": [o.model_dump() for o in q.options],
                    "maxSelections": q.maxSelections,
                },
                correctAnswer={"answers": q.correctAnswers},
            )
            for q in out.questions
        ],
    )


def _judgement(instructions: str) -> Callable[[str, Any], GeneratedSection]:
    def transform(qtype: str, out: Any) -> GeneratedSection:
        return GeneratedSection(
            sectionType=qtype,
            instructions=instructions,
            questions=[
                GeneratedQuestion(
                    questionText=q.questionText,
                    questionType=qtype,
                    correctAnswer={"answer": q.correctAnswer},
                )
                for q in out.questions
            ],
        )

    return transform


def _text_answer(instructions: str) -> Callable[[str, TextAnswerOutput], GeneratedSection]:
    def transform(qtype: str, out: TextAnswerOutput) -> GeneratedSection:
        return GeneratedSection(
            sectionType=qtype,
            instructions=instructions,
            questions=[
                GeneratedQuestion(
                    questionText=q.questionText,
                    questionType=qtype,
                    correctAnswer={
                        "answer": q.correctAnswer,
                        "acceptedVariants": q.acceptedVariants,
                        "strictWordOrder": True,
                    },
                    wordLimit=q.wordLimit if q.wordLimit is not None else 3,
                )
                for q in out.questions
            ],
        )

    return transform


def _word_bank(qtype: str, out: WordBankOutput) -> GeneratedSection:
    # One question holding every blank of the summary
    blanks = {q.blankIndex: q.correctAnswer for q in out.questions}
    return GeneratedSection(
        sectionType=qtype,
        instructions="Complete the summary below. Choose words from the box.",
        questions=[
            GeneratedQuestion(
                questionText=out.summaryText,
                questionType=qtype,
                options={"wordBank": out.wordBank, "summaryText": out.summaryText},
                correctAnswer={"blanks": blanks},
            )
        ],
    )


def _matching(qtype: str, out: MatchingOutput) -> GeneratedSection:
    matches = {m.sourceIndex: m.targetIndex for m in out.matches}
    return GeneratedSection(
        sectionType=qtype,
        instructions=out.questionText,
        questions=[
            GeneratedQuestion(
                questionText=out.questionText,
                questionType=qtype,
                options={"sourceItems": out.sourceItems, "targetItems": out.targetItems},
                correctAnswer={"matches": matches},
            )
        ],
    )


def _note_table(qtype: str, out: NoteTableFlowchartOutput) -> GeneratedSection:
    blanks = {
        b.blankId: {
            "answer": b.answer,
            "acceptedVariants": b.acceptedVariants,
            "strictWordOrder": True,
        }
        for b in out.blanks
    }
    return GeneratedSection(
        sectionType=qtype,
        instructions=out.questionText,
        questions=[
            GeneratedQuestion(
                questionText=out.questionText,
                questionType=qtype,
                options={
                    "subFormat": out.subFormat,
                    "structure": out.structure,
                    "wordLimit": out.wordLimit,
                },
                correctAnswer={"blanks": blanks},
            )
        ],
    )


def _diagram(qtype: str, out: DiagramLabellingOutput) -> GeneratedSection:
    labels = {
        label.labelId: {
            "answer": label.answer,
            "acceptedVariants": label.acceptedVariants,
            "strictWordOrder": True,
        }
        for label in out.labels
    }
    return GeneratedSection(
        sectionType=qtype,
        instructions=out.questionText,
        questions=[
            GeneratedQuestion(
                questionText=out.questionText,
                questionType=qtype,
                options={
                    "diagramUrl": "pending-upload",
                    "labelPositions": [label.labelId for label in out.labels],
                    "wordLimit": 2,
                },
                correctAnswer={"labels": labels},
            )
        ],
    )


# ===========================================
# Type table
# ===========================================


@dataclass(frozen=True)
class QuestionTypeSpec:
    instructions: str
    output_model: type[BaseModel]
    transform: Callable[[str, Any], GeneratedSection]


QUESTION_TYPES: dict[str, QuestionTypeSpec] = {
    "R1_MCQ_SINGLE": QuestionTypeSpec(
        "Generate Multiple Choice questions with 4 options (A, B, C, D). Only ONE answer is correct. Create plausible distractors that test careful reading.",  # noqa: E501
        MCQSingleOutput,
        _mcq_single,
    ),
    "R2_MCQ_MULTI": QuestionTypeSpec(
        "Generate Multiple Choice questions with 5-7 options. 2-3 answers are correct. Specify maxSelections. Create plausible distractors.",  # noqa: E501
        MCQMultiOutput,
        _mcq_multi,
    ),
    "R3_TFNG": QuestionTypeSpec(
        "Generate True/False/Not Given statements. Each statement should be classified as TRUE (agrees with passage), FALSE (contradicts passage), or NOT_GIVEN (no information in passage). Ensure a good mix of all three answer types.",  # noqa: E501
        TFNGOutput,
        _judgement(
            "Do the following statements agree with the information given in the passage? Write TRUE, FALSE, or NOT GIVEN."  # noqa: E501
        ),
    ),
    "R4_YNNG": QuestionTypeSpec(
        "Generate Yes/No/Not Given statements about the writer's views/claims. Each statement should be classified as YES (writer agrees), NO (writer disagrees), or NOT_GIVEN (writer's view not stated). Ensure a good mix.",  # noqa: E501
        YNNGOutput,
        _judgement(
            "Do the following statements agree with the views of the writer? Write YES, NO, or NOT GIVEN."  # noqa: E501
        ),
    ),
    "R5_SENTENCE_COMPLETION": QuestionTypeSpec(
        "Generate Sentence Completion questions. Each question is an incomplete sentence that must be completed using words from the passage. Provide the correct answer and accepted variants (synonyms, alternative phrasing). Include a word limit.",  # noqa: E501
        TextAnswerOutput,
        _text_answer(
            "Complete the sentences below. Use NO MORE THAN THREE WORDS from the passage for each answer."  # noqa: E501
        ),
    ),
    "R6_SHORT_ANSWER": QuestionTypeSpec(
        "Generate Short Answer questions (WH-questions). Answers should be brief text taken from the passage. Provide accepted variants. Include a word limit.",  # noqa: E501
        TextAnswerOutput,
        _text_answer(
            "Answer the questions below. Use NO MORE THAN THREE WORDS from the passage for each answer."  # noqa: E501
        ),
    ),
    "R7_SUMMARY_WORD_BANK": QuestionTypeSpec(
        "Generate a Summary with Word Bank. Create a summary of part of the passage with blanks, and a word bank containing the correct answers plus distractors. The word bank should have more words than blanks.",  # noqa: E501
        WordBankOutput,
        _word_bank,
    ),
    "R8_SUMMARY_PASSAGE": QuestionTypeSpec(
        "Generate Summary Completion questions where answers come directly from the passage (no word bank). Each question is a sentence with a blank to fill. Provide correct answer and accepted variants.",  # noqa: E501
        TextAnswerOutput,
        _text_answer("Complete the summary below using words from the passage."),
    ),
    "R9_MATCHING_HEADINGS": QuestionTypeSpec(
        "Generate Matching Headings. Create headings (more headings than paragraphs as distractors) that match to paragraph numbers. sourceItems = paragraph labels (e.g., 'Paragraph A'), targetItems = headings (include extras as distractors). Provide correct matches.",  # noqa: E501
        MatchingOutput,
        _matching,
    ),
    "R10_MATCHING_INFORMATION": QuestionTypeSpec(
        "Generate Matching Information questions. Statements must be matched to the correct paragraph. sourceItems = statements, targetItems = paragraph labels. Provide correct matches.",  # noqa: E501
        MatchingOutput,
        _matching,
    ),
    "R11_MATCHING_FEATURES": QuestionTypeSpec(
        "Generate Matching Features questions. Items must be matched to categories/people/features from the passage. sourceItems = items to match, targetItems = categories. Provide correct matches.",  # noqa: E501
        MatchingOutput,
        _matching,
    ),
    "R12_MATCHING_SENTENCE_ENDINGS": QuestionTypeSpec(
        "Generate Matching Sentence Endings. sourceItems = sentence beginnings, targetItems = sentence endings (include extras as distractors). Provide correct matches.",  # noqa: E501
        MatchingOutput,
        _matching,
    ),
    "R13_NOTE_TABLE_FLOWCHART": QuestionTypeSpec(
        "Generate Note/Table/Flowchart Completion. Choose a subFormat (note, table, or flowchart). Create a structure string with blanks (marked as ___1___, ___2___, etc.). Provide answers for each blank with accepted variants. Set an appropriate word limit.",  # noqa: E501
        NoteTableFlowchartOutput,
        _note_table,
    ),
    "R14_DIAGRAM_LABELLING": QuestionTypeSpec(
        "Generate Diagram Labelling answers. Since diagrams require images, generate label text answers based on passage content. Each label should have an ID, the correct answer text, and accepted variants. These labels would be placed on a diagram image.",  # noqa: E501
        DiagramLabellingOutput,
        _diagram,
    ),
}


def get_type_spec(question_type: str) -> QuestionTypeSpec:
    spec = QUESTION_TYPES.get(question_type)
    if spec is None:
        raise ValueError(f"Unsupported question type for AI generation: {question_type}")
    return spec


def build_system_prompt(question_type: str, count: int, difficulty: str) -> str:
    """Shared system prompt plus difficulty and type instructions."""
    spec = get_type_spec(question_type)
    difficulty_text = DIFFICULTY_INSTRUCTIONS.get(difficulty, DIFFICULTY_INSTRUCTIONS["medium"])
    return f"""{IELTS_SYSTEM_PROMPT}

{difficulty_text}

{spec.instructions}

Generate exactly {count} questions."""


def build_generation_prompt(passage_text: str, count: int) -> str:
    return f"""READING PASSAGE:

{passage_text}

Generate exactly {count} questions.

Respond with valid JSON only. No markdown code fences."""


def transform_to_section(question_type: str, parsed: BaseModel) -> GeneratedSection:
    """Convert validated model output into the exercise section format."""
    return get_type_spec(question_type).transform(question_type, parsed)
