"""IELTS band-descriptor prompts and output schemas for open-ended grading."""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

# ===========================================
# Band descriptors
# ===========================================

WRITING_BAND_DESCRIPTORS = """
IELTS Writing Band Descriptors (0-9 scale, half bands allowed e.g. 6.5):

Task Achievement / Task Response:
- Band 9: Fully addresses all parts of the task; presents a fully developed position
- Band 7: Addresses all parts of the task; presents a clear position throughout
- Band 5: Addresses the task only partially; position is not always clear
- Band 3: Does not adequately address any part of the task

Coherence and Cohesion:
- Band 9: Uses cohesion in such a way that it attracts no attention; skilfully manages paragraphing
- Band 7: Logically organises information and ideas; uses a range of cohesive devices appropriately
- Band 5: Presents information with some organisation but lacks overall progression
- Band 3: Does not organise ideas logically; overuses or underuses cohesive devices

Lexical Resource:
- Band 9: Uses a wide range of vocabulary with very natural and sophisticated control of lexical features
- Band 7: Uses a sufficient range of vocabulary to allow some flexibility and precision
- Band 5: Uses a limited range of vocabulary, but this is minimally adequate for the task
- Band 3: Uses only a very limited range of words and expressions

Grammatical Range and Accuracy:
- Band 9: Uses a wide range of structures with full flexibility and accuracy
- Band 7: Uses a variety of complex structures with some flexibility; frequent error-free sentences
- Band 5: Uses only a limited range of structures; attempts complex sentences but with errors
- Band 3: Attempts sentence forms but errors in grammar and punctuation predominate
"""  # noqa: E501

SPEAKING_BAND_DESCRIPTORS = """
IELTS Speaking Band Descriptors (0-9 scale, half bands allowed e.g. 6.5):

Fluency and Coherence:
- Band 9: Speaks fluently with only very occasional repetition or self-correction
- Band 7: Speaks at length without noticeable effort or loss of coherence
- Band 5: Usually maintains flow of speech but uses repetition, self-correction and/or slow speech
- Band 3: Speaks with long pauses; limited ability to link simple sentences

Lexical Resource:
- Band 9: Uses vocabulary with full flexibility and precision in all topics
- Band 7: Uses vocabulary resource flexibly to discuss a variety of topics; uses paraphrase
- Band 5: Manages to talk about familiar and unfamiliar topics but uses vocabulary with limited flexibility
- Band 3: Uses simple vocabulary to convey personal information

Grammatical Range and Accuracy:
- Band 9: Uses a full range of structures naturally and appropriately; errors are rare
- Band 7: Uses a range of complex structures with some flexibility; frequently produces error-free sentences
- Band 5: Produces basic sentence forms and some correct simple sentences
- Band 3: Attempts basic sentence forms; subordinate structures are rare

Pronunciation:
- Band 9: Uses a full range of pronunciation features with precision and subtlety
- Band 7: Shows all positive features of Band 6 and some of Band 8
- Band 5: Shows all positive features of Band 4 and some of Band 6
- Band 3: Shows some features of Band 2 and some of Band 4
NOTE: Pronunciation assessment from text transcript only has limited accuracy. Flag this limitation in feedback.
"""  # noqa: E501

Skill = Literal["WRITING", "SPEAKING"]

# ===========================================
# Output schemas
# ===========================================


def _half_band(value: float) -> float:
    return round(value * 2) / 2


Band = float


class Highlight(BaseModel):
    type: Literal["grammar", "vocabulary", "coherence", "score_suggestion", "general"]
    startOffset: int = Field(ge=0)
    endOffset: int = Field(ge=0)
    content: str
    suggestedFix: Optional[str] = None
    severity: Literal["error", "warning", "suggestion"]
    confidence: float = Field(ge=0, le=1)
    originalContextSnippet: str


class _GradingOutput(BaseModel):
    overallScore: Band = Field(ge=0, le=9)
    generalFeedback: str
    highlights: list[Highlight] = Field(default_factory=list)

    @field_validator("overallScore")
    @classmethod
    def _round_overall(cls, v: float) -> float:
        return _half_band(v)


class WritingCriteria(BaseModel):
    taskAchievement: Band = Field(ge=0, le=9)
    coherence: Band = Field(ge=0, le=9)
    lexicalResource: Band = Field(ge=0, le=9)
    grammaticalRange: Band = Field(ge=0, le=9)

    @field_validator("*")
    @classmethod
    def _round(cls, v: float) -> float:
        return _half_band(v)


class SpeakingCriteria(BaseModel):
    fluency: Band = Field(ge=0, le=9)
    lexicalResource: Band = Field(ge=0, le=9)
    grammaticalRange: Band = Field(ge=0, le=9)
    pronunciation: Band = Field(ge=0, le=9)

    @field_validator("*")
    @classmethod
    def _round(cls, v: float) -> float:
        return _half_band(v)


class WritingGradingOutput(_GradingOutput):
    criteriaScores: WritingCriteria


class SpeakingGradingOutput(_GradingOutput):
    criteriaScores: SpeakingCriteria


GradingOutput = Union[WritingGradingOutput, SpeakingGradingOutput]

MAX_HIGHLIGHTS = 15


# ===========================================
# Prompts
# ===========================================


def _writing_prompt(student_text: str, question_prompt: Optional[str]) -> str:
    task = f"TASK PROMPT:\n{question_prompt}\n\n" if question_prompt else ""
    return f"""You are an experienced IELTS examiner. Assess the following student Writing submission using official IELTS band descriptors.

{WRITING_BAND_DESCRIPTORS}

SCORING RULES:
- Use half-band increments (e.g. 5.0, 5.5, 6.0, 6.5)
- Overall score = average of 4 criteria, rounded to nearest 0.5
- Be fair but rigorous, match calibration to real IELTS examiners
- Provide specific, actionable feedback

HIGHLIGHT RULES:
- Anchor each highlight to exact character offsets in the student text
- Include the originalContextSnippet (the exact text being highlighted)
- Focus on the most impactful issues (max {MAX_HIGHLIGHTS} highlights)
- Assign confidence scores based on certainty of the issue

{task}STUDENT WRITING:
{student_text}

Respond with valid JSON with keys overallScore, criteriaScores (taskAchievement, coherence, lexicalResource, grammaticalRange), generalFeedback and highlights. No markdown code fences."""  # noqa: E501


def _speaking_prompt(student_text: str, question_prompt: Optional[str]) -> str:
    task = f"SPEAKING PROMPT:\n{question_prompt}\n\n" if question_prompt else ""
    return f"""You are an experienced IELTS examiner. Assess the following student Speaking transcript using official IELTS band descriptors.

{SPEAKING_BAND_DESCRIPTORS}

SCORING RULES:
- Use half-band increments (e.g. 5.0, 5.5, 6.0, 6.5)
- Overall score = average of 4 criteria, rounded to nearest 0.5
- IMPORTANT: Pronunciation assessment from text transcript has limited accuracy. Flag this in your feedback and use moderate confidence for pronunciation scores
- Be fair but rigorous, match calibration to real IELTS examiners

HIGHLIGHT RULES:
- Anchor each highlight to exact character offsets in the transcript text
- Include the originalContextSnippet (the exact text being highlighted)
- Focus on the most impactful issues (max {MAX_HIGHLIGHTS} highlights)
- Assign confidence scores based on certainty of the issue

{task}STUDENT TRANSCRIPT:
{student_text}

Respond with valid JSON with keys overallScore, criteriaScores (fluency, lexicalResource, grammaticalRange, pronunciation), generalFeedback and highlights. No markdown code fences."""  # noqa: E501


def get_grading_prompt(
    skill: Skill, student_text: str, question_prompt: Optional[str] = None
) -> tuple[str, type[GradingOutput]]:
    """Return the prompt and output model for a Writing or Speaking submission."""
    if skill == "WRITING":
        return _writing_prompt(student_text, question_prompt), WritingGradingOutput
    return _speaking_prompt(student_text, question_prompt), SpeakingGradingOutput
