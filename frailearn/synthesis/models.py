"""
Payload models for the content synthesis service.

The engine never builds prompts or parses free text; it only validates the
structured payloads the service returns.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SynthesizedExercise(BaseModel):
    type: str = "FILL_IN_BLANK"
    question: str
    correct_answer: str = Field(alias="correctAnswer")
    options: list[str] = Field(default_factory=list)
    explanation: str | None = None
    topic: str | None = None
    grammar_point: str | None = Field(default=None, alias="grammarPoint")

    model_config = {"populate_by_name": True}


class SynthesizedLesson(BaseModel):
    lesson_number: int = Field(alias="lessonNumber")
    title: str
    topic: str | None = None
    content: dict = Field(default_factory=dict)
    exercises: list[SynthesizedExercise] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class SynthesizedChapter(BaseModel):
    title: str
    topic: str | None = None
    description: str | None = None
    estimated_minutes: int | None = Field(default=None, alias="estimatedMinutes")
    content: dict = Field(default_factory=dict)
    lessons: list[SynthesizedLesson] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RemedialContent(BaseModel):
    title: str
    description: str | None = None
    content: dict = Field(default_factory=dict)
    exercises: list[SynthesizedExercise] = Field(default_factory=list)


class AssessmentQuestion(BaseModel):
    id: str
    question: str
    type: str = "MULTIPLE_CHOICE"
    options: list[str] = Field(default_factory=list)
    correct_answer: str = Field(alias="correctAnswer")
    topic: str = "General"
    difficulty: str = "MEDIUM"

    model_config = {"populate_by_name": True}


class SynthesizedFlashcard(BaseModel):
    front_text: str = Field(alias="frontText")
    back_text: str = Field(alias="backText")
    example_sentence: str | None = Field(default=None, alias="exampleSentence")

    model_config = {"populate_by_name": True}


class MistakeSample(BaseModel):
    """Mistake summary sent to the synthesizer as remediation context."""

    question: str | None = None
    user_answer: str | None = None
    correct_answer: str | None = None
    topic: str
