"""
Result types, enums and errors for the adaptive engine.

Engine components return these plain dataclasses rather than ORM rows so callers
never hold on to session-bound state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

RETRY_MESSAGE = "Could not generate your next content yet, will retry."


class ActivityType(str, Enum):
    EXERCISE = "EXERCISE"
    TEST = "TEST"
    QUIZ = "QUIZ"
    REVIEW = "REVIEW"
    LOGIN = "LOGIN"


# Activities after which accumulated mistakes are checked for remediation
REMEDIAL_ACTIVITIES = frozenset({ActivityType.EXERCISE, ActivityType.TEST, ActivityType.QUIZ})


class Level(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"

    @property
    def next(self) -> Level | None:
        order = list(Level)
        index = order.index(self)
        return order[index + 1] if index + 1 < len(order) else None


# =============================================================================
# Errors
# =============================================================================


class EngineError(Exception):
    """Base class for progress engine errors."""


class LearnerNotFoundError(EngineError):
    pass


class UnitNotFoundError(EngineError):
    pass


class SectionNotSealedError(EngineError):
    """Raised when an assessment is requested for a section with incomplete chapters."""


class UnitLockedError(EngineError):
    """Raised on activity in a chapter whose section gate has not been passed."""


class AssessmentNotFoundError(EngineError):
    pass


class AssessmentCompletedError(EngineError):
    """Raised on any attempt to regrade an assessment that already has completed_at."""


# =============================================================================
# Mastery
# =============================================================================


@dataclass
class CompletionResult:
    """Outcome of re-evaluating completion after one grading event."""

    lesson_completed: bool = False
    chapter_completed: bool = False
    newly_completed: list[str] = field(default_factory=list)
    unit_id: str | None = None
    parent_id: str | None = None


# =============================================================================
# Section gate
# =============================================================================


@dataclass(frozen=True)
class ChapterRange:
    """Inclusive chapter-number range of one section within a level."""

    level: str
    start: int
    end: int

    @classmethod
    def for_section(cls, level: str, section_number: int, section_size: int) -> ChapterRange:
        if section_number < 1:
            raise ValueError(f"Section numbers start at 1, got {section_number}")
        end = section_number * section_size
        return cls(level=level, start=end - section_size + 1, end=end)

    @classmethod
    def parse(cls, level: str, key: str) -> ChapterRange:
        start, _, end = key.partition("-")
        return cls(level=level, start=int(start), end=int(end))

    @property
    def key(self) -> str:
        return f"{self.start}-{self.end}"

    def following(self, section_size: int) -> ChapterRange:
        return ChapterRange(level=self.level, start=self.end + 1, end=self.end + section_size)

    def section_number(self, section_size: int) -> int:
        return self.end // section_size


@dataclass
class GateRequirement:
    """Whether a sealed section should be offered its gating assessment."""

    learner_id: str
    chapter_range: ChapterRange
    sealed: bool
    offer: bool
    message: str = ""


@dataclass(frozen=True)
class GenerationRequest:
    """Content that must be synthesized because a gate was passed."""

    learner_id: str
    level: str
    first_chapter: int
    last_chapter: int
    # Chapters numbered above this are stored locked; None stores all unlocked
    unlocked_through: int | None = None


@dataclass
class GradedAnswer:
    """One answer to an assessment question, already graded upstream."""

    question_id: str
    is_correct: bool
    topic: str = "General"
    user_answer: str | None = None
    correct_answer: str | None = None
    question: str | None = None
    difficulty: str = "MEDIUM"


@dataclass
class GateOutcome:
    """Result of submitting a gate assessment."""

    assessment_id: str
    score: int
    passed: bool
    correct_answers: int
    total_questions: int
    unlocked_chapter_ids: list[str] = field(default_factory=list)
    generation: GenerationRequest | None = None
    generated_chapter_ids: list[str] = field(default_factory=list)
    level_advanced_to: str | None = None
    weak_areas: list[str] = field(default_factory=list)
    strong_areas: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def generation_pending(self) -> bool:
        return self.generation is not None and not self.generated_chapter_ids


# =============================================================================
# Spaced repetition
# =============================================================================


@dataclass(frozen=True)
class ReviewOutcome:
    """New SM-2 values after one review."""

    interval: int
    ease_factor: float
    repetition_count: int
    next_due_at: datetime
    total_reviews: int
    correct_reviews: int
    last_reviewed_at: datetime


@dataclass(frozen=True)
class DueCard:
    review_state_id: str
    flashcard_id: str
    front_text: str
    back_text: str
    next_due_at: datetime
    interval: int
    ease_factor: float


# =============================================================================
# Streak / orchestration
# =============================================================================


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    last_activity_date: date | None
    changed: bool


@dataclass
class ActivityReport:
    """What the orchestrator did after one learner activity."""

    learner_id: str
    activity_type: ActivityType
    streak: StreakUpdate | None = None
    remedial_chapter_ids: list[str] = field(default_factory=list)
    progress_updated: bool = False
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class ExerciseSubmission:
    """Result returned to the caller of an exercise submission."""

    exercise_id: str
    is_correct: bool
    correct_answer: str | None
    lesson_completed: bool
    chapter_completed: bool
    already_correct: bool = False
    gate: GateRequirement | None = None
    issued_flashcards: int = 0
    activity: ActivityReport | None = None


@dataclass
class SweepReport:
    """Summary of one sweep tick over a batch of learners."""

    processed: list[str] = field(default_factory=list)
    remedial_chapter_ids: dict[str, list[str]] = field(default_factory=dict)
    generated_chapter_ids: dict[str, list[str]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def total_remedial(self) -> int:
        return sum(len(ids) for ids in self.remedial_chapter_ids.values())

    @property
    def total_generated(self) -> int:
        return sum(len(ids) for ids in self.generated_chapter_ids.values())


@dataclass
class RetentionReport:
    mistakes_deleted: int = 0
    assessments_deleted: int = 0
