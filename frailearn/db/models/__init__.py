# SQLAlchemy models
from .assessment import AssessmentKind, GateAssessment
from .base import Base, new_id
from .curriculum import (
    BridgeChapter,
    BridgeCourse,
    Chapter,
    Exercise,
    ExerciseOutcome,
    LearningUnit,
    Lesson,
    RemedialChapter,
    UnitKind,
)
from .flashcard import Flashcard, FlashcardReviewState
from .learner import Learner, LearnerProgress, StreakState
from .mistake import Mistake, MistakeSource

__all__ = [
    # Base
    "Base",
    "new_id",
    # Learner aggregate
    "Learner",
    "LearnerProgress",
    "StreakState",
    # Curriculum
    "LearningUnit",
    "Chapter",
    "Lesson",
    "RemedialChapter",
    "BridgeChapter",
    "BridgeCourse",
    "Exercise",
    "ExerciseOutcome",
    "UnitKind",
    # Gating
    "GateAssessment",
    "AssessmentKind",
    # Remediation
    "Mistake",
    "MistakeSource",
    # Spaced repetition
    "Flashcard",
    "FlashcardReviewState",
]
