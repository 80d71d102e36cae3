"""
Adaptive progress engine.

Components:
- MasteryTracker: Unit completion from exercise outcomes
- SectionGate: Section sealing, gate assessments and unlocking
- RemedialTrigger: Folds repeated mistakes into remedial chapters
- StreakTracker: Daily-activity streaks
- AdaptiveOrchestrator: Post-activity side effects in a fixed order

Components are imported from their modules; this package only re-exports the
shared result types.
"""
from frailearn.adaptive.models import (
    RETRY_MESSAGE,
    ActivityReport,
    ActivityType,
    AssessmentCompletedError,
    AssessmentNotFoundError,
    ChapterRange,
    CompletionResult,
    EngineError,
    GateOutcome,
    GateRequirement,
    GenerationRequest,
    GradedAnswer,
    LearnerNotFoundError,
    Level,
    SectionNotSealedError,
    StreakUpdate,
    UnitLockedError,
    UnitNotFoundError,
)

__all__ = [
    "RETRY_MESSAGE",
    "ActivityReport",
    "ActivityType",
    "AssessmentCompletedError",
    "AssessmentNotFoundError",
    "ChapterRange",
    "CompletionResult",
    "EngineError",
    "GateOutcome",
    "GateRequirement",
    "GenerationRequest",
    "GradedAnswer",
    "LearnerNotFoundError",
    "Level",
    "SectionNotSealedError",
    "StreakUpdate",
    "UnitLockedError",
    "UnitNotFoundError",
]
