"""
Curriculum models.

All completable content nodes live in one `learning_units` table, mapped with
single-table inheritance on `kind`:

- Chapter: numbered within a level, grouped into sections, holds lessons
- Lesson: child of a chapter, holds exercises
- RemedialChapter: synthesized for one weak topic, holds exercises
- BridgeChapter: part of a bridge course, holds exercises

The mastery tracker only talks to the shared LearningUnit columns.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id


class UnitKind(str, enum.Enum):
    CHAPTER = "CHAPTER"
    LESSON = "LESSON"
    REMEDIAL = "REMEDIAL"
    BRIDGE = "BRIDGE"


class ExerciseOutcome(str, enum.Enum):
    UNATTEMPTED = "UNATTEMPTED"
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"


class LearningUnit(Base):
    """Any completable content node."""

    __tablename__ = "learning_units"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[str | None] = mapped_column(
        ForeignKey("learning_units.id", ondelete="CASCADE"), index=True
    )

    level: Mapped[str | None] = mapped_column(Text)
    number: Mapped[int] = mapped_column(Integer, default=1)
    title: Mapped[str] = mapped_column(Text, default="")
    topic: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    content: Mapped[dict | None] = mapped_column(JSON)

    # Completion state (written only by the mastery tracker)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column()

    # Unlock state (written only by the section gate)
    is_unlocked: Mapped[bool] = mapped_column(Boolean, default=True)
    unlocked_at: Mapped[datetime | None] = mapped_column()
    unlock_condition: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(default=func.now())

    exercises: Mapped[list[Exercise]] = relationship(
        back_populates="unit",
        cascade="all, delete-orphan",
        order_by="Exercise.number",
    )

    __mapper_args__ = {
        "polymorphic_on": "kind",
        "polymorphic_abstract": True,
    }

    __table_args__ = (
        Index("idx_units_learner_kind", "learner_id", "kind"),
        Index("idx_units_chapter_number", "learner_id", "level", "number"),
    )

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} id={self.id} number={self.number} "
            f"completed={self.is_completed}>"
        )

    @property
    def holds_exercises(self) -> bool:
        """Chapters complete through their lessons; every other kind through exercises."""
        return self.kind != UnitKind.CHAPTER.value

    def list_exercises(self) -> list[Exercise]:
        return list(self.exercises)

    def mark_completed(self, at: datetime) -> bool:
        """Set the completion flag and timestamp together. Returns False if already complete."""
        if self.is_completed:
            return False
        self.is_completed = True
        self.completed_at = at
        return True


class Chapter(LearningUnit):
    """Numbered chapter of a level; its children are lessons."""

    __mapper_args__ = {"polymorphic_identity": UnitKind.CHAPTER.value}

    @property
    def chapter_number(self) -> int:
        return self.number


class Lesson(LearningUnit):
    """Lesson inside a chapter; `parent_id` points at the chapter."""

    __mapper_args__ = {"polymorphic_identity": UnitKind.LESSON.value}

    @property
    def chapter_id(self) -> str | None:
        return self.parent_id


class RemedialChapter(LearningUnit):
    """Synthesized unit targeting one weak topic."""

    grammar_point: Mapped[str | None] = mapped_column(Text)
    mistake_ids: Mapped[list | None] = mapped_column(JSON)
    mistake_count: Mapped[int | None] = mapped_column(Integer)
    remedial_type: Mapped[str | None] = mapped_column(Text)  # 'MICRO'
    priority: Mapped[str | None] = mapped_column(Text)  # 'HIGH', 'MEDIUM', 'LOW'
    triggered_by: Mapped[str | None] = mapped_column(Text)
    estimated_minutes: Mapped[int | None] = mapped_column(Integer)
    is_required: Mapped[bool | None] = mapped_column(Boolean)
    blocks_progress: Mapped[bool | None] = mapped_column(Boolean)

    __mapper_args__ = {"polymorphic_identity": UnitKind.REMEDIAL.value}


class BridgeChapter(LearningUnit):
    """Chapter of a bridge course between two levels."""

    bridge_course_id: Mapped[str | None] = mapped_column(
        ForeignKey("bridge_courses.id", ondelete="CASCADE"), index=True
    )

    bridge_course: Mapped[BridgeCourse | None] = relationship(back_populates="chapters")

    __mapper_args__ = {"polymorphic_identity": UnitKind.BRIDGE.value}


class BridgeCourse(Base):
    """Catch-up course for learners placed above the beginner level."""

    __tablename__ = "bridge_courses"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_level: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, default="")
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column()
    final_test_score: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    chapters: Mapped[list[BridgeChapter]] = relationship(
        back_populates="bridge_course", order_by="BridgeChapter.number"
    )

    def __repr__(self) -> str:
        return f"<BridgeCourse id={self.id} target={self.target_level} completed={self.is_completed}>"


class Exercise(Base):
    """
    One exercise of a lesson, remedial chapter or bridge chapter.

    `outcome` is written by the grading step; the mastery tracker only reads it.
    """

    __tablename__ = "exercises"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    unit_id: Mapped[str] = mapped_column(
        ForeignKey("learning_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[int] = mapped_column(Integer, default=1)
    exercise_type: Mapped[str | None] = mapped_column(Text)
    question: Mapped[str] = mapped_column(Text, default="")
    correct_answer: Mapped[str | None] = mapped_column(Text)
    options: Mapped[list | None] = mapped_column(JSON)
    explanation: Mapped[str | None] = mapped_column(Text)
    topic: Mapped[str | None] = mapped_column(Text)
    grammar_point: Mapped[str | None] = mapped_column(Text)

    outcome: Mapped[ExerciseOutcome] = mapped_column(
        Enum(ExerciseOutcome, native_enum=False, length=16),
        default=ExerciseOutcome.UNATTEMPTED,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    user_answer: Mapped[str | None] = mapped_column(Text)
    attempted_at: Mapped[datetime | None] = mapped_column()

    unit: Mapped[LearningUnit] = relationship(back_populates="exercises")

    __table_args__ = (UniqueConstraint("unit_id", "number", name="uq_exercise_unit_number"),)

    def __repr__(self) -> str:
        return f"<Exercise id={self.id} unit={self.unit_id} outcome={self.outcome.value}>"

    @property
    def is_correct(self) -> bool:
        return self.outcome == ExerciseOutcome.CORRECT
