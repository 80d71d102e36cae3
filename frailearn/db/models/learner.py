"""
Learner aggregate root.

Every per-learner transition locks the `learners` row first, so the learner is
the unit of serialisation for the whole engine.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, Float, ForeignKey, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id


class Learner(Base):
    """A learner and their current proficiency level."""

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    current_level: Mapped[str] = mapped_column(Text, default="BEGINNER")
    last_active_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    # Relationships
    streak: Mapped[StreakState | None] = relationship(
        back_populates="learner", uselist=False, cascade="all, delete-orphan"
    )
    progress: Mapped[LearnerProgress | None] = relationship(
        back_populates="learner", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Learner id={self.id} level={self.current_level}>"


class StreakState(Base):
    """Daily-activity continuity counter, one row per learner."""

    __tablename__ = "streak_states"

    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date)

    learner: Mapped[Learner] = relationship(back_populates="streak")

    def __repr__(self) -> str:
        return (
            f"<StreakState learner={self.learner_id} current={self.current_streak} "
            f"longest={self.longest_streak}>"
        )


class LearnerProgress(Base):
    """Aggregated progress metrics, recomputed by the orchestrator after each activity."""

    __tablename__ = "learner_progress"

    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), primary_key=True
    )
    total_lessons_completed: Mapped[int] = mapped_column(Integer, default=0)
    total_exercises_attempted: Mapped[int] = mapped_column(Integer, default=0)
    overall_accuracy: Mapped[float] = mapped_column(Float, default=0.0)
    total_tests_taken: Mapped[int] = mapped_column(Integer, default=0)
    average_test_score: Mapped[float] = mapped_column(Float, default=0.0)
    current_chapter: Mapped[int | None] = mapped_column(Integer)
    current_lesson: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    learner: Mapped[Learner] = relationship(back_populates="progress")
