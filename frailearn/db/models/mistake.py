"""Mistake records: one row per incorrect answer, folded into remedial chapters."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class MistakeSource(str, enum.Enum):
    EXERCISE = "EXERCISE"
    REMEDIAL_EXERCISE = "REMEDIAL_EXERCISE"
    BRIDGE_EXERCISE = "BRIDGE_EXERCISE"
    PROGRESS_TEST = "PROGRESS_TEST"
    BRIDGE_FINAL = "BRIDGE_FINAL"


class Mistake(Base):
    """
    Immutable record of one incorrect answer.

    Only `is_addressed` / `remedial_id` change, and only when the remedial
    trigger folds the mistake into a remedial chapter.
    """

    __tablename__ = "mistakes"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False
    )
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    grammar_point: Mapped[str | None] = mapped_column(Text)
    source_type: Mapped[str] = mapped_column(Text, nullable=False)
    source_id: Mapped[str | None] = mapped_column(Text)
    level: Mapped[str | None] = mapped_column(Text)
    chapter_number: Mapped[int | None] = mapped_column(Integer)
    lesson_number: Mapped[int | None] = mapped_column(Integer)

    question: Mapped[str | None] = mapped_column(Text)
    correct_answer: Mapped[str | None] = mapped_column(Text)
    user_answer: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[str] = mapped_column(Text, default="MINOR")  # 'MINOR', 'MODERATE', 'CRITICAL'

    is_addressed: Mapped[bool] = mapped_column(Boolean, default=False)
    remedial_id: Mapped[str | None] = mapped_column(
        ForeignKey("learning_units.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    __table_args__ = (
        Index("idx_mistakes_unaddressed", "learner_id", "is_addressed", "topic"),
    )

    def __repr__(self) -> str:
        return f"<Mistake id={self.id} topic={self.topic} addressed={self.is_addressed}>"
