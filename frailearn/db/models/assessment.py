"""
Gate assessment model.

One row per attempt at a progress test or bridge final test. The gate identity
key is (learner_id, level, chapter_range); a retake is a new row for the same key.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, new_id


class AssessmentKind(str, enum.Enum):
    PROGRESS_TEST = "PROGRESS_TEST"
    BRIDGE_FINAL = "BRIDGE_FINAL"


class GateAssessment(Base):
    """Scored test that must be passed to unlock the next block of content."""

    __tablename__ = "gate_assessments"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(Text, default=AssessmentKind.PROGRESS_TEST.value)
    level: Mapped[str] = mapped_column(Text, nullable=False)
    chapter_range: Mapped[str] = mapped_column(Text, nullable=False)  # '1-5' or 'Bridge-<id>'
    title: Mapped[str] = mapped_column(Text, default="")

    questions: Mapped[list | None] = mapped_column(JSON)
    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    passing_score: Mapped[int] = mapped_column(Integer, default=80)

    # Results (frozen once completed_at is set)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[int] = mapped_column(Integer, default=0)
    passed: Mapped[bool] = mapped_column(Boolean, default=False)
    topic_breakdown: Mapped[dict | None] = mapped_column(JSON)
    weak_areas: Mapped[list | None] = mapped_column(JSON)
    strong_areas: Mapped[list | None] = mapped_column(JSON)
    completed_at: Mapped[datetime | None] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(default=func.now())

    __table_args__ = (Index("idx_gate_identity", "learner_id", "level", "chapter_range"),)

    def __repr__(self) -> str:
        return (
            f"<GateAssessment id={self.id} range={self.chapter_range} "
            f"score={self.score} passed={self.passed}>"
        )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
