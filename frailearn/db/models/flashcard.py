"""Flashcards and per-learner SM-2 review state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Float, ForeignKey, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, new_id


class Flashcard(Base):
    """A fact to re-show: front/back text issued after a lesson completes."""

    __tablename__ = "flashcards"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    level: Mapped[str | None] = mapped_column(Text)
    chapter_number: Mapped[int | None] = mapped_column(Integer)
    topic: Mapped[str | None] = mapped_column(Text)
    grammar_point: Mapped[str | None] = mapped_column(Text)
    front_text: Mapped[str] = mapped_column(Text, nullable=False)
    back_text: Mapped[str] = mapped_column(Text, nullable=False)
    example_sentence: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    review_state: Mapped[FlashcardReviewState | None] = relationship(
        back_populates="flashcard", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Flashcard id={self.id} topic={self.topic}>"


class FlashcardReviewState(Base):
    """
    SM-2 scheduling state for one (learner, flashcard) pair.

    Created due immediately; mutated only by the review scheduler.
    """

    __tablename__ = "flashcard_review_states"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=new_id)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), nullable=False
    )
    flashcard_id: Mapped[str] = mapped_column(
        ForeignKey("flashcards.id", ondelete="CASCADE"), nullable=False
    )

    interval: Mapped[int] = mapped_column(Integer, default=0)  # days
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    repetition_count: Mapped[int] = mapped_column(Integer, default=0)
    next_due_at: Mapped[datetime] = mapped_column(nullable=False)

    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    correct_reviews: Mapped[int] = mapped_column(Integer, default=0)
    last_reviewed_at: Mapped[datetime | None] = mapped_column()

    flashcard: Mapped[Flashcard] = relationship(back_populates="review_state")

    __table_args__ = (
        UniqueConstraint("learner_id", "flashcard_id", name="uq_review_learner_flashcard"),
        Index("idx_review_due", "learner_id", "next_due_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlashcardReviewState card={self.flashcard_id} interval={self.interval} "
            f"ease={self.ease_factor:.2f} due={self.next_due_at}>"
        )
