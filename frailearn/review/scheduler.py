"""
SM-2 Spaced Repetition Scheduler.

Implements the binary-grade variant of SM-2 used for flashcard review:

- Correct: repetitions + 1, interval 1 -> 6 -> interval * ease (halves round up), ease + 0.1
- Incorrect: interval back to 1, ease - 0.2 (floored at 1.3), repetitions kept

The due deck is every review state with next_due_at <= now, earliest first,
capped at the configured batch size.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import get_settings
from frailearn.adaptive.models import DueCard, ReviewOutcome
from frailearn.db.models import Flashcard, FlashcardReviewState
from frailearn.utils.time import utcnow

# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    first_interval: int = 1  # Days for first review
    second_interval: int = 6  # Days for second review
    ease_bonus: float = 0.1
    ease_penalty: float = 0.2

    @classmethod
    def from_settings(cls) -> SM2Config:
        settings = get_settings()
        return cls(
            initial_easiness=settings.sm2_initial_ease,
            minimum_easiness=settings.sm2_minimum_ease,
            first_interval=settings.sm2_first_interval,
            second_interval=settings.sm2_second_interval,
            ease_bonus=settings.sm2_ease_bonus,
            ease_penalty=settings.sm2_ease_penalty,
        )


class SM2Scheduler:
    """
    Pure SM-2 calculation over a review state.

    Each card has:
    - Ease Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review
    - Repetitions: Correct recalls so far (not reset by a lapse)
    """

    def __init__(self, config: SM2Config | None = None):
        self.config = config or SM2Config()

    def review(
        self, state: FlashcardReviewState, was_correct: bool, now: datetime
    ) -> ReviewOutcome:
        """
        Calculate the state after one review.

        Args:
            state: Current review state (not modified)
            was_correct: Whether the learner recalled the card
            now: Review time

        Returns:
            ReviewOutcome with the new interval, ease, counters and due date
        """
        ease = state.ease_factor
        repetitions = state.repetition_count or 0

        if was_correct:
            repetitions += 1
            if repetitions == 1:
                interval = self.config.first_interval
            elif repetitions == 2:
                interval = self.config.second_interval
            else:
                interval = math.floor((state.interval or 0) * ease + 0.5)
            ease = ease + self.config.ease_bonus
        else:
            interval = self.config.first_interval
            ease = max(self.config.minimum_easiness, ease - self.config.ease_penalty)

        # Keep floating point drift out of stored ease values
        ease = round(ease, 4)

        return ReviewOutcome(
            interval=interval,
            ease_factor=ease,
            repetition_count=repetitions,
            next_due_at=now + timedelta(days=interval),
            total_reviews=(state.total_reviews or 0) + 1,
            correct_reviews=(state.correct_reviews or 0) + (1 if was_correct else 0),
            last_reviewed_at=now,
        )


def apply_outcome(state: FlashcardReviewState, outcome: ReviewOutcome) -> None:
    state.interval = outcome.interval
    state.ease_factor = outcome.ease_factor
    state.repetition_count = outcome.repetition_count
    state.next_due_at = outcome.next_due_at
    state.total_reviews = outcome.total_reviews
    state.correct_reviews = outcome.correct_reviews
    state.last_reviewed_at = outcome.last_reviewed_at


# =============================================================================
# Review Scheduler
# =============================================================================


class ReviewScheduler:
    """
    Persistent flashcard review: issuing cards, building the due deck and
    recording reviews. All methods work inside the caller's session.
    """

    def __init__(
        self,
        sm2: SM2Scheduler | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sm2 = sm2 or SM2Scheduler(SM2Config.from_settings())
        self.batch_size = get_settings().review_batch_size if batch_size is None else batch_size
        self._clock = clock

    def due_deck(
        self, session: Session, learner_id: str, now: datetime | None = None
    ) -> list[DueCard]:
        """Cards due at or before `now`, earliest first, at most batch_size."""
        now = now or self._clock()
        rows = session.execute(
            select(FlashcardReviewState, Flashcard)
            .join(Flashcard, Flashcard.id == FlashcardReviewState.flashcard_id)
            .where(
                FlashcardReviewState.learner_id == learner_id,
                FlashcardReviewState.next_due_at <= now,
            )
            .order_by(FlashcardReviewState.next_due_at, FlashcardReviewState.id)
            .limit(self.batch_size)
        ).all()

        return [
            DueCard(
                review_state_id=state.id,
                flashcard_id=card.id,
                front_text=card.front_text,
                back_text=card.back_text,
                next_due_at=state.next_due_at,
                interval=state.interval,
                ease_factor=state.ease_factor,
            )
            for state, card in rows
        ]

    def due_count(self, session: Session, learner_id: str, now: datetime | None = None) -> int:
        now = now or self._clock()
        return session.scalar(
            select(func.count())
            .select_from(FlashcardReviewState)
            .where(
                FlashcardReviewState.learner_id == learner_id,
                FlashcardReviewState.next_due_at <= now,
            )
        ) or 0

    def submit_review(
        self,
        session: Session,
        learner_id: str,
        flashcard_id: str,
        was_correct: bool,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """Apply one review to the learner's state for a card."""
        now = now or self._clock()
        state = session.scalars(
            select(FlashcardReviewState).where(
                FlashcardReviewState.learner_id == learner_id,
                FlashcardReviewState.flashcard_id == flashcard_id,
            )
        ).one_or_none()
        if state is None:
            raise LookupError(f"No review state for flashcard {flashcard_id}")

        outcome = self.sm2.review(state, was_correct, now)
        apply_outcome(state, outcome)
        logger.debug(
            "Reviewed card {}: correct={}, interval={}d, ease={:.2f}",
            flashcard_id,
            was_correct,
            outcome.interval,
            outcome.ease_factor,
        )
        return outcome

    def issue(
        self,
        session: Session,
        learner_id: str,
        cards: list[dict[str, Any]],
        *,
        level: str | None = None,
        chapter_number: int | None = None,
        topic: str | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """
        Create flashcards with a review state due immediately.

        Issuance is skipped when the learner already has cards for the same
        (level, chapter_number, topic), so completing a lesson twice does
        not duplicate the deck.

        Returns:
            Ids of the newly created flashcards
        """
        if not cards:
            return []
        now = now or self._clock()

        existing = session.scalar(
            select(func.count())
            .select_from(Flashcard)
            .where(
                Flashcard.learner_id == learner_id,
                Flashcard.level == level,
                Flashcard.chapter_number == chapter_number,
                Flashcard.topic == topic,
            )
        )
        if existing:
            logger.debug(
                "Flashcards for {} ch{} {!r} already issued to {}",
                level,
                chapter_number,
                topic,
                learner_id,
            )
            return []

        issued: list[str] = []
        for data in cards:
            card = Flashcard(
                learner_id=learner_id,
                level=level,
                chapter_number=chapter_number,
                topic=topic,
                grammar_point=data.get("grammar_point") or topic,
                front_text=data["front_text"],
                back_text=data["back_text"],
                example_sentence=data.get("example_sentence"),
            )
            card.review_state = FlashcardReviewState(
                learner_id=learner_id,
                interval=0,
                ease_factor=self.sm2.config.initial_easiness,
                repetition_count=0,
                next_due_at=now,
                total_reviews=0,
                correct_reviews=0,
            )
            session.add(card)
            session.flush()
            issued.append(card.id)

        logger.info("Issued {} flashcards to learner {}", len(issued), learner_id)
        return issued
