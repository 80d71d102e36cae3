"""
Mastery Tracker.

Decides when a learning unit is complete from its exercise outcomes:

- A unit with at least one exercise is complete exactly when every exercise
  is correct; a unit with no exercises is never completed here
- Completion is re-derived from all exercises on every grading event
- Completion is monotonic; nothing in this module ever clears the flag
- A completed lesson re-evaluates its chapter (all lessons complete); the
  chapter does not propagate further, section sealing is the gate's concern

All writes happen in the caller's session so the flag and timestamp commit
or roll back together with the grading write.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from frailearn.adaptive.models import CompletionResult, UnitNotFoundError
from frailearn.db.models import Chapter, Exercise, ExerciseOutcome, LearningUnit, Lesson
from frailearn.db.queries import lessons_of_chapter
from frailearn.utils.time import utcnow


class MasteryTracker:
    """Per-unit completion from exercise outcomes, with one level of propagation."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    @staticmethod
    def exercises_complete(exercises: list[Exercise]) -> bool:
        """True when there is at least one exercise and all are correct."""
        return bool(exercises) and all(
            ex.outcome == ExerciseOutcome.CORRECT for ex in exercises
        )

    def evaluate_unit(self, unit: LearningUnit, now: datetime | None = None) -> bool:
        """
        Re-derive completion of an exercise-bearing unit.

        Returns True if the unit is complete after evaluation.
        """
        if unit.is_completed:
            return True
        if not self.exercises_complete(unit.list_exercises()):
            return False
        unit.mark_completed(now or self._clock())
        logger.info("{} {} completed", type(unit).__name__, unit.id)
        return True

    def evaluate_chapter(
        self, session: Session, chapter: Chapter, now: datetime | None = None
    ) -> bool:
        """Complete the chapter when it has lessons and all of them are complete."""
        if chapter.is_completed:
            return True
        lessons = lessons_of_chapter(session, chapter.id)
        if not lessons or not all(lesson.is_completed for lesson in lessons):
            return False
        chapter.mark_completed(now or self._clock())
        logger.info("Chapter {} completed ({} lessons)", chapter.id, len(lessons))
        return True

    def on_exercise_graded(
        self, session: Session, exercise: Exercise, now: datetime | None = None
    ) -> CompletionResult:
        """
        Re-evaluate the exercise's unit and, for lessons, the parent chapter.

        Args:
            session: Open session; the caller owns the transaction
            exercise: The exercise whose outcome was just written
            now: Completion timestamp (defaults to the tracker clock)

        Returns:
            CompletionResult with the post-event completion state
        """
        now = now or self._clock()
        session.flush()

        unit = session.get(LearningUnit, exercise.unit_id)
        if unit is None:
            raise UnitNotFoundError(f"Learning unit not found: {exercise.unit_id}")

        was_complete = unit.is_completed
        unit_done = self.evaluate_unit(unit, now)
        result = CompletionResult(unit_id=unit.id)
        if unit_done and not was_complete:
            result.newly_completed.append(unit.id)

        if not isinstance(unit, Lesson):
            # Remedial and bridge chapters hold their exercises directly
            result.chapter_completed = unit_done
            return result

        result.lesson_completed = unit_done
        if unit.parent_id is None:
            return result

        chapter = session.get(Chapter, unit.parent_id)
        if chapter is None:
            logger.warning("Lesson {} points at missing chapter {}", unit.id, unit.parent_id)
            return result

        result.parent_id = chapter.id
        chapter_was_complete = chapter.is_completed
        if unit_done:
            session.flush()
            result.chapter_completed = self.evaluate_chapter(session, chapter, now)
        else:
            result.chapter_completed = chapter.is_completed
        if result.chapter_completed and not chapter_was_complete:
            result.newly_completed.append(chapter.id)

        return result
