"""
Progress aggregates.

Recomputes the learner's summary row from source tables. The row is a
derived cache: every value is rebuilt from scratch on each call, so a
failed recompute is repaired by the next one.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, aliased

from frailearn.adaptive.models import LearnerNotFoundError
from frailearn.db.models import (
    Chapter,
    Exercise,
    ExerciseOutcome,
    GateAssessment,
    Learner,
    LearnerProgress,
    Lesson,
    UnitKind,
)
from frailearn.utils.time import utcnow


class ProgressAggregator:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def recompute(self, session: Session, learner_id: str) -> LearnerProgress:
        learner = session.get(Learner, learner_id)
        if learner is None:
            raise LearnerNotFoundError(f"Learner not found: {learner_id}")

        progress = session.get(LearnerProgress, learner_id)
        if progress is None:
            progress = LearnerProgress(learner_id=learner_id)
            session.add(progress)

        progress.total_lessons_completed = session.scalar(
            select(func.count(Lesson.id)).where(
                Lesson.learner_id == learner_id,
                Lesson.kind == UnitKind.LESSON.value,
                Lesson.is_completed.is_(True),
            )
        ) or 0

        attempted, correct = session.execute(
            select(
                func.count(Exercise.id),
                func.sum(case((Exercise.outcome == ExerciseOutcome.CORRECT, 1), else_=0)),
            ).where(Exercise.learner_id == learner_id, Exercise.attempts > 0)
        ).one()
        progress.total_exercises_attempted = attempted or 0
        progress.overall_accuracy = round((correct or 0) / attempted * 100, 1) if attempted else 0.0

        tests_taken, average = session.execute(
            select(func.count(GateAssessment.id), func.avg(GateAssessment.score)).where(
                GateAssessment.learner_id == learner_id,
                GateAssessment.completed_at.is_not(None),
            )
        ).one()
        progress.total_tests_taken = tests_taken or 0
        progress.average_test_score = float(round(average)) if average is not None else 0.0

        chapter = aliased(Chapter)
        next_lesson = session.execute(
            select(chapter.number, Lesson.number)
            .join(chapter, Lesson.parent_id == chapter.id)
            .where(
                Lesson.learner_id == learner_id,
                Lesson.is_completed.is_(False),
                chapter.level == learner.current_level,
                chapter.is_unlocked.is_(True),
            )
            .order_by(chapter.number, Lesson.number)
            .limit(1)
        ).first()
        # Keep the last pointer when nothing is left to study
        if next_lesson is not None:
            progress.current_chapter, progress.current_lesson = next_lesson

        progress.updated_at = self._clock()
        logger.debug(
            "Progress for {}: lessons={} exercises={} accuracy={} tests={} avg={}",
            learner_id,
            progress.total_lessons_completed,
            progress.total_exercises_attempted,
            progress.overall_accuracy,
            progress.total_tests_taken,
            progress.average_test_score,
        )
        return progress
