"""
Streak Tracker.

Daily-activity continuity. Days are calendar days in UTC:

- Same day as the last activity: no change, no write
- Exactly one day later: current streak + 1, longest raised if exceeded
- More than one day later (or first activity ever): current streak = 1
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from frailearn.adaptive.models import LearnerNotFoundError, StreakUpdate
from frailearn.db.models import StreakState
from frailearn.db.queries import lock_learner
from frailearn.utils.time import days_between, utcnow


class StreakTracker:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def on_qualifying_activity(
        self, session: Session, learner_id: str, now: datetime | None = None
    ) -> StreakUpdate:
        """
        Advance the learner's streak for an activity at `now`.

        Locks the learner row so two activities on the same day cannot both
        increment the streak.
        """
        now = now or self._clock()
        today = now.date()

        learner = lock_learner(session, learner_id)
        if learner is None:
            raise LearnerNotFoundError(f"Learner not found: {learner_id}")

        streak = session.get(StreakState, learner_id)
        if streak is None:
            streak = StreakState(
                learner_id=learner_id,
                current_streak=1,
                longest_streak=1,
                last_activity_date=today,
            )
            session.add(streak)
            logger.debug("Started streak for learner {}", learner_id)
            return _snapshot(streak, changed=True)

        if streak.last_activity_date is None:
            gap = None
        else:
            gap = days_between(streak.last_activity_date, today)

        if gap is not None and gap <= 0:
            # Same day (or a clock earlier than the stored date): idempotent
            return _snapshot(streak, changed=False)

        if gap == 1:
            streak.current_streak += 1
        else:
            streak.current_streak = 1
        if streak.current_streak > streak.longest_streak:
            streak.longest_streak = streak.current_streak
        streak.last_activity_date = today

        logger.debug(
            "Streak for learner {}: gap={} current={} longest={}",
            learner_id,
            gap,
            streak.current_streak,
            streak.longest_streak,
        )
        return _snapshot(streak, changed=True)


def _snapshot(streak: StreakState, changed: bool) -> StreakUpdate:
    return StreakUpdate(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_activity_date=streak.last_activity_date,
        changed=changed,
    )
