"""
Adaptive Orchestrator.

Runs the side effects of a learner activity after the primary write has
committed, always in this order:

1. Streak update
2. Remedial check (exercise, test and quiz activities only)
3. Progress aggregate recompute

Each step runs in its own transaction. A failing step is logged and recorded
on the report; it never undoes the activity or stops the following steps.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import sessionmaker

from frailearn.adaptive.models import REMEDIAL_ACTIVITIES, ActivityReport, ActivityType
from frailearn.adaptive.progress import ProgressAggregator
from frailearn.adaptive.remedial_trigger import RemedialTrigger
from frailearn.adaptive.streak_tracker import StreakTracker
from frailearn.db.database import session_scope
from frailearn.utils.time import utcnow


class AdaptiveOrchestrator:
    def __init__(
        self,
        remedial_trigger: RemedialTrigger,
        session_factory: sessionmaker | None = None,
        streak_tracker: StreakTracker | None = None,
        progress: ProgressAggregator | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.remedial_trigger = remedial_trigger
        self._session_factory = session_factory
        self.streak_tracker = streak_tracker or StreakTracker(clock)
        self.progress = progress or ProgressAggregator(clock)
        self._clock = clock

    def after_activity(
        self,
        learner_id: str,
        activity_type: ActivityType | str,
        now: datetime | None = None,
    ) -> ActivityReport:
        """
        Apply post-activity effects for one learner.

        Returns:
            ActivityReport; step failures are in `errors` keyed by step name
        """
        activity_type = ActivityType(activity_type)
        now = now or self._clock()
        report = ActivityReport(learner_id=learner_id, activity_type=activity_type)

        try:
            with session_scope(self._session_factory) as session:
                report.streak = self.streak_tracker.on_qualifying_activity(
                    session, learner_id, now
                )
        except Exception as exc:  # Side effect only; the activity itself is already saved
            logger.exception("Streak update failed for learner {}", learner_id)
            report.errors["streak"] = str(exc)

        if activity_type in REMEDIAL_ACTIVITIES:
            try:
                report.remedial_chapter_ids = self.remedial_trigger.check(learner_id)
            except Exception as exc:
                logger.exception("Remedial check failed for learner {}", learner_id)
                report.errors["remedial"] = str(exc)

        try:
            with session_scope(self._session_factory) as session:
                self.progress.recompute(session, learner_id)
            report.progress_updated = True
        except Exception as exc:
            logger.exception("Progress recompute failed for learner {}", learner_id)
            report.errors["progress"] = str(exc)

        if report.remedial_chapter_ids:
            logger.info(
                "Activity {} for {} produced remedial chapters {}",
                activity_type.value,
                learner_id,
                report.remedial_chapter_ids,
            )
        return report
