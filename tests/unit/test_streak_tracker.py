"""Unit tests for StreakTracker day-delta rules."""

from datetime import date, datetime

import pytest

from frailearn.adaptive.models import LearnerNotFoundError
from frailearn.adaptive.streak_tracker import StreakTracker
from frailearn.db.models import StreakState


@pytest.fixture
def tracker():
    return StreakTracker()


def seed_streak(session, learner_id, current, longest, last):
    session.add(
        StreakState(
            learner_id=learner_id,
            current_streak=current,
            longest_streak=longest,
            last_activity_date=last,
        )
    )
    session.commit()


class TestStreakTracker:
    def test_next_day_increments(self, session, build, tracker):
        learner_id = build.learner()
        seed_streak(session, learner_id, 3, 5, date(2026, 3, 1))

        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 8, 0))

        assert update.current_streak == 4
        assert update.longest_streak == 5
        assert update.changed

    def test_next_day_raises_longest(self, session, build, tracker):
        learner_id = build.learner()
        seed_streak(session, learner_id, 5, 5, date(2026, 3, 1))

        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 23, 59))

        assert (update.current_streak, update.longest_streak) == (6, 6)

    def test_gap_resets_to_one(self, session, build, tracker):
        learner_id = build.learner()
        seed_streak(session, learner_id, 4, 9, date(2026, 2, 27))

        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 9, 0))

        assert update.current_streak == 1
        assert update.longest_streak == 9
        assert update.last_activity_date == date(2026, 3, 2)

    def test_same_day_is_a_no_op(self, session, build, tracker):
        learner_id = build.learner()
        seed_streak(session, learner_id, 4, 9, date(2026, 3, 2))

        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 22, 0))

        assert not update.changed
        assert update.current_streak == 4
        assert not session.dirty

    def test_calendar_days_not_24_hours(self, session, build, tracker):
        learner_id = build.learner()
        seed_streak(session, learner_id, 1, 1, date(2026, 3, 1))

        # 23:59 -> 00:01 is one calendar day
        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 0, 1))

        assert update.current_streak == 2

    def test_first_activity_creates_streak(self, session, build, tracker):
        learner_id = build.learner()

        update = tracker.on_qualifying_activity(session, learner_id, datetime(2026, 3, 2, 9, 0))
        session.commit()

        assert (update.current_streak, update.longest_streak) == (1, 1)
        stored = session.get(StreakState, learner_id)
        assert stored.last_activity_date == date(2026, 3, 2)

    def test_unknown_learner(self, session, tracker):
        with pytest.raises(LearnerNotFoundError):
            tracker.on_qualifying_activity(session, "missing", datetime(2026, 3, 2))
