"""
Shared queries for the progress engine.

Reusable selects live here so the engine components agree on how learner-scoped
state is read and locked.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from frailearn.db.models import Chapter, Learner, Lesson, RemedialChapter


def lock_learner(session: Session, learner_id: str) -> Learner | None:
    """
    Lock the learner row for the rest of the transaction.

    Emits SELECT ... FOR UPDATE on PostgreSQL. SQLite ignores the clause and
    serialises writers on its own database lock.
    """
    return session.scalars(
        select(Learner).where(Learner.id == learner_id).with_for_update()
    ).one_or_none()


def chapters_in_range(
    session: Session, learner_id: str, level: str, start: int, end: int
) -> list[Chapter]:
    """Chapters numbered start..end (inclusive) for one learner and level."""
    return list(
        session.scalars(
            select(Chapter)
            .where(
                Chapter.learner_id == learner_id,
                Chapter.level == level,
                Chapter.number >= start,
                Chapter.number <= end,
            )
            .order_by(Chapter.number)
        )
    )


def lessons_of_chapter(session: Session, chapter_id: str) -> list[Lesson]:
    return list(
        session.scalars(
            select(Lesson).where(Lesson.parent_id == chapter_id).order_by(Lesson.number)
        )
    )


def open_remedial_for_topic(
    session: Session, learner_id: str, topic: str
) -> RemedialChapter | None:
    """The learner's not-yet-completed remedial chapter for a topic, if any."""
    return session.scalars(
        select(RemedialChapter)
        .where(
            RemedialChapter.learner_id == learner_id,
            RemedialChapter.grammar_point == topic,
            RemedialChapter.is_completed.is_(False),
        )
        .limit(1)
    ).first()


def active_learner_ids(session: Session, since: datetime) -> list[str]:
    """Learners with activity at or after `since`, in id order."""
    return list(
        session.scalars(
            select(Learner.id).where(Learner.last_active_at >= since).order_by(Learner.id)
        )
    )
