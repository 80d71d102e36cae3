"""
Mistake Aggregator & Remedial Trigger.

Folds accumulated mistakes into remedial chapters:

1. Group the learner's unaddressed mistakes by topic
2. Visit topics in lexicographic order
3. A topic with at least `threshold` mistakes and no open remedial chapter
   gets one synthesized from a small sample of its mistakes
4. Chapter creation and marking the mistakes addressed commit together

Synthesis happens outside any transaction; the write re-checks eligibility
under the learner lock so concurrent triggers cannot double-create.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from frailearn.adaptive.content import attach_exercises
from frailearn.db.database import session_scope
from frailearn.db.models import Learner, Mistake, RemedialChapter, UnitKind
from frailearn.db.queries import lock_learner, open_remedial_for_topic
from frailearn.synthesis.client import ContentSynthesizer, SynthesisError
from frailearn.synthesis.models import MistakeSample, RemedialContent
from frailearn.utils.time import utcnow


@dataclass
class TopicBacklog:
    """Unaddressed mistakes of one topic, captured before synthesis."""

    topic: str
    mistake_ids: list[str] = field(default_factory=list)
    samples: list[MistakeSample] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.mistake_ids)


class RemedialTrigger:
    """
    Threshold-based remediation over unaddressed mistakes.

    Each call to `check` is safe to repeat: a topic that already has an
    open remedial chapter is skipped, and addressed mistakes never count.
    """

    def __init__(
        self,
        synthesizer: ContentSynthesizer,
        session_factory: sessionmaker | None = None,
        threshold: int | None = None,
        sample_size: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.synthesizer = synthesizer
        self._session_factory = session_factory
        self.threshold = settings.mistake_threshold if threshold is None else threshold
        self.sample_size = settings.remedial_sample_size if sample_size is None else sample_size
        self._clock = clock

    def unaddressed_by_topic(self, session: Session, learner_id: str) -> dict[str, TopicBacklog]:
        """Unaddressed mistakes grouped by topic, oldest first within a topic."""
        mistakes = session.scalars(
            select(Mistake)
            .where(Mistake.learner_id == learner_id, Mistake.is_addressed.is_(False))
            .order_by(Mistake.topic, Mistake.created_at, Mistake.id)
        )

        backlog: dict[str, TopicBacklog] = {}
        for mistake in mistakes:
            entry = backlog.get(mistake.topic)
            if entry is None:
                entry = backlog[mistake.topic] = TopicBacklog(topic=mistake.topic)
            entry.mistake_ids.append(mistake.id)
            if len(entry.samples) < self.sample_size:
                entry.samples.append(
                    MistakeSample(
                        question=mistake.question,
                        user_answer=mistake.user_answer,
                        correct_answer=mistake.correct_answer,
                        topic=mistake.topic,
                    )
                )
        return backlog

    def check(self, learner_id: str) -> list[str]:
        """
        Create remedial chapters for every eligible topic.

        Returns:
            Ids of the remedial chapters created by this call
        """
        with session_scope(self._session_factory) as session:
            backlog = self.unaddressed_by_topic(session, learner_id)
            open_topics = {
                topic
                for topic in backlog
                if open_remedial_for_topic(session, learner_id, topic) is not None
            }

        created: list[str] = []
        for topic in sorted(backlog):
            entry = backlog[topic]
            if entry.count < self.threshold:
                continue
            if topic in open_topics:
                logger.debug(
                    "Topic {!r} already has an open remedial chapter for {}", topic, learner_id
                )
                continue

            try:
                content = self.synthesizer.synthesize_remedial(topic, entry.samples)
            except SynthesisError as exc:
                logger.warning(
                    "Remedial synthesis failed for learner {} topic {!r}: {}",
                    learner_id,
                    topic,
                    exc,
                )
                continue

            chapter_id = self._store(learner_id, entry, content)
            if chapter_id:
                created.append(chapter_id)

        return created

    def _store(self, learner_id: str, entry: TopicBacklog, content: RemedialContent) -> str | None:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            learner: Learner | None = lock_learner(session, learner_id)
            if learner is None:
                logger.warning("Learner {} vanished before remedial chapter was stored", learner_id)
                return None

            # Re-check under the lock; another trigger may have won the race
            if open_remedial_for_topic(session, learner_id, entry.topic) is not None:
                logger.info(
                    "Remedial chapter for {!r} created concurrently for {}", entry.topic, learner_id
                )
                return None

            mistakes = list(
                session.scalars(
                    select(Mistake).where(
                        Mistake.id.in_(entry.mistake_ids), Mistake.is_addressed.is_(False)
                    )
                )
            )
            if len(mistakes) < self.threshold:
                return None

            existing = session.scalar(
                select(func.count(RemedialChapter.id)).where(
                    RemedialChapter.learner_id == learner_id,
                    RemedialChapter.kind == UnitKind.REMEDIAL.value,
                )
            ) or 0

            chapter = RemedialChapter(
                learner_id=learner_id,
                level=learner.current_level,
                number=existing + 1,
                title=content.title,
                topic=entry.topic,
                description=content.description,
                content=content.content,
                grammar_point=entry.topic,
                mistake_ids=[m.id for m in mistakes],
                mistake_count=len(mistakes),
                remedial_type="MICRO",
                priority="HIGH",
                triggered_by="MISTAKE_THRESHOLD",
                estimated_minutes=2,
                is_required=True,
                blocks_progress=True,
                is_unlocked=True,
                unlocked_at=now,
            )
            attach_exercises(chapter, learner_id, content.exercises, entry.topic)
            session.add(chapter)
            session.flush()

            for mistake in mistakes:
                mistake.is_addressed = True
                mistake.remedial_id = chapter.id

            logger.info(
                "Created remedial chapter {} for learner {} topic {!r} ({} mistakes)",
                chapter.id,
                learner_id,
                entry.topic,
                len(mistakes),
            )
            return chapter.id
