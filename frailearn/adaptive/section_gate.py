"""
Section Gate.

Chapters of a level are grouped into fixed-size sections (chapters 1-5,
6-10, ...). A section is sealed when it has chapters and every one of them
is complete; sealing is recomputed from chapter flags on every call and
never cached.

A sealed section is offered one gating assessment per (learner, level,
chapter range). Passing it is the only thing that opens the next section:

- Chapters of the next range that already exist are unlocked in place
- Otherwise a GenerationRequest is delegated to the content synthesizer;
  if synthesis fails the pass stays recorded and generation is retried by
  the sweep

Bridge courses end in a final test keyed "Bridge-<course id>"; passing it
completes the course and moves the learner to the course's target level.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Sequence
from datetime import datetime

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from frailearn.adaptive.content import materialize_chapters
from frailearn.adaptive.models import (
    RETRY_MESSAGE,
    AssessmentCompletedError,
    AssessmentNotFoundError,
    ChapterRange,
    GateOutcome,
    GateRequirement,
    GenerationRequest,
    GradedAnswer,
    LearnerNotFoundError,
    Level,
    SectionNotSealedError,
)
from frailearn.db.database import session_scope
from frailearn.db.models import (
    AssessmentKind,
    BridgeCourse,
    Chapter,
    GateAssessment,
    Learner,
    Mistake,
    MistakeSource,
    UnitKind,
)
from frailearn.db.queries import chapters_in_range, lock_learner
from frailearn.synthesis.client import ContentSynthesizer, SynthesisError
from frailearn.utils.time import utcnow

BRIDGE_RANGE_PREFIX = "Bridge-"

SEVERITY_BY_DIFFICULTY = {"HARD": "CRITICAL", "EASY": "MINOR"}


def percentage(correct: int, total: int) -> int:
    """Whole percentage, halves rounded up."""
    if total <= 0:
        return 0
    return math.floor(correct * 100 / total + 0.5)


class SectionGate:
    """
    Sealing, assessment offers and grading for curriculum sections.

    `is_section_sealed` and `on_section_sealed` work in the caller's session.
    The assessment lifecycle methods call the synthesizer and therefore own
    their transactions, keeping network calls outside them.
    """

    def __init__(
        self,
        synthesizer: ContentSynthesizer | None = None,
        session_factory: sessionmaker | None = None,
        section_size: int | None = None,
        passing_score: int | None = None,
        weak_threshold: int | None = None,
        strong_threshold: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.synthesizer = synthesizer
        self._session_factory = session_factory
        self.section_size = settings.section_size if section_size is None else section_size
        self.passing_score = settings.passing_score if passing_score is None else passing_score
        self.weak_threshold = (
            settings.weak_area_threshold if weak_threshold is None else weak_threshold
        )
        self.strong_threshold = (
            settings.strong_area_threshold if strong_threshold is None else strong_threshold
        )
        self._clock = clock

    # ========================================
    # Sealing
    # ========================================

    def section_range(self, level: str, section_number: int) -> ChapterRange:
        return ChapterRange.for_section(level, section_number, self.section_size)

    def section_of(self, chapter_number: int) -> int:
        return (chapter_number - 1) // self.section_size + 1

    def is_section_sealed(
        self, session: Session, learner_id: str, level: str, section_number: int
    ) -> bool:
        """True when the section has at least one chapter and all are complete."""
        rng = self.section_range(level, section_number)
        chapters = chapters_in_range(session, learner_id, level, rng.start, rng.end)
        return bool(chapters) and all(ch.is_completed for ch in chapters)

    def assessments_for(
        self, session: Session, learner_id: str, level: str, chapter_range: str
    ) -> list[GateAssessment]:
        """All attempts for one gate identity, oldest first."""
        return list(
            session.scalars(
                select(GateAssessment)
                .where(
                    GateAssessment.learner_id == learner_id,
                    GateAssessment.level == level,
                    GateAssessment.chapter_range == chapter_range,
                )
                .order_by(GateAssessment.created_at, GateAssessment.id)
            )
        )

    def on_section_sealed(
        self, session: Session, learner_id: str, level: str, section_number: int
    ) -> GateRequirement:
        """
        Decide whether to offer the section's assessment.

        The offer is made once per gate identity: only when the section is
        sealed and no assessment exists yet for its chapter range.
        """
        rng = self.section_range(level, section_number)
        if not self.is_section_sealed(session, learner_id, level, section_number):
            return GateRequirement(learner_id, rng, sealed=False, offer=False)

        if self.assessments_for(session, learner_id, level, rng.key):
            return GateRequirement(learner_id, rng, sealed=True, offer=False)

        logger.info("Section {} {} sealed for learner {}", level, rng.key, learner_id)
        return GateRequirement(
            learner_id,
            rng,
            sealed=True,
            offer=True,
            message=f"Take the progress test for chapters {rng.key} to unlock the next section.",
        )

    def pending_requirements(self, session: Session, learner_id: str) -> list[GateRequirement]:
        """Every sealed section of the learner that still has no assessment."""
        numbers = session.execute(
            select(Chapter.level, Chapter.number).where(
                Chapter.learner_id == learner_id, Chapter.kind == UnitKind.CHAPTER.value
            )
        ).all()

        sections: dict[str, set[int]] = defaultdict(set)
        for level, number in numbers:
            sections[level].add(self.section_of(number))

        pending = []
        for level in sorted(sections):
            for section_number in sorted(sections[level]):
                requirement = self.on_section_sealed(session, learner_id, level, section_number)
                if requirement.offer:
                    pending.append(requirement)
        return pending

    # ========================================
    # Assessment lifecycle
    # ========================================

    def start_assessment(self, learner_id: str, level: str, section_number: int) -> str:
        """
        Create (or resume) the progress test of a sealed section.

        Returns:
            Id of the open assessment

        Raises:
            SectionNotSealedError: If any chapter of the section is incomplete
            SynthesisError: If questions could not be synthesized
        """
        rng = self.section_range(level, section_number)

        with session_scope(self._session_factory) as session:
            if not self.is_section_sealed(session, learner_id, level, section_number):
                raise SectionNotSealedError(
                    f"Complete chapters {rng.key} before taking the progress test"
                )
            open_id = self._open_attempt(session, learner_id, level, rng.key)
            if open_id:
                return open_id
            chapters = chapters_in_range(session, learner_id, level, rng.start, rng.end)
            content_range = {
                "level": level,
                "firstChapter": rng.start,
                "lastChapter": rng.end,
                "chapters": [
                    {"number": ch.number, "title": ch.title, "topic": ch.topic} for ch in chapters
                ],
            }

        questions = self._require_synthesizer().synthesize_assessment(content_range)

        return self._create_attempt(
            learner_id,
            level,
            rng.key,
            AssessmentKind.PROGRESS_TEST,
            f"Progress Test: Chapters {rng.key}",
            [q.model_dump() for q in questions],
        )

    def start_bridge_final(self, learner_id: str, bridge_course_id: str) -> str:
        """Create (or resume) the final test of a bridge course whose chapters are all complete."""
        key = f"{BRIDGE_RANGE_PREFIX}{bridge_course_id}"

        with session_scope(self._session_factory) as session:
            course = session.get(BridgeCourse, bridge_course_id)
            if course is None or course.learner_id != learner_id:
                raise AssessmentNotFoundError(f"Bridge course not found: {bridge_course_id}")
            chapters = list(course.chapters)
            if not chapters or not all(ch.is_completed for ch in chapters):
                raise SectionNotSealedError(
                    f"Complete every chapter of bridge course {bridge_course_id} first"
                )
            level = course.target_level
            open_id = self._open_attempt(session, learner_id, level, key)
            if open_id:
                return open_id
            content_range = {
                "level": level,
                "bridgeCourseId": course.id,
                "chapters": [
                    {"number": ch.number, "title": ch.title, "topic": ch.topic} for ch in chapters
                ],
            }
            title = f"Bridge Final Test: {course.title}"

        questions = self._require_synthesizer().synthesize_assessment(content_range)

        return self._create_attempt(
            learner_id,
            level,
            key,
            AssessmentKind.BRIDGE_FINAL,
            title,
            [q.model_dump() for q in questions],
        )

    def submit_assessment(
        self, assessment_id: str, answers: Sequence[GradedAnswer]
    ) -> GateOutcome:
        """
        Grade an assessment and apply the gate consequences.

        Scores are final: a completed assessment is never regraded, a failed
        gate is retaken through a new assessment.

        Raises:
            AssessmentNotFoundError: Unknown assessment id
            AssessmentCompletedError: The assessment already has results
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            assessment = session.get(GateAssessment, assessment_id)
            if assessment is None:
                raise AssessmentNotFoundError(f"Assessment not found: {assessment_id}")

            learner = lock_learner(session, assessment.learner_id)
            if learner is None:
                raise LearnerNotFoundError(f"Learner not found: {assessment.learner_id}")
            session.refresh(assessment)
            if assessment.is_completed:
                raise AssessmentCompletedError(
                    f"Assessment {assessment_id} was already completed at {assessment.completed_at}"
                )

            outcome = self._grade(session, assessment, answers, now)

            if outcome.passed:
                if assessment.kind == AssessmentKind.BRIDGE_FINAL.value:
                    self._complete_bridge(session, learner, assessment, outcome, now)
                else:
                    self._open_next_section(session, assessment, outcome, now)

        if outcome.generation is not None:
            try:
                outcome.generated_chapter_ids = self.fulfil_generation(outcome.generation)
            except SynthesisError as exc:
                logger.warning(
                    "Generation for {} chapters {}-{} failed, will retry: {}",
                    outcome.generation.level,
                    outcome.generation.first_chapter,
                    outcome.generation.last_chapter,
                    exc,
                )
                outcome.message = RETRY_MESSAGE

        return outcome

    # ========================================
    # Generation
    # ========================================

    def fulfil_generation(self, request: GenerationRequest) -> list[str]:
        """
        Synthesize and store the chapters of a generation request.

        Chapters already present in the range (stored by a concurrent retry)
        win; nothing is duplicated.
        """
        synthesized = self._require_synthesizer().synthesize_curriculum(
            request.level, request.first_chapter, request.last_chapter
        )
        wanted = request.last_chapter - request.first_chapter + 1

        now = self._clock()
        with session_scope(self._session_factory) as session:
            lock_learner(session, request.learner_id)
            existing = chapters_in_range(
                session,
                request.learner_id,
                request.level,
                request.first_chapter,
                request.last_chapter,
            )
            if existing:
                logger.info(
                    "Chapters {}-{} already exist for learner {}",
                    request.first_chapter,
                    request.last_chapter,
                    request.learner_id,
                )
                return []
            created = materialize_chapters(
                session,
                request.learner_id,
                request.level,
                request.first_chapter,
                synthesized[:wanted],
                now,
                unlocked_through=request.unlocked_through,
                section_size=self.section_size,
            )

        logger.info(
            "Generated {} chapters ({} {}-{}) for learner {}",
            len(created),
            request.level,
            request.first_chapter,
            request.last_chapter,
            request.learner_id,
        )
        return created

    def pending_generation(self, session: Session, learner_id: str) -> list[GenerationRequest]:
        """
        Generation owed to the learner: passed gates whose next chapters are missing.

        Only the furthest passed progress test per level is considered.
        """
        passed = session.scalars(
            select(GateAssessment).where(
                GateAssessment.learner_id == learner_id,
                GateAssessment.passed.is_(True),
                GateAssessment.completed_at.is_not(None),
            )
        )

        furthest: dict[str, ChapterRange] = {}
        bridge_levels: set[str] = set()
        for assessment in passed:
            if assessment.kind == AssessmentKind.BRIDGE_FINAL.value:
                bridge_levels.add(assessment.level)
                continue
            rng = ChapterRange.parse(assessment.level, assessment.chapter_range)
            if assessment.level not in furthest or rng.end > furthest[assessment.level].end:
                furthest[assessment.level] = rng

        requests = []
        for level in sorted(furthest):
            nxt = furthest[level].following(self.section_size)
            if not chapters_in_range(session, learner_id, level, nxt.start, nxt.end):
                requests.append(GenerationRequest(learner_id, level, nxt.start, nxt.end))
        for level in sorted(bridge_levels - set(furthest)):
            if not chapters_in_range(session, learner_id, level, 1, self.section_size):
                requests.append(GenerationRequest(learner_id, level, 1, self.section_size))
        return requests

    def retry_pending_generation(self, learner_id: str) -> list[str]:
        """Retry every owed generation for one learner; returns created chapter ids."""
        with session_scope(self._session_factory) as session:
            requests = self.pending_generation(session, learner_id)

        created: list[str] = []
        for request in requests:
            created.extend(self.fulfil_generation(request))
        return created

    # ========================================
    # Internals
    # ========================================

    def _require_synthesizer(self) -> ContentSynthesizer:
        if self.synthesizer is None:
            raise SynthesisError("No content synthesizer configured")
        return self.synthesizer

    def _open_attempt(
        self, session: Session, learner_id: str, level: str, key: str
    ) -> str | None:
        for attempt in self.assessments_for(session, learner_id, level, key):
            if not attempt.is_completed:
                logger.debug("Resuming open assessment {} for {}", attempt.id, key)
                return attempt.id
        return None

    def _create_attempt(
        self,
        learner_id: str,
        level: str,
        key: str,
        kind: AssessmentKind,
        title: str,
        questions: list[dict],
    ) -> str:
        with session_scope(self._session_factory) as session:
            if lock_learner(session, learner_id) is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")
            open_id = self._open_attempt(session, learner_id, level, key)
            if open_id:
                return open_id

            assessment = GateAssessment(
                learner_id=learner_id,
                kind=kind.value,
                level=level,
                chapter_range=key,
                title=title,
                questions=questions,
                total_questions=len(questions),
                passing_score=self.passing_score,
                created_at=self._clock(),
            )
            session.add(assessment)
            session.flush()
            logger.info("Created {} {} for learner {} ({})", kind.value, assessment.id, learner_id, key)
            return assessment.id

    @staticmethod
    def _accepted_answers(
        assessment: GateAssessment, answers: Sequence[GradedAnswer]
    ) -> list[GradedAnswer]:
        """First answer per question id; ids missing from the stored questions are dropped."""
        known = {q.get("id") for q in assessment.questions or [] if isinstance(q, dict)}
        accepted: dict[str, GradedAnswer] = {}
        for answer in answers:
            if known and answer.question_id not in known:
                logger.warning(
                    "Ignoring answer to unknown question {} on assessment {}",
                    answer.question_id,
                    assessment.id,
                )
                continue
            accepted.setdefault(answer.question_id, answer)
        return list(accepted.values())

    def _grade(
        self,
        session: Session,
        assessment: GateAssessment,
        answers: Sequence[GradedAnswer],
        now: datetime,
    ) -> GateOutcome:
        answers = self._accepted_answers(assessment, answers)
        total = assessment.total_questions or len(answers)
        correct = min(sum(1 for a in answers if a.is_correct), total)
        score = percentage(correct, total)
        passed = score >= assessment.passing_score

        by_topic: dict[str, dict[str, int]] = {}
        for answer in answers:
            stats = by_topic.setdefault(answer.topic, {"correct": 0, "total": 0})
            stats["total"] += 1
            if answer.is_correct:
                stats["correct"] += 1
        breakdown = {
            topic: {**stats, "percentage": percentage(stats["correct"], stats["total"])}
            for topic, stats in sorted(by_topic.items())
        }
        weak = [t for t, s in breakdown.items() if s["percentage"] < self.weak_threshold]
        strong = [t for t, s in breakdown.items() if s["percentage"] >= self.strong_threshold]

        source = (
            MistakeSource.BRIDGE_FINAL
            if assessment.kind == AssessmentKind.BRIDGE_FINAL.value
            else MistakeSource.PROGRESS_TEST
        )
        for answer in answers:
            if answer.is_correct:
                continue
            session.add(
                Mistake(
                    learner_id=assessment.learner_id,
                    topic=answer.topic,
                    grammar_point=answer.topic,
                    source_type=source.value,
                    source_id=assessment.id,
                    level=assessment.level,
                    question=answer.question,
                    correct_answer=answer.correct_answer,
                    user_answer=answer.user_answer,
                    severity=SEVERITY_BY_DIFFICULTY.get(answer.difficulty, "MODERATE"),
                    created_at=now,
                )
            )

        assessment.correct_answers = correct
        assessment.score = score
        assessment.passed = passed
        assessment.topic_breakdown = breakdown
        assessment.weak_areas = weak
        assessment.strong_areas = strong
        assessment.completed_at = now

        logger.info(
            "Assessment {} ({}) scored {}% ({}/{}): {}",
            assessment.id,
            assessment.chapter_range,
            score,
            correct,
            total,
            "passed" if passed else "failed",
        )
        return GateOutcome(
            assessment_id=assessment.id,
            score=score,
            passed=passed,
            correct_answers=correct,
            total_questions=total,
            weak_areas=weak,
            strong_areas=strong,
        )

    def _unlock_or_request(
        self,
        session: Session,
        learner_id: str,
        rng: ChapterRange,
        outcome: GateOutcome,
        now: datetime,
    ) -> None:
        chapters = chapters_in_range(session, learner_id, rng.level, rng.start, rng.end)
        if not chapters:
            outcome.generation = GenerationRequest(learner_id, rng.level, rng.start, rng.end)
            return
        for chapter in chapters:
            if not chapter.is_unlocked:
                chapter.is_unlocked = True
                chapter.unlocked_at = now
                chapter.unlock_condition = None
                outcome.unlocked_chapter_ids.append(chapter.id)
        logger.info(
            "Unlocked {} chapters {} {} for learner {}",
            len(outcome.unlocked_chapter_ids),
            rng.level,
            rng.key,
            learner_id,
        )

    def _open_next_section(
        self, session: Session, assessment: GateAssessment, outcome: GateOutcome, now: datetime
    ) -> None:
        rng = ChapterRange.parse(assessment.level, assessment.chapter_range)
        self._unlock_or_request(
            session, assessment.learner_id, rng.following(self.section_size), outcome, now
        )

    def _complete_bridge(
        self,
        session: Session,
        learner: Learner,
        assessment: GateAssessment,
        outcome: GateOutcome,
        now: datetime,
    ) -> None:
        course_id = assessment.chapter_range.removeprefix(BRIDGE_RANGE_PREFIX)
        course = session.get(BridgeCourse, course_id)
        if course is None:
            logger.warning("Bridge course {} of assessment {} is gone", course_id, assessment.id)
            return
        course.is_completed = True
        course.completed_at = now
        course.final_test_score = outcome.score

        target = course.target_level
        if target not in Level.__members__:
            current = Level(learner.current_level)
            target = (current.next or current).value
        learner.current_level = target
        outcome.level_advanced_to = target
        logger.info("Learner {} completed bridge course {} -> {}", learner.id, course.id, target)

        self._unlock_or_request(
            session,
            learner.id,
            ChapterRange.for_section(target, 1, self.section_size),
            outcome,
            now,
        )
