"""
Activity service.

Entry points for learner activities. Each method performs the primary write
in one transaction (failures propagate and roll it back), then runs the
non-fatal follow-ups: flashcard issuance, gate offers and the orchestrator.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from frailearn.adaptive.content import attach_exercises
from frailearn.adaptive.mastery_tracker import MasteryTracker
from frailearn.adaptive.models import (
    ActivityReport,
    ActivityType,
    DueCard,
    ExerciseSubmission,
    GateOutcome,
    GenerationRequest,
    GradedAnswer,
    LearnerNotFoundError,
    Level,
    ReviewOutcome,
    UnitLockedError,
    UnitNotFoundError,
)
from frailearn.adaptive.orchestrator import AdaptiveOrchestrator
from frailearn.adaptive.remedial_trigger import RemedialTrigger
from frailearn.adaptive.section_gate import SectionGate
from frailearn.db.database import session_scope
from frailearn.db.models import (
    BridgeChapter,
    BridgeCourse,
    Chapter,
    Exercise,
    ExerciseOutcome,
    GateAssessment,
    Learner,
    LearnerProgress,
    LearningUnit,
    Lesson,
    Mistake,
    MistakeSource,
    RemedialChapter,
)
from frailearn.db.queries import lock_learner
from frailearn.review.scheduler import ReviewScheduler
from frailearn.synthesis.client import ContentSynthesizer, HttpContentSynthesizer
from frailearn.synthesis.models import SynthesizedChapter
from frailearn.utils.time import utcnow


def mistake_source_for(unit: LearningUnit) -> MistakeSource:
    if isinstance(unit, RemedialChapter):
        return MistakeSource.REMEDIAL_EXERCISE
    if isinstance(unit, BridgeChapter):
        return MistakeSource.BRIDGE_EXERCISE
    return MistakeSource.EXERCISE


class ActivityService:
    """
    Facade wiring the engine components together.

    Usage:
        service = ActivityService(HttpContentSynthesizer())
        learner_id = service.create_learner("Priya")
        service.bootstrap_curriculum(learner_id)
        result = service.submit_exercise_result(learner_id, exercise_id, is_correct=True)
    """

    def __init__(
        self,
        synthesizer: ContentSynthesizer,
        session_factory: sessionmaker | None = None,
        clock: Callable[[], datetime] = utcnow,
        mastery: MasteryTracker | None = None,
        gate: SectionGate | None = None,
        remedial_trigger: RemedialTrigger | None = None,
        orchestrator: AdaptiveOrchestrator | None = None,
        reviews: ReviewScheduler | None = None,
    ):
        self.synthesizer = synthesizer
        self._session_factory = session_factory
        self._clock = clock
        self.mastery = mastery or MasteryTracker(clock)
        self.gate = gate or SectionGate(synthesizer, session_factory, clock=clock)
        self.remedial_trigger = remedial_trigger or RemedialTrigger(
            synthesizer, session_factory, clock=clock
        )
        self.orchestrator = orchestrator or AdaptiveOrchestrator(
            self.remedial_trigger, session_factory, clock=clock
        )
        self.reviews = reviews or ReviewScheduler(clock=clock)

    # ========================================
    # Learners and content
    # ========================================

    def create_learner(self, name: str, level: Level | str = Level.BEGINNER) -> str:
        with session_scope(self._session_factory) as session:
            learner = Learner(name=name, current_level=Level(level).value)
            learner.progress = LearnerProgress()
            session.add(learner)
            session.flush()
            logger.info("Created learner {} at {}", learner.id, learner.current_level)
            return learner.id

    def bootstrap_curriculum(
        self, learner_id: str, level: str | None = None, whole_level: bool | None = None
    ) -> list[str]:
        """
        Synthesize the opening curriculum of the learner's (or the given) level.

        With `whole_level` every chapter of the level is stored at once and only
        the first section is unlocked; later sections wait for their gate.
        Otherwise only the first section is synthesized and the rest follows
        gate by gate.
        """
        settings = get_settings()
        if whole_level is None:
            whole_level = settings.generate_whole_level

        with session_scope(self._session_factory) as session:
            learner = session.get(Learner, learner_id)
            if learner is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")
            level = level or learner.current_level

        size = self.gate.section_size
        if whole_level:
            request = GenerationRequest(
                learner_id,
                level,
                1,
                max(settings.chapters_per_level, size),
                unlocked_through=size,
            )
        else:
            request = GenerationRequest(learner_id, level, 1, size)
        return self.gate.fulfil_generation(request)

    def create_bridge_course(
        self,
        learner_id: str,
        target_level: Level | str,
        chapters: Sequence[SynthesizedChapter],
        title: str = "",
    ) -> str:
        """
        Store a bridge course. Bridge chapters hold their exercises directly,
        so lesson exercises of the supplied chapters are flattened.
        """
        target = Level(target_level).value
        with session_scope(self._session_factory) as session:
            if lock_learner(session, learner_id) is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")
            course = BridgeCourse(
                learner_id=learner_id,
                target_level=target,
                title=title or f"Bridge to {target.title()}",
            )
            session.add(course)
            session.flush()
            for number, data in enumerate(chapters, start=1):
                chapter = BridgeChapter(
                    learner_id=learner_id,
                    bridge_course_id=course.id,
                    level=target,
                    number=number,
                    title=data.title,
                    topic=data.topic,
                    description=data.description,
                    content=data.content,
                )
                exercises = [ex for lesson in data.lessons for ex in lesson.exercises]
                attach_exercises(chapter, learner_id, exercises, data.topic)
                session.add(chapter)
            logger.info("Created bridge course {} ({} chapters)", course.id, len(chapters))
            return course.id

    # ========================================
    # Exercises
    # ========================================

    def submit_exercise_result(
        self,
        learner_id: str,
        exercise_id: str,
        is_correct: bool,
        user_answer: str | None = None,
    ) -> ExerciseSubmission:
        """
        Record a graded exercise answer.

        The outcome, the attempt counter, the mistake record and any unit
        completion commit together; if that write fails the error propagates.
        Re-submitting an exercise that is already correct changes nothing.
        """
        now = self._clock()
        lesson_payload = None

        with session_scope(self._session_factory) as session:
            learner = lock_learner(session, learner_id)
            if learner is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")

            exercise = session.get(Exercise, exercise_id)
            if exercise is None or exercise.learner_id != learner_id:
                raise UnitNotFoundError(f"Exercise not found: {exercise_id}")

            unit = exercise.unit
            self._require_unlocked(session, unit)

            if exercise.outcome == ExerciseOutcome.CORRECT:
                return ExerciseSubmission(
                    exercise_id=exercise.id,
                    is_correct=True,
                    correct_answer=exercise.correct_answer,
                    lesson_completed=isinstance(unit, Lesson) and unit.is_completed,
                    chapter_completed=self._chapter_completed(session, unit),
                    already_correct=True,
                )

            exercise.outcome = ExerciseOutcome.CORRECT if is_correct else ExerciseOutcome.INCORRECT
            exercise.attempts = (exercise.attempts or 0) + 1
            exercise.user_answer = user_answer
            exercise.attempted_at = now
            learner.last_active_at = now

            if not is_correct:
                self._record_mistake(session, learner, exercise, unit, user_answer, now)

            completion = self.mastery.on_exercise_graded(session, exercise, now)
            result = ExerciseSubmission(
                exercise_id=exercise.id,
                is_correct=is_correct,
                correct_answer=exercise.correct_answer,
                lesson_completed=completion.lesson_completed,
                chapter_completed=completion.chapter_completed,
            )

            if isinstance(unit, Lesson) and unit.id in completion.newly_completed:
                lesson_payload = self._lesson_payload(session, unit)

            if completion.parent_id and completion.parent_id in completion.newly_completed:
                session.flush()
                chapter = session.get(Chapter, completion.parent_id)
                result.gate = self.gate.on_section_sealed(
                    session, learner_id, chapter.level, self.gate.section_of(chapter.number)
                )

        if lesson_payload is not None:
            result.issued_flashcards = self._issue_flashcards(learner_id, lesson_payload, now)

        result.activity = self.orchestrator.after_activity(learner_id, ActivityType.EXERCISE, now)
        return result

    # ========================================
    # Gate assessments
    # ========================================

    def start_gate_assessment(self, learner_id: str, level: str, section_number: int) -> str:
        return self.gate.start_assessment(learner_id, level, section_number)

    def start_bridge_final(self, learner_id: str, bridge_course_id: str) -> str:
        return self.gate.start_bridge_final(learner_id, bridge_course_id)

    def submit_gate_assessment(
        self, assessment_id: str, answers: Sequence[GradedAnswer]
    ) -> tuple[GateOutcome, ActivityReport]:
        outcome = self.gate.submit_assessment(assessment_id, answers)
        with session_scope(self._session_factory) as session:
            learner_id = self._assessment_owner(session, assessment_id)
        report = self.orchestrator.after_activity(learner_id, ActivityType.TEST)
        return outcome, report

    # ========================================
    # Flashcard review
    # ========================================

    def due_deck(self, learner_id: str) -> list[DueCard]:
        with session_scope(self._session_factory) as session:
            return self.reviews.due_deck(session, learner_id, self._clock())

    def submit_flashcard_review(
        self, learner_id: str, flashcard_id: str, was_correct: bool
    ) -> tuple[ReviewOutcome, ActivityReport]:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            learner = lock_learner(session, learner_id)
            if learner is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")
            outcome = self.reviews.submit_review(
                session, learner_id, flashcard_id, was_correct, now
            )
            learner.last_active_at = now
        report = self.orchestrator.after_activity(learner_id, ActivityType.REVIEW, now)
        return outcome, report

    def record_login(self, learner_id: str) -> ActivityReport:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            learner = lock_learner(session, learner_id)
            if learner is None:
                raise LearnerNotFoundError(f"Learner not found: {learner_id}")
            learner.last_active_at = now
        return self.orchestrator.after_activity(learner_id, ActivityType.LOGIN, now)

    # ========================================
    # Internals
    # ========================================

    @staticmethod
    def _require_unlocked(session: Session, unit: LearningUnit) -> None:
        """Lessons follow their chapter's lock; other units carry their own."""
        gated = unit
        if isinstance(unit, Lesson) and unit.parent_id:
            gated = session.get(Chapter, unit.parent_id) or unit
        if not gated.is_unlocked:
            raise UnitLockedError(
                gated.unlock_condition
                or f"Chapter {gated.number} is locked. Pass the required progress test to unlock it."
            )

    def _chapter_completed(self, session: Session, unit: LearningUnit) -> bool:
        if isinstance(unit, Lesson) and unit.parent_id:
            chapter = session.get(Chapter, unit.parent_id)
            return bool(chapter and chapter.is_completed)
        return not isinstance(unit, Lesson) and unit.is_completed

    def _record_mistake(
        self,
        session: Session,
        learner: Learner,
        exercise: Exercise,
        unit: LearningUnit,
        user_answer: str | None,
        now: datetime,
    ) -> None:
        chapter_number = unit.number
        lesson_number = None
        if isinstance(unit, Lesson):
            lesson_number = unit.number
            chapter = session.get(Chapter, unit.parent_id) if unit.parent_id else None
            chapter_number = chapter.number if chapter else None

        topic = exercise.grammar_point or exercise.topic or unit.topic or "General"
        session.add(
            Mistake(
                learner_id=learner.id,
                topic=topic,
                grammar_point=exercise.grammar_point or topic,
                source_type=mistake_source_for(unit).value,
                source_id=exercise.id,
                level=unit.level or learner.current_level,
                chapter_number=chapter_number,
                lesson_number=lesson_number,
                question=exercise.question,
                correct_answer=exercise.correct_answer,
                user_answer=user_answer,
                created_at=now,
            )
        )

    def _lesson_payload(self, session: Session, lesson: Lesson) -> dict:
        chapter = session.get(Chapter, lesson.parent_id) if lesson.parent_id else None
        return {
            "id": lesson.id,
            "title": lesson.title,
            "topic": lesson.topic,
            "level": lesson.level,
            "chapterNumber": chapter.number if chapter else None,
            "lessonNumber": lesson.number,
            "content": lesson.content or {},
        }

    def _issue_flashcards(self, learner_id: str, lesson: dict, now: datetime) -> int:
        try:
            cards = self.synthesizer.synthesize_flashcards(lesson)
            with session_scope(self._session_factory) as session:
                issued = self.reviews.issue(
                    session,
                    learner_id,
                    [card.model_dump() for card in cards],
                    level=lesson["level"],
                    chapter_number=lesson["chapterNumber"],
                    topic=lesson["topic"],
                    now=now,
                )
        except Exception:  # Lesson completion is already committed
            logger.exception("Flashcard issuance failed for lesson {}", lesson["id"])
            return 0
        return len(issued)

    @staticmethod
    def _assessment_owner(session: Session, assessment_id: str) -> str:
        return session.get(GateAssessment, assessment_id).learner_id


def default_service(synthesizer: ContentSynthesizer | None = None) -> ActivityService:
    """Service wired to the configured database and synthesis service."""
    settings = get_settings()
    logger.debug("Building activity service for {}", settings.database_url)
    return ActivityService(synthesizer or HttpContentSynthesizer())
