"""
Unit tests for ActivityService.

End-to-end through the engine on an in-memory database: exercise
submission, mistake capture, flashcard issuance, gate offers and the
post-activity orchestration.
"""

import pytest
from sqlalchemy import event, select, update

from frailearn.adaptive.models import (
    GradedAnswer,
    LearnerNotFoundError,
    UnitLockedError,
    UnitNotFoundError,
)
from frailearn.db.models import (
    Chapter,
    Exercise,
    ExerciseOutcome,
    Flashcard,
    Learner,
    LearnerProgress,
    Lesson,
    Mistake,
    RemedialChapter,
    StreakState,
)
from frailearn.services.activity import ActivityService
from frailearn.synthesis.models import SynthesizedChapter, SynthesizedExercise, SynthesizedLesson


@pytest.fixture
def service(synthesizer, session_factory, clock):
    return ActivityService(synthesizer, session_factory, clock=clock)


def exercises_of(ids):
    return [ex for lesson_id in ids["lessons"] for ex in ids["exercises"][lesson_id]]


class TestLearners:
    def test_create_and_bootstrap_first_section(self, session, service, synthesizer):
        learner_id = service.create_learner("Priya")

        created = service.bootstrap_curriculum(learner_id, whole_level=False)

        assert len(created) == 5
        assert synthesizer.calls_to("curriculum") == [("curriculum", "BEGINNER", 1, 5)]
        assert session.get(Learner, learner_id).current_level == "BEGINNER"
        assert session.get(LearnerProgress, learner_id) is not None

    def test_bootstrap_whole_level_locks_later_sections(self, session, service, synthesizer):
        learner_id = service.create_learner("Priya")

        created = service.bootstrap_curriculum(learner_id, whole_level=True)

        assert len(created) == 15
        assert synthesizer.calls_to("curriculum") == [("curriculum", "BEGINNER", 1, 15)]
        chapters = session.scalars(select(Chapter).order_by(Chapter.number)).all()
        assert [c.is_unlocked for c in chapters] == [True] * 5 + [False] * 10
        assert chapters[0].unlock_condition is None
        assert chapters[5].unlock_condition == "Pass the progress test for chapters 1-5."
        assert chapters[10].unlock_condition == "Pass the progress test for chapters 6-10."

    def test_bootstrap_unknown_learner(self, service):
        with pytest.raises(LearnerNotFoundError):
            service.bootstrap_curriculum("missing")

    def test_record_login_updates_activity(self, session, service, clock):
        learner_id = service.create_learner("Priya")

        report = service.record_login(learner_id)

        assert report.activity_type.value == "LOGIN"
        assert report.remedial_chapter_ids == []
        assert session.get(Learner, learner_id).last_active_at == clock()
        assert session.get(StreakState, learner_id).current_streak == 1

    def test_record_login_unknown_learner(self, service):
        with pytest.raises(LearnerNotFoundError):
            service.record_login("missing")


class TestSubmitExercise:
    def test_correct_answer_records_attempt(self, session, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=2)
        first = exercises_of(ids)[0]

        result = service.submit_exercise_result(learner_id, first, True, "a1")

        assert result.is_correct
        assert not result.lesson_completed
        exercise = session.get(Exercise, first)
        assert exercise.outcome == ExerciseOutcome.CORRECT
        assert exercise.attempts == 1
        assert exercise.user_answer == "a1"
        assert session.scalars(select(Mistake)).all() == []

    def test_incorrect_answer_records_mistake(self, session, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 3, lessons=1, exercises=2, topic="Articles")
        first = exercises_of(ids)[0]

        result = service.submit_exercise_result(learner_id, first, False, "the")

        assert not result.is_correct
        assert result.correct_answer == "a1"
        mistake = session.scalars(select(Mistake)).one()
        assert mistake.topic == "Articles"
        assert mistake.source_type == "EXERCISE"
        assert mistake.chapter_number == 3
        assert mistake.lesson_number == 1
        assert mistake.user_answer == "the"

    def test_resubmitting_correct_exercise_is_a_no_op(self, session, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=2)
        first = exercises_of(ids)[0]
        service.submit_exercise_result(learner_id, first, True)

        result = service.submit_exercise_result(learner_id, first, False)

        assert result.already_correct
        assert result.activity is None
        session.expire_all()
        exercise = session.get(Exercise, first)
        assert exercise.attempts == 1
        assert exercise.outcome == ExerciseOutcome.CORRECT
        assert session.scalars(select(Mistake)).all() == []

    def test_exercise_of_another_learner(self, build, service):
        alice = build.learner("Alice")
        bob = build.learner("Bob")
        ids = build.chapter(alice, 1)

        with pytest.raises(UnitNotFoundError):
            service.submit_exercise_result(bob, exercises_of(ids)[0], True)

    def test_locked_chapter_refuses_exercises(self, session, build, service):
        learner_id = build.learner()
        build.section(learner_id, 1, 5, completed=True)
        ids = build.chapter(learner_id, 6, lessons=1, exercises=2, unlocked=False)

        for exercise_id in exercises_of(ids):
            with pytest.raises(UnitLockedError):
                service.submit_exercise_result(learner_id, exercise_id, True)

        chapter = session.get(Chapter, ids["chapter"])
        assert not chapter.is_completed
        assert not session.get(Lesson, ids["lessons"][0]).is_completed
        exercise = session.get(Exercise, exercises_of(ids)[0])
        assert exercise.attempts == 0
        assert exercise.outcome == ExerciseOutcome.UNATTEMPTED
        assert session.get(Learner, learner_id).last_active_at is None

    def test_failed_completion_write_propagates(self, session, session_factory, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=1)
        lesson_id = ids["lessons"][0]

        def fail_lesson_completion(flush_session, flush_context, instances):
            for obj in flush_session.dirty:
                if isinstance(obj, Lesson) and obj.is_completed:
                    raise RuntimeError("disk I/O error")

        event.listen(session_factory, "before_flush", fail_lesson_completion)
        try:
            with pytest.raises(RuntimeError, match="disk I/O error"):
                service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)
        finally:
            event.remove(session_factory, "before_flush", fail_lesson_completion)

        session.expire_all()
        lesson = session.get(Lesson, lesson_id)
        assert not lesson.is_completed
        assert lesson.completed_at is None
        exercise = session.get(Exercise, exercises_of(ids)[0])
        assert exercise.attempts == 0
        assert exercise.outcome == ExerciseOutcome.UNATTEMPTED
        assert session.get(StreakState, learner_id) is None

    def test_lesson_completion_issues_flashcards(self, session, build, service, synthesizer):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=2, exercises=1)
        first_lesson_exercise = ids["exercises"][ids["lessons"][0]][0]

        result = service.submit_exercise_result(learner_id, first_lesson_exercise, True)

        assert result.lesson_completed
        assert not result.chapter_completed
        assert result.issued_flashcards == 2
        assert len(synthesizer.calls_to("flashcards")) == 1
        cards = session.scalars(select(Flashcard)).all()
        assert {c.chapter_number for c in cards} == {1}
        assert len(service.due_deck(learner_id)) == 2

    def test_flashcard_failure_keeps_completion(self, session, build, service, synthesizer):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=1)
        synthesizer.fail_flashcards = True

        result = service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)

        assert result.lesson_completed
        assert result.issued_flashcards == 0
        assert session.get(Lesson, ids["lessons"][0]).is_completed

    def test_sealing_a_section_offers_the_gate(self, build, service):
        learner_id = build.learner()
        build.section(learner_id, 1, 4, completed=True)
        ids = build.chapter(learner_id, 5, lessons=1, exercises=1)

        result = service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)

        assert result.chapter_completed
        assert result.gate is not None
        assert result.gate.offer
        assert result.gate.chapter_range.key == "1-5"

    def test_completing_a_chapter_in_unsealed_section(self, build, service):
        learner_id = build.learner()
        build.chapter(learner_id, 1, completed=True)
        build.chapter(learner_id, 2)
        ids = build.chapter(learner_id, 3, lessons=1, exercises=1)

        result = service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)

        assert result.chapter_completed
        assert not result.gate.sealed
        assert not result.gate.offer

    def test_runs_orchestrator(self, session, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=1)

        result = service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)

        assert result.activity.ok
        assert session.get(StreakState, learner_id).current_streak == 1
        progress = session.get(LearnerProgress, learner_id)
        assert progress.total_exercises_attempted == 1
        assert progress.total_lessons_completed == 1
        assert progress.overall_accuracy == 100.0

    def test_repeated_mistakes_trigger_remediation(self, session, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=2, topic="Articles")
        first, second = exercises_of(ids)

        service.submit_exercise_result(learner_id, first, False)
        result = service.submit_exercise_result(learner_id, second, False)

        assert len(result.activity.remedial_chapter_ids) == 1
        chapter = session.get(RemedialChapter, result.activity.remedial_chapter_ids[0])
        assert chapter.grammar_point == "Articles"

    def test_remedial_exercise_mistake_source(self, session, build, service, synthesizer):
        learner_id = build.learner()
        build.mistake(learner_id, "Articles")
        build.mistake(learner_id, "Articles")
        (remedial_id,) = service.remedial_trigger.check(learner_id)
        exercise_id = session.get(RemedialChapter, remedial_id).exercises[0].id

        service.submit_exercise_result(learner_id, exercise_id, False)

        latest = session.scalars(select(Mistake).where(Mistake.is_addressed.is_(False))).one()
        assert latest.source_type == "REMEDIAL_EXERCISE"


class TestGateFlow:
    def test_pass_gate_through_service(self, build, service, synthesizer):
        learner_id = build.learner()
        build.section(learner_id, 1, 5, completed=True)

        assessment_id = service.start_gate_assessment(learner_id, "BEGINNER", 1)
        graded = [GradedAnswer(f"q{n}", n <= 8, topic="Articles") for n in range(1, 11)]
        outcome, report = service.submit_gate_assessment(assessment_id, graded)

        assert outcome.passed
        assert len(outcome.generated_chapter_ids) == 5
        assert report.activity_type.value == "TEST"

    def test_pass_unlocks_pregenerated_section_in_place(self, session, service, synthesizer):
        learner_id = service.create_learner("Priya")
        service.bootstrap_curriculum(learner_id, whole_level=True)
        session.execute(
            update(Chapter)
            .where(Chapter.learner_id == learner_id, Chapter.number <= 5)
            .values(is_completed=True)
        )
        session.commit()

        assessment_id = service.start_gate_assessment(learner_id, "BEGINNER", 1)
        graded = [GradedAnswer(f"q{n}", True) for n in range(1, 11)]
        outcome, _ = service.submit_gate_assessment(assessment_id, graded)

        assert outcome.passed
        assert len(outcome.unlocked_chapter_ids) == 5
        assert outcome.generation is None
        assert len(synthesizer.calls_to("curriculum")) == 1
        session.expire_all()
        chapters = session.scalars(select(Chapter).order_by(Chapter.number)).all()
        assert [c.is_unlocked for c in chapters] == [True] * 10 + [False] * 5
        assert chapters[5].unlock_condition is None


class TestBridgeFlow:
    def test_bridge_course_to_next_level(self, session, build, service):
        learner_id = build.learner(level="BEGINNER")
        chapter = SynthesizedChapter(
            title="Bridge basics",
            topic="Articles",
            lessons=[
                SynthesizedLesson(
                    lesson_number=1,
                    title="Only lesson",
                    exercises=[SynthesizedExercise(question="q", correct_answer="a")],
                )
            ],
        )
        course_id = service.create_bridge_course(learner_id, "INTERMEDIATE", [chapter])
        exercise_id = session.scalars(select(Exercise)).one().id

        result = service.submit_exercise_result(learner_id, exercise_id, True)
        assert result.chapter_completed

        assessment_id = service.start_bridge_final(learner_id, course_id)
        graded = [GradedAnswer(f"q{n}", True) for n in range(1, 11)]
        outcome, _ = service.submit_gate_assessment(assessment_id, graded)

        assert outcome.level_advanced_to == "INTERMEDIATE"
        session.expire_all()
        assert session.get(Learner, learner_id).current_level == "INTERMEDIATE"


class TestFlashcardReview:
    def test_review_moves_card_out_of_deck(self, build, service):
        learner_id = build.learner()
        ids = build.chapter(learner_id, 1, lessons=1, exercises=1)
        service.submit_exercise_result(learner_id, exercises_of(ids)[0], True)
        deck = service.due_deck(learner_id)

        outcome, report = service.submit_flashcard_review(learner_id, deck[0].flashcard_id, True)

        assert outcome.interval == 1
        assert report.activity_type.value == "REVIEW"
        assert len(service.due_deck(learner_id)) == 1
