"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Every test gets a fresh in-memory SQLite database; the content synthesizer
is replaced by a recording fake.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from frailearn.db.database import session_scope  # noqa: E402
from frailearn.db.models import (  # noqa: E402
    Base,
    Chapter,
    Exercise,
    ExerciseOutcome,
    Learner,
    Lesson,
    Mistake,
)
from frailearn.synthesis.client import SynthesisError  # noqa: E402
from frailearn.synthesis.models import (  # noqa: E402
    AssessmentQuestion,
    RemedialContent,
    SynthesizedChapter,
    SynthesizedExercise,
    SynthesizedFlashcard,
    SynthesizedLesson,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# ========================================
# Database
# ========================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A session for arranging and inspecting state directly."""
    session = session_factory()
    yield session
    session.close()


# ========================================
# Clock
# ========================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 30))


# ========================================
# Content synthesis
# ========================================


class FakeSynthesizer:
    """
    Records every call and returns small canned payloads.

    Set `fail_<method>` to True to make that method raise SynthesisError.
    """

    def __init__(self, lessons_per_chapter: int = 1, exercises_per_lesson: int = 2):
        self.lessons_per_chapter = lessons_per_chapter
        self.exercises_per_lesson = exercises_per_lesson
        self.calls: list[tuple] = []
        self.fail_curriculum = False
        self.fail_remedial = False
        self.fail_assessment = False
        self.fail_flashcards = False

    def _exercise(self, topic: str, n: int) -> SynthesizedExercise:
        return SynthesizedExercise(
            question=f"{topic} question {n}", correct_answer=f"answer {n}", topic=topic
        )

    def synthesize_curriculum(self, level, first_chapter=1, last_chapter=None):
        self.calls.append(("curriculum", level, first_chapter, last_chapter))
        if self.fail_curriculum:
            raise SynthesisError("curriculum service unavailable")
        last_chapter = last_chapter or first_chapter
        return [
            SynthesizedChapter(
                title=f"{level} chapter {number}",
                topic=f"Topic {number}",
                lessons=[
                    SynthesizedLesson(
                        lesson_number=lesson,
                        title=f"Lesson {number}.{lesson}",
                        topic=f"Topic {number}",
                        exercises=[
                            self._exercise(f"Topic {number}", n)
                            for n in range(1, self.exercises_per_lesson + 1)
                        ],
                    )
                    for lesson in range(1, self.lessons_per_chapter + 1)
                ],
            )
            for number in range(first_chapter, last_chapter + 1)
        ]

    def synthesize_remedial(self, topic, sample_mistakes):
        self.calls.append(("remedial", topic, list(sample_mistakes)))
        if self.fail_remedial:
            raise SynthesisError("remedial service unavailable")
        return RemedialContent(
            title=f"Practice: {topic}",
            description=f"Focused practice on {topic}",
            exercises=[self._exercise(topic, n) for n in (1, 2, 3)],
        )

    def synthesize_assessment(self, content_range):
        self.calls.append(("assessment", content_range))
        if self.fail_assessment:
            raise SynthesisError("assessment service unavailable")
        return [
            AssessmentQuestion(
                id=f"q{n}",
                question=f"Question {n}",
                correct_answer="a",
                options=["a", "b"],
                topic="Articles" if n % 2 else "Verbs",
            )
            for n in range(1, 11)
        ]

    def synthesize_flashcards(self, lesson):
        self.calls.append(("flashcards", lesson))
        if self.fail_flashcards:
            raise SynthesisError("flashcard service unavailable")
        return [
            SynthesizedFlashcard(front_text=f"{lesson['title']} front {n}", back_text=f"back {n}")
            for n in (1, 2)
        ]

    def calls_to(self, kind: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


# ========================================
# Builders
# ========================================


class CurriculumBuilder:
    """Arranges learners, chapters, lessons and mistakes in committed transactions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def learner(self, name: str = "Priya", level: str = "BEGINNER", last_active_at=None) -> str:
        with session_scope(self.session_factory) as session:
            learner = Learner(name=name, current_level=level, last_active_at=last_active_at)
            session.add(learner)
            session.flush()
            return learner.id

    def chapter(
        self,
        learner_id: str,
        number: int,
        level: str = "BEGINNER",
        lessons: int = 1,
        exercises: int = 2,
        completed: bool = False,
        unlocked: bool = True,
        topic: str | None = None,
    ) -> dict:
        """
        Create a chapter with lessons and exercises.

        Returns:
            {"chapter": id, "lessons": [ids], "exercises": {lesson_id: [ids]}}
        """
        topic = topic or f"Topic {number}"
        with session_scope(self.session_factory) as session:
            chapter = Chapter(
                learner_id=learner_id,
                level=level,
                number=number,
                title=f"Chapter {number}",
                topic=topic,
                is_completed=completed,
                is_unlocked=unlocked,
            )
            session.add(chapter)
            session.flush()
            ids = {"chapter": chapter.id, "lessons": [], "exercises": {}}
            for lesson_number in range(1, lessons + 1):
                lesson = Lesson(
                    learner_id=learner_id,
                    parent_id=chapter.id,
                    level=level,
                    number=lesson_number,
                    title=f"Lesson {number}.{lesson_number}",
                    topic=topic,
                    is_completed=completed,
                )
                for n in range(1, exercises + 1):
                    lesson.exercises.append(
                        Exercise(
                            learner_id=learner_id,
                            number=n,
                            question=f"{topic} q{n}",
                            correct_answer=f"a{n}",
                            topic=topic,
                            outcome=ExerciseOutcome.CORRECT if completed else ExerciseOutcome.UNATTEMPTED,
                        )
                    )
                session.add(lesson)
                session.flush()
                ids["lessons"].append(lesson.id)
                ids["exercises"][lesson.id] = [ex.id for ex in lesson.exercises]
            return ids

    def section(self, learner_id: str, first: int, last: int, **kwargs) -> list[dict]:
        return [self.chapter(learner_id, number, **kwargs) for number in range(first, last + 1)]

    def mistake(
        self,
        learner_id: str,
        topic: str,
        created_at: datetime | None = None,
        is_addressed: bool = False,
    ) -> str:
        with session_scope(self.session_factory) as session:
            mistake = Mistake(
                learner_id=learner_id,
                topic=topic,
                grammar_point=topic,
                source_type="EXERCISE",
                question=f"{topic} question",
                correct_answer="right",
                user_answer="wrong",
                is_addressed=is_addressed,
                created_at=created_at or datetime(2026, 3, 1, 12, 0),
            )
            session.add(mistake)
            session.flush()
            return mistake.id


@pytest.fixture
def build(session_factory):
    return CurriculumBuilder(session_factory)
