"""
Materialize synthesized content as learning units.

Shared by the section gate (new chapters), the remedial trigger (remedial
chapters) and the sweep (deferred generation).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from frailearn.db.models import Chapter, Exercise, LearningUnit, Lesson
from frailearn.synthesis.models import SynthesizedChapter, SynthesizedExercise


def attach_exercises(
    unit: LearningUnit,
    learner_id: str,
    exercises: Sequence[SynthesizedExercise],
    default_topic: str | None = None,
) -> None:
    for number, item in enumerate(exercises, start=1):
        unit.exercises.append(
            Exercise(
                learner_id=learner_id,
                number=number,
                exercise_type=item.type,
                question=item.question,
                correct_answer=item.correct_answer,
                options=list(item.options),
                explanation=item.explanation,
                topic=item.topic or default_topic,
                grammar_point=item.grammar_point or item.topic or default_topic,
            )
        )


def unlock_condition_for(number: int, section_size: int) -> str:
    """Which progress test opens the section holding chapter `number`."""
    gate_end = (number - 1) // section_size * section_size
    gate_start = gate_end - section_size + 1
    return f"Pass the progress test for chapters {gate_start}-{gate_end}."


def materialize_chapters(
    session: Session,
    learner_id: str,
    level: str,
    first_number: int,
    chapters: Sequence[SynthesizedChapter],
    now: datetime,
    unlocked_through: int | None = None,
    section_size: int = 5,
) -> list[str]:
    """
    Store synthesized chapters numbered from `first_number`.

    Chapters numbered above `unlocked_through` are stored locked with the
    unlock condition of their section; with no limit every chapter is unlocked.

    Returns:
        Ids of the created chapters in number order
    """
    created: list[str] = []
    for offset, data in enumerate(chapters):
        number = first_number + offset
        unlocked = unlocked_through is None or number <= unlocked_through
        chapter = Chapter(
            learner_id=learner_id,
            level=level,
            number=number,
            title=data.title,
            topic=data.topic,
            description=data.description,
            content=data.content,
            is_unlocked=unlocked,
            unlocked_at=now if unlocked else None,
            unlock_condition=None if unlocked else unlock_condition_for(number, section_size),
        )
        session.add(chapter)
        session.flush()

        for lesson_data in data.lessons:
            lesson = Lesson(
                learner_id=learner_id,
                parent_id=chapter.id,
                level=level,
                number=lesson_data.lesson_number,
                title=lesson_data.title,
                topic=lesson_data.topic or data.topic,
                content=lesson_data.content,
            )
            attach_exercises(lesson, learner_id, lesson_data.exercises, lesson.topic)
            session.add(lesson)

        created.append(chapter.id)

    session.flush()
    return created
