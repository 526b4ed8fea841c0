from datetime import date, timedelta
from typing import List, Tuple

import pytest

from conftest import child_actor, make_parent
from kidjobs.exceptions import ForbiddenError, NotFoundError, ValidationError
from kidjobs.learning import DEFAULT_LESSONS, LearningService, advance_streak
from kidjobs.models import Actor
from kidjobs.ops import StructuredLogger
from kidjobs.repository import Repository
from kidjobs.service import Bookkeeper
from kidjobs.webapp.persistence import Child, Lesson

START = date(2024, 3, 4)


@pytest.fixture()
def learning(repo: Repository, event_log: StructuredLogger) -> LearningService:
    service = LearningService(repo, logger=event_log)
    service.ensure_default_content()
    return service


@pytest.fixture()
def family(repo: Repository, event_log: StructuredLogger) -> Tuple[Actor, Child, Actor]:
    parent = make_parent(repo)
    child, user = Bookkeeper(repo, logger=event_log).create_child(parent, name="Emma", age=10)
    return parent, child, child_actor(user)


def _answers(repo: Repository, lesson: Lesson) -> List[int]:
    return [quiz.correct_answer for quiz in repo.list_quizzes(lesson.id)]


def test_default_content_is_seeded_once(learning: LearningService, repo: Repository, family) -> None:
    parent, _, _ = family
    learning.ensure_default_content()

    lessons = learning.list_lessons(parent)
    assert len(lessons) == len(DEFAULT_LESSONS)
    assert {lesson.category for lesson in lessons} == {"earning", "saving", "spending", "investing", "donating"}
    assert all(repo.list_quizzes(lesson.id) for lesson in lessons)
    assert len(learning.logger.events("default_lessons_seeded")) == 1


def test_lessons_filter_by_category(learning: LearningService, family) -> None:
    parent, _, _ = family

    saving = learning.list_lessons(parent, category="saving")
    assert [lesson.title for lesson in saving] == ["Why Save Money?"]
    with pytest.raises(ValidationError):
        learning.list_lessons(parent, category="gambling")


def test_passing_a_lesson_records_progress_and_streak(learning: LearningService, repo: Repository, family) -> None:
    _, child, kid = family
    lesson = learning.list_lessons(kid)[0]

    result = learning.complete_lesson(kid, lesson.id, _answers(repo, lesson), today=START)

    assert result.passed
    assert result.percent == 100
    assert result.progress.completed
    assert result.progress.quiz_score == 100
    assert result.learning_streak == 1
    assert child.last_lesson_date == START
    assert [item.title for item in result.new_achievements] == ["First Lesson"]


def test_wrong_answers_do_not_complete_the_lesson(learning: LearningService, repo: Repository, family) -> None:
    _, child, kid = family
    lesson = learning.list_lessons(kid)[0]
    wrong = [answer + 1 for answer in _answers(repo, lesson)]

    result = learning.complete_lesson(kid, lesson.id, wrong, today=START)

    assert not result.passed
    assert result.progress is None
    assert child.learning_streak == 0
    assert repo.list_achievements(child.id) == []


def test_answer_count_must_match(learning: LearningService, family) -> None:
    _, _, kid = family
    lesson = learning.list_lessons(kid)[0]

    with pytest.raises(ValidationError):
        learning.complete_lesson(kid, lesson.id, [], today=START)


def test_only_children_complete_lessons(learning: LearningService, repo: Repository, family) -> None:
    parent, _, _ = family
    lesson = learning.list_lessons(parent)[0]

    with pytest.raises(ForbiddenError):
        learning.complete_lesson(parent, lesson.id, _answers(repo, lesson))


def test_streak_rules(learning: LearningService, repo: Repository, family) -> None:
    _, child, kid = family
    first, second, third, fourth = learning.list_lessons(kid)[:4]

    learning.complete_lesson(kid, first.id, _answers(repo, first), today=START)
    learning.complete_lesson(kid, second.id, _answers(repo, second), today=START + timedelta(days=1))
    assert child.learning_streak == 2

    learning.complete_lesson(kid, third.id, _answers(repo, third), today=START + timedelta(days=1))
    assert child.learning_streak == 2

    learning.complete_lesson(kid, fourth.id, _answers(repo, fourth), today=START + timedelta(days=5))
    assert child.learning_streak == 1


def test_achievements_are_awarded_once(learning: LearningService, repo: Repository, family) -> None:
    _, child, kid = family
    lessons = learning.list_lessons(kid)

    for offset, lesson in enumerate(lessons):
        learning.complete_lesson(kid, lesson.id, _answers(repo, lesson), today=START + timedelta(days=offset))
    learning.complete_lesson(kid, lessons[0].id, _answers(repo, lessons[0]), today=START + timedelta(days=5))

    titles = repo.achievement_titles(child.id)
    assert sorted(titles) == ["Bookworm", "First Lesson"]
    assert child.learning_streak == 6


def test_week_streak_achievement() -> None:
    child = Child(family_id=1, name="Emma", learning_streak=6, last_lesson_date=START - timedelta(days=1))
    assert advance_streak(child, START) == 7
    assert child.last_lesson_date == START


def test_week_streak_awarded_on_lesson(learning: LearningService, repo: Repository, family) -> None:
    _, child, kid = family
    with repo.transaction():
        child.learning_streak = 6
        child.last_lesson_date = START - timedelta(days=1)
        repo.add(child)
    lesson = learning.list_lessons(kid)[0]

    result = learning.complete_lesson(kid, lesson.id, _answers(repo, lesson), today=START)

    assert result.learning_streak == 7
    assert "Week Streak" in [item.title for item in result.new_achievements]


def test_custom_lessons_stay_in_their_family(learning: LearningService, repo: Repository, family) -> None:
    parent, _, kid = family
    lesson = learning.create_lesson(
        parent,
        category="saving",
        title="Piggy bank goals",
        content="Pick something to save for.",
        quizzes=[("What is a goal?", ["Something you save for", "A snack"], 0)],
    )
    other = make_parent(repo, name="Other Family")

    assert lesson.is_custom
    assert lesson.id in [item.id for item in learning.list_lessons(kid)]
    assert lesson.id not in [item.id for item in learning.list_lessons(other)]
    with pytest.raises(NotFoundError):
        learning.list_quizzes(other, lesson.id)
    assert learning.list_quizzes(kid, lesson.id)[0].options == ["Something you save for", "A snack"]


def test_children_cannot_create_lessons(learning: LearningService, family) -> None:
    _, _, kid = family
    with pytest.raises(ForbiddenError):
        learning.create_lesson(kid, category="saving", title="Mine", content="Mine")


def test_lesson_quiz_answers_must_be_valid(learning: LearningService, family) -> None:
    parent, _, _ = family
    with pytest.raises(ValidationError):
        learning.create_lesson(
            parent, category="saving", title="Broken", content="Broken", quizzes=[("Q?", ["A", "B"], 5)]
        )


def test_progress_and_achievements_need_child_for_parents(learning: LearningService, repo: Repository, family) -> None:
    parent, child, kid = family
    lesson = learning.list_lessons(kid)[0]
    learning.complete_lesson(kid, lesson.id, _answers(repo, lesson), today=START)

    with pytest.raises(ValidationError):
        learning.list_progress(parent, None)
    assert [item.lesson_id for item in learning.list_progress(parent, child.id)] == [lesson.id]
    assert [item.title for item in learning.list_achievements(kid, None)] == ["First Lesson"]
