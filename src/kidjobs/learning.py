"""Lessons, quizzes, learning streaks and achievements."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .access import require_parent, target_child
from .exceptions import ForbiddenError, NotFoundError, ValidationError
from .models import Actor, LessonCategory
from .ops import StructuredLogger
from .repository import Repository
from .webapp.persistence import Achievement, Child, LearningProgress, Lesson, Quiz, utcnow

# title -> (description, icon)
ACHIEVEMENTS: Dict[str, Tuple[str, str]] = {
    "First Paycheck": ("Got paid for your first job.", "dollar-sign"),
    "Hard Worker": ("Completed 10 paid jobs.", "hammer"),
    "First Lesson": ("Finished your first money lesson.", "book-open"),
    "Bookworm": ("Finished 5 money lessons.", "library"),
    "Week Streak": ("Learned something 7 days in a row.", "flame"),
}

JOB_MILESTONES: Tuple[Tuple[int, str], ...] = ((1, "First Paycheck"), (10, "Hard Worker"))
LESSON_MILESTONES: Tuple[Tuple[int, str], ...] = ((1, "First Lesson"), (5, "Bookworm"))
STREAK_MILESTONES: Tuple[Tuple[int, str], ...] = ((7, "Week Streak"),)

DEFAULT_VIDEO_URL = "https://www.youtube.com/embed/dQw4w9WgXcQ"

DEFAULT_LESSONS: List[Dict[str, object]] = [
    {
        "category": LessonCategory.EARNING.value,
        "title": "How to Earn Money",
        "content": (
            "Money is earned by doing work and providing value to others. When you complete "
            "chores or help your family, you earn money as a reward for your hard work!"
        ),
        "quizzes": [
            {
                "question": "How do you earn money?",
                "options": ["By doing work", "By wishing for it", "By hiding it"],
                "correct_answer": 0,
            },
            {
                "question": "What happens when a parent approves your job?",
                "options": ["Nothing", "You get paid", "The job is deleted"],
                "correct_answer": 1,
            },
        ],
    },
    {
        "category": LessonCategory.SAVING.value,
        "title": "Why Save Money?",
        "content": (
            "Saving money means keeping some of your earnings for later. It's like planting "
            "seeds that will grow into bigger plants! When you save money, you can buy bigger "
            "things you want in the future."
        ),
        "quizzes": [
            {
                "question": "What does saving money let you do?",
                "options": ["Buy bigger things later", "Lose money", "Spend it all today"],
                "correct_answer": 0,
            },
        ],
    },
    {
        "category": LessonCategory.SPENDING.value,
        "title": "Smart Spending",
        "content": (
            "Spending money wisely means thinking before you buy. Ask yourself: Do I really need "
            "this? Will it make me happy for a long time? Smart spending helps you get the most "
            "value from your money!"
        ),
        "quizzes": [
            {
                "question": "What should you ask before buying something?",
                "options": ["Is it shiny?", "Do I really need this?", "Is it the most expensive?"],
                "correct_answer": 1,
            },
        ],
    },
    {
        "category": LessonCategory.INVESTING.value,
        "title": "Growing Your Money",
        "content": (
            "Investing is like planting a money tree! When you invest, you put your money to work "
            "so it can grow over time. The earlier you start, the more your money can grow!"
        ),
        "quizzes": [
            {
                "question": "When is the best time to start investing?",
                "options": ["Never", "As early as possible", "Only when you are old"],
                "correct_answer": 1,
            },
        ],
    },
    {
        "category": LessonCategory.DONATING.value,
        "title": "Sharing is Caring",
        "content": (
            "Donating means giving some of your money to help others. It feels good to help "
            "people in need and makes the world a better place!"
        ),
        "quizzes": [
            {
                "question": "What does donating mean?",
                "options": ["Giving money to help others", "Borrowing money", "Saving money"],
                "correct_answer": 0,
            },
        ],
    },
]


@dataclass(slots=True)
class QuizItem:
    quiz: Quiz
    options: List[str]


@dataclass(slots=True)
class LessonResult:
    """Outcome of grading a lesson submission."""

    lesson_id: int
    score: int
    total: int
    passed: bool
    progress: Optional[LearningProgress]
    learning_streak: int
    new_achievements: List[Achievement] = field(default_factory=list)

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return round(self.score * 100 / self.total)


def decode_options(quiz: Quiz) -> List[str]:
    try:
        options = json.loads(quiz.options)
    except json.JSONDecodeError:
        return []
    return [str(option) for option in options] if isinstance(options, list) else []


def award_once(repo: Repository, child_id: int, title: str) -> Optional[Achievement]:
    """Stage ``title`` for ``child_id`` unless the child already holds it."""

    if title in repo.achievement_titles(child_id):
        return None
    description, icon = ACHIEVEMENTS[title]
    achievement = Achievement(child_id=child_id, title=title, description=description, icon=icon)
    repo.add(achievement)
    return achievement


def award_milestones(
    repo: Repository, child_id: int, count: int, milestones: Sequence[Tuple[int, str]]
) -> List[Achievement]:
    earned: List[Achievement] = []
    for threshold, title in milestones:
        if count >= threshold:
            achievement = award_once(repo, child_id, title)
            if achievement is not None:
                earned.append(achievement)
    return earned


def advance_streak(child: Child, today: date) -> int:
    """Update the child's learning streak for a lesson finished on ``today``."""

    if child.last_lesson_date == today:
        return child.learning_streak
    if child.last_lesson_date == today - timedelta(days=1):
        child.learning_streak += 1
    else:
        child.learning_streak = 1
    child.last_lesson_date = today
    return child.learning_streak


class LearningService:
    """Serve lesson content and record children's progress through it."""

    def __init__(self, repo: Repository, *, logger: StructuredLogger | None = None) -> None:
        self.repo = repo
        self.logger = logger or StructuredLogger()

    def ensure_default_content(self) -> None:
        if self.repo.has_default_lessons():
            return
        with self.repo.transaction():
            for entry in DEFAULT_LESSONS:
                lesson = Lesson(
                    category=str(entry["category"]),
                    title=str(entry["title"]),
                    content=str(entry["content"]),
                    video_url=DEFAULT_VIDEO_URL,
                    is_custom=False,
                )
                self.repo.add(lesson)
                self.repo.flush()
                for quiz in entry.get("quizzes", []):  # type: ignore[union-attr]
                    self.repo.add(
                        Quiz(
                            lesson_id=lesson.id,
                            question=quiz["question"],
                            options=json.dumps(quiz["options"]),
                            correct_answer=quiz["correct_answer"],
                        )
                    )
        self.logger.log("default_lessons_seeded", count=len(DEFAULT_LESSONS))

    def list_lessons(self, actor: Actor, *, category: Optional[str] = None) -> List[Lesson]:
        if category is not None and category not in {item.value for item in LessonCategory}:
            raise ValidationError(f"Unknown lesson category: {category}")
        return self.repo.list_lessons(actor.family_id, category=category)

    def get_lesson(self, actor: Actor, lesson_id: int) -> Lesson:
        lesson = self.repo.get_lesson(lesson_id)
        if lesson is None or (lesson.is_custom and lesson.family_id != actor.family_id):
            raise NotFoundError("Lesson not found")
        return lesson

    def create_lesson(
        self,
        actor: Actor,
        *,
        category: str,
        title: str,
        content: str,
        video_url: Optional[str] = None,
        quizzes: Sequence[Tuple[str, Sequence[str], int]] = (),
    ) -> Lesson:
        require_parent(actor, "Only parents can create custom lessons")
        for question, options, correct in quizzes:
            if len(options) < 2:
                raise ValidationError(f"Quiz question '{question}' needs at least two options.")
            if not 0 <= correct < len(options):
                raise ValidationError(f"Quiz question '{question}' has no valid correct answer.")
        lesson = Lesson(
            category=category,
            title=title.strip(),
            content=content,
            video_url=video_url,
            is_custom=True,
            family_id=actor.family_id,
        )
        with self.repo.transaction():
            self.repo.add(lesson)
            self.repo.flush()
            for question, options, correct in quizzes:
                self.repo.add(
                    Quiz(lesson_id=lesson.id, question=question, options=json.dumps(list(options)), correct_answer=correct)
                )
        self.logger.log("lesson_created", lesson=lesson.id, family=actor.family_id, quizzes=len(quizzes))
        return lesson

    def list_quizzes(self, actor: Actor, lesson_id: int) -> List[QuizItem]:
        lesson = self.get_lesson(actor, lesson_id)
        return [QuizItem(quiz=quiz, options=decode_options(quiz)) for quiz in self.repo.list_quizzes(lesson.id)]

    def complete_lesson(
        self,
        actor: Actor,
        lesson_id: int,
        answers: Sequence[int],
        *,
        today: Optional[date] = None,
    ) -> LessonResult:
        if actor.is_parent:
            raise ForbiddenError("Only children can complete lessons")
        child = target_child(self.repo, actor, None)
        lesson = self.get_lesson(actor, lesson_id)
        quizzes = self.repo.list_quizzes(lesson.id)
        if len(answers) != len(quizzes):
            raise ValidationError(f"Expected {len(quizzes)} answers, got {len(answers)}.")
        score = sum(1 for quiz, answer in zip(quizzes, answers) if quiz.correct_answer == answer)
        passed = score == len(quizzes)
        result = LessonResult(
            lesson_id=lesson.id,
            score=score,
            total=len(quizzes),
            passed=passed,
            progress=self.repo.get_progress(child.id, lesson.id),
            learning_streak=child.learning_streak,
        )
        if not passed:
            return result
        moment = utcnow()
        with self.repo.transaction():
            progress = result.progress
            first_completion = progress is None or not progress.completed
            if progress is None:
                progress = LearningProgress(child_id=child.id, lesson_id=lesson.id)
            progress.completed = True
            progress.quiz_score = max(progress.quiz_score or 0, result.percent)
            if first_completion:
                progress.completed_at = moment
            self.repo.add(progress)
            result.learning_streak = advance_streak(child, today or moment.date())
            self.repo.add(child)
            self.repo.flush()
            completed_count = sum(1 for item in self.repo.list_progress(child.id) if item.completed)
            result.new_achievements.extend(
                award_milestones(self.repo, child.id, completed_count, LESSON_MILESTONES)
            )
            result.new_achievements.extend(
                award_milestones(self.repo, child.id, child.learning_streak, STREAK_MILESTONES)
            )
        result.progress = progress
        self.logger.log(
            "lesson_completed",
            child=child.id,
            lesson=lesson.id,
            score=score,
            streak=result.learning_streak,
            achievements=[item.title for item in result.new_achievements],
        )
        return result

    def list_progress(self, actor: Actor, child_id: Optional[int]) -> List[LearningProgress]:
        child = target_child(self.repo, actor, child_id)
        return self.repo.list_progress(child.id)

    def list_achievements(self, actor: Actor, child_id: Optional[int]) -> List[Achievement]:
        child = target_child(self.repo, actor, child_id)
        return self.repo.list_achievements(child.id)


__all__ = [
    "ACHIEVEMENTS",
    "DEFAULT_LESSONS",
    "LearningService",
    "LessonResult",
    "QuizItem",
    "advance_streak",
    "award_milestones",
    "award_once",
    "decode_options",
]
