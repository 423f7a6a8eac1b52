"""
Timed quiz minigame.

Scoring per correct answer::

    time_bonus = floor(time_left * 5)
    multiplier = 1 + 0.2 * combo        # combo before this answer
    points     = floor((100 + time_bonus) * multiplier)

A wrong answer or a timeout resets the combo. At the end of a session the XP
is ``floor(base_xp * accuracy * (1 + 0.1 * max_combo))``.
"""
import logging
import math
import random
import uuid
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from errors import ValidationError
from schemas import (
    ActiveGame, Difficulty, GameConfig, GameSession, GameStats, Outcome, QuizQuestion, Rejection,
)

logger = logging.getLogger(__name__)

BASE_POINTS = 100
TIME_BONUS_PER_SECOND = 5
COMBO_STEP = 0.2
XP_COMBO_STEP = 0.1
HISTORY_LIMIT = 50


def score_answer(time_left: float, combo: int) -> Tuple[int, int]:
    """Points for a correct answer and the combo after it."""
    time_bonus = math.floor(time_left * TIME_BONUS_PER_SECOND)
    multiplier = 1 + COMBO_STEP * combo
    # float noise: 150 * 1.4 must floor to 210
    points = math.floor(round((BASE_POINTS + time_bonus) * multiplier, 6))
    return points, combo + 1


def session_xp(base_xp: int, correct: int, total: int, max_combo: int) -> int:
    if total <= 0:
        return 0
    accuracy = correct / total
    return math.floor(round(base_xp * accuracy * (1 + max_combo * XP_COMBO_STEP), 6))


def draw_questions(bank: List[QuizQuestion], count: int, difficulty: Optional[Difficulty] = None,
                   rng: Optional[random.Random] = None) -> List[QuizQuestion]:
    questions = [q for q in bank if difficulty is None or q.difficulty == difficulty]
    (rng or random).shuffle(questions)
    return questions[:count]


class QuizSession:
    """Accumulator for one play-through. The caller owns the timer."""

    def __init__(self, config: GameConfig, questions: List[QuizQuestion]):
        if not questions:
            raise ValidationError("a quiz session needs at least one question")
        self.config = config
        self.questions = questions
        self.index = 0
        self.score = 0
        self.combo = 0
        self.max_combo = 0
        self.correct = 0

    @property
    def finished(self) -> bool:
        return self.index >= len(self.questions)

    @property
    def current(self) -> QuizQuestion:
        if self.finished:
            raise ValidationError("quiz session already finished")
        return self.questions[self.index]

    def answer(self, answer_index: int, time_left: float) -> int:
        """Score the current question and advance. Returns the points earned."""
        question = self.current
        if time_left > self.config.time_per_question:
            raise ValidationError("time_left exceeds the time allowed per question")
        if time_left <= 0:
            return self.timeout()

        if answer_index != question.correct_index:
            self.combo = 0
            self.index += 1
            return 0

        points, self.combo = score_answer(time_left, self.combo)
        self.score += points
        self.max_combo = max(self.max_combo, self.combo)
        self.correct += 1
        self.index += 1
        return points

    def timeout(self) -> int:
        if self.finished:
            raise ValidationError("quiz session already finished")
        self.combo = 0
        self.index += 1
        return 0

    @property
    def accuracy(self) -> float:
        return self.correct / len(self.questions)

    @property
    def xp_earned(self) -> int:
        return session_xp(self.config.base_xp, self.correct, len(self.questions), self.max_combo)

    def summary(self, now: datetime) -> GameSession:
        if not self.finished:
            raise ValidationError("quiz session still has unanswered questions")
        return GameSession(
            id=f"session-{uuid.uuid4().hex[:12]}",
            game_type=self.config.id,
            score=self.score,
            xp_earned=self.xp_earned,
            timestamp=now,
            details={
                "correct_answers": self.correct,
                "total_questions": len(self.questions),
                "max_combo": self.max_combo,
                "accuracy": round(self.accuracy * 100),
            },
        )


def local_date(now: datetime) -> str:
    """Calendar date in the server's local zone; daily counters reset when it changes."""
    if now.tzinfo is not None:
        now = now.astimezone()
    return now.date().isoformat()


def previous_date(day: str) -> str:
    return (date.fromisoformat(day) - timedelta(days=1)).isoformat()


class GameTracker:
    """Daily play limits, open sessions, high scores and session history for one user."""

    def __init__(self, stats: GameStats):
        self.stats = stats

    def _counts(self, now: datetime) -> Dict[str, int]:
        """Today's play counters; every game's count starts over on a new local date."""
        today = local_date(now)
        if self.stats.last_play_date != today:
            return {}
        return self.stats.daily_plays

    def plays_today(self, game_id: str, now: datetime) -> int:
        return self._counts(now).get(game_id, 0)

    def can_play(self, game_id: str, max_plays: int, now: datetime) -> bool:
        return self.plays_today(game_id, now) < max_plays

    def record_play(self, game_id: str, now: datetime) -> int:
        self.stats.daily_plays = dict(self._counts(now))
        self.stats.last_play_date = local_date(now)
        self.stats.daily_plays[game_id] = self.stats.daily_plays.get(game_id, 0) + 1
        return self.stats.daily_plays[game_id]

    def open_session(self, game_id: str, question_ids: List[str], now: datetime) -> ActiveGame:
        # Starting again replaces an unfinished session; the play is spent either way.
        active = ActiveGame(game_id=game_id, question_ids=question_ids, started_at=now)
        self.stats.active[game_id] = active
        return active

    def check_session(self, game_id: str, question_ids: List[str]) -> Optional[Outcome]:
        """Refusal when there is no open session or the answers are for other questions."""
        active = self.stats.active.get(game_id)
        if active is None:
            return Outcome.reject(Rejection.NO_ACTIVE_SESSION, f"start {game_id} before finishing it")
        if list(question_ids) != active.question_ids:
            return Outcome.reject(Rejection.SESSION_MISMATCH, "answers do not match the questions drawn")
        return None

    def close_session(self, game_id: str):
        self.stats.active.pop(game_id, None)

    def high_score(self, game_id: str) -> int:
        return self.stats.high_scores.get(game_id, 0)

    def update_high_score(self, game_id: str, score: int) -> bool:
        # Ties keep the old record.
        if score > self.high_score(game_id):
            self.stats.high_scores[game_id] = score
            logger.info("New high score for %s: %d", game_id, score)
            return True
        return False

    def add_session(self, session: GameSession):
        self.stats.sessions = ([session] + self.stats.sessions)[:HISTORY_LIMIT]
