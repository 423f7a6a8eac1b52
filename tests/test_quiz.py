import random
from datetime import timedelta

import pytest

from catalog import GAMES, QUIZ_QUESTIONS
from conftest import T0
from errors import ValidationError
from quiz import GameTracker, QuizSession, draw_questions, score_answer, session_xp
from schemas import GameSession, GameStats, Rejection

CONFIG = GAMES["crypto-quiz"]


def session_of(n):
    return QuizSession(CONFIG, QUIZ_QUESTIONS[:n])


def test_combo_and_time_bonus():
    points, combo = score_answer(time_left=10, combo=2)
    assert points == 210
    assert combo == 3


def test_first_answer_has_no_multiplier():
    assert score_answer(15, 0) == (175, 1)


def test_time_bonus_is_floored():
    assert score_answer(9.9, 0) == (149, 1)


def test_session_scoring():
    session = session_of(3)
    assert session.answer(0, 10) == 150
    assert session.answer(0, 5) == 150  # (100 + 25) * 1.2
    assert session.answer(1, 12) == 0
    assert session.finished
    assert session.score == 300
    assert session.combo == 0
    assert session.max_combo == 2
    assert session.correct == 2
    assert session.xp_earned == 24


def test_timeout_breaks_combo():
    session = session_of(3)
    session.answer(0, 10)
    assert session.timeout() == 0
    assert session.answer(0, 10) == 150
    assert session.max_combo == 1


def test_zero_time_left_counts_as_timeout():
    session = session_of(2)
    session.answer(0, 10)
    assert session.answer(0, 0) == 0
    assert session.correct == 1
    assert session.combo == 0


def test_time_left_cannot_exceed_the_timer():
    with pytest.raises(ValidationError):
        session_of(1).answer(0, CONFIG.time_per_question + 1)


def test_cannot_answer_past_the_end():
    session = session_of(1)
    session.answer(0, 3)
    with pytest.raises(ValidationError):
        session.answer(0, 3)
    with pytest.raises(ValidationError):
        session.timeout()


def test_summary():
    session = session_of(2)
    with pytest.raises(ValidationError):
        session.summary(T0)
    session.answer(0, 15)
    session.answer(2, 15)
    summary = session.summary(T0)
    assert summary.game_type == "crypto-quiz"
    assert summary.score == 175
    assert summary.timestamp == T0
    assert summary.details == {"correct_answers": 1, "total_questions": 2, "max_combo": 1, "accuracy": 50}
    assert summary.xp_earned == session_xp(30, 1, 2, 1) == 16


@pytest.mark.parametrize("correct,total,max_combo,xp", [
    (10, 10, 10, 60),
    (0, 10, 0, 0),
    (7, 10, 3, 27),
    (5, 5, 0, 30),
])
def test_session_xp(correct, total, max_combo, xp):
    assert session_xp(30, correct, total, max_combo) == xp


def test_draw_questions():
    drawn = draw_questions(QUIZ_QUESTIONS, 10, rng=random.Random(3))
    assert len(drawn) == 10
    assert len({q.id for q in drawn}) == 10
    assert draw_questions(QUIZ_QUESTIONS, 10, rng=random.Random(3)) == drawn

    hard_free = draw_questions(QUIZ_QUESTIONS, 50, difficulty="medium")
    assert hard_free and all(q.difficulty == "medium" for q in hard_free)


# --- GameTracker ---

def test_daily_play_limit():
    tracker = GameTracker(GameStats(user_id="u1"))
    for _ in range(3):
        assert tracker.can_play("crypto-quiz", 3, T0)
        tracker.record_play("crypto-quiz", T0)
    assert not tracker.can_play("crypto-quiz", 3, T0)
    assert tracker.plays_today("crypto-quiz", T0) == 3

    tomorrow = T0 + timedelta(days=1)
    assert tracker.plays_today("crypto-quiz", tomorrow) == 0
    assert tracker.can_play("crypto-quiz", 3, tomorrow)
    assert tracker.record_play("crypto-quiz", tomorrow) == 1


def test_play_limits_are_per_game():
    tracker = GameTracker(GameStats(user_id="u1"))
    tracker.record_play("crypto-quiz", T0)
    assert tracker.plays_today("trading-sim", T0) == 0


def test_high_score_needs_strictly_more():
    tracker = GameTracker(GameStats(user_id="u1"))
    assert tracker.high_score("crypto-quiz") == 0
    assert tracker.update_high_score("crypto-quiz", 100)
    assert not tracker.update_high_score("crypto-quiz", 100)
    assert not tracker.update_high_score("crypto-quiz", 90)
    assert tracker.update_high_score("crypto-quiz", 101)
    assert tracker.high_score("crypto-quiz") == 101


def test_zero_score_is_not_a_high_score():
    tracker = GameTracker(GameStats(user_id="u1"))
    assert not tracker.update_high_score("crypto-quiz", 0)


def test_history_keeps_newest_fifty():
    tracker = GameTracker(GameStats(user_id="u1"))
    for i in range(55):
        tracker.add_session(GameSession(id=f"s{i}", game_type="crypto-quiz", score=i, timestamp=T0))
    assert len(tracker.stats.sessions) == 50
    assert tracker.stats.sessions[0].id == "s54"
    assert tracker.stats.sessions[-1].id == "s5"


def test_new_day_clears_every_game_counter():
    tracker = GameTracker(GameStats(user_id="u1"))
    tracker.record_play("crypto-quiz", T0)
    tracker.record_play("trading-sim", T0)
    tracker.record_play("trading-sim", T0)

    tomorrow = T0 + timedelta(days=1)
    assert tracker.plays_today("trading-sim", tomorrow) == 0
    tracker.record_play("crypto-quiz", tomorrow)
    assert tracker.stats.daily_plays == {"crypto-quiz": 1}
    assert tracker.plays_today("trading-sim", tomorrow) == 0


def test_open_session_lifecycle():
    tracker = GameTracker(GameStats(user_id="u1"))
    assert tracker.check_session("crypto-quiz", ["b1"]).reason == Rejection.NO_ACTIVE_SESSION

    tracker.open_session("crypto-quiz", ["b1", "b2"], T0)
    assert tracker.stats.active["crypto-quiz"].started_at == T0
    assert tracker.check_session("crypto-quiz", ["b2", "b1"]).reason == Rejection.SESSION_MISMATCH
    assert tracker.check_session("crypto-quiz", ["b1", "b2"]) is None

    tracker.close_session("crypto-quiz")
    assert tracker.check_session("crypto-quiz", ["b1", "b2"]).reason == Rejection.NO_ACTIVE_SESSION


def test_restart_replaces_open_session():
    tracker = GameTracker(GameStats(user_id="u1"))
    tracker.open_session("crypto-quiz", ["b1"], T0)
    tracker.open_session("crypto-quiz", ["w1"], T0)
    assert tracker.check_session("crypto-quiz", ["b1"]).reason == Rejection.SESSION_MISMATCH
    assert tracker.check_session("crypto-quiz", ["w1"]) is None
