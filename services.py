"""
Per-user orchestration: load, bring the pet forward in time, apply the action,
save. One lock per user keeps decay and actions in order.
"""
import logging
import random
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from catalog import GAMES, LESSON_XP, MODULES, QUIZ_QUESTIONS
from database import Storage
from errors import NotFound, ValidationError
from pet import PetLifecycle
from progress import ProgressTracker
from quiz import GameTracker, QuizSession, draw_questions
from rewards import ChainAdapter, DailyRewardTracker, MockChainAdapter, RewardIssuer, next_milestone
from schemas import (
    Badge, BadgeResult, DailyClaim, DailyReward, GameConfig, GameResult, GameStart, GameStats, ItemType,
    Leaderboard, LeaderboardEntry, LeaderboardType, LessonResult, Module, Outcome, Pet, PetType,
    PracticeResult, QuizQuestion, QuizResult, Rejection, UserProgress, utcnow,
)

logger = logging.getLogger(__name__)

# (answer_index or None for a timeout, seconds left on the clock)
Answer = Tuple[Optional[int], float]

# board -> (stored kind, ranked field)
LEADERBOARDS = {"xp": ("pet", "xp"), "streak": ("daily", "streak")}


class CryptoPetService:
    def __init__(self, storage: Storage, chain: Optional[ChainAdapter] = None,
                 modules: List[Module] = None, games: Dict[str, GameConfig] = None,
                 question_bank: List[QuizQuestion] = None,
                 clock: Callable[[], datetime] = utcnow, rng: Optional[random.Random] = None):
        self.storage = storage
        self.clock = clock
        self.modules = MODULES if modules is None else modules
        self.games = GAMES if games is None else games
        self.question_bank = QUIZ_QUESTIONS if question_bank is None else question_bank
        self.rewards = RewardIssuer(chain or MockChainAdapter(clock=clock))
        self.rng = rng or random.Random()
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _user(self, user_id: str):
        if not user_id:
            raise ValidationError("user id is required")
        with self._locks_guard:
            lock = self._locks.setdefault(user_id, threading.RLock())
        with lock:
            yield self.clock()

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------
    def _find_pet(self, user_id: str) -> Optional[Pet]:
        doc = self.storage.load("pet", user_id)
        return Pet.model_validate(doc) if doc else None

    def _load_pet(self, user_id: str) -> Pet:
        pet = self._find_pet(user_id)
        if pet is None:
            raise NotFound("pet", user_id)
        return pet

    def _save_pet(self, pet: Pet):
        self.storage.save("pet", pet.user_id, pet.model_dump(mode="json"))

    def _load_progress(self, user_id: str) -> UserProgress:
        doc = self.storage.load("progress", user_id)
        return UserProgress.model_validate(doc) if doc else UserProgress(user_id=user_id)

    def _save_progress(self, progress: UserProgress):
        self.storage.save("progress", progress.user_id, progress.model_dump(mode="json"))

    def _load_games(self, user_id: str) -> GameStats:
        doc = self.storage.load("games", user_id)
        return GameStats.model_validate(doc) if doc else GameStats(user_id=user_id)

    def _save_games(self, stats: GameStats):
        self.storage.save("games", stats.user_id, stats.model_dump(mode="json"))

    def _game(self, game_id: str) -> GameConfig:
        if game_id not in self.games:
            raise NotFound("game", game_id)
        return self.games[game_id]

    # ------------------------------------------------------------------
    # Pet
    # ------------------------------------------------------------------
    def create_pet(self, user_id: str, name: str, pet_type: PetType) -> Tuple[Outcome, Pet]:
        with self._user(user_id) as now:
            existing = self._find_pet(user_id)
            if existing is not None:
                return Outcome.reject(Rejection.PET_EXISTS, "user already has a pet"), existing
            try:
                pet = Pet(id=f"pet_{uuid.uuid4().hex[:12]}", user_id=user_id, name=name, type=pet_type,
                          last_updated=now, created_at=now)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            self._save_pet(pet)
            logger.info("Created %s %s for %s", pet_type, pet.id, user_id)
            return Outcome.accept(), pet

    def get_pet(self, user_id: str) -> Pet:
        with self._user(user_id) as now:
            pet = self._load_pet(user_id)
            PetLifecycle(pet).tick(now)
            self._save_pet(pet)
            return pet

    def _pet_action(self, user_id: str, action: Callable[[PetLifecycle, datetime], Outcome]) -> Tuple[Outcome, Pet]:
        with self._user(user_id) as now:
            pet = self._load_pet(user_id)
            outcome = action(PetLifecycle(pet), now)
            # Saved even when refused: the decay applied up to now stands.
            self._save_pet(pet)
            return outcome, pet

    def feed(self, user_id: str) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.feed(now))

    def play(self, user_id: str) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.play(now))

    def rest(self, user_id: str) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.rest(now))

    def heal(self, user_id: str) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.heal(now))

    def revive(self, user_id: str, use_free: bool) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.revive(use_free, now))

    def equip(self, user_id: str, item_id: str, item_type: ItemType) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.equip(item_id, item_type, now))

    def add_xp(self, user_id: str, amount: int) -> Tuple[Outcome, Pet]:
        return self._pet_action(user_id, lambda lc, now: lc.add_xp(amount, now))

    def _award_xp(self, user_id: str, amount: int) -> Tuple[int, Optional[Outcome]]:
        """XP for learning and games; a missing or dead pet simply gets none."""
        if amount <= 0:
            return 0, None
        try:
            outcome, _ = self.add_xp(user_id, amount)
        except NotFound:
            logger.info("No pet for %s, %d xp not awarded", user_id, amount)
            return 0, None
        if not outcome.ok:
            logger.info("Pet of %s refused %d xp: %s", user_id, amount, outcome.reason.value)
            return 0, outcome
        return amount, outcome

    def _level(self, user_id: str) -> int:
        pet = self._find_pet(user_id)
        return pet.level if pet else 1

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------
    def _tracker(self, user_id: str) -> ProgressTracker:
        return ProgressTracker(self.modules, self._load_progress(user_id))

    def overview(self, user_id: str) -> List[dict]:
        with self._user(user_id):
            tracker = self._tracker(user_id)
            level = self._level(user_id)
            rows = []
            for module in sorted(self.modules, key=lambda m: m.order):
                entry = tracker.get(module.id)
                rows.append({
                    "module_id": module.id,
                    "percent": tracker.module_percent(module.id),
                    "stage": tracker.stage(module.id).value,
                    "unlocked": tracker.is_module_unlocked(module.id, level),
                    "quiz_unlocked": tracker.can_take_quiz(module.id),
                    "progress": entry.model_dump(mode="json") if entry else None,
                })
            return rows

    def _level_gate(self, tracker: ProgressTracker, user_id: str, module_id: str) -> Optional[Outcome]:
        module = tracker.module(module_id)
        if not tracker.is_module_unlocked(module_id, self._level(user_id)):
            return Outcome.reject(Rejection.LEVEL_LOCKED, f"requires level {module.required_level}")
        return None

    def complete_lesson(self, user_id: str, module_id: str, lesson_id: str) -> LessonResult:
        with self._user(user_id) as now:
            tracker = self._tracker(user_id)
            refused = self._level_gate(tracker, user_id, module_id)
            if refused:
                return LessonResult(outcome=refused)

            outcome = tracker.complete_lesson(module_id, lesson_id, now)
            self._save_progress(tracker.progress)
            xp = 0
            if outcome.changed:
                xp, _ = self._award_xp(user_id, LESSON_XP)
            return LessonResult(outcome=outcome, xp_gained=xp, quiz_unlocked=tracker.can_take_quiz(module_id),
                                progress=tracker.get(module_id))

    def submit_quiz(self, user_id: str, module_id: str, answers: Sequence[int]) -> QuizResult:
        with self._user(user_id) as now:
            tracker = self._tracker(user_id)
            refused = self._level_gate(tracker, user_id, module_id)
            if refused:
                return QuizResult(outcome=refused)
            if not tracker.can_take_quiz(module_id):
                return QuizResult(outcome=Outcome.reject(Rejection.QUIZ_LOCKED, "finish every lesson first"))

            module = tracker.module(module_id)
            score = tracker.score_quiz(module_id, list(answers))
            outcome = tracker.complete_quiz(module_id, score, now)
            entry = tracker.get(module_id)
            passed = tracker.quiz_passed(module_id)

            xp = 0
            if passed and not entry.xp_awarded:
                xp, _ = self._award_xp(user_id, module.xp_reward)
                entry.xp_awarded = xp > 0

            badge = None
            if tracker.is_badge_earnable(module_id) and not entry.badge_tx_hash:
                badge = self._issue_badge(tracker, user_id, module, now)
            self._save_progress(tracker.progress)

            correct = sum(1 for q, a in zip(module.quiz.questions, answers) if a == q.correct_index)
            return QuizResult(
                outcome=outcome,
                score=score,
                passed=passed,
                correct_answers=correct,
                total_questions=len(module.quiz.questions),
                xp_gained=xp,
                practice_unlocked=passed and module.practice_task is not None,
                badge=badge,
            )

    def complete_practice(self, user_id: str, module_id: str, validated: bool,
                          tx_hash: Optional[str] = None) -> PracticeResult:
        with self._user(user_id) as now:
            tracker = self._tracker(user_id)
            refused = self._level_gate(tracker, user_id, module_id)
            if refused:
                return PracticeResult(outcome=refused)

            outcome = tracker.complete_practice(module_id, validated, now, tx_hash=tx_hash)
            badge = None
            entry = tracker.get(module_id)
            if outcome.ok and tracker.is_badge_earnable(module_id) and not entry.badge_tx_hash:
                badge = self._issue_badge(tracker, user_id, tracker.module(module_id), now)
            self._save_progress(tracker.progress)
            return PracticeResult(outcome=outcome, module_completed=tracker.is_module_completed(module_id),
                                  badge=badge)

    def mint_badge(self, user_id: str, module_id: str) -> BadgeResult:
        with self._user(user_id) as now:
            tracker = self._tracker(user_id)
            result = self._issue_badge(tracker, user_id, tracker.module(module_id), now)
            self._save_progress(tracker.progress)
            return result

    def _issue_badge(self, tracker: ProgressTracker, user_id: str, module: Module, now: datetime) -> BadgeResult:
        outcome = tracker.mint_badge(module.id, now)
        if not outcome.ok:
            return BadgeResult(outcome=outcome, badge_id=module.badge_id)
        tx = self.rewards.issue_badge(user_id, module.badge_id)
        if tx.success and tx.tx_hash:
            tracker.record_badge_tx(module.id, tx.tx_hash)
        return BadgeResult(outcome=outcome, badge_id=module.badge_id, tx=tx)

    def badges(self, user_id: str) -> List[Badge]:
        return self.rewards.badges(user_id)

    # ------------------------------------------------------------------
    # Minigames
    # ------------------------------------------------------------------
    def game_stats(self, user_id: str) -> GameStats:
        with self._user(user_id):
            return self._load_games(user_id)

    def start_game(self, user_id: str, game_id: str) -> GameStart:
        config = self._game(game_id)
        with self._user(user_id) as now:
            tracker = GameTracker(self._load_games(user_id))
            if not tracker.can_play(game_id, config.max_plays, now):
                return GameStart(outcome=Outcome.reject(Rejection.DAILY_LIMIT_REACHED,
                                                        f"{config.max_plays} plays per day"),
                                 plays_today=tracker.plays_today(game_id, now))
            plays = tracker.record_play(game_id, now)
            questions = draw_questions(self.question_bank, config.question_count, rng=self.rng)
            tracker.open_session(game_id, [q.id for q in questions], now)
            self._save_games(tracker.stats)
            return GameStart(outcome=Outcome.accept(), plays_today=plays, questions=questions)

    def finish_game(self, user_id: str, game_id: str, question_ids: Sequence[str],
                    answers: Sequence[Answer]) -> GameResult:
        """
        Replay the client's answers through a QuizSession and record the result.

        Only the questions drawn by the matching ``start_game`` are accepted,
        once; the open session is closed when the result is recorded.
        """
        config = self._game(game_id)
        if len(question_ids) != len(answers):
            raise ValidationError("one answer per question is required")

        with self._user(user_id) as now:
            tracker = GameTracker(self._load_games(user_id))
            refused = tracker.check_session(game_id, list(question_ids))
            if refused:
                return GameResult(outcome=refused, high_score=tracker.high_score(game_id))

            bank = {q.id: q for q in self.question_bank}
            try:
                questions = [bank[qid] for qid in question_ids]
            except KeyError as e:
                raise NotFound("question", e.args[0])

            session = QuizSession(config, questions)
            for answer_index, time_left in answers:
                if answer_index is None:
                    session.timeout()
                else:
                    session.answer(answer_index, time_left)

            summary = session.summary(now)
            tracker.close_session(game_id)
            is_new_high = tracker.update_high_score(game_id, summary.score)
            tracker.add_session(summary)
            self._save_games(tracker.stats)
            _, xp_outcome = self._award_xp(user_id, summary.xp_earned)
            return GameResult(outcome=Outcome.accept(), session=summary, is_new_high=is_new_high,
                              high_score=tracker.high_score(game_id), xp_outcome=xp_outcome)

    # ------------------------------------------------------------------
    # Daily reward and leaderboard
    # ------------------------------------------------------------------
    def claim_daily(self, user_id: str) -> DailyClaim:
        with self._user(user_id) as now:
            doc = self.storage.load("daily", user_id)
            tracker = DailyRewardTracker(DailyReward.model_validate(doc) if doc else DailyReward(user_id=user_id))
            outcome, xp = tracker.claim(now)
            state = tracker.state
            if not outcome.ok:
                return DailyClaim(outcome=outcome, streak=state.streak, next_milestone=next_milestone(state.streak))

            self.storage.save("daily", user_id, state.model_dump(mode="json"))
            gained, _ = self._award_xp(user_id, xp)
            logger.info("Daily reward for %s: day %d, %d xp", user_id, state.streak, xp)
            return DailyClaim(outcome=outcome, streak=state.streak, xp_reward=xp, xp_gained=gained,
                              next_milestone=next_milestone(state.streak))

    def leaderboard(self, board: LeaderboardType = "xp", limit: int = 10,
                    user_id: Optional[str] = None) -> Leaderboard:
        """Competition ranking: equal values share a rank."""
        if board not in LEADERBOARDS:
            raise ValidationError(f"unknown leaderboard: {board}")
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        kind, field = LEADERBOARDS[board]

        entries = []
        for doc in self.storage.top(kind, field, limit):
            value = doc[field]
            if entries and entries[-1].value == value:
                rank = entries[-1].rank
            else:
                rank = len(entries) + 1
            entries.append(LeaderboardEntry(rank=rank, user_id=doc["user_id"], name=doc.get("name"), value=value))

        current = None
        if user_id:
            doc = self.storage.load(kind, user_id)
            if doc is not None:
                value = doc.get(field, 0)
                current = LeaderboardEntry(rank=self.storage.count_above(kind, field, value) + 1,
                                           user_id=user_id, name=doc.get("name"), value=value)
        return Leaderboard(type=board, entries=entries, current_user=current)
