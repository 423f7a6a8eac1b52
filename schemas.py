"""
Database Schemas for the CryptoPet learning app

Each Pydantic model below is either a stored document (keyed by user id in the
collection named after its kind) or a read-only catalog entry.

Stored kinds:
- Pet -> "pet"
- UserProgress -> "progress"
- GameStats -> "games"
- DailyReward -> "daily"
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

PetType = Literal["dog", "cat", "dragon", "robot"]
ItemType = Literal["skin", "environment"]
PracticeType = Literal["transaction", "swap", "wallet-setup"]
Difficulty = Literal["easy", "medium", "hard"]
Category = Literal["basics", "wallets", "defi", "security", "trading", "blockchain"]

STAT_MIN = 0.0
STAT_MAX = 100.0
PASSING_SCORE = 70


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_stat(value: float) -> float:
    return max(STAT_MIN, min(STAT_MAX, value))


class Mood(str, Enum):
    HAPPY = "happy"
    NEUTRAL = "neutral"
    SAD = "sad"
    HUNGRY = "hungry"
    TIRED = "tired"
    SICK = "sick"
    DEAD = "dead"


class Rejection(str, Enum):
    """Reasons a game rule refused an operation. Nothing is mutated when one is returned."""
    INSUFFICIENT_ENERGY = "insufficient_energy"
    ALREADY_USED = "already_used"
    PET_DEAD = "pet_dead"
    PET_ALIVE = "pet_alive"
    PET_EXISTS = "pet_exists"
    QUIZ_LOCKED = "quiz_locked"
    LEVEL_LOCKED = "level_locked"
    BADGE_NOT_EARNED = "badge_not_earned"
    BADGE_ALREADY_MINTED = "badge_already_minted"
    NO_PRACTICE_TASK = "no_practice_task"
    PRACTICE_NOT_VALIDATED = "practice_not_validated"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    NO_ACTIVE_SESSION = "no_active_session"
    SESSION_MISMATCH = "session_mismatch"
    ALREADY_CLAIMED = "already_claimed"


class Outcome(BaseModel):
    ok: bool = True
    reason: Optional[Rejection] = None
    changed: bool = True
    message: str = ""

    @classmethod
    def accept(cls, changed: bool = True, message: str = "") -> "Outcome":
        return cls(ok=True, changed=changed, message=message)

    @classmethod
    def reject(cls, reason: Rejection, message: str = "") -> "Outcome":
        return cls(ok=False, reason=reason, changed=False, message=message)


def classify_mood(pet: "Pet") -> Mood:
    # Order matters: the first matching rule wins.
    if pet.is_dead:
        return Mood.DEAD
    if pet.health < 20:
        return Mood.SICK
    if pet.hunger < 20:
        return Mood.HUNGRY
    if pet.energy < 20:
        return Mood.TIRED
    if pet.happiness < 30:
        return Mood.SAD
    if pet.happiness > 70 and pet.hunger > 50 and pet.energy > 50:
        return Mood.HAPPY
    return Mood.NEUTRAL


# Pet
class Pet(BaseModel):
    id: str
    user_id: str
    name: str = Field(..., min_length=1, max_length=20, description="Display name")
    type: PetType = "dog"
    level: int = Field(1, ge=1)
    xp: int = Field(0, ge=0)
    hunger: float = Field(100.0, description="0 = starving, 100 = full")
    energy: float = 100.0
    happiness: float = 100.0
    health: float = 100.0
    equipped_skin: Optional[str] = Field(None, description="Item id of the worn skin")
    equipped_environment: Optional[str] = Field(None, description="Item id of the background")
    is_dead: bool = False
    free_revival_used: bool = Field(False, description="Sticky once the free revival is spent")
    last_updated: datetime = Field(default_factory=utcnow, description="Anchor for stat decay")
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("hunger", "energy", "happiness", "health")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_stat(value)

    @model_validator(mode="after")
    def _reconcile_death(self):
        self.is_dead = self.health <= 0
        return self

    @computed_field
    @property
    def mood(self) -> Mood:
        return classify_mood(self)


# Learning content
class Lesson(BaseModel):
    id: str
    module_id: str
    title: str
    description: Optional[str] = None
    type: Literal["text", "video", "interactive"] = "text"
    duration: int = Field(5, ge=0, description="Minutes")
    order: int = 0


class QuizQuestion(BaseModel):
    id: str
    question: str
    options: List[str] = Field(..., min_length=2)
    correct_index: int = Field(..., ge=0)
    explanation: Optional[str] = None
    category: Optional[Category] = None
    difficulty: Optional[Difficulty] = None

    @model_validator(mode="after")
    def _answer_in_range(self):
        if self.correct_index >= len(self.options):
            raise ValueError("correct_index out of range")
        return self


class Quiz(BaseModel):
    id: str
    module_id: str
    questions: List[QuizQuestion] = Field(..., min_length=1)
    passing_score: int = Field(PASSING_SCORE, ge=0, le=100)


class PracticeTask(BaseModel):
    id: str
    module_id: str
    title: str
    description: Optional[str] = None
    type: PracticeType
    instructions: List[str] = Field(default_factory=list)
    validation_criteria: Optional[str] = None


class Module(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    required_level: int = Field(1, ge=1)
    xp_reward: int = Field(100, ge=0)
    badge_id: str
    order: int = 0
    lessons: List[Lesson] = Field(default_factory=list)
    quiz: Quiz
    practice_task: Optional[PracticeTask] = None

    @property
    def lesson_ids(self) -> List[str]:
        return [lesson.id for lesson in sorted(self.lessons, key=lambda l: l.order)]


# Tracking
class ModuleProgress(BaseModel):
    module_id: str
    lessons_completed: List[str] = Field(default_factory=list)
    quiz_score: Optional[int] = Field(None, ge=0, le=100)
    quiz_completed_at: Optional[datetime] = None
    practice_completed: bool = False
    practice_completed_at: Optional[datetime] = None
    practice_tx_hash: Optional[str] = None
    badge_minted: bool = False
    badge_minted_at: Optional[datetime] = None
    badge_tx_hash: Optional[str] = Field(None, description="Set once the chain confirmed the mint")
    xp_awarded: bool = Field(False, description="Module xp_reward already paid out")


class UserProgress(BaseModel):
    user_id: str
    modules: Dict[str, ModuleProgress] = Field(default_factory=dict)


# Minigames
class GameConfig(BaseModel):
    id: str
    name: str
    question_count: int = Field(10, ge=1)
    time_per_question: int = Field(15, ge=1, description="Seconds")
    base_xp: int = Field(30, ge=0)
    max_plays: int = Field(3, ge=1, description="Sessions allowed per local day")


class GameSession(BaseModel):
    model_config = {"frozen": True}

    id: str
    game_type: str
    score: int = Field(0, ge=0)
    xp_earned: int = Field(0, ge=0)
    timestamp: datetime = Field(default_factory=utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


class ActiveGame(BaseModel):
    """A started, unfinished session: the questions that were drawn for it."""
    game_id: str
    question_ids: List[str] = Field(..., min_length=1)
    started_at: datetime = Field(default_factory=utcnow)


class GameStats(BaseModel):
    user_id: str
    high_scores: Dict[str, int] = Field(default_factory=dict)
    daily_plays: Dict[str, int] = Field(default_factory=dict)
    last_play_date: Optional[str] = Field(None, description="Local calendar date, ISO format")
    sessions: List[GameSession] = Field(default_factory=list)
    active: Dict[str, ActiveGame] = Field(default_factory=dict, description="Open session per game id")


# Daily login reward
class DailyReward(BaseModel):
    user_id: str
    streak: int = Field(0, ge=0, description="Consecutive local days claimed, today included")
    last_claim_date: Optional[str] = Field(None, description="Local calendar date, ISO format")
    total_claims: int = Field(0, ge=0)
    total_xp: int = Field(0, ge=0)
    claimed_at: Optional[datetime] = None


# Leaderboard
LeaderboardType = Literal["xp", "streak"]


class LeaderboardEntry(BaseModel):
    rank: int = Field(..., ge=1)
    user_id: str
    name: Optional[str] = None
    value: int


# Chain
class TxResult(BaseModel):
    success: bool
    tx_hash: Optional[str] = None
    network: Optional[str] = None
    error: Optional[str] = None


class Badge(BaseModel):
    id: str
    owner: str
    tx_hash: str
    network: str
    minted_at: datetime = Field(default_factory=utcnow)


# Results
class LessonResult(BaseModel):
    outcome: Outcome
    xp_gained: int = 0
    quiz_unlocked: bool = False
    progress: Optional[ModuleProgress] = None


class BadgeResult(BaseModel):
    outcome: Outcome
    badge_id: str
    tx: Optional[TxResult] = None


class QuizResult(BaseModel):
    outcome: Outcome
    score: Optional[int] = None
    passed: bool = False
    correct_answers: int = 0
    total_questions: int = 0
    xp_gained: int = 0
    practice_unlocked: bool = False
    badge: Optional[BadgeResult] = None


class PracticeResult(BaseModel):
    outcome: Outcome
    module_completed: bool = False
    badge: Optional[BadgeResult] = None


class GameStart(BaseModel):
    outcome: Outcome
    plays_today: int = 0
    questions: List[QuizQuestion] = Field(default_factory=list)


class GameResult(BaseModel):
    outcome: Outcome
    session: Optional[GameSession] = None
    is_new_high: bool = False
    high_score: int = 0
    xp_outcome: Optional[Outcome] = None


class DailyClaim(BaseModel):
    outcome: Outcome
    streak: int = 0
    xp_reward: int = 0
    xp_gained: int = Field(0, description="Zero when there is no living pet to receive the reward")
    next_milestone: int = 0


class Leaderboard(BaseModel):
    type: LeaderboardType
    entries: List[LeaderboardEntry] = Field(default_factory=list)
    current_user: Optional[LeaderboardEntry] = None
