import logging
from datetime import datetime
from typing import Dict, Optional

from errors import ValidationError
from schemas import ItemType, Outcome, Pet, Rejection, STAT_MAX, clamp_stat, classify_mood

logger = logging.getLogger(__name__)

# --- Decay rates (points per hour) ---
HUNGER_DECAY = 5.0
ENERGY_DECAY = 3.0
HAPPINESS_DECAY = 2.0
HEALTH_DECAY = 1.0  # only while starving
STARVING_BELOW = 20.0

# XP needed to reach each level; index 0 is the level 1 floor
LEVEL_THRESHOLDS = [0, 100, 300, 600, 1000, 1500, 2200, 3000, 4000, 5500]

FREE_REVIVAL_STAT = 50.0
TOKEN_REVIVAL_STAT = STAT_MAX


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours, never negative when the clock runs backwards."""
    return max(0.0, (end - start).total_seconds() / 3600.0)


def decay(pet: Pet, now: datetime) -> Dict[str, float]:
    """
    Linear decay model: Vt = V0 - (r * dt).

    The whole gap since ``pet.last_updated`` is applied in one step, so a pet
    left alone for two days decays exactly as the formula says for 48 hours.
    Returns the new stat values only; the caller stamps ``last_updated``.
    """
    hours = hours_between(pet.last_updated, now)

    hunger = max(0.0, pet.hunger - HUNGER_DECAY * hours)
    energy = max(0.0, pet.energy - ENERGY_DECAY * hours)
    happiness = max(0.0, pet.happiness - HAPPINESS_DECAY * hours)

    health = pet.health
    if hunger < STARVING_BELOW:
        health = max(0.0, health - HEALTH_DECAY * hours)

    return {"hunger": hunger, "energy": energy, "happiness": happiness, "health": health}


def level_for_xp(xp: int) -> int:
    for i in range(len(LEVEL_THRESHOLDS) - 1, -1, -1):
        if xp >= LEVEL_THRESHOLDS[i]:
            return i + 1
    return 1


class PetLifecycle:
    """
    Rules for a single pet.

    Every mutating call first brings the stats forward to ``now`` (decay before
    the action's own delta) and finishes by stamping ``last_updated``. A dead
    pet refuses everything except ``revive``.
    """

    def __init__(self, pet: Pet):
        self.pet = pet

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------
    def tick(self, now: datetime) -> Outcome:
        if self.pet.is_dead:
            return Outcome.accept(changed=False)

        for stat, value in decay(self.pet, now).items():
            setattr(self.pet, stat, value)
        self.pet.last_updated = max(self.pet.last_updated, now)

        if self.pet.health <= 0:
            self.pet.health = 0.0
            self.pet.is_dead = True
            logger.info("Pet %s died (last update %s)", self.pet.id, now.isoformat())
            return Outcome.accept(message="pet died")
        return Outcome.accept()

    def _begin(self, now: datetime) -> Optional[Outcome]:
        """Apply pending decay; returns a rejection when the pet is (or just became) dead."""
        self.tick(now)
        if self.pet.is_dead:
            return Outcome.reject(Rejection.PET_DEAD, "pet is dead")
        return None

    def _adjust(self, stat: str, delta: float):
        setattr(self.pet, stat, clamp_stat(getattr(self.pet, stat) + delta))

    # ------------------------------------------------------------------
    # Care actions
    # ------------------------------------------------------------------
    def feed(self, now: datetime) -> Outcome:
        refused = self._begin(now)
        if refused:
            return refused
        self._adjust("hunger", 25)
        self._adjust("happiness", 5)
        return Outcome.accept()

    def play(self, now: datetime) -> Outcome:
        refused = self._begin(now)
        if refused:
            return refused
        if self.pet.energy < 20:
            return Outcome.reject(Rejection.INSUFFICIENT_ENERGY, "too tired to play")
        self._adjust("energy", -15)
        self._adjust("happiness", 20)
        self._adjust("hunger", -10)
        return Outcome.accept()

    def rest(self, now: datetime) -> Outcome:
        refused = self._begin(now)
        if refused:
            return refused
        self._adjust("energy", 30)
        return Outcome.accept()

    def heal(self, now: datetime) -> Outcome:
        refused = self._begin(now)
        if refused:
            return refused
        self._adjust("health", 30)
        return Outcome.accept()

    def equip(self, item_id: str, item_type: ItemType, now: datetime) -> Outcome:
        if not item_id:
            raise ValidationError("item_id is required")
        refused = self._begin(now)
        if refused:
            return refused
        if item_type == "skin":
            self.pet.equipped_skin = item_id
        elif item_type == "environment":
            self.pet.equipped_environment = item_id
        else:
            raise ValidationError(f"unknown item type: {item_type}")
        return Outcome.accept()

    # ------------------------------------------------------------------
    # Death and progression
    # ------------------------------------------------------------------
    def revive(self, use_free: bool, now: datetime) -> Outcome:
        self.tick(now)
        if not self.pet.is_dead:
            return Outcome.reject(Rejection.PET_ALIVE, "pet is alive")

        if use_free:
            if self.pet.free_revival_used:
                return Outcome.reject(Rejection.ALREADY_USED, "free revival already used")
            stat = FREE_REVIVAL_STAT
            self.pet.level = max(1, self.pet.level - 1)
            self.pet.free_revival_used = True
        else:
            # Token or NFT revival; the caller has already consumed the token.
            stat = TOKEN_REVIVAL_STAT

        self.pet.hunger = stat
        self.pet.energy = stat
        self.pet.happiness = stat
        self.pet.health = stat
        self.pet.is_dead = False
        self.pet.last_updated = now
        logger.info("Pet %s revived (%s), level %d", self.pet.id,
                    "free" if use_free else "token", self.pet.level)
        return Outcome.accept()

    def add_xp(self, amount: int, now: datetime) -> Outcome:
        if amount < 0:
            raise ValidationError("xp amount must be non-negative")
        refused = self._begin(now)
        if refused:
            return refused

        before = self.pet.level
        self.pet.xp += amount
        self.pet.level = max(self.pet.level, level_for_xp(self.pet.xp))
        if self.pet.level > before:
            logger.info("Pet %s leveled up %d -> %d", self.pet.id, before, self.pet.level)
            return Outcome.accept(message=f"level {self.pet.level}")
        return Outcome.accept(changed=amount > 0)
