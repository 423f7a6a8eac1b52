import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Tuple

from quiz import local_date, previous_date
from schemas import Badge, DailyReward, Outcome, Rejection, TxResult, utcnow

logger = logging.getLogger(__name__)

CHAIN_NETWORK = os.getenv("CHAIN_NETWORK", "stellar-testnet")


class ChainAdapter(ABC):
    """What the core needs from a chain. Real adapters submit transactions; this repo ships a mock."""

    network: str

    @abstractmethod
    def mint_badge(self, user_id: str, badge_id: str) -> TxResult:
        ...

    @abstractmethod
    def has_badge(self, user_id: str, badge_id: str) -> bool:
        ...

    @abstractmethod
    def get_badges(self, user_id: str) -> List[Badge]:
        ...


class MockChainAdapter(ChainAdapter):
    """In-memory ledger standing in for the badge contract."""

    def __init__(self, network: str = CHAIN_NETWORK, clock: Callable[[], datetime] = utcnow):
        self.network = network
        self.clock = clock
        self._ledger: Dict[str, Dict[str, Badge]] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def mint_badge(self, user_id: str, badge_id: str) -> TxResult:
        with self._lock:
            owned = self._ledger.setdefault(user_id, {})
            if badge_id in owned:
                return TxResult(success=False, network=self.network, error="badge already minted")
            self._counter += 1
            now = self.clock()
            tx_hash = "0x%x%04x" % (int(now.timestamp() * 1000), self._counter)
            owned[badge_id] = Badge(id=badge_id, owner=user_id, tx_hash=tx_hash,
                                    network=self.network, minted_at=now)
        return TxResult(success=True, tx_hash=tx_hash, network=self.network)

    def has_badge(self, user_id: str, badge_id: str) -> bool:
        return badge_id in self._ledger.get(user_id, {})

    def get_badges(self, user_id: str) -> List[Badge]:
        return list(self._ledger.get(user_id, {}).values())


class RewardIssuer:
    """
    Asks the chain for a badge once local progress says it is earned.

    Chain errors are reported in the returned TxResult and never undo local
    progress; the caller can retry later.
    """

    def __init__(self, chain: ChainAdapter):
        self.chain = chain

    def issue_badge(self, user_id: str, badge_id: str) -> TxResult:
        try:
            if self.chain.has_badge(user_id, badge_id):
                existing = next((b for b in self.chain.get_badges(user_id) if b.id == badge_id), None)
                return TxResult(success=True, network=self.chain.network,
                                tx_hash=existing.tx_hash if existing else None)
            result = self.chain.mint_badge(user_id, badge_id)
        except Exception as e:
            logger.warning("Badge mint for %s/%s failed: %s", user_id, badge_id, e)
            return TxResult(success=False, network=getattr(self.chain, "network", None), error=str(e))

        if result.success:
            logger.info("Minted %s for %s (tx %s)", badge_id, user_id, result.tx_hash)
        else:
            logger.warning("Badge mint for %s/%s rejected: %s", user_id, badge_id, result.error)
        return result

    def badges(self, user_id: str) -> List[Badge]:
        return self.chain.get_badges(user_id)


DAILY_BASE_XP = 10
STREAK_BONUS_PER_DAY = 2
STREAK_BONUS_CAP = 20
MILESTONE_EVERY = 7


def daily_xp(previous_streak: int) -> int:
    """Login reward for a claim that extends a streak of ``previous_streak`` days."""
    return DAILY_BASE_XP + min(previous_streak * STREAK_BONUS_PER_DAY, STREAK_BONUS_CAP)


def next_milestone(streak: int) -> int:
    return (streak // MILESTONE_EVERY + 1) * MILESTONE_EVERY


class DailyRewardTracker:
    """
    One claim per local calendar day.

    Claiming on the day after the last claim extends the streak; any gap
    starts it over at 1.
    """

    def __init__(self, state: DailyReward):
        self.state = state

    def claimed_today(self, now: datetime) -> bool:
        return self.state.last_claim_date == local_date(now)

    def claim(self, now: datetime) -> Tuple[Outcome, int]:
        """Record today's claim. Returns the outcome and the XP it is worth."""
        if self.claimed_today(now):
            return Outcome.reject(Rejection.ALREADY_CLAIMED, "daily reward already claimed today"), 0

        today = local_date(now)
        previous = self.state.streak if self.state.last_claim_date == previous_date(today) else 0
        xp = daily_xp(previous)

        self.state.streak = previous + 1
        self.state.last_claim_date = today
        self.state.total_claims += 1
        self.state.total_xp += xp
        self.state.claimed_at = now
        if previous == 0 and self.state.total_claims > 1:
            logger.info("Daily streak of %s restarted", self.state.user_id)
        return Outcome.accept(), xp
