"""
hashlottery/engine/epochs.py

Epoch lifecycle and bet book.

An epoch is opened with an external seed and a fresh local salt, accepts
bets while OPEN, and is closed exactly once by settlement. Bets carry the
weight computed at submission; only their ``is_correct`` flag is written
afterwards, during settlement.

Usage:
    store = EpochStore(config, WeightPolicy(config))
    epoch = store.open(seed)
    bet = store.place_bet(epoch.epoch_id, agent, "UP", Confidence.HIGH, 1000)
"""

import logging
import secrets
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

import trio

from ..config import Confidence, LotteryConfig, Topic
from ..errors import (
    AlreadyClosedError,
    EpochClosedError,
    EpochNotFoundError,
    StakeTooSmallError,
)
from .agents import Agent
from .weights import WeightPolicy

logger = logging.getLogger("hashlottery.engine.epochs")


# ============================================================================
# DATA CLASSES
# ============================================================================

class EpochStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Bet:
    """A single stake on an epoch."""
    bet_id: str
    agent_id: str
    agent_name: str
    prediction: str
    confidence: Confidence
    stake: int                  # Satoshis
    weight: float               # Frozen at submission
    declared_answer: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)
    is_correct: bool = False    # Set during settlement

    def to_dict(self) -> dict:
        result = asdict(self)
        result["confidence"] = self.confidence.value
        return result


@dataclass
class Epoch:
    """One betting window and, once closed, its settlement."""
    epoch_id: str
    external_seed: str
    local_salt: str
    topic: Topic
    opened_at: float = field(default_factory=time.time)
    ends_at: float = 0.0
    status: EpochStatus = EpochStatus.OPEN
    bets: List[Bet] = field(default_factory=list)
    total_stake: int = 0

    # Settlement (written once)
    winning_tier: Optional[int] = None
    winner_bet_id: Optional[str] = None
    prize_amount: int = 0
    settlement_digest: Optional[str] = None
    closed_at_ms: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == EpochStatus.OPEN

    @property
    def is_settled(self) -> bool:
        return self.settlement_digest is not None

    def find_bet(self, bet_id: str) -> Optional[Bet]:
        for bet in self.bets:
            if bet.bet_id == bet_id:
                return bet
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "epoch_id": self.epoch_id,
            "external_seed": self.external_seed,
            "local_salt": self.local_salt,
            "topic": self.topic.to_dict(),
            "opened_at": self.opened_at,
            "ends_at": self.ends_at,
            "status": self.status.value,
            "bets": [bet.to_dict() for bet in self.bets],
            "total_stake": self.total_stake,
            "winning_tier": self.winning_tier,
            "winner_bet_id": self.winner_bet_id,
            "prize_amount": self.prize_amount,
            "settlement_digest": self.settlement_digest,
            "closed_at_ms": self.closed_at_ms,
        }


# ============================================================================
# EPOCH STORE
# ============================================================================

class EpochStore:
    """Owns every Epoch and its bets."""

    def __init__(self, config: Optional[LotteryConfig] = None, weights: Optional[WeightPolicy] = None):
        self.config = config or LotteryConfig()
        self.weights = weights or WeightPolicy(self.config)

        self._epochs: Dict[str, Epoch] = {}
        self._locks: Dict[str, trio.Lock] = {}
        self._counter = 0

    # ========================================================================
    # LOOKUP
    # ========================================================================

    def get(self, epoch_id: str) -> Optional[Epoch]:
        return self._epochs.get(epoch_id)

    def require(self, epoch_id: str) -> Epoch:
        """Get an epoch or raise EpochNotFoundError."""
        epoch = self._epochs.get(epoch_id)
        if epoch is None:
            raise EpochNotFoundError(epoch_id)
        return epoch

    def open_epochs(self) -> List[Epoch]:
        return [e for e in self._epochs.values() if e.is_open]

    def all(self) -> List[Epoch]:
        return list(self._epochs.values())

    def __len__(self) -> int:
        return len(self._epochs)

    def lock_for(self, epoch_id: str) -> trio.Lock:
        """
        Serialization point for bets and settlement on one epoch.

        Settled epochs get a throwaway lock; every caller rejects them anyway.
        """
        lock = self._locks.get(epoch_id)
        if lock is None:
            epoch = self._epochs.get(epoch_id)
            if epoch is not None and epoch.is_settled:
                return trio.Lock()
            lock = self._locks[epoch_id] = trio.Lock()
        return lock

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def open(self, external_seed: str, topic: Optional[Topic] = None) -> Epoch:
        """Open a new epoch on ``external_seed`` with a fresh local salt."""
        self._counter += 1
        epoch_id = f"epoch_{self._counter}"
        now = time.time()

        epoch = Epoch(
            epoch_id=epoch_id,
            external_seed=external_seed,
            local_salt=secrets.token_hex(16),
            topic=topic or secrets.choice(self.config.topics),
            opened_at=now,
            ends_at=now + self.config.epoch_duration_seconds,
        )
        self._epochs[epoch_id] = epoch

        logger.info(f"Epoch opened: {epoch_id} | {epoch.topic.question}")
        return epoch

    def check_can_bet(self, epoch_id: str, stake) -> Epoch:
        """
        Validate a prospective bet without changing anything.

        Raises:
            EpochNotFoundError, EpochClosedError, StakeTooSmallError
        """
        epoch = self.require(epoch_id)
        if not epoch.is_open:
            raise EpochClosedError(epoch_id)
        if isinstance(stake, bool) or not isinstance(stake, int) or stake < self.config.min_bet:
            raise StakeTooSmallError(stake, self.config.min_bet)
        return epoch

    def place_bet(
        self,
        epoch_id: str,
        agent: Agent,
        prediction: str,
        confidence: Confidence,
        stake: int,
        declared_answer: Optional[str] = None,
    ) -> Bet:
        """Append a bet with its weight frozen from the agent's current state."""
        epoch = self.check_can_bet(epoch_id, stake)

        bet = Bet(
            bet_id=f"{epoch_id}_bet_{len(epoch.bets) + 1}",
            agent_id=agent.agent_id,
            agent_name=agent.name,
            prediction=prediction,
            confidence=confidence,
            stake=stake,
            weight=self.weights.compute_weight(agent, confidence),
            declared_answer=declared_answer,
        )
        epoch.bets.append(bet)
        epoch.total_stake += stake

        logger.debug(
            f"Bet placed: {bet.bet_id} | {agent.name} | {prediction} | "
            f"{stake} sats | weight {bet.weight:.2f}"
        )
        return bet

    def close(self, epoch_id: str) -> Epoch:
        """OPEN -> CLOSED. Raises AlreadyClosedError on repeat."""
        epoch = self.require(epoch_id)
        if not epoch.is_open:
            raise AlreadyClosedError(epoch_id)
        epoch.status = EpochStatus.CLOSED
        return epoch

    def record_settlement(
        self,
        epoch_id: str,
        winning_tier: int,
        winner_bet_id: Optional[str],
        prize_amount: int,
        digest: str,
        closed_at_ms: int,
    ) -> Epoch:
        """Write the settlement fields. Only allowed once per epoch."""
        epoch = self.require(epoch_id)
        if epoch.is_settled:
            raise AlreadyClosedError(epoch_id)

        epoch.winning_tier = winning_tier
        epoch.winner_bet_id = winner_bet_id
        epoch.prize_amount = prize_amount
        epoch.settlement_digest = digest
        epoch.closed_at_ms = closed_at_ms
        # Settled epochs take no more bets; tasks already waiting keep their lock
        self._locks.pop(epoch_id, None)
        return epoch
