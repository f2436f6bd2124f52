"""
hashlottery/engine/settlement.py

Epoch settlement: entropy, tier, weighted draw, prize and bookkeeping.

Settlement runs in two phases. ``evaluate_epoch`` is a pure function of the
epoch's stored inputs and the closing timestamp; it produces the digest,
tier, winner and money split without touching any state. ``SettlementEngine``
then commits that outcome under the epoch lock and the bettors' agent locks,
so a settlement either applies completely or not at all.

Money is computed with Decimal and floored to whole satoshis:

    prize = floor(total_stake x (1 - sum(fees)) x share[tier])
    fee   = floor(total_stake x rate)

Usage:
    engine = SettlementEngine(config, agents, epochs, season, notifier)
    result = await engine.settle(epoch.epoch_id)
    assert verify_settlement(epochs.require(epoch.epoch_id), config)
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, Dict, List, Optional, Set

import trio

from ..collaborators import EVENT_EPOCH_CLOSED
from ..config import Confidence, LotteryConfig
from ..errors import AlreadyClosedError
from . import entropy
from .agents import AgentRegistry
from .epochs import Bet, Epoch, EpochStore
from .season import SeasonLeaderboard

logger = logging.getLogger("hashlottery.engine.settlement")


# ============================================================================
# MONEY
# ============================================================================

def floor_amount(total: int, rate: float) -> int:
    """floor(total x rate) in whole satoshis, without float drift."""
    amount = Decimal(total) * Decimal(str(rate))
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def compute_prize(total_stake: int, fees: Dict[str, float], share: float) -> int:
    """Winner's prize: the post-fee pool times the tier share, floored."""
    net = Decimal(1) - sum((Decimal(str(rate)) for rate in fees.values()), Decimal(0))
    amount = Decimal(total_stake) * net * Decimal(str(share))
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def split_pro_rata(amount: int, stakes: Dict[str, int]) -> Dict[str, int]:
    """Split ``amount`` by stake, flooring each part. Remainder is unallocated."""
    total = sum(stakes.values())
    if amount <= 0 or total <= 0:
        return {}
    return {
        key: int((Decimal(amount) * Decimal(stake) / Decimal(total)).to_integral_value(rounding=ROUND_FLOOR))
        for key, stake in sorted(stakes.items())
    }


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class FeeBreakdown:
    """Fee amounts taken from an epoch's pool."""
    platform: int = 0
    validator: int = 0
    season: int = 0

    @property
    def total(self) -> int:
        return self.platform + self.validator + self.season

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "validator": self.validator,
            "season": self.season,
            "total": self.total,
        }


@dataclass
class Outcome:
    """Everything a settlement decides, before it is applied."""
    digest: str
    hash_value: int
    tier: int
    closed_at_ms: int
    correct_bet_ids: Set[str]
    winner: Optional[Bet]
    prize: int
    fees: FeeBreakdown


@dataclass
class SettlementResult:
    """Published summary of a settled epoch."""
    epoch_id: str
    tier: int
    hash_value: int
    digest: str
    closed_at_ms: int
    total_stake: int
    participants: int
    correct_count: int
    fees: FeeBreakdown
    prize: int = 0
    winner_bet_id: Optional[str] = None
    winner_agent_id: Optional[str] = None
    winner_name: Optional[str] = None
    validator_payouts: Dict[str, int] = field(default_factory=dict)

    @property
    def has_winner(self) -> bool:
        return self.winner_bet_id is not None

    def to_dict(self) -> dict:
        return {
            "epoch_id": self.epoch_id,
            "tier": self.tier,
            "hash_value": f"{self.hash_value:04x}",
            "digest": self.digest,
            "closed_at_ms": self.closed_at_ms,
            "total_stake": self.total_stake,
            "participants": self.participants,
            "correct_count": self.correct_count,
            "fees": self.fees.to_dict(),
            "prize": self.prize,
            "winner_bet_id": self.winner_bet_id,
            "winner_agent_id": self.winner_agent_id,
            "winner_name": self.winner_name,
            "validator_payouts": dict(self.validator_payouts),
        }


# ============================================================================
# PURE EVALUATION
# ============================================================================

def _is_correct(bet: Bet, answer: Optional[str]) -> bool:
    if answer is None or bet.declared_answer is None:
        return False
    return bet.declared_answer.strip().lower() == answer.strip().lower()


def evaluate_epoch(epoch: Epoch, config: LotteryConfig, closed_at_ms: int) -> Outcome:
    """
    Decide an epoch's outcome from its inputs alone.

    Correct declared answers multiply the bet's draw-time weight; the weight
    frozen on the bet is not changed.

    Raises:
        ConfigurationError: if the drawn tier has no configured share
    """
    digest = entropy.compute_digest(epoch.external_seed, epoch.local_salt, epoch.bets, closed_at_ms)
    value = entropy.hash_value(digest)
    tier = entropy.classify_tier(value, config.tier_thresholds)

    answer = epoch.topic.answer
    correct_ids = {bet.bet_id for bet in epoch.bets if _is_correct(bet, answer)}

    fees = FeeBreakdown(
        platform=floor_amount(epoch.total_stake, config.fees.get("platform", 0.0)),
        validator=floor_amount(epoch.total_stake, config.fees.get("validator", 0.0)),
        season=floor_amount(epoch.total_stake, config.fees.get("season", 0.0)),
    )

    winner = None
    prize = 0
    if tier > 0 and epoch.bets:
        share = config.tier_share(tier)
        masses = []
        for bet in epoch.bets:
            draw_weight = bet.weight * (config.correct_multiplier if bet.bet_id in correct_ids else 1.0)
            masses.append(draw_weight * bet.stake)
        index = entropy.weighted_pick(masses, entropy.draw_value(digest, sum(masses)))
        winner = epoch.bets[index]
        prize = compute_prize(epoch.total_stake, config.fees, share)

    return Outcome(
        digest=digest,
        hash_value=value,
        tier=tier,
        closed_at_ms=closed_at_ms,
        correct_bet_ids=correct_ids,
        winner=winner,
        prize=prize,
        fees=fees,
    )


def verify_settlement(epoch: Epoch, config: Optional[LotteryConfig] = None) -> bool:
    """
    Recompute a settled epoch's outcome and compare it with the record.

    Anyone holding the seed, salt, bets and closing timestamp can run this.

    Returns:
        True if digest, tier, winner and prize all match
    """
    if not epoch.is_settled or epoch.closed_at_ms is None:
        return False

    config = config or LotteryConfig()
    outcome = evaluate_epoch(epoch, config, epoch.closed_at_ms)
    winner_id = outcome.winner.bet_id if outcome.winner else None

    return (
        outcome.digest == epoch.settlement_digest
        and outcome.tier == epoch.winning_tier
        and winner_id == epoch.winner_bet_id
        and outcome.prize == epoch.prize_amount
    )


# ============================================================================
# SETTLEMENT ENGINE
# ============================================================================

def _now_ms() -> int:
    return int(time.time() * 1000)


class SettlementEngine:
    """
    Applies epoch outcomes to the stores.

    Stateless apart from its collaborators; all state lives in the
    registry, the epoch store and the season leaderboard.
    """

    def __init__(
        self,
        config: LotteryConfig,
        agents: AgentRegistry,
        epochs: EpochStore,
        season: SeasonLeaderboard,
        notifier=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            notifier: optional sink with ``async publish(kind, payload)``
            clock: returns the closing timestamp in milliseconds
        """
        self.config = config
        self.agents = agents
        self.epochs = epochs
        self.season = season
        self.notifier = notifier
        self.clock = clock or _now_ms

    async def settle(self, epoch_id: str) -> SettlementResult:
        """
        Close and settle an epoch. At most once per epoch.

        Raises:
            EpochNotFoundError: unknown epoch
            AlreadyClosedError: epoch was already settled
            ConfigurationError: broken tables; nothing is changed
        """
        self.epochs.require(epoch_id)
        async with self.epochs.lock_for(epoch_id):
            epoch = self.epochs.require(epoch_id)
            if not epoch.is_open:
                raise AlreadyClosedError(epoch_id)

            xp = {
                name: self.config.xp_reward(name)
                for name in ("participate", "correct", "high_correct", "streak", "validated", "season_win")
            }
            outcome = evaluate_epoch(epoch, self.config, self.clock())

            validators = self.agents.validators()
            payouts = split_pro_rata(
                outcome.fees.validator,
                {v.agent_id: v.stake_amount for v in validators},
            )

            bettor_ids: List[str] = []
            for bet in epoch.bets:
                if bet.agent_id not in bettor_ids:
                    bettor_ids.append(bet.agent_id)

            async with self.agents.lock_agents(bettor_ids + list(payouts)):
                self._commit(epoch, outcome, bettor_ids, payouts, xp)

            result = self._build_result(epoch, outcome, bettor_ids, payouts)

        self._log_result(epoch, result)
        await self._publish(result)
        return result

    # ------------------------------------------------------------------ commit

    def _commit(
        self,
        epoch: Epoch,
        outcome: Outcome,
        bettor_ids: List[str],
        payouts: Dict[str, int],
        xp: Dict[str, int],
    ) -> None:
        """Apply a decided outcome. Runs without yielding."""
        for bet in epoch.bets:
            bet.is_correct = bet.bet_id in outcome.correct_bet_ids

        self.epochs.close(epoch.epoch_id)
        self.epochs.record_settlement(
            epoch.epoch_id,
            winning_tier=outcome.tier,
            winner_bet_id=outcome.winner.bet_id if outcome.winner else None,
            prize_amount=outcome.prize,
            digest=outcome.digest,
            closed_at_ms=outcome.closed_at_ms,
        )

        self.season.add_to_fund(outcome.fees.season)

        for agent_id, amount in payouts.items():
            validator = self.agents.get(agent_id)
            if validator is None:
                continue
            validator.stats.total_earnings += amount
            self.agents.add_experience(agent_id, xp["validated"], "Validated epoch")

        for agent_id in bettor_ids:
            agent = self.agents.get(agent_id)
            if agent is None:
                continue
            self.agents.add_experience(agent_id, xp["participate"], "Participated")
            self.season.record_participation(agent_id, agent.name, xp["participate"])

        winner = outcome.winner
        if winner is not None:
            agent = self.agents.get(winner.agent_id)
            if agent is not None:
                agent.stats.total_wins += 1
                agent.stats.total_earnings += outcome.prize
                if winner.bet_id in outcome.correct_bet_ids:
                    agent.stats.correct_predictions += 1

                self.agents.add_experience(agent.agent_id, xp["correct"], "Won")
                if winner.confidence == Confidence.HIGH:
                    self.agents.add_experience(agent.agent_id, xp["high_correct"], "High confidence win")

                agent.streak = min(agent.streak + 1, self.config.streak_cap)
                agent.max_streak = max(agent.max_streak, agent.streak)
                self.agents.add_experience(agent.agent_id, agent.streak * xp["streak"], "Streak bonus")

                self.season.record_win(agent.agent_id, agent.name, xp["season_win"])
        else:
            for agent_id in bettor_ids:
                agent = self.agents.get(agent_id)
                if agent is not None:
                    agent.streak = 0

    def _build_result(
        self,
        epoch: Epoch,
        outcome: Outcome,
        bettor_ids: List[str],
        payouts: Dict[str, int],
    ) -> SettlementResult:
        winner = outcome.winner
        return SettlementResult(
            epoch_id=epoch.epoch_id,
            tier=outcome.tier,
            hash_value=outcome.hash_value,
            digest=outcome.digest,
            closed_at_ms=outcome.closed_at_ms,
            total_stake=epoch.total_stake,
            participants=len(bettor_ids),
            correct_count=len(outcome.correct_bet_ids),
            fees=outcome.fees,
            prize=outcome.prize,
            winner_bet_id=winner.bet_id if winner else None,
            winner_agent_id=winner.agent_id if winner else None,
            winner_name=winner.agent_name if winner else None,
            validator_payouts=payouts,
        )

    # ------------------------------------------------------------- reporting

    def _log_result(self, epoch: Epoch, result: SettlementResult) -> None:
        logger.info(
            f"Epoch settled: {epoch.epoch_id} | hash {result.hash_value:04x} | "
            f"tier {result.tier} | pool {result.total_stake} sats | "
            f"{result.participants} participants"
        )
        if result.has_winner:
            logger.info(f"Winner: {result.winner_name} ({result.winner_bet_id}) | prize {result.prize} sats")
        else:
            logger.info(f"No winner for {epoch.epoch_id}")

    async def _publish(self, result: SettlementResult) -> None:
        """Best-effort notification, bounded by the notify timeout."""
        if self.notifier is None:
            return
        try:
            with trio.move_on_after(self.config.notify_timeout) as scope:
                await self.notifier.publish(EVENT_EPOCH_CLOSED, result.to_dict())
            if scope.cancelled_caught:
                logger.warning(f"Timed out publishing result for {result.epoch_id}")
        except Exception as e:
            logger.error(f"Failed to publish result for {result.epoch_id}: {e}")
