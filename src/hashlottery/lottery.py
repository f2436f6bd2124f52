"""
hashlottery/lottery.py

HashLottery - application context and inbound surface.

Owns one of each store (agents, epochs, season) plus the settlement engine,
and exposes the operations callers use. There are no module-level
singletons; create as many independent lotteries as needed.

Usage:
    lottery = HashLottery(entropy_source=StaticEntropySource(seed),
                          notifier=LoggingNotificationSink())

    epoch = await lottery.open_epoch()
    await lottery.place_bet(epoch.epoch_id, "agent1", "Icehorserider", "@ice",
                            "UP", "high", 1000)
    result = await lottery.settle(epoch.epoch_id)

    ok, message = lottery.become_validator("agent1", 10000)
"""

import dataclasses
import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import trio

from .collaborators import EVENT_EPOCH_OPENED, EntropySource, NotificationSink
from .config import Confidence, LotteryConfig, Topic
from .engine.agents import AgentRegistry
from .engine.epochs import Bet, Epoch, EpochStore
from .engine.season import SeasonLeaderboard
from .engine.settlement import SettlementEngine, SettlementResult, verify_settlement
from .engine.weights import WeightPolicy
from .errors import EpochClosedError, ErrorKind, LotteryError

logger = logging.getLogger("hashlottery.lottery")


class HashLottery:
    """Prediction lottery: epochs, weighted draws and agent progression."""

    def __init__(
        self,
        config: Optional[LotteryConfig] = None,
        entropy_source: Optional[EntropySource] = None,
        notifier: Optional[NotificationSink] = None,
        clock=None,
    ):
        """
        Initialize the lottery.

        Args:
            config: Tables and constants (validated here; defaults if None)
            entropy_source: Seed provider; the fallback seed is used if None
            notifier: Event sink for epoch_opened / epoch_closed
            clock: Optional callable returning the closing time in ms
        """
        self.config = (config or LotteryConfig()).validate()
        self.entropy_source = entropy_source
        self.notifier = notifier

        self.weights = WeightPolicy(self.config)
        self.agents = AgentRegistry(self.config)
        self.epochs = EpochStore(self.config, self.weights)
        self.season = SeasonLeaderboard(self.config)
        self.settlement = SettlementEngine(
            self.config,
            self.agents,
            self.epochs,
            self.season,
            notifier=notifier,
            clock=clock,
        )

    # ========================================================================
    # EPOCHS
    # ========================================================================

    async def open_epoch(self, topic: Optional[Topic] = None) -> Epoch:
        """Fetch a seed and open a new epoch on it."""
        seed = await self._fetch_seed()
        epoch = self.epochs.open(seed, topic)
        await self._publish(EVENT_EPOCH_OPENED, {
            "epoch_id": epoch.epoch_id,
            "topic": epoch.topic.to_dict(),
            "external_seed": epoch.external_seed,
            "opened_at": epoch.opened_at,
            "ends_at": epoch.ends_at,
        })
        return epoch

    async def reveal_answer(self, epoch_id: str, answer: str) -> Epoch:
        """
        Record the topic's answer on an open epoch.

        Bets whose declared answer matches get the correct-answer boost when
        the epoch is settled.

        Raises:
            EpochNotFoundError, EpochClosedError
        """
        async with self.epochs.lock_for(epoch_id):
            epoch = self.epochs.require(epoch_id)
            if not epoch.is_open:
                raise EpochClosedError(epoch_id)
            epoch.topic = dataclasses.replace(epoch.topic, answer=answer)
            logger.info(f"Answer revealed for {epoch_id}")
            return epoch

    async def place_bet(
        self,
        epoch_id: str,
        agent_id: str,
        name: str,
        handle: Optional[str],
        prediction: str,
        confidence: Union[Confidence, str],
        stake: int,
        referrer_id: Optional[str] = None,
        declared_answer: Optional[str] = None,
    ) -> Bet:
        """
        Place a bet, registering the agent on first sight.

        High confidence is downgraded to medium for agents that have not
        unlocked it. A rejected bet registers nobody and changes nothing.

        Raises:
            EpochNotFoundError, EpochClosedError, StakeTooSmallError
            InvalidConfidenceError: unknown confidence string
        """
        if isinstance(confidence, str):
            confidence = Confidence.from_string(confidence)

        self.epochs.require(epoch_id)
        async with self.epochs.lock_for(epoch_id):
            self.epochs.check_can_bet(epoch_id, stake)

            agent = self.agents.get_or_create(agent_id, name, handle, referrer_id)
            confidence = self.weights.effective_confidence(agent, confidence)
            bet = self.epochs.place_bet(epoch_id, agent, prediction, confidence, stake, declared_answer)

            agent.stats.total_bets += 1
            self.season.join(agent.agent_id, agent.name)
            return bet

    async def settle(self, epoch_id: str) -> SettlementResult:
        """Close and settle an epoch. See SettlementEngine.settle."""
        return await self.settlement.settle(epoch_id)

    def verify_epoch(self, epoch_id: str) -> bool:
        """Recompute a settled epoch's outcome from its stored inputs."""
        return verify_settlement(self.epochs.require(epoch_id), self.config)

    def get_epoch_status(self, epoch_id: str) -> Dict[str, Any]:
        """
        Summary of an epoch.

        Raises:
            EpochNotFoundError
        """
        epoch = self.epochs.require(epoch_id)
        status = {
            "epoch_id": epoch.epoch_id,
            "status": epoch.status.value,
            "topic": epoch.topic.question,
            "category": epoch.topic.category,
            "total_stake": epoch.total_stake,
            "bets": len(epoch.bets),
            "participants": len({bet.agent_id for bet in epoch.bets}),
            "external_seed": epoch.external_seed,
            "time_remaining": max(0.0, epoch.ends_at - time.time()) if epoch.is_open else 0.0,
        }
        if epoch.is_settled:
            status.update({
                "winning_tier": epoch.winning_tier,
                "winner_bet_id": epoch.winner_bet_id,
                "prize_amount": epoch.prize_amount,
                "settlement_digest": epoch.settlement_digest,
                "closed_at_ms": epoch.closed_at_ms,
            })
        return status

    # ========================================================================
    # AGENTS
    # ========================================================================

    def get_agent_status(self, agent_id: str) -> Dict[str, Any]:
        """Raises AgentNotFoundError for unknown agents."""
        return self.agents.status(agent_id)

    def verify_agent(self, agent_id: str, address: Optional[str] = None) -> bool:
        return self.agents.verify(agent_id, address)

    def get_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Current season standings by season points, then wins, then id."""
        return [
            {
                "rank": rank,
                "agent_id": standing.agent_id,
                "name": standing.agent_name,
                "points": standing.experience,
                "wins": standing.wins,
                "epochs": standing.epochs,
            }
            for rank, standing in enumerate(self.season.leaderboard(limit), start=1)
        ]

    def get_xp_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        """All registered agents ranked by lifetime XP, then wins, then id."""
        ranked = sorted(
            self.agents.all(),
            key=lambda a: (-a.experience, -a.stats.total_wins, a.agent_id),
        )
        return [
            {
                "rank": rank,
                "agent_id": agent.agent_id,
                "name": agent.name,
                "level": agent.level,
                "xp": agent.experience,
                "wins": agent.stats.total_wins,
                "streak": agent.streak,
            }
            for rank, agent in enumerate(ranked[:limit], start=1)
        ]

    def get_season(self, limit: int = 10) -> Dict[str, Any]:
        return self.season.to_dict(limit)

    def become_validator(self, agent_id: str, stake: int) -> Tuple[bool, str]:
        """
        Stake as a validator.

        Returns:
            (success, message)
        """
        try:
            agent = self.agents.stake_as_validator(agent_id, stake)
        except LotteryError as e:
            if e.kind == ErrorKind.FATAL:
                raise
            logger.warning(f"Validator stake rejected for {agent_id}: {e.message}")
            return False, e.message
        return True, f"{agent_id} is a validator with {agent.stake_amount} sats staked"

    def delegate(self, from_id: str, to_id: str) -> Tuple[bool, str]:
        """
        Delegate ``from_id`` to ``to_id``.

        Returns:
            (success, message)
        """
        try:
            self.agents.delegate(from_id, to_id)
        except LotteryError as e:
            if e.kind == ErrorKind.FATAL:
                raise
            logger.warning(f"Delegation rejected {from_id} -> {to_id}: {e.message}")
            return False, e.message
        return True, f"{from_id} now delegates to {to_id}"

    # ========================================================================
    # COLLABORATORS
    # ========================================================================

    async def _fetch_seed(self) -> str:
        """Seed from the entropy source, or the fallback seed on failure or timeout."""
        if self.entropy_source is None:
            return self.config.fallback_seed

        seed = None
        try:
            with trio.move_on_after(self.config.seed_timeout):
                seed = await self.entropy_source.fetch_seed()
        except Exception as e:
            logger.warning(f"Entropy source failed, using fallback seed: {e}")
            return self.config.fallback_seed

        if not seed:
            logger.warning("Entropy source timed out or returned nothing, using fallback seed")
            return self.config.fallback_seed
        return seed

    async def _publish(self, event_kind: str, payload: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            with trio.move_on_after(self.config.notify_timeout) as scope:
                await self.notifier.publish(event_kind, payload)
            if scope.cancelled_caught:
                logger.warning(f"Timed out publishing {event_kind}")
        except Exception as e:
            logger.error(f"Failed to publish {event_kind}: {e}")
