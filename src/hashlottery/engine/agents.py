"""
hashlottery/engine/agents.py

Agent registry: identity, experience/levels, validator staking,
delegation and referral credit.

Agents are created on first reference and live for the lifetime of the
registry. The delegation back-reference (who delegates to me) is kept as a
relation index owned by the registry, never as a field on the agent.

Usage:
    registry = AgentRegistry(config)
    agent = registry.get_or_create("agent1", "Icehorserider")
    registry.add_experience("agent1", 600, "bootstrap")   # -> level 5
    registry.delegate("agent2", "agent1")
"""

import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional, Set

import trio

from ..config import Capability, LotteryConfig
from ..errors import (
    AgentNotFoundError,
    DelegationCycleError,
    FeatureLockedError,
    InsufficientStakeError,
    InvalidDelegateError,
)

logger = logging.getLogger("hashlottery.engine.agents")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class AgentStats:
    """Cumulative counters for an agent."""
    total_bets: int = 0
    correct_predictions: int = 0
    total_wins: int = 0
    total_earnings: int = 0
    total_staked: int = 0
    referral_count: int = 0
    referral_bonus: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Agent:
    """A participant in the lottery."""
    agent_id: str
    name: str
    social_handle: Optional[str] = None
    referrer_id: Optional[str] = None
    registered_at: float = field(default_factory=time.time)

    # Identity verification
    verified: bool = False
    verified_address: Optional[str] = None

    # Progression
    experience: int = 0
    level: int = 1
    streak: int = 0
    max_streak: int = 0
    unlocked_features: Set[Capability] = field(default_factory=lambda: {Capability.BASIC})

    # Validator
    is_validator: bool = False
    stake_amount: int = 0

    # Delegation (forward edge only; the inverse lives in the registry)
    delegating_to: Optional[str] = None

    stats: AgentStats = field(default_factory=AgentStats)

    def has_feature(self, capability: Capability) -> bool:
        return capability in self.unlocked_features

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "agent_id": self.agent_id,
            "name": self.name,
            "social_handle": self.social_handle,
            "referrer_id": self.referrer_id,
            "registered_at": self.registered_at,
            "verified": self.verified,
            "verified_address": self.verified_address,
            "experience": self.experience,
            "level": self.level,
            "streak": self.streak,
            "max_streak": self.max_streak,
            "unlocked_features": sorted(c.value for c in self.unlocked_features),
            "is_validator": self.is_validator,
            "stake_amount": self.stake_amount,
            "delegating_to": self.delegating_to,
            "stats": self.stats.to_dict(),
        }


# ============================================================================
# AGENT REGISTRY
# ============================================================================

class AgentRegistry:
    """
    Owns every Agent record.

    All mutators are synchronous and complete without yielding, so under
    trio they are atomic with respect to other tasks. Settlement additionally
    takes per-agent locks (``lock_agents``) around its multi-step reward and
    streak updates.
    """

    def __init__(self, config: Optional[LotteryConfig] = None):
        self.config = config or LotteryConfig()

        self._agents: Dict[str, Agent] = {}
        self._delegators: Dict[str, Set[str]] = defaultdict(set)  # target -> {delegator ids}
        self._locks: Dict[str, trio.Lock] = {}

    # ========================================================================
    # LOOKUP / REGISTRATION
    # ========================================================================

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> Agent:
        """Get an agent or raise AgentNotFoundError."""
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def all(self) -> List[Agent]:
        return list(self._agents.values())

    def get_or_create(
        self,
        agent_id: str,
        name: str,
        handle: Optional[str] = None,
        referrer_id: Optional[str] = None,
    ) -> Agent:
        """
        Look up an agent, registering it on first reference.

        A referrer that resolves to an existing agent is credited once, at
        registration time. Later calls for the same id never credit again.
        """
        agent = self._agents.get(agent_id)
        if agent is not None:
            return agent

        agent = Agent(
            agent_id=agent_id,
            name=name,
            social_handle=handle,
            referrer_id=referrer_id,
        )
        agent.unlocked_features = set(self.config.capabilities_for_level(agent.level))
        self._agents[agent_id] = agent

        if referrer_id and referrer_id != agent_id:
            referrer = self._agents.get(referrer_id)
            if referrer is not None:
                referrer.stats.referral_count += 1
                referrer.stats.referral_bonus += self.config.referral_bonus
                logger.info(f"Referral credited: {referrer_id} referred {agent_id}")

        logger.info(f"Agent registered: {agent_id} ({name})")
        return agent

    def verify(self, agent_id: str, address: Optional[str] = None) -> bool:
        """
        Mark an agent's identity as verified.

        Returns:
            False if the agent is unknown, True otherwise (including when
            already verified).
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            return False
        if agent.verified:
            return True

        agent.verified = True
        agent.verified_address = address
        logger.info(f"Agent verified: {agent_id}")
        return True

    # ========================================================================
    # EXPERIENCE / LEVELS
    # ========================================================================

    def add_experience(self, agent_id: str, amount: int, reason: str = "") -> Optional[int]:
        """
        Add XP and re-level the agent.

        Level never decreases and unlocked features only grow. An unknown
        agent is a silent no-op so retried callers stay harmless.

        Returns:
            The agent's level after the update, or None if unknown.
        """
        if amount < 0:
            raise ValueError(f"Experience amount must be non-negative, got {amount}")

        agent = self._agents.get(agent_id)
        if agent is None:
            logger.debug(f"Ignoring {amount} XP for unknown agent {agent_id}")
            return None

        agent.experience += amount
        row = self.config.level_for_xp(agent.experience)
        if row.level > agent.level:
            agent.level = row.level
            agent.unlocked_features |= self.config.capabilities_for_level(row.level)
            logger.info(f"{agent.name} reached level {agent.level}")

        logger.debug(
            f"{agent.name}: +{amount} XP ({reason}) | "
            f"Total: {agent.experience} XP | Level: {agent.level}"
        )
        return agent.level

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    def stake_as_validator(self, agent_id: str, amount: int) -> Agent:
        """
        Lock collateral to become (or stay) a validator.

        Raises:
            AgentNotFoundError, InsufficientStakeError, FeatureLockedError
        """
        agent = self.require(agent_id)

        if amount < self.config.validator_min_stake:
            raise InsufficientStakeError(amount, self.config.validator_min_stake)
        if not agent.has_feature(Capability.VALIDATOR):
            raise FeatureLockedError(agent_id, Capability.VALIDATOR.value)

        agent.is_validator = True
        agent.stake_amount += amount
        agent.stats.total_staked += amount

        logger.info(f"Validator stake: {agent_id} +{amount} sats (total {agent.stake_amount})")
        return agent

    def validators(self) -> List[Agent]:
        """Agents with an active validator stake, ordered by id."""
        return sorted(
            (a for a in self._agents.values() if a.is_validator and a.stake_amount > 0),
            key=lambda a: a.agent_id,
        )

    # ========================================================================
    # DELEGATION
    # ========================================================================

    def delegate(self, from_id: str, to_id: str) -> Agent:
        """
        Point ``from_id``'s delegation at ``to_id``.

        Any previous delegation from ``from_id`` is replaced. Both sides earn
        delegation XP. Re-delegating to the current target changes nothing.

        Raises:
            InvalidDelegateError: self-delegation
            AgentNotFoundError: either side unknown
            DelegationCycleError: ``to_id`` already delegates to ``from_id``
            FeatureLockedError: target has not unlocked delegation
        """
        if from_id == to_id:
            raise InvalidDelegateError(f"Agent {from_id} cannot delegate to itself")

        agent = self.require(from_id)
        target = self.require(to_id)

        if target.delegating_to == from_id:
            raise DelegationCycleError(from_id, to_id)
        if not target.has_feature(Capability.DELEGATE):
            raise FeatureLockedError(to_id, Capability.DELEGATE.value)

        if agent.delegating_to == to_id:
            return agent

        if agent.delegating_to:
            self._delegators[agent.delegating_to].discard(from_id)
        agent.delegating_to = to_id
        self._delegators[to_id].add(from_id)

        reward = self.config.xp_reward("delegated")
        self.add_experience(from_id, reward, "Delegated")
        self.add_experience(to_id, reward, "Received delegation")

        logger.info(f"Delegation created: {from_id} -> {to_id}")
        return agent

    def get_delegators(self, agent_id: str) -> Set[str]:
        """Ids of agents currently delegating to ``agent_id``."""
        return set(self._delegators.get(agent_id, ()))

    # ========================================================================
    # LOCKING
    # ========================================================================

    def lock_for(self, agent_id: str) -> trio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = trio.Lock()
        return lock

    @asynccontextmanager
    async def lock_agents(self, agent_ids: Iterable[str]):
        """
        Hold the update lock of every listed agent.

        Locks are taken in sorted id order so two settlements sharing
        bettors cannot deadlock.
        """
        acquired: List[trio.Lock] = []
        try:
            for agent_id in sorted(set(agent_ids)):
                lock = self.lock_for(agent_id)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # ========================================================================
    # STATUS
    # ========================================================================

    def status(self, agent_id: str) -> dict:
        """
        Summary of an agent's progression for display.

        Raises:
            AgentNotFoundError
        """
        agent = self.require(agent_id)
        row = self.config.level_row(agent.level)
        next_row = self.config.next_level(agent.experience)

        return {
            "agent_id": agent.agent_id,
            "name": agent.name,
            "level": agent.level,
            "xp": agent.experience,
            "next_level_xp": next_row.xp_threshold if next_row else "MAX",
            "streak": agent.streak,
            "max_streak": agent.max_streak,
            "features": sorted(c.value for c in agent.unlocked_features),
            "weight_multiplier": row.weight_multiplier,
            "fee_discount": row.fee_discount,
            "verified": agent.verified,
            "stats": agent.stats.to_dict(),
            "is_validator": agent.is_validator,
            "validator_stake": agent.stake_amount,
            "delegating_to": agent.delegating_to,
            "delegators_count": len(self._delegators.get(agent_id, ())),
        }
