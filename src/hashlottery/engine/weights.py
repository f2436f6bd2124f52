"""
hashlottery/engine/weights.py

Per-bet weight from an agent's level, stated confidence and verification.

    weight = level multiplier x confidence multiplier x verified multiplier

The weight is frozen onto the bet at submission. Later level-ups or
verification do not change bets already placed.
"""

import logging
from typing import Optional

from ..config import Capability, Confidence, LotteryConfig
from .agents import Agent

logger = logging.getLogger("hashlottery.engine.weights")


class WeightPolicy:
    """Computes bet weights from the configured multiplier tables."""

    def __init__(self, config: Optional[LotteryConfig] = None):
        self.config = config or LotteryConfig()

    def level_multiplier(self, level: int) -> float:
        return self.config.level_row(level).weight_multiplier

    def confidence_multiplier(self, confidence: Confidence) -> float:
        return self.config.confidence_multipliers[confidence]

    def effective_confidence(self, agent: Agent, confidence: Confidence) -> Confidence:
        """
        Confidence the agent is actually allowed to state.

        High confidence requires the HIGH_CONFIDENCE capability; agents
        without it are downgraded to medium.
        """
        if confidence == Confidence.HIGH and not agent.has_feature(Capability.HIGH_CONFIDENCE):
            logger.debug(f"{agent.agent_id} lacks high confidence, using medium")
            return Confidence.MEDIUM
        return confidence

    def compute_weight(self, agent: Agent, confidence: Confidence) -> float:
        """Weight for a bet by ``agent`` at ``confidence``. Always > 0."""
        weight = self.level_multiplier(agent.level) * self.confidence_multiplier(confidence)
        if agent.verified:
            weight *= self.config.verified_multiplier
        return weight
