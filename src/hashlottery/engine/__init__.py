"""
hashlottery/engine/

Settlement and weighted lottery engine.
"""

from .agents import Agent, AgentStats, AgentRegistry
from .weights import WeightPolicy
from .epochs import Bet, Epoch, EpochStatus, EpochStore
from .season import Season, SeasonStanding, SeasonLeaderboard
from .settlement import (
    FeeBreakdown,
    Outcome,
    SettlementEngine,
    SettlementResult,
    compute_prize,
    evaluate_epoch,
    floor_amount,
    split_pro_rata,
    verify_settlement,
)
from .entropy import (
    classify_tier,
    compute_digest,
    draw_value,
    fold_bets,
    hash_value,
    weighted_pick,
)

__all__ = [
    "Agent",
    "AgentStats",
    "AgentRegistry",
    "WeightPolicy",
    "Bet",
    "Epoch",
    "EpochStatus",
    "EpochStore",
    "Season",
    "SeasonStanding",
    "SeasonLeaderboard",
    # Settlement
    "FeeBreakdown",
    "Outcome",
    "SettlementEngine",
    "SettlementResult",
    "compute_prize",
    "evaluate_epoch",
    "floor_amount",
    "split_pro_rata",
    "verify_settlement",
    # Entropy
    "classify_tier",
    "compute_digest",
    "draw_value",
    "fold_bets",
    "hash_value",
    "weighted_pick",
]
