"""
hashlottery - Prediction lottery with weighted, hash-derived draws

Agents stake on a topic during an epoch. At close a SHA-256 digest over
the external seed, a local salt, the bets and the closing time selects a
prize tier and a winner, weighted by each agent's level, confidence and
verification. Winners and participants earn XP, streaks and season points.

Usage:
    import trio
    from hashlottery import HashLottery, StaticEntropySource

    async def round_():
        lottery = HashLottery(entropy_source=StaticEntropySource(seed))
        epoch = await lottery.open_epoch()
        await lottery.place_bet(epoch.epoch_id, "agent1", "Icehorserider", None,
                                "Yes", "high", 1000)
        return await lottery.settle(epoch.epoch_id)

    result = trio.run(round_)

Metrics Usage:
    from hashlottery.metrics import MetricsCollector

    metrics = MetricsCollector(lottery)
    prometheus_output = metrics.collect()
"""

from .lottery import HashLottery
from .metrics import MetricsCollector
from .collaborators import (
    EntropySource,
    StaticEntropySource,
    RandomEntropySource,
    NotificationSink,
    LoggingNotificationSink,
    MemoryNotificationSink,
)
from .config import (
    Capability,
    Confidence,
    LevelRow,
    LotteryConfig,
    Topic,
    FALLBACK_SEED,
)
from .engine import (
    Agent,
    AgentRegistry,
    Bet,
    Epoch,
    EpochStatus,
    EpochStore,
    SeasonLeaderboard,
    SettlementEngine,
    SettlementResult,
    WeightPolicy,
    verify_settlement,
)
from .errors import (
    ErrorKind,
    LotteryError,
    NotFoundError,
    EpochNotFoundError,
    AgentNotFoundError,
    InvalidStateError,
    EpochClosedError,
    AlreadyClosedError,
    PolicyViolationError,
    StakeTooSmallError,
    InvalidConfidenceError,
    InsufficientStakeError,
    FeatureLockedError,
    InvalidDelegateError,
    DelegationCycleError,
    ConfigurationError,
)

__version__ = "0.1.0"
__all__ = [
    "HashLottery",
    "MetricsCollector",
    # Collaborators
    "EntropySource",
    "StaticEntropySource",
    "RandomEntropySource",
    "NotificationSink",
    "LoggingNotificationSink",
    "MemoryNotificationSink",
    # Config
    "Capability",
    "Confidence",
    "LevelRow",
    "LotteryConfig",
    "Topic",
    "FALLBACK_SEED",
    # Engine
    "Agent",
    "AgentRegistry",
    "Bet",
    "Epoch",
    "EpochStatus",
    "EpochStore",
    "SeasonLeaderboard",
    "SettlementEngine",
    "SettlementResult",
    "WeightPolicy",
    "verify_settlement",
    # Errors
    "ErrorKind",
    "LotteryError",
    "NotFoundError",
    "EpochNotFoundError",
    "AgentNotFoundError",
    "InvalidStateError",
    "EpochClosedError",
    "AlreadyClosedError",
    "PolicyViolationError",
    "StakeTooSmallError",
    "InvalidConfidenceError",
    "InsufficientStakeError",
    "FeatureLockedError",
    "InvalidDelegateError",
    "DelegationCycleError",
    "ConfigurationError",
]
