"""
hashlottery/config.py

Configuration constants and data classes for hashlottery.

Every table the engine consults (levels, multipliers, tiers, fees, XP)
lives here so a deployment can tune the lottery without touching the
draw logic. ``LotteryConfig`` bundles the tables; ``LotteryConfig.from_env()``
overrides scalar settings from ``HASHLOTTERY_*`` environment variables.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple
import logging
import os

from .errors import ConfigurationError, InvalidConfidenceError

logger = logging.getLogger("hashlottery.config")


# ============================================================================
# CAPABILITIES
# ============================================================================

class Capability(Enum):
    """Features an agent unlocks by levelling up."""
    BASIC = "basic"
    DELEGATE = "delegate"
    HIGH_CONFIDENCE = "high_confidence"
    VALIDATOR = "validator"
    CREATE_MARKET = "create_market"
    MASTER = "master"


class Confidence(Enum):
    """Stated confidence of a bet."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_string(cls, value: str) -> "Confidence":
        """Convert string to Confidence."""
        normalized = value.lower().strip()
        for member in cls:
            if member.value == normalized:
                return member
        raise InvalidConfidenceError(value)


# ============================================================================
# LEVEL TABLE
# ============================================================================

@dataclass(frozen=True)
class LevelRow:
    """One row of the level step function."""
    level: int
    xp_threshold: int
    weight_multiplier: float
    fee_discount: float
    capabilities: FrozenSet[Capability] = frozenset()

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "xp_threshold": self.xp_threshold,
            "weight_multiplier": self.weight_multiplier,
            "fee_discount": self.fee_discount,
            "capabilities": sorted(c.value for c in self.capabilities),
        }


DEFAULT_LEVEL_TABLE: Tuple[LevelRow, ...] = (
    LevelRow(1, 0, 1.0, 0.00, frozenset({Capability.BASIC})),
    LevelRow(5, 500, 1.2, 0.02, frozenset({Capability.DELEGATE})),
    LevelRow(10, 2000, 1.5, 0.05, frozenset({Capability.HIGH_CONFIDENCE})),
    LevelRow(20, 10000, 2.0, 0.08, frozenset({Capability.VALIDATOR})),
    LevelRow(30, 50000, 2.5, 0.10, frozenset({Capability.CREATE_MARKET})),
    LevelRow(50, 200000, 3.0, 0.15, frozenset({Capability.MASTER})),
)


# ============================================================================
# WEIGHT CONSTANTS
# ============================================================================

CONFIDENCE_MULTIPLIERS: Dict[Confidence, float] = {
    Confidence.LOW: 1.0,
    Confidence.MEDIUM: 1.5,
    Confidence.HIGH: 2.0,
}

VERIFIED_MULTIPLIER = 1.5   # Verified identity
CORRECT_MULTIPLIER = 3.0    # Draw-time boost for a matching declared answer


# ============================================================================
# TIERS, PRIZES AND FEES
# ============================================================================

# Ascending thresholds over the 16-bit hash value. The first threshold the
# value falls under selects the tier; anything at or above the last is tier 0.
TIER_THRESHOLDS: Tuple[Tuple[int, int], ...] = (
    (1, 0xc000),
    (2, 0xe000),
    (3, 0xf000),
    (4, 0xffff),
)

# Share of the post-fee pool paid to the winner, per tier
TIER_SHARES: Dict[int, float] = {
    1: 0.60,
    2: 0.25,
    3: 0.10,
    4: 0.05,
}

FEES: Dict[str, float] = {
    "platform": 0.05,
    "validator": 0.02,
    "season": 0.03,
}


# ============================================================================
# EXPERIENCE
# ============================================================================

XP_REWARDS: Dict[str, int] = {
    "participate": 5,
    "correct": 20,             # Winning draw
    "high_correct": 30,        # Winning with high confidence
    "streak": 10,              # Per streak step
    "delegated": 15,           # Both sides of a delegation
    "validated": 10,           # Validator share of a settled epoch
    "season_participate": 50,
    "season_win": 200,
}


# ============================================================================
# MISC
# ============================================================================

MIN_BET_SATS = 100
VALIDATOR_MIN_STAKE = 10000
REFERRAL_BONUS = 0.10
STREAK_CAP = 50

EPOCH_DURATION_SECONDS = 300
SEASON_DURATION_DAYS = 30
SEASON_TOP_REWARDS: Tuple[float, ...] = (0.20, 0.10, 0.05)

# Used whenever the entropy source fails or times out
FALLBACK_SEED = "00000000000000000000a882324aa7cdadd0e1af62fa7cbd894e49d76ae5fb7d"

SEED_TIMEOUT_SECONDS = 10.0
NOTIFY_TIMEOUT_SECONDS = 5.0

ENV_PREFIX = "HASHLOTTERY_"


@dataclass(frozen=True)
class Topic:
    """Question an epoch is about."""
    question: str
    category: str
    answer: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_TOPICS: Tuple[Topic, ...] = (
    Topic("Will BTC close above $70,000 this week?", "crypto"),
    Topic("Will ETH reach $3,000 by month end?", "crypto"),
    Topic("Will AI token market cap exceed $50B?", "ai"),
    Topic("Will Fed cut rates in next meeting?", "macro"),
    Topic("Will this epoch hash start with '0x0'?", "lottery"),
)


# ============================================================================
# CONFIG OBJECT
# ============================================================================

@dataclass
class LotteryConfig:
    """All tunable tables for one lottery deployment."""
    level_table: Tuple[LevelRow, ...] = DEFAULT_LEVEL_TABLE
    confidence_multipliers: Dict[Confidence, float] = field(
        default_factory=lambda: dict(CONFIDENCE_MULTIPLIERS)
    )
    verified_multiplier: float = VERIFIED_MULTIPLIER
    correct_multiplier: float = CORRECT_MULTIPLIER
    tier_thresholds: Tuple[Tuple[int, int], ...] = TIER_THRESHOLDS
    tier_shares: Dict[int, float] = field(default_factory=lambda: dict(TIER_SHARES))
    fees: Dict[str, float] = field(default_factory=lambda: dict(FEES))
    xp: Dict[str, int] = field(default_factory=lambda: dict(XP_REWARDS))
    min_bet: int = MIN_BET_SATS
    validator_min_stake: int = VALIDATOR_MIN_STAKE
    referral_bonus: float = REFERRAL_BONUS
    streak_cap: int = STREAK_CAP
    epoch_duration_seconds: int = EPOCH_DURATION_SECONDS
    season_duration_days: int = SEASON_DURATION_DAYS
    season_top_rewards: Tuple[float, ...] = SEASON_TOP_REWARDS
    topics: Tuple[Topic, ...] = DEFAULT_TOPICS
    fallback_seed: str = FALLBACK_SEED
    seed_timeout: float = SEED_TIMEOUT_SECONDS
    notify_timeout: float = NOTIFY_TIMEOUT_SECONDS

    def __post_init__(self):
        self.level_table = tuple(sorted(self.level_table, key=lambda r: r.xp_threshold))
        self.tier_thresholds = tuple(sorted(self.tier_thresholds, key=lambda t: t[1]))

    # ---------------------------------------------------------------- lookups

    def level_row(self, level: int) -> LevelRow:
        """Get the table row for a level number."""
        for row in self.level_table:
            if row.level == level:
                return row
        raise ConfigurationError(f"Level {level} missing from level table")

    def level_for_xp(self, xp: int) -> LevelRow:
        """Highest row whose threshold is at or below ``xp``."""
        current = self.level_table[0]
        for row in self.level_table:
            if xp >= row.xp_threshold:
                current = row
            else:
                break
        return current

    def next_level(self, xp: int) -> Optional[LevelRow]:
        """First row above ``xp``, or None at max level."""
        for row in self.level_table:
            if xp < row.xp_threshold:
                return row
        return None

    def capabilities_for_level(self, level: int) -> FrozenSet[Capability]:
        """Union of capabilities for every row at or below ``level``."""
        caps = set()
        for row in self.level_table:
            if row.level <= level:
                caps |= row.capabilities
        return frozenset(caps)

    def tier_share(self, tier: int) -> float:
        try:
            return self.tier_shares[tier]
        except KeyError:
            raise ConfigurationError(f"No prize share configured for tier {tier}")

    def xp_reward(self, name: str) -> int:
        try:
            return self.xp[name]
        except KeyError:
            raise ConfigurationError(f"No XP reward configured for '{name}'")

    @property
    def total_fee_rate(self) -> float:
        return sum(self.fees.values())

    # ------------------------------------------------------------- validation

    def validate(self) -> "LotteryConfig":
        """
        Check the tables are internally consistent.

        Raises:
            ConfigurationError: on any inconsistency. This is fatal; the
                engine must not run on a broken table.
        """
        if not self.level_table:
            raise ConfigurationError("Level table is empty")
        if self.level_table[0].xp_threshold != 0:
            raise ConfigurationError("Lowest level must start at 0 XP")
        levels = [row.level for row in self.level_table]
        if levels != sorted(levels) or len(set(levels)) != len(levels):
            raise ConfigurationError("Levels must be unique and ascend with XP threshold")
        if any(row.weight_multiplier <= 0 for row in self.level_table):
            raise ConfigurationError("Level weight multipliers must be positive")

        for confidence in Confidence:
            value = self.confidence_multipliers.get(confidence)
            if value is None or value <= 0:
                raise ConfigurationError(f"Missing or non-positive multiplier for {confidence.value}")
        if self.verified_multiplier <= 0 or self.correct_multiplier <= 0:
            raise ConfigurationError("Multipliers must be positive")

        if not self.tier_thresholds:
            raise ConfigurationError("Tier threshold table is empty")
        for tier, threshold in self.tier_thresholds:
            if tier <= 0:
                raise ConfigurationError("Tier numbers must be positive (0 means no win)")
            # 0x10000 is allowed so a single tier can cover every hash value
            if not 0 <= threshold <= 0x10000:
                raise ConfigurationError(f"Tier {tier} threshold {threshold:#x} outside 16-bit range")
            if tier not in self.tier_shares:
                raise ConfigurationError(f"No prize share configured for tier {tier}")

        if any(share < 0 for share in self.tier_shares.values()):
            raise ConfigurationError("Tier shares must be non-negative")
        share_total = sum(self.tier_shares.values())
        if share_total > 1.0 + 1e-9:
            raise ConfigurationError(f"Tier shares sum to {share_total}, must be <= 1.0")

        if any(rate < 0 for rate in self.fees.values()):
            raise ConfigurationError("Fees must be non-negative")
        if self.total_fee_rate >= 1.0:
            raise ConfigurationError(f"Fees sum to {self.total_fee_rate}, must be < 1.0")

        for key in ("participate", "correct", "high_correct", "streak", "delegated",
                    "validated", "season_win"):
            self.xp_reward(key)

        if self.min_bet <= 0:
            raise ConfigurationError("Minimum bet must be positive")
        if self.streak_cap <= 0:
            raise ConfigurationError("Streak cap must be positive")
        if not self.topics:
            raise ConfigurationError("Topic pool is empty")
        return self

    # ------------------------------------------------------------ environment

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LotteryConfig":
        """
        Build a config, overriding scalar settings from the environment.

        Recognised variables (all optional):
            HASHLOTTERY_MIN_BET, HASHLOTTERY_VALIDATOR_MIN_STAKE,
            HASHLOTTERY_STREAK_CAP, HASHLOTTERY_EPOCH_DURATION_SECONDS,
            HASHLOTTERY_SEASON_DURATION_DAYS, HASHLOTTERY_REFERRAL_BONUS,
            HASHLOTTERY_FALLBACK_SEED, HASHLOTTERY_SEED_TIMEOUT,
            HASHLOTTERY_NOTIFY_TIMEOUT, HASHLOTTERY_FEE_PLATFORM,
            HASHLOTTERY_FEE_VALIDATOR, HASHLOTTERY_FEE_SEASON
        """
        env = os.environ if environ is None else environ
        config = cls()

        int_settings = {
            "MIN_BET": "min_bet",
            "VALIDATOR_MIN_STAKE": "validator_min_stake",
            "STREAK_CAP": "streak_cap",
            "EPOCH_DURATION_SECONDS": "epoch_duration_seconds",
            "SEASON_DURATION_DAYS": "season_duration_days",
        }
        float_settings = {
            "REFERRAL_BONUS": "referral_bonus",
            "SEED_TIMEOUT": "seed_timeout",
            "NOTIFY_TIMEOUT": "notify_timeout",
        }

        for suffix, attr in int_settings.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None:
                setattr(config, attr, _parse(raw, int, suffix))
                logger.debug(f"Environment override {ENV_PREFIX}{suffix}={raw}")
        for suffix, attr in float_settings.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None:
                setattr(config, attr, _parse(raw, float, suffix))
                logger.debug(f"Environment override {ENV_PREFIX}{suffix}={raw}")

        for fee_name in list(config.fees):
            raw = env.get(f"{ENV_PREFIX}FEE_{fee_name.upper()}")
            if raw is not None:
                config.fees[fee_name] = _parse(raw, float, f"FEE_{fee_name.upper()}")

        seed = env.get(ENV_PREFIX + "FALLBACK_SEED")
        if seed:
            config.fallback_seed = seed

        return config.validate()

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "level_table": [row.to_dict() for row in self.level_table],
            "confidence_multipliers": {c.value: m for c, m in self.confidence_multipliers.items()},
            "verified_multiplier": self.verified_multiplier,
            "correct_multiplier": self.correct_multiplier,
            "tier_thresholds": [
                {"tier": tier, "threshold": f"{threshold:#06x}"}
                for tier, threshold in self.tier_thresholds
            ],
            "tier_shares": dict(self.tier_shares),
            "fees": dict(self.fees),
            "xp": dict(self.xp),
            "min_bet": self.min_bet,
            "validator_min_stake": self.validator_min_stake,
            "referral_bonus": self.referral_bonus,
            "streak_cap": self.streak_cap,
            "epoch_duration_seconds": self.epoch_duration_seconds,
            "season_duration_days": self.season_duration_days,
            "season_top_rewards": list(self.season_top_rewards),
            "topics": [t.to_dict() for t in self.topics],
            "fallback_seed": self.fallback_seed,
            "seed_timeout": self.seed_timeout,
            "notify_timeout": self.notify_timeout,
        }


def _parse(raw: str, kind, name: str):
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name}={raw!r} is not a valid {kind.__name__}")
