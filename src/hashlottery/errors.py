"""
hashlottery/errors.py

Error taxonomy for the lottery engine.

Every error carries an ``ErrorKind`` so adapters can map it to a response
without matching on class names:

    NOT_FOUND        - referenced epoch/agent does not exist
    INVALID_STATE    - epoch closed when open expected, or vice versa
    POLICY_VIOLATION - stake too small, feature locked, bad delegation, ...
    FATAL            - broken configuration; must abort, never be swallowed

Rejected operations leave all state untouched.
"""

from enum import Enum


class ErrorKind(Enum):
    """Category of a lottery error."""
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    POLICY_VIOLATION = "policy_violation"
    FATAL = "fatal"


class LotteryError(Exception):
    """Base class for all engine errors."""
    kind: ErrorKind = ErrorKind.FATAL

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or (self.__class__.__doc__ or "").strip()

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
        }


# ============================================================================
# NOT FOUND
# ============================================================================

class NotFoundError(LotteryError):
    """Referenced object does not exist."""
    kind = ErrorKind.NOT_FOUND


class EpochNotFoundError(NotFoundError):
    """Epoch not found."""

    def __init__(self, epoch_id: str):
        super().__init__(f"Epoch {epoch_id} not found")
        self.epoch_id = epoch_id


class AgentNotFoundError(NotFoundError):
    """Agent not found."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} not found")
        self.agent_id = agent_id


# ============================================================================
# INVALID STATE
# ============================================================================

class InvalidStateError(LotteryError):
    """Object is in the wrong lifecycle state."""
    kind = ErrorKind.INVALID_STATE


class EpochClosedError(InvalidStateError):
    """Epoch no longer accepts bets."""

    def __init__(self, epoch_id: str):
        super().__init__(f"Epoch {epoch_id} is closed")
        self.epoch_id = epoch_id


class AlreadyClosedError(InvalidStateError):
    """Epoch has already been closed."""

    def __init__(self, epoch_id: str):
        super().__init__(f"Epoch {epoch_id} is already closed")
        self.epoch_id = epoch_id


# ============================================================================
# POLICY VIOLATIONS
# ============================================================================

class PolicyViolationError(LotteryError):
    """Request breaks a lottery rule."""
    kind = ErrorKind.POLICY_VIOLATION


class StakeTooSmallError(PolicyViolationError):
    """Bet stake below the minimum."""

    def __init__(self, stake, minimum: int):
        super().__init__(f"Minimum bet is {minimum} sats, got {stake}")
        self.stake = stake
        self.minimum = minimum


class InvalidConfidenceError(PolicyViolationError):
    """Confidence string is not one of low, medium or high."""

    def __init__(self, value):
        super().__init__(f"Invalid confidence: {value}. Valid options: low, medium, high")
        self.value = value


class InsufficientStakeError(PolicyViolationError):
    """Validator stake below the minimum."""

    def __init__(self, stake, minimum: int):
        super().__init__(f"Minimum validator stake is {minimum} sats, got {stake}")
        self.stake = stake
        self.minimum = minimum


class FeatureLockedError(PolicyViolationError):
    """Agent has not unlocked the required capability."""

    def __init__(self, agent_id: str, feature: str):
        super().__init__(f"Agent {agent_id} has not unlocked '{feature}'")
        self.agent_id = agent_id
        self.feature = feature


class InvalidDelegateError(PolicyViolationError):
    """Delegation target is not allowed."""


class DelegationCycleError(InvalidDelegateError):
    """Delegation would create a cycle."""

    def __init__(self, from_id: str, to_id: str):
        super().__init__(f"{to_id} already delegates to {from_id}")
        self.from_id = from_id
        self.to_id = to_id


# ============================================================================
# FATAL
# ============================================================================

class ConfigurationError(LotteryError):
    """Configuration table is missing or inconsistent."""
    kind = ErrorKind.FATAL
