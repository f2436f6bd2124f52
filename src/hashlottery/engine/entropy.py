"""
hashlottery/engine/entropy.py

Pure functions for the close-time draw.

The settlement digest binds the external seed, the epoch's local salt,
every bet and the closing timestamp:

    digest = sha256("seed|salt|<bet fold>|closed_at_ms")

The first four hex digits select the prize tier and the next thirteen pick
the winning point on the cumulative weight line, so anyone holding the
settlement inputs can recompute the outcome.
"""

import hashlib
from typing import Iterable, List, Optional, Sequence, Tuple

# Hex digits of the digest used for each purpose
TIER_DIGITS = 4
# 52 bits, so the draw fraction is exact in a float and stays below 1.0
DRAW_DIGITS = 13
DRAW_SCALE = 16 ** DRAW_DIGITS


def fold_bets(bets: Iterable) -> str:
    """Concatenate bet id, prediction, stake and weight for every bet, in order."""
    return "".join(
        f"{bet.bet_id}{bet.prediction}{bet.stake}{bet.weight}"
        for bet in bets
    )


def compute_digest(seed: str, salt: str, bets: Iterable, closed_at_ms: int) -> str:
    """SHA-256 hex digest over the settlement inputs."""
    payload = "|".join([seed, salt, fold_bets(bets), str(closed_at_ms)])
    return hashlib.sha256(payload.encode()).hexdigest()


def hash_value(digest: str) -> int:
    """16-bit value taken from the leading hex digits of the digest."""
    return int(digest[:TIER_DIGITS], 16)


def classify_tier(value: int, thresholds: Sequence[Tuple[int, int]]) -> int:
    """
    Map a hash value onto a tier.

    ``thresholds`` is ascending ``(tier, threshold)``; the first threshold the
    value is strictly below wins. Values above every threshold are tier 0.
    """
    for tier, threshold in thresholds:
        if value < threshold:
            return tier
    return 0


def draw_value(digest: str, total_mass: float) -> float:
    """Point in ``[0, total_mass)`` derived from the digest."""
    fraction = int(digest[TIER_DIGITS:TIER_DIGITS + DRAW_DIGITS], 16) / DRAW_SCALE
    return fraction * total_mass


def weighted_pick(masses: List[float], value: float) -> Optional[int]:
    """
    Index of the entry selected by ``value`` on the cumulative mass line.

    Masses are subtracted in order and the first entry that brings the
    remainder to zero or below is chosen. Rounding residue falls through to
    the last entry. Returns None for an empty list.
    """
    if not masses:
        return None

    remaining = value
    for index, mass in enumerate(masses):
        remaining -= mass
        if remaining <= 0:
            return index
    return len(masses) - 1
