"""
Tests for hashlottery/engine/entropy.py

Tests digest construction, tier classification and the weighted pick.
"""

import hashlib
from collections import Counter

import pytest

from hashlottery.config import Confidence, TIER_THRESHOLDS
from hashlottery.engine.entropy import (
    classify_tier,
    compute_digest,
    draw_value,
    fold_bets,
    hash_value,
    weighted_pick,
)
from hashlottery.engine.epochs import Bet


# ============================================================================
# TEST DATA
# ============================================================================

def create_test_bet(
    bet_id: str = "epoch_1_bet_1",
    prediction: str = "Yes",
    stake: int = 1000,
    weight: float = 2.0,
) -> Bet:
    """Create a test bet."""
    return Bet(
        bet_id=bet_id,
        agent_id="agent1",
        agent_name="Agent One",
        prediction=prediction,
        confidence=Confidence.HIGH,
        stake=stake,
        weight=weight,
    )


def digest_with(prefix: str, draw_digits: str = "0" * 16) -> str:
    """Build a 64-digit digest with chosen tier and draw digits."""
    return (prefix + draw_digits).ljust(64, "0")


# ============================================================================
# DIGEST TESTS
# ============================================================================

class TestDigest:
    """Tests for compute_digest."""

    def test_fold_bets(self):
        """Test bets fold in order as id, prediction, stake, weight."""
        bets = [
            create_test_bet("b1", "Yes", 1000, 2.0),
            create_test_bet("b2", "No", 500, 1.5),
        ]
        assert fold_bets(bets) == "b1Yes10002.0b2No5001.5"

    def test_digest_matches_sha256(self):
        """Test digest is sha256 of the pipe-joined inputs."""
        bets = [create_test_bet("b1", "Yes", 1000, 2.0)]
        expected = hashlib.sha256("seed|salt|b1Yes10002.0|1700000000000".encode()).hexdigest()
        assert compute_digest("seed", "salt", bets, 1700000000000) == expected

    def test_digest_depends_on_every_input(self):
        """Test changing any input changes the digest."""
        bets = [create_test_bet()]
        base = compute_digest("seed", "salt", bets, 1)
        assert compute_digest("seed2", "salt", bets, 1) != base
        assert compute_digest("seed", "salt2", bets, 1) != base
        assert compute_digest("seed", "salt", [create_test_bet(stake=1001)], 1) != base
        assert compute_digest("seed", "salt", bets, 2) != base

    def test_empty_bets(self):
        """Test digest of an epoch without bets."""
        expected = hashlib.sha256("seed|salt||5".encode()).hexdigest()
        assert compute_digest("seed", "salt", [], 5) == expected

    def test_hash_value(self):
        """Test hash value is the first four hex digits."""
        assert hash_value(digest_with("d500")) == 0xd500
        assert hash_value(digest_with("ffff")) == 0xffff


# ============================================================================
# TIER TESTS
# ============================================================================

class TestClassifyTier:
    """Tests for classify_tier."""

    def test_example_value(self):
        """Test 0xd500 falls in tier 2."""
        assert classify_tier(0xd500, TIER_THRESHOLDS) == 2

    def test_boundaries(self):
        """Test thresholds are exclusive upper bounds."""
        assert classify_tier(0x0000, TIER_THRESHOLDS) == 1
        assert classify_tier(0xbfff, TIER_THRESHOLDS) == 1
        assert classify_tier(0xc000, TIER_THRESHOLDS) == 2
        assert classify_tier(0xdfff, TIER_THRESHOLDS) == 2
        assert classify_tier(0xe000, TIER_THRESHOLDS) == 3
        assert classify_tier(0xefff, TIER_THRESHOLDS) == 3
        assert classify_tier(0xf000, TIER_THRESHOLDS) == 4
        assert classify_tier(0xfffe, TIER_THRESHOLDS) == 4

    def test_no_tier(self):
        """Test values at or above the last threshold win nothing."""
        assert classify_tier(0xffff, TIER_THRESHOLDS) == 0
        assert classify_tier(0x10, ((1, 0x10),)) == 0


# ============================================================================
# DRAW TESTS
# ============================================================================

class TestWeightedPick:
    """Tests for draw_value and weighted_pick."""

    def test_worked_example(self):
        """Test stakes 1000/500/1500 with weights 2.0/1.5/3.0."""
        masses = [1000 * 2.0, 500 * 1.5, 1500 * 3.0]
        assert masses == [2000.0, 750.0, 4500.0]
        assert weighted_pick(masses, 2100) == 1
        assert weighted_pick(masses, 1500) == 0

    def test_edges(self):
        """Test boundary values and rounding residue."""
        masses = [2000.0, 750.0, 4500.0]
        assert weighted_pick(masses, 0) == 0
        assert weighted_pick(masses, 2000) == 0
        assert weighted_pick(masses, 2000.5) == 1
        assert weighted_pick(masses, 7249.9) == 2
        assert weighted_pick(masses, 7250.5) == 2

    def test_empty(self):
        """Test no bets means no pick."""
        assert weighted_pick([], 0) is None

    def test_draw_value_scaling(self):
        """Test draw value is the digest fraction of the total mass."""
        assert draw_value(digest_with("d500", "0" * 16), 100.0) == 0.0
        assert draw_value(digest_with("d500", "8" + "0" * 15), 100.0) == pytest.approx(50.0)
        assert draw_value(digest_with("0000", "f" * 16), 100.0) < 100.0

    @pytest.mark.parametrize("total_mass", [1.0, 100.0, 7250.0, 3.0e9])
    def test_draw_value_below_total(self, total_mass):
        """Test the largest draw digits still land inside the mass line."""
        value = draw_value(digest_with("0000", "f" * 16), total_mass)
        assert 0.0 <= value < total_mass

    def test_equal_masses_are_fair(self):
        """Test each of N equal entries wins about 1/N of draws."""
        masses = [1000.0] * 4
        counts = Counter()
        for i in range(4000):
            digest = hashlib.sha256(str(i).encode()).hexdigest()
            counts[weighted_pick(masses, draw_value(digest, sum(masses)))] += 1

        assert set(counts) == {0, 1, 2, 3}
        for index in range(4):
            assert 850 < counts[index] < 1150

    def test_mass_proportional(self):
        """Test win frequency follows mass."""
        masses = [1000.0, 3000.0]
        wins = 0
        for i in range(4000):
            digest = hashlib.sha256(f"draw-{i}".encode()).hexdigest()
            if weighted_pick(masses, draw_value(digest, sum(masses))) == 0:
                wins += 1
        assert 0.20 < wins / 4000 < 0.30
