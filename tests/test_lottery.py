"""
Tests for hashlottery/lottery.py

End-to-end tests through the HashLottery application context.
"""

from unittest.mock import AsyncMock, Mock

import pytest
import trio

from hashlottery import (
    AgentNotFoundError,
    Confidence,
    EpochClosedError,
    EpochNotFoundError,
    HashLottery,
    InvalidConfidenceError,
    LotteryConfig,
    MemoryNotificationSink,
    StakeTooSmallError,
    StaticEntropySource,
    Topic,
    FALLBACK_SEED,
)

TEST_SEED = "0000000000000000000312c8f5e3ce8d8e5b0d2bb7a5a7b1b0e3cd9d4aa6b1c9"


# ============================================================================
# TEST DATA
# ============================================================================

def create_test_lottery(config: LotteryConfig = None, source=None, sink=None) -> HashLottery:
    """Create a lottery with a fixed seed and an in-memory sink."""
    return HashLottery(
        config=config,
        entropy_source=source or StaticEntropySource(TEST_SEED),
        notifier=sink if sink is not None else MemoryNotificationSink(),
        clock=lambda: 1700000000000,
    )


def create_always_win_config(**overrides) -> LotteryConfig:
    return LotteryConfig(tier_thresholds=((1, 0x10000),), tier_shares={1: 0.60}, **overrides)


def create_never_win_config(**overrides) -> LotteryConfig:
    return LotteryConfig(tier_thresholds=((1, 0),), tier_shares={1: 0.60}, **overrides)


async def place(lottery, epoch, agent_id, stake=1000, confidence="low", **kwargs):
    """Place a bet with the agent's id doubling as its name."""
    return await lottery.place_bet(
        epoch.epoch_id, agent_id, agent_id.title(), None, "Yes", confidence, stake, **kwargs
    )


# ============================================================================
# EPOCH TESTS
# ============================================================================

class TestOpenEpoch:
    """Tests for open_epoch and the entropy source."""

    @pytest.mark.trio
    async def test_open_uses_seed(self):
        """Test the epoch is opened on the source's seed and announced."""
        sink = MemoryNotificationSink()
        lottery = create_test_lottery(sink=sink)
        epoch = await lottery.open_epoch()

        assert epoch.external_seed == TEST_SEED
        payload = sink.last("epoch_opened")
        assert payload["epoch_id"] == epoch.epoch_id
        assert payload["topic"]["question"] == epoch.topic.question

    @pytest.mark.trio
    async def test_failing_source_falls_back(self):
        """Test source errors use the fallback seed."""
        source = Mock()
        source.fetch_seed = AsyncMock(side_effect=ConnectionError("no route"))
        lottery = create_test_lottery(source=source)

        epoch = await lottery.open_epoch()
        assert epoch.external_seed == FALLBACK_SEED

    @pytest.mark.trio
    async def test_empty_seed_falls_back(self):
        """Test empty seeds use the fallback seed."""
        lottery = create_test_lottery(source=StaticEntropySource(""))
        epoch = await lottery.open_epoch()
        assert epoch.external_seed == FALLBACK_SEED

    @pytest.mark.trio
    async def test_slow_source_times_out(self):
        """Test a hanging source is abandoned after the timeout."""
        class SlowSource:
            async def fetch_seed(self):
                await trio.sleep(10)
                return TEST_SEED

        lottery = create_test_lottery(LotteryConfig(seed_timeout=0.05), source=SlowSource())
        with trio.fail_after(5):
            epoch = await lottery.open_epoch()
        assert epoch.external_seed == FALLBACK_SEED

    @pytest.mark.trio
    async def test_no_source(self):
        """Test a lottery without a source uses the fallback seed."""
        lottery = HashLottery()
        epoch = await lottery.open_epoch()
        assert epoch.external_seed == FALLBACK_SEED

    @pytest.mark.trio
    async def test_epoch_status(self):
        """Test epoch status before and after settlement."""
        lottery = create_test_lottery(create_always_win_config())
        epoch = await lottery.open_epoch()
        await place(lottery, epoch, "alice", 1000)
        await place(lottery, epoch, "alice", 500)

        status = lottery.get_epoch_status(epoch.epoch_id)
        assert status["status"] == "open"
        assert status["total_stake"] == 1500
        assert status["bets"] == 2
        assert status["participants"] == 1
        assert status["time_remaining"] > 0
        assert "winning_tier" not in status

        await lottery.settle(epoch.epoch_id)
        status = lottery.get_epoch_status(epoch.epoch_id)
        assert status["status"] == "closed"
        assert status["winning_tier"] == 1
        assert status["time_remaining"] == 0.0

        with pytest.raises(EpochNotFoundError):
            lottery.get_epoch_status("epoch_99")


# ============================================================================
# BET TESTS
# ============================================================================

class TestPlaceBet:
    """Tests for HashLottery.place_bet."""

    @pytest.mark.trio
    async def test_registers_and_counts(self):
        """Test first bet registers the agent and joins the season."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        bet = await lottery.place_bet(epoch.epoch_id, "agent1", "Icehorserider", "@ice", "Yes", "medium", 1000)

        agent = lottery.agents.get("agent1")
        assert agent.social_handle == "@ice"
        assert agent.stats.total_bets == 1
        assert bet.confidence == Confidence.MEDIUM
        assert bet.weight == 1.5
        assert lottery.season.get("agent1") is not None

    @pytest.mark.trio
    async def test_high_confidence_downgraded(self):
        """Test agents without the capability bet medium."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        bet = await place(lottery, epoch, "alice", confidence="high")
        assert bet.confidence == Confidence.MEDIUM
        assert bet.weight == 1.5

    @pytest.mark.trio
    async def test_high_confidence_unlocked(self):
        """Test level 10 agents keep high confidence."""
        lottery = create_test_lottery()
        lottery.agents.get_or_create("alice", "Alice")
        lottery.agents.add_experience("alice", 2000)
        epoch = await lottery.open_epoch()

        bet = await place(lottery, epoch, "alice", confidence=Confidence.HIGH)
        assert bet.confidence == Confidence.HIGH
        assert bet.weight == pytest.approx(3.0)

    @pytest.mark.trio
    async def test_referral_on_first_bet(self):
        """Test a referred agent credits its referrer."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        await place(lottery, epoch, "alice")
        await place(lottery, epoch, "bob", referrer_id="alice")

        assert lottery.agents.get("alice").stats.referral_count == 1

    @pytest.mark.trio
    async def test_rejected_bet_registers_nobody(self):
        """Test a rejected bet leaves no trace."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()

        with pytest.raises(StakeTooSmallError):
            await place(lottery, epoch, "alice", stake=50)
        with pytest.raises(InvalidConfidenceError):
            await place(lottery, epoch, "bob", confidence="certain")

        assert "alice" not in lottery.agents
        assert "bob" not in lottery.agents
        assert epoch.total_stake == 0

    @pytest.mark.trio
    async def test_bet_on_closed_epoch(self):
        """Test betting after settlement fails and leaves the epoch unchanged."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        await place(lottery, epoch, "alice")
        await lottery.settle(epoch.epoch_id)
        snapshot = epoch.to_dict()

        with pytest.raises(EpochClosedError):
            await place(lottery, epoch, "bob")

        assert epoch.to_dict() == snapshot
        assert "bob" not in lottery.agents

    @pytest.mark.trio
    async def test_unknown_epoch(self):
        """Test betting on an unknown epoch raises."""
        lottery = create_test_lottery()
        with pytest.raises(EpochNotFoundError):
            await lottery.place_bet("epoch_99", "alice", "Alice", None, "Yes", "low", 100)

    @pytest.mark.trio
    async def test_concurrent_bets_keep_total(self):
        """Test many concurrent bets keep the total-stake invariant."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()

        async with trio.open_nursery() as nursery:
            for i in range(40):
                nursery.start_soon(place, lottery, epoch, f"agent{i % 7}", 100 + i)

        assert len(epoch.bets) == 40
        assert epoch.total_stake == sum(100 + i for i in range(40))
        assert epoch.total_stake == sum(b.stake for b in epoch.bets)
        assert sum(a.stats.total_bets for a in lottery.agents.all()) == 40


# ============================================================================
# SETTLEMENT TESTS
# ============================================================================

class TestSettle:
    """Tests for settlement through the application context."""

    @pytest.mark.trio
    async def test_round_trip(self):
        """Test open, bet, settle and verify."""
        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        for agent_id, stake, confidence in [
            ("agent1", 1000, "high"), ("agent2", 500, "medium"),
            ("agent3", 1500, "high"), ("agent4", 300, "low"),
        ]:
            await place(lottery, epoch, agent_id, stake, confidence)

        result = await lottery.settle(epoch.epoch_id)

        assert result.total_stake == 3300
        assert result.participants == 4
        assert lottery.verify_epoch(epoch.epoch_id) is True
        for agent_id in ("agent1", "agent2", "agent3", "agent4"):
            assert lottery.agents.get(agent_id).experience >= 5

    @pytest.mark.trio
    async def test_settle_twice(self):
        """Test the second settle is rejected."""
        from hashlottery import AlreadyClosedError

        lottery = create_test_lottery()
        epoch = await lottery.open_epoch()
        await lottery.settle(epoch.epoch_id)
        with pytest.raises(AlreadyClosedError):
            await lottery.settle(epoch.epoch_id)

    @pytest.mark.trio
    async def test_no_winner_resets_streak(self):
        """Test a streak of 5 drops to 0 when nobody wins."""
        lottery = create_test_lottery(create_never_win_config())
        epoch = await lottery.open_epoch()
        await place(lottery, epoch, "alice")
        lottery.agents.get("alice").streak = 5

        result = await lottery.settle(epoch.epoch_id)

        assert result.tier == 0
        assert lottery.get_agent_status("alice")["streak"] == 0

    @pytest.mark.trio
    async def test_streak_grows_across_epochs(self):
        """Test a lone bettor's streak grows with each win."""
        lottery = create_test_lottery(create_always_win_config())
        for expected in (1, 2, 3):
            epoch = await lottery.open_epoch()
            await place(lottery, epoch, "alice")
            await lottery.settle(epoch.epoch_id)
            assert lottery.agents.get("alice").streak == expected

        # 3 x (5 + 20) + (1 + 2 + 3) x 10
        assert lottery.agents.get("alice").experience == 135
        assert lottery.get_season()["leaderboard"][0]["wins"] == 3

    @pytest.mark.trio
    async def test_reveal_answer(self):
        """Test revealed answers mark correct bets."""
        lottery = create_test_lottery(create_always_win_config())
        epoch = await lottery.open_epoch(Topic("Will it rain?", "weather"))
        await place(lottery, epoch, "alice", declared_answer="yes")
        await place(lottery, epoch, "bob", declared_answer="no")
        await lottery.reveal_answer(epoch.epoch_id, "yes")

        result = await lottery.settle(epoch.epoch_id)

        assert result.correct_count == 1
        assert [b.is_correct for b in epoch.bets] == [True, False]
        with pytest.raises(EpochClosedError):
            await lottery.reveal_answer(epoch.epoch_id, "no")

    @pytest.mark.trio
    async def test_epochs_settle_independently(self):
        """Test concurrent settlement of different epochs."""
        lottery = create_test_lottery(create_always_win_config())
        epochs = [await lottery.open_epoch() for _ in range(3)]
        for epoch in epochs:
            await place(lottery, epoch, "alice")
            await place(lottery, epoch, "bob")

        results = []

        async def settle(epoch_id):
            results.append(await lottery.settle(epoch_id))

        async with trio.open_nursery() as nursery:
            for epoch in epochs:
                nursery.start_soon(settle, epoch.epoch_id)

        assert len(results) == 3
        assert lottery.epochs.open_epochs() == []
        total_wins = sum(a.stats.total_wins for a in lottery.agents.all())
        assert total_wins == 3


# ============================================================================
# AGENT SURFACE TESTS
# ============================================================================

class TestAgentSurface:
    """Tests for status, leaderboard, validator and delegation calls."""

    def test_agent_status_unknown(self):
        """Test unknown agent status raises."""
        with pytest.raises(AgentNotFoundError):
            create_test_lottery().get_agent_status("ghost")

    def test_xp_leaderboard_order(self):
        """Test lifetime ranking by XP."""
        lottery = create_test_lottery()
        for agent_id, xp in [("alice", 100), ("bob", 600), ("carol", 100)]:
            lottery.agents.get_or_create(agent_id, agent_id.title())
            lottery.agents.add_experience(agent_id, xp)

        board = lottery.get_xp_leaderboard()
        assert [row["agent_id"] for row in board] == ["bob", "alice", "carol"]
        assert board[0]["rank"] == 1
        assert board[0]["level"] == 5
        assert len(lottery.get_xp_leaderboard(limit=1)) == 1

    @pytest.mark.trio
    async def test_leaderboard_is_season_standings(self):
        """Test an agent with lifetime XP but no bets this season is not ranked."""
        lottery = create_test_lottery(create_always_win_config())
        lottery.agents.get_or_create("idle", "Idle")
        lottery.agents.add_experience("idle", 12000)

        epoch = await lottery.open_epoch()
        await place(lottery, epoch, "player")
        await lottery.settle(epoch.epoch_id)

        board = lottery.get_leaderboard()
        assert [row["agent_id"] for row in board] == ["player"]
        assert board[0]["rank"] == 1
        assert board[0]["points"] == 205
        assert board[0]["wins"] == 1
        assert board[0]["epochs"] == 1

    def test_become_validator(self):
        """Test validator results are reported as (success, message)."""
        lottery = create_test_lottery()
        lottery.agents.get_or_create("alice", "Alice")

        ok, message = lottery.become_validator("ghost", 10000)
        assert ok is False
        assert "not found" in message

        ok, message = lottery.become_validator("alice", 10000)
        assert ok is False
        assert "validator" in message

        lottery.agents.add_experience("alice", 10000)
        ok, message = lottery.become_validator("alice", 5000)
        assert ok is False
        assert "10000" in message

        ok, message = lottery.become_validator("alice", 10000)
        assert ok is True
        assert lottery.agents.get("alice").is_validator

    def test_delegate(self):
        """Test delegation results, including the 2-cycle."""
        lottery = create_test_lottery()
        for agent_id in ("alice", "bob"):
            lottery.agents.get_or_create(agent_id, agent_id.title())
            lottery.agents.add_experience(agent_id, 500)

        ok, _ = lottery.delegate("alice", "bob")
        assert ok is True

        ok, message = lottery.delegate("bob", "alice")
        assert ok is False
        assert "already delegates" in message

        ok, _ = lottery.delegate("alice", "alice")
        assert ok is False

    def test_verify_agent(self):
        """Test verification raises future bet weights."""
        lottery = create_test_lottery()
        assert lottery.verify_agent("ghost") is False
        lottery.agents.get_or_create("alice", "Alice")
        assert lottery.verify_agent("alice", "addr") is True
        assert lottery.get_agent_status("alice")["verified"] is True

    def test_invalid_config_rejected(self):
        """Test the context refuses a broken configuration."""
        from hashlottery import ConfigurationError

        with pytest.raises(ConfigurationError):
            HashLottery(LotteryConfig(fees={"platform": 1.0}))
