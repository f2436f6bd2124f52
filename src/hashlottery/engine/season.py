"""
hashlottery/engine/season.py

Season leaderboard.

A season is a fixed window (30 days by default) with its own standings,
separate from lifetime agent XP. Agents join on their first bet and earn
season points at every settlement they take part in. The season fee of
every settled epoch accumulates in the season prize fund; the top
finishers' shares of that fund are reported by ``reward_preview``.

Seasons are not rotated automatically.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Dict, List, Optional

from ..config import LotteryConfig

logger = logging.getLogger("hashlottery.engine.season")

SECONDS_PER_DAY = 86400


@dataclass
class SeasonStanding:
    """One agent's season record."""
    agent_id: str
    agent_name: str
    experience: int = 0     # Season points, independent of lifetime XP
    wins: int = 0
    epochs: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Season:
    season_id: int
    started_at: float
    ends_at: float
    standings: Dict[str, SeasonStanding] = field(default_factory=dict)
    prize_fund: int = 0

    def to_dict(self) -> dict:
        return {
            "season_id": self.season_id,
            "started_at": self.started_at,
            "ends_at": self.ends_at,
            "participants": len(self.standings),
            "prize_fund": self.prize_fund,
        }


class SeasonLeaderboard:
    """Owns the current Season."""

    def __init__(self, config: Optional[LotteryConfig] = None, season_id: int = 1, started_at: Optional[float] = None):
        self.config = config or LotteryConfig()
        start = time.time() if started_at is None else started_at
        self.season = Season(
            season_id=season_id,
            started_at=start,
            ends_at=start + self.config.season_duration_days * SECONDS_PER_DAY,
        )

    def is_active(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.season.started_at <= now < self.season.ends_at

    def get(self, agent_id: str) -> Optional[SeasonStanding]:
        return self.season.standings.get(agent_id)

    def join(self, agent_id: str, agent_name: str) -> SeasonStanding:
        """Get the agent's standing, adding it on first sight."""
        standing = self.season.standings.get(agent_id)
        if standing is None:
            standing = SeasonStanding(agent_id=agent_id, agent_name=agent_name)
            self.season.standings[agent_id] = standing
            logger.debug(f"{agent_name} joined season {self.season.season_id}")
        return standing

    def record_participation(self, agent_id: str, agent_name: str, points: int) -> SeasonStanding:
        standing = self.join(agent_id, agent_name)
        standing.experience += points
        standing.epochs += 1
        return standing

    def record_win(self, agent_id: str, agent_name: str, points: int) -> SeasonStanding:
        standing = self.join(agent_id, agent_name)
        standing.experience += points
        standing.wins += 1
        return standing

    def add_to_fund(self, amount: int) -> int:
        if amount < 0:
            raise ValueError(f"Season fund contribution must be non-negative, got {amount}")
        self.season.prize_fund += amount
        return self.season.prize_fund

    def leaderboard(self, limit: int = 10) -> List[SeasonStanding]:
        """Standings by season points, then wins, then agent id."""
        ranked = sorted(
            self.season.standings.values(),
            key=lambda s: (-s.experience, -s.wins, s.agent_id),
        )
        return ranked[:limit]

    def reward_preview(self) -> List[dict]:
        """What the current top finishers would receive from the prize fund."""
        preview = []
        top = self.leaderboard(len(self.config.season_top_rewards))
        for rank, (standing, share) in enumerate(zip(top, self.config.season_top_rewards), start=1):
            preview.append({
                "rank": rank,
                "agent_id": standing.agent_id,
                "agent_name": standing.agent_name,
                "share": share,
                "amount": int(Decimal(self.season.prize_fund) * Decimal(str(share))),
            })
        return preview

    def to_dict(self, limit: int = 10) -> dict:
        result = self.season.to_dict()
        result["leaderboard"] = [s.to_dict() for s in self.leaderboard(limit)]
        result["rewards"] = self.reward_preview()
        return result
