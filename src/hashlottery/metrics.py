"""
hashlottery/metrics.py

Prometheus metrics collection for hashlottery.

Reads the lottery's stores at collection time and renders the Prometheus
text exposition format. Counters that are not derivable from the stores
(settle latency) are recorded by the caller.
"""

import time
import logging
from collections import Counter
from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from .lottery import HashLottery

logger = logging.getLogger("hashlottery.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for a HashLottery.

    Usage:
        lottery = HashLottery()
        metrics = MetricsCollector(lottery)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "hashlottery_epochs": {
            "type": "gauge",
            "help": "Number of epochs by status",
        },
        "hashlottery_bets_total": {
            "type": "counter",
            "help": "Total number of bets placed",
        },
        "hashlottery_staked_sats_total": {
            "type": "counter",
            "help": "Total satoshis staked on bets",
        },
        "hashlottery_prizes_paid_sats_total": {
            "type": "counter",
            "help": "Total satoshis awarded to winners",
        },
        "hashlottery_settlements_total": {
            "type": "counter",
            "help": "Settled epochs by winning tier (0 = no winner)",
        },
        "hashlottery_agents": {
            "type": "gauge",
            "help": "Number of registered agents",
        },
        "hashlottery_validators": {
            "type": "gauge",
            "help": "Number of staked validators",
        },
        "hashlottery_validator_stake_sats": {
            "type": "gauge",
            "help": "Total satoshis staked by validators",
        },
        "hashlottery_season_prize_fund_sats": {
            "type": "gauge",
            "help": "Current season prize fund",
        },
        "hashlottery_settle_seconds": {
            "type": "histogram",
            "help": "Settlement latency in seconds",
        },
        "hashlottery_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, lottery: "HashLottery"):
        """
        Initialize metrics collector.

        Args:
            lottery: HashLottery instance to collect metrics from
        """
        self.lottery = lottery
        self._start_time = time.time()

        # Histogram buckets for settle latency
        self._latency_buckets = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
        self._latency_counts = {b: 0 for b in self._latency_buckets}
        self._latency_sum = 0.0
        self._latency_count = 0

    def record_settle_latency(self, latency_seconds: float) -> None:
        """Record how long a settlement took."""
        self._latency_sum += latency_seconds
        self._latency_count += 1
        for bucket in self._latency_buckets:
            if latency_seconds <= bucket:
                self._latency_counts[bucket] += 1

    def _tier_counts(self) -> Dict[int, int]:
        return dict(Counter(
            epoch.winning_tier for epoch in self.lottery.epochs.all() if epoch.is_settled
        ))

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []
        described = set()

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            if name not in described:
                metric_def = self.METRICS.get(name, {})
                lines.append(f"# HELP {name} {metric_def.get('help', '')}")
                lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
                described.add(name)

            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        try:
            stats = self.get_stats()

            add_metric("hashlottery_epochs", stats["epochs_open"], {"status": "open"})
            add_metric("hashlottery_epochs", stats["epochs_closed"], {"status": "closed"})
            add_metric("hashlottery_bets_total", stats["bets"])
            add_metric("hashlottery_staked_sats_total", stats["staked_sats"])
            add_metric("hashlottery_prizes_paid_sats_total", stats["prizes_paid_sats"])

            for tier, count in sorted(self._tier_counts().items()):
                add_metric("hashlottery_settlements_total", count, {"tier": str(tier)})

            add_metric("hashlottery_agents", stats["agents"])
            add_metric("hashlottery_validators", stats["validators"])
            add_metric("hashlottery_validator_stake_sats", stats["validator_stake_sats"])
            add_metric("hashlottery_season_prize_fund_sats", stats["season_prize_fund_sats"])
            add_metric("hashlottery_uptime_seconds", stats["uptime_seconds"])

            if self._latency_count > 0:
                name = "hashlottery_settle_seconds"
                lines.append(f"# HELP {name} {self.METRICS[name]['help']}")
                lines.append(f"# TYPE {name} histogram")
                for bucket in self._latency_buckets:
                    lines.append(f'{name}_bucket{{le="{bucket}"}} {self._latency_counts[bucket]}')
                lines.append(f'{name}_bucket{{le="+Inf"}} {self._latency_count}')
                lines.append(f"{name}_sum {self._latency_sum}")
                lines.append(f"{name}_count {self._latency_count}")

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON output).

        Returns:
            Dictionary of metric values
        """
        epochs = self.lottery.epochs.all()
        validators = self.lottery.agents.validators()
        return {
            "epochs_open": sum(1 for e in epochs if e.is_open),
            "epochs_closed": sum(1 for e in epochs if not e.is_open),
            "bets": sum(len(e.bets) for e in epochs),
            "staked_sats": sum(e.total_stake for e in epochs),
            "prizes_paid_sats": sum(e.prize_amount for e in epochs if e.is_settled),
            "agents": len(self.lottery.agents),
            "validators": len(validators),
            "validator_stake_sats": sum(v.stake_amount for v in validators),
            "season_prize_fund_sats": self.lottery.season.season.prize_fund,
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset_counters(self) -> None:
        """Reset latency counters (useful for testing)."""
        self._latency_counts = {b: 0 for b in self._latency_buckets}
        self._latency_sum = 0.0
        self._latency_count = 0
