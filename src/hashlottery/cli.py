"""
hashlottery/cli.py

Command line entry point.

    hashlottery simulate --rounds 3
    hashlottery simulate --seed <hex> --json
    hashlottery config
"""

import json
import logging
import time
from typing import List, Optional

import click
import trio

from .collaborators import LoggingNotificationSink, RandomEntropySource, StaticEntropySource
from .config import LotteryConfig
from .engine.settlement import SettlementResult
from .errors import ConfigurationError
from .lottery import HashLottery
from .metrics import MetricsCollector

logger = logging.getLogger("hashlottery.cli")

DEMO_AGENTS = (
    ("agent1", "Icehorserider"),
    ("agent2", "Trader_Anya"),
    ("agent3", "Faircaster"),
    ("agent4", "KraticBot"),
)

# (agent id, prediction, confidence, stake)
DEMO_BETS = (
    ("agent1", "Yes", "high", 1000),
    ("agent2", "No", "medium", 500),
    ("agent3", "Yes", "high", 1500),
    ("agent4", "No", "low", 300),
)


async def run_simulation(lottery: HashLottery, rounds: int = 1, metrics: Optional[MetricsCollector] = None) -> List[SettlementResult]:
    """
    Demo round(s): register agents, level two of them, stake a validator,
    set up a delegation, then open, bet on and settle ``rounds`` epochs.
    """
    names = dict(DEMO_AGENTS)
    for agent_id, name in DEMO_AGENTS:
        lottery.agents.get_or_create(agent_id, name)

    lottery.agents.add_experience("agent1", 600, "Bootstrap")
    lottery.agents.add_experience("agent2", 12000, "Bootstrap")

    ok, message = lottery.become_validator("agent2", lottery.config.validator_min_stake)
    logger.info(f"become_validator: {ok} ({message})")
    ok, message = lottery.delegate("agent3", "agent1")
    logger.info(f"delegate: {ok} ({message})")

    results = []
    for _ in range(rounds):
        epoch = await lottery.open_epoch()
        for agent_id, prediction, confidence, stake in DEMO_BETS:
            await lottery.place_bet(
                epoch.epoch_id, agent_id, names[agent_id], None,
                prediction, confidence, stake,
            )

        started = time.perf_counter()
        result = await lottery.settle(epoch.epoch_id)
        if metrics is not None:
            metrics.record_settle_latency(time.perf_counter() - started)
        results.append(result)
    return results


def _print_report(lottery: HashLottery, results: List[SettlementResult]) -> None:
    for result in results:
        click.echo(f"\n{result.epoch_id}: hash {result.hash_value:04x}, tier {result.tier}, pool {result.total_stake} sats")
        if result.has_winner:
            click.echo(f"  winner: {result.winner_name} ({result.prize} sats)")
        else:
            click.echo("  no winner")
        fees = result.fees
        click.echo(f"  fees: platform {fees.platform}, validator {fees.validator}, season {fees.season}")

    click.echo("\nAgents:")
    for agent in lottery.agents.all():
        status = lottery.get_agent_status(agent.agent_id)
        click.echo(
            f"  {status['name']}: Lv.{status['level']} | XP: {status['xp']} | "
            f"Streak: {status['streak']} | Wins: {status['stats']['total_wins']}"
        )

    click.echo("\nSeason leaderboard:")
    for rank, standing in enumerate(lottery.season.leaderboard(), start=1):
        click.echo(f"  #{rank}: {standing.agent_name} - points {standing.experience}, wins {standing.wins}")
    click.echo(f"  prize fund: {lottery.season.season.prize_fund} sats")


@click.group()
@click.option(
    '--log-level',
    type=click.Choice(['debug', 'info', 'warning', 'error'], case_sensitive=False),
    default='warning',
    help='Logging verbosity',
)
@click.pass_context
def main(ctx, log_level):
    """Prediction lottery engine."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = LotteryConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(e.message)


@main.command()
@click.option('--rounds', type=click.IntRange(min=1), default=1, help='Number of epochs to run')
@click.option('--seed', default=None, help='Fixed external seed (hex); random if omitted')
@click.option('--json', 'as_json', is_flag=True, help='Print settlement results as JSON')
@click.option('--metrics', 'show_metrics', is_flag=True, help='Print Prometheus metrics afterwards')
@click.pass_obj
def simulate(config, rounds, seed, as_json, show_metrics):
    """Run a demo round with four agents."""
    source = StaticEntropySource(seed) if seed else RandomEntropySource()
    lottery = HashLottery(config, entropy_source=source, notifier=LoggingNotificationSink())
    metrics = MetricsCollector(lottery)

    results = trio.run(run_simulation, lottery, rounds, metrics)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        _print_report(lottery, results)

    if show_metrics:
        click.echo(metrics.collect(), nl=False)


@main.command(name="config")
@click.pass_obj
def show_config(config):
    """Print the effective configuration as JSON."""
    click.echo(json.dumps(config.to_dict(), indent=2))


if __name__ == "__main__":
    main()
