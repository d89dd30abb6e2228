"""Wire a RunConfig into a scheduler run and map results to exit codes."""

from typing import Optional

from vuload.aggregator import MetricsAggregator
from vuload.loader import ConfigurationError
from vuload.models import RunConfig, RunResult
from vuload.scenario import Scenario, build_scenario
from vuload.schedule import Schedule
from vuload.scheduler import VUScheduler
from vuload.transport import HttpxSender

# Three-state exit codes so CI can tell "thresholds failed" from "run crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_FATAL = 2


def exit_code(result: RunResult) -> int:
    if result.fatal_error is not None:
        return EXIT_FATAL
    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


def build_scheduler(
    config: RunConfig,
    scenario: Optional[Scenario] = None,
    sender=None,
    aggregator: Optional[MetricsAggregator] = None,
) -> VUScheduler:
    """Assemble a scheduler from configuration.

    Args:
        config: Validated run configuration.
        scenario: Overrides ``config.scenario`` when given.
        sender: HTTP collaborator; an ``HttpxSender`` sized to the
            schedule's peak VU count is created when omitted.
        aggregator: Defaults to a fresh ``MetricsAggregator``.

    Raises:
        ConfigurationError: If no scenario is available.
    """
    if scenario is None:
        if config.scenario is None:
            raise ConfigurationError("no scenario configured")
        scenario = build_scenario(config.scenario)

    schedule = Schedule(config.stages, start_target=config.start_target)
    if sender is None:
        sender = HttpxSender(
            timeout=config.request_timeout,
            max_connections=max(schedule.max_target, 1),
        )
    return VUScheduler(
        schedule=schedule,
        scenario=scenario,
        sender=sender,
        aggregator=aggregator or MetricsAggregator(),
        think_time=config.think_time,
        thresholds=config.thresholds,
        tick_interval=config.tick_interval,
        threshold_interval=config.threshold_interval,
        graceful_stop=config.graceful_stop,
        max_scenario_failures=config.max_scenario_failures,
    )


def run_load_test(config: RunConfig, scenario: Optional[Scenario] = None, sender=None) -> RunResult:
    """Run ``config`` to completion and return its result."""
    owned_sender = None
    if sender is None:
        owned_sender = sender = HttpxSender(
            timeout=config.request_timeout,
            max_connections=max(Schedule(config.stages, config.start_target).max_target, 1),
        )
    try:
        scheduler = build_scheduler(config, scenario=scenario, sender=sender)
        return scheduler.run()
    finally:
        if owned_sender is not None:
            owned_sender.close()
