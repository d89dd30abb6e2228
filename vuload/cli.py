"""CLI entry point for the load generator."""

import json
import logging
import sys

import click

from vuload.evidence import (
    ReportParseError,
    append_event,
    create_event,
    load_snapshot,
    render_report,
    result_to_dict,
    verdict_to_dict,
)
from vuload.loader import ConfigurationError, load_config
from vuload.runner import EXIT_FATAL, EXIT_PASS, EXIT_THRESHOLD_BREACH, exit_code, run_load_test
from vuload.schedule import Schedule
from vuload.thresholds import all_passed, evaluate_all, required_percentiles

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT)


def _load_or_exit(path: str):
    try:
        return load_config(path)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_FATAL)


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    envvar="VULOAD_LOG_LEVEL",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity.",
)
def main(log_level):
    """vuload -- staged virtual-user load generator for HTTP endpoints."""
    _configure_logging(log_level)


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to a run configuration file (YAML or JSON).",
)
@click.option(
    "--out",
    default=None,
    type=click.Path(),
    help="Optional output path for the JSON report.",
)
@click.option(
    "--log",
    "log_path",
    default=None,
    type=click.Path(),
    help="Optional path to the run log (JSONL). Appends an entry when provided.",
)
def run(config_path, out, log_path):
    """Run a load test and exit non-zero if any threshold fails."""
    config = _load_or_exit(config_path)
    if config.scenario is None:
        click.echo("Error: config has no 'scenario' section", err=True)
        sys.exit(EXIT_FATAL)

    try:
        result = run_load_test(config)
    except KeyboardInterrupt:
        click.echo("Interrupted.", err=True)
        sys.exit(EXIT_FATAL)

    code = exit_code(result)
    click.echo(render_report(result))

    if out:
        with open(out, "w") as f:
            f.write(json.dumps(result_to_dict(result, code), indent=2) + "\n")
        click.echo(f"Report written to {out}")

    if log_path:
        append_event(create_event(result, config_path, code), log_path)
        click.echo(f"Run logged to {log_path}")

    sys.exit(code)


@main.command()
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to a run configuration file (YAML or JSON).",
)
@click.option(
    "--step",
    default=1.0,
    show_default=True,
    type=click.FloatRange(min=0.001),
    help="Seconds between timeline samples.",
)
def plan(config_path, step):
    """Print the target VU timeline without sending any traffic."""
    config = _load_or_exit(config_path)
    schedule = Schedule(config.stages, start_target=config.start_target)
    output = {
        "total_duration_seconds": schedule.total_duration,
        "max_target": schedule.max_target,
        "stages": [
            {"duration_seconds": s.duration_seconds, "target": s.target} for s in config.stages
        ],
        "timeline": [{"t": t, "target": target} for t, target in schedule.timeline(step)],
    }
    click.echo(json.dumps(output, indent=2))


@main.command()
@click.option(
    "--report",
    required=True,
    type=click.Path(exists=True),
    help="Path to a JSON report written by 'run --out'.",
)
@click.option(
    "--config",
    "config_path",
    required=True,
    type=click.Path(exists=True),
    help="Path to the configuration whose thresholds to evaluate.",
)
def evaluate(report, config_path):
    """Re-evaluate a saved report against a configuration's thresholds."""
    config = _load_or_exit(config_path)
    try:
        snapshot = load_snapshot(report, required_percentiles(config.thresholds))
    except ReportParseError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_FATAL)

    verdicts = evaluate_all(config.thresholds, snapshot)
    passed = all_passed(verdicts)
    click.echo(f"Status: {'PASS' if passed else 'FAIL'}")
    click.echo(json.dumps([verdict_to_dict(v) for v in verdicts], indent=2))
    sys.exit(EXIT_PASS if passed else EXIT_THRESHOLD_BREACH)


if __name__ == "__main__":
    main()
