"""
bootstrap/entrypoints.py - Application entry points

Provides logging setup and the command line runner for the sample cost model.
"""

from __future__ import annotations
from typing import List, Optional
import argparse
import json
import logging
import sys

from loopmetrics.bootstrap.config import EngineConfig, get_config, load_config
from loopmetrics.errors import LoopMetricsError

logger = logging.getLogger("loopmetrics.bootstrap.entrypoints")


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        return json.dumps({
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        })


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
    fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = JSONFormatter() if json_format else logging.Formatter(fmt)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace handlers from an earlier call
    for handler in list(root_logger.handlers):
        if getattr(handler, "_loopmetrics", False):
            root_logger.removeHandler(handler)
            handler.close()

    # Console handler; stdout is left for results
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    console_handler._loopmetrics = True
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        file_handler._loopmetrics = True
        root_logger.addHandler(file_handler)


def _format_result(result) -> str:
    lines = [f"Scenario {result.scenario} (model v{result.model_version})"]
    for group in result.diagnostics.per_group:
        status = (
            f"Converged in {group.iterations} iterations"
            if group.converged
            else f"Did not converge after {group.iterations} iterations"
        )
        cached = " [cached]" if group.from_cache else ""
        lines.append(f"  {' <-> '.join(group.members)}: {status}{cached}")
    width = max((len(i) for i in result.values), default=0)
    for identity, value in result.values.items():
        lines.append(f"  {identity.ljust(width)}  {value:.6f}")
    return "\n".join(lines)


def cli_main(args: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code: 0 when every group converged, 2 when a group did not,
        1 on errors
    """
    parser = argparse.ArgumentParser(
        description="Run scenarios of the sample cost model",
        prog="loopmetrics",
    )

    parser.add_argument(
        "-s", "--scenario",
        action="append",
        help="Scenario to run (repeatable; default: all)",
        default=None,
    )
    parser.add_argument(
        "--scenarios-file",
        help="JSON file with additional scenarios",
        default=None,
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Iteration cap per cyclic group",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Convergence threshold",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Wall-clock budget per run in seconds",
    )
    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Evaluate components one at a time",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path",
        default=None,
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    parsed = parser.parse_args(args)

    config: EngineConfig = load_config(parsed.config) if parsed.config else get_config()

    # Setup logging
    log_level = "DEBUG" if parsed.verbose else (parsed.log_level or config.logging.level)
    setup_logging(
        level=log_level,
        log_file=parsed.log_file or config.logging.log_file,
        json_format=config.logging.json_logs,
        fmt=config.logging.format,
    )

    try:
        from loopmetrics.contracts.loader import load_scenario_file
        from loopmetrics.kernel.context import RunOptions
        from loopmetrics.kernel.engine import SimulationEngine
        from loopmetrics.models.cost_model import build_cost_model

        registry, scenarios = build_cost_model()
        if parsed.scenarios_file:
            load_scenario_file(parsed.scenarios_file, scenarios, replace=True)

        overrides = {}
        if parsed.max_iterations is not None:
            overrides["max_iterations"] = parsed.max_iterations
        if parsed.threshold is not None:
            overrides["threshold"] = parsed.threshold
        if parsed.deadline is not None:
            overrides["deadline_seconds"] = parsed.deadline
        if parsed.sequential:
            overrides["parallel"] = False
        options = RunOptions.from_config(config, **overrides)

        engine = SimulationEngine(registry, scenarios, config=config)
        names = parsed.scenario or scenarios.list_scenarios()
        results = [engine.run(name, options) for name in names]

        if parsed.json:
            print(json.dumps([r.to_payload().model_dump() for r in results], indent=2))
        else:
            print("\n\n".join(_format_result(r) for r in results))

        return 0 if all(r.converged for r in results) else 2

    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except (LoopMetricsError, ValueError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(cli_main())
