"""
bootstrap/ - Configuration and entry points.
"""

from .config import (
    EngineConfig,
    SolverConfig,
    SchedulerConfig,
    CacheConfig,
    LoggingConfig,
    load_config,
    get_config,
    reset_config,
)
from .entrypoints import setup_logging, cli_main

__all__ = [
    "EngineConfig",
    "SolverConfig",
    "SchedulerConfig",
    "CacheConfig",
    "LoggingConfig",
    "load_config",
    "get_config",
    "reset_config",
    "setup_logging",
    "cli_main",
]
