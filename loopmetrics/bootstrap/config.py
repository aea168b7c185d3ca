"""
bootstrap/config.py - Engine configuration

Provides configuration loading from files, environment variables, and defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path
import os
import json
import logging

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    return float(raw) if raw else None


@dataclass
class SolverConfig:
    """Fixed-point solver defaults."""

    max_iterations: int = 100
    threshold: float = 0.001
    deadline_seconds: Optional[float] = None
    warm_start: bool = False

    @classmethod
    def from_env(cls) -> "SolverConfig":
        return cls(
            max_iterations=int(os.getenv("LOOPMETRICS_MAX_ITERATIONS", "100")),
            threshold=float(os.getenv("LOOPMETRICS_THRESHOLD", "0.001")),
            deadline_seconds=_env_optional_float("LOOPMETRICS_DEADLINE_SECONDS"),
            warm_start=_env_bool("LOOPMETRICS_WARM_START", "false"),
        )


@dataclass
class SchedulerConfig:
    """Level scheduler settings."""

    parallel: bool = True
    max_workers: int = 4

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        return cls(
            parallel=_env_bool("LOOPMETRICS_PARALLEL", "true"),
            max_workers=int(os.getenv("LOOPMETRICS_MAX_WORKERS", "4")),
        )


@dataclass
class CacheConfig:
    """Result cache settings."""

    enabled: bool = True
    max_entries: int = 1000
    component_cache: bool = True

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(
            enabled=_env_bool("LOOPMETRICS_CACHE", "true"),
            max_entries=int(os.getenv("LOOPMETRICS_CACHE_MAX_ENTRIES", "1000")),
            component_cache=_env_bool("LOOPMETRICS_COMPONENT_CACHE", "true"),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("LOOPMETRICS_LOG_LEVEL", "INFO"),
            format=os.getenv(
                "LOOPMETRICS_LOG_FORMAT",
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
            log_file=os.getenv("LOOPMETRICS_LOG_FILE"),
            json_logs=_env_bool("LOOPMETRICS_JSON_LOGS", "false"),
        )


@dataclass
class EngineConfig:
    """Root configuration for the simulation engine."""

    environment: str = "development"
    debug: bool = False

    solver: SolverConfig = field(default_factory=SolverConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Additional settings
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("LOOPMETRICS_ENVIRONMENT", "development"),
            debug=_env_bool("LOOPMETRICS_DEBUG", "false"),
            solver=SolverConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            cache=CacheConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "EngineConfig":
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create config from dictionary, layered over the environment."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]
        if "debug" in data:
            config.debug = data["debug"]

        for section in ("solver", "scheduler", "cache", "logging"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Ignoring unknown config key: {section}.{key}")

        if "settings" in data:
            config.settings.update(data["settings"])

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize config to dictionary."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "solver": {
                "max_iterations": self.solver.max_iterations,
                "threshold": self.solver.threshold,
                "deadline_seconds": self.solver.deadline_seconds,
                "warm_start": self.solver.warm_start,
            },
            "scheduler": {
                "parallel": self.scheduler.parallel,
                "max_workers": self.scheduler.max_workers,
            },
            "cache": {
                "enabled": self.cache.enabled,
                "max_entries": self.cache.max_entries,
                "component_cache": self.cache.component_cache,
            },
            "logging": {
                "level": self.logging.level,
                "log_file": self.logging.log_file,
                "json_logs": self.logging.json_logs,
            },
        }


# Global config instance
_config: Optional[EngineConfig] = None


def load_config(filepath: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from file or environment.

    Args:
        filepath: Optional path to JSON config file

    Returns:
        EngineConfig instance
    """
    global _config

    if filepath:
        _config = EngineConfig.from_file(filepath)
    else:
        default_paths = [
            "./loopmetrics.json",
            "./config/loopmetrics.json",
            os.path.expanduser("~/.loopmetrics/config.json"),
        ]

        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                _config = EngineConfig.from_file(path)
                return _config

        _config = EngineConfig.from_env()

    logger.info(f"Configuration loaded: environment={_config.environment}")
    return _config


def get_config() -> EngineConfig:
    """Get current configuration, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded configuration."""
    global _config
    _config = None
