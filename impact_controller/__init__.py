# impact_controller package

"""
Impact Controller - checks that a patch to a shared library does not break
the packages that depend on it.

Core Modules:
    - cli: command-line entry point
    - controller: run driver wiring feed, workers and collector
    - config: configuration dataclass and CLI mapping
    - feed: package list loading and the bounded work item feed
    - pipeline: fetch / pre-test / patch / post-test stages per package
    - timeout_guard: deadline and process-group kill for the fetch stage
    - worker_pool: fixed-size pool of asyncio workers
    - collector: reply aggregation and completion detection
    - report: report file and console summary
    - profiles: toolchain argv templates loaded from YAML
    - structured_logging: contextvars-aware logging
"""

from __future__ import annotations

from .config import ImpactConfig, config_from_cli_args, parse_duration
from .errors import ConfigError, ImpactError, ReportError
from .results import Classification, Reply, RunState, Stage, WorkItem

__all__ = [
    "Classification",
    "ConfigError",
    "ImpactConfig",
    "ImpactError",
    "Reply",
    "ReportError",
    "RunState",
    "Stage",
    "WorkItem",
    "config_from_cli_args",
    "parse_duration",
]

__version__ = "0.1.0"
