"""Run configuration dataclasses.

Holds every option recognised by an impact run, plus helpers to build a
configuration from parsed CLI arguments.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str | float | int) -> float:
    """Parse a Go-style duration (``90s``, ``60m``, ``1h30m``) into seconds.

    Bare numbers are taken as seconds.

    Raises:
        ConfigError: If the value cannot be parsed.
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    if not text:
        raise ConfigError("Empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ConfigError(f"Invalid duration: {value!r}")
    return total


@dataclass
class ImpactConfig:
    """Configuration for an impact run."""

    package_under_test: str
    package_list_file: str = "packages.txt"
    patch_file: str = "delta.patch"
    fetch_timeout_s: float = 60 * 60.0
    report_file: str = "report.txt"
    concurrency: int = 8
    workdir: str = field(default_factory=os.getcwd)
    toolchain: str = "go"
    profiles_path: str | None = None
    kill_grace_s: float = 5.0
    verbose: bool = False
    log_format: str = "text"  # text | json

    def validate(self) -> None:
        """Check option values.

        Raises:
            ConfigError: On the first invalid option.
        """
        if not self.package_under_test or not self.package_under_test.strip():
            raise ConfigError("Must specify a package to test")
        if self.concurrency < 1:
            raise ConfigError(f"Concurrency must be at least 1, got {self.concurrency}")
        if self.fetch_timeout_s <= 0:
            raise ConfigError(f"Fetch timeout must be positive, got {self.fetch_timeout_s}")
        if self.kill_grace_s < 0:
            raise ConfigError(f"Kill grace period must not be negative, got {self.kill_grace_s}")
        if self.log_format not in ("text", "json"):
            raise ConfigError(f"Unknown log format: {self.log_format!r}")

    def resolve_paths(self) -> ImpactConfig:
        """Make every path option absolute (relative to the current directory)."""
        self.package_list_file = str(Path(self.package_list_file).expanduser().resolve())
        self.patch_file = str(Path(self.patch_file).expanduser().resolve())
        self.report_file = str(Path(self.report_file).expanduser().resolve())
        self.workdir = str(Path(self.workdir).expanduser().resolve())
        if self.profiles_path:
            self.profiles_path = str(Path(self.profiles_path).expanduser().resolve())
        return self

    def as_dict(self) -> dict[str, object]:
        return {
            "target": self.package_under_test,
            "package_file": self.package_list_file,
            "patch": self.patch_file,
            "fetch_timeout_s": self.fetch_timeout_s,
            "report": self.report_file,
            "concurrency": self.concurrency,
            "workdir": self.workdir,
            "toolchain": self.toolchain,
        }


def config_from_cli_args(args) -> ImpactConfig:
    """Create an ImpactConfig from CLI arguments.

    Args:
        args: Parsed command line arguments (argparse.Namespace, click
            params wrapped in a namespace, or similar).

    Returns:
        Validated ImpactConfig with absolute paths.

    Raises:
        ConfigError: If the arguments are missing or invalid.
    """
    config_kwargs: dict[str, object] = {}

    package = getattr(args, "package", None)
    if not package:
        raise ConfigError("Must specify a package to test")
    config_kwargs["package_under_test"] = package

    field_mappings = {
        "package_file": "package_list_file",
        "delta": "patch_file",
        "report": "report_file",
        "concurrency": "concurrency",
        "workdir": "workdir",
        "toolchain": "toolchain",
        "profiles": "profiles_path",
        "verbose": "verbose",
        "log_format": "log_format",
    }

    for cli_name, config_name in field_mappings.items():
        if hasattr(args, cli_name):
            value = getattr(args, cli_name)
            if value is not None:
                config_kwargs[config_name] = value

    timeout = getattr(args, "timeout", None)
    if timeout is not None:
        config_kwargs["fetch_timeout_s"] = parse_duration(timeout)

    config = ImpactConfig(**config_kwargs)
    config.validate()
    return config.resolve_paths()
