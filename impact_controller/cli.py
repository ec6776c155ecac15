"""Command-line entry point.

Usage:
    impact --package github.com/stretchr/testify --package-file packages.txt \\
        --delta delta.patch --timeout 10m --concurrency 8
"""

from __future__ import annotations

import logging
import sys
from types import SimpleNamespace

import click
from dotenv import load_dotenv
from rich.console import Console

from .config import config_from_cli_args
from .controller import run_impact
from .errors import ConfigError
from .structured_logging import configure_logging


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--package", "-p", envvar="IMPACT_PACKAGE", default=None,
              help="The package to test. Paths in the patch file must be relative to this.")
@click.option("--package-file", "-f", envvar="IMPACT_PACKAGE_FILE", default="packages.txt",
              show_default=True, help="The file containing the list of packages to test.")
@click.option("--delta", "-d", envvar="IMPACT_DELTA", default="delta.patch",
              show_default=True, help="A patch describing the change to test.")
@click.option("--timeout", "-t", envvar="IMPACT_TIMEOUT", default="60m",
              show_default=True, help="How long to wait for the source code fetch before giving up.")
@click.option("--report", "-r", envvar="IMPACT_REPORT", default="report.txt",
              show_default=True, help="Where to write the test report.")
@click.option("--concurrency", "-n", envvar="IMPACT_CONCURRENCY", default=8, type=int,
              show_default=True, help="How many packages to test simultaneously.")
@click.option("--workdir", "-w", envvar="IMPACT_WORKDIR", default=".",
              show_default=True, help="Directory holding the per-package workspaces.")
@click.option("--toolchain", envvar="IMPACT_TOOLCHAIN", default="go",
              show_default=True, help="Toolchain profile used for fetch, test and patch.")
@click.option("--profiles", envvar="IMPACT_PROFILES", default=None,
              help="YAML file with additional toolchain profiles.")
@click.option("--log-format", type=click.Choice(["text", "json"]), default="text",
              show_default=True, help="Progress output format.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and per-package summary.")
def cli(**options):
    """Check that a patch to a shared library does not break its consumers."""
    args = SimpleNamespace(**options)
    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format_json=args.log_format == "json",
    )

    console = Console()
    try:
        config = config_from_cli_args(args)
    except ConfigError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    sys.exit(run_impact(config, console=console))


def main() -> None:
    """Entry point for the CLI.

    Loads environment variables from .env before parsing arguments.
    """
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
