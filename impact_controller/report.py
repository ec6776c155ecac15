"""Report file and console summary."""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.table import Table

from .errors import ReportError
from .results import Classification, Reply, RunState
from .structured_logging import get_logger

logger = get_logger(__name__)

SUMMARY_LABELS = {
    Classification.FETCH_TIMED_OUT: "fetch timed out",
    Classification.FETCH_FAILED: "failed fetching",
    Classification.FAILED_PRE_PATCH_TEST: "failed pre-patch testing",
    Classification.PATCH_FAILED: "failed to apply the patch",
    Classification.FAILED_POST_PATCH_TEST: "failed post-patch testing",
    Classification.FAILED_UNEXPECTEDLY: "failed in unexpected ways",
    Classification.PASSED: "passed testing",
}


def format_record(reply: Reply) -> str:
    """One report line: ``0003, F1, example.com/foo, "detail"``."""
    line = f"{reply.index:04d}, {reply.classification.code}, {reply.identifier}, "
    if reply.detail:
        detail = reply.detail.replace('"', "'").replace("\n", " ")
        line += f'"{detail}"'
    return line


def write_report(filename: str, replies: Iterable[Reply]) -> int:
    """Write one line per reply, in arrival order.

    Returns:
        Number of records written.

    Raises:
        ReportError: If the file cannot be written.
    """
    count = 0
    try:
        with open(filename, "w", encoding="utf-8") as f:
            for reply in replies:
                f.write(format_record(reply) + "\n")
                count += 1
    except OSError as e:
        raise ReportError(f"Failed to write test report {filename}: {e}") from e
    logger.info("Wrote report", path=filename, records=count)
    return count


def render_summary(
    state: RunState,
    total: int,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """Print per-classification counts; with ``verbose`` list the failures."""
    console = console or Console()

    table = Table(title=f"Tested {state.received}/{total} packages", show_header=True)
    table.add_column("Code", style="cyan")
    table.add_column("Result")
    table.add_column("Count", justify="right", style="yellow")

    for classification, label in SUMMARY_LABELS.items():
        table.add_row(classification.code, label, str(state.count(classification)))

    console.print(table)

    if not verbose:
        return

    for classification, replies in state.by_classification().items():
        if classification is Classification.PASSED or not replies:
            continue
        console.print(f"[bold]{SUMMARY_LABELS[classification]}[/bold]")
        for reply in sorted(replies, key=lambda r: r.index):
            console.print(f"    {reply.index:04d}: {reply.identifier}")
