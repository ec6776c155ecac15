"""Run driver: wires feed, workers, collector and report together."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from .collector import Collector, CompletionReason
from .config import ImpactConfig
from .errors import ConfigError, ReportError
from .feed import DEFAULT_QUEUE_SIZE, WorkFeed, load_package_list
from .pipeline import StagePipeline
from .profiles import resolve_toolchain
from .report import render_summary, write_report
from .results import RunState
from .structured_logging import get_logger
from .worker_pool import Pipeline, WorkerPool

logger = get_logger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class RunOutcome:
    """What a finished (or interrupted) run produced."""

    reason: CompletionReason
    state: RunState
    total: int
    duration_s: float

    @property
    def interrupted(self) -> bool:
        return self.reason is CompletionReason.INTERRUPTED


@contextlib.contextmanager
def interrupt_handlers(loop: asyncio.AbstractEventLoop, callback) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``callback`` while the block runs."""
    installed = []
    for sig in INTERRUPT_SIGNALS:
        try:
            loop.add_signal_handler(sig, callback)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not on the main thread, or no signal support on this platform.
            logger.debug("Cannot install signal handler", signal=sig.name)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


class ImpactController:
    """Runs every package through the pipeline on a bounded worker pool."""

    def __init__(
        self,
        pipeline: Pipeline,
        concurrency: int,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        handle_signals: bool = True,
    ):
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.queue_size = queue_size
        self.handle_signals = handle_signals
        self.collector: Collector | None = None
        self.pool: WorkerPool | None = None
        self._drain: asyncio.Future[None] | None = None
        self._abandon = False

    def request_stop(self) -> None:
        """Operator interrupt.

        During the run this ends collection; while draining in-flight items
        after an interrupt it stops waiting for them.
        """
        if self._drain is not None:
            self._abandon = True
            self._drain.cancel()
        elif self.collector is not None:
            self.collector.request_stop()

    def _signals(self, loop: asyncio.AbstractEventLoop) -> contextlib.AbstractContextManager:
        if self.handle_signals:
            return interrupt_handlers(loop, self.request_stop)
        return contextlib.nullcontext()

    async def run(self, identifiers: Sequence[str]) -> RunOutcome:
        """Process ``identifiers`` until every reply is in or an interrupt arrives.

        On interrupt the outcome covers the replies received so far and is
        returned without waiting for items still in flight; those keep
        running and can be awaited with ``drain()``.
        """
        start = time.monotonic()
        feed = WorkFeed(identifiers, maxsize=self.queue_size)
        replies: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.collector = collector = Collector(len(feed), replies)
        self.pool = pool = WorkerPool(self.pipeline, self.concurrency)

        logger.info(f"Testing {len(feed)} packages", concurrency=self.concurrency)

        with self._signals(asyncio.get_running_loop()):
            producer = asyncio.create_task(feed.produce(self.concurrency), name="impact-feed")
            receiver = asyncio.create_task(collector.collect(), name="impact-collector")
            pool.start(feed, replies)
            reason = await collector.wait_for_completion()
        state = collector.snapshot()

        if reason is CompletionReason.INTERRUPTED:
            logger.warning(
                "Run interrupted, reporting partial results",
                received=state.received,
                expected=len(feed),
                in_flight=pool.in_flight,
            )
            feed.close_early()
            pool.stop()
        else:
            await pool.join()

        for task in (producer, receiver):
            task.cancel()
        await asyncio.gather(producer, receiver, return_exceptions=True)

        return RunOutcome(
            reason=reason,
            state=state,
            total=len(feed),
            duration_s=time.monotonic() - start,
        )

    async def drain(self) -> None:
        """Wait for items still in flight after an interrupt.

        Their outcomes are logged, not reported. A further interrupt stops
        waiting and cancels them.
        """
        if self.pool is None or not self.pool.in_flight:
            return
        logger.info("Waiting for in-flight packages to finish", count=self.pool.in_flight)

        self._abandon = False
        self._drain = asyncio.ensure_future(self.pool.join())
        try:
            with self._signals(asyncio.get_running_loop()):
                await self._drain
        except asyncio.CancelledError:
            if not self._abandon:
                raise
            logger.warning("Abandoning in-flight packages", count=self.pool.in_flight)
            await self.pool.cancel()
        finally:
            self._drain = None


def build_controller(config: ImpactConfig) -> ImpactController:
    """Create the controller for ``config``.

    Raises:
        FileNotFoundError: If the toolchain profile does not exist.
        ConfigError: If the toolchain profile is malformed.
    """
    toolchain = resolve_toolchain(config.toolchain, config.profiles_path)
    pipeline = StagePipeline(config, toolchain)
    return ImpactController(pipeline, config.concurrency)


def run_impact(config: ImpactConfig, console: Console | None = None) -> int:
    """Load packages, run the check, print the summary and write the report.

    After an interrupt the partial report is written first; packages still
    in flight are then allowed to finish before returning.

    Returns:
        Process exit status: 0 on success, 1 on configuration, package
        list or report failures.
    """
    console = console or Console()
    logger.debug("Configuration", **config.as_dict())

    logger.info(f"Loading packages from {config.package_list_file}")
    try:
        packages = load_package_list(config.package_list_file)
    except OSError as e:
        logger.error(f"Failed to load packages: {e}")
        return 1

    try:
        controller = build_controller(config)
    except (OSError, ConfigError) as e:
        logger.error(f"Failed to load toolchain '{config.toolchain}': {e}")
        return 1

    try:
        Path(config.workdir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create work directory {config.workdir}: {e}")
        return 1

    return asyncio.run(_run_and_report(controller, packages, config, console))


async def _run_and_report(
    controller: ImpactController,
    packages: Sequence[str],
    config: ImpactConfig,
    console: Console,
) -> int:
    outcome = await controller.run(packages)

    render_summary(outcome.state, outcome.total, console=console, verbose=config.verbose)

    status = 0
    try:
        write_report(config.report_file, outcome.state.replies)
    except ReportError as e:
        logger.error(str(e))
        status = 1

    if outcome.interrupted:
        await controller.drain()

    if status == 0:
        logger.info(
            "Run finished",
            reason=outcome.reason.value,
            replies=outcome.state.received,
            total=outcome.total,
            duration_s=round(outcome.duration_s, 1),
        )
    return status
