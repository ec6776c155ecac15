"""Per-package stage pipeline.

Runs the four stages for one work item, strictly in order:

1. Fetch       - acquire the consumer's source (bounded by the timeout guard)
2. Pre-test    - consumer tests against the unmodified library
3. Patch       - apply the candidate patch to the library under test
4. Post-test   - consumer tests against the patched library

The first failing stage decides the item's classification. A consumer
that already fails before the patch is not tested further.
"""

from __future__ import annotations

import time

from .config import ImpactConfig
from .exec_utils import run_command
from .profiles import Toolchain
from .results import Classification, Reply, Stage, WorkItem
from .structured_logging import get_logger
from .timeout_guard import TimeoutGuard
from .workspace_manager import ItemWorkspace, WorkspaceManager

logger = get_logger(__name__)


class StagePipeline:
    """Classify a single work item by running its stages."""

    def __init__(
        self,
        config: ImpactConfig,
        toolchain: Toolchain,
        guard: TimeoutGuard | None = None,
        workspaces: WorkspaceManager | None = None,
    ):
        self.config = config
        self.toolchain = toolchain
        self.guard = guard or TimeoutGuard(config.fetch_timeout_s, config.kill_grace_s)
        self.workspaces = workspaces or WorkspaceManager(config.workdir)

    async def run(self, item: WorkItem, worker_id: int | None = None) -> Reply:
        """Run every stage for ``item`` and return its Reply.

        Never raises for item-level problems; tooling errors become
        ``FAILED_UNEXPECTEDLY``. Cancellation is propagated.
        """
        start = time.monotonic()
        stages: list[Stage] = []

        with logger.context(item=item.index, package=item.identifier, worker=worker_id):
            try:
                classification, detail = await self._run_stages(item, stages)
            except Exception as e:
                logger.exception("Failed unexpectedly", exc=e)
                classification = Classification.FAILED_UNEXPECTEDLY
                detail = f"{type(e).__name__}: {e}"

            if classification is Classification.PASSED:
                logger.info("Passed")

        return Reply(
            item=item,
            classification=classification,
            detail=detail,
            stages=tuple(stages),
            worker_id=worker_id,
            duration_s=time.monotonic() - start,
        )

    async def _run_stages(
        self, item: WorkItem, stages: list[Stage]
    ) -> tuple[Classification, str | None]:
        ws = self.workspaces.create(item)
        logger.info(f"Checking out {item.identifier} into {ws.root}")

        values = {
            "package": item.identifier,
            "workspace": str(ws.root),
            "target": self.config.package_under_test,
            "patch": self.config.patch_file,
        }
        env = self.toolchain.render_env(**values)

        stages.append(Stage.FETCH)
        with logger.context(stage=Stage.FETCH.value):
            logger.info("Fetching code...")
            outcome = await self.guard.run(
                self.toolchain.render(self.toolchain.fetch, **values),
                cwd=str(ws.root),
                env=env,
                log_path=ws.fetch_log,
            )
            if outcome.timed_out:
                return (
                    Classification.FETCH_TIMED_OUT,
                    f"fetch did not finish within {self.guard.timeout_s:g}s and was killed",
                )
            if not outcome.ok:
                logger.info("Failed to fetch code", exit_code=outcome.exit_code)
                return (
                    Classification.FETCH_FAILED,
                    _status_detail("fetch", outcome.exit_code, ws.fetch_log.name),
                )

        test_argv = self.toolchain.render(self.toolchain.test, **values)

        stages.append(Stage.PRE_TEST)
        with logger.context(stage=Stage.PRE_TEST.value):
            logger.info("Running pre-patch tests")
            result = await run_command(test_argv, str(ws.root), env, ws.pre_test_log)
            if not result.ok:
                logger.info("Failed pre-patch tests. No further testing.", exit_code=result.exit_code)
                return (
                    Classification.FAILED_PRE_PATCH_TEST,
                    _status_detail("pre-patch tests", result.exit_code, ws.pre_test_log.name),
                )

        stages.append(Stage.PATCH)
        with logger.context(stage=Stage.PATCH.value):
            logger.info("Applying patch")
            result = await self._apply_patch(ws, values, env)
            if not result.ok:
                logger.info("Failed to apply patch", exit_code=result.exit_code)
                return (
                    Classification.PATCH_FAILED,
                    _status_detail("patch", result.exit_code, ws.patch_log.name),
                )

        stages.append(Stage.POST_TEST)
        with logger.context(stage=Stage.POST_TEST.value):
            logger.info("Running post-patch tests")
            result = await run_command(test_argv, str(ws.root), env, ws.post_test_log)
            if not result.ok:
                logger.info("Failed post-patch tests", exit_code=result.exit_code)
                return (
                    Classification.FAILED_POST_PATCH_TEST,
                    _status_detail("post-patch tests", result.exit_code, ws.post_test_log.name),
                )

        return Classification.PASSED, None

    async def _apply_patch(self, ws: ItemWorkspace, values: dict[str, str], env: dict[str, str]):
        argv = self.toolchain.render(self.toolchain.patch, **values)
        return await run_command(argv, str(ws.root), env, ws.patch_log)


def _status_detail(what: str, exit_code: int | None, log_name: str) -> str:
    return f"{what} exited with status {exit_code} (see {log_name})"
