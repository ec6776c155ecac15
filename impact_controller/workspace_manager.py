"""
WorkspaceManager: per-item workspace directories.

Every work item is processed inside its own directory, named after the
item's index. Directories are created fresh and never reused, so workers
never share filesystem state.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .results import WorkItem
from .structured_logging import get_logger

logger = get_logger(__name__)

PRE_TEST_LOG = "pre-test.log"
POST_TEST_LOG = "post-test.log"
FETCH_LOG = "fetch.log"
PATCH_LOG = "patch.log"


@dataclass(frozen=True)
class ItemWorkspace:
    """Filesystem layout owned by a single work item."""

    item: WorkItem
    root: Path

    @property
    def fetch_log(self) -> Path:
        return self.root / FETCH_LOG

    @property
    def pre_test_log(self) -> Path:
        return self.root / PRE_TEST_LOG

    @property
    def patch_log(self) -> Path:
        return self.root / PATCH_LOG

    @property
    def post_test_log(self) -> Path:
        return self.root / POST_TEST_LOG


class WorkspaceManager:
    """
    Creates item workspaces below a common base directory.

    Example:
        >>> manager = WorkspaceManager("/tmp/impact")
        >>> ws = manager.create(WorkItem(index=7, identifier="example.com/foo"))
        >>> ws.root
        PosixPath('/tmp/impact/0007')
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir).resolve()

    def path_for(self, item: WorkItem) -> Path:
        return self.base_dir / f"{item.index:04d}"

    def create(self, item: WorkItem) -> ItemWorkspace:
        """Create the item's workspace.

        Raises:
            FileExistsError: If the directory is left over from another run.
            OSError: If the directory cannot be created.
        """
        root = self.path_for(item)
        root.mkdir(mode=0o755)
        logger.debug("Created workspace", path=str(root))
        return ItemWorkspace(item=item, root=root)
