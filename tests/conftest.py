"""Pytest configuration and shared fixtures for impact controller tests.

This module provides:
- Toolchains built from small ``python -c`` scripts, so every stage runs
  a real subprocess with controllable exit status and duration
- Ready-made configs rooted in a temporary work directory
- Process liveness helpers for the timeout tests
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable
from pathlib import Path

import pytest

# =============================================================================
# Path Configuration
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent

sys.path.insert(0, str(PROJECT_ROOT))

from impact_controller.config import ImpactConfig  # noqa: E402
from impact_controller.profiles import Toolchain  # noqa: E402

PY = sys.executable

# Stage scripts receive: argv[1] = package identifier, argv[2] = workspace.
SUCCEED = "import sys; sys.exit(0)"
FAIL = "import sys; print('boom'); sys.exit(1)"
MARK_PATCHED = (
    "import pathlib, sys; pathlib.Path(sys.argv[2], 'patched').write_text(sys.argv[1]); sys.exit(0)"
)


def script(code: str) -> list[str]:
    """Argv template running ``code`` with the item's package and workspace."""
    return [PY, "-c", code, "{package}", "{workspace}"]


def fail_for(*packages: str) -> str:
    """Script failing for the given package identifiers only."""
    return f"import sys; sys.exit(1 if sys.argv[1] in {list(packages)!r} else 0)"


def sleep_for(seconds: float, *packages: str) -> str:
    """Script sleeping ``seconds`` for the given packages, returning at once otherwise."""
    return (
        "import sys, time; "
        f"time.sleep({seconds} if sys.argv[1] in {list(packages)!r} else 0)"
    )


# =============================================================================
# Pytest Configuration Hooks
# =============================================================================

def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Auto-tag tests that spawn subprocesses."""
    for item in items:
        if "toolchain_factory" in getattr(item, "fixturenames", ()):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Toolchain / Config Fixtures
# =============================================================================

@pytest.fixture
def toolchain_factory() -> Callable[..., Toolchain]:
    """Factory for test toolchains.

    Usage:
        def test_x(toolchain_factory):
            tc = toolchain_factory(test=fail_for("b"))
    """
    def _create(
        fetch: str = SUCCEED,
        test: str = SUCCEED,
        patch: str = MARK_PATCHED,
        env: dict[str, str] | None = None,
    ) -> Toolchain:
        return Toolchain(
            name="test",
            fetch=script(fetch),
            test=script(test),
            patch=script(patch),
            env=env or {},
        )
    return _create


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def patch_file(tmp_path: Path) -> Path:
    path = tmp_path / "delta.patch"
    path.write_text("--- a/x.go\n+++ b/x.go\n")
    return path


@pytest.fixture
def config_factory(workdir: Path, patch_file: Path, tmp_path: Path) -> Callable[..., ImpactConfig]:
    def _create(**overrides) -> ImpactConfig:
        values = dict(
            package_under_test="example.com/lib",
            package_list_file=str(tmp_path / "packages.txt"),
            patch_file=str(patch_file),
            fetch_timeout_s=10.0,
            report_file=str(tmp_path / "report.txt"),
            concurrency=2,
            workdir=str(workdir),
            kill_grace_s=2.0,
        )
        values.update(overrides)
        return ImpactConfig(**values)
    return _create


# =============================================================================
# Process Helpers
# =============================================================================

def process_alive(pid: int) -> bool:
    """True if ``pid`` exists and is not a zombie."""
    stat = Path(f"/proc/{pid}/stat")
    if Path("/proc/self").exists():
        try:
            fields = stat.read_text().rsplit(")", 1)[1].split()
        except (FileNotFoundError, ProcessLookupError):
            return False
        return fields[0] != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def wait_until_dead(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not process_alive(pid):
            return True
        time.sleep(0.05)
    return not process_alive(pid)
