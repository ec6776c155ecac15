"""Result taxonomy for impact runs.

Defines the per-item data model shared by the feed, the pipeline, the
worker pool and the collector.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum


class Classification(Enum):
    """Terminal outcome of one package's pipeline.

    Each member carries the short code written to the report and a human
    readable description used in summaries.
    """

    FETCH_TIMED_OUT = ("FT", "Fetch timed out")
    FETCH_FAILED = ("FF", "Fetch failed")
    FAILED_PRE_PATCH_TEST = ("F1", "Failed pre-patch testing")
    FAILED_POST_PATCH_TEST = ("F2", "Failed post-patch testing")
    PATCH_FAILED = ("FP", "Patch failed to apply")
    FAILED_UNEXPECTEDLY = ("F?", "Failed unexpectedly")
    PASSED = ("P!", "Passed")

    def __init__(self, code: str, description: str):
        self.code = code
        self.description = description

    @classmethod
    def from_code(cls, code: str) -> Classification:
        for member in cls:
            if member.code == code:
                return member
        raise ValueError(f"Unknown classification code: {code!r}")

    def __str__(self) -> str:
        return self.description


class Stage(str, Enum):
    """Pipeline stages, in execution order."""

    FETCH = "fetch"
    PRE_TEST = "pre-test"
    PATCH = "patch"
    POST_TEST = "post-test"


@dataclass(frozen=True)
class WorkItem:
    """One consumer package to check against the patch."""

    index: int
    identifier: str


@dataclass(frozen=True)
class Reply:
    """Final outcome for a WorkItem, emitted exactly once."""

    item: WorkItem
    classification: Classification
    detail: str | None = None
    stages: tuple[Stage, ...] = ()
    worker_id: int | None = None
    duration_s: float = 0.0

    @property
    def index(self) -> int:
        return self.item.index

    @property
    def identifier(self) -> str:
        return self.item.identifier

    @property
    def passed(self) -> bool:
        return self.classification is Classification.PASSED


@dataclass
class RunState:
    """Accumulated results; mutated only by the Collector."""

    counts: Counter = field(default_factory=Counter)
    replies: list[Reply] = field(default_factory=list)

    def record(self, reply: Reply) -> int:
        """Add a reply and return the number received so far."""
        self.replies.append(reply)
        self.counts[reply.classification] += 1
        return len(self.replies)

    def count(self, classification: Classification) -> int:
        return self.counts.get(classification, 0)

    @property
    def received(self) -> int:
        return len(self.replies)

    def by_classification(self) -> dict[Classification, list[Reply]]:
        """Group replies per classification, preserving arrival order."""
        grouped: dict[Classification, list[Reply]] = {c: [] for c in Classification}
        for reply in self.replies:
            grouped[reply.classification].append(reply)
        return grouped
