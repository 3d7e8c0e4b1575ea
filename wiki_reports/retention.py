"""Per-branch retention of published runs."""

import logging
from collections import defaultdict
from typing import Iterable

from wiki_reports.models import RetentionResult, RunRecord, newest_first

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Keep the newest ``max_per_branch`` runs of every branch.

    Branches are independent: pressure on one never removes runs of
    another. Runs without a usable timestamp sort as oldest and go first.
    """

    def __init__(self, max_per_branch: int):
        if isinstance(max_per_branch, bool) or not isinstance(max_per_branch, int) or max_per_branch < 1:
            raise ValueError(f"max_per_branch must be a positive integer, got {max_per_branch!r}")
        self.max_per_branch = max_per_branch

    def apply(self, runs: Iterable[RunRecord]) -> RetentionResult:
        by_branch: dict[str, list[RunRecord]] = defaultdict(list)
        for run in runs:
            by_branch[run.branch].append(run)

        retain, remove = [], []
        for branch in sorted(by_branch):
            ordered = newest_first(by_branch[branch])
            retain.extend(ordered[: self.max_per_branch])
            dropped = ordered[self.max_per_branch:]
            if dropped:
                logger.info(
                    f"Retention: {branch} has {len(ordered)} runs, "
                    f"removing {len(dropped)} (max {self.max_per_branch})"
                )
            remove.extend(dropped)

        return RetentionResult(retain=retain, remove=remove)
