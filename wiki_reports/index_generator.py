"""Index generation over all published runs.

The index is a pure function of the run records (read back from the
sidecars) and the ``generated_at`` stamp, so regenerating with the same
input is byte-identical.
"""

import logging
import posixpath
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from wiki_reports.models import (
    BranchRuns,
    IndexDocuments,
    RunRecord,
    WikiIndex,
    newest_first,
)
from wiki_reports.rendering import render
from wiki_reports.store import INDEX_FILE, safe_segment

logger = logging.getLogger(__name__)


class IndexGenerator:
    """Builds the global index, per-branch pages and Home.md."""

    def __init__(
        self,
        max_recent_runs: int = 20,
        max_runs_per_branch: Optional[int] = None,
        reports_dir: str = "reports",
    ):
        if max_recent_runs < 1:
            raise ValueError("max_recent_runs must be positive")
        self.max_recent_runs = max_recent_runs
        self.max_runs_per_branch = max_runs_per_branch or max_recent_runs
        self.reports_dir = reports_dir.strip("/") or "reports"

    def build(self, runs: Iterable[RunRecord]) -> WikiIndex:
        ordered = newest_first(runs)
        if not ordered:
            return WikiIndex()

        by_branch: dict[str, list[RunRecord]] = defaultdict(list)
        for run in ordered:
            by_branch[run.branch].append(run)

        return WikiIndex(
            last_run=ordered[0],
            recent_runs=ordered[: self.max_recent_runs],
            branches=[
                BranchRuns(branch=branch, runs=by_branch[branch][: self.max_runs_per_branch])
                for branch in sorted(by_branch)
            ],
        )

    # -- links ------------------------------------------------------------

    def _from_global(self, run: RunRecord) -> str:
        return posixpath.relpath(run.report_path, self.reports_dir) + "/" + INDEX_FILE

    @staticmethod
    def _from_branch(run: RunRecord) -> str:
        return posixpath.basename(run.report_path) + "/" + INDEX_FILE

    @staticmethod
    def _from_home(run: RunRecord) -> str:
        return run.report_path + "/" + INDEX_FILE

    @staticmethod
    def branch_page(branch: str) -> str:
        """Branch page path relative to the reports directory."""
        return safe_segment(branch) + "/" + INDEX_FILE

    # -- rendering --------------------------------------------------------

    def generate(
        self,
        runs: Iterable[RunRecord],
        generated_at: Optional[datetime] = None,
    ) -> IndexDocuments:
        index = self.build(runs)

        latest = None
        if index.last_run is not None:
            latest = {"run": index.last_run, "href": self._from_global(index.last_run)}

        global_html = render(
            "global_index.html",
            index=index,
            latest=latest,
            recent=[{"run": r, "href": self._from_global(r)} for r in index.recent_runs],
            branches=[
                {
                    "branch": b.branch,
                    "href": self.branch_page(b.branch),
                    "rows": [{"run": r, "href": self._from_global(r)} for r in b.runs],
                }
                for b in index.branches
            ],
            generated_at=generated_at,
        )

        branch_pages = [
            (
                b.branch,
                render(
                    "branch_index.html",
                    branch=b.branch,
                    rows=[{"run": r, "href": self._from_branch(r)} for r in b.runs],
                    root_href="../" + INDEX_FILE,
                    generated_at=generated_at,
                ),
            )
            for b in index.branches
        ]

        home = render(
            "home.md",
            index=index,
            latest={"run": index.last_run, "href": self._from_home(index.last_run)} if latest else None,
            index_href=f"{self.reports_dir}/{INDEX_FILE}",
            branches=[
                {
                    "branch": b.branch,
                    "rows": [{"run": r, "href": self._from_home(r)} for r in b.runs],
                }
                for b in index.branches
            ],
            generated_at=generated_at,
        )

        logger.debug(
            f"Generated index: {len(index.recent_runs)} recent runs, {len(branch_pages)} branches"
        )
        return IndexDocuments(global_index=global_html, branch_pages=branch_pages, home_markdown=home)
