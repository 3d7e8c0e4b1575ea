"""Publishes one CI run's test reports into the wiki checkout.

State machine::

    start -> check_artifacts -> write_fallback -> done
                             -> write_reports -> apply_retention -> regenerate_index -> done

Any error moves to ``failed``. The result carries the error; it is raised
as PublishError only when fail_on_error is set.

A fallback run skips retention and the index rebuild, so a branch that only
ever receives fallback runs is neither pruned nor listed until a regular
publish or an explicit ``regenerate_index()`` (``wiki-reports index``) runs.
"""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from wiki_reports.converters import convert
from wiki_reports.detector import detect
from wiki_reports.index_generator import IndexGenerator
from wiki_reports.models import (
    IndexDocuments,
    PublishRequest,
    PublishResult,
    PublishState,
    ReportEntry,
    ReportFormat,
    RunMetadata,
    RunStatus,
    TestStats,
)
from wiki_reports.rendering import render
from wiki_reports.retention import RetentionPolicy
from wiki_reports.store import INDEX_FILE, ReportStore

logger = logging.getLogger(__name__)

RAW_DIR = "raw"

# States in which the run page is not complete yet
_RUN_PAGE_STATES = (
    PublishState.START,
    PublishState.CHECK_ARTIFACTS,
    PublishState.WRITE_FALLBACK,
    PublishState.WRITE_REPORTS,
)


class PublishError(Exception):
    """Publishing failed and the caller asked for failures to propagate."""


def has_artifacts(source: Path) -> bool:
    """True iff ``source`` exists, is a directory and is not empty."""
    source = Path(source)
    return source.is_dir() and any(source.iterdir())


def run_status(stats: TestStats, reports: list) -> RunStatus:
    if not reports:
        return RunStatus.PENDING
    return RunStatus.FAILURE if stats.failed > 0 else RunStatus.SUCCESS


class Publisher:
    """Writes reports for a run, applies retention and rebuilds the index."""

    def __init__(
        self,
        wiki_path,
        reports_dir: str = "reports",
        max_reports_per_branch: int = 20,
        max_recent_runs: int = 20,
        max_runs_per_branch: Optional[int] = None,
        fail_on_error: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = ReportStore(wiki_path, reports_dir)
        self.retention = RetentionPolicy(max_reports_per_branch)
        self.index_generator = IndexGenerator(
            max_recent_runs=max_recent_runs,
            max_runs_per_branch=max_runs_per_branch,
            reports_dir=self.store.reports_dir,
        )
        self.fail_on_error = fail_on_error
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, config=None, **overrides) -> "Publisher":
        """Build a publisher from WikiReportsConfig (loaded from the default file if omitted)."""
        from wiki_reports.config import load_config

        config = config or load_config()
        kwargs = dict(
            wiki_path=config.store.wiki_path,
            reports_dir=config.store.reports_dir,
            max_reports_per_branch=config.retention.max_reports_per_branch,
            max_recent_runs=config.index.max_recent_runs,
            max_runs_per_branch=config.index.max_runs_per_branch,
            fail_on_error=config.publish.fail_on_error,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def publish(self, request: PublishRequest) -> PublishResult:
        fail_on_error = self.fail_on_error if request.fail_on_error is None else request.fail_on_error
        run_dir = self.store.run_dir(request.branch, request.run_id)
        report_path = self.store.relative(run_dir)
        published = deleted = 0
        state = PublishState.START

        logger.info(f"Publishing {request.branch}/{request.run_id} from {request.reports_source_path}")
        try:
            state = PublishState.CHECK_ARTIFACTS
            if not has_artifacts(request.reports_source_path):
                state = PublishState.WRITE_FALLBACK
                published = self.write_fallback(request, run_dir)
            else:
                state = PublishState.WRITE_REPORTS
                published = self.write_reports(request, run_dir)
                state = PublishState.APPLY_RETENTION
                deleted = self.apply_retention(request.branch, request.max_reports_per_branch)
                state = PublishState.REGENERATE_INDEX
                self.regenerate_index()
        except Exception as e:
            if isinstance(e, OSError):
                error = f"{state.value}: {e}"
                logger.error(f"Publishing {request.branch}/{request.run_id} failed in {state.value}: {e}")
            else:
                error = f"{state.value}: {type(e).__name__}: {e}"
                logger.error(
                    f"Publishing {request.branch}/{request.run_id} failed in {state.value}: {e}",
                    exc_info=True,
                )
            if state in _RUN_PAGE_STATES:
                self._write_failure_page(request, run_dir, state, error)
            if fail_on_error:
                raise PublishError(error) from e
            return PublishResult(
                success=False,
                report_path=report_path,
                files_published=published,
                files_deleted=deleted,
                error=error,
                state=PublishState.FAILED,
            )

        logger.info(
            f"Published {request.branch}/{request.run_id}: "
            f"{published} files written, {deleted} files deleted"
        )
        return PublishResult(
            success=True,
            report_path=report_path,
            files_published=published,
            files_deleted=deleted,
            state=PublishState.DONE,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _reset_run_dir(self, run_dir: Path) -> None:
        # Re-publishing the same run replaces it completely.
        if run_dir.exists():
            shutil.rmtree(run_dir)
        run_dir.mkdir(parents=True)

    def write_fallback(self, request: PublishRequest, run_dir: Path) -> int:
        """Run page for a run without artifacts. Returns files written."""
        logger.warning(
            f"No test reports in {request.reports_source_path} for {request.branch}/{request.run_id}"
        )
        self._reset_run_dir(run_dir)
        html = render(
            "fallback.html",
            branch=request.branch,
            run_id=request.run_id,
            commit_sha=request.commit_sha,
            timestamp=request.timestamp,
            root_href=f"../../{INDEX_FILE}",
            generated_at=self._clock(),
        )
        self.store.write_text(run_dir / INDEX_FILE, html)
        self.store.write_metadata(run_dir, RunMetadata(
            branch=request.branch,
            run_id=request.run_id,
            commit_sha=request.commit_sha,
            timestamp=request.timestamp,
            formats=[],
            stats=TestStats(),
            status=RunStatus.PENDING,
        ))
        return 2

    def write_reports(self, request: PublishRequest, run_dir: Path) -> int:
        """Convert every artifact, copy the raw files, write the run page and sidecar.

        The sidecar is written last so a run only shows up in the index
        once its pages are complete.
        """
        source = Path(request.reports_source_path)
        generated_at = self._clock()
        self._reset_run_dir(run_dir)

        written = 0
        entries: list[ReportEntry] = []
        raw_files: list[str] = []
        per_format: dict[ReportFormat, int] = {}

        for path in sorted(p for p in source.rglob("*") if p.is_file()):
            rel = path.relative_to(source).as_posix()
            raw_rel = f"{RAW_DIR}/{rel}"
            target = run_dir / RAW_DIR / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            raw_files.append(raw_rel)
            written += 1

            fmt = detect(path)
            if fmt == ReportFormat.UNKNOWN:
                logger.info(f"Keeping {rel} as raw artifact (format not recognized)")
                continue

            per_format[fmt] = per_format.get(fmt, 0) + 1
            n = per_format[fmt]
            page = f"{fmt.value}.html" if n == 1 else f"{fmt.value}-{n}.html"

            result = convert(fmt, path.read_bytes(), generated_at)
            self.store.write_text(run_dir / page, result.html)
            written += 1
            entries.append(ReportEntry(format=fmt, file=page, source=raw_rel, stats=result.stats))

        stats = TestStats.combine(e.stats for e in entries)
        metadata = RunMetadata(
            branch=request.branch,
            run_id=request.run_id,
            commit_sha=request.commit_sha,
            timestamp=request.timestamp,
            formats=list(dict.fromkeys(e.format for e in entries)),
            stats=stats,
            status=run_status(stats, entries),
            reports=entries,
        )

        html = render(
            "run_index.html",
            meta=metadata,
            raw_files=raw_files,
            root_href=f"../../{INDEX_FILE}",
            generated_at=generated_at,
        )
        self.store.write_text(run_dir / INDEX_FILE, html)
        self.store.write_metadata(run_dir, metadata)
        written += 2

        logger.info(
            f"Wrote {len(entries)} reports for {request.branch}/{request.run_id}: "
            f"{stats.total} tests, {stats.failed} failed"
        )
        return written

    def apply_retention(self, branch: str, max_reports: Optional[int] = None) -> int:
        """Drop the oldest runs of a branch beyond the limit. Returns files deleted."""
        policy = self.retention
        if max_reports is not None and max_reports != policy.max_per_branch:
            policy = RetentionPolicy(max_reports)

        # Everything in the branch directory belongs to this branch, including
        # runs whose sidecar could not be read.
        runs = [r.model_copy(update={"branch": branch}) for r in self.store.list_runs(branch)]
        result = policy.apply(runs)
        return sum(self.store.delete_run(run) for run in result.remove)

    def regenerate_index(self, generated_at: Optional[datetime] = None) -> IndexDocuments:
        """Full rebuild of the global index, branch pages and Home.md from the sidecars."""
        runs = self.store.list_runs()
        docs = self.index_generator.generate(runs, generated_at or self._clock())

        self.store.write_text(self.store.global_index_path, docs.global_index)
        written_pages = set()
        for branch, html in docs.branch_pages:
            page = self.store.branch_dir(branch) / INDEX_FILE
            self.store.write_text(page, html)
            written_pages.add(page)
        self.store.write_text(self.store.home_path, docs.home_markdown)

        # Branch pages of branches without runs are stale.
        for branch_dir in self.store.branch_dirs():
            page = branch_dir / INDEX_FILE
            if page in written_pages or any(p.is_dir() for p in branch_dir.iterdir()):
                continue
            if page.exists():
                page.unlink()
            if not any(branch_dir.iterdir()):
                branch_dir.rmdir()

        logger.info(f"Regenerated index for {len(runs)} runs in {len(docs.branch_pages)} branches")
        return docs

    def _write_failure_page(
        self,
        request: PublishRequest,
        run_dir: Path,
        state: PublishState,
        error: str,
    ) -> None:
        try:
            html = render(
                "failure.html",
                branch=request.branch,
                run_id=request.run_id,
                commit_sha=request.commit_sha,
                timestamp=request.timestamp,
                state=state.value,
                error=error,
                generated_at=self._clock(),
            )
            self.store.write_text(run_dir / INDEX_FILE, html)
        except OSError as e:
            logger.warning(f"Could not write failure page for {request.branch}/{request.run_id}: {e}")
