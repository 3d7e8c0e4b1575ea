"""Pydantic models for test report aggregation and wiki publishing."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ReportFormat(str, Enum):
    """Report formats the converters understand."""

    JUNIT = "junit"
    JEST = "jest"
    VITEST = "vitest"
    CUCUMBER = "cucumber"
    UNKNOWN = "unknown"  # kept in the output, never converted


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"  # no results (fallback run or unreadable sidecar)


def coerce_timestamp(value) -> Optional[datetime]:
    """Best-effort conversion to an aware UTC datetime.

    Unparseable values become None so the run sorts as oldest instead of
    breaking the whole index.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch millis (JS style) or seconds
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

class CoverageStats(BaseModel):
    """Coverage percentages passed through from an upstream report."""

    lines: float = Field(0.0, ge=0, le=100)
    branches: float = Field(0.0, ge=0, le=100)
    functions: float = Field(0.0, ge=0, le=100)
    statements: float = Field(0.0, ge=0, le=100)


class TestStats(BaseModel):
    """Normalized counts for one report or one aggregated run."""

    __test__ = False  # prevent pytest collection

    total: int = Field(0, ge=0)
    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    duration: Optional[float] = Field(None, ge=0, description="seconds")
    coverage: Optional[CoverageStats] = None

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total * 100 if self.total > 0 else 0.0

    @classmethod
    def reconciled(
        cls,
        total: Optional[int],
        passed: int,
        failed: int,
        skipped: int,
        duration: Optional[float] = None,
        coverage: Optional[CoverageStats] = None,
    ) -> "TestStats":
        """Build stats that satisfy total == passed + failed + skipped.

        The source's own total, failed and skipped counts win; passed
        absorbs any difference and never drops below zero.
        """
        failed = max(failed, 0)
        skipped = max(skipped, 0)
        passed = max(passed, 0)
        if total is None:
            total = passed + failed + skipped
        elif passed + failed + skipped != total:
            passed = max(total - failed - skipped, 0)
            total = passed + failed + skipped
        return cls(
            total=total,
            passed=passed,
            failed=failed,
            skipped=skipped,
            duration=duration,
            coverage=coverage,
        )

    @classmethod
    def combine(cls, stats: Iterable["TestStats"]) -> "TestStats":
        """Sum stats across reports.

        Coverage percentages cannot be summed; the mean of the supplied
        blocks is used instead.
        """
        items = list(stats)
        durations = [s.duration for s in items if s.duration is not None]
        coverages = [s.coverage for s in items if s.coverage is not None]

        coverage = None
        if coverages:
            n = len(coverages)
            coverage = CoverageStats(
                lines=round(sum(c.lines for c in coverages) / n, 2),
                branches=round(sum(c.branches for c in coverages) / n, 2),
                functions=round(sum(c.functions for c in coverages) / n, 2),
                statements=round(sum(c.statements for c in coverages) / n, 2),
            )

        return cls(
            total=sum(s.total for s in items),
            passed=sum(s.passed for s in items),
            failed=sum(s.failed for s in items),
            skipped=sum(s.skipped for s in items),
            duration=round(sum(durations), 6) if durations else None,
            coverage=coverage,
        )


class ConversionResult(BaseModel):
    """Output of one converter run over one raw artifact."""

    model_config = ConfigDict(frozen=True)

    format: ReportFormat
    html: str
    stats: TestStats


# ---------------------------------------------------------------------------
# Runs and sidecar metadata
# ---------------------------------------------------------------------------

class RunRecord(BaseModel):
    """One published run as seen by retention and index generation.

    Identity is (branch, run_id). Records are rebuilt from the sidecars on
    every read and never mutated.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    branch: str
    commit_sha: str = ""
    timestamp: Optional[datetime] = None
    report_path: str
    status: RunStatus = RunStatus.PENDING
    formats: tuple[ReportFormat, ...] = ()
    stats: Optional[TestStats] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        return coerce_timestamp(value)

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:8]

    @property
    def sort_key(self) -> tuple:
        # Missing timestamps sort as oldest.
        return (
            self.timestamp is not None,
            self.timestamp or _OLDEST,
            self.run_id,
        )


def newest_first(runs: Iterable[RunRecord]) -> list[RunRecord]:
    """Timestamp descending, ties broken by run_id descending."""
    return sorted(runs, key=lambda r: r.sort_key, reverse=True)


class ReportEntry(BaseModel):
    """One converted report inside a run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    format: ReportFormat
    file: str
    source: str = ""
    stats: TestStats = Field(default_factory=TestStats)


class RunMetadata(BaseModel):
    """The metadata.json sidecar written next to a run's HTML reports.

    This is the only machine-readable contract between the publisher and
    the index generator.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: int = 1
    branch: str
    run_id: str
    commit_sha: str = ""
    timestamp: Optional[datetime] = None
    formats: list[ReportFormat] = []
    stats: TestStats = Field(default_factory=TestStats)
    status: RunStatus = RunStatus.PENDING
    reports: list[ReportEntry] = []

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        return coerce_timestamp(value)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    def to_record(self, report_path: str) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            branch=self.branch,
            commit_sha=self.commit_sha,
            timestamp=self.timestamp,
            report_path=report_path,
            status=self.status,
            formats=tuple(self.formats),
            stats=self.stats,
        )


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class Artifact(BaseModel):
    """A raw report file found on disk."""

    path: Path
    type: ReportFormat
    size: int = 0


class PackageReports(BaseModel):
    """Artifacts grouped by their owning package."""

    package_name: str
    package_path: Path
    artifacts: list[Artifact] = []


# ---------------------------------------------------------------------------
# Retention and index
# ---------------------------------------------------------------------------

class RetentionResult(BaseModel):
    retain: list[RunRecord] = []
    remove: list[RunRecord] = []


class BranchRuns(BaseModel):
    """Runs of one branch, newest first."""

    branch: str
    runs: list[RunRecord] = []


class WikiIndex(BaseModel):
    """Derived view over all on-disk runs. Never persisted."""

    last_run: Optional[RunRecord] = None
    recent_runs: list[RunRecord] = []
    branches: list[BranchRuns] = []

    @property
    def is_empty(self) -> bool:
        return self.last_run is None


class IndexDocuments(BaseModel):
    """Rendered index pages for one regeneration."""

    global_index: str
    branch_pages: list[tuple[str, str]] = []  # (branch, html), sorted by branch
    home_markdown: str = ""


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

class PublishState(str, Enum):
    """Publisher state machine."""

    START = "start"
    CHECK_ARTIFACTS = "check_artifacts"
    WRITE_FALLBACK = "write_fallback"
    WRITE_REPORTS = "write_reports"
    APPLY_RETENTION = "apply_retention"
    REGENERATE_INDEX = "regenerate_index"
    DONE = "done"
    FAILED = "failed"


class PublishRequest(BaseModel):
    """Input for a single publish call."""

    branch: str = Field(..., min_length=1)
    run_id: str = Field(..., min_length=1)
    commit_sha: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reports_source_path: Path
    max_reports_per_branch: Optional[int] = Field(None, ge=1)
    fail_on_error: Optional[bool] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value):
        # Leave unparseable input alone so validation reports it.
        return coerce_timestamp(value) or value


class PublishResult(BaseModel):
    """Outcome of a publish call."""

    success: bool
    report_path: str = ""
    files_published: int = 0
    files_deleted: int = 0
    error: Optional[str] = None
    state: PublishState = PublishState.DONE
