"""Filesystem store for published reports.

Layout below the wiki root::

    reports/<branch>/<runId>/index.html
    reports/<branch>/<runId>/<format>.html
    reports/<branch>/<runId>/metadata.json
    reports/<branch>/<runId>/raw/...
    reports/<branch>/index.html
    reports/index.html
    Home.md

The sidecars are the only source the index is rebuilt from; nothing is
cached between calls.
"""

import hashlib
import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from wiki_reports.models import RunMetadata, RunRecord, RunStatus

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
INDEX_FILE = "index.html"
HOME_FILE = "Home.md"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def safe_segment(value: str) -> str:
    """Directory-safe form of a branch name or run id.

    Names that are already safe are used as is. Anything that had to be
    rewritten gets a short digest of the original appended, so
    ``feature/x`` and ``feature-x`` get different directories.
    """
    segment = _UNSAFE.sub("-", value.strip())
    # "." and ".." would escape the layout
    if segment in ("", ".", ".."):
        segment = segment.replace(".", "-") or "-"
    if segment != value:
        digest = hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]
        segment = f"{segment}-{digest}"
    return segment


def count_files(path: Path) -> int:
    if path.is_file():
        return 1
    return sum(1 for p in path.rglob("*") if p.is_file())


class ReportStore:
    """Reads and writes the report tree of a wiki checkout."""

    def __init__(self, wiki_path, reports_dir: str = "reports"):
        self.wiki_path = Path(wiki_path)
        self.reports_dir = reports_dir.strip("/") or "reports"

    @property
    def reports_root(self) -> Path:
        return self.wiki_path / self.reports_dir

    @property
    def global_index_path(self) -> Path:
        return self.reports_root / INDEX_FILE

    @property
    def home_path(self) -> Path:
        return self.wiki_path / HOME_FILE

    def branch_dir(self, branch: str) -> Path:
        return self.reports_root / safe_segment(branch)

    def run_dir(self, branch: str, run_id: str) -> Path:
        return self.branch_dir(branch) / safe_segment(run_id)

    def relative(self, path: Path) -> str:
        """Posix path relative to the wiki root."""
        return Path(path).relative_to(self.wiki_path).as_posix()

    # -- writes ---------------------------------------------------------

    def write_text(self, path: Path, content: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def write_metadata(self, run_dir: Path, metadata: RunMetadata) -> Path:
        return self.write_text(run_dir / METADATA_FILE, metadata.to_json())

    def delete_run(self, record: RunRecord) -> int:
        """Recursively delete a run directory. Returns the number of files removed."""
        path = self.wiki_path / record.report_path
        if not path.exists():
            return 0
        removed = count_files(path)
        shutil.rmtree(path)
        logger.info(f"Deleted run {record.branch}/{record.run_id} ({removed} files)")
        return removed

    # -- reads ----------------------------------------------------------

    def read_metadata(self, run_dir: Path) -> Optional[RunMetadata]:
        """Parse a run's sidecar; None when missing or unreadable."""
        path = run_dir / METADATA_FILE
        if not path.exists():
            return None
        try:
            return RunMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Corrupted metadata in {path}, treating run as undated: {e}")
            return None

    def branch_dirs(self) -> list[Path]:
        if not self.reports_root.is_dir():
            return []
        return sorted(p for p in self.reports_root.iterdir() if p.is_dir())

    def _record(self, run_dir: Path) -> RunRecord:
        report_path = self.relative(run_dir)
        metadata = self.read_metadata(run_dir)
        if metadata is None:
            return RunRecord(
                run_id=run_dir.name,
                branch=run_dir.parent.name,
                report_path=report_path,
                status=RunStatus.PENDING,
            )
        return metadata.to_record(report_path)

    def list_runs(self, branch: Optional[str] = None) -> list[RunRecord]:
        """All runs on disk, optionally limited to one branch.

        Order is directory order; callers sort with ``newest_first``.
        """
        if branch is not None:
            candidates = [self.branch_dir(branch)]
        else:
            candidates = self.branch_dirs()

        runs = []
        for branch_dir in candidates:
            if not branch_dir.is_dir():
                continue
            for run_dir in sorted(p for p in branch_dir.iterdir() if p.is_dir()):
                runs.append(self._record(run_dir))
        return runs
