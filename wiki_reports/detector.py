"""Report format detection.

Filename markers are checked first, then a short content sample. Detection
is total: anything unreadable or unrecognized is ReportFormat.UNKNOWN.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

from wiki_reports.models import ReportFormat

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 1000

# Ties resolve to the earliest entry.
PRIORITY = (
    ReportFormat.JUNIT,
    ReportFormat.CUCUMBER,
    ReportFormat.VITEST,
    ReportFormat.JEST,
)

_NAME_MARKERS = {
    ReportFormat.JUNIT: (re.compile(r"junit|^test-.*|^report\.xml$", re.IGNORECASE), (".xml",)),
    ReportFormat.CUCUMBER: (re.compile(r"cucumber", re.IGNORECASE), (".json",)),
    ReportFormat.VITEST: (re.compile(r"vitest", re.IGNORECASE), (".json",)),
    ReportFormat.JEST: (re.compile(r"jest", re.IGNORECASE), (".json",)),
}

_CONTENT_MARKERS = {
    ReportFormat.JUNIT: (re.compile(r"<testsuites?[\s>/]"),),
    ReportFormat.CUCUMBER: (
        re.compile(r'"elements"\s*:'),
        re.compile(r'"keyword"\s*:\s*"Feature"'),
        re.compile(r'"feature"\s*:'),
    ),
    ReportFormat.VITEST: (re.compile(r'"vitest"', re.IGNORECASE),),
    ReportFormat.JEST: (
        re.compile(r'"numTotalTests"\s*:'),
        re.compile(r'"testResults"\s*:'),
    ),
}

_NEVER_CONVERTED = (".html", ".htm")


def _from_name(path: Path) -> Optional[ReportFormat]:
    name = path.name
    suffix = path.suffix.lower()
    for fmt in PRIORITY:
        pattern, extensions = _NAME_MARKERS[fmt]
        if suffix in extensions and pattern.search(name):
            return fmt
    return None


def _from_content(sample: str) -> Optional[ReportFormat]:
    for fmt in PRIORITY:
        if any(p.search(sample) for p in _CONTENT_MARKERS[fmt]):
            return fmt
    return None


def read_sample(path: Path, size: int = SAMPLE_SIZE) -> str:
    """First ``size`` bytes of a file, or "" when it cannot be read."""
    try:
        with open(path, "rb") as f:
            return f.read(size).decode("utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Cannot sample {path}: {e}")
        return ""


def detect(path: Union[str, Path], sample: Union[str, bytes, None] = None) -> ReportFormat:
    """Classify a raw report file.

    Args:
        path: file to classify; only read when no sample is given
        sample: optional content prefix already in memory
    """
    path = Path(path)
    if path.suffix.lower() in _NEVER_CONVERTED:
        return ReportFormat.UNKNOWN

    fmt = _from_name(path)
    if fmt is not None:
        return fmt

    if sample is None:
        sample = read_sample(path)
    elif isinstance(sample, bytes):
        sample = sample[:SAMPLE_SIZE].decode("utf-8", errors="replace")
    else:
        sample = sample[:SAMPLE_SIZE]

    return _from_content(sample) or ReportFormat.UNKNOWN
