"""Shared pieces for the report converters.

Handles:
- ReportConverter protocol every format implements
- ResultNode tree (suite / file / feature -> cases / scenarios -> steps)
- Status normalization and rollup (failed > skipped > passed)
- JSON helpers shared by the Jest, Vitest and Cucumber readers
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol, runtime_checkable

from wiki_reports.models import CoverageStats, ReportFormat, TestStats

PASSED = "passed"
FAILED = "failed"
SKIPPED = "skipped"

_FAILED_ALIASES = {"failed", "failure", "error", "errored", "broken", "ambiguous"}


class ReportParseError(Exception):
    """Raised when a raw artifact does not have the expected shape."""


@dataclass
class ResultNode:
    """One node of a rendered result tree."""

    name: str
    status: str = PASSED
    duration: Optional[float] = None  # seconds
    message: str = ""
    detail: str = ""
    keyword: str = ""
    tags: list[str] = field(default_factory=list)
    children: list["ResultNode"] = field(default_factory=list)


@dataclass
class ParsedReport:
    title: str
    stats: TestStats
    groups: list[ResultNode] = field(default_factory=list)


@runtime_checkable
class ReportConverter(Protocol):
    """Interface for one report format.

    ``parse`` raises ReportParseError (or a decode error) on bad input;
    ``render`` turns a parsed report into a standalone HTML page.
    """

    format: ReportFormat

    def parse(self, payload: bytes) -> ParsedReport:
        ...

    def render(self, parsed: ParsedReport, generated_at: Optional[datetime] = None) -> str:
        ...


def normalize_status(raw: Optional[str]) -> str:
    """Map a runner status onto passed / failed / skipped.

    Anything that is neither a pass nor a failure (pending, todo, disabled,
    undefined steps, ...) counts as skipped.
    """
    value = (raw or "").strip().lower()
    if value in ("passed", "pass", "success", "ok"):
        return PASSED
    if value in _FAILED_ALIASES:
        return FAILED
    return SKIPPED


def rollup(statuses: Iterable[str]) -> str:
    """Aggregate child statuses: any failure wins, then any skip, else passed."""
    seen = set(statuses)
    if FAILED in seen:
        return FAILED
    if SKIPPED in seen:
        return SKIPPED
    return PASSED


def apply_rollup(node: ResultNode) -> str:
    """Recompute group statuses bottom-up. Leaves keep their own status."""
    if node.children:
        node.status = rollup(apply_rollup(child) for child in node.children)
    return node.status


def sum_durations(nodes: Iterable[ResultNode]) -> Optional[float]:
    values = [n.duration for n in nodes if n.duration is not None]
    return round(sum(values), 6) if values else None


def count_leaves(nodes: Iterable[ResultNode]) -> tuple[int, int, int]:
    """(passed, failed, skipped) over the leaves of the given trees."""
    passed = failed = skipped = 0
    for node in nodes:
        if node.children:
            p, f, s = count_leaves(node.children)
            passed, failed, skipped = passed + p, failed + f, skipped + s
        elif node.status == FAILED:
            failed += 1
        elif node.status == SKIPPED:
            skipped += 1
        else:
            passed += 1
    return passed, failed, skipped


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def load_json(payload: bytes):
    """Decode a JSON artifact. Raises ValueError on malformed input."""
    text = payload.decode("utf-8-sig", errors="replace")
    return json.loads(text)


def load_json_object(payload: bytes) -> dict:
    data = load_json(payload)
    if not isinstance(data, dict):
        raise ReportParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def as_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def json_summary_counts(data: dict) -> tuple[Optional[int], int, int, int]:
    """Top-level (total, passed, failed, skipped) of a Jest-shaped summary.

    Pending and todo tests are merged into skipped. A missing total is
    returned as None so the caller can derive it.
    """
    total = data.get("numTotalTests")
    return (
        as_int(total) if total is not None else None,
        as_int(data.get("numPassedTests")),
        as_int(data.get("numFailedTests")),
        as_int(data.get("numPendingTests")) + as_int(data.get("numTodoTests")),
    )


def coverage_from(data: dict) -> Optional[CoverageStats]:
    """Coverage block from an istanbul json-summary shaped section, if any."""
    for key in ("coverageSummary", "coverage"):
        section = data.get(key)
        if not isinstance(section, dict):
            continue
        total = section.get("total", section)
        if not isinstance(total, dict):
            continue
        values = {}
        for metric in ("lines", "branches", "functions", "statements"):
            entry = total.get(metric)
            pct = as_float(entry.get("pct")) if isinstance(entry, dict) else None
            if pct is not None:
                values[metric] = min(max(pct, 0.0), 100.0)
        if values:
            return CoverageStats(**values)
    return None


def join_messages(messages) -> str:
    if not messages:
        return ""
    if isinstance(messages, str):
        return messages
    return "\n\n".join(str(m) for m in messages if m)


def first_line(text: str, limit: int = 200) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line[:limit]
