"""Jest JSON converter (``jest --json --outputFile``).

Durations in the Jest output are milliseconds; everything here is
converted to seconds.
"""

from datetime import datetime
from typing import Optional

from wiki_reports.converters.base import (
    FAILED,
    ParsedReport,
    ReportParseError,
    ResultNode,
    apply_rollup,
    as_float,
    count_leaves,
    coverage_from,
    first_line,
    join_messages,
    json_summary_counts,
    load_json_object,
    normalize_status,
    sum_durations,
)
from wiki_reports.models import ReportFormat, TestStats
from wiki_reports.rendering import render


def ms_to_seconds(value) -> Optional[float]:
    ms = as_float(value)
    return round(ms / 1000, 6) if ms is not None and ms >= 0 else None


def assertion_node(assertion: dict, with_ancestors: bool = True) -> ResultNode:
    """Leaf node for one entry of a file's ``assertionResults``."""
    title = assertion.get("title") or assertion.get("fullName") or "unnamed test"
    ancestors = assertion.get("ancestorTitles") or []
    name = " › ".join([*ancestors, title]) if with_ancestors and ancestors else title
    detail = join_messages(assertion.get("failureMessages"))
    return ResultNode(
        name=name,
        status=normalize_status(assertion.get("status")),
        duration=ms_to_seconds(assertion.get("duration")),
        message=first_line(detail),
        detail=detail,
    )


def file_results(data: dict) -> list[dict]:
    results = data.get("testResults", [])
    if not isinstance(results, list):
        raise ReportParseError("testResults must be a list")
    return [r for r in results if isinstance(r, dict)]


def file_name(file_result: dict) -> str:
    return file_result.get("name") or file_result.get("testFilePath") or "unknown file"


def file_duration(file_result: dict, tests: list[ResultNode]) -> Optional[float]:
    """Sum of test durations, else the file's own runtime."""
    duration = sum_durations(tests)
    if duration is not None:
        return duration
    perf = file_result.get("perfStats") or {}
    if perf.get("runtime") is not None:
        return ms_to_seconds(perf.get("runtime"))
    start = as_float(perf.get("start", file_result.get("startTime")))
    end = as_float(perf.get("end", file_result.get("endTime")))
    if start is not None and end is not None and end >= start:
        return ms_to_seconds(end - start)
    return None


def mark_file_failure(node: ResultNode, file_result: dict) -> None:
    """A file that failed to run has no assertions but a message."""
    message = file_result.get("message") or file_result.get("failureMessage") or ""
    if not node.children and normalize_status(file_result.get("status")) == FAILED:
        node.status = FAILED
    if message and node.status == FAILED:
        node.detail = message
        node.message = first_line(message)


def file_counts(files: list[ResultNode]) -> tuple[int, int, int]:
    """(passed, failed, skipped) over the assertions of each file.

    A file without assertions contributes nothing, unless it failed to run:
    that counts as one failed test so a crashed suite never reads as green.
    """
    passed = failed = skipped = 0
    for node in files:
        if node.children:
            p, f, s = count_leaves(node.children)
            passed, failed, skipped = passed + p, failed + f, skipped + s
        elif node.status == FAILED:
            failed += 1
    return passed, failed, skipped


def summary_stats(data: dict, groups: list[ResultNode]) -> TestStats:
    """Top-level counts win when present, per-file assertion counts otherwise."""
    duration = sum_durations(groups)
    if "numTotalTests" in data:
        total, passed, failed, skipped = json_summary_counts(data)
    else:
        passed, failed, skipped = file_counts(groups)
        total = None
    return TestStats.reconciled(
        total=total,
        passed=passed,
        failed=failed,
        skipped=skipped,
        duration=duration,
        coverage=coverage_from(data),
    )


class JestConverter:
    format = ReportFormat.JEST

    def parse(self, payload: bytes) -> ParsedReport:
        data = load_json_object(payload)

        groups = []
        for file_result in file_results(data):
            tests = [
                assertion_node(a)
                for a in file_result.get("assertionResults") or []
                if isinstance(a, dict)
            ]
            node = ResultNode(
                name=file_name(file_result),
                duration=file_duration(file_result, tests),
                children=tests,
            )
            apply_rollup(node)
            mark_file_failure(node, file_result)
            groups.append(node)

        return ParsedReport(
            title="Jest Test Report",
            stats=summary_stats(data, groups),
            groups=groups,
        )

    def render(self, parsed: ParsedReport, generated_at: Optional[datetime] = None) -> str:
        return render("jest.html", report=parsed, generated_at=generated_at)
