"""JUnit XML converter.

Handles both single <testsuite> and <testsuites> wrapper formats, including
nested suites (only leaf suites carry test cases). Times are in seconds.
"""

import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Optional

from wiki_reports.converters.base import (
    FAILED,
    PASSED,
    SKIPPED,
    ParsedReport,
    ReportParseError,
    ResultNode,
    apply_rollup,
    as_float,
    as_int,
    count_leaves,
    first_line,
)
from wiki_reports.models import ReportFormat, TestStats
from wiki_reports.rendering import render

MAX_MESSAGE_LENGTH = 1000


def _attr_int(element: ET.Element, name: str) -> Optional[int]:
    value = element.get(name)
    return as_int(value) if value is not None else None


def _parse_case(tc_el: ET.Element) -> ResultNode:
    # Determine status
    status, outcome = PASSED, None
    for tag, mapped in (("failure", FAILED), ("error", FAILED), ("skipped", SKIPPED)):
        outcome = tc_el.find(tag)
        if outcome is not None:
            status = mapped
            break

    message = detail = ""
    if outcome is not None:
        detail = (outcome.text or "").strip()[:MAX_MESSAGE_LENGTH]
        message = outcome.get("message") or first_line(detail)
        message = message[:MAX_MESSAGE_LENGTH]

    name = tc_el.get("name", "unknown")
    classname = tc_el.get("classname", "")
    return ResultNode(
        name=f"{classname} › {name}" if classname else name,
        status=status,
        duration=as_float(tc_el.get("time")),
        message=message,
        detail=detail,
    )


def _leaf_suites(root: ET.Element) -> list[ET.Element]:
    return [s for s in root.iter("testsuite") if s.find("testsuite") is None]


class JUnitConverter:
    """Converts JUnit XML (Surefire, pytest, jest-junit, ...) into HTML."""

    format = ReportFormat.JUNIT

    def parse(self, payload: bytes) -> ParsedReport:
        try:
            root = ET.fromstring(payload)
        except ET.ParseError as e:
            raise ReportParseError(f"invalid JUnit XML: {e}") from e

        if root.tag not in ("testsuites", "testsuite"):
            raise ReportParseError(f"unexpected root element <{root.tag}>")

        groups = []
        total = passed = failed = skipped = 0
        case_durations = []
        suite_durations = []

        for suite_el in _leaf_suites(root):
            cases = [_parse_case(tc) for tc in suite_el.findall("testcase")]
            c_passed, c_failed, c_skipped = count_leaves(cases)

            # Counts from attributes (more reliable) or derive from test cases
            s_failed = c_failed
            if suite_el.get("failures") is not None or suite_el.get("errors") is not None:
                s_failed = as_int(suite_el.get("failures")) + as_int(suite_el.get("errors"))
            s_skipped = _attr_int(suite_el, "skipped")
            if s_skipped is None:
                s_skipped = c_skipped
            s_stats = TestStats.reconciled(
                total=_attr_int(suite_el, "tests"),
                passed=c_passed,
                failed=s_failed,
                skipped=s_skipped,
            )
            total += s_stats.total
            passed += s_stats.passed
            failed += s_stats.failed
            skipped += s_stats.skipped

            case_durations.extend(c.duration for c in cases if c.duration is not None)
            suite_time = as_float(suite_el.get("time"))
            if suite_time is not None:
                suite_durations.append(suite_time)

            node = ResultNode(
                name=suite_el.get("name", "unknown"),
                duration=suite_time,
                children=cases,
            )
            if not cases and s_stats.failed:
                node.status = FAILED
            apply_rollup(node)
            groups.append(node)

        # A <testsuites> wrapper with its own totals wins over the suite sums.
        if root.tag == "testsuites" and root.get("tests") is not None:
            root_failed = failed
            if root.get("failures") is not None or root.get("errors") is not None:
                root_failed = as_int(root.get("failures")) + as_int(root.get("errors"))
            root_skipped = _attr_int(root, "skipped")
            stats_total, stats_failed = _attr_int(root, "tests"), root_failed
            stats_skipped = skipped if root_skipped is None else root_skipped
        else:
            stats_total, stats_failed, stats_skipped = total, failed, skipped

        if case_durations:
            duration = round(sum(case_durations), 6)
        elif suite_durations:
            duration = round(sum(suite_durations), 6)
        else:
            duration = as_float(root.get("time"))

        stats = TestStats.reconciled(
            total=stats_total,
            passed=passed,
            failed=stats_failed,
            skipped=stats_skipped,
            duration=duration,
        )
        title = root.get("name") or "JUnit Test Report"
        return ParsedReport(title=title, stats=stats, groups=groups)

    def render(self, parsed: ParsedReport, generated_at: Optional[datetime] = None) -> str:
        return render("junit.html", report=parsed, generated_at=generated_at)
