"""Cucumber JSON converter (``--format json``).

Scenarios are the counted tests. Step durations are nanoseconds. Background
steps are folded into the scenario that follows them, and hooks take part in
the scenario status but are only shown when they did not pass.
"""

from datetime import datetime
from typing import Optional

from wiki_reports.converters.base import (
    FAILED,
    PASSED,
    SKIPPED,
    ParsedReport,
    ReportParseError,
    ResultNode,
    as_float,
    first_line,
    load_json,
    normalize_status,
    rollup,
    sum_durations,
)
from wiki_reports.models import ReportFormat, TestStats
from wiki_reports.rendering import render

HOOK_KEYWORDS = ("Before", "After")


def ns_to_seconds(value) -> Optional[float]:
    ns = as_float(value)
    return round(ns * 1e-9, 6) if ns is not None and ns >= 0 else None


def _tag_names(tags) -> list[str]:
    return [t.get("name", "") for t in tags or [] if isinstance(t, dict) and t.get("name")]


def _step_node(step: dict, hook: bool = False) -> ResultNode:
    result = step.get("result") or {}
    # A step without a result never ran.
    status = normalize_status(result.get("status")) if result else SKIPPED
    detail = result.get("error_message") or ""
    keyword = (step.get("keyword") or "").strip()
    if hook and not keyword:
        keyword = "Hook"
    return ResultNode(
        name=step.get("name") or (step.get("match") or {}).get("location", ""),
        keyword=keyword,
        status=status,
        duration=ns_to_seconds(result.get("duration")),
        message=first_line(detail),
        detail=detail,
    )


def _is_hook(step: dict) -> bool:
    return bool(step.get("hidden")) or (step.get("keyword") or "").strip() in HOOK_KEYWORDS


def _scenario_node(element: dict, background: list[dict]) -> ResultNode:
    steps: list[tuple[dict, bool]] = [(h, True) for h in element.get("before") or []]
    steps += [(s, False) for s in background]
    for step in element.get("steps") or []:
        steps.append((step, _is_hook(step)))
    steps += [(h, True) for h in element.get("after") or []]

    nodes = [(_step_node(step, hook), hook) for step, hook in steps if isinstance(step, dict)]
    counted = [n for n, _ in nodes]
    shown = [n for n, hook in nodes if not hook or n.status != PASSED]

    return ResultNode(
        name=element.get("name") or "unnamed scenario",
        keyword=(element.get("keyword") or "Scenario").strip(),
        # A scenario without any steps has nothing that passed.
        status=rollup(n.status for n in counted) if counted else SKIPPED,
        duration=sum_durations(counted),
        tags=_tag_names(element.get("tags")),
        children=shown,
    )


def _features(data) -> list[dict]:
    if isinstance(data, dict) and isinstance(data.get("features"), list):
        data = data["features"]
    if not isinstance(data, list):
        raise ReportParseError("expected a JSON array of features")
    return [f for f in data if isinstance(f, dict)]


class CucumberConverter:
    format = ReportFormat.CUCUMBER

    def parse(self, payload: bytes) -> ParsedReport:
        groups = []
        scenarios_seen: list[ResultNode] = []

        for feature in _features(load_json(payload)):
            scenarios = []
            background: list[dict] = []
            for element in feature.get("elements") or []:
                if not isinstance(element, dict):
                    continue
                if element.get("type") == "background":
                    background = [s for s in element.get("steps") or [] if isinstance(s, dict)]
                    continue
                scenarios.append(_scenario_node(element, background))
                background = []

            groups.append(ResultNode(
                name=feature.get("name") or feature.get("uri") or "unnamed feature",
                keyword=(feature.get("keyword") or "Feature").strip(),
                status=rollup(s.status for s in scenarios),
                duration=sum_durations(scenarios),
                tags=_tag_names(feature.get("tags")),
                children=scenarios,
            ))
            scenarios_seen.extend(scenarios)

        failed = sum(1 for s in scenarios_seen if s.status == FAILED)
        skipped = sum(1 for s in scenarios_seen if s.status == SKIPPED)
        stats = TestStats.reconciled(
            total=len(scenarios_seen),
            passed=len(scenarios_seen) - failed - skipped,
            failed=failed,
            skipped=skipped,
            duration=sum_durations(scenarios_seen),
        )
        return ParsedReport(title="Cucumber Test Report", stats=stats, groups=groups)

    def render(self, parsed: ParsedReport, generated_at: Optional[datetime] = None) -> str:
        return render("cucumber.html", report=parsed, generated_at=generated_at)
