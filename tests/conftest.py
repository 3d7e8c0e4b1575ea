"""
Wiki Reports Test Configuration

Shared fixtures for all tests. Every sample report describes the same run
shape: 10 tests, 8 passed, 1 failed, 1 skipped.
"""
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from wiki_reports.models import RunRecord, RunStatus, TestStats
from wiki_reports.store import safe_segment


BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
GENERATED_AT = datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)


# =============================================================================
# FIXTURES: Sample Reports
# =============================================================================

def make_junit_report() -> bytes:
    cases = []
    for i in range(8):
        cases.append(f'<testcase classname="tests.test_api" name="test_ok_{i}" time="0.100"/>')
    cases.append(
        '<testcase classname="tests.test_api" name="test_divide_zero" time="0.100">'
        '<failure message="ZeroDivisionError">Traceback (most recent call last):\n'
        'ZeroDivisionError: division by zero</failure></testcase>'
    )
    cases.append(
        '<testcase classname="tests.test_api" name="test_slow" time="0.100">'
        '<skipped message="slow test"/></testcase>'
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<testsuites tests="10" failures="1" errors="0" skipped="1" time="1.5">\n'
        '<testsuite name="pytest" tests="10" failures="1" errors="0" skipped="1" time="1.5">\n'
        + "\n".join(cases)
        + "\n</testsuite>\n</testsuites>\n"
    ).encode()


def _assertion(title, status, ancestors, duration=100, failure=None):
    return {
        "ancestorTitles": ancestors,
        "title": title,
        "fullName": " ".join([*ancestors, title]),
        "status": status,
        "duration": duration,
        "failureMessages": [failure] if failure else [],
    }


def make_jest_report(framework: str = "jest") -> bytes:
    first = [_assertion(f"adds {i}", "passed", ["math", "add"]) for i in range(4)]
    first.append(_assertion(
        "divides by zero", "failed", ["math", "divide"],
        failure="Error: expect(received).toBe(expected)\n    at Object.<anonymous> (math.test.js:12:5)",
    ))
    second = [_assertion(f"renders {i}", "passed", ["Button"]) for i in range(4)]
    second.append(_assertion("handles hover", "pending", ["Button"], duration=None))

    report = {
        "numTotalTests": 10,
        "numPassedTests": 8,
        "numFailedTests": 1,
        "numPendingTests": 1,
        "numTodoTests": 0,
        "numTotalTestSuites": 2,
        "success": False,
        "startTime": 1772366400000,
        "testResults": [
            {"name": "/repo/packages/lib/math.test.js", "status": "failed", "message": "", "assertionResults": first},
            {"name": "/repo/apps/web/Button.test.tsx", "status": "passed", "message": "", "assertionResults": second},
        ],
    }
    if framework == "vitest":
        report["framework"] = "vitest"
    return json.dumps(report, indent=2).encode()


def _step(status, keyword="Given ", name="a step", duration_ns=500_000_000, error=None):
    result = {"status": status}
    if duration_ns is not None:
        result["duration"] = duration_ns
    if error:
        result["error_message"] = error
    return {"keyword": keyword, "name": name, "result": result}


def _scenario(name, outcome):
    if outcome == "passed":
        steps = [_step("passed"), _step("passed", keyword="Then ")]
    elif outcome == "failed":
        steps = [
            _step("passed"),
            _step("failed", keyword="Then ", name="the total is 42",
                  error="AssertionError: expected 41 to equal 42"),
        ]
    else:
        steps = [
            _step("undefined", name="an unimplemented step", duration_ns=None),
            _step("skipped", keyword="Then ", duration_ns=None),
        ]
    return {"type": "scenario", "keyword": "Scenario", "name": name, "tags": [{"name": "@smoke"}], "steps": steps}


def make_cucumber_report() -> bytes:
    outcomes = ["passed"] * 8 + ["failed", "skipped"]
    features = []
    for f in range(2):
        elements = []
        for s in range(5):
            index = f * 5 + s
            elements.append(_scenario(f"scenario {index}", outcomes[index]))
        features.append({
            "uri": f"features/feature_{f}.feature",
            "keyword": "Feature",
            "name": f"Feature {f}",
            "tags": [],
            "elements": elements,
        })
    return json.dumps(features, indent=2).encode()


@pytest.fixture
def junit_payload() -> bytes:
    return make_junit_report()


@pytest.fixture
def jest_payload() -> bytes:
    return make_jest_report()


@pytest.fixture
def vitest_payload() -> bytes:
    return make_jest_report("vitest")


@pytest.fixture
def cucumber_payload() -> bytes:
    return make_cucumber_report()


@pytest.fixture
def reports_source(tmp_path) -> Path:
    """A CI staging directory with one report of every supported format."""
    source = tmp_path / "test-reports"
    (source / "api").mkdir(parents=True)
    (source / "web").mkdir(parents=True)
    (source / "api" / "junit.xml").write_bytes(make_junit_report())
    (source / "api" / "cucumber-report.json").write_bytes(make_cucumber_report())
    (source / "web" / "jest-results.json").write_bytes(make_jest_report())
    (source / "web" / "vitest-report.json").write_bytes(make_jest_report("vitest"))
    return source


@pytest.fixture
def wiki_path(tmp_path) -> Path:
    path = tmp_path / "wiki"
    path.mkdir()
    return path


# =============================================================================
# FIXTURES: Run Records
# =============================================================================

def make_run(branch="main", run_id="1", minutes=0, timestamp=..., failed=0, reports_dir="reports"):
    """RunRecord at BASE_TIME + minutes (timestamp=None for an undated run)."""
    if timestamp is ...:
        timestamp = BASE_TIME + timedelta(minutes=minutes)
    return RunRecord(
        run_id=run_id,
        branch=branch,
        commit_sha=f"{int(run_id) if run_id.isdigit() else 0:040x}",
        timestamp=timestamp,
        report_path=f"{reports_dir}/{safe_segment(branch)}/{safe_segment(run_id)}",
        status=RunStatus.FAILURE if failed else RunStatus.SUCCESS,
        stats=TestStats(total=10, passed=10 - failed, failed=failed),
    )


@pytest.fixture
def run_factory():
    return make_run


@pytest.fixture
def fixed_clock():
    return lambda: GENERATED_AT
