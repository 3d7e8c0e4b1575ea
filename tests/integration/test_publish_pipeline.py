"""
Integration Tests: Publish Pipeline

Raw CI artifacts flow through detection, conversion, the store, retention
and index generation into a temporary wiki checkout.

Test Pyramid Layer: INTEGRATION
Scope: Publisher end to end, real filesystem, fixed clock
"""
import json
import shutil
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from wiki_reports.models import PublishRequest, PublishState
from wiki_reports.publisher import PublishError, Publisher
from wiki_reports.rendering import EMPTY_INDEX_MARKER, NO_REPORTS_MARKER, PARSE_ERROR_MARKER
from wiki_reports.store import safe_segment

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _request(source, branch="main", run_id="42", minutes=0, **extra):
    return PublishRequest(
        branch=branch,
        run_id=run_id,
        commit_sha="0123456789abcdef0123456789abcdef01234567",
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        reports_source_path=source,
        **extra,
    )


def _metadata(wiki_path, branch_dir, run_id):
    return json.loads((wiki_path / "reports" / branch_dir / run_id / "metadata.json").read_text())


def _run_ids(wiki_path, branch_dir):
    path = wiki_path / "reports" / branch_dir
    return sorted((p.name for p in path.iterdir() if p.is_dir()), key=int)


@pytest.fixture
def publisher(wiki_path, fixed_clock):
    return Publisher(wiki_path, clock=fixed_clock)


@pytest.fixture
def junit_only(tmp_path, junit_payload):
    source = tmp_path / "junit-only"
    source.mkdir()
    (source / "junit.xml").write_bytes(junit_payload)
    return source


# =============================================================================
# INT-1: FULL PUBLISH
# =============================================================================

@pytest.mark.integration
class TestFullPublish:
    """INT-1: One run with every supported format."""

    def test_result(self, publisher, reports_source):
        result = publisher.publish(_request(reports_source))
        assert result.success is True
        assert result.state == PublishState.DONE
        assert result.report_path == "reports/main/42"
        # 4 raw copies, 4 format pages, run page, sidecar
        assert result.files_published == 10
        assert result.files_deleted == 0
        assert result.error is None

    def test_aggregated_metadata(self, publisher, reports_source, wiki_path):
        publisher.publish(_request(reports_source))
        meta = _metadata(wiki_path, "main", "42")
        assert meta["runId"] == "42"
        assert meta["commitSha"].startswith("01234567")
        assert meta["stats"]["total"] == 40
        assert meta["stats"]["passed"] == 32
        assert meta["stats"]["failed"] == 4
        assert meta["stats"]["skipped"] == 4
        assert meta["status"] == "failure"
        assert meta["formats"] == ["cucumber", "junit", "jest", "vitest"]
        assert [r["source"] for r in meta["reports"]] == [
            "raw/api/cucumber-report.json",
            "raw/api/junit.xml",
            "raw/web/jest-results.json",
            "raw/web/vitest-report.json",
        ]

    def test_files_on_disk(self, publisher, reports_source, wiki_path, junit_payload):
        publisher.publish(_request(reports_source))
        run_dir = wiki_path / "reports" / "main" / "42"
        for name in ("index.html", "junit.html", "jest.html", "vitest.html", "cucumber.html", "metadata.json"):
            assert (run_dir / name).is_file(), name
        assert (run_dir / "raw" / "api" / "junit.xml").read_bytes() == junit_payload
        assert (wiki_path / "reports" / "main" / "index.html").is_file()
        assert (wiki_path / "reports" / "index.html").is_file()
        assert (wiki_path / "Home.md").is_file()

    def test_run_page_links_reports(self, publisher, reports_source, wiki_path):
        publisher.publish(_request(reports_source))
        html = (wiki_path / "reports" / "main" / "42" / "index.html").read_text()
        assert 'href="junit.html"' in html
        assert 'href="raw/web/jest-results.json"' in html
        assert 'href="../../index.html"' in html

    def test_index_points_at_run(self, publisher, reports_source, wiki_path):
        publisher.publish(_request(reports_source))
        index = (wiki_path / "reports" / "index.html").read_text()
        home = (wiki_path / "Home.md").read_text()
        assert EMPTY_INDEX_MARKER not in index
        assert 'href="main/42/index.html"' in index
        assert "[42](reports/main/42/index.html)" in home


# =============================================================================
# INT-2: FALLBACK
# =============================================================================

@pytest.mark.integration
class TestFallback:
    """INT-2: Runs without artifacts still get a page."""

    @pytest.mark.parametrize("make_source", [
        lambda tmp: tmp / "does-not-exist",
        lambda tmp: (tmp / "empty").mkdir() or tmp / "empty",
    ])
    def test_fallback_page(self, publisher, wiki_path, tmp_path, make_source):
        result = publisher.publish(_request(make_source(tmp_path)))

        assert result.success is True
        assert result.files_published == 2
        page = (wiki_path / "reports" / "main" / "42" / "index.html").read_text()
        assert NO_REPORTS_MARKER in page
        meta = _metadata(wiki_path, "main", "42")
        assert meta["formats"] == []
        assert meta["status"] == "pending"
        assert meta["stats"]["total"] == 0

    def test_fallback_leaves_index_alone(self, publisher, wiki_path, tmp_path):
        publisher.publish(_request(tmp_path / "nothing"))
        assert not (wiki_path / "reports" / "index.html").exists()
        assert not (wiki_path / "Home.md").exists()

    def test_explicit_regenerate_picks_up_fallback(self, publisher, wiki_path, tmp_path):
        publisher.publish(_request(tmp_path / "nothing", run_id="7"))
        docs = publisher.regenerate_index()
        assert 'href="main/7/index.html"' in docs.global_index
        assert (wiki_path / "reports" / "index.html").read_text() == docs.global_index


# =============================================================================
# INT-3: ARTIFACT EDGE CASES
# =============================================================================

@pytest.mark.integration
class TestArtifacts:
    """INT-3: Duplicates, unknown files and broken reports."""

    def test_duplicate_formats(self, publisher, wiki_path, tmp_path, junit_payload):
        source = tmp_path / "dupes"
        for package in ("a", "b"):
            (source / package).mkdir(parents=True)
            (source / package / "junit.xml").write_bytes(junit_payload)

        publisher.publish(_request(source))

        run_dir = wiki_path / "reports" / "main" / "42"
        assert (run_dir / "junit.html").is_file()
        assert (run_dir / "junit-2.html").is_file()
        meta = _metadata(wiki_path, "main", "42")
        assert meta["formats"] == ["junit"]
        assert meta["stats"]["total"] == 20

    def test_unknown_files_kept_raw(self, publisher, wiki_path, junit_only):
        (junit_only / "notes.txt").write_text("build log")
        (junit_only / "coverage.html").write_text("<html></html>")

        result = publisher.publish(_request(junit_only))

        run_dir = wiki_path / "reports" / "main" / "42"
        assert (run_dir / "raw" / "notes.txt").read_text() == "build log"
        assert (run_dir / "raw" / "coverage.html").is_file()
        # 3 raw copies, junit page, run page, sidecar
        assert result.files_published == 6
        assert _metadata(wiki_path, "main", "42")["formats"] == ["junit"]

    def test_malformed_report_degrades(self, publisher, wiki_path, tmp_path):
        source = tmp_path / "broken"
        source.mkdir()
        (source / "junit.xml").write_text("<testsuites><testsuite")

        result = publisher.publish(_request(source))

        assert result.success is True
        page = (wiki_path / "reports" / "main" / "42" / "junit.html").read_text()
        assert PARSE_ERROR_MARKER in page
        assert _metadata(wiki_path, "main", "42")["stats"]["total"] == 0

    def test_deeply_nested_report_degrades(self, publisher, wiki_path, junit_only):
        (junit_only / "jest-results.json").write_bytes(b"[" * 200_000)

        result = publisher.publish(_request(junit_only))

        assert result.success is True
        page = (wiki_path / "reports" / "main" / "42" / "jest.html").read_text()
        assert PARSE_ERROR_MARKER in page
        assert "RecursionError" in page
        meta = _metadata(wiki_path, "main", "42")
        assert meta["stats"]["total"] == 10
        assert meta["formats"] == ["jest", "junit"]

    def test_republish_replaces_run(self, publisher, wiki_path, reports_source, junit_only):
        publisher.publish(_request(reports_source))
        publisher.publish(_request(junit_only))

        run_dir = wiki_path / "reports" / "main" / "42"
        assert not (run_dir / "cucumber.html").exists()
        assert not (run_dir / "raw" / "api").exists()
        assert _metadata(wiki_path, "main", "42")["stats"]["total"] == 10


# =============================================================================
# INT-4: RETENTION
# =============================================================================

@pytest.mark.integration
class TestRetention:
    """INT-4: Retention runs after every successful publish."""

    def test_oldest_runs_removed(self, publisher, wiki_path, junit_only):
        results = [
            publisher.publish(_request(junit_only, run_id=str(i), minutes=i))
            for i in range(1, 26)
        ]
        assert _run_ids(wiki_path, "main") == [str(i) for i in range(6, 26)]
        assert results[19].files_deleted == 0
        # run page, sidecar, junit page and raw copy per removed run
        assert results[20].files_deleted == 4

    def test_branches_are_independent(self, wiki_path, fixed_clock, junit_only):
        publisher = Publisher(wiki_path, max_reports_per_branch=10, clock=fixed_clock)
        for i in range(15):
            publisher.publish(_request(junit_only, branch="main", run_id=str(i), minutes=i))
        for i in range(3):
            publisher.publish(_request(junit_only, branch="feature", run_id=str(100 + i), minutes=i))

        assert _run_ids(wiki_path, "main") == [str(i) for i in range(5, 15)]
        assert len(_run_ids(wiki_path, "feature")) == 3

    def test_request_limit_overrides_publisher(self, publisher, wiki_path, junit_only):
        for i in range(4):
            publisher.publish(_request(junit_only, run_id=str(i), minutes=i, max_reports_per_branch=2))
        assert _run_ids(wiki_path, "main") == ["2", "3"]

    def test_unreadable_run_removed_first(self, publisher, wiki_path, junit_only):
        broken = wiki_path / "reports" / "main" / "1"
        broken.mkdir(parents=True)
        (broken / "metadata.json").write_text("{oops")

        for i in range(2, 4):
            publisher.publish(_request(junit_only, run_id=str(i), minutes=i, max_reports_per_branch=2))

        assert _run_ids(wiki_path, "main") == ["2", "3"]

    def test_similar_branch_names_kept_apart(self, publisher, wiki_path, junit_only):
        for i in range(3):
            publisher.publish(_request(junit_only, branch="feature/x", run_id=str(i), minutes=i, max_reports_per_branch=2))
        publisher.publish(_request(junit_only, branch="feature-x", run_id="9", minutes=10, max_reports_per_branch=2))

        assert _run_ids(wiki_path, safe_segment("feature/x")) == ["1", "2"]
        assert _run_ids(wiki_path, "feature-x") == ["9"]
        assert _metadata(wiki_path, "feature-x", "9")["branch"] == "feature-x"


# =============================================================================
# INT-5: INDEX
# =============================================================================

@pytest.mark.integration
class TestIndex:
    """INT-5: The index reflects exactly what is on disk."""

    def test_branch_names_with_slashes(self, publisher, wiki_path, junit_only):
        result = publisher.publish(_request(junit_only, branch="feature/login", run_id="5"))
        login = safe_segment("feature/login")

        assert result.report_path == f"reports/{login}/5"
        assert _metadata(wiki_path, login, "5")["branch"] == "feature/login"
        assert "## feature/login" in (wiki_path / "Home.md").read_text()
        branch_page = (wiki_path / "reports" / login / "index.html").read_text()
        assert 'href="5/index.html"' in branch_page

    def test_latest_run_across_branches(self, publisher, wiki_path, junit_only):
        publisher.publish(_request(junit_only, branch="main", run_id="1", minutes=0))
        publisher.publish(_request(junit_only, branch="dev", run_id="2", minutes=5))
        docs = publisher.regenerate_index()
        latest = docs.global_index.index("Latest run")
        assert docs.global_index.index('href="dev/2/index.html"', latest) < docs.global_index.index("Recent runs")

    def test_stale_branch_pages_pruned(self, publisher, wiki_path, junit_only):
        publisher.publish(_request(junit_only, branch="old", run_id="1"))
        publisher.publish(_request(junit_only, branch="main", run_id="2", minutes=1))
        shutil.rmtree(wiki_path / "reports" / "old" / "1")

        docs = publisher.regenerate_index()

        assert not (wiki_path / "reports" / "old").exists()
        assert [branch for branch, _ in docs.branch_pages] == ["main"]

    def test_regeneration_is_idempotent(self, publisher, wiki_path, reports_source, junit_only, fixed_clock):
        publisher.publish(_request(reports_source, run_id="1"))
        publisher.publish(_request(junit_only, branch="dev", run_id="2", minutes=3))

        publisher.regenerate_index(fixed_clock())
        first = {p: p.read_bytes() for p in (wiki_path / "reports").glob("**/index.html")}
        first_home = (wiki_path / "Home.md").read_bytes()
        publisher.regenerate_index(fixed_clock())

        assert {p: p.read_bytes() for p in (wiki_path / "reports").glob("**/index.html")} == first
        assert (wiki_path / "Home.md").read_bytes() == first_home


# =============================================================================
# INT-6: FAILURES
# =============================================================================

@pytest.mark.integration
class TestFailures:
    """INT-6: Errors never escape unless asked to."""

    @pytest.fixture
    def blocked_wiki(self, tmp_path):
        path = tmp_path / "wiki-file"
        path.write_text("a file where the wiki checkout should be")
        return path

    def test_failure_reported_in_result(self, blocked_wiki, reports_source, fixed_clock):
        result = Publisher(blocked_wiki, clock=fixed_clock).publish(_request(reports_source))
        assert result.success is False
        assert result.state == PublishState.FAILED
        assert result.error.startswith("write_reports:")

    def test_fail_on_error_raises(self, blocked_wiki, reports_source, fixed_clock):
        publisher = Publisher(blocked_wiki, fail_on_error=True, clock=fixed_clock)
        with pytest.raises(PublishError, match="write_reports") as exc_info:
            publisher.publish(_request(reports_source))
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_request_overrides_publisher(self, blocked_wiki, reports_source, fixed_clock):
        publisher = Publisher(blocked_wiki, fail_on_error=False, clock=fixed_clock)
        with pytest.raises(PublishError):
            publisher.publish(_request(reports_source, fail_on_error=True))

    def test_request_can_silence_publisher(self, blocked_wiki, reports_source, fixed_clock):
        publisher = Publisher(blocked_wiki, fail_on_error=True, clock=fixed_clock)
        assert publisher.publish(_request(reports_source, fail_on_error=False)).success is False

    def test_unexpected_error_reported_in_result(self, publisher, wiki_path, reports_source):
        with patch("wiki_reports.publisher.convert", side_effect=RuntimeError("renderer exploded")):
            result = publisher.publish(_request(reports_source))

        assert result.success is False
        assert result.state == PublishState.FAILED
        assert result.error == "write_reports: RuntimeError: renderer exploded"
        page = (wiki_path / "reports" / "main" / "42" / "index.html").read_text()
        assert "Publishing failed" in page

    def test_unexpected_error_raised_on_request(self, publisher, reports_source):
        with patch("wiki_reports.publisher.convert", side_effect=RuntimeError("renderer exploded")):
            with pytest.raises(PublishError, match="RuntimeError") as exc_info:
                publisher.publish(_request(reports_source, fail_on_error=True))
        assert isinstance(exc_info.value.__cause__, RuntimeError)
