"""Command line entry point.

Usage (CI):
    wiki-reports collect --stage test-reports
    wiki-reports publish --source test-reports --push

Usage (local):
    wiki-reports publish --source test-reports --branch main --run-id 42 --wiki-path wiki
    wiki-reports index --wiki-path wiki

Environment variables (GitLab CI, GitHub Actions as fallback):
    CI_COMMIT_REF_NAME / GITHUB_REF_NAME, CI_PIPELINE_ID / GITHUB_RUN_ID,
    CI_COMMIT_SHA / GITHUB_SHA, CI_COMMIT_TIMESTAMP
"""

import argparse
import json
import logging
import os
import sys
from typing import Optional

from pydantic import ValidationError

from wiki_reports.collector import collect, render_summary, stage_artifacts
from wiki_reports.config import WikiReportsConfig, load_config
from wiki_reports.models import PublishRequest
from wiki_reports.publisher import PublishError, Publisher
from wiki_reports.remote import GitWikiRemote, WikiRemoteError

logger = logging.getLogger(__name__)


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return default


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wiki-reports",
        description="Collect test reports and publish them to a wiki",
    )
    parser.add_argument("--config", help="YAML config file (default: $WIKI_REPORTS_CONFIG)")
    parser.add_argument("--wiki-path", help="Local wiki checkout (overrides config)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_collect = sub.add_parser("collect", help="Find report artifacts in the workspace")
    p_collect.add_argument("--root", default=".", help="Workspace root")
    p_collect.add_argument("--package", action="append", dest="packages", help="Explicit package directory (repeatable)")
    p_collect.add_argument("--stage", help="Copy artifacts into this directory, grouped by package")

    p_publish = sub.add_parser("publish", help="Publish a run's reports to the wiki checkout")
    p_publish.add_argument("--source", required=True, help="Directory with the run's raw reports")
    p_publish.add_argument("--branch", default=_env("CI_COMMIT_REF_NAME", "GITHUB_REF_NAME"))
    p_publish.add_argument("--run-id", default=_env("CI_PIPELINE_ID", "GITHUB_RUN_ID"))
    p_publish.add_argument("--commit", default=_env("CI_COMMIT_SHA", "GITHUB_SHA"))
    p_publish.add_argument("--timestamp", default=_env("CI_COMMIT_TIMESTAMP") or None, help="ISO 8601, default now")
    p_publish.add_argument("--max-reports", type=int, help="Runs kept per branch")
    p_publish.add_argument("--fail-on-error", action="store_true", default=None, help="Exit non-zero on failures")
    p_publish.add_argument("--pull", action="store_true", help="Pull or clone the wiki before publishing")
    p_publish.add_argument("--push", action="store_true", default=None, help="Commit and push the wiki afterwards")

    sub.add_parser("index", help="Rebuild the index pages from the published runs")
    return parser


def cmd_collect(args, config: WikiReportsConfig) -> int:
    packages = collect(
        args.root,
        patterns=config.collector.patterns,
        exclude_patterns=config.collector.exclude_patterns,
        explicit_packages=args.packages,
        search_dirs=config.collector.search_dirs,
    )
    print(render_summary(packages))
    if args.stage:
        stage_artifacts(packages, args.stage)
    return 0


def cmd_publish(args, config: WikiReportsConfig) -> int:
    fail_on_error = config.publish.fail_on_error if args.fail_on_error is None else args.fail_on_error
    push = config.remote.push if args.push is None else args.push
    remote = GitWikiRemote(config.remote.url)

    if not args.branch or not args.run_id:
        logger.error("Branch and run id are required (flags or CI environment)")
        return 2

    try:
        if args.pull:
            remote.ensure_checkout(config.store.wiki_path)

        request_fields = dict(
            branch=args.branch,
            run_id=args.run_id,
            commit_sha=args.commit,
            reports_source_path=args.source,
            max_reports_per_branch=args.max_reports,
            fail_on_error=fail_on_error,
        )
        if args.timestamp:
            request_fields["timestamp"] = args.timestamp
        request = PublishRequest(**request_fields)

        result = Publisher.from_config(config).publish(request)
        print(result.model_dump_json(indent=2))

        if result.success and push:
            message = config.remote.commit_message.format(branch=request.branch, run_id=request.run_id)
            remote.push(config.store.wiki_path, message)
    except ValidationError as e:
        logger.error(f"Invalid publish request: {e}")
        return 2
    except PublishError as e:
        logger.error(f"Publish failed: {e}")
        return 1
    except WikiRemoteError as e:
        logger.error(f"Wiki remote failed: {e}")
        return 1 if fail_on_error else 0

    return 0


def cmd_index(args, config: WikiReportsConfig) -> int:
    docs = Publisher.from_config(config).regenerate_index()
    print(json.dumps({"branches": [branch for branch, _ in docs.branch_pages]}, indent=2))
    return 0


COMMANDS = {
    "collect": cmd_collect,
    "publish": cmd_publish,
    "index": cmd_index,
}


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    if args.wiki_path:
        config.store.wiki_path = args.wiki_path

    return COMMANDS[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
