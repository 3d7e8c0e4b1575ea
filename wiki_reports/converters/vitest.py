"""Vitest JSON converter (``vitest run --reporter=json``).

The output is Jest-compatible; the difference is presentation, where
``ancestorTitles`` are expanded into nested describe blocks.
"""

from datetime import datetime
from typing import Optional

from wiki_reports.converters.base import (
    ParsedReport,
    ResultNode,
    apply_rollup,
    load_json_object,
    sum_durations,
)
from wiki_reports.converters.jest import (
    assertion_node,
    file_duration,
    file_name,
    file_results,
    mark_file_failure,
    summary_stats,
)
from wiki_reports.models import ReportFormat
from wiki_reports.rendering import render


def _describe_tree(assertions: list[dict]) -> list[ResultNode]:
    roots: list[ResultNode] = []
    blocks: dict[tuple, ResultNode] = {}

    for assertion in assertions:
        siblings = roots
        path: tuple = ()
        for title in assertion.get("ancestorTitles") or []:
            path = (*path, title)
            block = blocks.get(path)
            if block is None:
                block = ResultNode(name=title, keyword="describe")
                blocks[path] = block
                siblings.append(block)
            siblings = block.children
        siblings.append(assertion_node(assertion, with_ancestors=False))

    # Innermost blocks first so parents sum finished children.
    for block in reversed(list(blocks.values())):
        block.duration = sum_durations(block.children)
    return roots


class VitestConverter:
    format = ReportFormat.VITEST

    def parse(self, payload: bytes) -> ParsedReport:
        data = load_json_object(payload)

        groups = []
        for file_result in file_results(data):
            assertions = [
                a for a in file_result.get("assertionResults") or [] if isinstance(a, dict)
            ]
            tests = [assertion_node(a) for a in assertions]
            node = ResultNode(
                name=file_name(file_result),
                duration=file_duration(file_result, tests),
                children=_describe_tree(assertions),
            )
            apply_rollup(node)
            mark_file_failure(node, file_result)
            groups.append(node)

        return ParsedReport(
            title="Vitest Test Report",
            stats=summary_stats(data, groups),
            groups=groups,
        )

    def render(self, parsed: ParsedReport, generated_at: Optional[datetime] = None) -> str:
        return render("vitest.html", report=parsed, generated_at=generated_at)
