"""Report converters, keyed by format.

``convert`` never raises for bad input: a report that cannot be parsed,
however it fails, becomes a zeroed result whose page carries the error.
"""

import logging
from datetime import datetime
from typing import Optional

from wiki_reports.converters.base import ReportConverter, ReportParseError
from wiki_reports.converters.cucumber import CucumberConverter
from wiki_reports.converters.jest import JestConverter
from wiki_reports.converters.junit import JUnitConverter
from wiki_reports.converters.vitest import VitestConverter
from wiki_reports.models import ConversionResult, ReportFormat, TestStats
from wiki_reports.rendering import render

logger = logging.getLogger(__name__)

CONVERTERS: dict[ReportFormat, ReportConverter] = {
    c.format: c
    for c in (JUnitConverter(), JestConverter(), VitestConverter(), CucumberConverter())
}


def get_converter(fmt: ReportFormat) -> ReportConverter:
    """Converter for a known format. Raises KeyError for UNKNOWN."""
    return CONVERTERS[ReportFormat(fmt)]


def convert(
    fmt: ReportFormat,
    payload: bytes,
    generated_at: Optional[datetime] = None,
) -> ConversionResult:
    """Parse and render one raw artifact."""
    converter = get_converter(fmt)
    try:
        parsed = converter.parse(payload)
        html = converter.render(parsed, generated_at)
    except Exception as e:
        # One broken artifact must not take the run down with it.
        error = f"{type(e).__name__}: {e}"
        logger.warning(f"Failed to parse {converter.format.value} report: {error}")
        html = render("error.html", format=converter.format.value, error=error, generated_at=generated_at)
        return ConversionResult(format=converter.format, html=html, stats=TestStats())

    return ConversionResult(format=converter.format, html=html, stats=parsed.stats)


__all__ = [
    "CONVERTERS",
    "ReportConverter",
    "ReportParseError",
    "convert",
    "get_converter",
]
