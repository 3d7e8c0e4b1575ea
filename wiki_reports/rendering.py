"""Jinja2 rendering for report pages, index pages and Home.md.

All HTML comes out of the templates in ``templates/``. Output depends only
on the context passed in; the one wall-clock value is the explicit
``generated_at`` stamp supplied by the caller.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"

# Marker strings other tools and tests look for
NO_REPORTS_MARKER = "No test reports available"
EMPTY_INDEX_MARKER = "No reports yet"
PARSE_ERROR_MARKER = "Failed to parse report"


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "—"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m {rest:.0f}s"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def format_percent(value: Optional[float]) -> str:
    return f"{value:.1f}%" if value is not None else "—"


def short_sha(sha: Optional[str]) -> str:
    return (sha or "")[:8] or "n/a"


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


_env: Optional[Environment] = None


def get_environment() -> Environment:
    """Shared template environment (created on first use)."""
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        _env.filters.update(
            duration=format_duration,
            timestamp=format_timestamp,
            iso=format_iso,
            percent=format_percent,
            short_sha=short_sha,
            bytes=format_bytes,
        )
        _env.globals.update(
            NO_REPORTS_MARKER=NO_REPORTS_MARKER,
            EMPTY_INDEX_MARKER=EMPTY_INDEX_MARKER,
            PARSE_ERROR_MARKER=PARSE_ERROR_MARKER,
        )
    return _env


def render(template_name: str, **context) -> str:
    """Render a template by name."""
    return get_environment().get_template(template_name).render(**context)
