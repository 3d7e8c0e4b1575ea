"""Configuration for report collection and wiki publishing.

Loads from YAML config file with environment variable overrides.
Pattern: WIKI_REPORTS__{SECTION}__{KEY} overrides nested YAML keys.
Example: WIKI_REPORTS__RETENTION__MAX_REPORTS_PER_BRANCH=10
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from wiki_reports.collector import (
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_PATTERNS,
    DEFAULT_SEARCH_DIRS,
)

ENV_PREFIX = "WIKI_REPORTS"
DEFAULT_CONFIG_PATH = "config/wiki-reports.yml"


class StoreConfig(BaseModel):
    wiki_path: str = "wiki"  # local checkout of the wiki repository
    reports_dir: str = "reports"


class RetentionConfig(BaseModel):
    max_reports_per_branch: int = Field(default=20, ge=1)


class IndexConfig(BaseModel):
    max_recent_runs: int = Field(default=20, ge=1)
    max_runs_per_branch: Optional[int] = Field(default=None, ge=1)  # None: same as recent


class CollectorConfig(BaseModel):
    search_dirs: list[str] = list(DEFAULT_SEARCH_DIRS)
    patterns: list[str] = list(DEFAULT_PATTERNS)
    exclude_patterns: list[str] = list(DEFAULT_EXCLUDE_PATTERNS)


class PublishConfig(BaseModel):
    fail_on_error: bool = False  # default: never fail the pipeline


class RemoteConfig(BaseModel):
    url: str = ""  # from env: WIKI_REPO_URL
    push: bool = False
    commit_message: str = "Update test reports: {branch}/{run_id}"


class WikiReportsConfig(BaseModel):
    store: StoreConfig = StoreConfig()
    retention: RetentionConfig = RetentionConfig()
    index: IndexConfig = IndexConfig()
    collector: CollectorConfig = CollectorConfig()
    publish: PublishConfig = PublishConfig()
    remote: RemoteConfig = RemoteConfig()


def _scalar(raw: str):
    if raw.lower() in ("true", "false"):
        return raw.lower() == "true"
    return int(raw) if raw.isdigit() else raw


def env_layer(environ=None, prefix: str = ENV_PREFIX) -> dict:
    """Nested dict of every ``{prefix}__A__B=value`` variable."""
    environ = os.environ if environ is None else environ
    layer: dict = {}
    marker = f"{prefix}__"
    for name in sorted(n for n in environ if n.startswith(marker)):
        *sections, leaf = name[len(marker):].lower().split("__")
        node = layer
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = _scalar(environ[name])
    return layer


def _merged(base: dict, layer: dict) -> dict:
    out = dict(base)
    for key, value in layer.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merged(out[key], value)
        else:
            out[key] = value
    return out


def load_config(config_path: Optional[str] = None) -> WikiReportsConfig:
    """Defaults, then the YAML file, then environment variables.

    With no path, ``WIKI_REPORTS_CONFIG`` or ``config/wiki-reports.yml`` is
    tried; a missing file just means defaults. ``WIKI_REPO_URL`` is the
    wiki remote when neither the file nor an override names one.
    """
    path = Path(config_path or os.getenv(f"{ENV_PREFIX}_CONFIG", DEFAULT_CONFIG_PATH))
    from_file = yaml.safe_load(path.read_text()) if path.is_file() else None
    config = WikiReportsConfig.model_validate(_merged(from_file or {}, env_layer()))
    if not config.remote.url:
        config.remote.url = os.getenv("WIKI_REPO_URL", "")
    return config
