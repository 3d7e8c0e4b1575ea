"""Collects raw test report artifacts from a monorepo checkout.

Handles:
- One sorted directory walk of the tree, pruning excluded directories
- Include / exclude glob patterns (``**/`` also matches at the top level)
- Owning package resolution via the first packages/ or apps/ segment
- Staging collected artifacts for the publisher and a markdown summary
"""

import logging
import os
import shutil
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, Optional, Sequence

from wiki_reports.detector import detect
from wiki_reports.models import Artifact, PackageReports
from wiki_reports.rendering import format_bytes

logger = logging.getLogger(__name__)

ROOT_PACKAGE = "root"

DEFAULT_SEARCH_DIRS = ("packages", "apps")

DEFAULT_PATTERNS = (
    "**/cucumber-report*.json",
    "**/vitest-report.json",
    "**/vitest-results.json",
    "**/jest-results.json",
    "**/jest-report.json",
    "**/test-results/*.json",
    "**/test-results/*.xml",
    "**/junit*.xml",
    "**/TEST-*.xml",
    "**/report.xml",
)

DEFAULT_EXCLUDE_PATTERNS = (
    "**/node_modules/**",
    "**/dist/**",
    "**/build/**",
    "**/.git/**",
    "**/coverage/lcov-report/**",
    "**/.cache/**",
)


def glob_match(rel_path: str, pattern: str) -> bool:
    """fnmatch on a posix relative path; a leading ``**/`` may match nothing."""
    if fnmatchcase(rel_path, pattern):
        return True
    if pattern.startswith("**/"):
        return fnmatchcase(rel_path, pattern[3:])
    return False


def _matches_any(rel_path: str, patterns: Iterable[str]) -> bool:
    return any(glob_match(rel_path, p) for p in patterns)


def package_for(rel_path: str, search_dirs: Sequence[str] = DEFAULT_SEARCH_DIRS) -> tuple[str, str]:
    """(package name, package directory) for a path relative to the root."""
    parts = rel_path.split("/")
    # The last part is the file itself and never a package name.
    for i, part in enumerate(parts[:-2]):
        if part in search_dirs:
            return parts[i + 1], "/".join(parts[: i + 2])
    return ROOT_PACKAGE, ""


def _walk(base: Path, exclude_patterns: Sequence[str]):
    """Yield files under ``base`` in sorted order, skipping excluded trees."""
    for dirpath, dirnames, filenames in os.walk(base):
        rel_dir = Path(dirpath).relative_to(base).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = sorted(
            d for d in dirnames if not _matches_any(f"{rel_dir}{d}/", exclude_patterns)
        )
        for name in sorted(filenames):
            yield Path(dirpath) / name, f"{rel_dir}{name}"


def collect(
    root_dir,
    patterns: Optional[Sequence[str]] = None,
    exclude_patterns: Optional[Sequence[str]] = None,
    explicit_packages: Optional[Sequence[str]] = None,
    search_dirs: Sequence[str] = DEFAULT_SEARCH_DIRS,
) -> list[PackageReports]:
    """Find report artifacts below ``root_dir`` grouped by package.

    Without ``explicit_packages`` the whole tree is walked once and every
    file is assigned to its package (or ``root``). With them, only those
    directories are walked and each directory is its own package.
    Directories that do not exist contribute nothing.
    """
    root = Path(root_dir)
    patterns = tuple(patterns or DEFAULT_PATTERNS)
    exclude_patterns = tuple(DEFAULT_EXCLUDE_PATTERNS if exclude_patterns is None else exclude_patterns)

    if explicit_packages:
        bases = [(root / p, Path(p).name) for p in explicit_packages]
    else:
        bases = [(root, None)]

    grouped: dict[str, PackageReports] = {}
    seen: set[Path] = set()

    for base, fixed_name in bases:
        if not base.is_dir():
            logger.debug(f"Skipping missing directory {base}")
            continue

        for path, rel_path in _walk(base, exclude_patterns):
            if not _matches_any(rel_path, patterns) or _matches_any(rel_path, exclude_patterns):
                continue
            try:
                resolved = path.resolve()
                size = path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot stat {path}: {e}")
                continue
            if resolved in seen or size == 0:
                continue
            seen.add(resolved)

            if fixed_name:
                name, package_path = fixed_name, base
            else:
                name, package_dir = package_for(rel_path, search_dirs)
                package_path = root / package_dir if package_dir else root
            if name not in grouped:
                grouped[name] = PackageReports(package_name=name, package_path=package_path)
            grouped[name].artifacts.append(Artifact(path=path, type=detect(path), size=size))

    packages = [grouped[name] for name in sorted(grouped)]
    logger.info(
        f"Collected {sum(len(p.artifacts) for p in packages)} artifacts "
        f"from {len(packages)} packages under {root}"
    )
    return packages


def stage_artifacts(packages: Iterable[PackageReports], destination) -> list[Path]:
    """Copy artifacts into ``<destination>/<package>/<file>``.

    Name collisions inside a package get a numeric suffix. Returns the
    staged paths in copy order.
    """
    destination = Path(destination)
    staged = []
    for package in packages:
        package_dir = destination / package.package_name
        package_dir.mkdir(parents=True, exist_ok=True)
        for artifact in package.artifacts:
            target = package_dir / artifact.path.name
            counter = 2
            while target.exists():
                target = package_dir / f"{artifact.path.stem}-{counter}{artifact.path.suffix}"
                counter += 1
            shutil.copy2(artifact.path, target)
            staged.append(target)
    logger.info(f"Staged {len(staged)} artifacts into {destination}")
    return staged


def render_summary(packages: Sequence[PackageReports]) -> str:
    """Markdown summary of a collection, for CI logs."""
    total_reports = sum(len(p.artifacts) for p in packages)
    total_size = sum(a.size for p in packages for a in p.artifacts)

    lines = ["# Collected Test Reports", ""]
    lines.append("## Summary")
    lines.append(f"- **Packages:** {len(packages)}")
    lines.append(f"- **Reports:** {total_reports}")
    lines.append(f"- **Total Size:** {format_bytes(total_size)}")
    lines.append("")

    for package in packages:
        lines.append(f"### {package.package_name}")
        for artifact in package.artifacts:
            lines.append(f"- {artifact.type.value}: {artifact.path.name} - {format_bytes(artifact.size)}")
        lines.append("")

    return "\n".join(lines)
