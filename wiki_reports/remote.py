"""Wiki remote: keeps the local wiki checkout in sync with its git repository.

The publisher only touches the local checkout; pushing is a separate step
driven by the CLI.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class WikiRemoteError(Exception):
    """A git operation against the wiki repository failed."""


@runtime_checkable
class WikiRemote(Protocol):
    """Protocol for wiki remotes."""

    def push(self, wiki_path: Path, message: str) -> bool:
        """Commit and push local changes. Returns False when there was nothing to push."""
        ...


def wiki_url_from_repo(repo_url: str) -> str:
    """Wiki repository URL for a code repository URL.

    https://github.com/owner/repo.git -> https://github.com/owner/repo.wiki.git
    """
    url = repo_url.strip().rstrip("/")
    if url.endswith(".wiki.git"):
        return url
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return f"{url}.wiki.git"


class GitWikiRemote:
    """Wiki remote backed by the git command line."""

    def __init__(self, url: str = "", git: str = "git"):
        self.url = url
        self.git = git

    def _run(self, *args: str, cwd=None) -> subprocess.CompletedProcess:
        cmd = [self.git, *args]
        logger.debug(f"Running {' '.join(cmd)} in {cwd or '.'}")
        try:
            return subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
        except OSError as e:
            raise WikiRemoteError(f"Cannot run {self.git}: {e}") from e

    def _check(self, *args: str, cwd=None) -> str:
        result = self._run(*args, cwd=cwd)
        if result.returncode != 0:
            raise WikiRemoteError(f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}")
        return result.stdout

    def is_repo(self, path: Path) -> bool:
        if not Path(path).is_dir():
            return False
        return self._run("rev-parse", "--is-inside-work-tree", cwd=path).returncode == 0

    def ensure_checkout(self, wiki_path: Path) -> Path:
        """Pull an existing checkout or clone a fresh one."""
        wiki_path = Path(wiki_path)
        if self.is_repo(wiki_path):
            logger.info(f"Pulling wiki checkout in {wiki_path}")
            self._check("pull", "--ff-only", cwd=wiki_path)
            return wiki_path

        if not self.url:
            raise WikiRemoteError("No wiki URL configured and no existing checkout")
        if wiki_path.exists():
            # Not a repository: replace it with a fresh clone.
            shutil.rmtree(wiki_path)
        wiki_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cloning wiki {self.url} into {wiki_path}")
        self._check("clone", self.url, str(wiki_path))
        return wiki_path

    def is_reachable(self) -> bool:
        if not self.url:
            return False
        result = self._run("ls-remote", self.url)
        return result.returncode == 0 and bool(result.stdout.strip())

    def push(self, wiki_path: Path, message: str) -> bool:
        self._check("add", "-A", cwd=wiki_path)
        # diff --cached --quiet exits 0 when nothing is staged
        if self._run("diff", "--cached", "--quiet", cwd=wiki_path).returncode == 0:
            logger.info("Wiki unchanged, nothing to push")
            return False
        self._check("commit", "-m", message, cwd=wiki_path)
        self._check("push", cwd=wiki_path)
        logger.info(f"Pushed wiki changes: {message}")
        return True
