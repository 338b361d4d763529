"""Git adapter: shallow clones, remote HEAD probes and commit checks.

All commands run the ``git`` binary as a subprocess with terminal prompts
disabled, so a private repository without credentials fails fast instead of
waiting for input. Each command is bounded by the caller's deadline and is
killed as soon as the deadline expires or is cancelled.

Access tokens are embedded in the remote URL (``x-access-token`` user) and
are scrubbed from every error message and log line.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.models import DEFAULT_HOST
from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_USERNAME = "x-access-token"
NOT_OUR_REF = "not our ref"

# Seconds between deadline checks while a git command runs
_POLL_INTERVAL = 0.5

_URL_CREDENTIALS_RE = re.compile(r"(https?://)[^@/\s]+@")


class GitError(Exception):
    """A git command failed."""


def build_repo_url(owner: str, repo: str, host: str = DEFAULT_HOST) -> str:
    """Public HTTPS URL of a repository."""
    return f"https://{host}/{owner}/{repo}"


def with_token(url: str, token: str) -> str:
    """Embed an access token into an HTTPS remote URL."""
    return url.replace("https://", f"https://{TOKEN_USERNAME}:{token}@", 1)


def redact(text: str, token: str | None = None) -> str:
    """Remove credentials from text before it is logged or raised."""
    if token:
        text = text.replace(token, "***")
    return _URL_CREDENTIALS_RE.sub(r"\1***@", text)


def _git_env() -> dict[str, str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


@dataclass
class _Result:
    returncode: int
    stdout: str
    stderr: str


def _run_git(
    git_binary: str,
    args: list[str],
    *,
    deadline: Deadline,
    cwd: str | None = None,
) -> _Result:
    """Run a git command, killing it when the deadline is done.

    Raises:
        DeadlineExceeded: The deadline expired or was cancelled
        GitError: The git binary could not be started
    """
    deadline.check()
    try:
        proc = subprocess.Popen(
            [git_binary, *args],
            cwd=cwd,
            env=_git_env(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise GitError(f"start git: {e}") from e

    while True:
        remaining = deadline.remaining()
        wait = _POLL_INTERVAL if remaining is None else min(_POLL_INTERVAL, remaining)
        try:
            stdout, stderr = proc.communicate(timeout=wait)
            return _Result(proc.returncode, stdout or "", stderr or "")
        except subprocess.TimeoutExpired:
            err = deadline.error()
            if err is not None:
                proc.kill()
                proc.communicate()
                raise err


class GitSource:
    """A shallow checkout in a directory owned by this object.

    The directory is removed by :meth:`close`; callers must close every
    source they obtain, including on error paths.
    """

    def __init__(self, root: str, branch: str, commit_sha: str, git_binary: str = "git"):
        self._root = root
        self._branch = branch
        self._commit_sha = commit_sha
        self._git = git_binary
        self._closed = False

    @property
    def root(self) -> str:
        return self._root

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def commit_sha(self) -> str:
        return self._commit_sha

    def close(self, *, deadline: Deadline | None = None) -> None:
        """Remove the checkout. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        shutil.rmtree(self._root)
        logger.debug("source_closed", root=self._root)

    def verify_commit_exists(self, sha: str, *, deadline: Deadline | None = None) -> bool:
        """Check whether ``sha`` exists on the remote.

        Runs ``git fetch --depth 1 origin <sha>`` inside the checkout. Git
        reports an unknown commit with "not our ref" on stderr; that text is
        the only signal, so localized git builds may report a failure
        instead of False.

        Raises:
            ValueError: sha is empty
            DeadlineExceeded: The deadline expired or was cancelled
            GitError: The fetch failed for any other reason
        """
        if not sha:
            raise ValueError("verify commit exists: SHA is required")
        deadline = ensure_deadline(deadline)

        result = _run_git(
            self._git,
            ["fetch", "--depth", "1", "origin", sha],
            deadline=deadline,
            cwd=self._root,
        )
        if result.returncode == 0:
            return True
        deadline.check()
        if NOT_OUR_REF in result.stderr:
            return False
        raise GitError(f"git fetch origin {sha}: {redact(result.stderr.strip())}")

    def __repr__(self) -> str:
        return f"<GitSource root={self._root!r} branch={self._branch!r} commit={self._commit_sha[:8]!r}>"


class GitVCS:
    """Clones repositories with the git command line.

    Stateless apart from configuration; concurrency limits are applied by
    the caller.

    Args:
        clone_base_dir: Parent directory for checkouts (system temp dir if None)
        git_binary: Name or path of the git executable
    """

    def __init__(self, clone_base_dir: str | Path | None = None, git_binary: str = "git"):
        self._clone_base_dir = str(clone_base_dir) if clone_base_dir else None
        self._git = git_binary

    def clone(
        self,
        url: str,
        token: str | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> GitSource:
        """Shallow-clone the default branch of ``url``.

        Raises:
            ValueError: url is empty
            DeadlineExceeded: The deadline expired or was cancelled
            GitError: git failed; the message has credentials removed
        """
        if not url:
            raise ValueError("clone repository: URL is required")
        deadline = ensure_deadline(deadline)
        remote = with_token(url, token) if token else url

        if self._clone_base_dir:
            os.makedirs(self._clone_base_dir, exist_ok=True)
        root = tempfile.mkdtemp(prefix="specvital-", dir=self._clone_base_dir)

        try:
            result = _run_git(
                self._git,
                ["clone", "--depth", "1", "--single-branch", remote, root],
                deadline=deadline,
            )
            if result.returncode != 0:
                raise GitError(
                    f"clone repository {url!r}: {redact(result.stderr.strip(), token)}"
                )
            commit_sha = self._rev_parse(root, ["HEAD"], deadline)
            branch = self._rev_parse(root, ["--abbrev-ref", "HEAD"], deadline)
        except BaseException:
            shutil.rmtree(root, ignore_errors=True)
            raise

        logger.info("repository_cloned", url=url, branch=branch, commit_sha=commit_sha)
        return GitSource(root, branch, commit_sha, self._git)

    def get_head_commit(
        self,
        url: str,
        token: str | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> str:
        """Return the SHA of the remote's HEAD with ``git ls-remote``.

        Raises:
            ValueError: url is empty
            DeadlineExceeded: The deadline expired or was cancelled
            GitError: git failed or printed nothing
        """
        if not url:
            raise ValueError("get head commit: URL is required")
        remote = with_token(url, token) if token else url

        result = _run_git(
            self._git, ["ls-remote", remote, "HEAD"], deadline=ensure_deadline(deadline)
        )
        if result.returncode != 0:
            raise GitError(f"git ls-remote {url!r}: {redact(result.stderr.strip(), token)}")

        # Output format: "<sha>\tHEAD\n"
        fields = result.stdout.split()
        if not fields:
            raise GitError(f"git ls-remote {url!r}: empty response")
        return fields[0]

    def _rev_parse(self, root: str, args: list[str], deadline: Deadline) -> str:
        result = _run_git(self._git, ["rev-parse", *args], deadline=deadline, cwd=root)
        if result.returncode != 0:
            raise GitError(f"git rev-parse {' '.join(args)}: {result.stderr.strip()}")
        return result.stdout.strip()
