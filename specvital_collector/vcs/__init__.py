"""Version control adapters."""

from specvital_collector.vcs.git import (
    GitError,
    GitSource,
    GitVCS,
    build_repo_url,
    redact,
    with_token,
)

__all__ = ["GitError", "GitSource", "GitVCS", "build_repo_url", "redact", "with_token"]
