"""Immutable value types shared across the collector.

The inventory types mirror what a parser emits for a scanned checkout: an
ordered sequence of test files, each holding a tree of suites and tests.
They are transient values; persistence lives in ``specvital_collector.db``.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from specvital_collector.domain.errors import InvalidInputError, InvalidParamsError

DEFAULT_HOST = "github.com"

MAX_OWNER_LENGTH = 39
MAX_REPO_LENGTH = 100

_GITHUB_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")


def is_valid_github_name(value: str) -> bool:
    """Check an owner or repository name against GitHub's character set."""
    if not value:
        return False
    if value in (".", "..") or ".." in value:
        return False
    return _GITHUB_NAME_RE.fullmatch(value) is not None


def parse_uuid(value: str) -> UUID:
    """Parse a canonical UUID string, raising ValueError when malformed."""
    if not isinstance(value, str):
        raise ValueError(f"expected UUID string, got {type(value).__name__}")
    return UUID(value)


@dataclass(frozen=True)
class AnalyzeRequest:
    """Request to analyze one repository."""

    owner: str
    repo: str
    user_id: str | None = None
    analysis_id: str | None = None

    def validate(self) -> None:
        """Raise InvalidInputError if the request cannot be processed."""
        if not self.owner:
            raise InvalidInputError("owner is required")
        if not self.repo:
            raise InvalidInputError("repo is required")
        if len(self.owner) > MAX_OWNER_LENGTH or len(self.repo) > MAX_REPO_LENGTH:
            raise InvalidInputError("owner/repo exceeds length limit")
        if not is_valid_github_name(self.owner) or not is_valid_github_name(self.repo):
            raise InvalidInputError("invalid characters in owner/repo")
        if self.analysis_id is not None:
            try:
                parse_uuid(self.analysis_id)
            except ValueError:
                raise InvalidInputError("invalid analysis ID format") from None


class TestStatus(str, enum.Enum):
    """Status of a test as reported by the parser."""

    __test__ = False

    ACTIVE = "active"
    FOCUSED = "focused"
    SKIPPED = "skipped"
    PENDING = "pending"
    FIXME = "fixme"
    TODO = "todo"
    XFAIL = "xfail"


@dataclass(frozen=True)
class Location:
    start_line: int = 1
    end_line: int | None = None


@dataclass(frozen=True)
class Test:
    """A single test case."""

    __test__ = False

    name: str
    location: Location = field(default_factory=Location)
    status: TestStatus | str = TestStatus.ACTIVE
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class TestSuite:
    """A (possibly nested) group of tests, e.g. a ``describe`` block or class."""

    __test__ = False

    name: str
    location: Location = field(default_factory=Location)
    suites: tuple[TestSuite, ...] = ()
    tests: tuple[Test, ...] = ()


@dataclass(frozen=True)
class TestFile:
    """Tests discovered in one source file.

    ``tests`` holds file-level tests that are not wrapped in any suite.
    """

    __test__ = False

    path: str
    framework: str = ""
    suites: tuple[TestSuite, ...] = ()
    tests: tuple[Test, ...] = ()


@dataclass(frozen=True)
class Inventory:
    """Parser output: test files in emission order."""

    files: tuple[TestFile, ...] = ()

    @property
    def total_tests(self) -> int:
        def count(suite: TestSuite) -> int:
            return len(suite.tests) + sum(count(s) for s in suite.suites)

        return sum(len(f.tests) + sum(count(s) for s in f.suites) for f in self.files)


@dataclass(frozen=True)
class CreateAnalysisRecordParams:
    """Inputs for creating a ``running`` analysis record."""

    owner: str
    repo: str
    commit_sha: str
    branch: str = ""
    user_id: str | None = None
    host: str = DEFAULT_HOST

    def validate(self) -> None:
        if not self.owner:
            raise InvalidParamsError("invalid params: owner is required")
        if not self.repo:
            raise InvalidParamsError("invalid params: repo is required")
        if not self.commit_sha:
            raise InvalidParamsError("invalid params: commit SHA is required")


@dataclass(frozen=True)
class SaveAnalysisInventoryParams:
    analysis_id: UUID | None
    inventory: Inventory | None

    def validate(self) -> None:
        if self.analysis_id is None:
            raise InvalidParamsError("invalid params: analysis ID is required")
        if self.inventory is None:
            raise InvalidParamsError("invalid params: inventory is required")


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of a successful analysis run."""

    analysis_id: UUID
    commit_sha: str
    branch: str


@dataclass(frozen=True)
class DueCodebase:
    """A codebase the scheduler should re-analyze."""

    codebase_id: UUID
    host: str
    owner: str
    name: str
    refresh_user_id: UUID | None = None
    last_commit_sha: str | None = None
    last_analyzed_at: datetime | None = None
