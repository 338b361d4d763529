"""Test inventory parser for Python repositories.

Discovers pytest and unittest tests statically with the standard library
``ast`` module; nothing from the scanned repository is imported or executed.

Discovery rules follow pytest's defaults:

- files named ``test_*.py`` or ``*_test.py``
- classes named ``Test*`` (or subclassing ``TestCase``) become suites;
  nested classes become nested suites
- functions and methods named ``test*`` become tests

Markers are read from decorators. ``skip``/``skipif`` (and unittest's
``skip``/``skipIf``/``skipUnless``) mark a test skipped, ``xfail`` (and
``expectedFailure``) mark it xfail, and every other pytest marker name is
recorded as a tag. Class-level markers apply to every test in the class.
"""

from __future__ import annotations

import ast
import os
from dataclasses import dataclass
from pathlib import Path

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.models import (
    Inventory,
    Location,
    Test,
    TestFile,
    TestStatus,
    TestSuite,
)
from specvital_collector.domain.ports import Source
from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

FRAMEWORK_PYTEST = "pytest"
FRAMEWORK_UNITTEST = "unittest"

# Directories never scanned
SKIP_DIRS = frozenset({
    ".git",
    ".hg",
    ".svn",
    ".tox",
    ".nox",
    ".venv",
    "venv",
    "env",
    "node_modules",
    "vendor",
    "site-packages",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    "build",
    "dist",
})

# Files larger than this are not parsed
MAX_FILE_SIZE = 2 * 1024 * 1024

_SKIP_MARKERS = frozenset({"skip", "skipif", "skipIf", "skipUnless"})
_XFAIL_MARKERS = frozenset({"xfail", "expectedFailure"})
# Marker-like decorators that carry no meaning for the inventory
_IGNORED_MARKERS = frozenset({"parametrize", "usefixtures", "filterwarnings"})


def is_test_file(filename: str) -> bool:
    """Check a file name against pytest's default ``python_files`` globs."""
    if not filename.endswith(".py"):
        return False
    stem = filename[:-3]
    return stem.startswith("test_") or stem.endswith("_test")


def _dotted_name(node: ast.AST) -> str | None:
    """Render ``a.b.c`` attribute chains; None for anything else."""
    parts: list[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if isinstance(node, ast.Name):
        parts.append(node.id)
        return ".".join(reversed(parts))
    return None


@dataclass(frozen=True)
class _Markers:
    status: TestStatus = TestStatus.ACTIVE
    tags: tuple[str, ...] = ()

    def merge(self, other: _Markers) -> _Markers:
        status = self.status
        if TestStatus.SKIPPED in (self.status, other.status):
            status = TestStatus.SKIPPED
        elif TestStatus.XFAIL in (self.status, other.status):
            status = TestStatus.XFAIL
        tags = tuple(dict.fromkeys(self.tags + other.tags))
        return _Markers(status, tags)


def _read_markers(decorators: list[ast.expr]) -> _Markers:
    status = TestStatus.ACTIVE
    tags: list[str] = []
    for decorator in decorators:
        target = decorator.func if isinstance(decorator, ast.Call) else decorator
        name = _dotted_name(target)
        if not name:
            continue
        parts = name.split(".")
        leaf = parts[-1]
        is_pytest_mark = len(parts) >= 2 and parts[-2] == "mark"
        is_unittest = parts[0] == "unittest" or name in ("skip", "skipIf", "skipUnless", "expectedFailure")

        if not (is_pytest_mark or is_unittest):
            continue
        if leaf in _SKIP_MARKERS:
            status = TestStatus.SKIPPED
        elif leaf in _XFAIL_MARKERS:
            if status != TestStatus.SKIPPED:
                status = TestStatus.XFAIL
        elif is_pytest_mark and leaf not in _IGNORED_MARKERS:
            tags.append(leaf)
    return _Markers(status, tuple(dict.fromkeys(tags)))


def _is_testcase_subclass(node: ast.ClassDef) -> bool:
    for base in node.bases:
        name = _dotted_name(base)
        if name and name.split(".")[-1] == "TestCase":
            return True
    return False


def _is_test_function(node: ast.stmt) -> bool:
    return isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name.startswith("test")


def _is_test_class(node: ast.stmt) -> bool:
    return isinstance(node, ast.ClassDef) and (
        node.name.startswith("Test") or _is_testcase_subclass(node)
    )


def _location(node: ast.stmt) -> Location:
    return Location(start_line=node.lineno, end_line=getattr(node, "end_lineno", None))


class PythonTestParser:
    """Builds an :class:`Inventory` from the Python test files of a checkout."""

    def __init__(self, skip_dirs: frozenset[str] = SKIP_DIRS, max_file_size: int = MAX_FILE_SIZE):
        self.skip_dirs = skip_dirs
        self.max_file_size = max_file_size

    def scan(self, source: Source, *, deadline: Deadline | None = None) -> Inventory:
        """Scan every test file under ``source.root``.

        Files are visited in sorted path order so the same checkout always
        yields the same inventory. Files that cannot be read or parsed are
        logged and skipped.

        Raises:
            DeadlineExceeded: The deadline expired between files
        """
        deadline = ensure_deadline(deadline)
        root = Path(source.root)
        files: list[TestFile] = []

        for path in self._iter_test_files(root):
            deadline.check()
            test_file = self.parse_file(path, path.relative_to(root).as_posix())
            if test_file is not None:
                files.append(test_file)

        logger.info(
            "scan_completed",
            root=str(root),
            files=len(files),
        )
        return Inventory(files=tuple(files))

    def _iter_test_files(self, root: Path):
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if d not in self.skip_dirs and not d.endswith(".egg-info")
            )
            for filename in sorted(filenames):
                if is_test_file(filename):
                    yield Path(dirpath) / filename

    def parse_file(self, path: Path, rel_path: str) -> TestFile | None:
        """Parse one file; None when it holds no tests or cannot be parsed."""
        try:
            if path.stat().st_size > self.max_file_size:
                logger.warning("test_file_too_large", path=rel_path)
                return None
            source_text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("test_file_unreadable", path=rel_path, error=str(e))
            return None
        return self.parse_source(source_text, rel_path)

    def parse_source(self, source_text: str, rel_path: str) -> TestFile | None:
        try:
            tree = ast.parse(source_text, filename=rel_path)
        except (SyntaxError, ValueError) as e:
            logger.warning("test_file_parse_failed", path=rel_path, error=str(e))
            return None

        suites: list[TestSuite] = []
        tests: list[Test] = []
        uses_unittest = False
        imports_pytest = False

        for node in tree.body:
            if isinstance(node, ast.Import) and any(a.name == "pytest" for a in node.names):
                imports_pytest = True
            elif isinstance(node, ast.ImportFrom) and node.module == "pytest":
                imports_pytest = True
            elif _is_test_class(node):
                uses_unittest = uses_unittest or _is_testcase_subclass(node)
                suite = self._parse_class(node, _Markers())
                if suite.tests or suite.suites:
                    suites.append(suite)
            elif _is_test_function(node):
                tests.append(self._parse_function(node, _Markers()))

        if not suites and not tests:
            return None

        framework = FRAMEWORK_UNITTEST if uses_unittest and not imports_pytest else FRAMEWORK_PYTEST
        return TestFile(
            path=rel_path,
            framework=framework,
            suites=tuple(suites),
            tests=tuple(tests),
        )

    def _parse_class(self, node: ast.ClassDef, inherited: _Markers) -> TestSuite:
        markers = inherited.merge(_read_markers(node.decorator_list))
        suites: list[TestSuite] = []
        tests: list[Test] = []
        for child in node.body:
            if _is_test_class(child):
                nested = self._parse_class(child, markers)
                if nested.tests or nested.suites:
                    suites.append(nested)
            elif _is_test_function(child):
                tests.append(self._parse_function(child, markers))
        return TestSuite(
            name=node.name,
            location=_location(node),
            suites=tuple(suites),
            tests=tuple(tests),
        )

    def _parse_function(
        self, node: ast.FunctionDef | ast.AsyncFunctionDef, inherited: _Markers
    ) -> Test:
        markers = inherited.merge(_read_markers(node.decorator_list))
        return Test(
            name=node.name,
            location=_location(node),
            status=markers.status,
            tags=markers.tags,
        )
