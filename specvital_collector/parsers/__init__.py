"""Test inventory parsers."""

from specvital_collector.parsers.python_parser import PythonTestParser, is_test_file

__all__ = ["PythonTestParser", "is_test_file"]
