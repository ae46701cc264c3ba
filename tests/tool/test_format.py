"""Tests for the format library."""

import io
import json

import pytest

from image_sync.tool.format import (
    JsonFormatter,
    PrintFormatter,
    YamlFormatter,
    format_columns,
    formatter,
)

ROWS = [
    {"image": "db", "status": "ok"},
    {"image": "app", "status": "failed"},
]


def test_format_columns_empty() -> None:
    """Tests with no rows."""
    assert list(format_columns([], [])) == []


def test_format_columns_empty_rows() -> None:
    """Tests with no rows."""
    assert list(format_columns(["a", "b", "c"], [])) == ["a    b    c"]


def test_format_columns_rows() -> None:
    """Tests format with normal rows"""
    assert list(
        format_columns(["image", "manifest"], [["db", "vprodbdep.yml"], ["app", "x"]])
    ) == [
        "image    manifest",
        "db       vprodbdep.yml",
        "app      x",
    ]


def test_print_formatter() -> None:
    """Print formatting with empty data."""
    assert list(PrintFormatter().format([])) == []


def test_print_formatter_data() -> None:
    """Print formatting data objects."""
    assert list(PrintFormatter().format(ROWS)) == [
        "IMAGE    STATUS",
        "db       ok",
        "app      failed",
    ]


def test_print_formatter_keys() -> None:
    """Print formatting with column names."""
    assert list(PrintFormatter(keys=["image"]).format(ROWS)) == [
        "IMAGE",
        "db",
        "app",
    ]


def test_yaml_formatter() -> None:
    """Yaml formatting keeps the column order."""
    assert list(YamlFormatter().format(ROWS)) == [
        "---",
        "- image: db",
        "  status: ok",
        "- image: app",
        "  status: failed",
    ]


def test_json_formatter() -> None:
    """Json formatting of the rows."""
    stream = io.StringIO()
    JsonFormatter().print(ROWS, file=stream)
    assert json.loads(stream.getvalue()) == ROWS


@pytest.mark.parametrize(
    ("output", "expected"),
    [("table", PrintFormatter), ("yaml", YamlFormatter), ("json", JsonFormatter)],
)
def test_formatter(output: str, expected: type) -> None:
    """Test looking up a formatter by name."""
    assert isinstance(formatter(output), expected)
