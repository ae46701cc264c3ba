"""Helpers for running inside GitHub Actions."""

from collections.abc import Callable, Mapping
import logging
import os
from pathlib import Path
import sys

from .exceptions import InputException

__all__ = [
    "mask_secret",
    "write_github_outputs",
]

_LOGGER = logging.getLogger(__name__)


def _print_stderr(line: str) -> None:
    print(line, file=sys.stderr)


def mask_secret(
    value: str | None, stream: Callable[[str], object] = _print_stderr
) -> None:
    """Ask the Actions runner to mask a secret in the job log.

    The command is written to stderr, which the runner also reads, so that
    stdout only holds the command output. Nothing is emitted outside of
    GitHub Actions or for an empty value.
    """
    if value and os.environ.get("GITHUB_ACTIONS") == "true":
        stream(f"::add-mask::{value}")


def write_github_outputs(values: Mapping[str, str], path: Path) -> None:
    """Append step outputs as `name=value` lines to the `GITHUB_OUTPUT` file."""
    for key, value in values.items():
        if "\n" in value or "\n" in key:
            raise InputException(f"Output '{key}' must be a single line")
    with path.open("a", encoding="utf-8") as handle:
        for key, value in values.items():
            handle.write(f"{key}={value}\n")
    _LOGGER.debug("Wrote %d outputs to %s", len(values), path)
