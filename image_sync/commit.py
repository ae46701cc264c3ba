"""Resolve the identifier of the commit that triggered a pipeline run.

Every tag and manifest update in a run is derived from a single `CommitRef`:
```python
from image_sync.commit import resolve_commit_ref

commit = resolve_commit_ref("a1b2c3d4e5f60718293a4b5c6d7e8f9012345678")
print(commit.short_id)  # a1b2c3d
```
"""

from collections.abc import Mapping
from dataclasses import dataclass
import logging
import os
import re

from .exceptions import InputException

__all__ = [
    "SHORT_ID_LENGTH",
    "CommitRef",
    "short_id",
    "resolve_commit_ref",
]

_LOGGER = logging.getLogger(__name__)

SHORT_ID_LENGTH = 7

# Environment variable set by GitHub Actions for the triggering commit
COMMIT_ENV = "GITHUB_SHA"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


@dataclass(frozen=True)
class CommitRef:
    """Identifier of the source change that triggered a pipeline run."""

    full_id: str
    """The full commit hash."""

    short_id: str
    """Deterministic fixed-length prefix of the full commit hash."""

    def __str__(self) -> str:
        return self.short_id


def short_id(full_id: str) -> str:
    """Return the short identifier for a full commit hash.

    Raises:
        InputException: If the value is shorter than `SHORT_ID_LENGTH` or is
            not a hexadecimal hash.
    """
    value = full_id.strip()
    if len(value) < SHORT_ID_LENGTH:
        raise InputException(
            f"Commit identifier '{value}' is shorter than {SHORT_ID_LENGTH} characters"
        )
    if not _HEX_RE.match(value):
        raise InputException(f"Commit identifier '{value}' is not a hexadecimal hash")
    return value[:SHORT_ID_LENGTH]


def resolve_commit_ref(
    full_id: str | None = None, env: Mapping[str, str] | None = None
) -> CommitRef:
    """Build the `CommitRef` from an explicit hash or the CI environment."""
    if env is None:
        env = os.environ
    if not full_id:
        full_id = env.get(COMMIT_ENV)
    if not full_id:
        raise InputException(
            f"No commit identifier given and {COMMIT_ENV} is not set"
        )
    value = full_id.strip()
    commit = CommitRef(full_id=value, short_id=short_id(value))
    _LOGGER.debug("Resolved commit %s to %s", commit.full_id, commit.short_id)
    return commit
