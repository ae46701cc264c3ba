"""Tests for the commit library."""

import pytest

from image_sync.commit import CommitRef, resolve_commit_ref, short_id
from image_sync.exceptions import InputException

FULL_SHA = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"


def test_short_id() -> None:
    """Test the short id is a fixed length prefix of the hash."""
    assert short_id(FULL_SHA) == "a1b2c3d"
    assert short_id("a1b2c3d") == "a1b2c3d"
    assert short_id(f"  {FULL_SHA}\n") == "a1b2c3d"


@pytest.mark.parametrize(
    ("value", "match"),
    [
        ("", "shorter than 7"),
        ("a1b2c3", "shorter than 7"),
        ("main-branch-name", "not a hexadecimal hash"),
        ("a1b2c3g4e5f6", "not a hexadecimal hash"),
    ],
)
def test_invalid_short_id(value: str, match: str) -> None:
    """Test commit identifiers that can't name an image."""
    with pytest.raises(InputException, match=match):
        short_id(value)


def test_resolve_explicit() -> None:
    """Test an explicit hash takes precedence over the environment."""
    commit = resolve_commit_ref(FULL_SHA, env={"GITHUB_SHA": "b" * 40})
    assert commit == CommitRef(full_id=FULL_SHA, short_id="a1b2c3d")
    assert str(commit) == "a1b2c3d"


def test_resolve_from_env() -> None:
    """Test the hash is read from the CI environment."""
    commit = resolve_commit_ref(env={"GITHUB_SHA": FULL_SHA})
    assert commit.full_id == FULL_SHA
    assert commit.short_id == "a1b2c3d"


def test_resolve_from_os_environ(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the process environment is used by default."""
    monkeypatch.setenv("GITHUB_SHA", FULL_SHA)
    assert resolve_commit_ref().short_id == "a1b2c3d"


def test_resolve_missing() -> None:
    """Test a run without any commit identifier."""
    with pytest.raises(InputException, match="GITHUB_SHA is not set"):
        resolve_commit_ref(env={})


def test_resolve_deterministic() -> None:
    """Test resolving the same hash twice gives equal refs."""
    assert resolve_commit_ref(FULL_SHA, env={}) == resolve_commit_ref(FULL_SHA, env={})
