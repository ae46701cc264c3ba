"""Tests for the tags library."""

import pytest

from image_sync.commit import CommitRef
from image_sync.exceptions import InputException
from image_sync.tags import TagKind, env_prefix, image_repository, tag_pair

COMMIT = CommitRef(full_id="a1b2c3d4e5f60718293a4b5c6d7e8f9012345678", short_id="a1b2c3d")


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        (None, ""),
        ("", ""),
        ("prod", "prod-"),
        ("prod-", "prod-"),
        ("stage_2", "stage_2-"),
    ],
)
def test_env_prefix(label: str | None, expected: str) -> None:
    """Test the tag prefix for an environment label."""
    assert env_prefix(label) == expected


@pytest.mark.parametrize("label", ["-", "prod/eu", "my prod", ".hidden"])
def test_invalid_env_prefix(label: str) -> None:
    """Test labels that would produce an invalid tag."""
    with pytest.raises(InputException, match="not a valid tag prefix"):
        env_prefix(label)


def test_image_repository() -> None:
    """Test the repository path of an image."""
    assert image_repository("myuser", "vprofileapp2") == "myuser/vprofileapp2"
    assert (
        image_repository("myuser", "vprofileapp2", "ghcr.io/")
        == "ghcr.io/myuser/vprofileapp2"
    )


def test_image_repository_requires_user() -> None:
    """Test the registry user is required."""
    with pytest.raises(InputException, match="Registry user is required"):
        image_repository("", "vprofileapp2")


def test_tag_pair_with_label() -> None:
    """Test the tags of an image in a labeled environment."""
    pair = tag_pair("myuser/vprofileapp2", COMMIT, "prod")
    assert pair.mutable.reference == "myuser/vprofileapp2:prod-latest"
    assert pair.immutable.reference == "myuser/vprofileapp2:prod-a1b2c3d"
    assert pair.mutable.kind == TagKind.MUTABLE
    assert pair.immutable.kind == TagKind.IMMUTABLE
    assert [str(tag) for tag in pair.tags] == [
        "myuser/vprofileapp2:prod-a1b2c3d",
        "myuser/vprofileapp2:prod-latest",
    ]


def test_tag_pair_without_label() -> None:
    """Test the tags of an image without an environment label."""
    pair = tag_pair("myuser/vprofiledb", COMMIT)
    assert pair.mutable.tag == "latest"
    assert pair.immutable.tag == "a1b2c3d"
    assert pair.mutable.repository == pair.immutable.repository
