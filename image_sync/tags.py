"""Registry tags produced for each image in a pipeline run.

Each image is pushed under two classes of tag. The mutable tag
(`{prefix}latest`) is a pointer that every run overwrites. The immutable tag
(`{prefix}{shortId}`) names the content built from one commit and is written
once.
"""

from dataclasses import dataclass
from enum import Enum
import re

from .commit import CommitRef
from .exceptions import InputException

__all__ = [
    "TagKind",
    "ImageTag",
    "TagPair",
    "env_prefix",
    "image_repository",
    "tag_pair",
]

LATEST = "latest"

# Docker tag grammar, less the length of the longest suffix we append
_LABEL_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,100}$")


class TagKind(str, Enum):
    """The class of a registry tag."""

    MUTABLE = "mutable"
    IMMUTABLE = "immutable"


@dataclass(frozen=True)
class ImageTag:
    """A single tag of an image repository."""

    repository: str
    """Repository the tag belongs to, e.g. `user/vprofileapp2`."""

    tag: str
    """The tag itself, e.g. `prod-a1b2c3d`."""

    kind: TagKind
    """Whether this tag may be overwritten."""

    @property
    def reference(self) -> str:
        """Return the full image reference."""
        return f"{self.repository}:{self.tag}"

    def __str__(self) -> str:
        return self.reference


@dataclass(frozen=True)
class TagPair:
    """The mutable and immutable tags pushed for one image in one run."""

    mutable: ImageTag
    immutable: ImageTag

    @property
    def tags(self) -> list[ImageTag]:
        """Return both tags, immutable first."""
        return [self.immutable, self.mutable]


def env_prefix(label: str | None) -> str:
    """Return the tag prefix for an environment label such as `prod`."""
    if not label:
        return ""
    label = label.rstrip("-")
    if not _LABEL_RE.match(label):
        raise InputException(f"Environment label '{label}' is not a valid tag prefix")
    return f"{label}-"


def image_repository(
    registry_user: str, repo_name: str, registry_host: str | None = None
) -> str:
    """Return the repository path `[host/]user/repo` for an image."""
    if not registry_user:
        raise InputException(f"Registry user is required for image '{repo_name}'")
    repository = f"{registry_user}/{repo_name}"
    if registry_host:
        return f"{registry_host.rstrip('/')}/{repository}"
    return repository


def tag_pair(
    repository: str, commit: CommitRef, env_label: str | None = None
) -> TagPair:
    """Build the tag pair for an image repository and commit."""
    prefix = env_prefix(env_label)
    return TagPair(
        mutable=ImageTag(repository, f"{prefix}{LATEST}", TagKind.MUTABLE),
        immutable=ImageTag(repository, f"{prefix}{commit.short_id}", TagKind.IMMUTABLE),
    )
