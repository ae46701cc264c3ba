"""Library for building and pushing container images with the docker CLI.

This example builds an image under two tags and pushes both:
```python
from pathlib import Path
from image_sync.docker import DockerEngine

docker = DockerEngine()
await docker.build(Path("Docker-files/app"), Path("Docker-files/app/Dockerfile"),
                   ["user/vprofileapp2:latest", "user/vprofileapp2:a1b2c3d"])
await docker.push("user/vprofileapp2:a1b2c3d")
await docker.push("user/vprofileapp2:latest")
```
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any

from . import command
from .command import Command
from .config import RegistryConfig
from .exceptions import BuildFailure, PushFailure

__all__ = [
    "ContainerEngine",
    "DockerEngine",
    "RemoteManifest",
]

_LOGGER = logging.getLogger(__name__)

DOCKER_BIN = "docker"

BUILD_TIMEOUT = 1800.0
PUSH_TIMEOUT = 600.0
INSPECT_TIMEOUT = 60.0

# Errors of `docker manifest inspect` meaning the tag does not exist
_MISSING_MARKERS = ("no such manifest", "manifest unknown", "not found")


@dataclass(frozen=True)
class RemoteManifest:
    """The manifest of a tag as stored in the registry."""

    reference: str
    """The image reference that was inspected."""

    config_digest: str | None
    """Digest of the image config, which equals the local image id.

    This is None for a manifest list, whose content can't be compared with a
    single local image.
    """


class ContainerEngine(ABC):
    """Operations on a container engine needed to publish images."""

    @abstractmethod
    async def login(self, registry: RegistryConfig) -> None:
        """Authenticate against the registry."""

    @abstractmethod
    async def build(self, context: Path, dockerfile: Path, tags: list[str]) -> None:
        """Build a single image and apply every tag to it."""

    @abstractmethod
    async def image_id(self, reference: str) -> str:
        """Return the content id of a locally built image."""

    @abstractmethod
    async def inspect_remote(self, reference: str) -> RemoteManifest | None:
        """Return the registry manifest of a tag, or None if it does not exist."""

    @abstractmethod
    async def push(self, reference: str) -> None:
        """Push a tag to the registry."""


def _parse_manifest(reference: str, doc: dict[str, Any]) -> RemoteManifest:
    """Parse the output of `docker manifest inspect`."""
    config = doc.get("config")
    if isinstance(config, dict) and (digest := config.get("digest")):
        return RemoteManifest(reference=reference, config_digest=digest)
    return RemoteManifest(reference=reference, config_digest=None)


class DockerEngine(ContainerEngine):
    """Library for issuing docker commands."""

    def __init__(
        self,
        build_timeout: float = BUILD_TIMEOUT,
        push_timeout: float = PUSH_TIMEOUT,
        extra_build_args: list[str] | None = None,
    ) -> None:
        """Initialize DockerEngine."""
        self._build_timeout = build_timeout
        self._push_timeout = push_timeout
        self._extra_build_args = extra_build_args or []

    async def login(self, registry: RegistryConfig) -> None:
        """Log in to the registry, passing the password on stdin."""
        if not registry.user or not registry.password:
            raise PushFailure("Registry user and password are required to log in")
        args = [DOCKER_BIN, "login", "--username", registry.user, "--password-stdin"]
        if registry.host:
            args.append(registry.host)
        _LOGGER.info(
            "Logging in to %s as %s", registry.host or "docker.io", registry.user
        )
        await command.run(
            Command(
                args,
                exc=PushFailure,
                timeout=INSPECT_TIMEOUT,
                secrets=[registry.password],
            ),
            stdin=registry.password.encode(),
        )

    def build_command(
        self, context: Path, dockerfile: Path, tags: list[str]
    ) -> Command:
        """Return the command that builds an image with all of its tags."""
        args = [DOCKER_BIN, "build", "--file", str(dockerfile)]
        for tag in tags:
            args.extend(["--tag", tag])
        args.extend(self._extra_build_args)
        args.append(str(context))
        return Command(args, exc=BuildFailure, timeout=self._build_timeout)

    async def build(self, context: Path, dockerfile: Path, tags: list[str]) -> None:
        """Build a single image and apply every tag to it."""
        if not context.is_dir():
            raise BuildFailure(f"Build context {context} is not a directory")
        if not dockerfile.is_file():
            raise BuildFailure(f"Dockerfile {dockerfile} does not exist")
        await command.run(self.build_command(context, dockerfile, tags))

    async def image_id(self, reference: str) -> str:
        """Return the id (config digest) of a local image."""
        out = await command.run(
            Command(
                [DOCKER_BIN, "image", "inspect", "--format", "{{.Id}}", reference],
                exc=BuildFailure,
                timeout=INSPECT_TIMEOUT,
            )
        )
        if not (image_id := out.strip()):
            raise BuildFailure(f"Unable to determine image id of {reference}")
        return image_id

    async def inspect_remote(self, reference: str) -> RemoteManifest | None:
        """Return the registry manifest of a tag, or None if it does not exist.

        Raises:
            PushFailure: If the registry could not be queried, for example on
                an authentication or network error.
        """
        try:
            out = await command.run(
                Command(
                    [DOCKER_BIN, "manifest", "inspect", reference],
                    exc=PushFailure,
                    timeout=INSPECT_TIMEOUT,
                )
            )
        except PushFailure as err:
            message = str(err).lower()
            if not any(marker in message for marker in _MISSING_MARKERS):
                raise
            _LOGGER.debug("Tag %s not found in registry: %s", reference, err)
            return None
        try:
            doc = json.loads(out)
        except json.JSONDecodeError as err:
            raise PushFailure(
                f"Unexpected output inspecting {reference}: {out[:200]}"
            ) from err
        return _parse_manifest(reference, doc)

    async def push(self, reference: str) -> None:
        """Push a tag to the registry."""
        _LOGGER.info("Pushing %s", reference)
        await command.run(
            Command(
                [DOCKER_BIN, "push", reference],
                exc=PushFailure,
                timeout=self._push_timeout,
            )
        )
