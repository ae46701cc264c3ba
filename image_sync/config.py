"""Configuration objects for image-sync.

Configuration is read from an optional YAML file and then overlaid with
environment variables, which is where CI secrets are provided:

```yaml
env_label: prod
registry:
  user: myuser
images:
  - name: app
    context: Docker-files/app
    dockerfile: Docker-files/app/Dockerfile
    repository: vprofileapp2
manifests:
  - path: kubernetes/vpro-app/vproappdep.yml
    image: app
    container: vproapp
gitops:
  url: https://github.com/myorg/gitops.git
```
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import os
from pathlib import Path

from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

import yaml

from .exceptions import InputException
from .commit import CommitRef
from .tags import TagPair, env_prefix, image_repository, tag_pair

__all__ = [
    "ImageSpec",
    "ManifestTarget",
    "RegistryConfig",
    "GitOpsConfig",
    "PipelineConfig",
    "ImmutableTagPolicy",
    "load_config",
    "parse_bool",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_BUILD_TIMEOUT = 1800.0
DEFAULT_PUSH_ATTEMPTS = 3
DEFAULT_GIT_TIMEOUT = 300.0
DEFAULT_COMMIT_MESSAGE = "Update images to {tag}"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ImmutableTagPolicy(str, Enum):
    """What to do when an immutable tag already holds different content."""

    REJECT = "reject"
    """Fail the build before pushing anything."""

    OVERWRITE = "overwrite"
    """Log a warning and push anyway."""


@dataclass
class _Base(DataClassDictMixin):
    """Base class for configuration objects."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class ImageSpec(_Base):
    """A container image built by the pipeline."""

    name: str
    """Logical name of the image, e.g. `app`."""

    context: str
    """Build context path, relative to the source directory."""

    dockerfile: str
    """Dockerfile path, relative to the source directory."""

    repository: str
    """Name of the registry repository under the registry user."""


@dataclass
class ManifestTarget(_Base):
    """A GitOps repository file and the container image field within it."""

    path: str
    """Path of the manifest within the GitOps repository."""

    image: str
    """Logical name of the `ImageSpec` deployed by this manifest."""

    kind: str = "Deployment"
    """Kind of the Kubernetes object holding the container."""

    resource: str | None = None
    """The metadata.name of the object, when the file holds several."""

    container: str | None = None
    """Name of the container whose image is rewritten."""


@dataclass
class RegistryConfig(_Base):
    """Container registry credentials."""

    user: str | None = None
    """Registry username, also the namespace of every image repository."""

    password: str | None = field(default=None, metadata={"serialize": "omit"})
    """Registry password or access token."""

    host: str | None = None
    """Registry host, or Docker Hub when unset."""


@dataclass
class GitOpsConfig(_Base):
    """The manifest repository watched by the GitOps controller."""

    url: str | None = None
    """Clone URL of the manifest repository."""

    branch: str | None = None
    """Branch to update, or the remote default branch when unset."""

    token: str | None = field(default=None, metadata={"serialize": "omit"})
    """Token with write access to the manifest repository."""

    author_name: str = "image-sync"
    author_email: str = "image-sync@users.noreply.github.com"

    commit_message: str = DEFAULT_COMMIT_MESSAGE
    """Commit message template, formatted with `tag` and `short_id`."""

    push_attempts: int = DEFAULT_PUSH_ATTEMPTS
    """Total push attempts before a rejected push is reported."""

    timeout: float = DEFAULT_GIT_TIMEOUT
    """Seconds before a git clone, fetch, or push is killed."""

    def format_commit_message(self, tag: str, short_id: str) -> str:
        """Return the summary line of the manifest commit.

        Raises:
            InputException: If the template can't be formatted.
        """
        try:
            return self.commit_message.format(tag=tag, short_id=short_id)
        except (KeyError, IndexError, ValueError) as err:
            raise InputException(
                f"Invalid commit message template '{self.commit_message}': {err!r}"
            ) from err


def _default_images() -> list[ImageSpec]:
    return [
        ImageSpec(
            name="db",
            context="Docker-files/db",
            dockerfile="Docker-files/db/Dockerfile",
            repository="vprofiledb",
        ),
        ImageSpec(
            name="app",
            context="Docker-files/app",
            dockerfile="Docker-files/app/Dockerfile",
            repository="vprofileapp2",
        ),
        ImageSpec(
            name="web",
            context="Docker-files/web",
            dockerfile="Docker-files/web/Dockerfile",
            repository="vprofileweb",
        ),
    ]


def _default_manifests() -> list[ManifestTarget]:
    return [
        ManifestTarget(
            path="kubernetes/vpro-app/vprodbdep.yml", image="db", container="vprodb"
        ),
        ManifestTarget(
            path="kubernetes/vpro-app/vproappdep.yml", image="app", container="vproapp"
        ),
        ManifestTarget(
            path="kubernetes/vpro-app/vprowebdep.yml", image="web", container="vproweb"
        ),
    ]


@dataclass
class PipelineConfig(_Base):
    """Configuration for a pipeline run."""

    images: list[ImageSpec] = field(default_factory=_default_images)
    manifests: list[ManifestTarget] = field(default_factory=_default_manifests)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    gitops: GitOpsConfig = field(default_factory=GitOpsConfig)

    env_label: str | None = None
    """Environment label prefixed to every tag, e.g. `prod`."""

    source_dir: str = "."
    """Directory that build contexts and Dockerfiles are relative to."""

    build_timeout: float = DEFAULT_BUILD_TIMEOUT
    """Wall-clock budget in seconds for building and pushing all images."""

    immutable_tags: ImmutableTagPolicy = ImmutableTagPolicy.REJECT
    dry_run: bool = False
    """Build and commit locally but never push to the registry or repository."""

    def image(self, name: str) -> ImageSpec:
        """Return the image with the given logical name."""
        for spec in self.images:
            if spec.name == name:
                return spec
        raise InputException(
            f"Unknown image '{name}', expected one of: "
            f"{', '.join(spec.name for spec in self.images)}"
        )

    def target_for(self, name: str) -> ManifestTarget:
        """Return the manifest target deploying the named image."""
        for target in self.manifests:
            if target.image == name:
                return target
        raise InputException(f"No manifest target for image '{name}'")

    def repository_for(self, spec: ImageSpec) -> str:
        """Return the full repository path of an image."""
        return image_repository(
            self.registry.user or "", spec.repository, self.registry.host
        )

    def tag_pair(self, spec: ImageSpec, commit: CommitRef) -> TagPair:
        """Return the tag pair of an image for a commit."""
        return tag_pair(self.repository_for(spec), commit, self.env_label)

    def validate(
        self, require_registry: bool = False, require_gitops: bool = False
    ) -> None:
        """Check the configuration is consistent and complete.

        Args:
            require_registry: Registry credentials are needed to push images.
            require_gitops: The manifest repository is needed to sync manifests.

        Raises:
            InputException: If the configuration is invalid.
        """
        if not self.images:
            raise InputException("At least one image must be configured")
        names = [spec.name for spec in self.images]
        if duplicates := sorted({name for name in names if names.count(name) > 1}):
            raise InputException(f"Duplicate image names: {', '.join(duplicates)}")
        targets = [target.image for target in self.manifests]
        if duplicates := sorted({name for name in targets if targets.count(name) > 1}):
            raise InputException(
                f"Images with more than one manifest target: {', '.join(duplicates)}"
            )
        if unknown := sorted(set(targets) - set(names)):
            raise InputException(
                f"Manifest targets reference unknown images: {', '.join(unknown)}"
            )
        if missing := [name for name in names if name not in targets]:
            raise InputException(
                f"Images without a manifest target: {', '.join(missing)}"
            )
        paths = [target.path for target in self.manifests]
        if len(set(paths)) != len(paths):
            raise InputException("Each manifest target must be a distinct file")
        env_prefix(self.env_label)
        if self.build_timeout <= 0:
            raise InputException("build_timeout must be positive")
        if self.gitops.push_attempts < 1:
            raise InputException("gitops.push_attempts must be at least 1")
        if self.gitops.timeout <= 0:
            raise InputException("gitops.timeout must be positive")
        self.gitops.format_commit_message(tag="latest", short_id="0000000")

        if not self.registry.user:
            raise InputException("Registry user is required (REGISTRY_USER)")
        if require_registry and not self.dry_run and not self.registry.password:
            raise InputException("Registry password is required (REGISTRY_PASSWORD)")
        if require_gitops and not self.gitops.url:
            raise InputException("GitOps repository URL is required (GITOPS_REPO_URL)")


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable value."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise InputException(f"Invalid boolean value '{value}'")


def _read_config_file(path: Path) -> PipelineConfig:
    """Decode a YAML configuration file."""
    try:
        content = path.read_text()
    except OSError as err:
        raise InputException(f"Unable to read config file {path}: {err}") from err
    if not content.strip():
        return PipelineConfig()
    try:
        return yaml_decode(content, PipelineConfig)
    except yaml.YAMLError as err:
        raise InputException(f"Config file {path} is not valid YAML: {err}") from err
    except (
        MissingField,
        InvalidFieldValue,
        AttributeError,
        ValueError,
        TypeError,
    ) as err:
        raise InputException(f"Invalid config file {path}: {err}") from err


def load_config(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> PipelineConfig:
    """Load the pipeline configuration from a file and the environment.

    Environment variables take precedence over values in the file.
    """
    if env is None:
        env = os.environ
    config = _read_config_file(path) if path else PipelineConfig()

    registry = replace(
        config.registry,
        user=env.get("REGISTRY_USER") or config.registry.user,
        password=env.get("REGISTRY_PASSWORD") or config.registry.password,
        host=env.get("REGISTRY_HOST") or config.registry.host,
    )
    gitops = replace(
        config.gitops,
        url=env.get("GITOPS_REPO_URL") or config.gitops.url,
        branch=env.get("GITOPS_BRANCH") or config.gitops.branch,
        token=env.get("GITOPS_TOKEN") or config.gitops.token,
    )
    config = replace(
        config,
        registry=registry,
        gitops=gitops,
        env_label=env.get("ENV_LABEL") or config.env_label,
        dry_run=parse_bool(env.get("DRY_RUN"), default=config.dry_run),
    )
    _LOGGER.debug(
        "Loaded config with %d images and %d manifests",
        len(config.images),
        len(config.manifests),
    )
    return config
