"""Shared fixtures for image-sync tests."""

import asyncio
from collections.abc import Generator
from dataclasses import replace
import hashlib
from pathlib import Path
from typing import Any

import git
import pytest

from image_sync.config import GitOpsConfig, PipelineConfig, RegistryConfig
from image_sync.docker import ContainerEngine, RemoteManifest
from image_sync.exceptions import BuildFailure, PushFailure

FULL_SHA = "a1b2c3d4e5f60718293a4b5c6d7e8f9012345678"

ENV_VARS = [
    "GITHUB_SHA",
    "GITHUB_OUTPUT",
    "GITHUB_ACTIONS",
    "REGISTRY_USER",
    "REGISTRY_PASSWORD",
    "REGISTRY_HOST",
    "GITOPS_REPO_URL",
    "GITOPS_BRANCH",
    "GITOPS_TOKEN",
    "ENV_LABEL",
    "DRY_RUN",
]

DEPLOYMENT = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {name}
  labels:
    app: {name}
spec:
  selector:
    matchLabels:
      app: {name}
  replicas: 1
  template:
    metadata:
      labels:
        app: {name}
    spec:
      containers:
        - name: {container}
          image: {image}
          ports:
            - name: {container}-port
              containerPort: 8080
"""

MANIFESTS = {
    "kubernetes/vpro-app/vprodbdep.yml": ("vprodb", "myuser/vprofiledb:latest"),
    "kubernetes/vpro-app/vproappdep.yml": ("vproapp", "myuser/vprofileapp2:latest"),
    "kubernetes/vpro-app/vprowebdep.yml": ("vproweb", "myuser/vprofileweb:latest"),
}


def deployment(name: str, container: str, image: str) -> str:
    """Return a Deployment manifest with a single container."""
    return DEPLOYMENT.format(name=name, container=container, image=image)


def remote_file(remote: Path, path: str, branch: str = "main") -> str:
    """Return the content of a file on a branch of a bare repository."""
    blob = git.Repo(remote).commit(branch).tree / path
    return blob.data_stream.read().decode()


def remote_head(remote: Path, branch: str = "main") -> git.Commit:
    """Return the head commit of a branch of a bare repository."""
    return git.Repo(remote).commit(branch)


def make_config(remote: Path | None = None, **kwargs: Any) -> PipelineConfig:
    """Return a pipeline config for the default images."""
    config = PipelineConfig(
        registry=RegistryConfig(user="myuser", password="s3cr3t"),
        gitops=GitOpsConfig(url=str(remote) if remote else None, branch="main"),
        env_label="prod",
    )
    return replace(config, **kwargs)


class FakeEngine(ContainerEngine):
    """A container engine that builds and pushes in memory.

    The image id is derived from the build context, so rebuilding the same
    context produces the same content.
    """

    def __init__(
        self,
        fail_build: set[str] | None = None,
        fail_push: set[str] | None = None,
        build_delay: float = 0,
        registry_error: str | None = None,
    ) -> None:
        self.fail_build = fail_build or set()
        self.registry_error = registry_error
        self.fail_push = fail_push or set()
        self.build_delay = build_delay
        self.registry: dict[str, str] = {}
        self.local: dict[str, str] = {}
        self.builds: list[list[str]] = []
        self.pushed: list[str] = []
        self.logins = 0

    async def login(self, registry: RegistryConfig) -> None:
        self.logins += 1

    async def build(self, context: Path, dockerfile: Path, tags: list[str]) -> None:
        if self.build_delay:
            await asyncio.sleep(self.build_delay)
        if context.name in self.fail_build:
            raise BuildFailure(f"Build of {dockerfile} failed with return code 1")
        image_id = "sha256:" + hashlib.sha256(str(context).encode()).hexdigest()
        for tag in tags:
            self.local[tag] = image_id
        self.builds.append(tags)

    async def image_id(self, reference: str) -> str:
        return self.local[reference]

    async def inspect_remote(self, reference: str) -> RemoteManifest | None:
        if self.registry_error:
            raise PushFailure(self.registry_error)
        if (digest := self.registry.get(reference)) is None:
            return None
        return RemoteManifest(reference=reference, config_digest=digest)

    async def push(self, reference: str) -> None:
        if any(name in reference for name in self.fail_push):
            raise PushFailure(f"Push of {reference} failed with return code 1")
        self.registry[reference] = self.local[reference]
        self.pushed.append(reference)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear CI environment variables that change the configuration."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(name="engine")
def engine_fixture() -> FakeEngine:
    """Fixture for an in-memory container engine."""
    return FakeEngine()


@pytest.fixture(name="gitops_remote")
def gitops_remote_fixture(tmp_path: Path) -> Generator[Path, None, None]:
    """Fixture for a bare manifest repository holding the three deployments."""
    seed_dir = tmp_path / "seed"
    seed = git.Repo.init(seed_dir, initial_branch="main")
    writer = seed.config_writer()
    writer.set_value("user", "name", "Seed")
    writer.set_value("user", "email", "seed@example.com")
    writer.release()

    for path, (container, image) in MANIFESTS.items():
        manifest = seed_dir / path
        manifest.parent.mkdir(parents=True, exist_ok=True)
        manifest.write_text(deployment(container, container, image))
    (seed_dir / "README.md").write_text("Manifests\n")
    seed.index.add([*MANIFESTS, "README.md"])
    seed.index.commit("Initial manifests")

    remote = tmp_path / "gitops.git"
    seed.clone(str(remote), bare=True)
    yield remote
