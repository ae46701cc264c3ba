"""Tests for the docker library."""

import json
from pathlib import Path

import pytest

from image_sync.command import Command, Task
from image_sync.config import RegistryConfig
from image_sync.docker import DockerEngine, RemoteManifest
from image_sync.exceptions import BuildFailure, PushFailure

TAGS = ["myuser/vprofileapp2:prod-a1b2c3d", "myuser/vprofileapp2:prod-latest"]

IMAGE_MANIFEST = {
    "schemaVersion": 2,
    "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
    "config": {
        "mediaType": "application/vnd.docker.container.image.v1+json",
        "size": 1469,
        "digest": "sha256:4a1c",
    },
    "layers": [],
}

MANIFEST_LIST = {
    "schemaVersion": 2,
    "mediaType": "application/vnd.docker.distribution.manifest.list.v2+json",
    "manifests": [{"digest": "sha256:5b2d", "platform": {"architecture": "amd64"}}],
}


class FakeRun:
    """Records commands instead of running them."""

    def __init__(self, output: str = "", exc: Exception | None = None) -> None:
        self.output = output
        self.exc = exc
        self.commands: list[Command] = []
        self.stdin: list[bytes | None] = []

    async def __call__(self, cmd: Task, stdin: bytes | None = None) -> str:
        assert isinstance(cmd, Command)
        self.commands.append(cmd)
        self.stdin.append(stdin)
        if self.exc:
            raise self.exc
        return self.output


@pytest.fixture(name="fake_run")
def fake_run_fixture(monkeypatch: pytest.MonkeyPatch) -> FakeRun:
    """Fixture that replaces running docker commands."""
    fake = FakeRun()
    monkeypatch.setattr("image_sync.command.run", fake)
    return fake


@pytest.fixture(name="build_context")
def build_context_fixture(tmp_path: Path) -> Path:
    """Fixture for a directory holding a Dockerfile."""
    context = tmp_path / "Docker-files" / "app"
    context.mkdir(parents=True)
    (context / "Dockerfile").write_text("FROM scratch\n")
    return context


def test_build_command() -> None:
    """Test a single build applies both tags."""
    docker = DockerEngine(extra_build_args=["--pull"])
    cmd = docker.build_command(
        Path("Docker-files/app"), Path("Docker-files/app/Dockerfile"), TAGS
    )
    assert cmd.cmd == [
        "docker",
        "build",
        "--file",
        "Docker-files/app/Dockerfile",
        "--tag",
        "myuser/vprofileapp2:prod-a1b2c3d",
        "--tag",
        "myuser/vprofileapp2:prod-latest",
        "--pull",
        "Docker-files/app",
    ]
    assert cmd.exc is BuildFailure
    assert cmd.timeout == 1800


async def test_build(fake_run: FakeRun, build_context: Path) -> None:
    """Test building an image runs one docker build."""
    docker = DockerEngine(build_timeout=60)
    await docker.build(build_context, build_context / "Dockerfile", TAGS)
    assert len(fake_run.commands) == 1
    assert fake_run.commands[0].cmd[:2] == ["docker", "build"]
    assert fake_run.commands[0].timeout == 60


async def test_build_missing_dockerfile(fake_run: FakeRun, build_context: Path) -> None:
    """Test a missing Dockerfile fails before running docker."""
    docker = DockerEngine()
    with pytest.raises(BuildFailure, match="Dockerfile .* does not exist"):
        await docker.build(build_context, build_context / "Dockerfile.prod", TAGS)
    with pytest.raises(BuildFailure, match="is not a directory"):
        await docker.build(
            build_context / "missing", build_context / "Dockerfile", TAGS
        )
    assert not fake_run.commands


async def test_login(fake_run: FakeRun) -> None:
    """Test the password is passed on stdin and never on the command line."""
    docker = DockerEngine()
    await docker.login(RegistryConfig(user="myuser", password="s3cr3t", host="ghcr.io"))
    (cmd,) = fake_run.commands
    assert cmd.cmd == [
        "docker",
        "login",
        "--username",
        "myuser",
        "--password-stdin",
        "ghcr.io",
    ]
    assert fake_run.stdin == [b"s3cr3t"]
    assert cmd.secrets == ["s3cr3t"]
    assert cmd.exc is PushFailure


async def test_login_requires_password(fake_run: FakeRun) -> None:
    """Test logging in without credentials."""
    with pytest.raises(PushFailure, match="user and password are required"):
        await DockerEngine().login(RegistryConfig(user="myuser"))
    assert not fake_run.commands


async def test_image_id(fake_run: FakeRun) -> None:
    """Test reading the id of a built image."""
    fake_run.output = "sha256:4a1c\n"
    assert await DockerEngine().image_id(TAGS[0]) == "sha256:4a1c"
    assert fake_run.commands[0].cmd[-1] == TAGS[0]


async def test_inspect_remote(fake_run: FakeRun) -> None:
    """Test reading the config digest of a pushed tag."""
    fake_run.output = json.dumps(IMAGE_MANIFEST)
    assert await DockerEngine().inspect_remote(TAGS[0]) == RemoteManifest(
        reference=TAGS[0], config_digest="sha256:4a1c"
    )
    assert fake_run.commands[0].cmd == ["docker", "manifest", "inspect", TAGS[0]]


async def test_inspect_remote_manifest_list(fake_run: FakeRun) -> None:
    """Test a multi-platform tag has no single config digest."""
    fake_run.output = json.dumps(MANIFEST_LIST)
    manifest = await DockerEngine().inspect_remote(TAGS[0])
    assert manifest is not None
    assert manifest.config_digest is None


@pytest.mark.parametrize(
    "stderr",
    [
        "no such manifest: docker.io/myuser/vprofileapp2:prod-a1b2c3d",
        "manifest unknown: manifest unknown",
        "errors:\nnot found: manifest unknown",
    ],
)
async def test_inspect_remote_missing(fake_run: FakeRun, stderr: str) -> None:
    """Test a tag that does not exist in the registry."""
    fake_run.exc = PushFailure(f"Command 'docker manifest inspect' failed\n{stderr}")
    assert await DockerEngine().inspect_remote(TAGS[0]) is None
    assert fake_run.commands[0].exc is PushFailure


@pytest.mark.parametrize(
    "stderr",
    [
        "unauthorized: authentication required",
        "Get \"https://registry-1.docker.io/v2/\": dial tcp: i/o timeout",
        "received unexpected HTTP status: 503 Service Unavailable",
    ],
)
async def test_inspect_remote_registry_error(fake_run: FakeRun, stderr: str) -> None:
    """Test a registry that can't be queried is not mistaken for a missing tag."""
    fake_run.exc = PushFailure(f"Command 'docker manifest inspect' failed\n{stderr}")
    with pytest.raises(PushFailure, match="failed"):
        await DockerEngine().inspect_remote(TAGS[0])


async def test_inspect_remote_invalid(fake_run: FakeRun) -> None:
    """Test unexpected output from the registry."""
    fake_run.output = "not json"
    with pytest.raises(PushFailure, match="Unexpected output"):
        await DockerEngine().inspect_remote(TAGS[0])


async def test_push(fake_run: FakeRun) -> None:
    """Test pushing a tag."""
    await DockerEngine(push_timeout=30).push(TAGS[1])
    (cmd,) = fake_run.commands
    assert cmd.cmd == ["docker", "push", TAGS[1]]
    assert cmd.exc is PushFailure
    assert cmd.timeout == 30
