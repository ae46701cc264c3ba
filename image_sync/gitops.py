"""Update the image references in the GitOps manifest repository.

The synchronizer clones the manifest repository into a temporary directory,
rewrites the image field of every configured manifest, and pushes a single
commit covering all of the edits. The GitOps controller watching the
repository therefore never observes a commit where only some of the images
were updated. The working copy is discarded when the synchronizer exits,
whether or not it succeeded.

```python
from image_sync.gitops import ManifestSynchronizer

synchronizer = ManifestSynchronizer(config)
result = await synchronizer.sync(commit, report.tag_pairs())
print(result.commit_sha)
```
"""

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import logging
from pathlib import Path
import tempfile
from urllib.parse import urlsplit, urlunsplit

import aiofiles
from aiofiles.ospath import exists
import git
from git.remote import PushInfo

from .command import redact
from .commit import CommitRef
from .config import ManifestTarget, PipelineConfig
from .context import trace_context
from .exceptions import (
    CloneFailure,
    GitOpsException,
    ImageSyncException,
    InputException,
    ManifestFieldNotFound,
    PushRejected,
)
from .manifest import update_image
from .tags import TagPair, env_prefix

__all__ = [
    "SyncState",
    "SynchronizationResult",
    "ManifestSynchronizer",
    "git_auth_env",
]

_LOGGER = logging.getLogger(__name__)

TOKEN_ENV = "IMAGE_SYNC_GIT_TOKEN"
TOKEN_USER = "x-access-token"

_REJECTION_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "Updates were rejected",
)


class SyncState(str, Enum):
    """States of the manifest synchronizer."""

    IDLE = "idle"
    CLONING = "cloning"
    EDITING = "editing"
    COMMITTING = "committing"
    PUSHING = "pushing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SynchronizationResult:
    """Outcome of a successful manifest synchronization."""

    state: SyncState
    """The final state, always `SUCCEEDED` for a returned result."""

    branch: str | None = None
    """The branch of the manifest repository that was updated."""

    commit_sha: str | None = None
    """The commit created, or None when the manifests were already current."""

    changed: list[str] = field(default_factory=list)
    """Paths of the manifests changed by the commit."""

    attempts: int = 0
    """Number of push attempts made."""

    pushed: bool = False
    """Whether the commit was pushed to the remote branch."""


@contextmanager
def git_auth_env(token: str | None, base_dir: Path) -> Iterator[dict[str, str]]:
    """Build environment for Git askpass authentication.

    The token is read by the askpass script from the environment so it never
    appears in a command line, a URL, or a file. The script is removed on exit.
    """
    if not token:
        yield {"GIT_TERMINAL_PROMPT": "0"}
        return
    base_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        delete=False,
        prefix="git-askpass-",
        dir=base_dir,
        encoding="utf-8",
    ) as handle:
        handle.write(f"#!/bin/sh\nprintf '%s' \"${{{TOKEN_ENV}}}\"\n")
        askpass_path = Path(handle.name)
    askpass_path.chmod(0o700)
    env = {
        "GIT_ASKPASS": str(askpass_path),
        "GIT_TERMINAL_PROMPT": "0",
        TOKEN_ENV: token,
    }
    try:
        yield env
    finally:
        askpass_path.unlink(missing_ok=True)


def clone_url(url: str, token: str | None) -> str:
    """Return the clone URL, naming the token user for https remotes."""
    if not token:
        return url
    parts = urlsplit(url)
    if parts.scheme != "https" or "@" in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=f"{TOKEN_USER}@{parts.netloc}"))


def _is_rejection(message: str) -> bool:
    return any(marker in message for marker in _REJECTION_MARKERS)


class ManifestSynchronizer:
    """Rewrites the deployed image of each manifest and pushes one commit."""

    def __init__(self, config: PipelineConfig) -> None:
        """Initialize ManifestSynchronizer."""
        self._config = config
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        """Return the current state of the synchronizer."""
        return self._state

    def _transition(self, state: SyncState) -> None:
        _LOGGER.debug("Synchronizer %s -> %s", self._state.value, state.value)
        self._state = state

    def _secrets(self) -> list[str]:
        return [self._config.gitops.token] if self._config.gitops.token else []

    def image_references(self, tag_pairs: Mapping[str, TagPair]) -> dict[str, str]:
        """Return the image reference written to each manifest target.

        Raises:
            InputException: If any configured image has no tag pair, which
                means it was not built and pushed in this run.
        """
        if missing := [
            spec.name for spec in self._config.images if spec.name not in tag_pairs
        ]:
            raise InputException(
                f"Refusing to update manifests, images not built: {', '.join(missing)}"
            )
        return {
            target.path: tag_pairs[target.image].immutable.reference
            for target in self._config.manifests
        }

    def _manifest_path(self, clone_dir: Path, target: ManifestTarget) -> Path:
        """Return the path of a manifest, refusing paths outside the clone."""
        path = clone_dir / target.path
        if not path.resolve().is_relative_to(clone_dir.resolve()):
            raise InputException(
                f"Refusing to edit manifest {target.path} outside the repository"
            )
        return path

    def _clone(self, clone_dir: Path, auth_env: dict[str, str]) -> git.Repo:
        self._transition(SyncState.CLONING)
        gitops = self._config.gitops
        if not gitops.url:
            raise InputException("GitOps repository URL is required")
        url = clone_url(gitops.url, gitops.token)
        _LOGGER.info("Cloning %s@%s", gitops.url, gitops.branch or "<default>")
        args = ["--branch", gitops.branch] if gitops.branch else []
        try:
            git.Git().clone(
                *args,
                "--",
                url,
                str(clone_dir),
                env=auth_env,
                kill_after_timeout=gitops.timeout,
            )
        except git.exc.GitCommandError as err:
            stderr = redact(str(err.stderr or err), self._secrets())
            raise CloneFailure(
                f"git clone failed for {gitops.url}: {stderr.strip()}"
            ) from err
        return git.Repo(clone_dir)

    async def _apply(self, clone_dir: Path, references: dict[str, str]) -> list[str]:
        """Rewrite every manifest, returning the paths that changed.

        All manifests are rewritten in memory before any file is written.
        """
        self._transition(SyncState.EDITING)
        updates: list[tuple[Path, str, str]] = []
        for target in self._config.manifests:
            path = self._manifest_path(clone_dir, target)
            if not await exists(path):
                raise ManifestFieldNotFound(target.path, "file does not exist")
            async with aiofiles.open(path, encoding="utf-8") as fd:
                content = await fd.read()
            updated = update_image(content, target, references[target.path])
            if updated != content:
                updates.append((path, target.path, updated))

        for path, _, updated in updates:
            async with aiofiles.open(path, "w", encoding="utf-8") as fd:
                await fd.write(updated)
        return [rel_path for _, rel_path, _ in updates]

    def _commit(
        self,
        repo: git.Repo,
        commit: CommitRef,
        changed: list[str],
        references: dict[str, str],
    ) -> str | None:
        """Create one commit with every changed manifest."""
        self._transition(SyncState.COMMITTING)
        if not changed:
            _LOGGER.info("Manifests already reference %s, nothing to commit", commit)
            return None
        gitops = self._config.gitops
        tag = f"{env_prefix(self._config.env_label)}{commit.short_id}"
        summary = gitops.format_commit_message(tag=tag, short_id=commit.short_id)
        body = "\n".join(f"{path}: {ref}" for path, ref in references.items())
        actor = git.Actor(gitops.author_name, gitops.author_email)
        repo.index.add(changed)
        new_commit = repo.index.commit(
            f"{summary}\n\nSource commit {commit.full_id}\n\n{body}\n",
            author=actor,
            committer=actor,
        )
        _LOGGER.info("Committed %s updating %s", new_commit.hexsha, ", ".join(changed))
        return new_commit.hexsha

    def _push(
        self, repo: git.Repo, branch: str, auth_env: dict[str, str]
    ) -> str | None:
        """Push HEAD to the remote branch.

        Returns:
            None when the push succeeded, else the rejection message of a
            non-fast-forward push.

        Raises:
            GitOpsException: If the push failed for any other reason.
        """
        self._transition(SyncState.PUSHING)
        origin = repo.remote("origin")
        try:
            with repo.git.custom_environment(**auth_env):
                infos = origin.push(
                    refspec=f"HEAD:refs/heads/{branch}",
                    kill_after_timeout=self._config.gitops.timeout,
                )
        except git.exc.GitCommandError as err:
            stderr = redact(str(err.stderr or err), self._secrets()).strip()
            if _is_rejection(str(err)):
                return stderr
            raise GitOpsException(f"git push to '{branch}' failed: {stderr}") from err
        if not infos:
            raise GitOpsException(f"git push to '{branch}' reported no result")
        for info in infos:
            if info.flags & PushInfo.REJECTED:
                return info.summary.strip()
            if info.flags & (PushInfo.REMOTE_REJECTED | PushInfo.ERROR):
                raise GitOpsException(
                    f"git push to '{branch}' failed: {info.summary.strip()}"
                )
        return None

    def _reset_to_remote(
        self, repo: git.Repo, branch: str, auth_env: dict[str, str]
    ) -> None:
        """Discard the local commit and move to the latest remote state."""
        try:
            with repo.git.custom_environment(**auth_env):
                repo.remote("origin").fetch(
                    kill_after_timeout=self._config.gitops.timeout
                )
        except git.exc.GitCommandError as err:
            stderr = redact(str(err.stderr or err), self._secrets()).strip()
            raise GitOpsException(f"git fetch failed: {stderr}") from err
        repo.head.reset(f"origin/{branch}", index=True, working_tree=True)

    async def sync(
        self, commit: CommitRef, tag_pairs: Mapping[str, TagPair]
    ) -> SynchronizationResult:
        """Point every manifest at the images built for the commit.

        Args:
            commit: The commit the images were built from.
            tag_pairs: The tags of every image, available only once all of
                the images of the run were built and pushed.

        Raises:
            CloneFailure: If the repository could not be cloned.
            ManifestFieldNotFound: If a manifest has no matching image field.
            PushRejected: If the push was rejected on every attempt.
            GitOpsException: If any other git operation failed.
        """
        references = self.image_references(tag_pairs)
        gitops = self._config.gitops
        result = SynchronizationResult(state=SyncState.IDLE)
        try:
            with (
                tempfile.TemporaryDirectory(
                    prefix="image-sync-", ignore_cleanup_errors=True
                ) as tmp_dir,
                git_auth_env(gitops.token, Path(tmp_dir)) as auth_env,
            ):
                clone_dir = Path(tmp_dir) / "repo"
                with trace_context("Clone manifests"):
                    repo = await asyncio.to_thread(self._clone, clone_dir, auth_env)
                branch = gitops.branch or repo.active_branch.name
                result.branch = branch

                rejection: str | None = None
                for attempt in range(1, gitops.push_attempts + 1):
                    result.attempts = attempt
                    with trace_context(f"Update manifests (attempt {attempt})"):
                        changed = await self._apply(clone_dir, references)
                        sha = self._commit(repo, commit, changed, references)
                    result.changed = changed
                    result.commit_sha = sha
                    if sha is None:
                        break
                    if self._config.dry_run:
                        _LOGGER.info("Dry run, not pushing commit %s", sha)
                        break
                    with trace_context("Push manifests"):
                        rejection = await asyncio.to_thread(
                            self._push, repo, branch, auth_env
                        )
                    if rejection is None:
                        result.pushed = True
                        _LOGGER.info("Pushed %s to %s", sha, branch)
                        break
                    _LOGGER.warning(
                        "Push attempt %d/%d to %s rejected: %s",
                        attempt,
                        gitops.push_attempts,
                        branch,
                        rejection,
                    )
                    if attempt < gitops.push_attempts:
                        await asyncio.to_thread(
                            self._reset_to_remote, repo, branch, auth_env
                        )
                else:
                    raise PushRejected(branch, gitops.push_attempts, rejection)
        except (ImageSyncException, asyncio.CancelledError):
            self._transition(SyncState.FAILED)
            raise
        except git.exc.GitError as err:
            self._transition(SyncState.FAILED)
            raise GitOpsException(
                f"git operation failed: {redact(str(err), self._secrets())}"
            ) from err

        self._transition(SyncState.SUCCEEDED)
        result.state = SyncState.SUCCEEDED
        return result
