"""Run the full image build and manifest update for one commit.

The pipeline resolves the commit, builds and pushes every image concurrently,
and only when all of them succeeded rewrites the manifests in the GitOps
repository. A failed or cancelled build means the manifest repository is
never cloned.
"""

from dataclasses import dataclass
import logging

from .builder import BuildReport, ImageBuilder
from .commit import CommitRef, resolve_commit_ref
from .config import PipelineConfig
from .context import trace_context
from .docker import ContainerEngine, DockerEngine
from .gitops import ManifestSynchronizer, SynchronizationResult

__all__ = [
    "Pipeline",
    "PipelineResult",
    "build_outputs",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a successful pipeline run."""

    commit: CommitRef
    builds: BuildReport
    sync: SynchronizationResult


def build_outputs(
    commit: CommitRef,
    builds: BuildReport | None = None,
    sync: SynchronizationResult | None = None,
) -> dict[str, str]:
    """Return the values a CI step exports for later steps."""
    outputs = {"short_id": commit.short_id}
    if builds is not None:
        for name, result in builds.results.items():
            outputs[f"{name}_image"] = result.tags.immutable.reference
    if sync is not None and sync.commit_sha:
        outputs["manifest_commit"] = sync.commit_sha
    return outputs


class Pipeline:
    """Builds the images of a commit and deploys them through the manifests."""

    def __init__(
        self,
        config: PipelineConfig,
        engine: ContainerEngine | None = None,
        synchronizer: ManifestSynchronizer | None = None,
    ) -> None:
        """Initialize Pipeline."""
        self._config = config
        self._builder = ImageBuilder(
            config, engine or DockerEngine(build_timeout=config.build_timeout)
        )
        self._synchronizer = synchronizer or ManifestSynchronizer(config)

    async def run(self, full_id: str | None = None) -> PipelineResult:
        """Run the pipeline for a commit.

        Raises:
            InputException: If the configuration or commit is invalid.
            BuildsFailed: If any image failed, in which case no manifest
                is updated.
            PipelineCancelled: If the builds did not finish in time.
            GitOpsException: If the manifest update failed.
        """
        self._config.validate(require_registry=True, require_gitops=True)
        commit = resolve_commit_ref(full_id)
        _LOGGER.info("Running pipeline for commit %s", commit.full_id)

        with trace_context("Build images"):
            builds = await self._builder.build_all(commit)
        tag_pairs = builds.tag_pairs()

        with trace_context("Sync manifests"):
            sync = await self._synchronizer.sync(commit, tag_pairs)
        return PipelineResult(commit=commit, builds=builds, sync=sync)
