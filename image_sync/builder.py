"""Build and push the images of a pipeline run.

Each image is built and pushed by an independent task. The tasks run
concurrently and none of them is cancelled when another fails, so every image
reports its own outcome. The `BuildReport` returned by `ImageBuilder.build_all`
acts as the barrier in front of the manifest update: its tag pairs are only
available once every image succeeded.
"""

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path

from .commit import CommitRef
from .config import ImageSpec, ImmutableTagPolicy, PipelineConfig
from .context import trace_context
from .docker import ContainerEngine
from .exceptions import (
    BuildsFailed,
    CommandException,
    InputException,
    PipelineCancelled,
    TagConflict,
)
from .tags import TagPair

__all__ = [
    "BuildResult",
    "BuildReport",
    "ImageBuilder",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Outcome of building and pushing a single image."""

    image: str
    """Logical name of the image."""

    tags: TagPair
    """The tags the image was built with."""

    image_id: str | None = None
    """Id of the built image, when the build succeeded."""

    pushed: list[str] = field(default_factory=list)
    """References pushed to the registry, in push order."""

    error: str | None = None
    """Error message when the build or push failed."""

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class BuildReport:
    """Outcome of all the image builds of one run."""

    commit: CommitRef
    results: dict[str, BuildResult]

    @property
    def succeeded(self) -> bool:
        """Return True when every image was built and pushed."""
        return all(result.succeeded for result in self.results.values())

    @property
    def errors(self) -> dict[str, str]:
        """Return the error of each failed image."""
        return {
            name: result.error
            for name, result in self.results.items()
            if result.error is not None
        }

    def raise_for_failures(self) -> None:
        """Raise if any image failed to build or push."""
        if errors := self.errors:
            raise BuildsFailed(errors)

    def tag_pairs(self) -> dict[str, TagPair]:
        """Return the tag pair of every image once all of them succeeded."""
        self.raise_for_failures()
        return {name: result.tags for name, result in self.results.items()}


class ImageBuilder:
    """Builds, tags, and pushes the configured images."""

    def __init__(self, config: PipelineConfig, engine: ContainerEngine) -> None:
        """Initialize ImageBuilder."""
        self._config = config
        self._engine = engine
        self._source_dir = Path(config.source_dir)

    async def _immutable_push_needed(self, pair: TagPair, image_id: str) -> bool:
        """Check the immutable tag in the registry before anything is pushed.

        Returns False when the tag already holds the built content.
        """
        reference = pair.immutable.reference
        remote = await self._engine.inspect_remote(reference)
        if remote is None:
            return True
        if remote.config_digest == image_id:
            _LOGGER.info("Tag %s already holds %s, skipping push", reference, image_id)
            return False
        existing = remote.config_digest or "<manifest list>"
        if self._config.immutable_tags == ImmutableTagPolicy.OVERWRITE:
            _LOGGER.warning(
                "Overwriting immutable tag %s (was %s, now %s)",
                reference,
                existing,
                image_id,
            )
            return True
        raise TagConflict(reference, existing, image_id)

    async def build_and_push(self, spec: ImageSpec, commit: CommitRef) -> BuildResult:
        """Build one image and push its mutable and immutable tags.

        Raises:
            BuildFailure: If the image could not be built.
            PushFailure: If a tag could not be pushed.
            TagConflict: If the immutable tag holds different content.
        """
        pair = self._config.tag_pair(spec, commit)
        result = BuildResult(image=spec.name, tags=pair)
        with trace_context(f"Build {spec.name}"):
            _LOGGER.info(
                "Building %s as %s", spec.name, ", ".join(str(t) for t in pair.tags)
            )
            await self._engine.build(
                self._source_dir / spec.context,
                self._source_dir / spec.dockerfile,
                [tag.reference for tag in pair.tags],
            )
            result.image_id = await self._engine.image_id(pair.immutable.reference)

            if self._config.dry_run:
                _LOGGER.info("Dry run, not pushing %s", spec.name)
                return result

            if await self._immutable_push_needed(pair, result.image_id):
                await self._engine.push(pair.immutable.reference)
                result.pushed.append(pair.immutable.reference)
            await self._engine.push(pair.mutable.reference)
            result.pushed.append(pair.mutable.reference)
        return result

    async def _build_reporting(self, spec: ImageSpec, commit: CommitRef) -> BuildResult:
        """Build one image, recording a failure instead of raising it."""
        try:
            return await self.build_and_push(spec, commit)
        except (CommandException, InputException) as err:
            _LOGGER.error("Image %s failed: %s", spec.name, err)
            return BuildResult(
                image=spec.name,
                tags=self._config.tag_pair(spec, commit),
                error=str(err),
            )

    async def build_all(
        self, commit: CommitRef, names: list[str] | None = None
    ) -> BuildReport:
        """Build and push images concurrently and wait for all of them.

        Args:
            commit: The commit the images are built from.
            names: Logical names of the images to build, or all when unset.

        Raises:
            PipelineCancelled: If the builds did not finish within the
                configured timeout. In-flight builds are cancelled.
        """
        specs = (
            [self._config.image(name) for name in names]
            if names
            else list(self._config.images)
        )
        if not self._config.dry_run:
            await self._engine.login(self._config.registry)

        tasks = [
            asyncio.create_task(
                self._build_reporting(spec, commit), name=f"build-{spec.name}"
            )
            for spec in specs
        ]
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*tasks), self._config.build_timeout
            )
        except asyncio.TimeoutError as err:
            raise PipelineCancelled(
                f"Image builds did not finish within {self._config.build_timeout}s"
            ) from err
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        report = BuildReport(
            commit=commit, results={result.image: result for result in results}
        )
        for result in results:
            if result.succeeded:
                _LOGGER.info("Image %s built (%s)", result.image, result.image_id)
        return report
