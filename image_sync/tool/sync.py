"""Image-sync sync action."""

from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
import logging
import pathlib
from typing import cast

from image_sync.commit import resolve_commit_ref
from image_sync.docker import ContainerEngine, DockerEngine
from image_sync.exceptions import BuildsFailed
from image_sync.gitops import ManifestSynchronizer, SynchronizationResult
from image_sync.pipeline import build_outputs
from image_sync.tags import TagPair

from . import common
from .format import formatter

_LOGGER = logging.getLogger(__name__)


async def verify_pushed(
    engine: ContainerEngine, tag_pairs: dict[str, TagPair]
) -> None:
    """Check that every immutable tag exists in the registry.

    Raises:
        BuildsFailed: If any image was not pushed.
    """
    errors = {}
    for name, pair in tag_pairs.items():
        if await engine.inspect_remote(pair.immutable.reference) is None:
            errors[name] = f"{pair.immutable.reference} not found in registry"
    if errors:
        raise BuildsFailed(errors)


def sync_rows(
    result: SynchronizationResult, references: dict[str, str]
) -> list[dict[str, str]]:
    """Return a result row for each manifest."""
    return [
        {
            "manifest": path,
            "image": reference,
            "changed": "yes" if path in result.changed else "no",
        }
        for path, reference in references.items()
    ]


class SyncAction:
    """Image-sync sync action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "sync",
                help="Point the GitOps manifests at the images of a commit",
                description="""Clone the GitOps manifest repository, rewrite the
                    image of every manifest to the commit tag, and push a single
                    commit. Run this only after every image was built and pushed.""",
            ),
        )
        args.add_argument(
            "--verify-images",
            action=BooleanOptionalAction,
            default=True,
            help="Check every commit tag exists in the registry before syncing",
        )
        common.add_common_flags(args)
        common.add_output_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        verify_images: bool,
        config: pathlib.Path | None,
        sha: str | None,
        env_label: str | None,
        dry_run: bool | None,
        github_output: pathlib.Path | None,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        pipeline_config = common.build_config(config, env_label, dry_run)
        pipeline_config.validate(require_gitops=True)
        commit = resolve_commit_ref(sha)

        tag_pairs = {
            spec.name: pipeline_config.tag_pair(spec, commit)
            for spec in pipeline_config.images
        }
        if verify_images:
            await verify_pushed(DockerEngine(), tag_pairs)

        synchronizer = ManifestSynchronizer(pipeline_config)
        result = await synchronizer.sync(commit, tag_pairs)

        formatter(output).print(
            sync_rows(result, synchronizer.image_references(tag_pairs))
        )
        common.write_outputs(github_output, build_outputs(commit, sync=result))
