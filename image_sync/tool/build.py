"""Image-sync build action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from image_sync.builder import BuildReport, ImageBuilder
from image_sync.commit import resolve_commit_ref
from image_sync.docker import DockerEngine
from image_sync.pipeline import build_outputs

from . import common
from .format import formatter

_LOGGER = logging.getLogger(__name__)


def report_rows(report: BuildReport) -> list[dict[str, str]]:
    """Return a result row for each image of a build report."""
    rows = []
    for name, result in report.results.items():
        rows.append(
            {
                "image": name,
                "immutable": result.tags.immutable.reference,
                "mutable": result.tags.mutable.reference,
                "status": "ok" if result.succeeded else "failed",
                "pushed": str(len(result.pushed)),
            }
        )
    return rows


class BuildAction:
    """Image-sync build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build and push images for a commit",
                description="""Build each image once, tag it with the mutable
                    latest tag and the immutable commit tag, and push both. Images
                    are built concurrently and the command fails if any image
                    failed.""",
            ),
        )
        args.add_argument(
            "--image",
            "-i",
            dest="images",
            action="append",
            default=None,
            help="Logical name of an image to build, may be repeated (default: all)",
        )
        common.add_common_flags(args)
        common.add_output_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        images: list[str] | None,
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
        pipeline_config.validate(require_registry=True)
        commit = resolve_commit_ref(sha)

        builder = ImageBuilder(
            pipeline_config, DockerEngine(build_timeout=pipeline_config.build_timeout)
        )
        report = await builder.build_all(commit, images)

        formatter(output).print(report_rows(report))
        report.raise_for_failures()
        common.write_outputs(github_output, build_outputs(commit, builds=report))
