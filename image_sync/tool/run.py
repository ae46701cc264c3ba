"""Image-sync run action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from image_sync.pipeline import Pipeline, build_outputs

from . import common
from .build import report_rows
from .format import formatter

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """Image-sync run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Build all images and update the GitOps manifests",
                description="""Build and push every image for a commit, then,
                    only if all of them succeeded, rewrite the GitOps manifests to
                    the commit tag in a single commit.""",
            ),
        )
        common.add_common_flags(args)
        common.add_output_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
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
        result = await Pipeline(pipeline_config).run(sha)

        formatter(output).print(report_rows(result.builds))
        if output == "table":
            if result.sync.commit_sha:
                print(
                    f"Manifests updated in {result.sync.commit_sha} "
                    f"on {result.sync.branch}"
                )
            else:
                print("Manifests already up to date")
        common.write_outputs(
            github_output,
            build_outputs(result.commit, builds=result.builds, sync=result.sync),
        )
