"""Image-sync resolve action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from image_sync.commit import resolve_commit_ref
from image_sync.pipeline import build_outputs

from . import common
from .format import formatter

_LOGGER = logging.getLogger(__name__)


class ResolveAction:
    """Image-sync resolve action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "resolve",
                help="Print the tags that a commit would be published under",
                description="""Resolve the short identifier of a commit and print
                    the mutable and immutable tag of every configured image.
                    Nothing is built or pushed.""",
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
        pipeline_config.validate()
        commit = resolve_commit_ref(sha)

        rows = []
        outputs = build_outputs(commit)
        for spec in pipeline_config.images:
            pair = pipeline_config.tag_pair(spec, commit)
            rows.append(
                {
                    "image": spec.name,
                    "immutable": pair.immutable.reference,
                    "mutable": pair.mutable.reference,
                    "manifest": pipeline_config.target_for(spec.name).path,
                }
            )
            outputs[f"{spec.name}_image"] = pair.immutable.reference

        if output == "table":
            print(f"Commit {commit.full_id} -> {commit.short_id}")
        formatter(output).print(rows)
        common.write_outputs(github_output, outputs)
