"""Library for flags and helpers shared by the image-sync actions."""

from argparse import ArgumentParser, BooleanOptionalAction
from dataclasses import replace
import logging
import os
import pathlib

from image_sync.config import PipelineConfig, load_config
from image_sync.github import mask_secret, write_github_outputs

from .format import FORMATTERS

_LOGGER = logging.getLogger(__name__)


def add_common_flags(args: ArgumentParser) -> None:
    """Add flags for the configuration and commit of a run."""
    args.add_argument(
        "--config",
        "-c",
        help="Path to the YAML configuration file, or the built-in images when unset",
        type=pathlib.Path,
        default=None,
    )
    args.add_argument(
        "--sha",
        help="Full hash of the triggering commit (default: $GITHUB_SHA)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--env-label",
        help="Environment label prefixed to every tag, e.g. prod (default: $ENV_LABEL)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--dry-run",
        action=BooleanOptionalAction,
        default=None,
        help="Build and commit without pushing to the registry or repository",
    )
    args.add_argument(
        "--github-output",
        help="File to append step outputs to (default: $GITHUB_OUTPUT)",
        type=pathlib.Path,
        default=None,
    )


def add_output_flags(args: ArgumentParser) -> None:
    """Add flags for the output format of a result table."""
    args.add_argument(
        "--output",
        "-o",
        choices=list(FORMATTERS),
        default="table",
        help="Output format of the command",
    )


def build_config(
    config: pathlib.Path | None,
    env_label: str | None,
    dry_run: bool | None,
) -> PipelineConfig:
    """Load the configuration and apply command line overrides."""
    pipeline_config = load_config(config)
    if env_label is not None:
        pipeline_config = replace(pipeline_config, env_label=env_label)
    if dry_run is not None:
        pipeline_config = replace(pipeline_config, dry_run=dry_run)
    mask_secret(pipeline_config.registry.password)
    mask_secret(pipeline_config.gitops.token)
    return pipeline_config


def write_outputs(github_output: pathlib.Path | None, values: dict[str, str]) -> None:
    """Export step outputs when running as a CI step."""
    if github_output is None and (env_output := os.environ.get("GITHUB_OUTPUT")):
        github_output = pathlib.Path(env_output)
    if github_output is None:
        return
    write_github_outputs(values, github_output)
