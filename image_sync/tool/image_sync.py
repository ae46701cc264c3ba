"""Command line tool for publishing images and updating GitOps manifests."""

import argparse
import asyncio
import logging
import sys
import traceback

from image_sync.exceptions import ImageSyncException
from . import build, resolve, run, sync

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for building images and deploying them "
        "through a GitOps manifest repository.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    resolve.ResolveAction.register(subparsers)
    build.BuildAction.register(subparsers)
    sync.SyncAction.register(subparsers)
    run.RunAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Image-sync command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ImageSyncException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print(f"image-sync error ({args.command}): {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
