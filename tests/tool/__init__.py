"""Test helpers for image-sync tools."""

from image_sync.command import Command, run

IMAGE_SYNC_BIN = "image-sync"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([IMAGE_SYNC_BIN] + args, env=env))
