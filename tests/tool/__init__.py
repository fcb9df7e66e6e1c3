"""Test helpers for flux-distro tools."""

from flux_distro.command import Command, run

FLUX_DISTRO_BIN = "flux-distro"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([FLUX_DISTRO_BIN] + args, env=env))
