"""Command line tool for building Flux distributions and ResourceSets."""

import argparse
import asyncio
import logging
import sys
import traceback

from flux_distro.exceptions import FluxDistroException
from . import build

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for building a Flux distribution.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    build.BuildAction.register(subparsers)
    return parser


def main() -> None:
    """Flux-distro command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except FluxDistroException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("flux-distro error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
