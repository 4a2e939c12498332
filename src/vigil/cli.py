"""
Mantissa Vigil CLI entry point.

This module provides the command-line interface for Vigil.
"""

from __future__ import annotations

import argparse
import sys

from vigil import __version__
from vigil.cli_alerts import add_alerts_parser, cmd_alerts, cmd_sweep
from vigil.cli_image import add_image_parser, cmd_image, cmd_registries
from vigil.observability import configure_logging


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="vigil",
        description="Mantissa Vigil - Vulnerability Intelligence Matching & Alerting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"vigil {__version__}",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )

    parser.add_argument(
        "--log-format",
        choices=["human", "json"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_image_parser(subparsers)
    add_alerts_parser(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose or args.log_format:
        level = "INFO"
        if args.verbose:
            level = "DEBUG" if args.verbose > 1 else "INFO"
        configure_logging(level=level, format=args.log_format or "human")

    if args.command is None:
        parser.print_help()
        return 0

    command_handlers = {
        "image": cmd_image,
        "registries": cmd_registries,
        "alerts": cmd_alerts,
        "sweep": cmd_sweep,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
