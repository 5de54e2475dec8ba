"""Subcommand dispatcher for clipstitch.

Usage:
    clipstitch stitch  footage/ --output-dir renders/
    clipstitch codecs  [--manifest settings.yaml]
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipstitch",
        description="Stitch video clips into one continuous video.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("stitch", help="Play clips in order and encode one output")
    subparsers.add_parser("codecs", help="Show container/codec negotiation")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "stitch":
        from .stitch_cli import main as stitch_main
        stitch_main(remaining)
    elif parsed.command == "codecs":
        from .codecs_cli import main as codecs_main
        codecs_main(remaining)


if __name__ == "__main__":
    main()
