from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console

from docsweep.cli.commands import (
    batch_cmd,
    init_cmd,
    models_cmd,
    outputs_cmd,
    tasks_cmd,
    vector_cmd,
    web_cmd,
)
from docsweep.cli.context import CLIContext
from docsweep.core.config import load_paths, load_settings
from docsweep.core.errors import DocsweepError
from docsweep.core.logging import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsweep",
        description="docsweep content cleaning and semantic index CLI",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Project root to use for .docsweep data (default: current working directory)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command", required=True)
    init_cmd.register(subparsers)
    tasks_cmd.register(subparsers)
    batch_cmd.register(subparsers)
    vector_cmd.register(subparsers)
    models_cmd.register(subparsers)
    outputs_cmd.register(subparsers)
    web_cmd.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    console = Console()

    paths = load_paths(args.project_root)
    ctx = CLIContext(paths=paths, console=console, settings=load_settings())

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2

    try:
        return handler(args, ctx)
    except DocsweepError as exc:
        logger.error(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
