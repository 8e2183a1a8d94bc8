from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from docsweep.cli.context import CLIContext, require_initialized_project
from docsweep.domain.models.cleaning import TASK_TYPES
from docsweep.infrastructure.archive.output_store import CleaningOutputStore


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("outputs", help="Browse saved cleaning output files")
    outputs_subparsers = parser.add_subparsers(dest="outputs_command", required=True)

    list_parser = outputs_subparsers.add_parser("list", help="List saved output files, newest first")
    list_parser.add_argument("--type", dest="task_type", choices=list(TASK_TYPES))
    list_parser.set_defaults(handler=run_list)

    show = outputs_subparsers.add_parser("show", help="Print one saved output file")
    show.add_argument("--path", dest="relpath", required=True, help="Path relative to the output directory")
    show.set_defaults(handler=run_show)


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    outputs = CleaningOutputStore(ctx.paths.output_dir).list_outputs(args.task_type)

    table = Table(title=f"Saved Outputs ({len(outputs)})")
    table.add_column("Path")
    table.add_column("Type")
    table.add_column("Bytes", justify="right")
    table.add_column("Modified")
    for output in outputs:
        table.add_row(output.relpath, output.task_type, str(output.size_bytes), output.modified_at)
    ctx.console.print(table)
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    content = CleaningOutputStore(ctx.paths.output_dir).read_output(args.relpath)
    ctx.console.print(Panel(Text(content), title=args.relpath))
    return 0
