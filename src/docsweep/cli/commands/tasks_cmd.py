from __future__ import annotations

import argparse
from pathlib import Path

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.cli.context import CLIContext, require_initialized_project
from docsweep.core.errors import ValidationError
from docsweep.domain.models.cleaning import TASK_STATUSES, TASK_TYPES, CleaningTask, CleaningTaskUpdate
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("tasks", help="Cleaning task queue management")
    tasks_subparsers = parser.add_subparsers(dest="tasks_command", required=True)

    create = tasks_subparsers.add_parser("create", help="Queue one cleaning task")
    create.add_argument("--file-id", required=True)
    create.add_argument("--type", dest="task_type", required=True, choices=list(TASK_TYPES))
    create.add_argument("--priority", type=int, default=0)
    _add_content_source(create)
    create.set_defaults(handler=run_create)

    enqueue = tasks_subparsers.add_parser(
        "enqueue-file",
        help="Queue the default cleanup, metadata and conversion tasks for one file",
    )
    enqueue.add_argument("--file-id", required=True)
    enqueue.add_argument("--path", required=True, help="Text file whose content the tasks process")
    enqueue.set_defaults(handler=run_enqueue_file)

    list_parser = tasks_subparsers.add_parser("list", help="List cleaning tasks, newest first")
    list_parser.add_argument("--status", choices=list(TASK_STATUSES))
    list_parser.add_argument("--type", dest="task_type", choices=list(TASK_TYPES))
    list_parser.add_argument("--query", help="Case-insensitive text match over task fields")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=25)
    list_parser.set_defaults(handler=run_list)

    show = tasks_subparsers.add_parser("show", help="Show one cleaning task")
    show.add_argument("--id", dest="task_id", required=True)
    show.set_defaults(handler=run_show)

    update = tasks_subparsers.add_parser("update", help="Move a task along its lifecycle")
    update.add_argument("--id", dest="task_id", required=True)
    update.add_argument("--status", required=True, choices=list(TASK_STATUSES))
    update.add_argument("--output")
    update.add_argument("--error")
    update.set_defaults(handler=run_update)

    delete = tasks_subparsers.add_parser("delete", help="Delete one cleaning task")
    delete.add_argument("--id", dest="task_id", required=True)
    delete.set_defaults(handler=run_delete)

    clear = tasks_subparsers.add_parser("clear", help="Delete every cleaning task")
    clear.set_defaults(handler=run_clear)

    stats = tasks_subparsers.add_parser("stats", help="Show task counts by status and type")
    stats.set_defaults(handler=run_stats)


def _add_content_source(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=False)
    group.add_argument("--content", help="Inline input content")
    group.add_argument("--path", help="Read input content from a text file")


def _read_text(path_value: str) -> str:
    path = Path(path_value).expanduser().resolve()
    if not path.exists() or not path.is_file():
        raise ValidationError(f"Input file not found: {path}")
    return path.read_text(encoding="utf-8", errors="replace")


def _service(ctx: CLIContext) -> CleaningTaskService:
    return CleaningTaskService(CleaningTaskRepo(ctx.paths.db_path))


def _task_table(title: str, tasks: list[CleaningTask]) -> Table:
    table = Table(title=title)
    table.add_column("Task ID")
    table.add_column("File")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Created")
    table.add_column("Error", overflow="fold")
    for task in tasks:
        table.add_row(
            task.id,
            task.file_id,
            task.task_type,
            task.status,
            str(task.priority),
            task.created_at,
            task.error_message or "",
        )
    return table


def run_create(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    content = _read_text(args.path) if args.path else args.content
    task = _service(ctx).create(
        args.file_id,
        args.task_type,
        priority=args.priority,
        input_content=content,
    )
    ctx.console.print(f"[green]Queued[/green] {task.task_type} task {task.id} for file {task.file_id}")
    return 0


def run_enqueue_file(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    tasks = _service(ctx).create_for_file(args.file_id, _read_text(args.path))
    if not tasks:
        ctx.console.print(f"[yellow]File {args.file_id} already has cleaning tasks; nothing queued[/yellow]")
        return 0
    ctx.console.print(_task_table(f"Queued Tasks ({len(tasks)})", tasks))
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    page = _service(ctx).paginate(
        args.page,
        args.page_size,
        status=args.status,
        task_type=args.task_type,
        query=args.query,
    )
    ctx.console.print(
        _task_table(
            f"Cleaning Tasks (page {page.page}/{max(page.total_pages, 1)}, {page.total_items} total)",
            page.items,
        )
    )
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    task = _service(ctx).get(args.task_id)
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"ID: {task.id}",
                    f"File: {task.file_id}",
                    f"Type: {task.task_type}",
                    f"Status: {task.status}",
                    f"Priority: {task.priority}",
                    f"Created: {task.created_at}",
                    f"Started: {task.started_at or '-'}",
                    f"Completed: {task.completed_at or '-'}",
                    f"Error: {task.error_message or '-'}",
                ]
            ),
            title="Cleaning Task",
        )
    )
    if task.output_content:
        ctx.console.print(Panel(Text(task.output_content), title="Output"))
    return 0


def run_update(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    task = _service(ctx).update(
        args.task_id,
        CleaningTaskUpdate(status=args.status, output_content=args.output, error_message=args.error),
    )
    ctx.console.print(f"[green]Task {task.id}[/green] is now {task.status}")
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    _service(ctx).delete(args.task_id)
    ctx.console.print(f"[green]Deleted[/green] task {args.task_id}")
    return 0


def run_clear(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    removed = _service(ctx).delete_all()
    ctx.console.print(f"[green]Deleted[/green] {removed} task(s)")
    return 0


def run_stats(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    stats = _service(ctx).stats()

    table = Table(title="Tasks by Type")
    table.add_column("Type")
    for status in TASK_STATUSES:
        table.add_column(status.capitalize(), justify="right")
    for task_type, counts in sorted(stats.by_type.items()):
        table.add_row(task_type, *(str(counts.get(status, 0)) for status in TASK_STATUSES))

    avg = stats.average_processing_seconds
    ctx.console.print(table)
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Total: {stats.total}",
                    f"Pending: {stats.pending}",
                    f"Running: {stats.running}",
                    f"Completed: {stats.completed}",
                    f"Failed: {stats.failed}",
                    f"Average processing: {f'{avg:.3f}s' if avg is not None else '-'}",
                ]
            ),
            title="Cleaning Task Stats",
        )
    )
    return 0
