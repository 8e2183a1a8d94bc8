from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from docsweep.application.services.batch_guard import BatchGuard
from docsweep.application.services.batch_service import CleaningBatchProcessor
from docsweep.application.services.cleaning_task_service import CleaningTaskService
from docsweep.application.services.progress_channel import ProgressChannel
from docsweep.application.services.vector_service import VectorIndexService
from docsweep.cli.context import CLIContext, require_initialized_project
from docsweep.domain.models.progress import CLEANING_PROGRESS_CHANNEL, ProgressEvent
from docsweep.infrastructure.archive.output_store import CleaningOutputStore
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.repos.vector_index_repo import VectorIndexRepo
from docsweep.infrastructure.embedding import build_gateway
from docsweep.infrastructure.vector.chunking import TextChunker


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("batch", help="Run cleaning batches")
    batch_subparsers = parser.add_subparsers(dest="batch_command", required=True)

    run_parser = batch_subparsers.add_parser("run", help="Process every pending cleaning task")
    run_parser.add_argument(
        "--index-outputs",
        action="store_true",
        help="Embed and index text_cleanup outputs as they complete",
    )
    run_parser.add_argument("--model", help="Embedding model for --index-outputs")
    run_parser.add_argument(
        "--save-outputs",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write each output to the cleaned_output directory (default: enabled).",
    )
    run_parser.set_defaults(handler=run_batch)


def run_batch(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    db_path = ctx.paths.db_path
    guard = BatchGuard()

    vector_service: VectorIndexService | None = None
    if args.index_outputs:
        vector_service = VectorIndexService(
            vector_repo=VectorIndexRepo(db_path),
            gateway=build_gateway(ctx.settings),
            chunker=TextChunker(max_chars=ctx.settings.chunk_chars),
            default_model=ctx.settings.embed_model,
            guard=guard,
        )

    processor = CleaningBatchProcessor(
        task_service=CleaningTaskService(CleaningTaskRepo(db_path)),
        guard=guard,
        vector_service=vector_service,
        index_outputs=args.index_outputs,
        index_model=args.model,
        output_store=CleaningOutputStore(ctx.paths.output_dir) if args.save_outputs else None,
    )
    channel = ProgressChannel(CLEANING_PROGRESS_CHANNEL)

    with Progress(
        TextColumn("[bold]Cleaning[/bold]"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TextColumn("{task.fields[counts]}"),
        TimeElapsedColumn(),
        console=ctx.console,
    ) as progress:
        bar = progress.add_task("cleaning", total=100, counts="")

        def on_event(event: ProgressEvent) -> None:
            snapshot = event.progress
            progress.update(
                bar,
                completed=snapshot.progress_percent,
                counts=(
                    f"{snapshot.processed} ok / {snapshot.failed} failed of {snapshot.total}"
                    f" | eta {snapshot.estimated_remaining_seconds:.1f}s"
                ),
            )

        subscription = channel.subscribe(on_event)
        try:
            attempted = processor.run_pending(channel)
            final = subscription.wait_until_completed(timeout=5.0)
        finally:
            channel.unsubscribe(subscription)

    lines = [f"Attempted: {attempted}"]
    if final is not None:
        lines.extend(
            [
                f"Completed: {final.progress.processed}",
                f"Failed: {final.progress.failed}",
            ]
        )
    if args.save_outputs and attempted:
        lines.append(f"Outputs: {ctx.paths.output_dir}")
    ctx.console.print(Panel.fit("\n".join(lines), title="Cleaning Batch"))
    return 0
