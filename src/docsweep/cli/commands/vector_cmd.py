from __future__ import annotations

import argparse
from pathlib import Path

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from docsweep.application.services.progress_channel import ProgressChannel
from docsweep.application.services.search_service import SimilaritySearchService
from docsweep.application.services.vector_service import VectorIndexService
from docsweep.cli.context import CLIContext, require_initialized_project
from docsweep.core.errors import ValidationError
from docsweep.domain.models.cleaning import TASK_TYPE_TEXT_CLEANUP, TASK_TYPES
from docsweep.domain.models.progress import VECTOR_INDEXING_PROGRESS_CHANNEL, ProgressEvent
from docsweep.infrastructure.db.repos.cleaning_task_repo import CleaningTaskRepo
from docsweep.infrastructure.db.repos.vector_index_repo import VectorIndexRepo
from docsweep.infrastructure.embedding import build_gateway
from docsweep.infrastructure.vector.chunking import TextChunker


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("vector", help="Vector indexing and semantic search")
    vector_subparsers = parser.add_subparsers(dest="vector_command", required=True)

    index = vector_subparsers.add_parser("index", help="Chunk, embed and index one piece of content")
    index.add_argument("--content-id", required=True)
    index.add_argument("--content-type", default="document")
    source = index.add_mutually_exclusive_group(required=True)
    source.add_argument("--text")
    source.add_argument("--path")
    index.add_argument("--model")
    index.set_defaults(handler=run_index)

    index_completed = vector_subparsers.add_parser(
        "index-completed",
        help="Index the outputs of completed cleaning tasks",
    )
    index_completed.add_argument(
        "--task-type",
        default=TASK_TYPE_TEXT_CLEANUP,
        choices=list(TASK_TYPES),
    )
    index_completed.add_argument("--model")
    index_completed.set_defaults(handler=run_index_completed)

    search = vector_subparsers.add_parser("search", help="Semantic search over indexed chunks")
    search.add_argument("--query", required=True)
    search.add_argument("--limit", type=int, default=10)
    search.add_argument("--threshold", type=float, default=None)
    search.add_argument("--model")
    search.set_defaults(handler=run_search)

    stats = vector_subparsers.add_parser("stats", help="Show vector index statistics")
    stats.set_defaults(handler=run_stats)

    list_parser = vector_subparsers.add_parser("list", help="List indexed entries, newest first")
    list_parser.add_argument("--content-id")
    list_parser.add_argument("--content-type", default="document")
    list_parser.add_argument("--limit", type=int, default=100)
    list_parser.set_defaults(handler=run_list)

    show = vector_subparsers.add_parser("show", help="Show one indexed entry")
    show.add_argument("--id", dest="entry_id", required=True)
    show.set_defaults(handler=run_show)

    delete = vector_subparsers.add_parser("delete", help="Delete one entry or every chunk of a content item")
    target = delete.add_mutually_exclusive_group(required=True)
    target.add_argument("--id", dest="entry_id")
    target.add_argument("--content-id")
    delete.add_argument("--content-type", default="document")
    delete.set_defaults(handler=run_delete)

    clear = vector_subparsers.add_parser("clear", help="Remove every indexed entry")
    clear.set_defaults(handler=run_clear)


def _service(ctx: CLIContext, *, with_gateway: bool = False) -> VectorIndexService:
    return VectorIndexService(
        vector_repo=VectorIndexRepo(ctx.paths.db_path),
        gateway=build_gateway(ctx.settings) if with_gateway else None,
        chunker=TextChunker(max_chars=ctx.settings.chunk_chars),
        default_model=ctx.settings.embed_model,
        task_repo=CleaningTaskRepo(ctx.paths.db_path),
    )


def run_index(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    if args.path:
        path = Path(args.path).expanduser().resolve()
        if not path.exists() or not path.is_file():
            raise ValidationError(f"Input file not found: {path}")
        text = path.read_text(encoding="utf-8", errors="replace")
    else:
        text = args.text

    entries = _service(ctx, with_gateway=True).index_content(
        args.content_id,
        args.content_type,
        text,
        args.model,
    )
    ctx.console.print(
        f"[green]Indexed[/green] {len(entries)} chunk(s) for {args.content_type}:{args.content_id}"
    )
    return 0


def run_index_completed(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    channel = ProgressChannel(VECTOR_INDEXING_PROGRESS_CHANNEL)

    def on_event(event: ProgressEvent) -> None:
        snapshot = event.progress
        ctx.console.print(
            f"[cyan]{event.type}[/cyan] {snapshot.progress_percent}% "
            f"({snapshot.processed} ok, {snapshot.failed} failed of {snapshot.total})"
        )

    subscription = channel.subscribe(on_event)
    try:
        attempted = _service(ctx, with_gateway=True).index_completed_tasks(
            task_type=args.task_type,
            model=args.model,
            channel=channel,
        )
        final = subscription.wait_until_completed(timeout=5.0)
    finally:
        channel.unsubscribe(subscription)

    failed = final.progress.failed if final is not None else 0
    ctx.console.print(
        Panel.fit(
            f"Attempted: {attempted}\nIndexed: {attempted - failed}\nFailed: {failed}",
            title="Vector Indexing",
        )
    )
    return 0


def run_search(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    service = SimilaritySearchService(
        vector_repo=VectorIndexRepo(ctx.paths.db_path),
        gateway=build_gateway(ctx.settings),
        default_model=ctx.settings.embed_model,
        default_threshold=ctx.settings.search_threshold,
    )
    hits = service.search(args.query, limit=args.limit, threshold=args.threshold, model=args.model)

    table = Table(title=f"Vector Search Hits ({len(hits)})")
    table.add_column("Score", justify="right")
    table.add_column("Content")
    table.add_column("Type")
    table.add_column("Text", overflow="fold")
    for hit in hits:
        snippet = hit.content.replace("\n", " ")
        table.add_row(
            f"{hit.similarity_score:.4f}",
            hit.content_id,
            hit.content_type,
            escape(snippet[:220]) + ("..." if len(snippet) > 220 else ""),
        )
    ctx.console.print(table)
    return 0


def run_stats(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    stats = _service(ctx).stats()
    avg = stats.average_vector_dimension
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"Total vectors: {stats.total_vectors}",
                    f"Distinct contents: {stats.distinct_contents}",
                    f"Models: {', '.join(stats.models_used) or '-'}",
                    f"Dimensions: {', '.join(f'{m}={d}' for m, d in stats.dimensions_by_model.items()) or '-'}",
                    f"Average dimension: {f'{avg:.1f}' if avg is not None else '-'}",
                    f"Last updated: {stats.last_updated or '-'}",
                ]
            ),
            title="Vector Index",
        )
    )
    return 0


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    service = _service(ctx)
    if args.content_id:
        entries = service.list_for_content(args.content_id, args.content_type)
    else:
        entries = service.list_all()[: max(0, args.limit)]

    table = Table(title=f"Vector Entries ({len(entries)})")
    table.add_column("Entry ID")
    table.add_column("Content")
    table.add_column("Type")
    table.add_column("Chunk", justify="right")
    table.add_column("Model")
    table.add_column("Dim", justify="right")
    table.add_column("Created")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.content_id,
            entry.content_type,
            str(entry.chunk_index),
            entry.model_name,
            str(entry.dimension),
            entry.created_at,
        )
    ctx.console.print(table)
    return 0


def run_show(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    entry = _service(ctx).get(args.entry_id)
    ctx.console.print(
        Panel.fit(
            "\n".join(
                [
                    f"ID: {entry.id}",
                    f"Content: {entry.content_type}:{entry.content_id}",
                    f"Chunk: {entry.chunk_index}",
                    f"Model: {entry.model_name} ({entry.dimension} dims)",
                    f"Metadata: {entry.metadata or '-'}",
                    f"Created: {entry.created_at}",
                ]
            ),
            title="Vector Entry",
        )
    )
    return 0


def run_delete(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    service = _service(ctx)
    if args.entry_id:
        service.delete_by_id(args.entry_id)
        ctx.console.print(f"[green]Deleted[/green] entry {args.entry_id}")
        return 0
    removed = service.delete_for_content(args.content_id, args.content_type)
    ctx.console.print(f"[green]Deleted[/green] {removed} entries for {args.content_type}:{args.content_id}")
    return 0


def run_clear(args: argparse.Namespace, ctx: CLIContext) -> int:
    require_initialized_project(ctx)
    removed = _service(ctx).clear()
    ctx.console.print(f"[green]Cleared[/green] {removed} vector entries")
    return 0
