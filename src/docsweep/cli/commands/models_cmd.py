from __future__ import annotations

import argparse

from rich.panel import Panel
from rich.table import Table

from docsweep.cli.context import CLIContext
from docsweep.infrastructure.embedding import build_gateway


def register(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("models", help="Embedding provider checks")
    models_subparsers = parser.add_subparsers(dest="models_command", required=True)

    check = models_subparsers.add_parser("check", help="Check that the embedding provider is reachable")
    check.set_defaults(handler=run_check)

    list_parser = models_subparsers.add_parser("list", help="List models the provider can serve")
    list_parser.set_defaults(handler=run_list)

    embed = models_subparsers.add_parser("embed", help="Embed a piece of text and show its vector shape")
    embed.add_argument("--text", required=True)
    embed.add_argument("--model")
    embed.set_defaults(handler=run_embed)


def run_check(args: argparse.Namespace, ctx: CLIContext) -> int:
    gateway = build_gateway(ctx.settings)
    if gateway.check_connection():
        ctx.console.print(f"[green]Connected[/green] to {gateway.provider_name}")
        return 0
    ctx.console.print(f"[red]Cannot reach[/red] {gateway.provider_name}")
    return 1


def run_list(args: argparse.Namespace, ctx: CLIContext) -> int:
    models = build_gateway(ctx.settings).list_models()
    table = Table(title=f"Embedding Models ({len(models)})")
    table.add_column("Model")
    table.add_column("Default")
    for name in models:
        table.add_row(name, "yes" if name == ctx.settings.embed_model else "")
    ctx.console.print(table)
    return 0


def run_embed(args: argparse.Namespace, ctx: CLIContext) -> int:
    model = args.model or ctx.settings.embed_model
    vector = build_gateway(ctx.settings).embed(args.text, model)
    preview = ", ".join(f"{x:.4f}" for x in vector[:8])
    ctx.console.print(
        Panel.fit(
            f"Model: {model}\nDimensions: {len(vector)}\nHead: [{preview}{', ...' if len(vector) > 8 else ''}]",
            title="Embedding",
        )
    )
    return 0
