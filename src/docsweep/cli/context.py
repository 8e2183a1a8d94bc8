from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console

from docsweep.application.services.project_service import ProjectService
from docsweep.core.config import AppPaths, Settings, load_settings


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    console: Console
    settings: Settings = field(default_factory=load_settings)


def require_initialized_project(ctx: CLIContext) -> None:
    project_service = ProjectService(ctx.paths)
    project_service.require_initialized()
    # Re-apply the schema so older databases pick up new tables and indexes.
    project_service.init_project()
