from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

from docsweep.core.errors import NotFoundError, ValidationError
from docsweep.core.files import ensure_directory, write_text_atomic
from docsweep.domain.models.cleaning import TASK_TYPES, CleaningOutputFile, CleaningTask
from docsweep.infrastructure.cleaning.transforms import OUTPUT_SUFFIXES

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class CleaningOutputStore:
    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def ensure_layout(self) -> None:
        ensure_directory(self.base_dir)

    def output_relpath(self, task: CleaningTask) -> Path:
        suffix = OUTPUT_SUFFIXES.get(task.task_type, "output")
        file_part = _UNSAFE_NAME_CHARS.sub("_", task.file_id) or "unknown"
        return Path(task.task_type) / f"file_{file_part}_task_{task.id}_{suffix}.txt"

    def output_abspath(self, task: CleaningTask) -> Path:
        return self.base_dir / self.output_relpath(task)

    def save_output(self, task: CleaningTask, output: str) -> Path:
        self.ensure_layout()
        dst = self.output_abspath(task)
        write_text_atomic(dst, output)
        return dst

    def list_outputs(self, task_type: str | None = None) -> list[CleaningOutputFile]:
        """Saved output files, newest first. Temp files from interrupted writes are skipped."""
        if task_type is not None and task_type not in TASK_TYPES:
            raise ValidationError(f"Unsupported task type: {task_type}")
        if not self.base_dir.is_dir():
            return []

        found: list[tuple[float, CleaningOutputFile]] = []
        for type_dir in sorted(self.base_dir.iterdir()):
            if not type_dir.is_dir() or type_dir.name not in TASK_TYPES:
                continue
            if task_type is not None and type_dir.name != task_type:
                continue
            for path in type_dir.iterdir():
                if not path.is_file() or path.name.startswith("."):
                    continue
                stat = path.stat()
                found.append(
                    (
                        stat.st_mtime,
                        CleaningOutputFile(
                            relpath=f"{type_dir.name}/{path.name}",
                            task_type=type_dir.name,
                            filename=path.name,
                            size_bytes=stat.st_size,
                            modified_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
                        ),
                    )
                )
        found.sort(key=lambda item: (-item[0], item[1].relpath))
        return [info for _, info in found]

    def read_output(self, relpath: str) -> str:
        return self.resolve_output(relpath).read_text(encoding="utf-8")

    def resolve_output(self, relpath: str) -> Path:
        root = self.base_dir.resolve()
        cleaned = (relpath or "").strip()
        if not cleaned:
            raise ValidationError("Output path is required.")
        resolved = (root / cleaned).resolve()
        if root not in resolved.parents:
            raise ValidationError(f"Output path escapes the output directory: {relpath}")
        if not resolved.is_file():
            raise NotFoundError(f"Output file not found: {relpath}")
        return resolved
