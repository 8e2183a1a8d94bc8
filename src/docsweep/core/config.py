from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    data_dir: Path
    db_path: Path
    output_dir: Path


DEFAULT_DATA_DIRNAME = ".docsweep"

EMBED_PROVIDERS = {"ollama", "sentence-transformers"}
DEFAULT_LOCAL_EMBED_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    home_raw = os.getenv("DOCSWEEP_HOME")
    if home_raw:
        data_dir = Path(home_raw).expanduser().resolve()
    else:
        data_dir = root / DEFAULT_DATA_DIRNAME

    return AppPaths(
        project_root=root,
        data_dir=data_dir,
        db_path=data_dir / "docsweep.db",
        output_dir=data_dir / "cleaned_output",
    )


@dataclass(frozen=True)
class Settings:
    ollama_host: str = "http://localhost:11434"
    embed_provider: str = "ollama"
    embed_model: str = "nomic-embed-text"
    embed_timeout_seconds: float = 30.0
    search_threshold: float = 0.0
    chunk_chars: int = 1000


def load_settings() -> Settings:
    defaults = Settings()
    provider = (os.getenv("DOCSWEEP_EMBED_PROVIDER") or defaults.embed_provider).strip().lower()
    if provider not in EMBED_PROVIDERS:
        provider = defaults.embed_provider
    default_model = DEFAULT_LOCAL_EMBED_MODEL if provider == "sentence-transformers" else defaults.embed_model
    return Settings(
        ollama_host=(os.getenv("OLLAMA_HOST") or defaults.ollama_host).strip(),
        embed_provider=provider,
        embed_model=(os.getenv("DOCSWEEP_EMBED_MODEL") or default_model).strip(),
        embed_timeout_seconds=_read_float_env(
            "DOCSWEEP_EMBED_TIMEOUT_SECONDS", defaults.embed_timeout_seconds
        ),
        search_threshold=_read_unit_float_env("DOCSWEEP_SEARCH_THRESHOLD", defaults.search_threshold),
        chunk_chars=_read_int_env("DOCSWEEP_CHUNK_CHARS", defaults.chunk_chars),
    )


def _read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_unit_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return min(1.0, max(0.0, value))


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default
