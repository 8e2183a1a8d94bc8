from __future__ import annotations

from pathlib import Path

import pytest

from docsweep.core.config import DEFAULT_LOCAL_EMBED_MODEL, load_paths, load_settings

_ENV_NAMES = (
    "DOCSWEEP_HOME",
    "OLLAMA_HOST",
    "DOCSWEEP_EMBED_PROVIDER",
    "DOCSWEEP_EMBED_MODEL",
    "DOCSWEEP_EMBED_TIMEOUT_SECONDS",
    "DOCSWEEP_SEARCH_THRESHOLD",
    "DOCSWEEP_CHUNK_CHARS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_paths_default_under_project_root(tmp_path: Path) -> None:
    paths = load_paths(tmp_path)

    assert paths.project_root == tmp_path.resolve()
    assert paths.data_dir == tmp_path.resolve() / ".docsweep"
    assert paths.db_path.name == "docsweep.db"
    assert paths.output_dir == paths.data_dir / "cleaned_output"


def test_docsweep_home_overrides_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSWEEP_HOME", str(tmp_path / "elsewhere"))

    paths = load_paths(tmp_path / "project")

    assert paths.data_dir == (tmp_path / "elsewhere").resolve()
    assert paths.db_path.parent == paths.data_dir


def test_settings_defaults() -> None:
    settings = load_settings()

    assert settings.embed_provider == "ollama"
    assert settings.embed_model == "nomic-embed-text"
    assert settings.ollama_host == "http://localhost:11434"
    assert settings.embed_timeout_seconds == 30.0
    assert settings.search_threshold == 0.0
    assert settings.chunk_chars == 1000


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OLLAMA_HOST", " http://gpu-box:11434 ")
    monkeypatch.setenv("DOCSWEEP_EMBED_MODEL", "mxbai-embed-large")
    monkeypatch.setenv("DOCSWEEP_EMBED_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("DOCSWEEP_SEARCH_THRESHOLD", "0.35")
    monkeypatch.setenv("DOCSWEEP_CHUNK_CHARS", "400")

    settings = load_settings()

    assert settings.ollama_host == "http://gpu-box:11434"
    assert settings.embed_model == "mxbai-embed-large"
    assert settings.embed_timeout_seconds == 12.5
    assert settings.search_threshold == 0.35
    assert settings.chunk_chars == 400


def test_bad_values_fall_back_or_clamp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSWEEP_EMBED_PROVIDER", "carrier-pigeon")
    monkeypatch.setenv("DOCSWEEP_EMBED_TIMEOUT_SECONDS", "-1")
    monkeypatch.setenv("DOCSWEEP_SEARCH_THRESHOLD", "3")
    monkeypatch.setenv("DOCSWEEP_CHUNK_CHARS", "lots")

    settings = load_settings()

    assert settings.embed_provider == "ollama"
    assert settings.embed_timeout_seconds == 30.0
    assert settings.search_threshold == 1.0
    assert settings.chunk_chars == 1000


def test_local_provider_picks_a_local_default_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSWEEP_EMBED_PROVIDER", "Sentence-Transformers")

    settings = load_settings()

    assert settings.embed_provider == "sentence-transformers"
    assert settings.embed_model == DEFAULT_LOCAL_EMBED_MODEL
