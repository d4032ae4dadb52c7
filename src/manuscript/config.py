"""Configuration loading from environment variables and manuscript.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from manuscript.errors import ConfigError
from manuscript.snapshots.engine import StorageMode

_CONFIG_FILENAME = "manuscript.toml"


@dataclass
class SnapshotConfig:
    """Snapshot engine settings."""

    storage: StorageMode = StorageMode.FULL_COPY
    interval_seconds: int = 300


@dataclass
class ImportConfig:
    """Defaults for import options."""

    preserve_formatting: bool = True
    import_research: bool = True
    import_trash: bool = False


@dataclass
class GenerationConfig:
    """Text-generation collaborator settings."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 1024
    timeout: int = 120


@dataclass
class ManuscriptConfig:
    """Top-level configuration."""

    snapshots: SnapshotConfig = field(default_factory=SnapshotConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    author: str = ""
    log_level: str = "INFO"


def _bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _int(name: str, value: object) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _storage(value: object) -> StorageMode:
    try:
        return StorageMode(value)
    except ValueError as e:
        choices = ", ".join(m.value for m in StorageMode)
        raise ConfigError(f"Snapshot storage must be one of {choices}, got {value!r}") from e


def _read_toml(path: Path) -> dict:
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid {path}: {e}") from e


def load_config(config_path: Path | None = None) -> ManuscriptConfig:
    """Load configuration from environment variables and optional manuscript.toml.

    Priority: environment variables > manuscript.toml > defaults. Invalid
    values raise ``ConfigError``.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = _read_toml(config_path)
    else:
        # Search current dir and ~/.manuscript/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".manuscript" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = _read_toml(candidate)
                break

    snapshot_data = file_data.get("snapshots", {})
    import_data = file_data.get("imports", {})
    generation_data = file_data.get("generation", {})

    config = ManuscriptConfig(
        snapshots=SnapshotConfig(
            storage=_storage(
                os.getenv("MANUSCRIPT_SNAPSHOT_STORAGE", snapshot_data.get("storage", "full-copy"))
            ),
            interval_seconds=_int(
                "snapshot interval",
                os.getenv("MANUSCRIPT_SNAPSHOT_INTERVAL", snapshot_data.get("interval_seconds", 300)),
            ),
        ),
        imports=ImportConfig(
            preserve_formatting=_bool(
                os.getenv(
                    "MANUSCRIPT_PRESERVE_FORMATTING", import_data.get("preserve_formatting", True)
                )
            ),
            import_research=_bool(
                os.getenv("MANUSCRIPT_IMPORT_RESEARCH", import_data.get("import_research", True))
            ),
            import_trash=_bool(
                os.getenv("MANUSCRIPT_IMPORT_TRASH", import_data.get("import_trash", False))
            ),
        ),
        generation=GenerationConfig(
            model=os.getenv(
                "MANUSCRIPT_MODEL", generation_data.get("model", "claude-sonnet-4-5-20250929")
            ),
            max_tokens=_int("max_tokens", generation_data.get("max_tokens", 1024)),
            timeout=_int(
                "timeout", os.getenv("MANUSCRIPT_TIMEOUT", generation_data.get("timeout", 120))
            ),
        ),
        author=os.getenv("MANUSCRIPT_AUTHOR", file_data.get("author", "")),
        log_level=os.getenv("MANUSCRIPT_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
