"""Engine settings read from the environment and optional ``.env`` files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import find_dotenv, load_dotenv

from .constants import DEFAULT_SOURCES

ENV_DATA_DIR = "CHARACTER_ENGINE_DATA_DIR"
ENV_SOURCES = "CHARACTER_ENGINE_SOURCES"
ENV_LOG_LEVEL = "CHARACTER_ENGINE_LOG_LEVEL"


@dataclass(frozen=True)
class EngineSettings:
    data_dir: Path = field(default_factory=lambda: _default_data_dir())
    allowed_sources: FrozenSet[str] = frozenset(DEFAULT_SOURCES)
    log_level: str = "INFO"


def load_env() -> None:
    """Load environment variables from .env files without overriding process env."""

    base = find_dotenv(".env", usecwd=True)
    if base:
        load_dotenv(base, override=False)

    local_file = Path.cwd() / ".env.local"
    if local_file.exists():
        load_dotenv(local_file, override=False)


def parse_sources(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset(DEFAULT_SOURCES)
    sources = {part.strip().upper() for part in raw.split(",") if part.strip()}
    return frozenset(sources) or frozenset(DEFAULT_SOURCES)


def load_settings(read_env_files: bool = True) -> EngineSettings:
    if read_env_files:
        load_env()
    data_dir = os.getenv(ENV_DATA_DIR)
    return EngineSettings(
        data_dir=Path(data_dir).expanduser().resolve() if data_dir else _default_data_dir(),
        allowed_sources=parse_sources(os.getenv(ENV_SOURCES)),
        log_level=(os.getenv(ENV_LOG_LEVEL) or "INFO").upper(),
    )


def _default_data_dir() -> Path:
    current = Path(__file__).resolve()
    project_root = current.parents[2]
    return project_root / "data"
