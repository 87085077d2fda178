"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from leyline.errors import ConfigurationError

DEFAULT_CACHE_DIR = Path("~/.leyline/cache")
DEFAULT_MAX_CACHE_SIZE = 50 * 1024 * 1024  # 50 MiB
DEFAULT_SCAN_WORKERS = 4

_FALSE_VALUES = {"0", "false", "no", "off"}


def _get_default_docs_root() -> Path:
    """Get the default document root for the current working directory."""
    # A synced leyline checkout keeps its documents under docs/
    local_docs = Path("docs")
    if local_docs.is_dir():
        return local_docs
    return Path(".")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in _FALSE_VALUES


def _parse_size(name: str, value: str) -> int:
    try:
        size = int(value)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer number of bytes", {"value": value}
        ) from exc
    return size


@dataclass(slots=True)
class AppConfig:
    docs_root: Path | None = None
    cache_dir: Path = DEFAULT_CACHE_DIR
    max_cache_size_bytes: int = DEFAULT_MAX_CACHE_SIZE
    cache_enabled: bool = True
    compression_enabled: bool = True
    scan_workers: int = DEFAULT_SCAN_WORKERS

    def __post_init__(self) -> None:
        if self.docs_root is None:
            self.docs_root = _get_default_docs_root()
        self.docs_root = Path(self.docs_root)
        self.cache_dir = Path(self.cache_dir)
        if self.max_cache_size_bytes <= 0:
            raise ConfigurationError(
                "max_cache_size_bytes must be positive",
                {"max_cache_size_bytes": self.max_cache_size_bytes},
            )
        if self.scan_workers < 1:
            raise ConfigurationError(
                "scan_workers must be at least 1", {"scan_workers": self.scan_workers}
            )

    def resolve_cache_dir(self) -> Path:
        return self.cache_dir.expanduser()

    def resolve_docs_root(self, base_dir: Path | None = None) -> Path:
        if self.docs_root is None:
            self.docs_root = _get_default_docs_root()
        root = Path(self.docs_root).expanduser()
        if root.is_absolute() or base_dir is None:
            return root
        return base_dir / root

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "AppConfig":
        """Build a config from LEYLINE_* environment variables.

        Explicit keyword overrides win over the environment; ``None`` overrides
        are ignored so CLI options can be passed straight through.
        """
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("LEYLINE_DOCS_ROOT"):
            values["docs_root"] = Path(env["LEYLINE_DOCS_ROOT"])
        if env.get("LEYLINE_CACHE_DIR"):
            values["cache_dir"] = Path(env["LEYLINE_CACHE_DIR"])
        if env.get("LEYLINE_MAX_CACHE_SIZE"):
            values["max_cache_size_bytes"] = _parse_size(
                "LEYLINE_MAX_CACHE_SIZE", env["LEYLINE_MAX_CACHE_SIZE"]
            )
        if env.get("LEYLINE_CACHE"):
            values["cache_enabled"] = _parse_bool(env["LEYLINE_CACHE"])
        if env.get("LEYLINE_CACHE_COMPRESSION"):
            values["compression_enabled"] = _parse_bool(env["LEYLINE_CACHE_COMPRESSION"])
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
