# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from .cache import CacheLayer

BACKENDS = ("memory", "file", "sql", "redis")


def _default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


@dataclass(frozen=True)
class RunOptions:
    """Per-run scheduler knobs (what the CLI flags turn into)."""
    parallel: bool = True
    max_workers: int | None = None
    stop_on_failure: bool = False
    skip: FrozenSet[str] = field(default_factory=frozenset)
    dry_run: bool = False
    use_cache: bool = True
    force_refresh: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "skip", frozenset(self.skip or ()))
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")


@dataclass(frozen=True)
class EngineConfig:
    cache_dir: Path = Path(".updateflow/cache")
    cache_ttl: float = 3600.0
    cache_backend: str = "file"
    database_url: str = "sqlite:///.updateflow/cache.db"
    redis_url: str = "redis://localhost:6379/0"
    max_workers: int = field(default_factory=_default_workers)
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if self.cache_backend not in BACKENDS:
            raise ValueError(f"cache_backend must be one of {BACKENDS}, got {self.cache_backend!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            cache_dir=Path(env.get("UPDATEFLOW_CACHE_DIR", str(defaults.cache_dir))),
            cache_ttl=float(env.get("UPDATEFLOW_CACHE_TTL", defaults.cache_ttl)),
            cache_backend=env.get("UPDATEFLOW_CACHE_BACKEND", defaults.cache_backend),
            database_url=env.get("UPDATEFLOW_DATABASE_URL", defaults.database_url),
            redis_url=env.get("UPDATEFLOW_REDIS_URL", defaults.redis_url),
            max_workers=int(env.get("UPDATEFLOW_MAX_WORKERS", defaults.max_workers)),
            log_level=env.get("UPDATEFLOW_LOG_LEVEL", defaults.log_level).upper(),
        )

    def make_backing(self):
        if self.cache_backend == "memory":
            return None
        if self.cache_backend == "file":
            from .backends.file_backend import FileCacheBacking
            return FileCacheBacking(self.cache_dir)
        if self.cache_backend == "sql":
            from .backends.sql_backend import SqlCacheBacking
            return SqlCacheBacking(self.database_url)
        from .backends.redis_backend import RedisCacheBacking
        return RedisCacheBacking(self.redis_url)

    def make_cache(self) -> CacheLayer:
        return CacheLayer(self.make_backing())
