# backends/file_backend.py
from __future__ import annotations

import hashlib
import json
import shutil
from pathlib import Path
from typing import Any, Optional, Tuple

from ..errors import CacheBackingError

DEFAULT_CACHE_DIR = ".updateflow/cache"


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


class FileCacheBacking:
    """
    File-based cache backing:
      root/
        <sha256(key)>.json   {"key": ..., "value": ..., "created_at": ...}

    Values must be JSON serializable.
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def entry_path(self, key: str) -> Path:
        return self.root / f"{_sha256_str(key)}.json"

    def load(self, key: str) -> Optional[Tuple[Any, float]]:
        path = self.entry_path(key)
        if not path.exists():
            return None
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CacheBackingError(f"could not read cache entry {path.name}: {e}") from e
        if doc.get("key") != key:
            # hash collision or foreign file
            return None
        return doc.get("value"), float(doc["created_at"])

    def store(self, key: str, value: Any, timestamp: float) -> None:
        path = self.entry_path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            payload = json.dumps(
                {"key": key, "value": value, "created_at": timestamp},
                sort_keys=True,
                ensure_ascii=False,
            )
            # write tmp, then atomic rename
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise CacheBackingError(f"could not write cache entry for {key!r}: {e}") from e
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def delete(self, key: str) -> None:
        try:
            self.entry_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise CacheBackingError(f"could not delete cache entry for {key!r}: {e}") from e

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)
