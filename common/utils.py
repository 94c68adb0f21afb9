from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Iterable


class Counters:
    """
    Thread-safe named counters for run summaries.

    Usage:
        c = Counters("fetched", "skipped")
        c.incr("fetched")
        c.snapshot() -> {"fetched": 1, "skipped": 0}
    """

    def __init__(self, *names: str) -> None:
        self._lock = threading.Lock()
        self._values: Dict[str, int] = {n: 0 for n in names}

    def incr(self, name: str, by: int = 1) -> int:
        with self._lock:
            self._values[name] = self._values.get(name, 0) + by
            return self._values[name]

    def get(self, name: str) -> int:
        with self._lock:
            return self._values.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._values)


def atomic_write_bytes(path: Path, data: bytes, *, tmp_dir: Path | None = None) -> None:
    """
    Write `data` to `path` through a temp file + os.replace, so readers and
    concurrent writers only ever see a complete file.
    `tmp_dir` must be on the same filesystem as `path`.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = tmp_dir or path.parent
    staging.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=staging, prefix=path.stem + ".", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def sorted_xy(addresses: Iterable) -> list:
    """Sort tile addresses by (x, y), the sweep order used across the project."""
    return sorted(addresses, key=lambda a: (a.x, a.y))


def elapsed_ms(t0: float) -> int:
    return int(1000.0 * (time.perf_counter() - t0))
