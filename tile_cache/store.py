from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional

from common.errors import PersistedNameParseError
from common.types import TileAddress
from common.utils import atomic_write_bytes


_NAME_RE = re.compile(r"^(\d+)-(\d+)$")
PARTIAL_DIR = ".partial"


def parse_tile_name(name: str, ext: str, zoom: int) -> TileAddress:
    """
    "{y}-{x}{ext}" -> TileAddress. Any other shape raises PersistedNameParseError.
    """
    if not name.endswith(ext):
        raise PersistedNameParseError(f"unexpected file {name!r} (want '{{y}}-{{x}}{ext}')")
    m = _NAME_RE.match(name[: -len(ext)])
    if not m:
        raise PersistedNameParseError(f"unexpected file {name!r} (want '{{y}}-{{x}}{ext}')")
    y, x = int(m.group(1)), int(m.group(2))
    try:
        return TileAddress(zoom, x, y)
    except ValueError as e:
        raise PersistedNameParseError(f"{name!r}: {e}") from e


class TileStore:
    """
    Durable TileAddress -> bytes mapping.

    The cache and the stitcher only talk to this interface, so flat files can be
    swapped for another backend without touching them.
    """

    zoom: int
    ext: str

    def get(self, address: TileAddress) -> Optional[bytes]:
        raise NotImplementedError

    def put(self, address: TileAddress, data: bytes) -> None:
        raise NotImplementedError

    def exists(self, address: TileAddress) -> bool:
        raise NotImplementedError

    def list(self) -> Iterator[TileAddress]:
        raise NotImplementedError


class DirectoryTileStore(TileStore):
    """
    Flat directory of "{y}-{x}{ext}" files, all at one zoom level.

        root/
          ├─ 41234-71829.jpg
          ├─ 41234-71830.jpg
          └─ .partial/        (temp files of in-flight writes)
    """

    def __init__(self, root: str | Path, ext: str, zoom: int):
        if not ext.startswith("."):
            ext = "." + ext
        self.root = Path(root)
        self.ext = ext
        self.zoom = int(zoom)

    def __repr__(self) -> str:
        return f"DirectoryTileStore({str(self.root)!r}, {self.ext!r}, zoom={self.zoom})"

    def path_for(self, address: TileAddress) -> Path:
        return self.root / f"{address.name}{self.ext}"

    def get(self, address: TileAddress) -> Optional[bytes]:
        try:
            return self.path_for(address).read_bytes()
        except FileNotFoundError:
            return None

    def put(self, address: TileAddress, data: bytes) -> None:
        atomic_write_bytes(self.path_for(address), data, tmp_dir=self.root / PARTIAL_DIR)

    def exists(self, address: TileAddress) -> bool:
        return self.path_for(address).is_file()

    def list(self) -> Iterator[TileAddress]:
        if not self.root.exists():
            return
        for entry in sorted(self.root.iterdir()):
            if not entry.is_file():
                continue
            yield parse_tile_name(entry.name, self.ext, self.zoom)


class MemoryTileStore(TileStore):
    """In-process store with the same contract; used by tests and embedders."""

    def __init__(self, zoom: int, ext: str = ".png"):
        self.zoom = int(zoom)
        self.ext = ext
        self._lock = threading.Lock()
        self._data: Dict[TileAddress, bytes] = {}
        self.puts = 0

    def get(self, address: TileAddress) -> Optional[bytes]:
        with self._lock:
            return self._data.get(address)

    def put(self, address: TileAddress, data: bytes) -> None:
        with self._lock:
            self._data[address] = bytes(data)
            self.puts += 1

    def exists(self, address: TileAddress) -> bool:
        with self._lock:
            return address in self._data

    def list(self) -> Iterator[TileAddress]:
        with self._lock:
            keys = list(self._data)
        return iter(sorted(keys, key=lambda a: (a.y, a.x)))
