from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

import numpy as np

from common.errors import DecodeError, NotLoaded, OutOfInterest
from common.geo import tile_bounds
from common.imaging import blank_canvas, decode_image, encode_image, same_format
from common.types import BoundingBox, TileAddress
from common.utils import Counters, sorted_xy
from tile_cache.provider import ImageryProvider
from tile_cache.store import TileStore


log = logging.getLogger(__name__)


@dataclass
class _TileEntry:
    """Per-address slot. `lock` guards every other field."""
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    present: bool = False          # base imagery fetched this run or found on disk
    base: Optional[np.ndarray] = field(default=None, repr=False)
    outline: Optional[np.ndarray] = field(default=None, repr=False)
    outline_on_disk: bool = False


class TileImageCache:
    """
    Owns the base-imagery and outline canvases of every tile touched in a run.

        tile_store/     {y}-{x}.jpg   base imagery, written once on fetch
        outline_store/  {y}-{x}.png   outlines, written on flush_dirty()

    Concurrency: a short global lock guards the address -> entry map and the dirty
    set; each address has its own lock for fetching and canvas access, so two
    workers on the same tile serialize while different tiles never contend.
    """

    def __init__(
        self,
        provider: ImageryProvider,
        tile_store: TileStore,
        outline_store: TileStore,
        *,
        zoom: int,
        tile_size: int = 256,
        area_of_interest: Optional[BoundingBox] = None,
    ):
        if tile_store.zoom != zoom or outline_store.zoom != zoom:
            raise ValueError(
                f"store zoom mismatch: tiles={tile_store.zoom} outlines={outline_store.zoom} run={zoom}"
            )
        self.provider = provider
        self.tile_store = tile_store
        self.outline_store = outline_store
        self.zoom = int(zoom)
        self.tile_size = int(tile_size)
        self.area_of_interest = area_of_interest
        self._lock = threading.Lock()
        self._entries: Dict[TileAddress, _TileEntry] = {}
        self._dirty: Set[TileAddress] = set()
        self.counters = Counters("tiles_fetched", "outlines_flushed")

    # -------- construction --------

    @classmethod
    def load_from_disk(
        cls,
        provider: ImageryProvider,
        tile_store: TileStore,
        outline_store: TileStore,
        **kwargs,
    ) -> "TileImageCache":
        """
        Rebuild the address index from both stores. Pixel data stays on disk until
        first use. Any unparseable name aborts the load (PersistedNameParseError).
        """
        cache = cls(provider, tile_store, outline_store, **kwargs)
        tiles = 0
        for address in tile_store.list():
            cache._entries.setdefault(address, _TileEntry()).present = True
            tiles += 1
        outlines = 0
        for address in outline_store.list():
            cache._entries.setdefault(address, _TileEntry()).outline_on_disk = True
            outlines += 1
        log.info(
            "Tile cache loaded from disk",
            extra={"extra": {"tiles": tiles, "outlines": outlines, "zoom": cache.zoom}},
        )
        return cache

    # -------- public API --------

    def in_interest(self, address: TileAddress) -> bool:
        if self.area_of_interest is None:
            return True
        return tile_bounds(address).intersects(self.area_of_interest)

    def ensure_loaded(self, address: TileAddress) -> None:
        """
        Make `address` present: no-op when already cached, else fetch, decode,
        persist the fetched bytes and create a blank outline canvas. Bytes are
        stored as received when they already match the tile store's extension,
        otherwise the decoded image is re-encoded in that format.

        Raises:
            OutOfInterest: tile outside the configured area of interest.
            FetchError / DecodeError: from the provider or the image decoder.
        """
        self._check_zoom(address)
        with self._lock:
            entry = self._entries.get(address)
            if entry is None:
                if not self.in_interest(address):
                    raise OutOfInterest(f"tile {address.name} is outside the area of interest")
                entry = self._entries[address] = _TileEntry()

        with entry.lock:
            if entry.present:
                return
            if not self.in_interest(address):
                raise OutOfInterest(f"tile {address.name} is outside the area of interest")

            url = self.provider.tile_url(address)
            data = self.provider.fetch(url)
            img = decode_image(data)
            if img is None:
                raise DecodeError(f"tile {address.name}: {len(data)} bytes from {url} are not an image")

            entry.base = img
            if entry.outline is None:
                entry.outline = self._read_outline(address, entry) if entry.outline_on_disk else np.zeros_like(img)
            if not same_format(data, self.tile_store.ext):
                log.debug(
                    "Re-encoding fetched tile",
                    extra={"tile": address.name, "extra": {"ext": self.tile_store.ext}},
                )
                data = encode_image(img, self.tile_store.ext)
            self.tile_store.put(address, data)
            entry.present = True
        self.counters.incr("tiles_fetched")
        log.debug("Fetched tile", extra={"tile": address.name, "extra": {"bytes": len(data)}})

    @contextmanager
    def get_outline_canvas(self, address: TileAddress) -> Iterator[np.ndarray]:
        """
        Exclusive, mutable access to a tile's outline canvas for the duration of
        the `with` block. Drawing into it does not mark it dirty.

        Raises:
            NotLoaded: ensure_loaded() never succeeded for this tile.
        """
        entry = self._present_entry(address)
        with entry.lock:
            if entry.outline is None:
                entry.outline = self._read_outline(address, entry)
            yield entry.outline

    def get_base_canvas(self, address: TileAddress) -> np.ndarray:
        """Copy of the base imagery (decoded from the tile store on first use)."""
        entry = self._present_entry(address)
        with entry.lock:
            if entry.base is None:
                img = decode_image(self.tile_store.get(address))
                if img is None:
                    raise DecodeError(f"persisted tile {address.name} is missing or not an image")
                entry.base = img
            return entry.base.copy()

    def mark_dirty(self, address: TileAddress) -> None:
        self._present_entry(address)
        with self._lock:
            self._dirty.add(address)

    def flush_dirty(self) -> int:
        """
        Persist every dirty outline canvas as PNG in one batch and clear the
        dirty set. Outlines that failed to write are re-marked dirty.
        """
        with self._lock:
            pending = sorted_xy(self._dirty)
            self._dirty.clear()

        written = 0
        for i, address in enumerate(pending):
            entry = self._entries[address]
            try:
                with entry.lock:
                    if entry.outline is None:
                        continue
                    data = encode_image(entry.outline, ".png")
                    self.outline_store.put(address, data)
                    entry.outline_on_disk = True
            except Exception:
                with self._lock:
                    self._dirty.update(pending[i:])
                raise
            written += 1

        self.counters.incr("outlines_flushed", written)
        if written:
            log.info("Flushed outline canvases", extra={"extra": {"count": written}})
        return written

    def is_present(self, address: TileAddress) -> bool:
        with self._lock:
            entry = self._entries.get(address)
        return entry is not None and entry.present

    def addresses(self) -> List[TileAddress]:
        """Present tiles sorted by (x, y)."""
        with self._lock:
            return sorted_xy(a for a, e in self._entries.items() if e.present)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            tiles = sum(1 for e in self._entries.values() if e.present)
            dirty = len(self._dirty)
        return {
            "tiles": tiles,
            "tiles_fetched": self.counters.get("tiles_fetched"),
            "dirty": dirty,
        }

    # -------- internals --------

    def _check_zoom(self, address: TileAddress) -> None:
        if address.zoom != self.zoom:
            raise ValueError(f"tile {address} is not at run zoom {self.zoom}")

    def _present_entry(self, address: TileAddress) -> _TileEntry:
        with self._lock:
            entry = self._entries.get(address)
        if entry is None or not entry.present:
            raise NotLoaded(f"tile {address.name} was not loaded; call ensure_loaded() first")
        return entry

    def _read_outline(self, address: TileAddress, entry: _TileEntry) -> np.ndarray:
        """Persisted outline if there is one, else a blank canvas. Caller holds entry.lock."""
        if entry.outline_on_disk:
            img = decode_image(self.outline_store.get(address))
            if img is None:
                raise DecodeError(f"persisted outline {address.name} is missing or not an image")
            return img
        if entry.base is not None:
            return np.zeros_like(entry.base)
        return blank_canvas((self.tile_size, self.tile_size))
