"""
Unit tests for TileImageCache
"""

import threading

import cv2
import numpy as np
import pytest
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import DecodeError, FetchError, NotLoaded, OutOfInterest, PersistedNameParseError
from common.geo import tile_bounds
from common.types import BoundingBox, TileAddress
from tile_cache.cache import TileImageCache
from tile_cache.provider import ImageryProvider
from tile_cache.store import DirectoryTileStore, MemoryTileStore

ZOOM = 17
A = TileAddress(ZOOM, 73000, 41000)


def png_bytes(value=90, size=256):
    ok, buf = cv2.imencode(".png", np.full((size, size, 3), value, dtype=np.uint8))
    assert ok
    return buf.tobytes()


class FakeProvider(ImageryProvider):
    """Serves a solid gray tile for every URL and counts requests."""

    def __init__(self, payload=None, error=None, delay=None):
        super().__init__("https://tiles.test/{z}/{x}/{y}")
        self.payload = payload if payload is not None else png_bytes()
        self.error = error
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
        if self.delay is not None:
            self.delay.wait(2.0)
        if self.error is not None:
            raise self.error
        return self.payload


def make_cache(provider=None, aoi=None, tiles=None, outlines=None):
    return TileImageCache(
        provider or FakeProvider(),
        tiles or MemoryTileStore(ZOOM, ".jpg"),
        outlines or MemoryTileStore(ZOOM, ".png"),
        zoom=ZOOM,
        area_of_interest=aoi,
    )


class TestEnsureLoaded:
    """Test cases for ensure_loaded()"""

    def test_fetches_once(self):
        """Second call is a no-op"""
        provider = FakeProvider()
        cache = make_cache(provider)

        cache.ensure_loaded(A)
        cache.ensure_loaded(A)

        assert provider.calls == ["https://tiles.test/17/73000/41000"]
        assert cache.stats()["tiles_fetched"] == 1
        assert cache.tile_store.exists(A)
        assert cache.is_present(A)

    def test_matching_format_stored_verbatim(self):
        """JPEG bytes land in a .jpg store exactly as fetched"""
        jpeg = cv2.imencode(".jpg", np.full((256, 256, 3), 90, dtype=np.uint8))[1].tobytes()
        cache = make_cache(FakeProvider(payload=jpeg))

        cache.ensure_loaded(A)

        assert cache.tile_store.get(A) == jpeg

    def test_other_format_is_reencoded(self):
        """A PNG payload is re-encoded before landing in a .jpg store"""
        provider = FakeProvider(payload=png_bytes(value=90))
        cache = make_cache(provider)

        cache.ensure_loaded(A)

        stored = cache.tile_store.get(A)
        assert stored != provider.payload
        assert stored.startswith(b"\xff\xd8\xff")
        decoded = cv2.imdecode(np.frombuffer(stored, np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape == (256, 256, 3)
        assert abs(int(decoded[10, 10, 0]) - 90) <= 3

    def test_concurrent_same_address(self):
        """Racing workers share one fetch"""
        gate = threading.Event()
        provider = FakeProvider(delay=gate)
        cache = make_cache(provider)

        threads = [threading.Thread(target=cache.ensure_loaded, args=(A,)) for _ in range(8)]
        for t in threads:
            t.start()
        gate.set()
        for t in threads:
            t.join()

        assert len(provider.calls) == 1
        assert cache.stats()["tiles_fetched"] == 1

    def test_out_of_interest(self):
        """Tiles outside the area of interest are never fetched"""
        b = tile_bounds(A)
        aoi = BoundingBox(b.west, b.south, b.east, b.north)
        provider = FakeProvider()
        cache = make_cache(provider, aoi=aoi)

        cache.ensure_loaded(A)
        with pytest.raises(OutOfInterest):
            cache.ensure_loaded(A.offset(1, 0))
        assert len(provider.calls) == 1
        assert cache.addresses() == [A]

    def test_fetch_error_propagates(self):
        """Nothing is cached after a failed fetch"""
        cache = make_cache(FakeProvider(error=FetchError("boom")))
        with pytest.raises(FetchError):
            cache.ensure_loaded(A)
        assert not cache.is_present(A)
        assert not cache.tile_store.exists(A)

    def test_undecodable_payload(self):
        """Garbage bytes raise DecodeError and are not persisted"""
        cache = make_cache(FakeProvider(payload=b"<html>rate limited</html>"))
        with pytest.raises(DecodeError):
            cache.ensure_loaded(A)
        assert not cache.tile_store.exists(A)

    def test_zoom_mismatch(self):
        """Addresses at another zoom are a caller error"""
        cache = make_cache()
        with pytest.raises(ValueError):
            cache.ensure_loaded(TileAddress(16, 0, 0))

    def test_store_zoom_mismatch(self):
        with pytest.raises(ValueError):
            TileImageCache(FakeProvider(), MemoryTileStore(16), MemoryTileStore(ZOOM), zoom=ZOOM)


class TestCanvases:
    """Test cases for canvas access and dirty tracking"""

    def test_not_loaded(self):
        """Canvas access before loading is a contract violation"""
        cache = make_cache()
        with pytest.raises(NotLoaded):
            with cache.get_outline_canvas(A):
                pass
        with pytest.raises(NotLoaded):
            cache.mark_dirty(A)

    def test_blank_outline_matches_base(self):
        """Outline canvas is a black image of the base's size"""
        cache = make_cache(FakeProvider(payload=png_bytes(size=512)))
        cache.ensure_loaded(A)
        with cache.get_outline_canvas(A) as canvas:
            assert canvas.shape == (512, 512, 3)
            assert not canvas.any()

    def test_drawing_persists_in_memory(self):
        """The canvas is mutable and shared across calls"""
        cache = make_cache()
        cache.ensure_loaded(A)
        with cache.get_outline_canvas(A) as canvas:
            canvas[10, 20] = (1, 2, 3)
        with cache.get_outline_canvas(A) as canvas:
            assert tuple(canvas[10, 20]) == (1, 2, 3)

    def test_base_canvas_is_copy(self):
        cache = make_cache()
        cache.ensure_loaded(A)
        base = cache.get_base_canvas(A)
        base[:] = 0
        assert cache.get_base_canvas(A)[0, 0, 0] == 90

    def test_flush_dirty(self):
        """Only dirty canvases are written, once"""
        cache = make_cache()
        b = A.offset(1, 0)
        cache.ensure_loaded(A)
        cache.ensure_loaded(b)
        with cache.get_outline_canvas(A) as canvas:
            canvas[0, 0] = (0, 255, 0)
        cache.mark_dirty(A)
        cache.mark_dirty(A)

        assert cache.stats()["dirty"] == 1
        assert cache.flush_dirty() == 1
        assert cache.flush_dirty() == 0
        assert cache.outline_store.exists(A)
        assert not cache.outline_store.exists(b)

        img = cv2.imdecode(np.frombuffer(cache.outline_store.get(A), np.uint8), cv2.IMREAD_COLOR)
        assert tuple(img[0, 0]) == (0, 255, 0)


class TestLoadFromDisk:
    """Test cases for TileImageCache.load_from_disk()"""

    def test_reuses_persisted_tiles(self, tmp_path):
        """Persisted tiles are present without any request"""
        tiles = DirectoryTileStore(tmp_path / "tiles", ".jpg", ZOOM)
        outlines = DirectoryTileStore(tmp_path / "outlines", ".png", ZOOM)
        tiles.put(A, png_bytes(70))
        outline = np.zeros((256, 256, 3), dtype=np.uint8)
        outline[5, 5] = (0, 0, 255)
        outlines.put(A, cv2.imencode(".png", outline)[1].tobytes())

        provider = FakeProvider()
        cache = TileImageCache.load_from_disk(provider, tiles, outlines, zoom=ZOOM)
        cache.ensure_loaded(A)

        assert provider.calls == []
        assert cache.addresses() == [A]
        with cache.get_outline_canvas(A) as canvas:
            assert tuple(canvas[5, 5]) == (0, 0, 255)
        assert cache.get_base_canvas(A)[0, 0, 0] == 70

    def test_outline_without_base_is_not_present(self, tmp_path):
        """An orphan outline does not make its tile present"""
        tiles = DirectoryTileStore(tmp_path / "tiles", ".jpg", ZOOM)
        outlines = DirectoryTileStore(tmp_path / "outlines", ".png", ZOOM)
        outlines.put(A, png_bytes(0))

        cache = TileImageCache.load_from_disk(FakeProvider(), tiles, outlines, zoom=ZOOM)
        assert cache.addresses() == []

    def test_bad_name_fails_load(self, tmp_path):
        """Foreign files in a store abort the load"""
        tiles = DirectoryTileStore(tmp_path / "tiles", ".jpg", ZOOM)
        outlines = DirectoryTileStore(tmp_path / "outlines", ".png", ZOOM)
        tiles.put(A, png_bytes())
        (tmp_path / "tiles" / "thumbs.db").write_bytes(b"")

        with pytest.raises(PersistedNameParseError):
            TileImageCache.load_from_disk(FakeProvider(), tiles, outlines, zoom=ZOOM)
