"""
Unit tests for tile stores and persisted name parsing
"""

import pytest
import os
import sys

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import PersistedNameParseError
from common.types import TileAddress
from tile_cache.store import PARTIAL_DIR, DirectoryTileStore, MemoryTileStore, parse_tile_name


class TestParseTileName:
    """Test cases for parse_tile_name()"""

    def test_valid_name(self):
        """Row comes first in the file name"""
        assert parse_tile_name("41234-71829.jpg", ".jpg", 17) == TileAddress(17, 71829, 41234)

    @pytest.mark.parametrize("name", ["41234_71829.jpg", "41234-71829.png", "a-b.jpg", "41234-71829-2.jpg", "41234.jpg"])
    def test_malformed_names(self, name):
        """Anything but {y}-{x}{ext} is rejected"""
        with pytest.raises(PersistedNameParseError):
            parse_tile_name(name, ".jpg", 17)

    def test_out_of_range_for_zoom(self):
        """Indices must fit the store's zoom"""
        with pytest.raises(PersistedNameParseError):
            parse_tile_name("9-1.png", ".png", 2)


class TestDirectoryTileStore:
    """Test cases for DirectoryTileStore"""

    def test_put_get_exists(self, tmp_path):
        """Bytes round-trip through the file named after the address"""
        store = DirectoryTileStore(tmp_path / "tiles", ".jpg", 17)
        a = TileAddress(17, 5, 7)
        assert store.get(a) is None
        assert not store.exists(a)

        store.put(a, b"jpeg-bytes")

        assert store.exists(a)
        assert store.get(a) == b"jpeg-bytes"
        assert (tmp_path / "tiles" / "7-5.jpg").read_bytes() == b"jpeg-bytes"

    def test_put_replaces_atomically(self, tmp_path):
        """Overwrites leave no temp files behind"""
        store = DirectoryTileStore(tmp_path, "png", 17)
        a = TileAddress(17, 1, 2)
        store.put(a, b"one")
        store.put(a, b"two")
        assert store.get(a) == b"two"
        assert list((tmp_path / PARTIAL_DIR).iterdir()) == []

    def test_list_skips_directories(self, tmp_path):
        """The staging directory is not a tile"""
        store = DirectoryTileStore(tmp_path, ".png", 17)
        store.put(TileAddress(17, 3, 1), b"x")
        store.put(TileAddress(17, 2, 4), b"y")
        assert sorted(store.list(), key=lambda a: (a.x, a.y)) == [TileAddress(17, 2, 4), TileAddress(17, 3, 1)]

    def test_list_missing_root(self, tmp_path):
        """A store that was never written lists nothing"""
        assert list(DirectoryTileStore(tmp_path / "nope", ".png", 17).list()) == []

    def test_list_fails_on_foreign_file(self, tmp_path):
        """Stray files abort the listing"""
        store = DirectoryTileStore(tmp_path, ".png", 17)
        store.put(TileAddress(17, 3, 1), b"x")
        (tmp_path / "notes.txt").write_text("hello")
        with pytest.raises(PersistedNameParseError):
            list(store.list())


class TestMemoryTileStore:
    """Test cases for MemoryTileStore"""

    def test_contract(self):
        store = MemoryTileStore(17)
        a = TileAddress(17, 3, 1)
        store.put(a, b"x")
        assert store.exists(a)
        assert store.get(a) == b"x"
        assert store.get(TileAddress(17, 0, 0)) is None
        assert list(store.list()) == [a]
        assert store.puts == 1
