"""
Error taxonomy shared by the tile cache, the outline rasterizer and the mosaic stitcher.

Recovered locally (caught and counted by the pipelines):
    MalformedPolygon / IncompletePolygon  -> skip that polygon
    OutOfInterest                         -> tile never fetched, treated as a no-op
    IncompleteBlock                       -> skip that mosaic block
Fatal for the current work item:
    FetchError, DecodeError
Fatal for the process:
    PersistedNameParseError (at load time), NotLoaded (contract violation)
"""

from __future__ import annotations


class TileError(Exception):
    """Base class for every error raised by this project."""


class MalformedPolygon(TileError, ValueError):
    """Polygon has fewer than 3 usable vertices."""


class IncompletePolygon(MalformedPolygon):
    """Polygon references vertices that could not be resolved, or too few of them."""


class OutOfInterest(TileError):
    """Tile lies outside the configured area of interest."""


class FetchError(TileError):
    """Imagery request failed (network error, non-200 status, empty body)."""


class DecodeError(TileError):
    """Fetched or persisted bytes are not a decodable image."""


class NotLoaded(TileError, RuntimeError):
    """Canvas access requested before ensure_loaded() succeeded."""


class IncompleteBlock(TileError):
    """Mosaic block has missing member tiles under the abort policy."""

    def __init__(self, anchor, missing) -> None:
        self.anchor = anchor
        self.missing = tuple(missing)
        super().__init__(f"block {anchor} is missing {len(self.missing)} member tile(s)")


class PersistedNameParseError(TileError, ValueError):
    """A file in a tile storage namespace does not follow the {y}-{x}.{ext} naming."""
