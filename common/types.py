from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from common.errors import IncompletePolygon


MAX_ZOOM = 30


@dataclass(frozen=True, slots=True)
class TileAddress:
    """
    One slippy-map tile.

    Attributes:
        zoom: zoom level (all addresses in a run share it).
        x, y: tile column / row, both in [0, 2**zoom).
    """
    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if not (0 <= self.zoom <= MAX_ZOOM):
            raise ValueError(f"zoom out of range: {self.zoom}")
        n = 1 << self.zoom
        if not (0 <= self.x < n) or not (0 <= self.y < n):
            raise ValueError(f"tile ({self.x}, {self.y}) out of range for zoom {self.zoom}")

    @property
    def name(self) -> str:
        """Persisted name stem, keyed by (y, x)."""
        return f"{self.y}-{self.x}"

    def is_anchor(self, block_size: int) -> bool:
        return self.x % block_size == 0 and self.y % block_size == 0

    def block_anchor(self, block_size: int) -> "TileAddress":
        """Top-left tile of the block_size x block_size block containing this tile."""
        if block_size <= 0:
            raise ValueError("block_size must be > 0")
        return TileAddress(self.zoom, self.x - self.x % block_size, self.y - self.y % block_size)

    def offset(self, dx: int, dy: int) -> Optional["TileAddress"]:
        """Neighbor at (x+dx, y+dy), or None when it falls off the tile grid."""
        n = 1 << self.zoom
        x, y = self.x + dx, self.y + dy
        if not (0 <= x < n) or not (0 <= y < n):
            return None
        return TileAddress(self.zoom, x, y)


@dataclass(frozen=True, slots=True)
class GeoCoordinate:
    """WGS84 longitude/latitude in degrees."""
    lon: float
    lat: float

    def __post_init__(self) -> None:
        if not (-180.0 <= self.lon <= 180.0) or not (-90.0 <= self.lat <= 90.0):
            raise ValueError(f"lon/lat out of range: ({self.lon}, {self.lat})")


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """
    Axis-aligned geographic box. Antimeridian wrap is not supported.
    """
    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if not self.north > self.south:
            raise ValueError("bounding box requires north > south")
        if not self.west < self.east:
            raise ValueError("bounding box requires west < east")

    @classmethod
    def from_list(cls, values: Sequence[float]) -> "BoundingBox":
        """[west, south, east, north], the order used by GeoJSON bboxes."""
        if len(values) != 4:
            raise ValueError("bbox must be [west, south, east, north]")
        w, s, e, n = (float(v) for v in values)
        return cls(west=w, south=s, east=e, north=n)

    def contains(self, coord: GeoCoordinate) -> bool:
        return (self.west <= coord.lon <= self.east) and (self.south <= coord.lat <= self.north)

    def intersects(self, other: "BoundingBox") -> bool:
        # touching edges do not count, so a tile sharing only a border is out
        return (
            self.west < other.east
            and other.west < self.east
            and self.south < other.north
            and other.south < self.north
        )


class Classification(str, enum.Enum):
    """
    Building category controlling the outline color.
    Declaration order is the color-table index; do not reorder.
    """
    NORMAL = "normal"
    BELOW_AREA_THRESHOLD = "below-area-threshold"
    EXCLUDED_TAGS = "excluded-tags"
    UNCLASSIFIED = "unclassified"

    @property
    def color_index(self) -> int:
        return list(Classification).index(self)


def _open_ring(vertices: Sequence[GeoCoordinate]) -> Tuple[GeoCoordinate, ...]:
    if len(vertices) > 1 and vertices[0] == vertices[-1]:
        return tuple(vertices[:-1])
    return tuple(vertices)


@dataclass(frozen=True, slots=True)
class Polygon:
    """
    Building outline: a closed ring of coordinates (closing vertex optional).

    Attributes:
        vertices: ring as supplied, possibly ending with a copy of the first vertex.
        excluded: upstream metadata marked this building with an excluded tag.
        ident: upstream identifier, for logs only.
    """
    vertices: Tuple[GeoCoordinate, ...]
    excluded: bool = False
    ident: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "vertices", tuple(self.vertices))
        distinct = set(_open_ring(self.vertices))
        if len(distinct) < 3:
            raise IncompletePolygon(
                f"polygon {self.ident or '?'} has {len(distinct)} distinct vertices, need >= 3"
            )

    @classmethod
    def from_ring(
        cls,
        points: Iterable[Optional[GeoCoordinate]],
        *,
        excluded: bool = False,
        ident: Optional[str] = None,
    ) -> "Polygon":
        """Build from upstream points where None marks an unresolved (dangling) reference."""
        pts = list(points)
        missing = sum(1 for p in pts if p is None)
        if missing:
            raise IncompletePolygon(f"polygon {ident or '?'} has {missing} unresolved vertices")
        return cls(vertices=tuple(pts), excluded=excluded, ident=ident)

    @property
    def open_ring(self) -> Tuple[GeoCoordinate, ...]:
        return _open_ring(self.vertices)

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        # [lon_min, lat_min, lon_max, lat_max]
        lons = [v.lon for v in self.vertices]
        lats = [v.lat for v in self.vertices]
        return (min(lons), min(lats), max(lons), max(lats))
