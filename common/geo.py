from __future__ import annotations

import math
from typing import Set, Tuple

from pyproj import Geod

from common.types import BoundingBox, GeoCoordinate, Polygon, TileAddress


DEFAULT_CANVAS = (256, 256)

# Tile-membership strategies for tiles_overlapping()
MEMBERSHIP_VERTICES = "vertices"
MEMBERSHIP_BBOX = "bbox"
MEMBERSHIP_MODES = (MEMBERSHIP_VERTICES, MEMBERSHIP_BBOX)

_GEOD = Geod(ellps="WGS84")


# -------------------------
# Web Mercator (tile units)
# -------------------------
def _lon_to_x(lon: float, world: float) -> float:
    # Map lon [-180,180] to world X [0, world]
    return (lon + 180.0) / 360.0 * world


def _lat_to_y(lat: float, world: float) -> float:
    # Map lat [-85..85] to world Y [0, world]; poles are pushed off the grid and clamped by callers
    s = math.sin(math.radians(lat))
    s = min(max(s, -0.9999999999), 0.9999999999)
    y = 0.5 - math.log((1 + s) / (1 - s)) / (4 * math.pi)
    return y * world


def _x_to_lon(x: float, world: float) -> float:
    return x / world * 360.0 - 180.0


def _y_to_lat(y: float, world: float) -> float:
    n = math.pi - 2.0 * math.pi * (y / world)
    return math.degrees(math.atan(math.sinh(n)))


def _tile_index(value: float, n: int) -> int:
    return int(min(max(math.floor(value), 0), n - 1))


# -------------------------
# Tile addressing
# -------------------------
def tile_from_geo(coord: GeoCoordinate, zoom: int) -> TileAddress:
    """
    Containing slippy-map tile of `coord` at `zoom`.
    Indices are clamped to the grid, so lon=180 and the Mercator limits stay addressable.
    """
    n = 1 << int(zoom)
    x = _tile_index(_lon_to_x(coord.lon, n), n)
    y = _tile_index(_lat_to_y(coord.lat, n), n)
    return TileAddress(int(zoom), x, y)


def tile_bounds(address: TileAddress) -> BoundingBox:
    """Geographic extent covered by a tile."""
    n = 1 << address.zoom
    return BoundingBox(
        west=_x_to_lon(address.x, n),
        south=_y_to_lat(address.y + 1, n),
        east=_x_to_lon(address.x + 1, n),
        north=_y_to_lat(address.y, n),
    )


# -------------------------
# Pixel/Geo helpers for tiles
# -------------------------
def project_to_pixel(
    coord: GeoCoordinate,
    address: TileAddress,
    canvas_size: Tuple[int, int] = DEFAULT_CANVAS,
) -> Tuple[int, int]:
    """
    Linear lon/lat -> pixel mapping inside one tile canvas of (width, height).

    lon runs [west, east] -> [0, width]; lat runs [north, south] -> [0, height]
    (pixel y grows southward). No bounds checking: coordinates outside the tile
    land outside the canvas and get clipped by the drawing call.
    """
    w, h = canvas_size
    b = tile_bounds(address)
    px = (coord.lon - b.west) / (b.east - b.west) * w
    py = (b.north - coord.lat) / (b.north - b.south) * h
    return int(math.floor(px)), int(math.floor(py))


def pixel_to_geo(
    px: float,
    py: float,
    address: TileAddress,
    canvas_size: Tuple[int, int] = DEFAULT_CANVAS,
) -> GeoCoordinate:
    """Inverse of project_to_pixel(); integer input maps to the pixel's top-left corner."""
    w, h = canvas_size
    b = tile_bounds(address)
    lon = b.west + (px / w) * (b.east - b.west)
    lat = b.north - (py / h) * (b.north - b.south)
    return GeoCoordinate(lon=lon, lat=lat)


def tiles_overlapping(
    polygon: Polygon,
    zoom: int,
    membership: str = MEMBERSHIP_VERTICES,
) -> Set[TileAddress]:
    """
    Tiles a polygon is drawn into.

    - "vertices": the containing tile of each vertex. A tile crossed only by an
      edge (no vertex inside) is missed; long thin buildings can be cut short.
    - "bbox": every tile in the tile range of the polygon's bounding box, a
      superset that never misses an edge-crossed tile.
    """
    if membership == MEMBERSHIP_VERTICES:
        return {tile_from_geo(v, zoom) for v in polygon.vertices}
    if membership == MEMBERSHIP_BBOX:
        lon_min, lat_min, lon_max, lat_max = polygon.bbox
        nw = tile_from_geo(GeoCoordinate(lon_min, lat_max), zoom)
        se = tile_from_geo(GeoCoordinate(lon_max, lat_min), zoom)
        return {
            TileAddress(int(zoom), x, y)
            for x in range(nw.x, se.x + 1)
            for y in range(nw.y, se.y + 1)
        }
    raise ValueError(f"unknown tile membership mode: {membership!r}")


# -------------------------
# Geodesic metrics
# -------------------------
def geodesic_area_m2(polygon: Polygon) -> float:
    """Unsigned area on the WGS84 ellipsoid (m^2)."""
    ring = polygon.open_ring
    lons = [v.lon for v in ring]
    lats = [v.lat for v in ring]
    area, _perimeter = _GEOD.polygon_area_perimeter(lons, lats)
    return abs(float(area))


def ground_resolution_m(lat: float, zoom: int, tile_size: int = DEFAULT_CANVAS[0]) -> float:
    """Meters per pixel at `lat` for a Web Mercator tile of `tile_size` pixels."""
    equator_m = 2 * math.pi * 6378137.0
    return equator_m * math.cos(math.radians(lat)) / (tile_size * (1 << int(zoom)))
