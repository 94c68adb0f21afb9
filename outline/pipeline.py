from __future__ import annotations

import argparse
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Mapping, Optional

from common.config import RunConfig, load_config
from common.errors import DecodeError, FetchError, MalformedPolygon
from common.geo import ground_resolution_m
from common.logging_setup import get_logger, setup_logging
from common.utils import Counters, elapsed_ms
from outline.classify import ColorTable, classify
from outline.footprints import BuildingRing, iter_building_rings, load_footprints
from outline.rasterize import OutlineRasterizer
from tile_cache.cache import TileImageCache
from tile_cache.provider import ImageryProvider
from tile_cache.store import DirectoryTileStore


log = get_logger("outline")


@dataclass(frozen=True)
class RasterSummary:
    polygons_drawn: int = 0
    polygons_outside: int = 0     # every touched tile was outside the area of interest
    polygons_skipped: int = 0     # malformed / incomplete rings
    polygons_failed: int = 0      # fetch or decode failure
    tiles_fetched: int = 0
    outlines_written: int = 0
    elapsed_ms: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def open_cache(config: RunConfig, provider: Optional[ImageryProvider] = None) -> TileImageCache:
    """Cache over the configured tile/outline directories, indexed from disk."""
    t = config.tiles
    provider = provider or ImageryProvider(t.imagery_url, timeout=t.timeout_s)
    return TileImageCache.load_from_disk(
        provider,
        DirectoryTileStore(t.tiles_dir, ".jpg", t.zoom),
        DirectoryTileStore(t.outlines_dir, ".png", t.zoom),
        zoom=t.zoom,
        tile_size=t.tile_size,
        area_of_interest=config.aoi,
    )


def run_rasterization(
    config: RunConfig,
    doc: Mapping[str, Any],
    *,
    provider: Optional[ImageryProvider] = None,
    cache: Optional[TileImageCache] = None,
) -> RasterSummary:
    """
    Decode footprints from an Overpass document, classify and draw every
    building, then persist the touched outline canvases in one batch.
    """
    t0 = time.perf_counter()
    c = config.classification
    cache = cache or open_cache(config, provider)
    rasterizer = OutlineRasterizer(
        cache,
        ColorTable.from_mapping(c.colors),
        membership=c.membership,
        draw_mode=c.draw_mode,
        line_thickness=c.line_thickness,
    )
    counters = Counters("drawn", "outside", "skipped", "failed")

    def _one(ring: BuildingRing) -> str:
        try:
            polygon = ring.to_polygon()
        except MalformedPolygon as e:
            log.debug("Skipping building: %s", e, extra={"extra": {"ident": ring.ident}})
            return "skipped"
        classification = classify(polygon, area_threshold_m2=c.area_threshold_m2)
        try:
            tiles = rasterizer.rasterize(polygon, classification)
        except (FetchError, DecodeError) as e:
            log.warning("Building not drawn: %s", e, extra={"extra": {"ident": ring.ident}})
            return "failed"
        return "drawn" if tiles else "outside"

    rings = list(iter_building_rings(doc, c.excluded_tags))
    log.info(
        "Rasterizing buildings",
        extra={"extra": {"buildings": len(rings), "workers": config.workers, "zoom": cache.zoom}},
    )
    with ThreadPoolExecutor(max_workers=config.workers) as pool:
        for status in pool.map(_one, rings):
            counters.incr(status)

    written = cache.flush_dirty()
    n = counters.snapshot()
    summary = RasterSummary(
        polygons_drawn=n["drawn"],
        polygons_outside=n["outside"],
        polygons_skipped=n["skipped"],
        polygons_failed=n["failed"],
        tiles_fetched=cache.stats()["tiles_fetched"],
        outlines_written=written,
        elapsed_ms=elapsed_ms(t0),
    )
    log.info("Rasterization finished", extra={"extra": summary.as_dict()})
    return summary


def main() -> None:
    ap = argparse.ArgumentParser(description="Draw building outlines onto cached map tiles")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--footprints", required=True, help="Overpass API JSON with building ways/relations")
    ap.add_argument("--workers", type=int, default=None, help="Override worker count")
    args = ap.parse_args()

    config = load_config(args.config)
    setup_logging(config.log_level, json_console=config.log_json)
    if args.workers:
        config = replace(config, workers=args.workers)

    lat = (config.aoi.south + config.aoi.north) / 2.0 if config.aoi else 0.0
    log.info(
        "Outline run started",
        extra={
            "extra": {
                "zoom": config.tiles.zoom,
                "m_per_px": round(ground_resolution_m(lat, config.tiles.zoom, config.tiles.tile_size), 3),
                "tiles_dir": str(config.tiles.tiles_dir),
                "outlines_dir": str(config.tiles.outlines_dir),
            }
        },
    )
    run_rasterization(config, load_footprints(args.footprints))


if __name__ == "__main__":
    main()
