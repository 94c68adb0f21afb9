from __future__ import annotations

import argparse
from dataclasses import replace

from common.config import RunConfig, load_config
from common.logging_setup import get_logger, setup_logging
from mosaic.stitcher import MissingTilePolicy, MosaicStitcher, StitchSummary
from tile_cache.store import DirectoryTileStore


log = get_logger("mosaic")


def build_stitcher(config: RunConfig) -> MosaicStitcher:
    t, m = config.tiles, config.mosaic
    return MosaicStitcher(
        DirectoryTileStore(t.tiles_dir, ".jpg", t.zoom),
        DirectoryTileStore(t.outlines_dir, ".png", t.zoom),
        DirectoryTileStore(m.tiles_dir, ".jpg", t.zoom),
        DirectoryTileStore(m.outlines_dir, ".png", t.zoom),
        block_size=m.block_size,
        tile_size=t.tile_size,
        policy=MissingTilePolicy(m.missing_tile_policy),
        sentinel_color=m.sentinel_color,
        workers=config.workers,
        jpeg_quality=m.jpeg_quality,
    )


def run_stitching(config: RunConfig) -> StitchSummary:
    """Stitch every block anchored in the configured tile directory."""
    return build_stitcher(config).run()


def main() -> None:
    ap = argparse.ArgumentParser(description="Stitch cached tiles into N x N mosaic blocks")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--block-size", type=int, default=None, help="Override mosaic.block_size")
    ap.add_argument("--workers", type=int, default=None, help="Override worker count")
    args = ap.parse_args()

    config = load_config(args.config)
    setup_logging(config.log_level, json_console=config.log_json)
    if args.block_size:
        config = replace(config, mosaic=replace(config.mosaic, block_size=args.block_size))
    if args.workers:
        config = replace(config, workers=args.workers)

    log.info(
        "Mosaic run started",
        extra={
            "extra": {
                "block_size": config.mosaic.block_size,
                "policy": config.mosaic.missing_tile_policy,
                "out_tiles": str(config.mosaic.tiles_dir),
                "out_outlines": str(config.mosaic.outlines_dir),
            }
        },
    )
    run_stitching(config)


if __name__ == "__main__":
    main()
