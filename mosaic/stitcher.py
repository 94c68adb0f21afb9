from __future__ import annotations

import enum
import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from common.errors import IncompleteBlock
from common.imaging import decode_image, encode_image, rgb_to_bgr
from common.types import TileAddress
from common.utils import Counters, elapsed_ms, sorted_xy
from mosaic.coordinator import TouchedSetCoordinator
from tile_cache.store import TileStore


log = logging.getLogger(__name__)


class MissingTilePolicy(str, enum.Enum):
    ABORT = "abort"          # skip the whole block, nothing persisted
    SENTINEL = "sentinel"    # paint the member's quadrants and build anyway


class BlockOutcome(str, enum.Enum):
    BUILT = "built"
    SKIPPED = "skipped"          # anchor tile whose block another worker already claimed
    EXISTING = "existing"        # both outputs already on disk
    FAILED = "failed"            # missing members under the abort policy
    NOT_ANCHOR = "not-anchor"    # member tile consumed by its claimed block


@dataclass(frozen=True)
class StitchSummary:
    built: int = 0
    skipped: int = 0
    existing: int = 0
    failed: int = 0
    not_anchor: int = 0
    elapsed_ms: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def block_key_of(address: TileAddress, block_size: int) -> TileAddress:
    """Key of the block containing `address`: its anchor tile."""
    return address.block_anchor(block_size)


class MosaicStitcher:
    """
    Concatenates block_size x block_size tiles into one image per block.

    Member (dx, dy) of the block anchored at (x, y) is tile (x + dx, y + dy) and
    lands at rows dy*ts:(dy+1)*ts, columns dx*ts:(dx+1)*ts of the output.
    Outputs are keyed by the anchor's name in the mosaic stores.
    """

    def __init__(
        self,
        tile_store: TileStore,
        outline_store: TileStore,
        mosaic_tile_store: TileStore,
        mosaic_outline_store: TileStore,
        *,
        block_size: int,
        tile_size: int = 256,
        policy: MissingTilePolicy = MissingTilePolicy.ABORT,
        sentinel_color: Tuple[int, int, int] = (255, 0, 255),
        workers: int = 8,
        jpeg_quality: int = 95,
    ):
        if block_size <= 0:
            raise ValueError("block_size must be > 0")
        if tile_size <= 0:
            raise ValueError("tile_size must be > 0")
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self.tile_store = tile_store
        self.outline_store = outline_store
        self.mosaic_tile_store = mosaic_tile_store
        self.mosaic_outline_store = mosaic_outline_store
        self.block_size = int(block_size)
        self.tile_size = int(tile_size)
        self.policy = MissingTilePolicy(policy)
        self.sentinel_bgr = rgb_to_bgr(sentinel_color)
        self.workers = int(workers)
        self.jpeg_quality = int(jpeg_quality)
        self.counters = Counters("builds")

    @property
    def builds(self) -> int:
        return self.counters.get("builds")

    # ----------------------------
    # sweep
    # ----------------------------
    def run(self, addresses: Optional[Iterable[TileAddress]] = None) -> StitchSummary:
        """
        Offer every address to the worker pool; defaults to all persisted tiles.
        One coordinator is shared by the whole sweep.
        """
        t0 = time.perf_counter()
        todo = sorted_xy(self.tile_store.list() if addresses is None else addresses)
        log.info(
            "Stitching mosaic blocks",
            extra={"extra": {"tiles": len(todo), "block_size": self.block_size, "workers": self.workers}},
        )
        with TouchedSetCoordinator() as touched, ThreadPoolExecutor(max_workers=self.workers) as pool:
            outcomes = Counter(pool.map(lambda a: self.process(a, touched), todo))

        summary = StitchSummary(
            built=outcomes[BlockOutcome.BUILT],
            skipped=outcomes[BlockOutcome.SKIPPED],
            existing=outcomes[BlockOutcome.EXISTING],
            failed=outcomes[BlockOutcome.FAILED],
            not_anchor=outcomes[BlockOutcome.NOT_ANCHOR],
            elapsed_ms=elapsed_ms(t0),
        )
        log.info("Stitching finished", extra={"extra": summary.as_dict()})
        return summary

    def process(self, address: TileAddress, coordinator: TouchedSetCoordinator) -> BlockOutcome:
        """
        Per-tile step of the sweep. Every tile stands for the block it belongs to;
        the first tile to claim a block builds it at the block's anchor, so a block
        whose anchor tile is missing is still attempted. Later tiles of a claimed
        block report SKIPPED (anchor) or NOT_ANCHOR (member consumed by the block).
        """
        anchor = block_key_of(address, self.block_size)
        if not coordinator.claim(anchor):
            return BlockOutcome.SKIPPED if address == anchor else BlockOutcome.NOT_ANCHOR
        if self.mosaic_tile_store.exists(anchor) and self.mosaic_outline_store.exists(anchor):
            return BlockOutcome.EXISTING
        try:
            self.build_block(anchor)
        except IncompleteBlock as e:
            log.warning(
                "Block skipped: %s",
                e,
                extra={"tile": anchor.name, "extra": {"missing": [str(m) for m in e.missing]}},
            )
            return BlockOutcome.FAILED
        return BlockOutcome.BUILT

    # ----------------------------
    # one block
    # ----------------------------
    def build_block(self, anchor: TileAddress) -> List[object]:
        """
        Assemble and persist the block anchored at `anchor`.

        Returns:
            members that were missing (painted with the sentinel color)
        Raises:
            IncompleteBlock: a member is missing and the policy is ABORT.
        """
        n, ts = self.block_size, self.tile_size
        base = np.zeros((n * ts, n * ts, 3), dtype=np.uint8)
        outline = np.zeros_like(base)
        missing: List[object] = []

        for dy in range(n):
            for dx in range(n):
                rows = slice(dy * ts, (dy + 1) * ts)
                cols = slice(dx * ts, (dx + 1) * ts)
                member = anchor.offset(dx, dy)
                member_base = self._read(self.tile_store, member)
                if member_base is None:
                    missing.append(member if member is not None else (anchor.x + dx, anchor.y + dy))
                    if self.policy is MissingTilePolicy.ABORT:
                        continue
                    base[rows, cols] = self.sentinel_bgr
                    outline[rows, cols] = self.sentinel_bgr
                    continue
                base[rows, cols] = member_base
                member_outline = self._read(self.outline_store, member)
                if member_outline is not None:
                    outline[rows, cols] = member_outline

        if missing and self.policy is MissingTilePolicy.ABORT:
            raise IncompleteBlock(anchor, missing)

        self.mosaic_tile_store.put(anchor, encode_image(base, ".jpg", jpeg_quality=self.jpeg_quality))
        self.mosaic_outline_store.put(anchor, encode_image(outline, ".png"))
        self.counters.incr("builds")
        log.info(
            "Built mosaic block",
            extra={"tile": anchor.name, "extra": {"missing": len(missing), "size_px": n * ts}},
        )
        return missing

    def _read(self, store: TileStore, address: Optional[TileAddress]) -> Optional[np.ndarray]:
        """Decoded member image, or None when absent, undecodable or not tile_size square."""
        if address is None:
            return None
        img = decode_image(store.get(address))
        if img is None:
            return None
        if img.shape[:2] != (self.tile_size, self.tile_size):
            log.warning(
                "Ignoring tile with unexpected size %s",
                img.shape[:2],
                extra={"tile": address.name, "extra": {"store": repr(store)}},
            )
            return None
        return img
