from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import numpy as np

from common.errors import OutOfInterest
from common.geo import MEMBERSHIP_MODES, MEMBERSHIP_VERTICES, project_to_pixel, tiles_overlapping
from common.types import Classification, Polygon, TileAddress
from common.utils import sorted_xy
from outline.classify import ColorTable
from tile_cache.cache import TileImageCache


log = logging.getLogger(__name__)

DRAW_FILL = "fill"
DRAW_STROKE = "stroke"


class OutlineRasterizer:
    """
    Draws building polygons into the outline canvases of a TileImageCache.

    Each polygon is projected independently into every tile it touches, so a
    building crossing a tile border shows up on both canvases, clipped at the
    edge by OpenCV.
    """

    def __init__(
        self,
        cache: TileImageCache,
        colors: Optional[ColorTable] = None,
        *,
        membership: str = MEMBERSHIP_VERTICES,
        draw_mode: str = DRAW_FILL,
        line_thickness: int = 1,
    ):
        if membership not in MEMBERSHIP_MODES:
            raise ValueError(f"unknown tile membership mode: {membership!r}")
        if draw_mode not in (DRAW_FILL, DRAW_STROKE):
            raise ValueError(f"unknown draw mode: {draw_mode!r}")
        self.cache = cache
        self.colors = colors or ColorTable()
        self.membership = membership
        self.draw_mode = draw_mode
        self.line_thickness = int(line_thickness)

    def rasterize(self, polygon: Polygon, classification: Classification) -> List[TileAddress]:
        """
        Draw `polygon` in the color of `classification` into every tile it touches.

        Tiles outside the area of interest are skipped. FetchError / DecodeError
        abort the polygon; tiles drawn before the failure keep their pixels.

        Returns:
            tiles drawn into, in (x, y) order
        """
        color = self.colors.bgr(classification)
        drawn: List[TileAddress] = []
        for address in sorted_xy(tiles_overlapping(polygon, self.cache.zoom, self.membership)):
            try:
                self.cache.ensure_loaded(address)
            except OutOfInterest:
                log.debug("Tile outside area of interest", extra={"tile": address.name})
                continue

            with self.cache.get_outline_canvas(address) as canvas:
                h, w = canvas.shape[:2]
                pts = self._pixel_ring(polygon, address, (w, h))
                self._draw(canvas, pts, color)
            self.cache.mark_dirty(address)
            drawn.append(address)

        log.debug(
            "Rasterized polygon",
            extra={"extra": {"ident": polygon.ident, "class": classification.value, "tiles": len(drawn)}},
        )
        return drawn

    # ----------------------------
    # helpers
    # ----------------------------
    @staticmethod
    def _pixel_ring(polygon: Polygon, address: TileAddress, canvas_size) -> np.ndarray:
        pts = [project_to_pixel(v, address, canvas_size) for v in polygon.vertices]
        if len(pts) > 1 and pts[-1] == pts[0]:
            pts.pop()
        return np.asarray(pts, dtype=np.int32).reshape(-1, 1, 2)

    def _draw(self, canvas: np.ndarray, pts: np.ndarray, color) -> None:
        if self.draw_mode == DRAW_FILL:
            cv2.fillPoly(canvas, [pts], color)
        else:
            cv2.polylines(canvas, [pts], True, color, self.line_thickness)
