from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from common.geo import geodesic_area_m2
from common.imaging import rgb_to_bgr
from common.types import Classification, Polygon


RGB = Tuple[int, int, int]

DEFAULT_AREA_THRESHOLD_M2 = 100.0

DEFAULT_COLORS: Dict[Classification, RGB] = {
    Classification.NORMAL: (0, 255, 0),
    Classification.BELOW_AREA_THRESHOLD: (255, 255, 0),
    Classification.EXCLUDED_TAGS: (255, 0, 0),
    Classification.UNCLASSIFIED: (128, 128, 128),
}


def classify(polygon: Polygon, *, area_threshold_m2: float = DEFAULT_AREA_THRESHOLD_M2) -> Classification:
    """
    Category of one building polygon.

    Checked in order: geodesic area strictly below the threshold, then the
    excluded-tag flag, else normal. A small excluded building is therefore
    reported as below-area-threshold.
    """
    if geodesic_area_m2(polygon) < area_threshold_m2:
        return Classification.BELOW_AREA_THRESHOLD
    if polygon.excluded:
        return Classification.EXCLUDED_TAGS
    return Classification.NORMAL


class ColorTable:
    """
    Total classification -> RGB mapping, indexed by Classification.color_index.

    Usage:
        colors = ColorTable.from_mapping({"normal": [0, 200, 0]})
        cv2.fillPoly(canvas, [pts], colors.bgr(Classification.NORMAL))
    """

    def __init__(self, colors: Optional[Mapping[Classification, RGB]] = None):
        merged = dict(DEFAULT_COLORS)
        merged.update(colors or {})
        self._table = [tuple(merged[c]) for c in Classification]

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, RGB]]) -> "ColorTable":
        """Config-style mapping keyed by classification value ("normal", ...)."""
        colors: Dict[Classification, RGB] = {}
        for key, value in (raw or {}).items():
            try:
                cls_ = Classification(key)
            except ValueError:
                raise ValueError(
                    f"unknown classification {key!r}; expected one of {[c.value for c in Classification]}"
                ) from None
            rgb = tuple(int(v) for v in value)
            if len(rgb) != 3 or not all(0 <= v <= 255 for v in rgb):
                raise ValueError(f"color for {key!r} must be an [r, g, b] triplet within 0..255")
            colors[cls_] = rgb
        return cls(colors)

    def rgb(self, classification: Classification) -> RGB:
        return self._table[classification.color_index]

    def bgr(self, classification: Classification) -> RGB:
        return rgb_to_bgr(self.rgb(classification))

    def as_dict(self) -> Dict[str, RGB]:
        return {c.value: self._table[c.color_index] for c in Classification}
