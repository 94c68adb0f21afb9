"""
Run configuration loaded from config/params.yaml.

Every section is optional; missing keys fall back to DEFAULTS. Components never
read this module's state directly: entry points build a RunConfig and pass the
pieces (zoom, area of interest, block size, colors, ...) into constructors.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from common.geo import MEMBERSHIP_MODES
from common.logging_setup import get_logger
from common.types import BoundingBox, MAX_ZOOM


log = get_logger(__name__)

ARCGIS_WORLD_IMAGERY = (
    "https://server.arcgisonline.com/ArcGIS/rest/services/World_Imagery/MapServer/tile/{z}/{y}/{x}"
)

DEFAULTS: Dict[str, Any] = {
    "tiles": {
        "zoom": 17,  # ~1 m/px at mid latitudes
        "tile_size": 256,
        "imagery_url": ARCGIS_WORLD_IMAGERY,
        "timeout_s": 10.0,
        "tiles_dir": "data/tiles",
        "outlines_dir": "data/outlines",
    },
    "aoi": {"bbox": None},
    "classification": {
        "area_threshold_m2": 100.0,
        "excluded_tags": [],
        "colors": {},
        "membership": "vertices",
        "draw_mode": "fill",
        "line_thickness": 1,
    },
    "mosaic": {
        "block_size": 4,
        "missing_tile_policy": "abort",
        "sentinel_color": [255, 0, 255],
        "tiles_dir": "data/stitched/tiles",
        "outlines_dir": "data/stitched/outlines",
        "jpeg_quality": 95,
    },
    "workers": 8,
    "logging": {"level": "INFO", "json": True},
}

DRAW_MODES = ("fill", "stroke")
MISSING_TILE_POLICIES = ("abort", "sentinel")


def _rgb(value: Any, what: str) -> Tuple[int, int, int]:
    try:
        r, g, b = (int(v) for v in value)
    except (TypeError, ValueError):
        raise ValueError(f"{what} must be an [r, g, b] triplet, got {value!r}") from None
    if not all(0 <= c <= 255 for c in (r, g, b)):
        raise ValueError(f"{what} components must be within 0..255, got {value!r}")
    return (r, g, b)


@dataclass(frozen=True)
class TilesConfig:
    zoom: int = 17
    tile_size: int = 256
    imagery_url: str = ARCGIS_WORLD_IMAGERY
    timeout_s: float = 10.0
    tiles_dir: Path = Path("data/tiles")
    outlines_dir: Path = Path("data/outlines")

    def __post_init__(self) -> None:
        if not (0 <= self.zoom <= MAX_ZOOM):
            raise ValueError(f"tiles.zoom out of range: {self.zoom}")
        if self.tile_size <= 0:
            raise ValueError("tiles.tile_size must be > 0")
        for key in ("{z}", "{x}", "{y}"):
            if key not in self.imagery_url:
                raise ValueError(f"tiles.imagery_url is missing the {key} placeholder")


@dataclass(frozen=True)
class ClassificationConfig:
    area_threshold_m2: float = 100.0
    excluded_tags: Tuple[str, ...] = ()
    colors: Dict[str, Tuple[int, int, int]] = field(default_factory=dict)
    membership: str = "vertices"
    draw_mode: str = "fill"
    line_thickness: int = 1

    def __post_init__(self) -> None:
        if self.area_threshold_m2 < 0:
            raise ValueError("classification.area_threshold_m2 must be >= 0")
        if self.membership not in MEMBERSHIP_MODES:
            raise ValueError(f"classification.membership must be one of {MEMBERSHIP_MODES}")
        if self.draw_mode not in DRAW_MODES:
            raise ValueError(f"classification.draw_mode must be one of {DRAW_MODES}")
        if self.line_thickness <= 0:
            raise ValueError("classification.line_thickness must be > 0")


@dataclass(frozen=True)
class MosaicConfig:
    block_size: int = 4
    missing_tile_policy: str = "abort"
    sentinel_color: Tuple[int, int, int] = (255, 0, 255)
    tiles_dir: Path = Path("data/stitched/tiles")
    outlines_dir: Path = Path("data/stitched/outlines")
    jpeg_quality: int = 95

    def __post_init__(self) -> None:
        if self.block_size <= 0:
            raise ValueError("mosaic.block_size must be > 0")
        if self.missing_tile_policy not in MISSING_TILE_POLICIES:
            raise ValueError(f"mosaic.missing_tile_policy must be one of {MISSING_TILE_POLICIES}")
        if not (0 <= self.jpeg_quality <= 100):
            raise ValueError("mosaic.jpeg_quality must be within 0..100")


@dataclass(frozen=True)
class RunConfig:
    tiles: TilesConfig = field(default_factory=TilesConfig)
    aoi: Optional[BoundingBox] = None
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    mosaic: MosaicConfig = field(default_factory=MosaicConfig)
    workers: int = 8
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        if self.workers <= 0:
            raise ValueError("workers must be > 0")

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "RunConfig":
        P = _merge(DEFAULTS, raw or {})
        t, c, m = P["tiles"], P["classification"], P["mosaic"]
        bbox = (P.get("aoi") or {}).get("bbox")
        return cls(
            tiles=TilesConfig(
                zoom=int(t["zoom"]),
                tile_size=int(t["tile_size"]),
                imagery_url=str(t["imagery_url"]),
                timeout_s=float(t["timeout_s"]),
                tiles_dir=Path(t["tiles_dir"]),
                outlines_dir=Path(t["outlines_dir"]),
            ),
            aoi=BoundingBox.from_list(bbox) if bbox else None,
            classification=ClassificationConfig(
                area_threshold_m2=float(c["area_threshold_m2"]),
                excluded_tags=tuple(str(x) for x in (c.get("excluded_tags") or [])),
                colors={str(k): _rgb(v, f"classification.colors.{k}") for k, v in (c.get("colors") or {}).items()},
                membership=str(c["membership"]),
                draw_mode=str(c["draw_mode"]),
                line_thickness=int(c["line_thickness"]),
            ),
            mosaic=MosaicConfig(
                block_size=int(m["block_size"]),
                missing_tile_policy=str(m["missing_tile_policy"]),
                sentinel_color=_rgb(m["sentinel_color"], "mosaic.sentinel_color"),
                tiles_dir=Path(m["tiles_dir"]),
                outlines_dir=Path(m["outlines_dir"]),
                jpeg_quality=int(m["jpeg_quality"]),
            ),
            workers=int(P["workers"]),
            log_level=str(P["logging"].get("level", "INFO")),
            log_json=bool(P["logging"].get("json", True)),
        )


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Section-wise merge: nested dicts merge key by key, everything else replaces."""
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str = "config/params.yaml") -> RunConfig:
    """Load YAML config; a missing file yields the defaults."""
    p = Path(path)
    if not p.exists():
        return RunConfig.from_dict({})
    with p.open("r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    for key in unknown_keys(raw):
        log.warning("Ignoring unknown config key %s", key, extra={"extra": {"path": str(p)}})
    return RunConfig.from_dict(raw)


def unknown_keys(raw: Dict[str, Any]) -> List[str]:
    """Top-level and section keys not understood by RunConfig (reported as warnings)."""
    out: List[str] = []
    for k, v in raw.items():
        if k not in DEFAULTS:
            out.append(k)
        elif isinstance(v, dict) and isinstance(DEFAULTS[k], dict):
            out.extend(f"{k}.{kk}" for kk in v if kk not in DEFAULTS[k])
    return out
