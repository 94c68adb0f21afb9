"""
Building footprints from Overpass API JSON.

    [out:json];
    (way["building"](bbox); relation["building"](bbox););
    (._; >;);
    out body;

Nodes carry lat/lon, ways carry node references, relations carry member ways.
A way reference to a node missing from the document (clipped at the query
bbox) becomes None in the ring; Polygon.from_ring() rejects such rings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from common.types import GeoCoordinate, Polygon


@dataclass(frozen=True)
class BuildingRing:
    ident: str
    points: Tuple[Optional[GeoCoordinate], ...]
    excluded: bool = False
    tags: Dict[str, str] = field(default_factory=dict)

    def to_polygon(self) -> Polygon:
        return Polygon.from_ring(self.points, excluded=self.excluded, ident=self.ident)


def load_footprints(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        doc = json.load(f)
    if not isinstance(doc, dict) or not isinstance(doc.get("elements"), list):
        raise ValueError(f"{path}: expected Overpass JSON with an 'elements' list")
    return doc


def parse_tag_rules(rules: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
    """"key" matches any value, "key=value" matches exactly."""
    out: List[Tuple[str, Optional[str]]] = []
    for rule in rules:
        key, sep, value = rule.partition("=")
        key = key.strip()
        if not key:
            raise ValueError(f"invalid excluded tag rule: {rule!r}")
        out.append((key, value.strip() if sep else None))
    return out


def is_excluded(tags: Mapping[str, str], rules: Sequence[Tuple[str, Optional[str]]]) -> bool:
    for key, value in rules:
        if key in tags and (value is None or tags[key] == value):
            return True
    return False


def iter_building_rings(doc: Mapping[str, Any], excluded_tags: Sequence[str] = ()) -> Iterator[BuildingRing]:
    """
    Yield one ring per building-tagged way, and one per member way of each
    building-tagged relation (inheriting the relation's tags). A way is yielded
    at most once: relation members already drawn as a standalone building, or
    through an earlier relation, are skipped.
    """
    rules = parse_tag_rules(excluded_tags)
    nodes: Dict[int, GeoCoordinate] = {}
    ways: Dict[int, Dict[str, Any]] = {}
    relations: List[Dict[str, Any]] = []

    for el in doc.get("elements", []):
        kind = el.get("type")
        if kind == "node" and "lat" in el and "lon" in el:
            nodes[el["id"]] = GeoCoordinate(lon=float(el["lon"]), lat=float(el["lat"]))
        elif kind == "way":
            ways[el["id"]] = el
        elif kind == "relation":
            relations.append(el)

    def ring_of(way: Mapping[str, Any]) -> Tuple[Optional[GeoCoordinate], ...]:
        return tuple(nodes.get(ref) for ref in way.get("nodes", []))

    yielded: Set[int] = set()
    for way_id, way in ways.items():
        tags = way.get("tags") or {}
        if "building" not in tags:
            continue
        yielded.add(way_id)
        yield BuildingRing(
            ident=f"way/{way_id}",
            points=ring_of(way),
            excluded=is_excluded(tags, rules),
            tags=dict(tags),
        )

    for rel in relations:
        tags = rel.get("tags") or {}
        if "building" not in tags:
            continue
        for member in rel.get("members", []):
            if member.get("type") != "way":
                continue
            way = ways.get(member.get("ref"))
            if way is None or way["id"] in yielded:
                continue
            yielded.add(way["id"])
            merged = {**(way.get("tags") or {}), **tags}
            yield BuildingRing(
                ident=f"relation/{rel['id']}/way/{way['id']}",
                points=ring_of(way),
                excluded=is_excluded(merged, rules),
                tags=merged,
            )
