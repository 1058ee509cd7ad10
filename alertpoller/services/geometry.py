# alertpoller/services/geometry.py
"""
Locate an alert on the map.

Tiers, first usable point wins:
  1. polygon           centroid of the source polygon
  2. embedded          GeoJSON / GeoRSS geometry shipped with the record
  3. explicit-latlon   lat/lon fields
  4. fips-centroid     county FIPS geocodes
  5. zone(s)-centroid  resolved NWS zones
  6. county-centroid   "County, ST" names in the area text
  7. state(s) center   inferred states
  8. country-centroid  country named in the text (global feeds only)

County/state-level points (4, 6, 7) get deterministic anti-stacking jitter;
the `-jitter` suffix on geometryMethod marks it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from alertpoller.core.contracts import BBox, LonLat, ZoneGeometry
from alertpoller.core.geo import (
    bbox,
    centroid,
    flatten_geojson_points,
    parse_polygon,
    ring_vertices,
    sanitize_point,
    union_bbox,
)
from alertpoller.core.jitter import jitter_point, jitter_seed
from alertpoller.core.reference import (
    ReferenceTables,
    extract_state_abbrs,
    infer_country_point,
    normalize_county_name,
    state_to_abbr,
)
from alertpoller.core.settings import Settings


# ──────────────────────────────────────────────────────────────
# Inputs / outputs
# ──────────────────────────────────────────────────────────────

@dataclass
class GeometryHints:
    polygon: Optional[str] = None
    polygon_tag: str = "polygon"
    embedded: Optional[Dict[str, Any]] = None     # GeoJSON geometry
    embedded_tag: Optional[str] = None            # e.g. "nws-geom-polygon", "georss-point"
    explicit: Optional[LonLat] = None             # (lon, lat)
    fips_codes: List[str] = field(default_factory=list)
    zones: List[ZoneGeometry] = field(default_factory=list)
    area_desc: str = ""
    states: Optional[List[str]] = None            # None → infer from area_desc
    country_text: Optional[str] = None            # only set for global feeds

    def has_direct_geometry(self) -> bool:
        """True when tier 1 or 2 will produce a point, so zone lookups can be skipped."""
        if parse_polygon(self.polygon) is not None:
            return True
        return bool(flatten_geojson_points(self.embedded))


@dataclass(frozen=True)
class GeometryResult:
    point: LonLat
    method: str
    bbox: Optional[BBox] = None


@dataclass(frozen=True)
class JitterPolicy:
    enabled: bool = True
    state_min_miles: float = 1.0
    state_max_miles: float = 5.0
    county_min_miles: float = 0.5
    county_max_miles: float = 2.0

    @classmethod
    def from_settings(cls, s: Settings) -> "JitterPolicy":
        return cls(
            enabled=s.geo_jitter_enabled,
            state_min_miles=s.jitter_state_min_miles,
            state_max_miles=s.jitter_state_max_miles,
            county_min_miles=s.jitter_county_min_miles,
            county_max_miles=s.jitter_county_max_miles,
        )

    def annulus(self, method: str) -> Optional[tuple[float, float]]:
        level = _JITTER_LEVEL.get(method)
        if level == "state":
            return (self.state_min_miles, self.state_max_miles)
        if level == "county":
            return (self.county_min_miles, self.county_max_miles)
        return None


_JITTER_LEVEL: Dict[str, str] = {
    "fips-centroid": "county",
    "county-centroid": "county",
    "state-center": "state",
    "states-centroid": "state",
}


# ──────────────────────────────────────────────────────────────
# County names in area text
# ──────────────────────────────────────────────────────────────

_REGION_WITH_STATE_RE = re.compile(r"^(.+?),\s*([A-Za-z .]+)$")
_BARE_COUNTY_RE = re.compile(r"^[A-Za-z .'-]+$")


def county_points_from_area(
    tables: ReferenceTables,
    area_desc: Optional[str],
    state_hint: Optional[str] = None,
) -> List[LonLat]:
    """
    County centers named in a ';'-separated area description.

    "Jones, MS; Jasper, MS" → both centers. Bare names ("Jones; Jasper") are
    only looked up when exactly one state is known.
    """
    if not area_desc:
        return []

    hints = [state_hint] if state_hint else extract_state_abbrs(area_desc)
    out: List[LonLat] = []

    for region in (r.strip() for r in area_desc.split(";")):
        if not region:
            continue

        m = _REGION_WITH_STATE_RE.match(region)
        if m:
            abbr = state_to_abbr(m.group(2).strip())
            if not abbr and len(hints) == 1:
                abbr = hints[0]
            p = tables.county_center(abbr, normalize_county_name(m.group(1)))
            if p is not None:
                out.append(p)
            continue

        if len(hints) == 1 and _BARE_COUNTY_RE.match(region):
            p = tables.county_center(hints[0], normalize_county_name(region))
            if p is not None:
                out.append(p)

    return out


def _one_or_centroid(points: List[LonLat]) -> Optional[LonLat]:
    if not points:
        return None
    if len(points) == 1:
        return sanitize_point(points[0][0], points[0][1])
    return centroid(points)


# ──────────────────────────────────────────────────────────────
# Tiers
# ──────────────────────────────────────────────────────────────

def _tier_polygon(h: GeometryHints, _t: ReferenceTables) -> Optional[GeometryResult]:
    ring = parse_polygon(h.polygon)
    if ring is None:
        return None
    c = centroid(ring_vertices(ring))
    if c is None:
        return None
    return GeometryResult(c, h.polygon_tag, bbox(ring))


def _tier_embedded(h: GeometryHints, _t: ReferenceTables) -> Optional[GeometryResult]:
    pts = flatten_geojson_points(h.embedded)
    c = centroid(pts)
    if c is None:
        return None
    gtype = str((h.embedded or {}).get("type") or "geom").lower()
    tag = h.embedded_tag or f"embedded-{gtype}"
    return GeometryResult(c, tag, bbox(pts) if len(pts) > 1 else None)


def _tier_explicit(h: GeometryHints, _t: ReferenceTables) -> Optional[GeometryResult]:
    if h.explicit is None:
        return None
    pt = sanitize_point(h.explicit[0], h.explicit[1])
    return GeometryResult(pt, "explicit-latlon") if pt is not None else None


def _tier_fips(h: GeometryHints, t: ReferenceTables) -> Optional[GeometryResult]:
    pts = t.fips_points(h.fips_codes)
    c = _one_or_centroid(pts)
    if c is None:
        return None
    return GeometryResult(c, "fips-centroid", bbox(pts) if len(pts) > 1 else None)


def _tier_zones(h: GeometryHints, _t: ReferenceTables) -> Optional[GeometryResult]:
    zones = [z for z in h.zones if z is not None]
    if not zones:
        return None
    if len(zones) == 1:
        c = sanitize_point(*zones[0].centroid)
        return GeometryResult(c, "zone-centroid", zones[0].bbox) if c is not None else None
    c = centroid([z.centroid for z in zones])
    if c is None:
        return None
    return GeometryResult(c, "zones-centroid", union_bbox(z.bbox for z in zones))


def _states(h: GeometryHints) -> List[str]:
    if h.states is not None:
        return list(h.states)
    return extract_state_abbrs(h.area_desc)


def _tier_county(h: GeometryHints, t: ReferenceTables) -> Optional[GeometryResult]:
    if not h.area_desc:
        return None
    states = _states(h)
    hint = states[0] if len(states) == 1 else None
    c = _one_or_centroid(county_points_from_area(t, h.area_desc, hint))
    return GeometryResult(c, "county-centroid") if c is not None else None


def _tier_state(h: GeometryHints, t: ReferenceTables) -> Optional[GeometryResult]:
    centers = [p for p in (t.state_center(s) for s in _states(h)) if p is not None]
    if not centers:
        return None
    if len(centers) == 1:
        c = sanitize_point(*centers[0])
        return GeometryResult(c, "state-center") if c is not None else None
    c = centroid(centers)
    return GeometryResult(c, "states-centroid") if c is not None else None


def _tier_country(h: GeometryHints, _t: ReferenceTables) -> Optional[GeometryResult]:
    if not h.country_text:
        return None
    p = infer_country_point(h.country_text)
    if p is None:
        return None
    c = sanitize_point(*p)
    return GeometryResult(c, "country-centroid") if c is not None else None


_TIERS = (
    _tier_polygon,
    _tier_embedded,
    _tier_explicit,
    _tier_fips,
    _tier_zones,
    _tier_county,
    _tier_state,
    _tier_country,
)


# ──────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────

def apply_jitter(result: GeometryResult, identifier: str, policy: JitterPolicy) -> GeometryResult:
    if not policy.enabled:
        return result
    annulus = policy.annulus(result.method)
    if annulus is None:
        return result
    moved = jitter_point(result.point, jitter_seed(identifier or "unknown", result.method), *annulus)
    return GeometryResult(moved, f"{result.method}-jitter", result.bbox)


def resolve_geometry(
    hints: GeometryHints,
    *,
    identifier: str,
    tables: ReferenceTables,
    jitter: JitterPolicy,
) -> Optional[GeometryResult]:
    """First tier that yields a valid point, jittered where appropriate; None when nothing locates the alert."""
    for tier in _TIERS:
        res = tier(hints, tables)
        if res is not None:
            return apply_jitter(res, identifier, jitter)
    return None
