"""
Geometry math for alert placement.

Points are (lon, lat) tuples in degrees, the GeoJSON axis order. Centroids are
computed on the unit sphere rather than on the lon/lat plane, so polygons that
straddle the antimeridian or sit near a pole average to a sensible point.
"""
from __future__ import annotations

import math
from statistics import median
from typing import Any, Dict, Iterable, List, Optional, Sequence

from alertpoller.core.contracts import BBox, LonLat


def _to_float(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        f = float(x)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def wrap_lon(lon: float) -> float:
    """Longitude folded into [-180, 180]; values already in range come back unchanged."""
    if -180.0 <= lon <= 180.0:
        return lon
    x = ((lon + 180.0) % 360.0) - 180.0
    # eastward overflow onto the antimeridian stays at +180
    return 180.0 if x == -180.0 and lon > 0 else x


def sanitize_point(lon: Any, lat: Any) -> Optional[LonLat]:
    """
    Validated (lon, lat) or None.

    Rejects non-numeric/non-finite values and |lat| > 90. Longitude is wrapped
    into [-180, 180].
    """
    x = _to_float(lon)
    y = _to_float(lat)
    if x is None or y is None:
        return None
    if abs(y) > 90:
        return None
    return (wrap_lon(x), y)


def centroid(points: Iterable[Sequence[Any]]) -> Optional[LonLat]:
    """Spherical (unit-vector) mean of the points; None when no point is usable."""
    x = y = z = 0.0
    used = 0

    for p in points:
        if p is None or len(p) < 2:
            continue
        pt = sanitize_point(p[0], p[1])
        if pt is None:
            continue
        lon_r = math.radians(pt[0])
        lat_r = math.radians(pt[1])
        x += math.cos(lat_r) * math.cos(lon_r)
        y += math.cos(lat_r) * math.sin(lon_r)
        z += math.sin(lat_r)
        used += 1

    if not used:
        return None

    x /= used
    y /= used
    z /= used

    lon = math.degrees(math.atan2(y, x))
    lat = math.degrees(math.atan2(z, math.hypot(x, y)))
    return sanitize_point(lon, lat)


def bbox(points: Iterable[Sequence[Any]]) -> Optional[BBox]:
    lons: List[float] = []
    lats: List[float] = []
    for p in points:
        if p is None or len(p) < 2:
            continue
        pt = sanitize_point(p[0], p[1])
        if pt is None:
            continue
        lons.append(pt[0])
        lats.append(pt[1])
    if not lons:
        return None
    return (min(lons), min(lats), max(lons), max(lats))


def union_bbox(boxes: Iterable[Optional[Sequence[float]]]) -> Optional[BBox]:
    usable = [b for b in boxes if b is not None and len(b) == 4 and bbox_is_finite(b)]
    if not usable:
        return None
    return (
        min(b[0] for b in usable),
        min(b[1] for b in usable),
        max(b[2] for b in usable),
        max(b[3] for b in usable),
    )


def bbox_is_finite(b: Sequence[Any]) -> bool:
    return len(b) == 4 and all(_to_float(v) is not None for v in b)


# ──────────────────────────────────────────────────────────────
# Polygons
# ──────────────────────────────────────────────────────────────

def _detect_order(pairs: Sequence[tuple[float, float]]) -> str:
    """
    "lonlat" or "latlon" for raw coordinate pairs.

    Whichever axis has more values outside latitude's ±90° range is longitude.
    On a tie the axis with the larger median magnitude is longitude.
    """
    a_out = sum(1 for a, _ in pairs if abs(a) > 90)
    b_out = sum(1 for _, b in pairs if abs(b) > 90)
    if a_out != b_out:
        return "lonlat" if a_out > b_out else "latlon"
    a_med = median(abs(a) for a, _ in pairs)
    b_med = median(abs(b) for _, b in pairs)
    return "lonlat" if a_med > b_med else "latlon"


def parse_polygon(raw: Optional[str]) -> Optional[List[LonLat]]:
    """
    Parse a CAP/GeoRSS polygon string into a closed GeoJSON ring [(lon, lat), ...].

    Accepts "a,b a,b ..." pairs or a flat "a b a b ..." number list, in either
    axis order. Needs at least 3 valid vertices.
    """
    text = str(raw or "").strip()
    if not text:
        return None

    pairs: List[tuple[float, float]] = []
    if "," in text:
        for part in text.split():
            bits = part.split(",")
            if len(bits) < 2:
                continue
            a = _to_float(bits[0])
            b = _to_float(bits[1])
            if a is None or b is None:
                continue
            pairs.append((a, b))
    else:
        nums = [n for n in (_to_float(t) for t in text.split()) if n is not None]
        pairs = [(nums[i], nums[i + 1]) for i in range(0, len(nums) - 1, 2)]

    if len(pairs) < 3:
        return None

    order = _detect_order(pairs)
    ring: List[LonLat] = []
    for a, b in pairs:
        pt = sanitize_point(b, a) if order == "latlon" else sanitize_point(a, b)
        if pt is not None:
            ring.append(pt)

    if len(ring) < 3:
        return None
    if ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def ring_vertices(ring: Sequence[LonLat]) -> List[LonLat]:
    """Ring without its closing vertex, so each corner counts once."""
    pts = list(ring)
    if len(pts) > 1 and pts[0] == pts[-1]:
        pts = pts[:-1]
    return pts


# ──────────────────────────────────────────────────────────────
# GeoJSON
# ──────────────────────────────────────────────────────────────

def flatten_geojson_points(geom: Optional[Dict[str, Any]]) -> List[LonLat]:
    """Every finite coordinate pair in a GeoJSON geometry, any type."""
    out: List[LonLat] = []

    def add(p: Any) -> None:
        if isinstance(p, (list, tuple)) and len(p) >= 2:
            x = _to_float(p[0])
            y = _to_float(p[1])
            if x is not None and y is not None:
                out.append((x, y))

    def collect(g: Any) -> None:
        if not isinstance(g, dict):
            return
        t = g.get("type")
        coords = g.get("coordinates")
        if t == "Point":
            add(coords)
        elif t in ("LineString", "MultiPoint") and isinstance(coords, list):
            for p in coords:
                add(p)
        elif t in ("MultiLineString", "Polygon") and isinstance(coords, list):
            for ring in coords:
                if isinstance(ring, list):
                    for p in ring:
                        add(p)
        elif t == "MultiPolygon" and isinstance(coords, list):
            for poly in coords:
                if not isinstance(poly, list):
                    continue
                for ring in poly:
                    if isinstance(ring, list):
                        for p in ring:
                            add(p)
        elif t == "GeometryCollection" and isinstance(g.get("geometries"), list):
            for sub in g["geometries"]:
                collect(sub)

    collect(geom)
    return out
