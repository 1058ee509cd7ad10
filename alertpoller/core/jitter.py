"""
Deterministic anti-stacking jitter.

Alerts that fall back to a state or county center would otherwise pile onto a
single map pixel. Each one is nudged to a point inside an annulus around the
center; the offset is derived from a seed string, so re-polling the same alert
always lands it in the same spot.
"""
from __future__ import annotations

import math
from typing import Optional

from alertpoller.core.contracts import LonLat
from alertpoller.core.geo import sanitize_point, wrap_lon

_MASK32 = 0xFFFFFFFF

MILES_PER_DEG_LAT = 69.0


def hash32(seed: object) -> int:
    """FNV-1a 32-bit over the UTF-16 code units of str(seed)."""
    s = "" if seed is None else str(seed)
    data = s.encode("utf-16-le", errors="surrogatepass")
    h = 0x811C9DC5
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * 0x01000193) & _MASK32
    return h


class Mulberry32:
    """Small seeded PRNG; yields floats in [0, 1)."""

    __slots__ = ("_a",)

    def __init__(self, seed: int):
        self._a = seed & _MASK32

    def next_float(self) -> float:
        self._a = (self._a + 0x6D2B79F5) & _MASK32
        a = self._a
        t = ((a ^ (a >> 15)) * (1 | a)) & _MASK32
        t ^= (t + (((t ^ (t >> 7)) * (61 | t)) & _MASK32)) & _MASK32
        return ((t ^ (t >> 14)) & _MASK32) / 4294967296


def jitter_seed(identifier: str, geometry_method: str) -> str:
    return f"{identifier}|{geometry_method}"


def jitter_point(
    point: LonLat,
    seed: str,
    min_miles: float,
    max_miles: float,
) -> LonLat:
    """
    Offset `point` by a seeded distance in [min_miles, max_miles].

    The radius is drawn uniformly by area. Returns the input unchanged when it
    is invalid, when the annulus is empty, or when the result would be invalid.

    Distances are flat-earth miles as measured by `flat_distance_miles`. Two
    polar cases fall short of the annulus: above ~81.4° the longitude scale is
    floored at cos 0.15, so the true ground offset is smaller than drawn; and a
    result clamped at ±90° latitude loses part of its northward offset, so it
    can land closer than `min_miles`. It never lands farther than `max_miles`.
    """
    start: Optional[LonLat] = sanitize_point(point[0], point[1])
    if start is None:
        return point

    lo = max(0.0, float(min_miles or 0.0))
    hi = max(lo, float(max_miles or 0.0))
    if hi == 0:
        return start

    lon, lat = start
    rand = Mulberry32(hash32(seed))
    u = rand.next_float()
    v = rand.next_float()

    r = math.sqrt(lo * lo + u * (hi * hi - lo * lo))
    theta = v * 2 * math.pi

    miles_north = r * math.cos(theta)
    miles_east = r * math.sin(theta)

    cos_safe = max(0.15, abs(math.cos(math.radians(lat))))
    d_lat = miles_north / MILES_PER_DEG_LAT
    d_lon = miles_east / (MILES_PER_DEG_LAT * cos_safe)

    out = sanitize_point(wrap_lon(lon + d_lon), min(90.0, max(-90.0, lat + d_lat)))
    return out if out is not None else start


def flat_distance_miles(a: LonLat, b: LonLat) -> float:
    """Planar miles between two nearby points, using the same degree scale as `jitter_point`."""
    cos_safe = max(0.15, abs(math.cos(math.radians(a[1]))))
    d_lon = wrap_lon(b[0] - a[0])
    north = (b[1] - a[1]) * MILES_PER_DEG_LAT
    east = d_lon * MILES_PER_DEG_LAT * cos_safe
    return math.hypot(north, east)
