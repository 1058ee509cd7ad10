from __future__ import annotations

import pytest

from alertpoller.core.contracts import ZoneGeometry
from alertpoller.core.geo import centroid, parse_polygon, ring_vertices
from alertpoller.core.jitter import flat_distance_miles, jitter_point, jitter_seed
from alertpoller.services.geometry import (
    GeometryHints,
    JitterPolicy,
    county_points_from_area,
    resolve_geometry,
)

TORNADO_POLYGON = "34.50,-88.00 34.60,-88.00 34.60,-88.20 34.50,-88.20"
JONES_MS = (-89.1687, 31.6225)


def _resolve(hints, tables, jitter, identifier="ID-1"):
    return resolve_geometry(hints, identifier=identifier, tables=tables, jitter=jitter)


# ── direct geometry ───────────────────────────────────────────

def test_polygon_tier_uses_spherical_centroid(tables, jitter):
    res = _resolve(GeometryHints(polygon=TORNADO_POLYGON, area_desc="Jones County, MS"), tables, jitter)
    expected = centroid(ring_vertices(parse_polygon(TORNADO_POLYGON)))
    assert res.method == "polygon"
    assert res.point == pytest.approx(expected)
    assert res.bbox == (-88.2, 34.5, -88.0, 34.6)


def test_unparseable_polygon_falls_through(tables, jitter):
    res = _resolve(GeometryHints(polygon="1,2 3,4", explicit=(-90.0, 30.0)), tables, jitter)
    assert res.method == "explicit-latlon"
    assert res.point == (-90.0, 30.0)


def test_embedded_point_with_tag_not_jittered(tables, jitter):
    hints = GeometryHints(embedded={"type": "Point", "coordinates": [-117.5, 35.7]}, embedded_tag="georss-point")
    res = _resolve(hints, tables, jitter)
    assert res.method == "georss-point"
    assert res.point == pytest.approx((-117.5, 35.7))
    assert res.bbox is None


def test_embedded_polygon_default_tag_and_bbox(tables, jitter):
    ring = [[-100.0, 40.0], [-99.0, 40.0], [-99.0, 41.0], [-100.0, 40.0]]
    res = _resolve(GeometryHints(embedded={"type": "Polygon", "coordinates": [ring]}), tables, jitter)
    assert res.method == "embedded-polygon"
    assert res.bbox == (-100.0, 40.0, -99.0, 41.0)


def test_explicit_out_of_range_latitude_is_skipped(tables, jitter):
    res = _resolve(GeometryHints(explicit=(-90.0, 123.0), area_desc="Mississippi"), tables, jitter)
    assert res.method == "state-center-jitter"


# ── lookups ───────────────────────────────────────────────────

def test_fips_tier_is_jittered(tables, jitter):
    res = _resolve(GeometryHints(fips_codes=["28067"]), tables, jitter, identifier="FIPS-1")
    assert res.method == "fips-centroid-jitter"
    assert 0.5 - 1e-6 <= flat_distance_miles(JONES_MS, res.point) <= 2.0 + 1e-6


def test_single_zone_not_jittered(tables, jitter):
    z = ZoneGeometry(centroid=(-97.5, 35.5), bbox=(-98.0, 35.0, -97.0, 36.0))
    res = _resolve(GeometryHints(zones=[z], area_desc="Jones County, MS"), tables, jitter)
    assert res.method == "zone-centroid"
    assert res.point == (-97.5, 35.5)
    assert res.bbox == (-98.0, 35.0, -97.0, 36.0)


def test_several_zones_union_bbox(tables, jitter):
    zones = [
        ZoneGeometry(centroid=(-97.5, 35.5), bbox=(-98.0, 35.0, -97.0, 36.0)),
        ZoneGeometry(centroid=(-96.5, 35.5), bbox=(-97.0, 35.0, -96.0, 36.0)),
    ]
    res = _resolve(GeometryHints(zones=zones), tables, jitter)
    assert res.method == "zones-centroid"
    assert res.bbox == (-98.0, 35.0, -96.0, 36.0)
    assert res.point[0] == pytest.approx(-97.0, abs=1e-6)


def test_county_centroid_is_jittered_inside_county_annulus(tables, jitter):
    res = _resolve(GeometryHints(area_desc="Jones County, MS"), tables, jitter, identifier="urn:test:jones")
    assert res.method == "county-centroid-jitter"
    d = flat_distance_miles(JONES_MS, res.point)
    assert jitter.county_min_miles - 1e-6 <= d <= jitter.county_max_miles + 1e-6
    # the seed uses the method before the suffix
    assert res.point == jitter_point(JONES_MS, jitter_seed("urn:test:jones", "county-centroid"), 0.5, 2.0)


def test_county_centroid_repeatable(tables, jitter):
    a = _resolve(GeometryHints(area_desc="Jones County, MS"), tables, jitter, identifier="same")
    b = _resolve(GeometryHints(area_desc="Jones County, MS"), tables, jitter, identifier="same")
    assert a == b


def test_state_center_fallback(tables, jitter):
    res = _resolve(GeometryHints(area_desc="Mississippi"), tables, jitter)
    assert res.method == "state-center-jitter"
    d = flat_distance_miles(tables.state_center("MS"), res.point)
    assert 1.0 - 1e-6 <= d <= 5.0 + 1e-6


def test_several_states_centroid(tables, jitter):
    res = _resolve(GeometryHints(area_desc="Kansas; Oklahoma"), tables, jitter)
    assert res.method == "states-centroid-jitter"


def test_explicit_states_override_area_text(tables, jitter):
    res = _resolve(GeometryHints(area_desc="somewhere", states=["OK"]), tables, jitter)
    assert res.method == "state-center-jitter"


def test_country_centroid_only_with_country_text(tables, jitter):
    assert _resolve(GeometryHints(area_desc="Germany", states=[]), tables, jitter) is None
    res = _resolve(GeometryHints(states=[], country_text="Yellow wind warning for Germany"), tables, jitter)
    assert res.method == "country-centroid"
    assert res.point == (10.5, 51.2)


def test_nothing_locates(tables, jitter):
    assert _resolve(GeometryHints(area_desc="Open ocean"), tables, jitter) is None


def test_jitter_disabled(tables):
    res = _resolve(GeometryHints(area_desc="Jones County, MS"), tables, JitterPolicy(enabled=False))
    assert res.method == "county-centroid"
    assert res.point == JONES_MS


@pytest.mark.parametrize(
    "hints",
    [
        GeometryHints(polygon=TORNADO_POLYGON),
        GeometryHints(embedded={"type": "Point", "coordinates": [1.0, 2.0]}),
        GeometryHints(explicit=(1.0, 2.0)),
        GeometryHints(zones=[ZoneGeometry(centroid=(1.0, 2.0))]),
    ],
)
def test_precise_tiers_never_jitter(hints, tables, jitter):
    assert not _resolve(hints, tables, jitter).method.endswith("-jitter")


# ── county names ──────────────────────────────────────────────

def test_county_points_variants(tables):
    assert county_points_from_area(tables, "Jones County, MS; Jasper County, MS") == [
        JONES_MS,
        tables.county_center("MS", "Jasper"),
    ]
    assert county_points_from_area(tables, "Jones; Jasper", "MS") == [JONES_MS, tables.county_center("MS", "Jasper")]
    assert county_points_from_area(tables, "Northern Jones County, Mississippi") == [JONES_MS]
    assert county_points_from_area(tables, "St. Johns County, FL") == [tables.county_center("FL", "Saint Johns")]
    assert county_points_from_area(tables, "Orleans Parish, LA")
    # bare names need exactly one known state
    assert county_points_from_area(tables, "Jones; Jasper") == []
