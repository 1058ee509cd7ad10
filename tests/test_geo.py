from __future__ import annotations

import math

import pytest

from alertpoller.core.geo import (
    bbox,
    centroid,
    flatten_geojson_points,
    parse_polygon,
    ring_vertices,
    sanitize_point,
    union_bbox,
)

TORNADO_POLYGON = "34.50,-88.00 34.60,-88.00 34.60,-88.20 34.50,-88.20"


# ── sanitize_point ────────────────────────────────────────────

@pytest.mark.parametrize(
    "lon,lat",
    [(0.0, 91.0), (0.0, -90.5), (math.nan, 10.0), (10.0, math.inf), ("abc", 1.0), (None, 1.0), (True, 1.0)],
)
def test_sanitize_point_rejects(lon, lat):
    assert sanitize_point(lon, lat) is None


@pytest.mark.parametrize(
    "lon,expected",
    [(190.0, -170.0), (-190.0, 170.0), (540.0, 180.0), (-540.0, -180.0), (45.0, 45.0)],
)
def test_sanitize_point_wraps_longitude(lon, expected):
    pt = sanitize_point(lon, 10.0)
    assert pt == (pytest.approx(expected), 10.0)
    assert -180.0 <= pt[0] <= 180.0


@pytest.mark.parametrize("lon", [1e20, -1e20, 1.7e308, 3.6e15 + 7.0])
def test_sanitize_point_wraps_huge_finite_longitude(lon):
    pt = sanitize_point(lon, 10.0)
    assert pt is not None
    assert -180.0 <= pt[0] <= 180.0
    assert pt[1] == 10.0


def test_sanitize_point_accepts_numeric_strings():
    assert sanitize_point("-88.5", "34.25") == (-88.5, 34.25)


# ── polygons ──────────────────────────────────────────────────

def test_parse_polygon_latlon_pairs_closed_ring():
    ring = parse_polygon(TORNADO_POLYGON)
    assert ring is not None
    assert ring[0] == ring[-1]
    assert len(ring) == 5
    # source order is "lat,lon"; ring is GeoJSON (lon, lat)
    assert ring[0] == (-88.0, 34.5)
    assert ring[2] == (-88.2, 34.6)


def test_parse_polygon_lonlat_pairs_detected():
    ring = parse_polygon("-120.1,35.0 -120.2,35.1 -120.3,35.0")
    assert ring[0] == (-120.1, 35.0)
    assert ring[0] == ring[-1]


def test_parse_polygon_huge_longitude_vertices_are_wrapped():
    ring = parse_polygon("1e20,10 1e20,11 1e20,12")
    assert ring is not None
    assert ring[0] == ring[-1]
    assert all(-180.0 <= lon <= 180.0 for lon, _ in ring)
    assert [lat for _, lat in ring] == [10.0, 11.0, 12.0, 10.0]


def test_parse_polygon_flat_numbers():
    ring = parse_polygon("34.5 -88.0 34.6 -88.0 34.6 -88.2")
    assert ring is not None
    assert ring[0] == (-88.0, 34.5)
    assert len(ring) == 4


def test_parse_polygon_already_closed_is_not_closed_twice():
    ring = parse_polygon("34.5,-88.0 34.6,-88.0 34.6,-88.2 34.5,-88.0")
    assert len(ring) == 4


@pytest.mark.parametrize("raw", [None, "", "34.5,-88.0 34.6,-88.0", "a,b c,d e,f", "34.5,-88.0 junk 34.6,-88.0"])
def test_parse_polygon_needs_three_vertices(raw):
    assert parse_polygon(raw) is None


def test_ring_vertices_drops_closing_vertex():
    ring = parse_polygon(TORNADO_POLYGON)
    assert len(ring_vertices(ring)) == 4


# ── centroid / bbox ───────────────────────────────────────────

def test_centroid_of_identical_points_is_that_point():
    c = centroid([(-89.1687, 31.6225)] * 7)
    assert c[0] == pytest.approx(-89.1687, abs=1e-9)
    assert c[1] == pytest.approx(31.6225, abs=1e-9)


def test_centroid_across_antimeridian():
    lon, lat = centroid([(179.0, 0.0), (-179.0, 0.0)])
    assert abs(lon) == pytest.approx(180.0, abs=1e-9)
    assert lat == pytest.approx(0.0, abs=1e-9)


def test_centroid_skips_invalid_points():
    assert centroid([(math.nan, 0.0), (0.0, 95.0), (10.0, 20.0)]) == (pytest.approx(10.0), pytest.approx(20.0))
    assert centroid([]) is None
    assert centroid([(math.nan, 1.0)]) is None


def test_bbox_and_union():
    assert bbox([(-88.0, 34.5), (-88.2, 34.6)]) == (-88.2, 34.5, -88.0, 34.6)
    assert bbox([]) is None
    u = union_bbox([(0.0, 0.0, 1.0, 1.0), None, (math.nan, 0.0, 1.0, 1.0), (-2.0, 0.5, 0.5, 3.0)])
    assert u == (-2.0, 0.0, 1.0, 3.0)
    assert union_bbox([None]) is None


# ── GeoJSON ───────────────────────────────────────────────────

def test_flatten_geojson_all_types():
    geom = {
        "type": "GeometryCollection",
        "geometries": [
            {"type": "Point", "coordinates": [1, 2]},
            {"type": "LineString", "coordinates": [[3, 4], [5, 6]]},
            {"type": "MultiPolygon", "coordinates": [[[[7, 8], [9, 10], [11, 12], [7, 8]]]]},
            {"type": "Polygon", "coordinates": [[[0, "x"], [13, 14]]]},
        ],
    }
    pts = flatten_geojson_points(geom)
    assert pts == [(1.0, 2.0), (3.0, 4.0), (5.0, 6.0), (7.0, 8.0), (9.0, 10.0), (11.0, 12.0), (7.0, 8.0), (13.0, 14.0)]


def test_flatten_geojson_garbage():
    assert flatten_geojson_points(None) == []
    assert flatten_geojson_points({"type": "Point"}) == []
    assert flatten_geojson_points({"type": "Nope", "coordinates": [1, 2]}) == []
