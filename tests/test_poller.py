from __future__ import annotations

import sqlite3
from datetime import timedelta
from typing import Dict

import httpx
import pytest

from alertpoller.core.jitter import flat_distance_miles
from alertpoller.core.settings import Settings
from alertpoller.services.poller import AlertPoller

from samples import (
    cap_alert,
    cap_feed,
    gdacs_collection,
    gdacs_feature,
    meteo_item,
    meteo_rss,
    nws_collection,
    nws_feature,
    usgs_entry,
    usgs_feed,
    zone_body,
)

JONES_MS = (-89.1687, 31.6225)


def _settings(**overrides) -> Settings:
    base = dict(
        alerts_db_path=":memory:",
        alerts_database_url=None,
        noaa_alerts_url="https://nws.test/alerts/active",
        noaa_api_base="https://nws.test",
        fema_ipaws_url="https://fema.test/IPAWSOpenCAP.xml",
        usgs_quakes_url="https://usgs.test/all_hour.atom",
        gdacs_events_url="https://gdacs.test/geteventlist/MAP",
        meteoalarm_feed_url="https://meteo.test/rss",
    )
    base.update(overrides)
    return Settings(**base)


def _payloads() -> Dict[str, bytes]:
    return {
        "nws.test/alerts/active": nws_collection(
            [
                nws_feature("urn:nws:zone", zones=["OKZ025"], ugc=["OKZ025"]),
                nws_feature("urn:nws:county", area="Jones County, MS"),
                nws_feature("urn:nws:marine", event="Small Craft Advisory", ugc=["GMZ550"]),
                nws_feature("urn:nws:minor", severity="Minor", zones=["OKZ026"]),
            ]
        ),
        "nws.test/zones/forecast/OKZ025": zone_body(-97.5, 35.0),
        "fema.test/IPAWSOpenCAP.xml": cap_feed(
            cap_alert("IPAWS-A"),
            cap_alert("IPAWS-D", event="Small Craft Advisory", area="Coastal waters from Pascagoula"),
        ),
        "usgs.test/all_hour.atom": usgs_feed(usgs_entry("40000001", "M 6.2 - 10km SW of Ridgecrest, CA")),
        "gdacs.test/geteventlist/MAP": gdacs_collection([gdacs_feature(1001), gdacs_feature(1002, level="Red")]),
        "meteo.test/rss": meteo_rss(
            meteo_item("Orange wind warning for Germany", "Severe gusts", "https://meteoalarm.org/de/1")
        ),
    }


class Router:
    """MockTransport handler serving fixed payloads by host + path."""

    def __init__(self, payloads: Dict[str, bytes], failures: Dict[str, int] = None):
        self.payloads = payloads
        self.failures = failures or {}
        self.hits: Dict[str, int] = {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = f"{request.url.host}{request.url.path}"
        self.hits[key] = self.hits.get(key, 0) + 1
        self.requests.append(request)
        if key in self.failures:
            return httpx.Response(self.failures[key])
        body = self.payloads.get(key)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)


@pytest.mark.asyncio
async def test_full_cycle(store):
    router = Router(_payloads())
    poller = AlertPoller(store, settings=_settings(), transport=httpx.MockTransport(router))

    report = await poller.poll()

    assert [f.feed for f in report.feeds] == ["nws", "gdacs", "meteoalarm", "fema", "usgs"]
    assert all(f.error is None for f in report.feeds)
    by_feed = {f.feed: f for f in report.feeds}

    nws = by_feed["nws"]
    assert (nws.raw, nws.normalized, nws.saved) == (4, 2, 2)
    assert nws.dropped == {"marine": 1, "minor": 1}
    # minor alerts are not worth a zone lookup
    assert "nws.test/zones/forecast/OKZ026" not in router.hits

    assert store.get("urn:nws:zone").geometryMethod == "zone-centroid"

    # county fallback, jittered inside the county annulus
    county = store.get("urn:nws:county")
    assert county.geometryMethod == "county-centroid-jitter"
    assert 0.5 - 1e-6 <= flat_distance_miles(JONES_MS, tuple(county.geometry.coordinates)) <= 2.0 + 1e-6

    # polygon alert keeps the spherical centroid without jitter
    tornado = store.get("IPAWS-A")
    assert tornado.geometryMethod == "polygon"
    assert tornado.info.event == "Tornado Warning"

    # Small Craft Advisory never stored
    assert store.get("IPAWS-D") is None
    assert by_feed["fema"].dropped == {"marine": 1}

    quake = store.get("urn:earthquake-usgs-gov:ci:40000001")
    assert quake.info.severity == "Severe"
    assert quake.expires == quake.sent + timedelta(hours=3)

    assert store.get("GDACS-1002").info.severity == "Extreme"
    assert by_feed["meteoalarm"].saved == 1
    assert report.saved == store.count() == 7

    gdacs_req = next(r for r in router.requests if r.url.host == "gdacs.test")
    assert gdacs_req.url.params["eventtypes"] == "EQ,TC,FL,VO"
    nws_req = next(r for r in router.requests if r.url.path == "/alerts/active")
    assert nws_req.headers["User-Agent"] == poller.settings.noaa_user_agent


@pytest.mark.asyncio
async def test_repoll_is_idempotent_and_reuses_zone_cache(store):
    router = Router(_payloads())
    poller = AlertPoller(store, settings=_settings(), transport=httpx.MockTransport(router))

    await poller.poll()
    first = {i: store.get(i).geometry.coordinates for i in ("urn:nws:county", "IPAWS-A")}
    count = store.count()

    await poller.poll()

    assert store.count() == count
    assert router.hits["nws.test/zones/forecast/OKZ025"] == 1
    assert {i: store.get(i).geometry.coordinates for i in first} == first


@pytest.mark.asyncio
async def test_failed_feeds_do_not_stop_the_cycle(store):
    payloads = _payloads()
    payloads["fema.test/IPAWSOpenCAP.xml"] = b"<alerts><alert>"
    router = Router(payloads, failures={"meteo.test/rss": 503, "nws.test/alerts/active": 500})
    poller = AlertPoller(store, settings=_settings(), transport=httpx.MockTransport(router))

    report = await poller.poll()
    by_feed = {f.feed: f for f in report.feeds}

    assert "503" in by_feed["meteoalarm"].error
    assert "500" in by_feed["nws"].error
    assert "invalid xml" in by_feed["fema"].error
    assert by_feed["fema"].saved == 0
    assert by_feed["gdacs"].saved == 2
    assert by_feed["usgs"].saved == 1


@pytest.mark.asyncio
async def test_network_error_reported(store):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    poller = AlertPoller(
        store,
        settings=_settings(gdacs_enabled=False, meteoalarm_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(handler),
    )
    report = await poller.poll()
    assert len(report.feeds) == 1
    assert "ConnectError" in report.feeds[0].error


@pytest.mark.asyncio
async def test_sweep_runs_before_feeds(store, make_alert):
    store.upsert(make_alert("EXPIRED", expires_in=None))
    store.upsert(make_alert("ANCIENT", sent_ago=timedelta(hours=80), expires_in=timedelta(days=3)))
    store.upsert(make_alert("CURRENT"))

    router = Router({})
    poller = AlertPoller(
        store,
        settings=_settings(nws_enabled=False, gdacs_enabled=False, meteoalarm_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(router),
    )
    report = await poller.poll()

    assert (report.expired_deleted, report.aged_out_deleted) == (1, 1)
    assert report.feeds == []
    assert router.hits == {}
    assert store.get("CURRENT") is not None


@pytest.mark.asyncio
async def test_max_save_caps_global_feeds(store):
    payloads = _payloads()
    payloads["gdacs.test/geteventlist/MAP"] = gdacs_collection(
        [gdacs_feature(2001, level="Green"), gdacs_feature(2002), gdacs_feature(2003), gdacs_feature(2004)]
    )
    poller = AlertPoller(
        store,
        settings=_settings(gdacs_max_save=2, nws_enabled=False, meteoalarm_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(Router(payloads)),
    )
    report = await poller.poll()

    gdacs = report.feeds[0]
    assert gdacs.normalized == 2
    assert gdacs.dropped == {"minor": 1}
    assert store.get("GDACS-2004") is None


@pytest.mark.asyncio
async def test_minor_alerts_kept_when_filter_off(store):
    router = Router(_payloads())
    poller = AlertPoller(
        store,
        settings=_settings(skip_minor=False, gdacs_enabled=False, meteoalarm_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(router),
    )
    await poller.poll()

    assert store.get("urn:nws:minor") is not None
    # marine stays out either way
    assert store.get("urn:nws:marine") is None


@pytest.mark.asyncio
async def test_sweep_failure_does_not_stop_the_cycle(store, monkeypatch):
    def locked(now):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "delete_expired", locked)
    poller = AlertPoller(
        store,
        settings=_settings(nws_enabled=False, meteoalarm_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(Router(_payloads())),
    )
    report = await poller.poll()

    assert "database is locked" in report.sweep_error
    assert report.expired_deleted == 0
    assert [f.feed for f in report.feeds] == ["gdacs"]
    assert report.saved == store.count() == 2


@pytest.mark.asyncio
async def test_store_failure_is_reported_per_feed(store, monkeypatch):
    real_save = store.save_alerts
    calls = []

    def flaky_save(alerts):
        calls.append(len(alerts))
        if len(calls) == 1:
            raise sqlite3.OperationalError("disk I/O error")
        return real_save(alerts)

    monkeypatch.setattr(store, "save_alerts", flaky_save)
    poller = AlertPoller(
        store,
        settings=_settings(nws_enabled=False, fema_enabled=False, usgs_enabled=False),
        transport=httpx.MockTransport(Router(_payloads())),
    )
    report = await poller.poll()

    gdacs, meteo = report.feeds
    assert gdacs.feed == "gdacs" and "disk I/O error" in gdacs.error
    assert gdacs.saved == 0
    assert meteo.error is None and meteo.saved == 1
    assert store.count() == 1
