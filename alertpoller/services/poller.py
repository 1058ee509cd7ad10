# alertpoller/services/poller.py
"""
One poll cycle over every enabled feed.

  sweep expired / aged-out documents
  → NWS (zone prefetch, then normalize)
  → GDACS → Meteoalarm → CAP feeds (FEMA IPAWS, USGS)
  → upsert survivors, one FeedReport per feed

A feed that cannot be fetched or parsed is reported and skipped; the cycle
always reaches the remaining feeds.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx

from alertpoller.core.alerts_db import AlertStore
from alertpoller.core.contracts import Alert, FeedReport, Outcome, PollReport
from alertpoller.core.errors import FetchFailure, ParseFailure
from alertpoller.core.reference import ReferenceTables, load_reference_tables
from alertpoller.core.settings import Settings, settings as default_settings
from alertpoller.core.time import utc_now, utc_now_iso
from alertpoller.services.cap import CapFeed, normalize_cap_entry, parse_cap_document
from alertpoller.services.common import NormalizeContext
from alertpoller.services.gdacs import normalize_gdacs_feature, parse_event_list
from alertpoller.services.geometry import JitterPolicy
from alertpoller.services.meteoalarm import normalize_meteoalarm_item, parse_feed
from alertpoller.services.nws import normalize_nws_feature, parse_feature_collection, zone_refs_for_prefetch
from alertpoller.services.zones import ZoneGeometryResolver

logger = logging.getLogger(__name__)

_FEED_ERRORS = (FetchFailure, ParseFailure, httpx.HTTPError, ET.ParseError, ValueError)


class AlertPoller:
    def __init__(
        self,
        store: AlertStore,
        settings: Optional[Settings] = None,
        tables: Optional[ReferenceTables] = None,
        zones: Optional[ZoneGeometryResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.tables = tables if tables is not None else load_reference_tables(self.settings.data_dir)
        # the zone cache lives on the poller so it survives across cycles
        self.zones = zones or ZoneGeometryResolver.from_settings(self.settings)
        self.jitter = JitterPolicy.from_settings(self.settings)
        self._transport = transport

    def cap_feeds(self) -> List[CapFeed]:
        s = self.settings
        feeds: List[CapFeed] = []
        if s.fema_enabled:
            feeds.append(CapFeed(name="fema", source="FEMA", url=s.fema_ipaws_url))
        if s.usgs_enabled:
            feeds.append(CapFeed(name="usgs", source="USGS", url=s.usgs_quakes_url, seismic=True))
        return feeds

    # ──────────────────────────────────────────────────────────────
    # Cycle
    # ──────────────────────────────────────────────────────────────

    def sweep(self, report: PollReport) -> None:
        """Best-effort cleanup; a store error is recorded on the report and the cycle goes on."""
        now = utc_now()
        try:
            report.expired_deleted = self.store.delete_expired(now)
            report.aged_out_deleted = self.store.delete_older_than(now - timedelta(hours=self.settings.max_age_hours))
        except Exception as e:
            report.sweep_error = f"{e.__class__.__name__}: {e}"
            logger.warning("sweep failed err=%s", report.sweep_error)
            return
        logger.info(
            "sweep done expired=%d aged_out=%d",
            report.expired_deleted,
            report.aged_out_deleted,
        )

    async def poll(self) -> PollReport:
        report = PollReport(started_at=utc_now_iso())
        self.sweep(report)

        s = self.settings
        async with httpx.AsyncClient(
            timeout=s.poll_timeout_s,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            ctx = NormalizeContext(
                settings=s,
                tables=self.tables,
                jitter=self.jitter,
                zones=self.zones,
                client=client,
            )

            if s.nws_enabled:
                report.feeds.append(await self._run_feed("nws", "NWS", self._poll_nws(client, ctx)))
            if s.gdacs_enabled:
                report.feeds.append(await self._run_feed("gdacs", "GDACS", self._poll_gdacs(client, ctx)))
            if s.meteoalarm_enabled:
                report.feeds.append(
                    await self._run_feed("meteoalarm", "Meteoalarm", self._poll_meteoalarm(client, ctx))
                )
            for feed in self.cap_feeds():
                report.feeds.append(await self._run_feed(feed.name, feed.source, self._poll_cap(client, ctx, feed)))

        report.finished_at = utc_now_iso()
        logger.info(
            "poll cycle done feeds=%d saved=%d started=%s finished=%s",
            len(report.feeds),
            report.saved,
            report.started_at,
            report.finished_at,
        )
        return report

    async def _run_feed(self, name: str, source: str, work) -> FeedReport:
        fr = FeedReport(feed=name, source=source)
        try:
            outcomes = await work
        except _FEED_ERRORS as e:
            fr.error = str(e) or e.__class__.__name__
            logger.warning("feed failed feed=%s err=%s", name, fr.error)
            return fr
        try:
            self._persist(fr, outcomes)
        except Exception as e:
            fr.error = f"store {e.__class__.__name__}: {e}"
            logger.warning("feed save failed feed=%s err=%s", name, fr.error)
        return fr

    def _persist(self, fr: FeedReport, outcomes: "_Outcomes") -> None:
        fr.raw = outcomes.raw
        alerts: List[Alert] = []
        for o in outcomes.items:
            if o.alert is None:
                fr.count_drop(o.reason or "empty")
                continue
            alerts.append(o.alert)
        fr.normalized = len(alerts)

        saved = self.store.save_alerts(alerts)
        fr.saved, fr.skipped = saved.saved, saved.skipped
        logger.info(
            "feed done feed=%s raw=%d normalized=%d saved=%d skipped=%d dropped=%s",
            fr.feed,
            fr.raw,
            fr.normalized,
            fr.saved,
            fr.skipped,
            fr.dropped,
        )

    # ──────────────────────────────────────────────────────────────
    # Feeds
    # ──────────────────────────────────────────────────────────────

    async def _get(
        self,
        client: httpx.AsyncClient,
        feed: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        try:
            r = await client.get(url, headers=headers, params=params)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchFailure(feed, f"http {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchFailure(feed, f"{e.__class__.__name__}: {e}") from e
        return r.content

    async def _poll_nws(self, client: httpx.AsyncClient, ctx: NormalizeContext) -> "_Outcomes":
        s = self.settings
        content = await self._get(
            client,
            "nws",
            s.noaa_alerts_url,
            headers={"User-Agent": s.noaa_user_agent, "Accept": "application/geo+json"},
        )
        features = parse_feature_collection(content)

        refs = zone_refs_for_prefetch(features, skip_minor=s.skip_minor)
        if refs:
            await self.zones.prefetch_all(client, refs, limit=s.noaa_zone_concurrency)

        out = _Outcomes(raw=len(features))
        for f in features:
            out.items.append(await normalize_nws_feature(f, ctx))
        return out

    async def _poll_gdacs(self, client: httpx.AsyncClient, ctx: NormalizeContext) -> "_Outcomes":
        s = self.settings
        params = {"eventtypes": ",".join(s.gdacs_eventtype_list)} if s.gdacs_eventtype_list else None
        content = await self._get(client, "gdacs", s.gdacs_events_url, params=params)
        features = parse_event_list(content)

        out = _Outcomes(raw=len(features))
        for f in features:
            out.items.append(normalize_gdacs_feature(f, ctx))
            if out.capped(s.gdacs_max_save):
                break
        return out

    async def _poll_meteoalarm(self, client: httpx.AsyncClient, ctx: NormalizeContext) -> "_Outcomes":
        s = self.settings
        content = await self._get(client, "meteoalarm", s.meteoalarm_feed_url)
        items, is_atom = parse_feed(content)

        out = _Outcomes(raw=len(items))
        for it in items:
            out.items.append(normalize_meteoalarm_item(it, is_atom, ctx))
            if out.capped(s.meteoalarm_max_save):
                break
        return out

    async def _poll_cap(self, client: httpx.AsyncClient, ctx: NormalizeContext, feed: CapFeed) -> "_Outcomes":
        content = await self._get(client, feed.name, feed.url)
        entries = parse_cap_document(content, feed.name)

        out = _Outcomes(raw=len(entries))
        for e in entries:
            out.items.append(await normalize_cap_entry(e, feed, ctx))
        return out


class _Outcomes:
    __slots__ = ("raw", "items")

    def __init__(self, raw: int = 0):
        self.raw = raw
        self.items: List[Outcome] = []

    def capped(self, max_save: int) -> bool:
        """True once `max_save` alerts were kept; 0 means no cap."""
        if max_save <= 0:
            return False
        return sum(1 for o in self.items if o.alert is not None) >= max_save
