# alertpoller/services/gdacs.py
"""
GDACS global disaster events (geteventlist/MAP, GeoJSON).

Event types EQ/TC/FL/VO; the colour alert level stands in for CAP severity.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List

import orjson

from alertpoller.core.contracts import Alert, AlertArea, AlertInfo, Outcome, PointGeometry
from alertpoller.core.errors import ParseFailure
from alertpoller.core.time import parse_datetime, parse_datetime_or_now
from alertpoller.services.common import NormalizeContext, clean_html, clip, first_text, record_guard
from alertpoller.services.geometry import GeometryHints, resolve_geometry

FEED = "gdacs"

EVENT_TTL = timedelta(hours=24)

GDACS_TYPE_TO_EVENT: Dict[str, str] = {
    "EQ": "Earthquake",
    "TC": "Tropical Cyclone",
    "FL": "Flood",
    "VO": "Volcano",
}

GDACS_LEVEL_TO_SEVERITY: Dict[str, str] = {
    "red": "Extreme",
    "orange": "Severe",
    "yellow": "Moderate",
    "green": "Minor",
}


def category_for_type(event_type: str) -> str:
    t = (event_type or "").upper()
    if t in ("EQ", "VO"):
        return "Geo"
    if t in ("TC", "FL"):
        return "Met"
    return "General"


def severity_for_level(level: Any) -> str:
    return GDACS_LEVEL_TO_SEVERITY.get(str(level or "").strip().lower(), "Unknown")


def parse_event_list(content: bytes) -> List[Dict[str, Any]]:
    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise ParseFailure(FEED, f"invalid json: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure(FEED, "payload is not an object")
    feats = data.get("features") or []
    return feats if isinstance(feats, list) else []


def _pick(props: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        v = props.get(k)
        if v not in (None, ""):
            return v
    return None


@record_guard(FEED)
def normalize_gdacs_feature(feature: Any, ctx: NormalizeContext) -> Outcome:
    if not isinstance(feature, dict):
        return Outcome.dropped("empty")

    props = feature.get("properties") or {}
    event_id = _pick(props, "eventid", "eventId", "id")
    if event_id is None:
        event_id = feature.get("id")
    if event_id in (None, ""):
        return Outcome.dropped("no-identifier")

    event_type = str(_pick(props, "eventtype", "eventType", "event_type") or "").strip().upper()
    event = GDACS_TYPE_TO_EVENT.get(event_type, "Disaster Event")
    level = str(_pick(props, "alertlevel", "alertLevel", "alert_level", "level") or "").strip()
    severity = severity_for_level(level)
    area_desc = first_text(_pick(props, "country", "countries", "region", "location", "where"))

    reason = ctx.screen(event=event, severity=severity, area_desc="")
    if reason:
        return Outcome.dropped(reason)

    sent = parse_datetime_or_now(_pick(props, "fromdate", "fromDate", "date", "published", "updated"))
    cutoff = ctx.now - timedelta(hours=ctx.settings.gdacs_lookback_hours)
    if sent < cutoff:
        return Outcome.dropped("stale")

    identifier = f"GDACS-{event_id}"
    geom = feature.get("geometry") if isinstance(feature.get("geometry"), dict) else None
    hints = GeometryHints(
        embedded=geom,
        embedded_tag=f"gdacs-{str(geom.get('type') or 'geojson').lower()}" if geom else None,
        area_desc=area_desc,
        states=[],
        country_text=area_desc,
    )
    located = resolve_geometry(hints, identifier=identifier, tables=ctx.tables, jitter=ctx.jitter)
    if located is None:
        return Outcome.dropped("no-geometry")

    end = parse_datetime(_pick(props, "todate", "toDate", "enddate", "endDate"))
    expires = end or (sent + EVENT_TTL)

    url = first_text(_pick(props, "url", "link", "details") if not isinstance(props.get("url"), dict) else None)
    if isinstance(props.get("url"), dict):
        url = first_text(props["url"].get("report"), props["url"].get("details"))

    headline = first_text(_pick(props, "name", "title", "eventname", "eventName"), f"{event} (GDACS)")
    description = clean_html(_pick(props, "description", "summary", "htmldescription"))

    alert = Alert(
        identifier=identifier,
        sender="GDACS",
        sent=sent,
        info=AlertInfo(
            category=category_for_type(event_type),
            event=event,
            severity=severity,
            headline=headline,
            description=description or url,
        ),
        area=AlertArea(areaDesc=area_desc, polygon=None),
        geometry=PointGeometry.from_lonlat(located.point),
        geometryMethod=located.method,
        bbox=list(located.bbox) if located.bbox else None,
        title=headline,
        summary=clip(description),
        source="GDACS",
        timestamp=ctx.now,
        expires=expires,
        details={
            "eventId": str(event_id),
            "eventType": event_type,
            "alertLevel": level,
            "url": url,
        },
    )
    return Outcome.ok(alert)
