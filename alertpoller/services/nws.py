# alertpoller/services/nws.py
"""
NWS active alerts (api.weather.gov/alerts/active).

GeoJSON FeatureCollection. Many features ship without geometry and only list
affected zones, so this feed is the one that drives zone prefetching.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import orjson

from alertpoller.core.contracts import Alert, AlertArea, AlertInfo, Outcome, PointGeometry, ZoneRef
from alertpoller.core.errors import ParseFailure
from alertpoller.core.keying import fallback_identifier
from alertpoller.core.reference import STATE_CENTERS, extract_state_abbrs
from alertpoller.core.time import expires_or_default, parse_datetime_or_now
from alertpoller.services.common import NormalizeContext, clean_html, clip, first_text, record_guard, squash
from alertpoller.services.geometry import GeometryHints, resolve_geometry
from alertpoller.services.policy import is_minor
from alertpoller.services.zones import extract_zone_refs, ugc_codes

FEED = "nws"

_SENDER_STATE_RE = re.compile(r"\b([A-Z]{2})\b\s*$")


def parse_feature_collection(content: bytes) -> List[Dict[str, Any]]:
    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError as e:
        raise ParseFailure(FEED, f"invalid json: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure(FEED, "payload is not an object")
    feats = data.get("features")
    if feats is None:
        return []
    if not isinstance(feats, list):
        raise ParseFailure(FEED, "features is not a list")
    return feats


def infer_states(props: Dict[str, Any]) -> List[str]:
    """States from zone/UGC prefixes, a trailing code on the sender name, and the area text."""
    seen: Dict[str, None] = {}

    for code in ugc_codes(props):
        abbr = code[:2].upper()
        if len(code) >= 2 and abbr in STATE_CENTERS:
            seen.setdefault(abbr, None)

    sender = str(props.get("senderName") or props.get("sender") or "")
    m = _SENDER_STATE_RE.search(sender)
    if m and m.group(1) in STATE_CENTERS:
        seen.setdefault(m.group(1), None)

    for abbr in extract_state_abbrs(str(props.get("areaDesc") or "")):
        seen.setdefault(abbr, None)

    return list(seen)


def _tail(v: Any) -> Optional[str]:
    if not isinstance(v, str) or not v.strip():
        return None
    return v.rstrip("/").rsplit("/", 1)[-1] if "/" in v else v


def nws_identifier(feature: Dict[str, Any], props: Dict[str, Any]) -> Optional[str]:
    return first_text(props.get("id"), _tail(props.get("@id")), _tail(feature.get("id"))) or None


def zone_refs_for_prefetch(features: List[Dict[str, Any]], *, skip_minor: bool) -> List[ZoneRef]:
    """Distinct non-marine zones of features that will need them (no geometry, not skipped as minor)."""
    uniq: Dict[str, ZoneRef] = {}
    for f in features:
        if not isinstance(f, dict):
            continue
        props = f.get("properties") or {}
        if GeometryHints(embedded=f.get("geometry")).has_direct_geometry():
            continue
        if skip_minor and is_minor(props.get("severity")):
            continue
        for ref in extract_zone_refs(props):
            if ref.kind != "marine":
                uniq.setdefault(ref.key, ref)
    return list(uniq.values())


@record_guard(FEED)
async def normalize_nws_feature(feature: Any, ctx: NormalizeContext) -> Outcome:
    if not isinstance(feature, dict):
        return Outcome.dropped("empty")

    props = feature.get("properties") or {}
    area_desc = str(props.get("areaDesc") or "")
    event = squash(props.get("event"))

    reason = ctx.screen(
        event=event,
        severity=props.get("severity"),
        area_desc=area_desc,
        ugc_codes=ugc_codes(props),
    )
    if reason:
        return Outcome.dropped(reason)

    identifier = nws_identifier(feature, props) or fallback_identifier("NWS", feature)

    geom = feature.get("geometry") if isinstance(feature.get("geometry"), dict) else None
    hints = GeometryHints(
        embedded=geom,
        embedded_tag=f"nws-geom-{str(geom.get('type') or 'geom').lower()}" if geom else None,
        area_desc=area_desc,
        states=infer_states(props),
    )
    if not hints.has_direct_geometry() and ctx.zones is not None and ctx.client is not None:
        hints.zones = await ctx.zones.resolve_all(ctx.client, extract_zone_refs(props))

    located = resolve_geometry(hints, identifier=identifier, tables=ctx.tables, jitter=ctx.jitter)
    if located is None:
        return Outcome.dropped("no-geometry")

    headline = first_text(props.get("headline"), event, "Alert")
    description = clean_html(props.get("description"))

    alert = Alert(
        identifier=identifier,
        sender=first_text(props.get("senderName"), "NWS"),
        sent=parse_datetime_or_now(
            props.get("sent") or props.get("effective") or props.get("onset") or props.get("updated")
        ),
        status=first_text(props.get("status"), "Actual"),
        msgType=first_text(props.get("messageType"), props.get("message_type"), "Alert"),
        scope=first_text(props.get("scope"), "Public"),
        info=AlertInfo(
            category=first_text(props.get("category"), "Met"),
            event=event or "Alert",
            urgency=first_text(props.get("urgency"), "Unknown"),
            severity=first_text(props.get("severity"), "Unknown"),
            certainty=first_text(props.get("certainty"), "Unknown"),
            headline=headline,
            description=description,
            instruction=clean_html(props.get("instruction")),
        ),
        area=AlertArea(areaDesc=area_desc, polygon=None),
        geometry=PointGeometry.from_lonlat(located.point),
        geometryMethod=located.method,
        bbox=list(located.bbox) if located.bbox else None,
        title=headline,
        summary=clip(description),
        source="NWS",
        timestamp=ctx.now,
        expires=expires_or_default(
            props.get("expires") or props.get("ends"),
            minutes=ctx.settings.default_ttl_minutes,
        ),
    )
    return Outcome.ok(alert)
