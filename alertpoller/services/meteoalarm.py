# alertpoller/services/meteoalarm.py
"""
Meteoalarm EU weather warnings (legacy RSS or Atom).

Items carry no CAP fields. Severity comes from the warning colour named in
the text, the event from keyword matching, and the location from GeoRSS when
present, otherwise from the country named in the item.
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import timedelta
from typing import List, Optional, Tuple

from alertpoller.core.contracts import Alert, AlertArea, AlertInfo, LonLat, Outcome, PointGeometry
from alertpoller.core.errors import ParseFailure
from alertpoller.core.jitter import hash32
from alertpoller.core.time import parse_datetime_or_now
from alertpoller.services.common import NormalizeContext, clip, record_guard
from alertpoller.services.geometry import GeometryHints, resolve_geometry

FEED = "meteoalarm"

WARNING_TTL = timedelta(hours=24)

_COLOUR_SEVERITY = (
    (re.compile(r"\bred\b"), "Extreme"),
    (re.compile(r"\borange\b"), "Severe"),
    (re.compile(r"\byellow\b"), "Moderate"),
    (re.compile(r"\bgreen\b"), "Minor"),
)

# first match wins
HAZARD_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("Flood", re.compile(r"\b(flood|flash flood|inundat|river)\b", re.IGNORECASE)),
    ("Severe storm", re.compile(r"\b(thunderstorm|severe weather|storm|hail)\b", re.IGNORECASE)),
    ("High wind", re.compile(r"\b(wind|gale|gust)\b", re.IGNORECASE)),
    ("Winter storm", re.compile(r"\b(snow|blizzard|ice|freezing rain|winter storm)\b", re.IGNORECASE)),
    ("Heat", re.compile(r"\b(heat|heatwave|extreme heat)\b", re.IGNORECASE)),
    ("Wildfire", re.compile(r"\b(wild ?fire|forest fire|smoke)\b", re.IGNORECASE)),
    ("Rain", re.compile(r"\b(heavy rain|rainfall)\b", re.IGNORECASE)),
]

DEFAULT_HAZARD = "Weather Warning"


def severity_from_text(text: Optional[str]) -> str:
    s = (text or "").lower()
    for rx, severity in _COLOUR_SEVERITY:
        if rx.search(s):
            return severity
    return "Unknown"


def hazard_from_text(text: Optional[str]) -> str:
    s = text or ""
    for label, rx in HAZARD_PATTERNS:
        if rx.search(s):
            return label
    return DEFAULT_HAZARD


# ──────────────────────────────────────────────────────────────
# XML
# ──────────────────────────────────────────────────────────────

def _localname(tag: str) -> str:
    return tag.split("}", 1)[1] if "}" in tag else tag


def _child_text(el: ET.Element, *names: str) -> str:
    for name in names:
        for c in el:
            if isinstance(c.tag, str) and _localname(c.tag) == name:
                txt = "".join(c.itertext()).strip()
                if txt:
                    return txt
    return ""


def _link(el: ET.Element) -> str:
    for c in el:
        if isinstance(c.tag, str) and _localname(c.tag) == "link":
            href = (c.get("href") or "").strip() or (c.text or "").strip()
            if href:
                return href
    return _child_text(el, "guid")


def parse_feed(content: bytes) -> Tuple[List[ET.Element], bool]:
    """(items, is_atom). RSS <item>s win over Atom <entry>s."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ParseFailure(FEED, f"invalid xml: {e}") from e

    items = [el for el in root.iter() if isinstance(el.tag, str) and _localname(el.tag) == "item"]
    if items:
        return items, False
    entries = [el for el in root.iter() if isinstance(el.tag, str) and _localname(el.tag) == "entry"]
    return entries, True


def parse_georss_point(text: Optional[str]) -> Optional[LonLat]:
    """
    GeoRSS says "lat lon", but some publishers swap the pair; take the first
    value as latitude only when it fits.
    """
    parts = (text or "").replace(",", " ").split()
    if len(parts) < 2:
        return None
    try:
        a, b = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if abs(a) <= 90 and abs(b) <= 180:
        return (b, a)
    return (a, b)


# ──────────────────────────────────────────────────────────────
# Normalizer
# ──────────────────────────────────────────────────────────────

@record_guard(FEED)
def normalize_meteoalarm_item(item: ET.Element, is_atom: bool, ctx: NormalizeContext) -> Outcome:
    title = _child_text(item, "title")
    description = _child_text(item, "description", "summary", "content")
    link = _link(item)
    if not title and not link:
        return Outcome.dropped("empty")

    sent = parse_datetime_or_now(_child_text(item, "pubDate", "published", "updated") or None)
    severity = severity_from_text(f"{title} {description}")
    hazard = hazard_from_text(f"{title}\n{description}")

    reason = ctx.screen(event=title, severity=severity, area_desc=description)
    if reason:
        return Outcome.dropped(reason)

    headline = title or f"{hazard} (Meteoalarm)"
    seed = link or title or f"{sent.isoformat()}|{hash32(headline)}"
    identifier = f"METEOALARM-{hash32(seed)}"

    point = parse_georss_point(_child_text(item, "point"))
    hints = GeometryHints(
        polygon=_child_text(item, "polygon") or None,
        polygon_tag="georss-polygon",
        embedded={"type": "Point", "coordinates": [point[0], point[1]]} if point else None,
        embedded_tag="georss-point" if point else None,
        states=[],
        country_text=f"{title} {description} {link}",
    )
    located = resolve_geometry(hints, identifier=identifier, tables=ctx.tables, jitter=ctx.jitter)
    if located is None:
        return Outcome.dropped("no-geometry")

    alert = Alert(
        identifier=identifier,
        sender="Meteoalarm",
        sent=sent,
        info=AlertInfo(
            category="Met",
            event=hazard,
            severity=severity,
            headline=headline,
            description=description or headline,
        ),
        area=AlertArea(areaDesc="", polygon=hints.polygon),
        geometry=PointGeometry.from_lonlat(located.point),
        geometryMethod=located.method,
        bbox=list(located.bbox) if located.bbox else None,
        title=headline,
        summary=clip(description),
        source="Meteoalarm",
        timestamp=ctx.now,
        expires=sent + WARNING_TTL,
        details={"link": link, "isAtom": bool(is_atom)},
    )
    return Outcome.ok(alert)
