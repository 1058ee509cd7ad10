# alertpoller/services/cap.py
"""
CAP-style XML feeds.

  - FEMA IPAWS open feed: a list of CAP 1.2 <alert> documents
  - USGS earthquake Atom: <entry> elements with georss:point and a magnitude
    in the title (feeds flagged `seismic`)

CAP blocks are singleton-or-list (several <info>, several <area>, any number
of <geocode>); `CapRecord` flattens that once so the normalizer only sees
"first info", "first area", "all geocodes".
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from alertpoller.core.contracts import Alert, AlertArea, AlertInfo, LonLat, Outcome, PointGeometry
from alertpoller.core.errors import ParseFailure
from alertpoller.core.geo import parse_polygon
from alertpoller.core.keying import fallback_identifier
from alertpoller.core.time import expires_or_default, parse_datetime_or_now
from alertpoller.services.common import NormalizeContext, clean_html, clip, first_text, record_guard, squash
from alertpoller.services.geometry import GeometryHints, resolve_geometry
from alertpoller.services.policy import is_minor
from alertpoller.services.zones import expand_ugc, parse_zone_ref


@dataclass(frozen=True)
class CapFeed:
    name: str           # "fema" | "usgs"
    source: str         # Alert.source code
    url: str
    seismic: bool = False


# ──────────────────────────────────────────────────────────────
# XML helpers
# ──────────────────────────────────────────────────────────────

def _localname(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    # prefixed names left unresolved by the parser ("cap:info")
    return tag.split(":", 1)[1] if ":" in tag else tag


def _children(el: Optional[ET.Element], name: str) -> List[ET.Element]:
    if el is None:
        return []
    return [c for c in el if isinstance(c.tag, str) and _localname(c.tag) == name]


def _child_text(el: Optional[ET.Element], name: str) -> Optional[str]:
    for c in _children(el, name):
        txt = (c.text or "").strip()
        if txt:
            return txt
    return None


def parse_cap_document(content: bytes, feed: str) -> List[ET.Element]:
    """Alert/entry elements of a CAP document, CAP list, or Atom feed."""
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ParseFailure(feed, f"invalid xml: {e}") from e

    if _localname(root.tag) == "alert":
        return [root]

    entries = [el for el in root.iter() if isinstance(el.tag, str) and _localname(el.tag) == "entry"]
    if entries:
        return entries
    return [el for el in root.iter() if isinstance(el.tag, str) and _localname(el.tag) == "alert"]


# ──────────────────────────────────────────────────────────────
# Shape adapter
# ──────────────────────────────────────────────────────────────

class CapRecord:
    """One feed entry with its CAP blocks reduced to first-of-each."""

    def __init__(self, entry: ET.Element):
        self.entry = entry
        self.root = self._alert_root(entry)

        infos = _children(self.root, "info")
        self.info: Optional[ET.Element] = infos[0] if infos else None

        areas = _children(self.info, "area")
        self.area: Optional[ET.Element] = areas[0] if areas else None

    @staticmethod
    def _alert_root(entry: ET.Element) -> ET.Element:
        if _localname(entry.tag) == "alert":
            return entry
        for c in _children(entry, "alert"):
            return c
        for content in _children(entry, "content"):
            for c in _children(content, "alert"):
                return c
        return entry

    def _scope(self, name: str) -> Optional[ET.Element]:
        return {"area": self.area, "info": self.info, "root": self.root, "entry": self.entry}[name]

    def text(self, name: str, *scopes: str) -> Optional[str]:
        """First non-empty <name> child across the given scopes, in order."""
        for s in scopes or ("area", "info", "root", "entry"):
            v = _child_text(self._scope(s), name)
            if v:
                return v
        return None

    def geocodes(self) -> List[Tuple[str, str]]:
        """(valueName, value) pairs from the first area, else from info."""
        blocks = _children(self.area, "geocode") or _children(self.info, "geocode")
        out: List[Tuple[str, str]] = []
        for gc in blocks:
            name = _child_text(gc, "valueName") or gc.get("valueName") or ""
            value = _child_text(gc, "value") or gc.get("value") or ""
            if name and value:
                out.append((name, value))
        return out

    def polygons(self) -> List[str]:
        out: List[str] = []
        for scope in (self.area, self.info, self.root):
            for p in _children(scope, "polygon"):
                txt = (p.text or "").strip()
                if txt:
                    out.append(txt)
        return out

    def link(self) -> Optional[str]:
        for l in _children(self.entry, "link"):
            href = l.get("href") or (l.text or "").strip()
            if href:
                return href
        return self.text("web", "info")


# ──────────────────────────────────────────────────────────────
# Field extraction
# ──────────────────────────────────────────────────────────────

def _fips5(code: str) -> Optional[str]:
    """SAME / FIPS6 ("028067") and FIPS5 ("28067") → "28067"."""
    c = code.strip()
    if not c.isdigit():
        return None
    if len(c) == 6:
        return c[1:]
    if len(c) == 5:
        return c
    return None


def split_geocodes(pairs: List[Tuple[str, str]]) -> Tuple[List[str], List[str]]:
    """(county FIPS codes, expanded UGC codes)."""
    fips: List[str] = []
    ugc: List[str] = []
    for name, value in pairs:
        codes = value.split()
        if re.search(r"FIPS|SAME", name, re.IGNORECASE):
            fips.extend(c for c in (_fips5(x) for x in codes) if c)
        if re.search(r"UGC", name, re.IGNORECASE):
            for c in codes:
                ugc.extend(expand_ugc(c))
    return fips, ugc


def _georss_point(text: Optional[str]) -> Optional[LonLat]:
    """georss:point is "lat lon"."""
    if not text:
        return None
    parts = text.split()
    if len(parts) < 2:
        return None
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    return (lon, lat)


def _explicit_latlon(rec: CapRecord) -> Optional[LonLat]:
    lat = rec.text("lat", "info", "area", "root")
    lon = rec.text("lon", "info", "area", "root")
    if lat is None or lon is None:
        return None
    try:
        return (float(lon), float(lat))
    except ValueError:
        return None


def _event_name(rec: CapRecord) -> str:
    ev = rec.text("event", "info", "root")
    if ev:
        return squash(ev)
    for name in ("title", "summary"):
        t = rec.text(name, "root", "entry")
        if t:
            return squash(t.split(" issued")[0])
    return "Alert"


# ──────────────────────────────────────────────────────────────
# Seismic remap
# ──────────────────────────────────────────────────────────────

_MAGNITUDE_RE = re.compile(r"M\s?(\d+\.\d+)")


@dataclass(frozen=True)
class SeismicGrade:
    severity: str
    event: str
    ttl: timedelta
    magnitude: Optional[float]


def grade_quake(title: Optional[str]) -> SeismicGrade:
    m = _MAGNITUDE_RE.search(title or "")
    if not m:
        return SeismicGrade("Minor", "Seismic Activity", timedelta(minutes=10), None)

    mag = float(m.group(1))
    label = f"M {mag:g}"
    if mag < 3.0:
        return SeismicGrade("Minor", f"Seismic Activity ({label})", timedelta(minutes=10), mag)
    if mag < 5.0:
        return SeismicGrade("Moderate", f"Minor Earthquake ({label})", timedelta(hours=1), mag)
    if mag < 7.0:
        return SeismicGrade("Severe", f"Earthquake ({label})", timedelta(hours=3), mag)
    return SeismicGrade("Extreme", f"Major Earthquake ({label})", timedelta(hours=6), mag)


# ──────────────────────────────────────────────────────────────
# Normalizer
# ──────────────────────────────────────────────────────────────

@record_guard("cap")
async def normalize_cap_entry(entry: ET.Element, feed: CapFeed, ctx: NormalizeContext) -> Outcome:
    rec = CapRecord(entry)

    area_desc = rec.text("areaDesc", "area", "info", "root") or ""
    event = _event_name(rec)
    fips_codes, ugc = split_geocodes(rec.geocodes())
    severity = rec.text("severity", "info") or "Unknown"

    reason = ctx.screen(event=event, severity=severity, area_desc=area_desc, ugc_codes=ugc)
    if reason:
        return Outcome.dropped(reason)

    identifier = (
        rec.text("identifier", "root")
        or rec.text("id", "root", "entry")
        or fallback_identifier(feed.source.upper(), ET.tostring(entry, encoding="unicode"))
    )

    polygons = rec.polygons()
    # first polygon that actually parses; keep the raw text for the record
    polygon = next((p for p in polygons if parse_polygon(p) is not None), polygons[0] if polygons else None)
    point = _georss_point(rec.text("point", "root", "entry", "info"))
    hints = GeometryHints(
        polygon=polygon,
        embedded={"type": "Point", "coordinates": [point[0], point[1]]} if point else None,
        embedded_tag="georss-point" if point else None,
        explicit=_explicit_latlon(rec),
        fips_codes=fips_codes,
        area_desc=area_desc,
    )
    if (
        ctx.zones is not None
        and ctx.client is not None
        and not hints.has_direct_geometry()
        and hints.explicit is None
        and not ctx.tables.fips_points(fips_codes)
    ):
        refs = [r for r in (parse_zone_ref(c) for c in ugc) if r is not None and r.kind != "marine"]
        hints.zones = await ctx.zones.resolve_all(ctx.client, refs)

    located = resolve_geometry(hints, identifier=identifier, tables=ctx.tables, jitter=ctx.jitter)
    if located is None:
        return Outcome.dropped("no-geometry")

    sent = parse_datetime_or_now(
        rec.text("effective", "info")
        or rec.text("sent", "root")
        or rec.text("updated", "root", "entry")
        or rec.text("published", "root", "entry")
    )
    expires = expires_or_default(
        rec.text("expires", "info", "root"),
        minutes=ctx.settings.default_ttl_minutes,
    )
    urgency = rec.text("urgency", "info") or "Unknown"
    certainty = rec.text("certainty", "info") or "Unknown"
    details: Dict[str, object] = {}

    if feed.seismic:
        grade = grade_quake(rec.text("title", "root", "entry"))
        severity, event = grade.severity, grade.event
        urgency, certainty = "Past", "Observed"
        expires = sent + grade.ttl
        details["magnitude"] = grade.magnitude
        # remapped severity gets the minor screen again
        if ctx.settings.skip_minor and is_minor(severity):
            return Outcome.dropped("minor")

    description = clean_html(
        rec.text("description", "info") or rec.text("summary", "root", "entry") or rec.text("content", "root", "entry"),
        definition_lists=True,
    )
    headline = first_text(
        rec.text("headline", "info"),
        rec.text("title", "root", "entry"),
        rec.text("summary", "root", "entry"),
        event,
    )
    link = rec.link()
    if link:
        details["url"] = link

    alert = Alert(
        identifier=identifier,
        sender=rec.text("sender", "root") or "",
        sent=sent,
        status=rec.text("status", "root") or "Actual",
        msgType=rec.text("msgType", "root") or "Alert",
        scope=rec.text("scope", "root") or "Public",
        info=AlertInfo(
            category=rec.text("category", "info") or ("Geo" if feed.seismic else "General"),
            event=event,
            urgency=urgency,
            severity=severity,
            certainty=certainty,
            headline=headline,
            description=description,
            instruction=(rec.text("instruction", "info", "root") or "").strip(),
        ),
        area=AlertArea(areaDesc=area_desc, polygon=hints.polygon),
        geometry=PointGeometry.from_lonlat(located.point),
        geometryMethod=located.method,
        bbox=list(located.bbox) if located.bbox else None,
        title=headline,
        summary=clip(description),
        source=feed.source,
        timestamp=ctx.now,
        expires=expires,
        details=details,
    )
    return Outcome.ok(alert)
