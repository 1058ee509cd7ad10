"""Feed payload builders shared by the normalizer and poller tests."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

import orjson

from alertpoller.core.time import utc_now

TORNADO_POLYGON = "34.50,-88.00 34.60,-88.00 34.60,-88.20 34.50,-88.20"


def iso(delta: timedelta = timedelta()) -> str:
    return (utc_now() + delta).replace(microsecond=0).isoformat()


# ── NWS ───────────────────────────────────────────────────────

def nws_feature(
    ident: str,
    *,
    event: str = "Wind Advisory",
    severity: str = "Moderate",
    area: str = "Oklahoma",
    geometry: Optional[Dict[str, Any]] = None,
    zones: Optional[List[str]] = None,
    ugc: Optional[List[str]] = None,
    expires: Optional[str] = "default",
) -> Dict[str, Any]:
    props: Dict[str, Any] = {
        "@id": f"https://api.weather.gov/alerts/{ident}",
        "id": ident,
        "areaDesc": area,
        "geocode": {"UGC": ugc or [], "SAME": []},
        "affectedZones": [f"https://api.weather.gov/zones/forecast/{z}" for z in (zones or [])],
        "sent": iso(-timedelta(minutes=10)),
        "effective": iso(-timedelta(minutes=10)),
        "expires": iso(timedelta(hours=2)) if expires == "default" else expires,
        "status": "Actual",
        "messageType": "Alert",
        "category": "Met",
        "severity": severity,
        "certainty": "Likely",
        "urgency": "Expected",
        "event": event,
        "senderName": "NWS Norman OK",
        "headline": f"{event} issued by NWS Norman OK",
        "description": "* WHAT...Southwest winds 25 to 35 mph.\n\n* WHERE...Portions of Oklahoma.",
        "instruction": None,
    }
    return {
        "id": f"https://api.weather.gov/alerts/{ident}",
        "type": "Feature",
        "geometry": geometry,
        "properties": props,
    }


def nws_collection(features: List[Dict[str, Any]]) -> bytes:
    return orjson.dumps({"type": "FeatureCollection", "features": features})


def zone_body(lon: float, lat: float) -> bytes:
    ring = [[lon, lat], [lon + 0.5, lat], [lon + 0.5, lat + 0.5], [lon, lat + 0.5], [lon, lat]]
    return orjson.dumps({"type": "Feature", "geometry": {"type": "Polygon", "coordinates": [ring]}})


# ── CAP (FEMA IPAWS) ─────────────────────────────────────────

def cap_alert(
    ident: str,
    *,
    event: str = "Tornado Warning",
    severity: str = "Extreme",
    area: str = "Jones, MS",
    polygon: Optional[str] = TORNADO_POLYGON,
    same: Optional[str] = "028067",
    ugc: Optional[str] = "MSC067",
) -> str:
    polygon_xml = f"<polygon>{polygon}</polygon>" if polygon else ""
    same_xml = f"<geocode><valueName>SAME</valueName><value>{same}</value></geocode>" if same else ""
    ugc_xml = f"<geocode><valueName>UGC</valueName><value>{ugc}</value></geocode>" if ugc else ""
    return f"""
<alert xmlns="urn:oasis:names:tc:emergency:cap:1.2">
  <identifier>{ident}</identifier>
  <sender>w-nws.webmaster@noaa.gov</sender>
  <sent>{iso(-timedelta(minutes=5))}</sent>
  <status>Actual</status>
  <msgType>Alert</msgType>
  <scope>Public</scope>
  <info>
    <category>Met</category>
    <event>{event}</event>
    <urgency>Immediate</urgency>
    <severity>{severity}</severity>
    <certainty>Observed</certainty>
    <effective>{iso(-timedelta(minutes=5))}</effective>
    <expires>{iso(timedelta(minutes=45))}</expires>
    <headline>{event} issued by NWS Jackson MS</headline>
    <description>At 1000 AM CDT, a severe thunderstorm capable of producing a tornado was located near Laurel.</description>
    <instruction>TAKE COVER NOW!</instruction>
    <area>
      <areaDesc>{area}</areaDesc>
      {polygon_xml}
      {same_xml}
      {ugc_xml}
    </area>
  </info>
</alert>"""


def cap_feed(*alerts: str) -> bytes:
    body = "".join(alerts)
    return f'<?xml version="1.0" encoding="UTF-8"?><alerts xmlns="http://gov.fema.ipaws.services/feed">{body}</alerts>'.encode()


# ── USGS Atom ────────────────────────────────────────────────

def usgs_entry(event_id: str, title: str, point: str = "35.7 -117.5") -> str:
    return f"""
<entry>
  <id>urn:earthquake-usgs-gov:ci:{event_id}</id>
  <title>{title}</title>
  <updated>{iso(-timedelta(minutes=3))}</updated>
  <link rel="alternate" type="text/html" href="https://earthquake.usgs.gov/earthquakes/eventpage/ci{event_id}"/>
  <summary type="html"><![CDATA[<dl><dt>Time</dt><dd>2026-10-19 11:58:00 UTC</dd><dt>Depth</dt><dd>8.00 km (4.97 mi)</dd></dl>]]></summary>
  <georss:point>{point}</georss:point>
  <georss:elev>-8000</georss:elev>
  <category label="Age" term="Past Hour"/>
</entry>"""


def usgs_feed(*entries: str) -> bytes:
    body = "".join(entries)
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<feed xmlns="http://www.w3.org/2005/Atom" xmlns:georss="http://www.georss.org/georss">'
        f"<title>USGS All Earthquakes, Past Hour</title>{body}</feed>"
    ).encode()


# ── GDACS ────────────────────────────────────────────────────

def gdacs_feature(
    event_id: Any,
    *,
    event_type: str = "EQ",
    level: str = "Orange",
    country: str = "Japan",
    from_delta: timedelta = -timedelta(hours=2),
    geometry: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    start = utc_now().replace(microsecond=0) + from_delta
    return {
        "type": "Feature",
        "geometry": geometry if geometry is not None else {"type": "Point", "coordinates": [142.3, 38.1]},
        "properties": {
            "eventtype": event_type,
            "eventid": event_id,
            "name": f"Earthquake in {country}",
            "description": f"Earthquake in {country}",
            "alertlevel": level,
            "country": country,
            "fromdate": start.isoformat(),
            "todate": (start + timedelta(hours=1)).isoformat(),
            "url": {"report": f"https://www.gdacs.org/report.aspx?eventid={event_id}"},
        },
    }


def gdacs_collection(features: List[Dict[str, Any]]) -> bytes:
    return orjson.dumps({"type": "FeatureCollection", "features": features})


# ── Meteoalarm ───────────────────────────────────────────────

def meteo_item(title: str, description: str = "", link: str = "", extra: str = "") -> str:
    link_xml = f"<link>{link}</link>" if link else ""
    return (
        f"<item><title>{title}</title><description>{description}</description>{link_xml}"
        f"<pubDate>Mon, 19 Oct 2026 10:00:00 +0000</pubDate>{extra}</item>"
    )


def meteo_rss(*items: str) -> bytes:
    body = "".join(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:georss="http://www.georss.org/georss"><channel>'
        "<title>MeteoAlarm</title><link>https://meteoalarm.org</link>"
        f"{body}</channel></rss>"
    ).encode()
