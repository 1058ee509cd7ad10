# alertpoller/services/zones.py
"""
NWS zone geometry lookups.

Alerts without their own geometry usually list the forecast/county zones they
cover. Each zone's outline is fetched once from /zones/{kind}/{id} and reduced
to a centroid + bbox.

Results (including "no geometry") are cached in a bounded TTL cache that
outlives a single poll cycle. Concurrent callers asking for the same zone
share one in-flight request.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import httpx
import orjson
from cachetools import TTLCache

from alertpoller.core.contracts import ZoneGeometry, ZoneRef
from alertpoller.core.geo import bbox, centroid, flatten_geojson_points
from alertpoller.core.settings import Settings
from alertpoller.services.policy import MARINE_ZONE_PREFIXES

logger = logging.getLogger(__name__)

_UNRESOLVED = object()

_ZONE_URL_RE = re.compile(r"/zones/([^/]+)/([^/?#]+)\s*$", re.IGNORECASE)
_FORECAST_RE = re.compile(r"^[A-Z]{2}Z\d{3}$")
_COUNTY_RE = re.compile(r"^[A-Z]{2}C\d{3}$")
_UGC_FULL_RE = re.compile(r"^([A-Z]{2})([CZ])(\d{3})$")
_UGC_RANGE_RE = re.compile(r"^([A-Z]{2})([CZ])(\d{3})>(\d{3})$")


# ──────────────────────────────────────────────────────────────
# Zone codes
# ──────────────────────────────────────────────────────────────

def parse_zone_ref(ref: Any) -> Optional[ZoneRef]:
    """
    'https://api.weather.gov/zones/forecast/AKZ121' → ZoneRef('forecast', 'AKZ121')
    'TXZ001' → forecast, 'TXC201' → county, marine prefixes → kind 'marine'.
    """
    s = str(ref or "").strip()
    if not s:
        return None

    m = _ZONE_URL_RE.search(s)
    if m:
        return ZoneRef(kind=m.group(1).lower(), id=m.group(2).upper())

    code = s.upper()
    if len(code) >= 2 and code[:2] in MARINE_ZONE_PREFIXES:
        return ZoneRef(kind="marine", id=code)
    if _FORECAST_RE.match(code):
        return ZoneRef(kind="forecast", id=code)
    if _COUNTY_RE.match(code):
        return ZoneRef(kind="county", id=code)
    return None


def expand_ugc(code: Any) -> List[str]:
    """
    Expand compact UGC notation.

      'TXZ001>003'     → ['TXZ001', 'TXZ002', 'TXZ003']
      'AKZ121-122-123' → ['AKZ121', 'AKZ122', 'AKZ123']
      'OKC109'         → ['OKC109']
    """
    s = str(code or "").strip().upper()
    if not s:
        return []

    m = _UGC_RANGE_RE.match(s)
    if m:
        st, kind, a, b = m.groups()
        lo, hi = sorted((int(a), int(b)))
        return [f"{st}{kind}{n:03d}" for n in range(lo, hi + 1)]

    if "-" in s:
        parts = [p for p in s.split("-") if p]
        if not parts:
            return []

        out: List[str] = []
        prefix: Optional[str] = None
        first = parts[0]
        mf = _UGC_FULL_RE.match(first)
        if mf:
            prefix = mf.group(1) + mf.group(2)
        elif re.fullmatch(r"\d{3}", first):
            # bare number with nothing to attach it to
            return []
        out.append(first)

        for p in parts[1:]:
            mp = _UGC_FULL_RE.match(p)
            if mp:
                prefix = mp.group(1) + mp.group(2)
                out.append(p)
            elif prefix and re.fullmatch(r"\d{3}", p):
                out.append(prefix + p)
        return out

    return [s]


def _as_list(v: Any) -> List[Any]:
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return list(v)
    return [v]


def ugc_codes(props: Dict[str, Any]) -> List[str]:
    """Expanded UGC codes from geocode.UGC plus the trailing code of each affectedZones URL."""
    geocode = props.get("geocode") or {}
    out: List[str] = []
    for raw in _as_list(geocode.get("UGC")) + _as_list(geocode.get("ugc")):
        out.extend(expand_ugc(raw))
    for z in _as_list(props.get("affectedZones")):
        tail = str(z).rstrip("/").rsplit("/", 1)[-1].strip().upper()
        if tail:
            out.append(tail)
    return out


def extract_zone_refs(props: Dict[str, Any]) -> List[ZoneRef]:
    """Distinct zone refs from affectedZones URLs and expanded geocode.UGC."""
    geocode = props.get("geocode") or {}
    raw: List[Any] = list(_as_list(props.get("affectedZones")))
    for u in _as_list(geocode.get("UGC")) + _as_list(geocode.get("ugc")):
        raw.extend(expand_ugc(u))

    seen: Dict[str, ZoneRef] = {}
    for r in raw:
        z = parse_zone_ref(r)
        if z is not None:
            seen.setdefault(z.key, z)
    return list(seen.values())


# ──────────────────────────────────────────────────────────────
# Resolver
# ──────────────────────────────────────────────────────────────

class ZoneGeometryResolver:
    def __init__(
        self,
        *,
        api_base: str,
        user_agent: str,
        timeout_s: float = 12.0,
        cache_max: int = 4096,
        cache_ttl_s: float = 6 * 60 * 60,
    ):
        self.api_base = api_base.rstrip("/")
        self.user_agent = user_agent
        self.timeout_s = float(timeout_s)
        self._cache: TTLCache = TTLCache(maxsize=max(1, int(cache_max)), ttl=cache_ttl_s)
        self._inflight: Dict[str, asyncio.Task] = {}
        self.fetch_count = 0

    @classmethod
    def from_settings(cls, s: Settings) -> "ZoneGeometryResolver":
        return cls(
            api_base=s.noaa_api_base,
            user_agent=s.noaa_user_agent,
            timeout_s=s.noaa_zone_timeout_s,
            cache_max=s.zone_cache_max,
            cache_ttl_s=s.zone_cache_ttl_s,
        )

    def __len__(self) -> int:
        return len(self._cache)

    def cached(self, ref: ZoneRef) -> Optional[ZoneGeometry]:
        hit = self._cache.get(ref.key)
        return None if hit is None or hit is _UNRESOLVED else hit

    async def resolve(self, client: httpx.AsyncClient, kind: str, zone_id: str) -> Optional[ZoneGeometry]:
        ref = ZoneRef(kind=str(kind).lower(), id=str(zone_id).upper())
        if ref.kind == "marine":
            return None

        key = ref.key
        hit = self._cache.get(key)
        if hit is not None:
            return None if hit is _UNRESOLVED else hit

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(client, ref))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))

        # one waiter being cancelled must not cancel the shared fetch
        return await asyncio.shield(task)

    async def resolve_all(self, client: httpx.AsyncClient, refs: Iterable[ZoneRef]) -> List[ZoneGeometry]:
        out: List[ZoneGeometry] = []
        for ref in refs:
            geo = await self.resolve(client, ref.kind, ref.id)
            if geo is not None:
                out.append(geo)
        return out

    async def prefetch_all(self, client: httpx.AsyncClient, refs: Iterable[ZoneRef], limit: int) -> int:
        """
        Warm the cache for `refs` with at most `limit` lookups in flight.
        Returns the number of zones that had to be looked up.
        """
        uniq: Dict[str, ZoneRef] = {}
        for r in refs:
            if r.kind != "marine":
                uniq.setdefault(r.key, r)
        todo = [r for k, r in uniq.items() if self._cache.get(k) is None]
        if not todo:
            return 0

        queue: asyncio.Queue = asyncio.Queue()
        for r in todo:
            queue.put_nowait(r)
        workers = min(max(1, int(limit)), len(todo))

        async def _worker() -> None:
            while True:
                try:
                    r = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    await self.resolve(client, r.kind, r.id)
                finally:
                    queue.task_done()

        await asyncio.gather(*(_worker() for _ in range(workers)))
        logger.info("zone prefetch done zones=%d limit=%d cached=%d", len(todo), limit, len(self._cache))
        return len(todo)

    async def _fetch_and_store(self, client: httpx.AsyncClient, ref: ZoneRef) -> Optional[ZoneGeometry]:
        try:
            geo = await self._fetch(client, ref)
        except Exception as e:
            logger.warning("zone fetch failed zone=%s err=%s: %s", ref.key, e.__class__.__name__, e)
            geo = None
        self._cache[ref.key] = geo if geo is not None else _UNRESOLVED
        return geo

    async def _fetch(self, client: httpx.AsyncClient, ref: ZoneRef) -> Optional[ZoneGeometry]:
        url = f"{self.api_base}/zones/{ref.kind}/{ref.id}"
        self.fetch_count += 1
        r = await client.get(
            url,
            headers={"User-Agent": self.user_agent, "Accept": "application/geo+json"},
            timeout=self.timeout_s,
        )
        r.raise_for_status()
        data = orjson.loads(r.content) or {}

        geom = data.get("geometry") if isinstance(data, dict) else None
        if not geom and isinstance(data, dict):
            feats = data.get("features")
            if isinstance(feats, list) and feats and isinstance(feats[0], dict):
                geom = feats[0].get("geometry")

        pts = flatten_geojson_points(geom)
        c = centroid(pts)
        if c is None:
            logger.info("zone has no geometry zone=%s", ref.key)
            return None
        return ZoneGeometry(centroid=c, bbox=bbox(pts))
