"""
Static reference tables for fallback geometry.

- US state centers and state name → postal code
- County centers keyed by state + normalized county name (bundled JSON)
- County FIPS centers (bundled JSON)
- European country centroids for Meteoalarm

The JSON tables are generated offline; this module only reads them.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import orjson

from alertpoller.core.contracts import LonLat
from alertpoller.core.geo import sanitize_point

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# US states
# ──────────────────────────────────────────────────────────────

# (lon, lat)
STATE_CENTERS: Dict[str, LonLat] = {
    "AL": (-86.9023, 32.8067),
    "AK": (-152.4044, 64.2008),
    "AZ": (-111.0937, 34.0489),
    "AR": (-92.3731, 34.9697),
    "CA": (-119.4179, 36.7783),
    "CO": (-105.7821, 39.5501),
    "CT": (-72.6979, 41.6032),
    "DE": (-75.5277, 38.9108),
    "DC": (-77.0369, 38.9072),
    "FL": (-81.5158, 27.6648),
    "GA": (-83.4412, 32.1656),
    "HI": (-155.5828, 19.8968),
    "ID": (-114.742, 44.0682),
    "IL": (-89.3985, 40.6331),
    "IN": (-86.1349, 40.2672),
    "IA": (-93.0977, 41.878),
    "KS": (-98.4842, 39.0119),
    "KY": (-84.27, 37.8393),
    "LA": (-91.9623, 30.9843),
    "ME": (-69.4455, 45.2538),
    "MD": (-76.6413, 39.0458),
    "MA": (-71.3824, 42.4072),
    "MI": (-84.5361, 44.1822),
    "MN": (-94.6859, 46.7296),
    "MS": (-89.3985, 32.3547),
    "MO": (-91.8318, 38.5739),
    "MT": (-110.3626, 46.8797),
    "NE": (-99.9018, 41.4925),
    "NV": (-116.4194, 38.8026),
    "NH": (-71.5724, 43.1939),
    "NJ": (-74.4057, 40.0583),
    "NM": (-105.8701, 34.5199),
    "NY": (-75.4999, 43.0003),
    "NC": (-79.0193, 35.7596),
    "ND": (-100.5407, 47.5515),
    "OH": (-82.9071, 40.4173),
    "OK": (-97.0929, 35.0078),
    "OR": (-120.5542, 43.8041),
    "PA": (-77.1945, 41.2033),
    "RI": (-71.4774, 41.5801),
    "SC": (-81.1637, 33.8361),
    "SD": (-99.9018, 43.9695),
    "TN": (-86.5804, 35.5175),
    "TX": (-99.9018, 31.9686),
    "UT": (-111.0937, 39.32),
    "VT": (-72.5778, 44.5588),
    "VA": (-78.6569, 37.4316),
    "WA": (-120.7401, 47.7511),
    "WV": (-80.4549, 38.5976),
    "WI": (-89.6165, 44.7863),
    "WY": (-107.2903, 43.0759),
    # Territories
    "PR": (-66.5901, 18.2208),
    "GU": (144.7937, 13.4443),
    "VI": (-64.8963, 18.3358),
    "AS": (-170.1322, -14.271),
    "MP": (145.6739, 15.0979),
}

STATE_NAME_TO_ABBR: Dict[str, str] = {
    "Alabama": "AL",
    "Alaska": "AK",
    "Arizona": "AZ",
    "Arkansas": "AR",
    "California": "CA",
    "Colorado": "CO",
    "Connecticut": "CT",
    "Delaware": "DE",
    "Florida": "FL",
    "Georgia": "GA",
    "Hawaii": "HI",
    "Idaho": "ID",
    "Illinois": "IL",
    "Indiana": "IN",
    "Iowa": "IA",
    "Kansas": "KS",
    "Kentucky": "KY",
    "Louisiana": "LA",
    "Maine": "ME",
    "Maryland": "MD",
    "Massachusetts": "MA",
    "Michigan": "MI",
    "Minnesota": "MN",
    "Mississippi": "MS",
    "Missouri": "MO",
    "Montana": "MT",
    "Nebraska": "NE",
    "Nevada": "NV",
    "New Hampshire": "NH",
    "New Jersey": "NJ",
    "New Mexico": "NM",
    "New York": "NY",
    "North Carolina": "NC",
    "North Dakota": "ND",
    "Ohio": "OH",
    "Oklahoma": "OK",
    "Oregon": "OR",
    "Pennsylvania": "PA",
    "Rhode Island": "RI",
    "South Carolina": "SC",
    "South Dakota": "SD",
    "Tennessee": "TN",
    "Texas": "TX",
    "Utah": "UT",
    "Vermont": "VT",
    "Virginia": "VA",
    "Washington": "WA",
    "West Virginia": "WV",
    "Wisconsin": "WI",
    "Wyoming": "WY",
    "District of Columbia": "DC",
    "Puerto Rico": "PR",
    "Guam": "GU",
    "U.S. Virgin Islands": "VI",
    "US Virgin Islands": "VI",
    "American Samoa": "AS",
    "Northern Mariana Islands": "MP",
}

_STATE_CODE_RE = re.compile(
    r"\b(AL|AK|AZ|AR|CA|CO|CT|DE|DC|FL|GA|HI|ID|IL|IN|IA|KS|KY|LA|ME|MD|MA|MI|MN|MS|MO|MT|NE|NV|NH|NJ|NM|NY"
    r"|NC|ND|OH|OK|OR|PA|RI|SC|SD|TN|TX|UT|VT|VA|WA|WV|WI|WY|PR|GU|AS|MP|VI)\b"
)

# Longest names first so "West Virginia" wins over "Virginia".
_STATE_NAME_RES = [
    (re.compile(rf"\b{re.escape(name)}(?!\w)", re.IGNORECASE), abbr)
    for name, abbr in sorted(STATE_NAME_TO_ABBR.items(), key=lambda kv: -len(kv[0]))
]


def state_to_abbr(s: Optional[str]) -> Optional[str]:
    """'MS' → 'MS', 'Mississippi' → 'MS', anything else → None."""
    t = (s or "").strip()
    if not t:
        return None
    if re.fullmatch(r"[A-Z]{2}", t):
        return t
    for name, abbr in STATE_NAME_TO_ABBR.items():
        if name.lower() == t.lower():
            return abbr
    return None


def extract_state_abbrs(text: Optional[str]) -> List[str]:
    """State postal codes mentioned in free text, as codes or full names, in first-seen order."""
    if not text:
        return []
    seen: Dict[str, None] = {}
    for m in _STATE_CODE_RE.finditer(text):
        seen.setdefault(m.group(1), None)
    remaining = text
    for rx, abbr in _STATE_NAME_RES:
        if rx.search(remaining):
            seen.setdefault(abbr, None)
            # "West Virginia" must not also count as "Virginia"
            remaining = rx.sub(" ", remaining)
    return list(seen)


# ──────────────────────────────────────────────────────────────
# County names
# ──────────────────────────────────────────────────────────────

_CITY_OF_RE = re.compile(r"^City of\s+", re.IGNORECASE)
_COUNTY_SUFFIX_RE = re.compile(
    r"\s+(County|Parish|Borough|Census Area|Municipio|Municipality|City)$",
    re.IGNORECASE,
)
_SAINT_RE = re.compile(r"^St[.\s]+", re.IGNORECASE)
_DIRECTIONAL_RE = re.compile(
    r"^(Eastern|Western|Northern|Southern|Central|Coastal|Upper|Lower"
    r"|Northeast|Northwest|Southeast|Southwest)\s+",
    re.IGNORECASE,
)


def normalize_county_name(raw: Optional[str]) -> str:
    """
    "St. Johns County" → "Saint Johns", "City of Alexandria" → "Alexandria",
    "Orleans Parish" → "Orleans".
    """
    if not raw:
        return ""
    s = str(raw).strip()
    s = _CITY_OF_RE.sub("", s)
    s = _COUNTY_SUFFIX_RE.sub("", s)
    s = _SAINT_RE.sub("Saint ", s)
    s = s.replace(".", "")
    return " ".join(s.split())


def _county_key(name: str) -> str:
    return normalize_county_name(name).lower()


# ──────────────────────────────────────────────────────────────
# Meteoalarm countries
# ──────────────────────────────────────────────────────────────

# ISO2 → (lon, lat)
METEO_COUNTRY_CENTROIDS: Dict[str, LonLat] = {
    "AL": (20.0, 41.0),
    "AD": (1.6, 42.5),
    "AT": (14.0, 47.5),
    "BE": (4.5, 50.8),
    "BA": (17.8, 44.2),
    "BG": (25.5, 42.7),
    "BY": (28.0, 53.7),
    "CH": (8.2, 46.8),
    "CY": (33.0, 35.0),
    "CZ": (15.5, 49.8),
    "DE": (10.5, 51.2),
    "DK": (9.5, 56.0),
    "EE": (25.0, 58.6),
    "ES": (-3.7, 40.4),
    "FI": (26.0, 64.0),
    "FR": (2.2, 46.2),
    "GB": (-2.5, 54.0),
    "GR": (22.0, 39.0),
    "HR": (16.4, 45.1),
    "HU": (19.0, 47.1),
    "IE": (-8.0, 53.3),
    "IS": (-19.0, 64.9),
    "IT": (12.5, 42.8),
    "LT": (24.0, 55.3),
    "LU": (6.1, 49.8),
    "LV": (25.0, 56.9),
    "MD": (28.7, 47.2),
    "ME": (19.3, 42.7),
    "MK": (21.7, 41.6),
    "MT": (14.4, 35.9),
    "NL": (5.3, 52.1),
    "NO": (8.4, 60.5),
    "PL": (19.1, 52.1),
    "PT": (-8.0, 39.5),
    "RO": (25.0, 45.9),
    "RS": (21.0, 44.0),
    "SE": (15.0, 62.0),
    "SI": (14.9, 46.1),
    "SK": (19.7, 48.7),
    "TR": (35.0, 39.0),
    "UA": (31.0, 49.0),
}

METEO_COUNTRY_NAMES: Dict[str, str] = {
    "united kingdom": "GB",
    "uk": "GB",
    "britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "northern ireland": "GB",
    "ireland": "IE",
    "iceland": "IS",
    "norway": "NO",
    "sweden": "SE",
    "finland": "FI",
    "denmark": "DK",
    "estonia": "EE",
    "latvia": "LV",
    "lithuania": "LT",
    "netherlands": "NL",
    "belgium": "BE",
    "luxembourg": "LU",
    "france": "FR",
    "germany": "DE",
    "deutschland": "DE",
    "switzerland": "CH",
    "austria": "AT",
    "italy": "IT",
    "spain": "ES",
    "portugal": "PT",
    "greece": "GR",
    "turkey": "TR",
    "poland": "PL",
    "czechia": "CZ",
    "czech republic": "CZ",
    "slovakia": "SK",
    "hungary": "HU",
    "romania": "RO",
    "bulgaria": "BG",
    "croatia": "HR",
    "slovenia": "SI",
    "serbia": "RS",
    "bosnia": "BA",
    "bosnia and herzegovina": "BA",
    "montenegro": "ME",
    "albania": "AL",
    "north macedonia": "MK",
    "macedonia": "MK",
    "moldova": "MD",
    "ukraine": "UA",
    "belarus": "BY",
    "cyprus": "CY",
    "malta": "MT",
    "andorra": "AD",
}

_COUNTRY_NAME_RES = [
    (re.compile(rf"\b{re.escape(name)}\b"), iso2)
    for name, iso2 in sorted(METEO_COUNTRY_NAMES.items(), key=lambda kv: -len(kv[0]))
]


def infer_country_point(text: Optional[str]) -> Optional[LonLat]:
    """Centroid of the first country named in `text`, trying longer names first."""
    s = (text or "").lower()
    if not s:
        return None
    for rx, iso2 in _COUNTRY_NAME_RES:
        if rx.search(s):
            pt = METEO_COUNTRY_CENTROIDS.get(iso2)
            if pt is not None:
                return pt
    return None


# ──────────────────────────────────────────────────────────────
# Loaded tables
# ──────────────────────────────────────────────────────────────

@dataclass
class ReferenceTables:
    # state → normalized lowercase county name → (lon, lat)
    county_centers: Dict[str, Dict[str, LonLat]] = field(default_factory=dict)
    # 5-digit county FIPS → (lon, lat)
    fips_centers: Dict[str, LonLat] = field(default_factory=dict)
    state_centers: Dict[str, LonLat] = field(default_factory=lambda: dict(STATE_CENTERS))

    def state_center(self, abbr: Optional[str]) -> Optional[LonLat]:
        if not abbr:
            return None
        return self.state_centers.get(abbr.upper())

    def county_center(self, state_abbr: Optional[str], county_raw: Optional[str]) -> Optional[LonLat]:
        """
        Look up a county center, retrying without a leading directional word
        ("Northern Jones" → "Jones").
        """
        if not state_abbr or not county_raw:
            return None
        state_map = self.county_centers.get(state_abbr.upper())
        if not state_map:
            return None

        key = _county_key(county_raw)
        hit = state_map.get(key)
        if hit is not None:
            return hit

        stripped = _DIRECTIONAL_RE.sub("", normalize_county_name(county_raw)).strip().lower()
        if stripped and stripped != key:
            return state_map.get(stripped)
        return None

    def fips_center(self, code: Optional[str]) -> Optional[LonLat]:
        if not code:
            return None
        return self.fips_centers.get(str(code).strip())

    def fips_points(self, codes: Iterable[str]) -> List[LonLat]:
        out: List[LonLat] = []
        for c in codes:
            p = self.fips_center(c)
            if p is not None:
                out.append(p)
        return out


def _as_point(v: Any) -> Optional[LonLat]:
    if isinstance(v, dict):
        v = v.get("center")
    if isinstance(v, (list, tuple)) and len(v) >= 2:
        return sanitize_point(v[0], v[1])
    return None


def parse_county_centers(raw: Dict[str, Any]) -> Dict[str, Dict[str, LonLat]]:
    """
    Accepts either layout:
      {"MS": {"Jones": [lon, lat], ...}}
      {"MS": {"__center": [...], "counties": {"Jones": {"center": [lon, lat]}}}}
    """
    out: Dict[str, Dict[str, LonLat]] = {}
    for state, body in (raw or {}).items():
        if not isinstance(body, dict):
            continue
        counties = body.get("counties") if isinstance(body.get("counties"), dict) else body
        state_map: Dict[str, LonLat] = {}
        for name, val in counties.items():
            if name.startswith("__"):
                continue
            pt = _as_point(val)
            if pt is not None:
                state_map[_county_key(name)] = pt
        if state_map:
            out[str(state).upper()] = state_map
    return out


def parse_fips_centers(raw: Dict[str, Any]) -> Dict[str, LonLat]:
    out: Dict[str, LonLat] = {}
    for code, val in (raw or {}).items():
        pt = _as_point(val)
        if pt is not None:
            out[str(code).strip()] = pt
    return out


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.info("reference table missing path=%s", path)
        return {}
    try:
        data = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as e:
        logger.warning("reference table unreadable path=%s err=%s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def load_reference_tables(data_dir: str) -> ReferenceTables:
    base = Path(data_dir)
    counties = parse_county_centers(_read_json(base / "county_centers.json"))
    fips = parse_fips_centers(_read_json(base / "fips_centers.json"))
    logger.info(
        "reference tables loaded counties_states=%d fips=%d",
        len(counties),
        len(fips),
    )
    return ReferenceTables(county_centers=counties, fips_centers=fips)
