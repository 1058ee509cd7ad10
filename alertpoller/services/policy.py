"""
Land-only filtering.

Marine products (small craft, gale, coastal/offshore waters, marine zones)
and Minor-severity alerts are not persisted. The screen runs on the source's
own fields and again after any source-specific severity remapping.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

MARINE_EVENT_EXACT = frozenset(
    s.lower()
    for s in (
        "Small Craft Advisory",
        "Small Craft Warning",
        "Small Craft Watch",
        "Gale Warning",
        "Gale Watch",
        "Storm Warning",
        "Storm Watch",
        "Hurricane Force Wind Warning",
        "Hurricane Force Wind Watch",
        "Hazardous Seas Warning",
        "Hazardous Seas Watch",
        "Heavy Freezing Spray Warning",
        "Heavy Freezing Spray Watch",
        "Freezing Spray Advisory",
        "Special Marine Warning",
        "Marine Weather Statement",
        "Marine Warning",
        "Marine Watch",
    )
)

# NWS marine zones, Great Lakes included
MARINE_ZONE_PREFIXES = frozenset({
    "PZ",  # Pacific
    "AM",  # Atlantic
    "AN",  # Atlantic
    "GM",  # Gulf
    "LM",  # Lake Michigan
    "LS",  # Lake Superior
    "LE",  # Lake Erie
    "LH",  # Lake Huron
    "LO",  # Lake Ontario
    "LC",  # Lake St Clair
})

_MARINE_EVENT_RE = re.compile(
    r"\b(small craft|special marine|marine weather|hazardous seas|freezing spray|gale)\b",
    re.IGNORECASE,
)
_MARINE_WATERS_RE = re.compile(
    r"\b(coastal waters|offshore waters|nearshore waters|open waters|waters from)\b",
    re.IGNORECASE,
)
# Nautical miles are always lowercase; "NM" is New Mexico.
_NAUTICAL_MILES_RE = re.compile(r"\b(out to\s*\d+\s*nm|\d+\s*to\s*\d+\s*nm|nm)\b")
_COASTAL_FLOOD_RE = re.compile(r"\bcoastal flood\b", re.IGNORECASE)


def is_marine_zone_code(code: Optional[str]) -> bool:
    c = (code or "").strip().upper()
    return len(c) >= 2 and c[:2] in MARINE_ZONE_PREFIXES


def marine_area_phrasing(area_desc: Optional[str]) -> bool:
    s = area_desc or ""
    return bool(_MARINE_WATERS_RE.search(s) or _NAUTICAL_MILES_RE.search(s))


def is_marine_alert(
    event: Optional[str],
    area_desc: Optional[str] = "",
    ugc_codes: Iterable[str] = (),
) -> bool:
    e = (event or "").strip()
    if e.lower() in MARINE_EVENT_EXACT:
        return True
    if _MARINE_EVENT_RE.search(e):
        return True
    if any(is_marine_zone_code(c) for c in ugc_codes or ()):
        return True
    if marine_area_phrasing(area_desc) and not _COASTAL_FLOOD_RE.search(e):
        return True
    return False


def is_minor(severity: Optional[str]) -> bool:
    return (severity or "").strip().lower() == "minor"


def screen(
    *,
    event: Optional[str],
    severity: Optional[str],
    area_desc: Optional[str] = "",
    ugc_codes: Iterable[str] = (),
    skip_minor: bool = True,
) -> Optional[str]:
    """Drop reason ("marine" / "minor") or None when the alert may be kept."""
    if is_marine_alert(event, area_desc, ugc_codes):
        return "marine"
    if skip_minor and is_minor(severity):
        return "minor"
    return None
