from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────
# Shared
# ──────────────────────────────────────────────────────────────

LonLat = Tuple[float, float]
BBox = Tuple[float, float, float, float]  # minLon,minLat,maxLon,maxLat

GeoJSON = Dict[str, Any]

SourceCode = Literal["NWS", "FEMA", "USGS", "GDACS", "Meteoalarm"]


class PointGeometry(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]        # [lon, lat]

    @classmethod
    def from_lonlat(cls, pt: LonLat) -> "PointGeometry":
        return cls(coordinates=[float(pt[0]), float(pt[1])])

    @property
    def lonlat(self) -> LonLat:
        return (self.coordinates[0], self.coordinates[1])


# ──────────────────────────────────────────────────────────────
# Alerts
# ──────────────────────────────────────────────────────────────

class AlertInfo(BaseModel):
    category: str = "Unknown"
    event: str = "Unknown"
    urgency: str = "Unknown"
    severity: str = "Unknown"
    certainty: str = "Unknown"
    headline: str = ""
    description: str = ""
    instruction: str = ""


class AlertArea(BaseModel):
    areaDesc: str = ""
    polygon: Optional[str] = None   # raw source polygon string


class Alert(BaseModel):
    identifier: str
    sender: str = ""
    sent: datetime
    status: str = "Actual"
    msgType: str = "Alert"
    scope: str = "Public"
    info: AlertInfo = Field(default_factory=AlertInfo)
    area: AlertArea = Field(default_factory=AlertArea)
    geometry: PointGeometry
    geometryMethod: str
    bbox: Optional[List[float]] = None
    title: str = ""
    summary: str = ""
    source: SourceCode
    timestamp: datetime
    expires: datetime
    details: Dict[str, Any] = Field(default_factory=dict)   # source-specific extras


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of normalizing one raw feed record: an alert, or why there is none."""
    alert: Optional[Alert] = None
    reason: Optional[str] = None    # "marine" | "minor" | "no-geometry" | "no-identifier" | "empty" | "parse-error"

    @classmethod
    def ok(cls, alert: Alert) -> "Outcome":
        return cls(alert=alert)

    @classmethod
    def dropped(cls, reason: str) -> "Outcome":
        return cls(reason=reason)


# ──────────────────────────────────────────────────────────────
# Zone geometry
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ZoneRef:
    kind: str       # "forecast" | "county" | ... | "marine"
    id: str         # e.g. "AKZ121"

    @property
    def key(self) -> str:
        return f"{self.kind.lower()}:{self.id.upper()}"


@dataclass(frozen=True, slots=True)
class ZoneGeometry:
    centroid: LonLat
    bbox: Optional[BBox] = None


# ──────────────────────────────────────────────────────────────
# Reports
# ──────────────────────────────────────────────────────────────

class SaveReport(BaseModel):
    saved: int = 0
    skipped: int = 0


class FeedReport(BaseModel):
    feed: str
    source: str
    raw: int = 0
    normalized: int = 0
    saved: int = 0
    skipped: int = 0
    dropped: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None

    def count_drop(self, reason: str) -> None:
        self.dropped[reason] = self.dropped.get(reason, 0) + 1


class PollReport(BaseModel):
    started_at: str
    finished_at: Optional[str] = None
    expired_deleted: int = 0
    aged_out_deleted: int = 0
    sweep_error: Optional[str] = None
    feeds: List[FeedReport] = Field(default_factory=list)

    @property
    def saved(self) -> int:
        return sum(f.saved for f in self.feeds)
