from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PACKAGE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore", populate_by_name=True)

    # Paths
    data_dir: str = Field(default=str(_PACKAGE_DIR / "data"), alias="DATA_DIR")
    alerts_db_path: str = Field(default=str(_PACKAGE_DIR / "data" / "alerts.db"), alias="ALERTS_DB_PATH")

    # Alerts DB: Postgres+PostGIS (production). Takes priority over alerts_db_path.
    alerts_database_url: str | None = Field(default=None, alias="ALERTS_DATABASE_URL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    poll_timeout_s: float = Field(default=20.0, alias="POLL_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # NWS active alerts (api.weather.gov)
    # GeoJSON FeatureCollection. A User-Agent header is required.
    # ──────────────────────────────────────────────────────────────

    nws_enabled: bool = Field(default=True, alias="NWS_ENABLED")
    noaa_alerts_url: str = Field(
        default="https://api.weather.gov/alerts/active",
        alias="NOAA_ALERTS_URL",
    )
    noaa_user_agent: str = Field(
        default="disaster-help-backend/1.0 (contact: change-me@example.com)",
        alias="NOAA_USER_AGENT",
    )

    # Zone lookups (/zones/{kind}/{id}): prefetch pool + bounded cache
    noaa_api_base: str = Field(default="https://api.weather.gov", alias="NOAA_API_BASE")
    noaa_zone_concurrency: int = Field(default=8, ge=1, alias="NOAA_ZONE_CONCURRENCY")
    noaa_zone_timeout_s: float = Field(default=12.0, alias="NOAA_ZONE_TIMEOUT_S")
    zone_cache_max: int = Field(default=4096, ge=1, alias="ZONE_CACHE_MAX")
    zone_cache_ttl_s: int = Field(default=60 * 60 * 6, ge=1, alias="ZONE_CACHE_TTL_S")  # 6h

    # ──────────────────────────────────────────────────────────────
    # CAP-style XML feeds (FEMA IPAWS, USGS Atom)
    # ──────────────────────────────────────────────────────────────

    fema_enabled: bool = Field(default=True, alias="FEMA_ENABLED")
    fema_ipaws_url: str = Field(
        default="https://ipaws.nws.noaa.gov/feeds/IPAWSOpenCAP.xml",
        alias="FEMA_IPAWS_URL",
    )

    usgs_enabled: bool = Field(default=True, alias="USGS_ENABLED")
    usgs_quakes_url: str = Field(
        default="https://earthquake.usgs.gov/earthquakes/feed/v1.0/summary/all_hour.atom",
        alias="USGS_QUAKES_URL",
    )

    # ──────────────────────────────────────────────────────────────
    # GDACS: global disasters (EQ/TC/FL/VO), GeoJSON event list
    # ──────────────────────────────────────────────────────────────

    gdacs_enabled: bool = Field(default=True, alias="GDACS_ENABLED")
    gdacs_events_url: str = Field(
        default="https://www.gdacs.org/gdacsapi/api/events/geteventlist/MAP",
        alias="GDACS_EVENTS_URL",
    )
    gdacs_eventtypes: str = Field(default="EQ,TC,FL,VO", alias="GDACS_EVENTTYPES")
    gdacs_lookback_hours: int = Field(default=168, ge=1, alias="GDACS_LOOKBACK_HOURS")  # 7d
    gdacs_max_save: int = Field(default=200, ge=0, alias="GDACS_MAX_SAVE")

    # ──────────────────────────────────────────────────────────────
    # Meteoalarm: EU weather warnings (RSS/Atom)
    # ──────────────────────────────────────────────────────────────

    meteoalarm_enabled: bool = Field(default=True, alias="METEOALARM_ENABLED")
    meteoalarm_feed_url: str = Field(
        default="https://feeds.meteoalarm.org/feeds/meteoalarm-legacy-rss-europe",
        alias="METEOALARM_FEED_URL",
    )
    meteoalarm_max_save: int = Field(default=250, ge=0, alias="METEOALARM_MAX_SAVE")

    # ──────────────────────────────────────────────────────────────
    # Filtering + anti-stacking jitter
    # ──────────────────────────────────────────────────────────────

    skip_minor: bool = Field(default=True, alias="ALERT_SKIP_MINOR")

    geo_jitter_enabled: bool = Field(default=True, alias="ALERT_GEO_JITTER")
    jitter_state_min_miles: float = Field(default=1.0, ge=0, alias="ALERT_JITTER_STATE_MIN_MILES")
    jitter_state_max_miles: float = Field(default=5.0, ge=0, alias="ALERT_JITTER_STATE_MAX_MILES")
    jitter_county_min_miles: float = Field(default=0.5, ge=0, alias="ALERT_JITTER_COUNTY_MIN_MILES")
    jitter_county_max_miles: float = Field(default=2.0, ge=0, alias="ALERT_JITTER_COUNTY_MAX_MILES")

    # ──────────────────────────────────────────────────────────────
    # Expiry
    # ──────────────────────────────────────────────────────────────

    default_ttl_minutes: int = Field(default=60, ge=1, alias="ALERT_DEFAULT_TTL_MINUTES")
    max_age_hours: int = Field(default=72, ge=1, alias="ALERT_MAX_AGE_HOURS")

    @property
    def gdacs_eventtype_list(self) -> list[str]:
        return [t.strip().upper() for t in self.gdacs_eventtypes.replace(" ", ",").split(",") if t.strip()]


settings = Settings()
