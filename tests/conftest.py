"""Shared fixtures: settings, bundled reference tables, in-memory alert store."""
from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

import pytest

from alertpoller.core.alerts_db import AlertStoreSqlite
from alertpoller.core.contracts import Alert, AlertInfo, PointGeometry
from alertpoller.core.reference import ReferenceTables, load_reference_tables
from alertpoller.core.settings import Settings
from alertpoller.core.time import utc_now
from alertpoller.services.common import NormalizeContext
from alertpoller.services.geometry import JitterPolicy


@pytest.fixture
def settings() -> Settings:
    return Settings(alerts_db_path=":memory:", alerts_database_url=None)


@pytest.fixture
def tables(settings: Settings) -> ReferenceTables:
    return load_reference_tables(settings.data_dir)


@pytest.fixture
def jitter(settings: Settings) -> JitterPolicy:
    return JitterPolicy.from_settings(settings)


@pytest.fixture
def ctx(settings: Settings, tables: ReferenceTables, jitter: JitterPolicy) -> NormalizeContext:
    return NormalizeContext(settings=settings, tables=tables, jitter=jitter)


@pytest.fixture
def store():
    s = AlertStoreSqlite(":memory:")
    yield s
    s.close()


@pytest.fixture
def make_alert() -> Callable[..., Alert]:
    def _make(
        identifier: str = "TEST-1",
        lonlat=(-89.17, 31.62),
        *,
        source: str = "NWS",
        sent_ago: timedelta = timedelta(minutes=5),
        expires_in: Optional[timedelta] = timedelta(hours=1),
        event: str = "Flood Warning",
    ) -> Alert:
        now = utc_now()
        return Alert(
            identifier=identifier,
            sender="test",
            sent=now - sent_ago,
            info=AlertInfo(event=event, severity="Severe"),
            geometry=PointGeometry(coordinates=[lonlat[0], lonlat[1]]),
            geometryMethod="polygon",
            source=source,
            timestamp=now,
            expires=now + expires_in if expires_in is not None else now - timedelta(seconds=1),
        )

    return _make
