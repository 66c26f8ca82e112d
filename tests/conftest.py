"""Shared fixtures: in-memory database, fake geolocation and a recording notifier."""

from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.exceptions import GeolocationError
from app.database import Base
from app.schemas.access import GeoInfo
from app.schemas.settings import RestrictionSettings
from app.services.geolocation import GeolocationService
from app.services.ip_restriction import IPRestrictionService
from app.services.notifications import NotificationData, NotificationDispatcher, Notifier
from app.utils.geo import GeoReader, GeoReaderSlot


class FakeGeoReader(GeoReader):
    """GeoReader answering from a dict of ip -> (country, country_code, city)."""

    def __init__(self, records: Optional[Dict[str, Tuple[str, str, str]]] = None):
        self.records = records or {}
        self.fail = False
        self.calls: List[str] = []
        self.closed = False

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        self.calls.append(ip)
        if self.fail:
            raise GeolocationError(ip, {"error": "source down"})
        if ip not in self.records:
            return None
        country, country_code, city = self.records[ip]
        return GeoInfo(ip=ip, country=country, country_code=country_code, city=city)

    def close(self) -> None:
        self.closed = True


class RecordingNotifier(Notifier):
    """Keeps every event in order as (event, data)."""

    def __init__(self):
        self.events: List[Tuple[str, NotificationData]] = []

    def of(self, event: str) -> List[NotificationData]:
        return [data for name, data in self.events if name == event]

    def notify_new_device(self, data):
        self.events.append(("new_device", data))

    def notify_ip_limit_reached(self, data):
        self.events.append(("ip_limit_reached", data))

    def notify_suspicious_activity(self, data):
        self.events.append(("suspicious_activity", data))

    def notify_device_kicked(self, data):
        self.events.append(("device_kicked", data))

    def notify_auto_blacklisted(self, data):
        self.events.append(("auto_blacklisted", data))


GEO_RECORDS = {
    "8.8.8.8": ("United States", "US", "Mountain View"),
    "1.1.1.1": ("Australia", "AU", "Sydney"),
    "5.5.5.5": ("Germany", "DE", "Berlin"),
    "2.2.2.2": ("France", "FR", "Paris"),
    "36.0.0.1": ("China", "CN", "Beijing"),
    "133.0.0.1": ("Japan", "JP", "Tokyo"),
}


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared by every connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def geo_reader():
    return FakeGeoReader(dict(GEO_RECORDS))


@pytest.fixture
def geo_service(session_factory, geo_reader):
    return GeolocationService(session_factory, GeoReaderSlot(geo_reader), cache_ttl=timedelta(hours=24))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def restriction_settings():
    return RestrictionSettings()


@pytest.fixture
def service(session_factory, geo_service, notifier, restriction_settings):
    """IP restriction service with inline notifications."""
    return IPRestrictionService(
        session_factory,
        geo_service,
        NotificationDispatcher(notifier),
        restriction_settings,
    )


@pytest.fixture
def make_geo_reader():
    """Factory for standalone fake readers."""
    return FakeGeoReader
