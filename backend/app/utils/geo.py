import logging
import re
from typing import Optional

import geoip2.database
import geoip2.errors
import httpx

from ..core.exceptions import GeolocationError
from ..schemas.access import GeoInfo
from .rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

# Private IP patterns
PRIVATE_IP_PATTERNS = [
    re.compile(r'^127\.'),  # Loopback
    re.compile(r'^10\.'),  # Class A private
    re.compile(r'^172\.(1[6-9]|2[0-9]|3[0-1])\.'),  # Class B private
    re.compile(r'^192\.168\.'),  # Class C private
    re.compile(r'^169\.254\.'),  # Link-local
    re.compile(r'^::1$'),  # IPv6 loopback
    re.compile(r'^fc00:', re.IGNORECASE),  # IPv6 unique local
    re.compile(r'^fe80:', re.IGNORECASE),  # IPv6 link-local
]


def is_private_ip(ip: str) -> bool:
    """Check if IP address is private/local"""
    if not ip:
        return True
    for pattern in PRIVATE_IP_PATTERNS:
        if pattern.match(ip):
            return True
    return False


class GeoReader:
    """
    Point lookup against an external geolocation source.

    lookup() returns None when the source has no record for the IP and
    raises GeolocationError when the source itself fails.
    """

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MaxMindGeoReader(GeoReader):
    """Reader for a MaxMind GeoLite2/GeoIP2 City database file"""

    def __init__(self, path: str):
        self.path = path
        self._reader = geoip2.database.Reader(path)

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        try:
            record = self._reader.city(ip)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None
        except (geoip2.errors.GeoIP2Error, OSError) as e:
            raise GeolocationError(ip, {"error": str(e)}) from e

        return GeoInfo(
            ip=ip,
            country=record.country.name or "",
            country_code=record.country.iso_code or "",
            region=record.subdivisions.most_specific.name or "",
            city=record.city.name or "",
            latitude=record.location.latitude or 0.0,
            longitude=record.location.longitude or 0.0,
            # ISP needs the separate GeoIP2 ISP database
            isp="",
        )

    def close(self) -> None:
        self._reader.close()


class IpApiGeoReader(GeoReader):
    """
    Reader backed by ip-api.com (free, 45 req/min limit).

    Private addresses resolve to nothing without a network call.
    """

    def __init__(self, base_url: str = "http://ip-api.com/json", timeout: float = 2.0,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        if is_private_ip(ip):
            return None

        try:
            response = self._client.get(
                f"{self.base_url}/{ip}",
                params={"fields": "status,country,countryCode,regionName,city,lat,lon,isp"}
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GeolocationError(ip, {"error": str(e)}) from e

        if data.get("status") != "success":
            return None

        return GeoInfo(
            ip=ip,
            country=data.get("country") or "",
            country_code=data.get("countryCode") or "",
            region=data.get("regionName") or "",
            city=data.get("city") or "",
            latitude=data.get("lat") or 0.0,
            longitude=data.get("lon") or 0.0,
            isp=data.get("isp") or "",
        )

    def close(self) -> None:
        self._client.close()


class GeoReaderSlot:
    """
    Swappable holder for the current GeoReader.

    Lookups share a read lock; reload() and close() take the write lock so a
    reader is never closed while a lookup is using it. An empty slot means
    geolocation is unavailable and lookups resolve nothing.
    """

    def __init__(self, reader: Optional[GeoReader] = None):
        self._reader = reader
        self._lock = ReadWriteLock()

    @classmethod
    def from_config(cls, provider: str, database_path: str = "") -> "GeoReaderSlot":
        """Build a slot for the configured provider, empty if it cannot be opened"""
        if provider == "ip-api":
            return cls(IpApiGeoReader())

        if provider == "maxmind" and database_path:
            try:
                return cls(MaxMindGeoReader(database_path))
            except (OSError, ValueError, RuntimeError) as e:
                # maxminddb raises InvalidDatabaseError, a RuntimeError
                logger.warning("GeoIP database unavailable at %s: %s", database_path, e)

        return cls()

    def lookup(self, ip: str) -> Optional[GeoInfo]:
        with self._lock.read_locked():
            if self._reader is None:
                return None
            return self._reader.lookup(ip)

    def reload(self, path: str) -> None:
        """
        Replace the reader with a MaxMind database opened from path.

        The new file is opened before the swap; if opening fails the current
        reader stays in place and the error propagates.
        """
        new_reader = MaxMindGeoReader(path)
        with self._lock.write_locked():
            old_reader, self._reader = self._reader, new_reader
        if old_reader is not None:
            old_reader.close()
        logger.info("GeoIP database reloaded from %s", path)

    def set_reader(self, reader: Optional[GeoReader]) -> None:
        with self._lock.write_locked():
            old_reader, self._reader = self._reader, reader
        if old_reader is not None:
            old_reader.close()

    def close(self) -> None:
        with self._lock.write_locked():
            if self._reader is not None:
                self._reader.close()
                self._reader = None

    def is_available(self) -> bool:
        with self._lock.read_locked():
            return self._reader is not None
