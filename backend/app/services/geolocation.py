import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import GeolocationError
from ..database import upsert
from ..models import GeoCache
from ..schemas.access import GeoInfo, GeoCheckResult
from ..utils.geo import GeoReaderSlot
from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class GeolocationService:
    """
    TTL-cached geolocation lookups.

    Results are stored in the geo_cache table. Whether lookups that resolved
    nothing are cached too is controlled by cache_empty_results: caching them
    saves repeated work for addresses the database does not know. Lookups made
    while no reader is loaded are never cached, and reloading the database
    drops the cached empty rows.
    """

    def __init__(self, session_factory, reader_slot: Optional[GeoReaderSlot] = None,
                 cache_ttl: timedelta = timedelta(hours=24), cache_empty_results: bool = True):
        self.session_factory = session_factory
        self.reader_slot = reader_slot or GeoReaderSlot()
        self.cache_ttl = cache_ttl
        self.cache_empty_results = cache_empty_results

    def lookup(self, ip: str) -> GeoInfo:
        """
        Look up an IP, cache first.

        Raises:
            GeolocationError: If the underlying source fails
        """
        cached = self._get_from_cache(ip)
        if cached is not None:
            return cached

        if not self.reader_slot.is_available():
            return GeoInfo(ip=ip)

        info = self.reader_slot.lookup(ip) or GeoInfo(ip=ip)

        if not info.is_empty or self.cache_empty_results:
            self._save_to_cache(info)

        return info

    def lookup_batch(self, ips: List[str]) -> Dict[str, GeoInfo]:
        """Look up several IPs, skipping the ones that fail"""
        results = {}
        for ip in ips:
            try:
                results[ip] = self.lookup(ip)
            except (GeolocationError, SQLAlchemyError) as e:
                logger.debug("Skipping geolocation of %s: %s", ip, e)
        return results

    def try_lookup(self, ip: str) -> GeoInfo:
        """Look up an IP, returning empty info instead of raising"""
        try:
            return self.lookup(ip)
        except (GeolocationError, SQLAlchemyError) as e:
            logger.warning("Geolocation lookup failed for %s: %s", ip, e)
            return GeoInfo(ip=ip)

    def check_geo_restriction(self, ip: str, allowed_countries: List[str],
                              blocked_countries: List[str]) -> GeoCheckResult:
        """
        Check an IP against country allow/block lists.

        Blocked countries win over allowed ones. An empty allowed list allows
        every country that is not blocked. A failed lookup, or an IP whose
        country is unknown, is allowed.
        """
        if not allowed_countries and not blocked_countries:
            return GeoCheckResult(allowed=True)

        try:
            info = self.lookup(ip)
        except (GeolocationError, SQLAlchemyError) as e:
            logger.warning("Geo restriction skipped for %s: %s", ip, e)
            return GeoCheckResult(allowed=True, reason="geolocation lookup failed")

        result = GeoCheckResult(
            allowed=True,
            country=info.country,
            country_code=info.country_code,
            city=info.city,
        )

        code = info.country_code.upper()
        if not code:
            result.reason = "country unknown"
            return result

        if code in {c.upper() for c in blocked_countries}:
            result.allowed = False
            result.reason = "country is blocked"
            return result

        if allowed_countries and code not in {c.upper() for c in allowed_countries}:
            result.allowed = False
            result.reason = "country is not in allowed list"

        return result

    def cleanup_expired_cache(self) -> int:
        """Delete cache entries older than the TTL"""
        cutoff = utcnow() - self.cache_ttl
        with self.session_factory() as db:
            deleted = db.query(GeoCache).filter(
                GeoCache.cached_at < cutoff
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def is_available(self) -> bool:
        return self.reader_slot.is_available()

    def reload_database(self, path: str) -> None:
        self.reader_slot.reload(path)
        purged = self.purge_unresolved_cache()
        if purged:
            logger.info("Dropped %d unresolved geo cache entries after reload", purged)

    def purge_unresolved_cache(self) -> int:
        """Delete cache entries that resolved nothing"""
        with self.session_factory() as db:
            deleted = db.query(GeoCache).filter(
                or_(GeoCache.country_code.is_(None), GeoCache.country_code == ""),
                or_(GeoCache.country.is_(None), GeoCache.country == ""),
                or_(GeoCache.city.is_(None), GeoCache.city == ""),
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def close(self) -> None:
        self.reader_slot.close()

    def _get_from_cache(self, ip: str) -> Optional[GeoInfo]:
        with self.session_factory() as db:
            cache = db.query(GeoCache).filter(GeoCache.ip == ip).first()
            if cache is None or not cache.is_valid(self.cache_ttl):
                return None
            return GeoInfo(
                ip=cache.ip,
                country=cache.country or "",
                country_code=cache.country_code or "",
                region=cache.region or "",
                city=cache.city or "",
                latitude=cache.latitude or 0.0,
                longitude=cache.longitude or 0.0,
                isp=cache.isp or "",
            )

    def _save_to_cache(self, info: GeoInfo) -> None:
        values = info.model_dump(exclude={"ip"})
        values["cached_at"] = utcnow()
        try:
            with self.session_factory() as db:
                upsert(db, GeoCache, dict(values, ip=info.ip), ["ip"], values)
                db.commit()
        except SQLAlchemyError as e:
            # The lookup result is still usable without the cache row
            logger.warning("Failed to cache geolocation for %s: %s", info.ip, e)
