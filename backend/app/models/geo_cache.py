from datetime import timedelta

from sqlalchemy import Column, String, DateTime, Float
from ..database import Base
from ..utils.timeutils import utcnow


class GeoCache(Base):
    """Cached geolocation lookup result"""
    __tablename__ = "geo_cache"

    ip = Column(String(45), primary_key=True)
    country = Column(String(100), nullable=True)
    country_code = Column(String(2), nullable=True)
    region = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    isp = Column(String(200), nullable=True)
    cached_at = Column(DateTime, default=utcnow, index=True)

    def is_valid(self, ttl: timedelta) -> bool:
        return utcnow() - self.cached_at < ttl

    def __repr__(self):
        return f"<GeoCache {self.ip} {self.country_code}>"
