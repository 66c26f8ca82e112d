import logging
from typing import List, Optional

from sqlalchemy import func

from ..core.exceptions import ERR_SUBSCRIPTION_IP_LIMIT
from ..database import upsert
from ..models import SubscriptionAccess
from ..schemas.access import AccessResult
from ..schemas.subscription import SubscriptionAccessInfo, SubscriptionIPStats
from ..utils.timeutils import utcnow
from .geolocation import GeolocationService

logger = logging.getLogger(__name__)


class SubscriptionAccessLimiter:
    """Limits how many distinct IPs may fetch one subscription link"""

    def __init__(self, session_factory, geo_service: Optional[GeolocationService] = None):
        self.session_factory = session_factory
        self.geo_service = geo_service

    def record_access(self, token: str, ip: str, user_agent: str = "") -> None:
        """
        Count an access from ip. The first access creates the row and
        resolves its country; later ones bump access_count and last_access.
        """
        now = utcnow()
        with self.session_factory() as db:
            exists = db.query(SubscriptionAccess.id).filter(
                SubscriptionAccess.subscription_token == token,
                SubscriptionAccess.ip == ip
            ).first() is not None

        country = ""
        if not exists and self.geo_service is not None:
            country = self.geo_service.try_lookup(ip).country

        with self.session_factory() as db:
            upsert(
                db,
                SubscriptionAccess,
                {
                    "subscription_token": token,
                    "ip": ip,
                    "user_agent": user_agent,
                    "country": country,
                    "access_count": 1,
                    "first_access": now,
                    "last_access": now,
                },
                ["subscription_token", "ip"],
                {
                    "access_count": SubscriptionAccess.access_count + 1,
                    "last_access": now,
                    "user_agent": user_agent,
                },
            )
            db.commit()

    def get_unique_ip_count(self, token: str) -> int:
        with self.session_factory() as db:
            return db.query(func.count(SubscriptionAccess.id)).filter(
                SubscriptionAccess.subscription_token == token
            ).scalar() or 0

    def check_ip_limit(self, token: str, ip: str, limit: int) -> AccessResult:
        """
        Decide whether ip may fetch the subscription.

        An IP that already fetched it keeps access. A new IP is denied once
        the number of distinct IPs has reached the limit. A limit of zero or
        less means unlimited.
        """
        if limit <= 0:
            return AccessResult(allowed=True)

        with self.session_factory() as db:
            existing = db.query(SubscriptionAccess.id).filter(
                SubscriptionAccess.subscription_token == token,
                SubscriptionAccess.ip == ip
            ).first()

        if existing is not None:
            return AccessResult(allowed=True, reason="existing access")

        count = self.get_unique_ip_count(token)
        if count >= limit:
            logger.warning("Subscription IP limit reached for %s (%d/%d)", ip, count, limit)
            return AccessResult(
                allowed=False,
                code=ERR_SUBSCRIPTION_IP_LIMIT,
                reason="subscription IP limit reached"
            )

        return AccessResult(allowed=True, remaining_slots=limit - count - 1)

    def get_access_list(self, token: str) -> List[SubscriptionAccess]:
        with self.session_factory() as db:
            return db.query(SubscriptionAccess).filter(
                SubscriptionAccess.subscription_token == token
            ).order_by(SubscriptionAccess.last_access.desc(), SubscriptionAccess.id.desc()).all()

    def clear_access_list(self, token: str) -> int:
        with self.session_factory() as db:
            deleted = db.query(SubscriptionAccess).filter(
                SubscriptionAccess.subscription_token == token
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def remove_ip(self, token: str, ip: str) -> int:
        with self.session_factory() as db:
            deleted = db.query(SubscriptionAccess).filter(
                SubscriptionAccess.subscription_token == token,
                SubscriptionAccess.ip == ip
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def get_access_stats(self, token: str) -> SubscriptionIPStats:
        accesses = self.get_access_list(token)

        ips_by_country = {}
        for access in accesses:
            if access.country:
                ips_by_country[access.country] = ips_by_country.get(access.country, 0) + 1

        return SubscriptionIPStats(
            unique_ips=len(accesses),
            total_access=sum(access.access_count or 0 for access in accesses),
            ips_by_country=ips_by_country,
            recent_ips=[SubscriptionAccessInfo.model_validate(access) for access in accesses],
        )
