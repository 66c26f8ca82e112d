from .access import (
    AccessType, AccessResult, OnlineSession, IPStats, GeoInfo, GeoCheckResult,
    BlacklistMatch, HistoryFilter, HistoryRecord,
)
from .access_list import WhitelistCreate, BlacklistCreate, ImportRequest, WhitelistResponse, BlacklistResponse
from .settings import RestrictionSettings
from .subscription import SubscriptionAccessInfo, SubscriptionIPStats

__all__ = [
    "AccessType", "AccessResult", "OnlineSession", "IPStats", "GeoInfo", "GeoCheckResult",
    "BlacklistMatch", "HistoryFilter", "HistoryRecord",
    "WhitelistCreate", "BlacklistCreate", "ImportRequest", "WhitelistResponse", "BlacklistResponse",
    "RestrictionSettings", "SubscriptionAccessInfo", "SubscriptionIPStats",
]
