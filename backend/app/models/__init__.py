from .access_list import IPBlacklist, IPWhitelist
from .session import ActiveSession, AccessHistory
from .subscription_access import SubscriptionAccess
from .geo_cache import GeoCache
from .failed_attempt import FailedAttempt
from .setting import AppSetting

__all__ = [
    "IPBlacklist", "IPWhitelist", "ActiveSession", "AccessHistory",
    "SubscriptionAccess", "GeoCache", "FailedAttempt", "AppSetting",
]
