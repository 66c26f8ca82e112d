"""Access decision engine combining lists, sessions, geography and abuse history."""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import (
    ERR_GEO_RESTRICTED,
    ERR_IP_BLACKLISTED,
    ERR_IP_LIMIT_EXCEEDED,
    KickFailedError,
)
from ..schemas.access import AccessResult, AccessType, IPStats, OnlineSession
from ..schemas.settings import RestrictionSettings
from ..utils.device import detect_device_type
from ..utils.timeutils import utcnow
from .access_list import AccessListStore, split_ip_or_cidr
from .failed_attempts import FailedAttemptLedger
from .geolocation import GeolocationService
from .notifications import (
    AUTO_BLACKLISTED,
    DEVICE_KICKED,
    IP_LIMIT_REACHED,
    NEW_DEVICE,
    SUSPICIOUS_ACTIVITY,
    NotificationData,
    NotificationDispatcher,
)
from .settings_store import SettingsStore
from .subscription import SubscriptionAccessLimiter
from .tracker import SessionTracker

logger = logging.getLogger(__name__)

# More distinct countries than this within the window marks activity as suspicious
SUSPICIOUS_COUNTRY_THRESHOLD = 3
SUSPICIOUS_WINDOW_MINUTES = 30
STATS_UNIQUE_IP_DAYS = 30


def _blacklist_reason(entry) -> str:
    if entry.reason:
        return f"IP is blacklisted: {entry.reason}"
    return "IP is blacklisted"


class IPRestrictionService:
    """
    Decides whether a client IP may proceed for an account.

    The service owns its RestrictionSettings value. It is read from the
    settings store by load_settings() and replaced by save_settings(); no
    other code mutates it.
    """

    def __init__(
        self,
        session_factory,
        geo_service: Optional[GeolocationService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        restriction_settings: Optional[RestrictionSettings] = None,
    ):
        self.session_factory = session_factory
        self.geo_service = geo_service or GeolocationService(session_factory)
        self.access_lists = AccessListStore(session_factory)
        self.tracker = SessionTracker(session_factory)
        self.subscriptions = SubscriptionAccessLimiter(session_factory, self.geo_service)
        self.failed_attempts = FailedAttemptLedger(session_factory)
        self.settings_store = SettingsStore(session_factory)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self._settings = restriction_settings or RestrictionSettings()

    # ----- settings -----

    @property
    def settings(self) -> RestrictionSettings:
        return self._settings

    def load_settings(self) -> RestrictionSettings:
        self._settings = self.settings_store.load_restriction_settings()
        return self._settings

    def save_settings(self, restriction_settings: RestrictionSettings) -> None:
        self.settings_store.save_restriction_settings(restriction_settings)
        self._settings = restriction_settings
        logger.info("IP restriction settings updated")

    @property
    def inactive_timeout(self) -> timedelta:
        return timedelta(minutes=self._settings.inactive_timeout)

    def resolve_limit(self, max_concurrent: int) -> int:
        """Explicit limit, or the configured default when negative"""
        if max_concurrent < 0:
            return self._settings.default_max_concurrent_sessions
        return max_concurrent

    # ----- access decision -----

    def check_access(self, account_id: int, ip: str, access_type: AccessType = AccessType.PROXY,
                     max_concurrent: int = -1) -> AccessResult:
        """
        Decide whether ip may proceed for account_id.

        Checks run in a fixed order and the first decisive one wins:
        restriction disabled, whitelist, blacklist, geography, unlimited
        limit, existing session, device limit.

        Raises:
            SQLAlchemyError: If the store fails while reading sessions or lists
        """
        current = self._settings

        if not current.enabled:
            return AccessResult(allowed=True)

        if self.access_lists.is_whitelisted(ip, account_id):
            return AccessResult(allowed=True, reason="whitelisted")

        entry = self.access_lists.is_blacklisted(ip, account_id)
        if entry is not None:
            logger.warning("Blacklisted IP %s denied for account %s", ip, account_id)
            return AccessResult(
                allowed=False,
                code=ERR_IP_BLACKLISTED,
                reason=_blacklist_reason(entry)
            )

        if current.geo_restriction_enabled:
            geo_result = self.geo_service.check_geo_restriction(
                ip, current.allowed_countries, current.blocked_countries
            )
            if not geo_result.allowed:
                logger.warning("Geo restricted IP %s (%s) denied for account %s",
                               ip, geo_result.country_code, account_id)
                return AccessResult(
                    allowed=False,
                    code=ERR_GEO_RESTRICTED,
                    reason=f"Access from {geo_result.country} is not allowed: {geo_result.reason}"
                )

        limit = self.resolve_limit(max_concurrent)
        if limit == 0:
            return AccessResult(allowed=True, reason="unlimited")

        try:
            self.tracker.cleanup_inactive_sessions_for_account(account_id, self.inactive_timeout)
        except SQLAlchemyError as e:
            logger.warning("Inactive session sweep failed for account %s: %s", account_id, e)

        if self.tracker.is_session_active(account_id, ip):
            self.tracker.update_last_active(account_id, ip)
            return AccessResult(allowed=True, reason="existing session")

        # No lock spans this count and the later insert; concurrent new IPs
        # may both take the last slot.
        count = self.tracker.get_active_session_count(account_id)
        if count >= limit:
            sessions = sorted(self.tracker.get_active_sessions(account_id), key=lambda s: (s.created_at, s.id))
            online_ips = [s.ip for s in sessions]
            geo = self.geo_service.try_lookup(ip)
            self.dispatcher.dispatch(IP_LIMIT_REACHED, NotificationData(
                account_id=account_id,
                ip=ip,
                country=geo.country,
                city=geo.city,
                current_count=count,
                max_count=limit,
            ))
            logger.warning("Device limit %d reached for account %s, denied %s", limit, account_id, ip)
            return AccessResult(
                allowed=False,
                code=ERR_IP_LIMIT_EXCEEDED,
                reason=f"Maximum device limit ({limit}) reached",
                remaining_slots=0,
                online_ips=online_ips
            )

        return AccessResult(allowed=True, remaining_slots=limit - count - 1)

    def record_activity(self, account_id: int, ip: str, user_agent: str = "",
                        access_type: AccessType = AccessType.PROXY) -> None:
        """
        Register an accepted access: refresh the session, append history and
        raise new-device and suspicious-activity notifications.
        """
        geo = self.geo_service.try_lookup(ip)
        device_type = detect_device_type(user_agent)

        is_new_device = not self.tracker.is_session_active(account_id, ip)

        self.tracker.add_active_session(
            account_id, ip, user_agent=user_agent, device_type=device_type,
            country=geo.country, city=geo.city
        )

        is_suspicious = self._is_suspicious_activity(account_id, geo.country)

        self.tracker.record_history(
            account_id, ip, user_agent=user_agent, access_type=AccessType(access_type).value,
            country=geo.country, city=geo.city, is_suspicious=is_suspicious
        )

        if is_suspicious:
            logger.warning("Suspicious activity for account %s from %s (%s)", account_id, ip, geo.country)
            self.dispatcher.dispatch(SUSPICIOUS_ACTIVITY, NotificationData(
                account_id=account_id,
                ip=ip,
                country=geo.country,
                city=geo.city,
                device_info=user_agent,
                reason="Multiple countries detected in short time window",
            ))

        if is_new_device:
            self.dispatcher.dispatch(NEW_DEVICE, NotificationData(
                account_id=account_id,
                ip=ip,
                country=geo.country,
                city=geo.city,
                device_info=user_agent,
            ))

    def _is_suspicious_activity(self, account_id: int, current_country: str) -> bool:
        if not current_country:
            return False

        try:
            countries = set(self.tracker.get_recent_countries(account_id, SUSPICIOUS_WINDOW_MINUTES))
        except SQLAlchemyError as e:
            logger.warning("Recent country lookup failed for account %s: %s", account_id, e)
            return False

        countries.add(current_country)
        return len(countries) > SUSPICIOUS_COUNTRY_THRESHOLD

    # ----- sessions -----

    def get_online_sessions(self, account_id: int) -> List[OnlineSession]:
        self.tracker.cleanup_inactive_sessions_for_account(account_id, self.inactive_timeout)
        return self.tracker.get_online_sessions(account_id)

    def get_all_online_sessions(self) -> Dict[int, List[OnlineSession]]:
        """Online sessions grouped by account"""
        self.tracker.cleanup_inactive_sessions(self.inactive_timeout)
        grouped: Dict[int, List[OnlineSession]] = {}
        for session in self.tracker.get_active_sessions():
            grouped.setdefault(session.account_id, []).append(OnlineSession.model_validate(session))
        return grouped

    def kick_session(self, account_id: int, ip: str, add_to_blacklist: bool = False,
                     block_duration: timedelta = timedelta(0)) -> None:
        """
        Remove a device, optionally blocking its IP for this account.

        Raises:
            KickFailedError: If the session or the block could not be written
            InvalidCIDRError: If a block is requested for an unusable IP
        """
        block = add_to_blacklist and block_duration > timedelta(0)
        if block:
            # Validate before anything is removed
            split_ip_or_cidr(ip)

        try:
            self.tracker.remove_active_session(account_id, ip)
            if block:
                self.access_lists.add_to_blacklist(
                    ip,
                    account_id=account_id,
                    reason="kicked by user",
                    expires_at=utcnow() + block_duration,
                )
        except SQLAlchemyError as e:
            raise KickFailedError(ip, {"account_id": account_id, "error": str(e)}) from e

        geo = self.geo_service.try_lookup(ip)
        self.dispatcher.dispatch(DEVICE_KICKED, NotificationData(
            account_id=account_id,
            ip=ip,
            country=geo.country,
            city=geo.city,
            reason="Device kicked by user or admin",
        ))
        logger.info("Kicked %s from account %s (blocked=%s)", ip, account_id, add_to_blacklist)

    def get_stats(self, account_id: int, max_concurrent: int = -1) -> IPStats:
        self.tracker.cleanup_inactive_sessions_for_account(account_id, self.inactive_timeout)

        active_count = self.tracker.get_active_session_count(account_id)

        end_time = utcnow()
        start_time = end_time - timedelta(days=STATS_UNIQUE_IP_DAYS)
        unique_count = self.tracker.get_unique_ip_count(account_id, start_time, end_time)

        limit = self.resolve_limit(max_concurrent)
        remaining = max(limit - active_count, 0) if limit > 0 else 0

        countries = self.tracker.get_recent_countries(account_id, SUSPICIOUS_WINDOW_MINUTES)

        return IPStats(
            total_unique_ips=unique_count,
            current_active_ips=active_count,
            max_concurrent_ips=limit,
            remaining_slots=remaining,
            ips_by_country=self.tracker.get_ips_by_country(account_id),
            recent_ips=self.tracker.get_online_sessions(account_id),
            suspicious_activity=len(set(countries)) > SUSPICIOUS_COUNTRY_THRESHOLD,
        )

    # ----- subscription links -----

    def resolve_subscription_limit(self, limit: int) -> int:
        """Explicit limit, else the configured default if the feature is on, else unlimited"""
        if limit >= 0:
            return limit
        if self._settings.subscription_ip_limit_enabled:
            return self._settings.default_subscription_ip_limit
        return 0

    def check_subscription_access(self, token: str, ip: str, limit: int = -1) -> AccessResult:
        """
        Gate a subscription link fetch. Disabled restriction and whitelisted
        IPs pass; blacklisted IPs are denied before the distinct-IP limit.
        """
        if not self._settings.enabled:
            return AccessResult(allowed=True)

        if self.access_lists.is_whitelisted(ip):
            return AccessResult(allowed=True, reason="whitelisted")

        entry = self.access_lists.is_blacklisted(ip)
        if entry is not None:
            return AccessResult(
                allowed=False,
                code=ERR_IP_BLACKLISTED,
                reason=_blacklist_reason(entry)
            )

        return self.subscriptions.check_ip_limit(token, ip, self.resolve_subscription_limit(limit))

    def record_subscription_access(self, token: str, ip: str, user_agent: str = "") -> None:
        self.subscriptions.record_access(token, ip, user_agent)

    # ----- failed attempts -----

    def record_failed_attempt(self, ip: str, reason: str = "") -> None:
        self.failed_attempts.record(ip, reason)

    def check_auto_blacklist(self, ip: str) -> bool:
        """
        Blacklist ip if it reached the failed-attempt threshold within the window.

        Returns:
            True if the IP is (now) auto-blacklisted
        """
        current = self._settings
        if not current.auto_blacklist_enabled:
            return False

        count = self.failed_attempts.count_recent(ip, current.failed_attempt_window)
        if count < current.max_failed_attempts:
            return False

        if self.access_lists.has_active_automatic_entry(ip):
            return True

        self.access_lists.add_to_blacklist(
            ip,
            reason=f"auto-blacklisted: {count} failed attempts",
            expires_at=utcnow() + timedelta(minutes=current.auto_blacklist_duration),
            is_automatic=True,
        )
        logger.warning("Auto-blacklisted %s after %d failed attempts", ip, count)

        geo = self.geo_service.try_lookup(ip)
        self.dispatcher.dispatch(AUTO_BLACKLISTED, NotificationData(
            ip=ip,
            country=geo.country,
            city=geo.city,
            reason=f"Auto-blacklisted after {count} failed attempts",
            current_count=count,
            max_count=current.max_failed_attempts,
        ))
        return True

    def cleanup_failed_attempts(self) -> int:
        return self.failed_attempts.cleanup(self._settings.failed_attempt_window)

    # ----- maintenance -----

    def run_maintenance(self, retention_days: int) -> Dict[str, int]:
        """Run every sweep once and report how many rows each removed"""
        results = {
            "inactive_sessions": self.tracker.cleanup_inactive_sessions(self.inactive_timeout),
            "expired_blacklist": self.access_lists.cleanup_expired_blacklist(),
            "failed_attempts": self.cleanup_failed_attempts(),
            "old_history": self.tracker.cleanup_old_history(retention_days),
            "expired_geo_cache": self.geo_service.cleanup_expired_cache(),
        }
        logger.info("Maintenance finished: %s", results)
        return results

    def close(self) -> None:
        self.geo_service.close()
        self.dispatcher.shutdown()
