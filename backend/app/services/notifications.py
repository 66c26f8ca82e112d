"""Notification hooks for IP restriction events.

The transport is external: anything implementing ``Notifier`` can be plugged
in. ``NotificationDispatcher`` guarantees that a failing or slow notifier
never fails the access decision that triggered it.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..utils.timeutils import utcnow

logger = logging.getLogger(__name__)

NEW_DEVICE = "new_device"
IP_LIMIT_REACHED = "ip_limit_reached"
SUSPICIOUS_ACTIVITY = "suspicious_activity"
DEVICE_KICKED = "device_kicked"
AUTO_BLACKLISTED = "auto_blacklisted"


@dataclass
class NotificationData:
    """Payload shared by every IP restriction notification"""
    ip: str
    account_id: Optional[int] = None
    country: str = ""
    city: str = ""
    device_info: str = ""
    reason: str = ""
    current_count: int = 0
    max_count: int = 0
    timestamp: datetime = field(default_factory=utcnow)


class Notifier:
    """Receiver of IP restriction events. Every hook defaults to a no-op."""

    def notify_new_device(self, data: NotificationData) -> None:
        pass

    def notify_ip_limit_reached(self, data: NotificationData) -> None:
        pass

    def notify_suspicious_activity(self, data: NotificationData) -> None:
        pass

    def notify_device_kicked(self, data: NotificationData) -> None:
        pass

    def notify_auto_blacklisted(self, data: NotificationData) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes every event to the application log"""

    def _log(self, event: str, data: NotificationData) -> None:
        logger.info(
            "%s: account=%s ip=%s country=%s city=%s reason=%s count=%d/%d",
            event, data.account_id, data.ip, data.country, data.city,
            data.reason, data.current_count, data.max_count
        )

    def notify_new_device(self, data: NotificationData) -> None:
        self._log(NEW_DEVICE, data)

    def notify_ip_limit_reached(self, data: NotificationData) -> None:
        self._log(IP_LIMIT_REACHED, data)

    def notify_suspicious_activity(self, data: NotificationData) -> None:
        self._log(SUSPICIOUS_ACTIVITY, data)

    def notify_device_kicked(self, data: NotificationData) -> None:
        self._log(DEVICE_KICKED, data)

    def notify_auto_blacklisted(self, data: NotificationData) -> None:
        self._log(AUTO_BLACKLISTED, data)


class NotificationDispatcher:
    """
    Fire-and-forget delivery to a Notifier.

    With an executor, hooks run off the request thread; without one they run
    inline. Either way exceptions are logged and never re-raised.
    """

    def __init__(self, notifier: Optional[Notifier] = None, executor: Optional[Executor] = None):
        self.notifier = notifier
        self.executor = executor

    def dispatch(self, event: str, data: NotificationData) -> None:
        if self.notifier is None:
            return

        hook = getattr(self.notifier, f"notify_{event}", None)
        if hook is None:
            logger.error("Notifier has no hook for event %s", event)
            return

        if self.executor is None:
            self._call(event, hook, data)
            return

        try:
            self.executor.submit(self._call, event, hook, data)
        except RuntimeError as e:
            # Executor already shut down
            logger.error("Dropped %s notification for %s: %s", event, data.ip, e)

    @staticmethod
    def _call(event: str, hook, data: NotificationData) -> None:
        try:
            hook(data)
        except Exception:
            logger.exception("Notifier failed on %s for %s", event, data.ip)

    def shutdown(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)
