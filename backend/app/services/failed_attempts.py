from datetime import timedelta

from sqlalchemy import func

from ..models import FailedAttempt
from ..utils.timeutils import utcnow


class FailedAttemptLedger:
    """Append-only record of failed attempts, counted over a sliding window"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def record(self, ip: str, reason: str = "") -> None:
        with self.session_factory() as db:
            db.add(FailedAttempt(ip=ip, reason=reason, created_at=utcnow()))
            db.commit()

    def count_recent(self, ip: str, window_minutes: int) -> int:
        """Attempts by ip within [now - window, now]"""
        window_start = utcnow() - timedelta(minutes=window_minutes)
        with self.session_factory() as db:
            return db.query(func.count(FailedAttempt.id)).filter(
                FailedAttempt.ip == ip,
                FailedAttempt.created_at >= window_start
            ).scalar() or 0

    def cleanup(self, window_minutes: int) -> int:
        """Purge records older than twice the window"""
        cutoff = utcnow() - timedelta(minutes=window_minutes * 2)
        with self.session_factory() as db:
            deleted = db.query(FailedAttempt).filter(
                FailedAttempt.created_at < cutoff
            ).delete(synchronize_session=False)
            db.commit()
        return deleted
