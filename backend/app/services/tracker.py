from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func

from ..core.exceptions import NotFoundError
from ..database import upsert
from ..models import ActiveSession, AccessHistory
from ..schemas.access import HistoryFilter, OnlineSession
from ..utils.timeutils import utcnow


def _apply_history_filter(query, history_filter: Optional[HistoryFilter]):
    if history_filter is None:
        return query.order_by(AccessHistory.created_at.desc(), AccessHistory.id.desc())

    if history_filter.start_time:
        query = query.filter(AccessHistory.created_at >= history_filter.start_time)
    if history_filter.end_time:
        query = query.filter(AccessHistory.created_at <= history_filter.end_time)
    if history_filter.access_type:
        query = query.filter(AccessHistory.access_type == history_filter.access_type.value)
    if history_filter.ip:
        query = query.filter(AccessHistory.ip == history_filter.ip)
    if history_filter.country:
        query = query.filter(AccessHistory.country == history_filter.country)

    query = query.order_by(AccessHistory.created_at.desc(), AccessHistory.id.desc())

    if history_filter.offset > 0:
        query = query.offset(history_filter.offset)
    if history_filter.limit > 0:
        query = query.limit(history_filter.limit)
    return query


class SessionTracker:
    """
    Active session registry and access history ledger.

    A session is keyed by (account_id, ip). It is created on the first
    accepted access, refreshed by later ones, and removed by an explicit kick
    or by the inactivity sweep.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ----- active sessions -----

    def add_active_session(self, account_id: int, ip: str, user_agent: str = "",
                           device_type: str = "", country: str = "", city: str = "") -> None:
        """Insert the session, or refresh its metadata and last_active if it exists"""
        now = utcnow()
        refreshed = {
            "user_agent": user_agent,
            "device_type": device_type,
            "country": country,
            "city": city,
            "last_active": now,
        }
        with self.session_factory() as db:
            upsert(
                db,
                ActiveSession,
                dict(refreshed, account_id=account_id, ip=ip, created_at=now),
                ["account_id", "ip"],
                refreshed,
            )
            db.commit()

    def remove_active_session(self, account_id: int, ip: str) -> int:
        with self.session_factory() as db:
            deleted = db.query(ActiveSession).filter(
                ActiveSession.account_id == account_id,
                ActiveSession.ip == ip
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def remove_all_active_sessions(self, account_id: int) -> int:
        with self.session_factory() as db:
            deleted = db.query(ActiveSession).filter(
                ActiveSession.account_id == account_id
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def get_active_session_count(self, account_id: int) -> int:
        with self.session_factory() as db:
            return db.query(func.count(ActiveSession.id)).filter(
                ActiveSession.account_id == account_id
            ).scalar() or 0

    def get_active_sessions(self, account_id: Optional[int] = None) -> List[ActiveSession]:
        """Sessions of one account, or of every account, most recent first"""
        with self.session_factory() as db:
            query = db.query(ActiveSession)
            if account_id is not None:
                query = query.filter(ActiveSession.account_id == account_id)
            return query.order_by(ActiveSession.last_active.desc(), ActiveSession.id.desc()).all()

    def get_online_sessions(self, account_id: int) -> List[OnlineSession]:
        return [OnlineSession.model_validate(s) for s in self.get_active_sessions(account_id)]

    def is_session_active(self, account_id: int, ip: str) -> bool:
        with self.session_factory() as db:
            count = db.query(func.count(ActiveSession.id)).filter(
                ActiveSession.account_id == account_id,
                ActiveSession.ip == ip
            ).scalar()
        return bool(count)

    def update_last_active(self, account_id: int, ip: str) -> None:
        """Heartbeat for an existing session"""
        with self.session_factory() as db:
            db.query(ActiveSession).filter(
                ActiveSession.account_id == account_id,
                ActiveSession.ip == ip
            ).update({ActiveSession.last_active: utcnow()}, synchronize_session=False)
            db.commit()

    def cleanup_inactive_sessions(self, timeout: timedelta) -> int:
        """Evict sessions of every account idle for longer than timeout"""
        cutoff = utcnow() - timeout
        with self.session_factory() as db:
            deleted = db.query(ActiveSession).filter(
                ActiveSession.last_active < cutoff
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    def cleanup_inactive_sessions_for_account(self, account_id: int, timeout: timedelta) -> int:
        cutoff = utcnow() - timeout
        with self.session_factory() as db:
            deleted = db.query(ActiveSession).filter(
                ActiveSession.account_id == account_id,
                ActiveSession.last_active < cutoff
            ).delete(synchronize_session=False)
            db.commit()
        return deleted

    # ----- history -----

    def record_history(self, account_id: int, ip: str, user_agent: str = "", access_type: str = "",
                       country: str = "", city: str = "", is_suspicious: bool = False) -> AccessHistory:
        record = AccessHistory(
            account_id=account_id,
            ip=ip,
            user_agent=user_agent,
            access_type=access_type,
            country=country,
            city=city,
            is_suspicious=is_suspicious,
            created_at=utcnow()
        )
        with self.session_factory() as db:
            db.add(record)
            db.commit()
            db.refresh(record)
        return record

    def get_history(self, account_id: int, history_filter: Optional[HistoryFilter] = None) -> List[AccessHistory]:
        with self.session_factory() as db:
            query = db.query(AccessHistory).filter(AccessHistory.account_id == account_id)
            return _apply_history_filter(query, history_filter).all()

    def get_all_history(self, history_filter: Optional[HistoryFilter] = None,
                        account_id: Optional[int] = None) -> List[AccessHistory]:
        with self.session_factory() as db:
            query = db.query(AccessHistory)
            if account_id is not None:
                query = query.filter(AccessHistory.account_id == account_id)
            return _apply_history_filter(query, history_filter).all()

    def get_unique_ip_count(self, account_id: int, start_time: datetime, end_time: datetime) -> int:
        """Distinct IPs in the history window. Not used for the live limit."""
        with self.session_factory() as db:
            return db.query(func.count(func.distinct(AccessHistory.ip))).filter(
                AccessHistory.account_id == account_id,
                AccessHistory.created_at >= start_time,
                AccessHistory.created_at <= end_time
            ).scalar() or 0

    def get_ips_by_country(self, account_id: int) -> Dict[str, int]:
        """Distinct IPs per country over the whole history"""
        with self.session_factory() as db:
            results = db.query(
                AccessHistory.country,
                func.count(func.distinct(AccessHistory.ip)).label('count')
            ).filter(
                AccessHistory.account_id == account_id
            ).group_by(
                AccessHistory.country
            ).all()

        return {row.country or "": row.count for row in results}

    def get_recent_countries(self, account_id: int, minutes: int) -> List[str]:
        """Distinct known countries seen in the last N minutes"""
        cutoff = utcnow() - timedelta(minutes=minutes)
        with self.session_factory() as db:
            results = db.query(AccessHistory.country).filter(
                AccessHistory.account_id == account_id,
                AccessHistory.created_at >= cutoff,
                AccessHistory.country.isnot(None),
                AccessHistory.country != ""
            ).distinct().all()
        return [row.country for row in results]

    def mark_suspicious(self, record_id: int) -> None:
        with self.session_factory() as db:
            updated = db.query(AccessHistory).filter(
                AccessHistory.id == record_id
            ).update({AccessHistory.is_suspicious: True}, synchronize_session=False)
            db.commit()
        if not updated:
            raise NotFoundError("History record not found", {"id": record_id})

    def cleanup_old_history(self, retention_days: int) -> int:
        cutoff = utcnow() - timedelta(days=retention_days)
        with self.session_factory() as db:
            deleted = db.query(AccessHistory).filter(
                AccessHistory.created_at < cutoff
            ).delete(synchronize_session=False)
            db.commit()
        return deleted
