from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index, UniqueConstraint
from ..database import Base
from ..utils.timeutils import utcnow


class ActiveSession(Base):
    """An (account, ip) pair currently counted against the device limit"""
    __tablename__ = "active_sessions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True)
    ip = Column(String(45), nullable=False)
    user_agent = Column(String(500), nullable=True)
    device_type = Column(String(50), nullable=True)  # desktop, mobile, tablet, unknown
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    last_active = Column(DateTime, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)

    # At most one session per (account, ip)
    __table_args__ = (
        UniqueConstraint('account_id', 'ip', name='uix_active_session'),
    )

    def __repr__(self):
        return f"<ActiveSession {self.ip} for account {self.account_id}>"


class AccessHistory(Base):
    """Append-only access ledger"""
    __tablename__ = "access_history"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False)
    ip = Column(String(45), nullable=False, index=True)
    user_agent = Column(String(500), nullable=True)
    access_type = Column(String(20), nullable=True)  # subscription, proxy, api
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    is_suspicious = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index('idx_access_history_account_time', 'account_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AccessHistory {self.id} {self.ip} for account {self.account_id}>"
