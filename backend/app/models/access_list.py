from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index
from ..database import Base
from ..utils.timeutils import utcnow


class IPBlacklist(Base):
    """Blocked IP address or CIDR range, global when account_id is NULL"""
    __tablename__ = "ip_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    ip = Column(String(45), nullable=False, default="")  # IPv4 or IPv6
    cidr = Column(String(50), nullable=True)  # e.g. 10.0.0.0/24
    account_id = Column(Integer, nullable=True, index=True)
    reason = Column(String(255), nullable=True)
    expires_at = Column(DateTime, nullable=True)  # NULL means permanent
    is_automatic = Column(Boolean, default=False)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_ip_blacklist_ip', 'ip'),
        Index('idx_ip_blacklist_expires_at', 'expires_at'),
    )

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def __repr__(self):
        return f"<IPBlacklist {self.cidr or self.ip}>"


class IPWhitelist(Base):
    """IP address or CIDR range that bypasses every restriction"""
    __tablename__ = "ip_whitelist"

    id = Column(Integer, primary_key=True, index=True)
    ip = Column(String(45), nullable=False, default="")
    cidr = Column(String(50), nullable=True)
    account_id = Column(Integer, nullable=True, index=True)
    description = Column(String(255), nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_ip_whitelist_ip', 'ip'),
    )

    def __repr__(self):
        return f"<IPWhitelist {self.cidr or self.ip}>"
