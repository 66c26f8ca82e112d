from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from ..database import Base
from ..utils.timeutils import utcnow


class SubscriptionAccess(Base):
    """Distinct IP that has fetched a subscription link"""
    __tablename__ = "subscription_access"

    id = Column(Integer, primary_key=True, index=True)
    subscription_token = Column(String(128), nullable=False, index=True)
    ip = Column(String(45), nullable=False)
    user_agent = Column(String(500), nullable=True)
    country = Column(String(100), nullable=True)
    access_count = Column(Integer, default=1)
    first_access = Column(DateTime, default=utcnow)
    last_access = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('subscription_token', 'ip', name='uix_subscription_access'),
    )

    def __repr__(self):
        return f"<SubscriptionAccess {self.ip} x{self.access_count}>"
