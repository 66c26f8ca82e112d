from sqlalchemy import Column, Integer, String, DateTime
from ..database import Base
from ..utils.timeutils import utcnow


class FailedAttempt(Base):
    """Failed access attempt, counted for auto-blacklisting"""
    __tablename__ = "failed_attempts"

    id = Column(Integer, primary_key=True, index=True)
    ip = Column(String(45), nullable=False, index=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<FailedAttempt {self.ip}>"
