from sqlalchemy import Column, String, Text, DateTime
from ..database import Base
from ..utils.timeutils import utcnow


class AppSetting(Base):
    """Named configuration blob stored as JSON text"""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<AppSetting {self.key}>"
