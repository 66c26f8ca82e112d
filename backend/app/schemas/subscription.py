from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel


class SubscriptionAccessInfo(BaseModel):
    """One IP that fetched a subscription link"""
    ip: str
    country: Optional[str] = None
    user_agent: Optional[str] = None
    access_count: int
    first_access: datetime
    last_access: datetime

    class Config:
        from_attributes = True


class SubscriptionIPStats(BaseModel):
    """Access statistics for a subscription link"""
    unique_ips: int
    total_access: int
    ips_by_country: Dict[str, int]
    recent_ips: List[SubscriptionAccessInfo]
