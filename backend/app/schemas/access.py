from enum import Enum
from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class AccessType(str, Enum):
    """Kind of access being gated"""
    SUBSCRIPTION = "subscription"
    PROXY = "proxy"
    API = "api"


class AccessResult(BaseModel):
    """Outcome of an access check. A denial is a value, not an error."""
    allowed: bool
    reason: str = ""
    code: str = ""
    remaining_slots: int = 0
    online_ips: List[str] = Field(default_factory=list)


class OnlineSession(BaseModel):
    """Active session details shown to users and admins"""
    ip: str
    user_agent: Optional[str] = None
    device_type: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    last_active: datetime
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IPStats(BaseModel):
    """Per-account IP usage statistics"""
    total_unique_ips: int
    current_active_ips: int
    max_concurrent_ips: int
    remaining_slots: int
    ips_by_country: Dict[str, int]
    recent_ips: List[OnlineSession]
    suspicious_activity: bool


class GeoInfo(BaseModel):
    """Geolocation of an IP. Empty fields mean unresolved."""
    ip: str
    country: str = ""
    country_code: str = ""
    region: str = ""
    city: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    isp: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.country and not self.country_code and not self.city

    class Config:
        from_attributes = True


class GeoCheckResult(BaseModel):
    """Outcome of a country restriction check"""
    allowed: bool
    country: str = ""
    country_code: str = ""
    city: str = ""
    reason: str = ""


class BlacklistMatch(BaseModel):
    """Blacklist entry that matched an IP"""
    id: int
    ip: str = ""
    cidr: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class HistoryFilter(BaseModel):
    """Filter options for access history queries"""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    access_type: Optional[AccessType] = None
    ip: Optional[str] = None
    country: Optional[str] = None
    limit: int = 0
    offset: int = 0


class HistoryRecord(BaseModel):
    """Access history row"""
    id: int
    account_id: int
    ip: str
    user_agent: Optional[str] = None
    access_type: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    is_suspicious: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class AccessCheckRequest(BaseModel):
    """Gate request from a proxy node or API edge"""
    account_id: int
    ip: str = Field(..., min_length=1, max_length=45)
    access_type: AccessType = AccessType.PROXY
    max_concurrent: int = Field(-1, description="Device limit, negative for the configured default")
    user_agent: str = Field("", max_length=500)
    record: bool = Field(True, description="Record activity when access is allowed")


class SubscriptionCheckRequest(BaseModel):
    """Gate request for a subscription link fetch"""
    subscription_token: str = Field(..., min_length=1, max_length=128)
    ip: str = Field(..., min_length=1, max_length=45)
    limit: int = Field(-1, description="Distinct IP limit, negative for the configured default")
    user_agent: str = Field("", max_length=500)


class FailedAttemptRequest(BaseModel):
    """Report of a failed access attempt"""
    ip: str = Field(..., min_length=1, max_length=45)
    reason: str = Field("", max_length=255)


class FailedAttemptResponse(BaseModel):
    recorded: bool
    blacklisted: bool


class KickRequest(BaseModel):
    """Parameters for removing a device"""
    add_to_blacklist: bool = False
    block_duration_minutes: int = Field(0, ge=0)
