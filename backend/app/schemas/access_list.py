from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class WhitelistCreate(BaseModel):
    """Schema for adding an IP or CIDR to the whitelist"""
    ip: str = Field(..., description="IP address or CIDR range", min_length=1, max_length=50)
    account_id: Optional[int] = Field(None, description="Owning account, empty for a global entry")
    description: Optional[str] = Field(None, max_length=255)


class BlacklistCreate(BaseModel):
    """Schema for adding an IP or CIDR to the blacklist"""
    ip: str = Field(..., description="IP address or CIDR range", min_length=1, max_length=50)
    account_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=255)
    expires_at: Optional[datetime] = Field(None, description="Empty for a permanent entry")


class ImportRequest(BaseModel):
    """Bulk import of IPs and CIDR ranges"""
    ips: List[str] = Field(..., min_length=1)
    account_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=255)


class WhitelistResponse(BaseModel):
    id: int
    ip: str
    cidr: Optional[str] = None
    account_id: Optional[int] = None
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BlacklistResponse(BaseModel):
    id: int
    ip: str
    cidr: Optional[str] = None
    account_id: Optional[int] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_automatic: bool = False
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True
