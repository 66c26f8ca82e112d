from typing import List
from pydantic import BaseModel, Field, field_validator


class RestrictionSettings(BaseModel):
    """Runtime IP restriction policy, persisted as one JSON blob"""

    # Global
    enabled: bool = True
    default_max_concurrent_sessions: int = Field(3, ge=0)
    inactive_timeout: int = Field(10, ge=1, description="Minutes without activity before a session is evicted")

    # Subscription link IP limit
    subscription_ip_limit_enabled: bool = False
    default_subscription_ip_limit: int = Field(5, ge=0)

    # Geo restriction
    geo_restriction_enabled: bool = False
    allowed_countries: List[str] = Field(default_factory=list)
    blocked_countries: List[str] = Field(default_factory=list)

    # Auto blacklist
    auto_blacklist_enabled: bool = True
    max_failed_attempts: int = Field(10, ge=1)
    failed_attempt_window: int = Field(15, ge=1, description="Minutes")
    auto_blacklist_duration: int = Field(60, ge=1, description="Minutes")

    @field_validator("allowed_countries", "blocked_countries")
    @classmethod
    def normalize_country_codes(cls, value: List[str]) -> List[str]:
        return [code.strip().upper() for code in value if code and code.strip()]
