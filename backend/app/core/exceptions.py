"""Exceptions and stable result codes for IP restriction.

Policy denials are not exceptions: they are returned as ``AccessResult``
values carrying one of the codes below. Exceptions cover store failures,
bad administrative input and unavailable external capabilities.
"""

from typing import Any, Dict, Optional


ERR_IP_LIMIT_EXCEEDED = "IP_LIMIT_EXCEEDED"
ERR_IP_BLACKLISTED = "IP_BLACKLISTED"
ERR_GEO_RESTRICTED = "GEO_RESTRICTED"
ERR_SUBSCRIPTION_IP_LIMIT = "SUBSCRIPTION_IP_LIMIT"
ERR_IP_KICK_FAILED = "IP_KICK_FAILED"
ERR_INVALID_CIDR = "INVALID_CIDR"
ERR_GEOLOCATION_FAILED = "GEOLOCATION_FAILED"


class IPRestrictionError(Exception):
    """Base exception for IP restriction errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: str = "IP_RESTRICTION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(IPRestrictionError):
    """Raised when a requested record does not exist."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="NOT_FOUND", details=details)


class InvalidCIDRError(IPRestrictionError):
    """Raised when an administrative entry is neither an IP nor a CIDR range."""

    def __init__(self, value: str):
        super().__init__(
            f"Invalid IP address or CIDR range: {value}",
            code=ERR_INVALID_CIDR,
            details={"value": value},
        )


class KickFailedError(IPRestrictionError):
    """Raised when an active session could not be removed."""

    def __init__(self, ip: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["ip"] = ip
        super().__init__(f"Failed to kick device {ip}", code=ERR_IP_KICK_FAILED, details=details)


class GeolocationError(IPRestrictionError):
    """Raised when the geolocation capability fails on a lookup."""

    def __init__(self, ip: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["ip"] = ip
        super().__init__(f"Geolocation lookup failed for {ip}", code=ERR_GEOLOCATION_FAILED, details=details)
