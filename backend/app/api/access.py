import logging

from fastapi import APIRouter, Depends

from ..core.security import TokenPrincipal, require_service
from ..schemas.access import (
    AccessCheckRequest,
    AccessResult,
    FailedAttemptRequest,
    FailedAttemptResponse,
    SubscriptionCheckRequest,
)
from ..services.ip_restriction import IPRestrictionService
from .deps import get_ip_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/access", tags=["access"])


@router.post("/check", response_model=AccessResult)
def check_access(
    payload: AccessCheckRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(require_service)
):
    """
    Decide whether a client IP may connect for an account.

    Called by proxy nodes before accepting a connection. A denial is a normal
    200 response with allowed=false and a code.
    """
    result = service.check_access(payload.account_id, payload.ip, payload.access_type, payload.max_concurrent)

    if result.allowed and payload.record:
        service.record_activity(payload.account_id, payload.ip, payload.user_agent, payload.access_type)

    return result


@router.post("/subscription/check", response_model=AccessResult)
def check_subscription_access(
    payload: SubscriptionCheckRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(require_service)
):
    """Gate a subscription link fetch and count the access when allowed"""
    result = service.check_subscription_access(payload.subscription_token, payload.ip, payload.limit)

    if result.allowed:
        service.record_subscription_access(payload.subscription_token, payload.ip, payload.user_agent)

    return result


@router.post("/failed-attempts", response_model=FailedAttemptResponse)
def report_failed_attempt(
    payload: FailedAttemptRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(require_service)
):
    """Record a failed attempt and auto-blacklist the IP if it crossed the threshold"""
    service.record_failed_attempt(payload.ip, payload.reason)
    blacklisted = service.check_auto_blacklist(payload.ip)
    return {"recorded": True, "blacklisted": blacklisted}
