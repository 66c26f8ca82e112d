import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from ..core.security import TokenPrincipal, get_current_principal
from ..schemas.access import AccessType
from ..services.ip_restriction import IPRestrictionService
from ..utils.validators import get_client_ip

logger = logging.getLogger(__name__)


def get_ip_service(request: Request) -> IPRestrictionService:
    """The process-wide IP restriction service built at startup"""
    service = getattr(request.app.state, "ip_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="IP restriction service is not available")
    return service


def require_ip_access(access_type: AccessType = AccessType.API):
    """
    Build a dependency that gates a route by client IP.

    Denied requests get 403 with the result code. A store failure denies with
    503 rather than letting the request through. Allowed requests are
    recorded as activity.
    """

    def dependency(
        request: Request,
        principal: TokenPrincipal = Depends(get_current_principal),
        service: IPRestrictionService = Depends(get_ip_service),
    ) -> TokenPrincipal:
        client_ip = get_client_ip(request)

        try:
            result = service.check_access(principal.account_id, client_ip, access_type, principal.max_devices)
        except SQLAlchemyError as e:
            logger.error("IP restriction check failed for account %s from %s: %s",
                         principal.account_id, client_ip, e)
            raise HTTPException(
                status_code=503,
                detail={"code": "SERVICE_UNAVAILABLE", "message": "IP restriction service temporarily unavailable"}
            )

        if not result.allowed:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": result.code,
                    "message": result.reason,
                    "details": {
                        "remaining_slots": result.remaining_slots,
                        "online_ips": result.online_ips,
                    },
                }
            )

        user_agent = request.headers.get("user-agent", "")[:500]
        try:
            service.record_activity(principal.account_id, client_ip, user_agent, access_type)
        except SQLAlchemyError as e:
            logger.error("Failed to record IP activity for account %s from %s: %s",
                         principal.account_id, client_ip, e)

        return principal

    return dependency
