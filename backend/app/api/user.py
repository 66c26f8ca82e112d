from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import settings
from ..core.security import TokenPrincipal, get_current_principal
from ..schemas.access import AccessType, HistoryFilter, HistoryRecord, IPStats
from ..services.ip_restriction import IPRestrictionService
from .deps import get_ip_service, require_ip_access

router = APIRouter(prefix="/user", tags=["user"])
limiter = Limiter(key_func=get_remote_address)


@router.get("/devices")
def get_my_devices(
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(get_current_principal)
):
    """
    List the caller's online devices.

    Not gated by the device limit, so a user at the limit can still see and
    kick devices.
    """
    devices = service.get_online_sessions(principal.account_id)
    limit = service.resolve_limit(principal.max_devices)

    return {
        "devices": devices,
        "count": len(devices),
        "max_devices": limit,
        "remaining_slots": max(limit - len(devices), 0) if limit > 0 else 0,
    }


@router.delete("/devices/{ip}")
@limiter.limit(settings.KICK_RATE_LIMIT)
def kick_my_device(
    request: Request,
    ip: str,
    add_to_blacklist: bool = False,
    block_duration_minutes: int = Query(0, ge=0, le=60 * 24 * 30),
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(get_current_principal)
):
    """Disconnect one of the caller's devices, optionally blocking it for a while"""
    service.kick_session(
        principal.account_id,
        ip,
        add_to_blacklist=add_to_blacklist,
        block_duration=timedelta(minutes=block_duration_minutes)
    )
    return {"message": "device kicked", "ip": ip}


@router.get("/ip-stats", response_model=IPStats)
def get_my_ip_stats(
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(require_ip_access(AccessType.API))
):
    """IP usage statistics for the caller"""
    return service.get_stats(principal.account_id, principal.max_devices)


@router.get("/ip-history")
def get_my_ip_history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: IPRestrictionService = Depends(get_ip_service),
    principal: TokenPrincipal = Depends(require_ip_access(AccessType.API))
):
    """Access history of the caller, newest first"""
    records = service.tracker.get_history(
        principal.account_id,
        HistoryFilter(limit=limit, offset=offset)
    )
    return {
        "history": [HistoryRecord.model_validate(r) for r in records],
        "limit": limit,
        "offset": offset,
    }
