from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..config import settings
from ..core.security import TokenPrincipal, require_admin
from ..schemas.access import AccessType, GeoInfo, HistoryFilter, HistoryRecord, IPStats, KickRequest
from ..schemas.access_list import (
    BlacklistCreate,
    BlacklistResponse,
    ImportRequest,
    WhitelistCreate,
    WhitelistResponse,
)
from ..schemas.settings import RestrictionSettings
from ..schemas.subscription import SubscriptionAccessInfo, SubscriptionIPStats
from ..services.ip_restriction import IPRestrictionService
from .deps import get_ip_service

router = APIRouter(prefix="/admin/ip-restriction", tags=["admin"])


class GeoReloadRequest(BaseModel):
    path: str = Field(..., min_length=1)


# ===== Sessions =====

@router.get("/online")
def get_all_online_sessions(
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    """Online devices of every account"""
    grouped = service.get_all_online_sessions()
    return {
        "accounts": [
            {"account_id": account_id, "count": len(sessions), "sessions": sessions}
            for account_id, sessions in grouped.items()
        ],
        "total": sum(len(sessions) for sessions in grouped.values()),
    }


@router.get("/accounts/{account_id}/online")
def get_account_online_sessions(
    account_id: int,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    sessions = service.get_online_sessions(account_id)
    return {"account_id": account_id, "count": len(sessions), "sessions": sessions}


@router.post("/accounts/{account_id}/kick/{ip}")
def kick_account_session(
    account_id: int,
    ip: str,
    kick: KickRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    service.kick_session(
        account_id,
        ip,
        add_to_blacklist=kick.add_to_blacklist,
        block_duration=timedelta(minutes=kick.block_duration_minutes)
    )
    return {"message": "device kicked", "account_id": account_id, "ip": ip}


@router.get("/accounts/{account_id}/stats", response_model=IPStats)
def get_account_stats(
    account_id: int,
    max_concurrent: int = Query(-1, description="Device limit, negative for the configured default"),
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.get_stats(account_id, max_concurrent)


@router.get("/history")
def get_history(
    account_id: Optional[int] = None,
    ip: Optional[str] = None,
    country: Optional[str] = None,
    access_type: Optional[AccessType] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    """Access history across accounts, newest first"""
    history_filter = HistoryFilter(
        ip=ip,
        country=country,
        access_type=access_type,
        limit=limit,
        offset=offset
    )
    records = service.tracker.get_all_history(history_filter, account_id=account_id)
    return {"history": [HistoryRecord.model_validate(r) for r in records], "limit": limit, "offset": offset}


@router.post("/history/{record_id}/suspicious")
def mark_history_suspicious(
    record_id: int,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    service.tracker.mark_suspicious(record_id)
    return {"message": "record marked as suspicious", "id": record_id}


# ===== Whitelist =====

@router.get("/whitelist", response_model=List[WhitelistResponse])
def get_whitelist(
    account_id: Optional[int] = None,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.access_lists.get_whitelist(account_id)


@router.post("/whitelist", response_model=WhitelistResponse)
def add_whitelist(
    entry: WhitelistCreate,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.access_lists.add_to_whitelist(
        entry.ip,
        account_id=entry.account_id,
        description=entry.description,
        created_by=current_admin.account_id
    )


@router.post("/whitelist/import")
def import_whitelist(
    payload: ImportRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    imported = service.access_lists.import_whitelist(
        payload.ips,
        account_id=payload.account_id,
        description=payload.description,
        created_by=current_admin.account_id
    )
    return {"message": "import completed", "imported": imported}


@router.delete("/whitelist/{entry_id}")
def delete_whitelist(
    entry_id: int,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    service.access_lists.remove_from_whitelist(entry_id)
    return {"message": "whitelist entry deleted", "id": entry_id}


# ===== Blacklist =====

@router.get("/blacklist", response_model=List[BlacklistResponse])
def get_blacklist(
    account_id: Optional[int] = None,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.access_lists.get_blacklist(account_id)


@router.post("/blacklist", response_model=BlacklistResponse)
def add_blacklist(
    entry: BlacklistCreate,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.access_lists.add_to_blacklist(
        entry.ip,
        account_id=entry.account_id,
        reason=entry.reason,
        expires_at=entry.expires_at,
        created_by=current_admin.account_id
    )


@router.post("/blacklist/import")
def import_blacklist(
    payload: ImportRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    imported = service.access_lists.import_blacklist(
        payload.ips,
        account_id=payload.account_id,
        reason=payload.description,
        created_by=current_admin.account_id
    )
    return {"message": "import completed", "imported": imported}


@router.delete("/blacklist/{entry_id}")
def delete_blacklist(
    entry_id: int,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    service.access_lists.remove_from_blacklist(entry_id)
    return {"message": "blacklist entry deleted", "id": entry_id}


# ===== Settings =====

@router.get("/settings", response_model=RestrictionSettings)
def get_settings(
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.settings


@router.put("/settings", response_model=RestrictionSettings)
def update_settings(
    new_settings: RestrictionSettings,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    service.save_settings(new_settings)
    return service.settings


# ===== Subscription links =====

@router.get("/subscriptions/{token}/access", response_model=List[SubscriptionAccessInfo])
def get_subscription_access(
    token: str,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.subscriptions.get_access_list(token)


@router.get("/subscriptions/{token}/stats", response_model=SubscriptionIPStats)
def get_subscription_stats(
    token: str,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.subscriptions.get_access_stats(token)


@router.delete("/subscriptions/{token}/access")
def clear_subscription_access(
    token: str,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    removed = service.subscriptions.clear_access_list(token)
    return {"message": "access list cleared", "removed": removed}


@router.delete("/subscriptions/{token}/access/{ip}")
def remove_subscription_ip(
    token: str,
    ip: str,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    removed = service.subscriptions.remove_ip(token, ip)
    if not removed:
        raise HTTPException(status_code=404, detail="IP not found for this subscription")
    return {"message": "ip removed", "ip": ip}


# ===== Geolocation & maintenance =====

@router.get("/geo/{ip}", response_model=GeoInfo)
def lookup_geo(
    ip: str,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    return service.geo_service.lookup(ip)


@router.post("/geo/reload")
def reload_geo_database(
    payload: GeoReloadRequest,
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    try:
        service.geo_service.reload_database(payload.path)
    except (OSError, ValueError, RuntimeError) as e:
        raise HTTPException(status_code=400, detail=f"Failed to load GeoIP database: {e}")
    return {"message": "geo database reloaded", "available": service.geo_service.is_available()}


@router.post("/maintenance")
def run_maintenance(
    retention_days: int = Query(settings.HISTORY_RETENTION_DAYS, ge=1),
    service: IPRestrictionService = Depends(get_ip_service),
    current_admin: TokenPrincipal = Depends(require_admin)
):
    """Run every cleanup sweep once"""
    return {"removed": service.run_maintenance(retention_days)}
