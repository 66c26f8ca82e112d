import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_

from ..core.exceptions import InvalidCIDRError, NotFoundError
from ..models import IPBlacklist, IPWhitelist
from ..schemas.access import BlacklistMatch
from ..utils.timeutils import utcnow
from ..utils.validators import is_valid_cidr, is_valid_ip, matches_cidr, matches_ip

logger = logging.getLogger(__name__)


def split_ip_or_cidr(value: str) -> tuple[str, Optional[str]]:
    """
    Classify an administrative entry as a plain IP or a CIDR range.

    Returns:
        Tuple of (ip, cidr); exactly one of them is populated

    Raises:
        InvalidCIDRError: If the value is neither
    """
    value = (value or "").strip()
    if is_valid_cidr(value):
        return "", value
    if "/" not in value and is_valid_ip(value):
        return value, None
    raise InvalidCIDRError(value)


def _scope_filter(model, account_id: Optional[int]):
    """Global entries, plus the account's own entries when an account is given"""
    if account_id is None:
        return model.account_id.is_(None)
    return or_(model.account_id.is_(None), model.account_id == account_id)


def _entry_matches(ip: str, entry) -> bool:
    # Exact IP first, then the range
    if matches_ip(ip, entry.ip):
        return True
    return bool(entry.cidr) and matches_cidr(ip, entry.cidr)


class AccessListStore:
    """Whitelist and blacklist persistence and evaluation"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ----- evaluation -----

    def is_whitelisted(self, ip: str, account_id: Optional[int] = None) -> bool:
        """
        Check global and account-scoped whitelist entries.

        Malformed entries never match.
        """
        with self.session_factory() as db:
            entries = db.query(IPWhitelist).filter(_scope_filter(IPWhitelist, account_id)).all()

        return any(_entry_matches(ip, entry) for entry in entries)

    def is_blacklisted(self, ip: str, account_id: Optional[int] = None) -> Optional[BlacklistMatch]:
        """
        Check global and account-scoped blacklist entries.

        Returns:
            The first matching non-expired entry, or None
        """
        with self.session_factory() as db:
            entries = db.query(IPBlacklist).filter(_scope_filter(IPBlacklist, account_id)).all()

        now = utcnow()
        for entry in entries:
            if entry.is_expired(now):
                continue
            if _entry_matches(ip, entry):
                return BlacklistMatch.model_validate(entry)

        return None

    # ----- whitelist administration -----

    def add_to_whitelist(self, value: str, account_id: Optional[int] = None,
                         description: Optional[str] = None, created_by: Optional[int] = None) -> IPWhitelist:
        ip, cidr = split_ip_or_cidr(value)
        entry = IPWhitelist(
            ip=ip,
            cidr=cidr,
            account_id=account_id,
            description=description,
            created_by=created_by
        )
        with self.session_factory() as db:
            db.add(entry)
            db.commit()
            db.refresh(entry)
        logger.info("Whitelisted %s (account=%s)", value, account_id)
        return entry

    def remove_from_whitelist(self, entry_id: int) -> None:
        with self.session_factory() as db:
            deleted = db.query(IPWhitelist).filter(IPWhitelist.id == entry_id).delete()
            db.commit()
        if not deleted:
            raise NotFoundError("Whitelist entry not found", {"id": entry_id})

    def get_whitelist(self, account_id: Optional[int] = None) -> List[IPWhitelist]:
        """All entries, or the global plus account-scoped ones for an account"""
        with self.session_factory() as db:
            query = db.query(IPWhitelist)
            if account_id is not None:
                query = query.filter(_scope_filter(IPWhitelist, account_id))
            return query.order_by(IPWhitelist.created_at.desc(), IPWhitelist.id.desc()).all()

    def import_whitelist(self, values: List[str], account_id: Optional[int] = None,
                         description: Optional[str] = None, created_by: Optional[int] = None) -> int:
        """
        Bulk add entries. Every token is validated before anything is written.

        Returns:
            Number of entries created
        """
        entries = []
        for value in values:
            if not value or not value.strip():
                continue
            ip, cidr = split_ip_or_cidr(value)
            entries.append(IPWhitelist(
                ip=ip,
                cidr=cidr,
                account_id=account_id,
                description=description,
                created_by=created_by
            ))

        with self.session_factory() as db:
            db.add_all(entries)
            db.commit()
        logger.info("Imported %d whitelist entries (account=%s)", len(entries), account_id)
        return len(entries)

    # ----- blacklist administration -----

    def add_to_blacklist(self, value: str, account_id: Optional[int] = None, reason: Optional[str] = None,
                         expires_at: Optional[datetime] = None, is_automatic: bool = False,
                         created_by: Optional[int] = None) -> IPBlacklist:
        ip, cidr = split_ip_or_cidr(value)
        entry = IPBlacklist(
            ip=ip,
            cidr=cidr,
            account_id=account_id,
            reason=reason,
            expires_at=expires_at,
            is_automatic=is_automatic,
            created_by=created_by
        )
        with self.session_factory() as db:
            db.add(entry)
            db.commit()
            db.refresh(entry)
        logger.info("Blacklisted %s (account=%s, expires=%s, automatic=%s)",
                    value, account_id, expires_at, is_automatic)
        return entry

    def remove_from_blacklist(self, entry_id: int) -> None:
        with self.session_factory() as db:
            deleted = db.query(IPBlacklist).filter(IPBlacklist.id == entry_id).delete()
            db.commit()
        if not deleted:
            raise NotFoundError("Blacklist entry not found", {"id": entry_id})

    def get_blacklist(self, account_id: Optional[int] = None) -> List[IPBlacklist]:
        with self.session_factory() as db:
            query = db.query(IPBlacklist)
            if account_id is not None:
                query = query.filter(_scope_filter(IPBlacklist, account_id))
            return query.order_by(IPBlacklist.created_at.desc(), IPBlacklist.id.desc()).all()

    def import_blacklist(self, values: List[str], account_id: Optional[int] = None,
                         reason: Optional[str] = None, expires_at: Optional[datetime] = None,
                         created_by: Optional[int] = None) -> int:
        entries = []
        for value in values:
            if not value or not value.strip():
                continue
            ip, cidr = split_ip_or_cidr(value)
            entries.append(IPBlacklist(
                ip=ip,
                cidr=cidr,
                account_id=account_id,
                reason=reason,
                expires_at=expires_at,
                created_by=created_by
            ))

        with self.session_factory() as db:
            db.add_all(entries)
            db.commit()
        logger.info("Imported %d blacklist entries (account=%s)", len(entries), account_id)
        return len(entries)

    def has_active_automatic_entry(self, ip: str) -> bool:
        """Check for a non-expired automatic global entry for this exact IP"""
        now = utcnow()
        with self.session_factory() as db:
            entry = db.query(IPBlacklist).filter(
                IPBlacklist.ip == ip,
                IPBlacklist.account_id.is_(None),
                IPBlacklist.is_automatic.is_(True),
                or_(IPBlacklist.expires_at.is_(None), IPBlacklist.expires_at > now)
            ).first()
        return entry is not None

    def cleanup_expired_blacklist(self) -> int:
        """Delete expired entries. Safe to run repeatedly or concurrently."""
        with self.session_factory() as db:
            deleted = db.query(IPBlacklist).filter(
                IPBlacklist.expires_at.isnot(None),
                IPBlacklist.expires_at < utcnow()
            ).delete(synchronize_session=False)
            db.commit()
        return deleted
