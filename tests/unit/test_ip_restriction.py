"""Scenario tests for the access decision engine."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import InvalidCIDRError, KickFailedError
from app.models import ActiveSession, IPBlacklist
from app.schemas.access import AccessType
from app.schemas.settings import RestrictionSettings
from app.utils.timeutils import utcnow

IP1, IP2, IP3, IP4 = "8.8.8.8", "1.1.1.1", "5.5.5.5", "2.2.2.2"


def _admit(service, account_id, ip, user_agent="", max_concurrent=-1):
    result = service.check_access(account_id, ip, AccessType.PROXY, max_concurrent)
    if result.allowed:
        service.record_activity(account_id, ip, user_agent, AccessType.PROXY)
    return result


def _blacklist_rows(session_factory):
    with session_factory() as db:
        return db.query(IPBlacklist).all()


class TestDeviceLimit:
    """Concurrent device limit with the default of three."""

    def test_fourth_ip_denied(self, service, notifier):
        results = [_admit(service, 1, ip) for ip in (IP1, IP2, IP3)]
        assert [r.remaining_slots for r in results] == [2, 1, 0]
        assert all(r.allowed for r in results)

        denied = _admit(service, 1, IP4)

        assert not denied.allowed
        assert denied.code == "IP_LIMIT_EXCEEDED"
        assert denied.reason == "Maximum device limit (3) reached"
        assert denied.online_ips == [IP1, IP2, IP3]

        [limit_event] = notifier.of("ip_limit_reached")
        assert limit_event.ip == IP4
        assert limit_event.current_count == 3
        assert limit_event.max_count == 3

    def test_existing_session_allowed_at_limit(self, service, session_factory):
        for ip in (IP1, IP2, IP3):
            _admit(service, 1, ip)

        result = service.check_access(1, IP1)

        assert result.allowed
        assert result.reason == "existing session"
        with session_factory() as db:
            assert db.query(ActiveSession).count() == 3

    def test_inactive_session_frees_slot(self, service, session_factory):
        for ip in (IP1, IP2, IP3):
            _admit(service, 1, ip)
        with session_factory() as db:
            db.query(ActiveSession).filter(ActiveSession.ip == IP1).update(
                {ActiveSession.last_active: utcnow() - timedelta(minutes=11)}
            )
            db.commit()

        assert _admit(service, 1, IP4).allowed
        assert {s.ip for s in service.get_online_sessions(1)} == {IP2, IP3, IP4}

    def test_accounts_have_separate_limits(self, service):
        for ip in (IP1, IP2, IP3):
            _admit(service, 1, ip)

        assert _admit(service, 2, IP4).allowed

    def test_explicit_limit_overrides_default(self, service):
        assert _admit(service, 1, IP1, max_concurrent=1).allowed

        assert not _admit(service, 1, IP2, max_concurrent=1).allowed

    def test_zero_limit_is_unlimited(self, service):
        for n in range(6):
            result = service.check_access(1, f"10.0.0.{n}", max_concurrent=0)
            assert result.allowed
            assert result.reason == "unlimited"

    def test_disabled_allows_everything(self, service):
        service.access_lists.add_to_blacklist(IP1)
        service.save_settings(RestrictionSettings(enabled=False))

        result = service.check_access(1, IP1)

        assert result.allowed
        assert result.reason == ""

    def test_new_device_notified_once(self, service, notifier):
        _admit(service, 1, IP1, user_agent="Mozilla/5.0 (iPhone)")
        _admit(service, 1, IP1, user_agent="Mozilla/5.0 (iPhone)")

        [event] = notifier.of("new_device")
        assert event.country == "United States"
        assert event.device_info == "Mozilla/5.0 (iPhone)"

        [session] = service.get_online_sessions(1)
        assert session.device_type == "mobile"
        assert session.city == "Mountain View"

    def test_sweep_failure_does_not_block(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("DELETE", {}, Exception("database is locked"))

        monkeypatch.setattr(service.tracker, "cleanup_inactive_sessions_for_account", broken)

        assert service.check_access(1, IP1).allowed


class TestLists:

    def test_whitelist_bypasses_limit(self, service):
        service.access_lists.add_to_whitelist("2.2.0.0/16")
        for ip in (IP1, IP2, IP3):
            _admit(service, 1, ip)

        result = service.check_access(1, IP4)

        assert result.allowed
        assert result.reason == "whitelisted"

    def test_whitelist_wins_over_blacklist(self, service):
        service.access_lists.add_to_whitelist(IP1)
        service.access_lists.add_to_blacklist(IP1)

        assert service.check_access(1, IP1).reason == "whitelisted"

    def test_blacklisted_denied(self, service):
        service.access_lists.add_to_blacklist(IP1, reason="abuse")

        result = service.check_access(1, IP1)

        assert not result.allowed
        assert result.code == "IP_BLACKLISTED"
        assert result.reason == "IP is blacklisted: abuse"

    def test_blacklist_without_reason(self, service):
        service.access_lists.add_to_blacklist("8.8.0.0/16")

        assert service.check_access(1, IP1).reason == "IP is blacklisted"


class TestGeoRestriction:

    @pytest.fixture
    def restriction_settings(self):
        return RestrictionSettings(geo_restriction_enabled=True, blocked_countries=["CN"])

    def test_blocked_country(self, service):
        result = service.check_access(1, "36.0.0.1")

        assert not result.allowed
        assert result.code == "GEO_RESTRICTED"
        assert "China" in result.reason

    def test_other_country_allowed(self, service):
        assert service.check_access(1, IP1).allowed

    def test_geo_outage_fails_open(self, service, geo_reader):
        geo_reader.fail = True

        assert service.check_access(1, "36.0.0.1").allowed

    def test_unresolved_ip_allowed(self, service):
        result = service.check_access(1, "203.0.113.9")

        assert result.allowed
        assert result.remaining_slots == 2

    def test_block_applies_once_database_is_loaded(self, service, make_geo_reader):
        slot = service.geo_service.reader_slot
        slot.set_reader(None)

        assert service.check_access(1, "36.0.0.1").allowed

        slot.set_reader(make_geo_reader({"36.0.0.1": ("China", "CN", "Beijing")}))
        result = service.check_access(2, "36.0.0.1")

        assert not result.allowed
        assert result.code == "GEO_RESTRICTED"


class TestSuspiciousActivity:

    def test_four_countries_in_window(self, service, notifier):
        for ip in ("8.8.8.8", "5.5.5.5", "2.2.2.2"):
            service.record_activity(1, ip)
        assert notifier.of("suspicious_activity") == []

        service.record_activity(1, "133.0.0.1")

        [event] = notifier.of("suspicious_activity")
        assert event.country == "Japan"
        history = service.tracker.get_history(1)
        assert history[0].is_suspicious
        assert not any(r.is_suspicious for r in history[1:])
        assert service.get_stats(1).suspicious_activity

    def test_unknown_countries_never_count(self, service, notifier):
        for n in range(5):
            service.record_activity(1, f"203.0.113.{n}")

        assert notifier.of("suspicious_activity") == []


class TestKick:

    def test_kick_with_block(self, service, notifier):
        _admit(service, 1, IP1)

        service.kick_session(1, IP1, add_to_blacklist=True, block_duration=timedelta(minutes=30))

        assert service.get_online_sessions(1) == []
        result = service.check_access(1, IP1)
        assert result.code == "IP_BLACKLISTED"
        assert result.reason == "IP is blacklisted: kicked by user"
        assert service.check_access(2, IP1).allowed
        assert [e.ip for e in notifier.of("device_kicked")] == [IP1]

    def test_kick_without_block_frees_slot(self, service, session_factory):
        for ip in (IP1, IP2, IP3):
            _admit(service, 1, ip)

        service.kick_session(1, IP1)

        assert _admit(service, 1, IP4).allowed
        assert _blacklist_rows(session_factory) == []

    def test_zero_duration_adds_no_block(self, service, session_factory):
        service.kick_session(1, IP1, add_to_blacklist=True, block_duration=timedelta(0))

        assert _blacklist_rows(session_factory) == []

    def test_unusable_ip_block_keeps_session(self, service, notifier):
        service.record_activity(1, "unknown")

        with pytest.raises(InvalidCIDRError):
            service.kick_session(1, "unknown", add_to_blacklist=True, block_duration=timedelta(minutes=30))

        assert [s.ip for s in service.get_online_sessions(1)] == ["unknown"]
        assert notifier.of("device_kicked") == []

    def test_store_failure_raises_kick_failed(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))

        monkeypatch.setattr(service.tracker, "remove_active_session", broken)

        with pytest.raises(KickFailedError) as exc_info:
            service.kick_session(1, IP1)
        assert exc_info.value.code == "IP_KICK_FAILED"


class TestStats:

    def test_stats(self, service):
        _admit(service, 1, IP1)
        _admit(service, 1, IP3)
        _admit(service, 1, IP3)

        stats = service.get_stats(1)

        assert stats.current_active_ips == 2
        assert stats.total_unique_ips == 2
        assert stats.max_concurrent_ips == 3
        assert stats.remaining_slots == 1
        assert stats.ips_by_country == {"United States": 1, "Germany": 1}
        assert not stats.suspicious_activity

    def test_all_online_grouped_by_account(self, service):
        _admit(service, 1, IP1)
        _admit(service, 2, IP2)
        _admit(service, 2, IP3)

        grouped = service.get_all_online_sessions()

        assert {k: len(v) for k, v in grouped.items()} == {1: 1, 2: 2}


class TestSubscriptionGate:

    @pytest.fixture
    def restriction_settings(self):
        return RestrictionSettings(subscription_ip_limit_enabled=True, default_subscription_ip_limit=2)

    def test_configured_default_limit(self, service):
        for ip in (IP1, IP2):
            assert service.check_subscription_access("tok", ip).allowed
            service.record_subscription_access("tok", ip)

        denied = service.check_subscription_access("tok", IP3)

        assert denied.code == "SUBSCRIPTION_IP_LIMIT"
        assert service.check_subscription_access("tok", IP1).reason == "existing access"

    def test_explicit_limit(self, service):
        service.record_subscription_access("tok", IP1)

        assert not service.check_subscription_access("tok", IP2, limit=1).allowed
        assert service.check_subscription_access("tok", IP2, limit=0).allowed

    def test_lists_apply(self, service):
        service.access_lists.add_to_blacklist(IP1)
        service.access_lists.add_to_whitelist(IP2)
        for ip in (IP3, IP4):
            service.record_subscription_access("tok", ip)

        assert service.check_subscription_access("tok", IP1).code == "IP_BLACKLISTED"
        assert service.check_subscription_access("tok", IP2).reason == "whitelisted"

    def test_feature_off_is_unlimited(self, service):
        service.save_settings(RestrictionSettings())
        for ip in (IP1, IP2, IP3):
            service.record_subscription_access("tok", ip)

        assert service.check_subscription_access("tok", IP4).allowed


class TestAutoBlacklist:

    @pytest.fixture
    def restriction_settings(self):
        return RestrictionSettings(max_failed_attempts=3, failed_attempt_window=15, auto_blacklist_duration=60)

    def test_threshold_creates_single_entry(self, service, notifier, session_factory):
        for _ in range(2):
            service.record_failed_attempt(IP4, "bad token")
            assert not service.check_auto_blacklist(IP4)

        service.record_failed_attempt(IP4, "bad token")
        assert service.check_auto_blacklist(IP4)
        service.record_failed_attempt(IP4, "bad token")
        assert service.check_auto_blacklist(IP4)

        [entry] = _blacklist_rows(session_factory)
        assert entry.is_automatic
        assert entry.account_id is None
        assert entry.expires_at > utcnow() + timedelta(minutes=59)
        assert len(notifier.of("auto_blacklisted")) == 1
        assert service.check_access(1, IP4).code == "IP_BLACKLISTED"

    def test_disabled(self, service):
        service.save_settings(RestrictionSettings(auto_blacklist_enabled=False, max_failed_attempts=1))
        service.record_failed_attempt(IP4)

        assert not service.check_auto_blacklist(IP4)


class TestMaintenance:

    def test_run_maintenance_reports_every_sweep(self, service, session_factory):
        _admit(service, 1, IP1)
        service.access_lists.add_to_blacklist(IP2, expires_at=utcnow() - timedelta(minutes=1))
        with session_factory() as db:
            db.query(ActiveSession).update({ActiveSession.last_active: utcnow() - timedelta(hours=1)})
            db.commit()

        removed = service.run_maintenance(retention_days=90)

        assert removed == {
            "inactive_sessions": 1,
            "expired_blacklist": 1,
            "failed_attempts": 0,
            "old_history": 0,
            "expired_geo_cache": 0,
        }

    def test_settings_round_trip(self, service):
        service.save_settings(RestrictionSettings(default_max_concurrent_sessions=1))

        service._settings = RestrictionSettings()
        service.load_settings()

        assert service.resolve_limit(-1) == 1
        assert service.resolve_limit(7) == 7
