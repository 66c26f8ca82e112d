"""Tests for the self-service device endpoints."""


def _from(ip):
    return {"X-Forwarded-For": ip}


class TestDevices:

    def test_list_devices(self, client, service, auth):
        service.record_activity(1, "8.8.8.8", "Mozilla/5.0 (Windows NT 10.0)")
        service.record_activity(1, "5.5.5.5", "Mozilla/5.0 (Android 14) Mobile")
        service.record_activity(2, "1.1.1.1")

        body = client.get("/api/user/devices", headers=auth(1)).json()

        assert body["count"] == 2
        assert body["max_devices"] == 3
        assert body["remaining_slots"] == 1
        assert {d["device_type"] for d in body["devices"]} == {"desktop", "mobile"}

    def test_token_device_limit(self, client, auth):
        body = client.get("/api/user/devices", headers=auth(1, max_devices=5)).json()
        assert body["max_devices"] == 5

    def test_kick_own_device(self, client, service, auth):
        service.record_activity(1, "8.8.8.8")

        response = client.delete(
            "/api/user/devices/8.8.8.8",
            params={"add_to_blacklist": True, "block_duration_minutes": 10},
            headers=auth(1),
        )

        assert response.status_code == 200
        assert service.get_online_sessions(1) == []
        assert service.check_access(1, "8.8.8.8").code == "IP_BLACKLISTED"

    def test_kick_only_touches_own_account(self, client, service, auth):
        service.record_activity(2, "8.8.8.8")

        client.delete("/api/user/devices/8.8.8.8", headers=auth(1))

        assert len(service.get_online_sessions(2)) == 1


class TestGatedRoutes:

    def test_ip_stats_records_caller(self, client, service, auth):
        response = client.get("/api/user/ip-stats", headers={**auth(1), **_from("8.8.8.8")})

        assert response.status_code == 200
        assert response.json()["current_active_ips"] == 1
        assert [s.ip for s in service.get_online_sessions(1)] == ["8.8.8.8"]

    def test_device_limit_denies_with_details(self, client, auth):
        headers = auth(1, max_devices=1)
        assert client.get("/api/user/ip-stats", headers={**headers, **_from("8.8.8.8")}).status_code == 200

        response = client.get("/api/user/ip-history", headers={**headers, **_from("1.1.1.1")})

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["code"] == "IP_LIMIT_EXCEEDED"
        assert detail["details"]["online_ips"] == ["8.8.8.8"]

    def test_blacklisted_caller(self, client, service, auth):
        service.access_lists.add_to_blacklist("5.5.5.5", reason="abuse")

        response = client.get("/api/user/ip-stats", headers={**auth(1), **_from("5.5.5.5")})

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "IP_BLACKLISTED"

    def test_history(self, client, service, auth):
        service.record_activity(1, "5.5.5.5")

        body = client.get("/api/user/ip-history", headers={**auth(1), **_from("8.8.8.8")}).json()

        # The gated request itself is recorded first
        assert [r["ip"] for r in body["history"]] == ["8.8.8.8", "5.5.5.5"]
