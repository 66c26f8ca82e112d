"""Tests for IP and CIDR matching helpers."""

from types import SimpleNamespace

import pytest

from app.utils.validators import (
    get_client_ip,
    is_ipv4,
    is_ipv6,
    is_valid_cidr,
    is_valid_ip,
    matches_any,
    matches_cidr,
    matches_ip,
    normalize_ip,
)


class TestMatchesCIDR:
    """matches_cidr never raises and respects address families."""

    @pytest.mark.parametrize("ip,cidr", [
        ("10.0.0.1", "10.0.0.0/8"),
        ("192.168.1.254", "192.168.1.0/24"),
        ("2001:db8::1", "2001:db8::/32"),
        ("10.1.2.3", "10.1.2.3/32"),
    ])
    def test_inside_range(self, ip, cidr):
        assert matches_cidr(ip, cidr)

    def test_outside_range(self):
        assert not matches_cidr("11.0.0.1", "10.0.0.0/8")

    def test_bare_address_is_single_ip(self):
        assert matches_cidr("10.0.0.1", "10.0.0.1")
        assert not matches_cidr("10.0.0.2", "10.0.0.1")

    def test_family_mismatch_is_false(self):
        assert not matches_cidr("10.0.0.1", "::/0")
        assert not matches_cidr("::1", "0.0.0.0/0")

    @pytest.mark.parametrize("ip,cidr", [
        ("not-an-ip", "10.0.0.0/8"),
        ("10.0.0.1", "10.0.0.0/99"),
        ("10.0.0.1", "garbage/8"),
        ("", "10.0.0.0/8"),
        ("10.0.0.1", ""),
    ])
    def test_malformed_input_is_false(self, ip, cidr):
        assert not matches_cidr(ip, cidr)

    def test_host_bits_are_tolerated(self):
        assert matches_cidr("10.0.0.9", "10.0.0.5/24")


class TestMatchesIP:

    def test_equivalent_ipv6_spellings_match(self):
        assert matches_ip("2001:db8::1", "2001:0db8:0000:0000:0000:0000:0000:0001")

    def test_malformed_never_matches(self):
        assert not matches_ip("abc", "abc")

    def test_matches_any(self):
        assert matches_any("172.16.5.4", ["10.0.0.0/8", "172.16.0.0/12"])
        assert not matches_any("8.8.8.8", ["10.0.0.0/8", "bogus"])


class TestClassification:

    def test_valid_ip(self):
        assert is_valid_ip("8.8.8.8")
        assert is_valid_ip("::1")
        assert not is_valid_ip("8.8.8")

    def test_valid_cidr_requires_prefix(self):
        assert is_valid_cidr("10.0.0.0/8")
        assert not is_valid_cidr("10.0.0.1")
        assert not is_valid_cidr("10.0.0.0/33")

    def test_families(self):
        assert is_ipv4("1.2.3.4") and not is_ipv6("1.2.3.4")
        assert is_ipv6("fe80::1") and not is_ipv4("fe80::1")

    def test_normalize(self):
        assert normalize_ip("2001:0db8::0001") == "2001:db8::1"
        assert normalize_ip("nonsense") == "nonsense"


class TestClientIP:

    def _request(self, headers=None, host="203.0.113.5"):
        return SimpleNamespace(headers=headers or {}, client=SimpleNamespace(host=host) if host else None)

    def test_first_forwarded_hop_is_canonical(self):
        request = self._request({"X-Forwarded-For": "2001:0db8::0001, 10.0.0.1"})
        assert get_client_ip(request) == "2001:db8::1"

    def test_peer_address(self):
        assert get_client_ip(self._request()) == "203.0.113.5"

    def test_no_peer(self):
        assert get_client_ip(self._request(host=None)) == "unknown"
