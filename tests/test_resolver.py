"""
Tests for target resolution.  DNS lookups are only made for names that
resolve locally (``localhost``); everything else is decoded offline.
"""

import asyncio

import pytest

from soar_recon.errors import ResolutionError
from soar_recon.resolver import ip_from_sslip, is_sslip_domain, resolve_target


class TestSslip:
    def test_address_labels(self):
        assert ip_from_sslip("10-0-0-5.sslip.io") == "10.0.0.5"
        assert ip_from_sslip("app.192-168-1-20.sslip.io") == "192.168.1.20"

    def test_not_an_address(self):
        assert is_sslip_domain("Foo.SSLIP.io")
        assert ip_from_sslip("foo.sslip.io") is None
        assert ip_from_sslip("example.com") is None


class TestResolveTarget:
    def test_ip_literal(self):
        target = asyncio.run(resolve_target(" 192.168.1.10 "))
        assert target.ip == "192.168.1.10"
        assert target.kind == "ip"
        assert not target.using_fallback_dns

    def test_ipv6_literal(self):
        target = asyncio.run(resolve_target("::1"))
        assert target.ip == "::1"
        assert target.kind == "ipv6"

    def test_cidr_uses_first_host(self):
        target = asyncio.run(resolve_target("10.1.2.0/24"))
        assert target.ip == "10.1.2.1"
        assert target.kind == "cidr"

    def test_sslip_needs_no_dns(self):
        target = asyncio.run(resolve_target("7-7-7-7.sslip.io"))
        assert target.ip == "7.7.7.7"
        assert target.using_fallback_dns

    def test_localhost(self):
        assert asyncio.run(resolve_target("localhost")).ip == "127.0.0.1"

    @pytest.mark.parametrize("raw", ["", "10.0.0.0/33", "fe80::zz"])
    def test_unresolvable(self, raw):
        with pytest.raises(ResolutionError):
            asyncio.run(resolve_target(raw))
