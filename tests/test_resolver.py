"""Tests for address resolution."""

import socket
from unittest.mock import patch

import pytest

from port_exporter.resolver import (
    ResolutionFailedError,
    SystemResolver,
    is_ip_literal,
    is_ipv6,
)


def _addrinfo(*ips: str) -> list[tuple]:
    """Build getaddrinfo-shaped results for the given addresses."""
    infos = []
    for ip in ips:
        if ":" in ip:
            infos.append(
                (socket.AF_INET6, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (ip, 0, 0, 0))
            )
        else:
            infos.append(
                (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (ip, 0))
            )
    return infos


class TestIsIPv6:
    """Tests for the IPv6 predicate."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("::1", True),
            ("2001:db8::1", True),
            ("::ffff:10.0.0.1", True),
            ("127.0.0.1", False),
            ("localhost", False),
            ("example.com:80", False),
            ("", False),
        ],
    )
    def test_is_ipv6(self, value, expected):
        assert is_ipv6(value) is expected

    def test_is_ip_literal(self):
        """Both families should count as literals, hostnames should not."""
        assert is_ip_literal("10.0.0.1")
        assert is_ip_literal("::1")
        assert not is_ip_literal("db.internal")


class TestSystemResolver:
    """Tests for SystemResolver."""

    @pytest.fixture
    def resolver(self):
        return SystemResolver()

    @pytest.mark.parametrize("ip", ["10.0.0.1", "::1", "2001:db8::1"])
    def test_literal_skips_lookup(self, resolver, ip):
        """Literal addresses should be returned without any lookup."""
        with patch("port_exporter.resolver.socket.getaddrinfo") as mock_lookup:
            assert resolver.resolve(ip) == [ip]

        mock_lookup.assert_not_called()

    def test_hostname_resolves_both_families(self, resolver):
        """A and AAAA answers should both be returned in order."""
        with patch(
            "port_exporter.resolver.socket.getaddrinfo",
            return_value=_addrinfo("192.0.2.1", "2001:db8::1"),
        ) as mock_lookup:
            addresses = resolver.resolve("web.example.com")

        assert addresses == ["192.0.2.1", "2001:db8::1"]
        assert mock_lookup.call_args.args[0] == "web.example.com"
        assert mock_lookup.call_args.args[2] == socket.AF_UNSPEC

    def test_duplicates_removed(self, resolver):
        """Repeated addresses should appear once."""
        with patch(
            "port_exporter.resolver.socket.getaddrinfo",
            return_value=_addrinfo("192.0.2.1", "192.0.2.1", "192.0.2.2"),
        ):
            assert resolver.resolve("web.example.com") == ["192.0.2.1", "192.0.2.2"]

    @pytest.mark.skipif(
        not hasattr(socket, "EAI_NODATA"), reason="platform has no EAI_NODATA"
    )
    def test_no_records_is_empty(self, resolver):
        """A name without addresses should resolve to nothing, not fail."""
        error = socket.gaierror(socket.EAI_NODATA, "No address associated with hostname")
        with patch("port_exporter.resolver.socket.getaddrinfo", side_effect=error):
            assert resolver.resolve("empty.example.com") == []

    def test_unknown_host_fails(self, resolver):
        """NXDOMAIN should raise ResolutionFailedError."""
        error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        with patch("port_exporter.resolver.socket.getaddrinfo", side_effect=error):
            with pytest.raises(ResolutionFailedError) as exc_info:
                resolver.resolve("missing.example.com")

        assert exc_info.value.host == "missing.example.com"
        assert "missing.example.com" in str(exc_info.value)

    def test_temporary_failure_fails(self, resolver):
        """Resolver timeouts should raise ResolutionFailedError."""
        error = socket.gaierror(socket.EAI_AGAIN, "Temporary failure in name resolution")
        with patch("port_exporter.resolver.socket.getaddrinfo", side_effect=error):
            with pytest.raises(ResolutionFailedError):
                resolver.resolve("slow.example.com")

    def test_invalid_name_fails(self, resolver):
        """Names that cannot be encoded should raise ResolutionFailedError."""
        with patch(
            "port_exporter.resolver.socket.getaddrinfo",
            side_effect=UnicodeError("label too long"),
        ):
            with pytest.raises(ResolutionFailedError):
                resolver.resolve("bad..name")
