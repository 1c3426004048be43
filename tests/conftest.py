"""Pytest configuration and fixtures for exporter tests."""

import socket
import sys
from pathlib import Path

import pytest

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from port_exporter.item import Item  # noqa: E402
from port_exporter.prober import Prober  # noqa: E402
from port_exporter.resolver import ResolutionFailedError, Resolver  # noqa: E402


class FakeResolver(Resolver):
    """Resolver answering from a fixed table; unknown hosts fail."""

    def __init__(self, table: dict[str, list[str]]):
        self.table = table
        self.calls: list[str] = []

    def resolve(self, host: str) -> list[str]:
        self.calls.append(host)
        if host not in self.table:
            raise ResolutionFailedError(f"lookup {host}: no such host", host)
        return list(self.table[host])


class FakeProber(Prober):
    """Prober reporting addresses in ``reachable`` as available."""

    def __init__(self, reachable: set[tuple[str, int]]):
        self.reachable = reachable
        self.calls: list[tuple[str, int, float]] = []

    def is_available(self, ip: str, port: int, timeout: float) -> bool:
        self.calls.append((ip, port, timeout))
        return (ip, port) in self.reachable


@pytest.fixture
def web_item():
    """Item for a hostname resolving to two addresses."""
    return Item(
        resource="web.example.com:443",
        network="tcp",
        host="web.example.com",
        port=443,
        group="frontend",
        alias="web",
    )


@pytest.fixture
def db_item():
    """Item for a literal IPv4 address."""
    return Item(
        resource="10.0.0.5:5432",
        network="tcp",
        host="10.0.0.5",
        port=5432,
        group="backend",
    )


@pytest.fixture
def missing_item():
    """Item whose host does not resolve."""
    return Item(
        resource="missing.example.com:80",
        network="tcp",
        host="missing.example.com",
        port=80,
    )


@pytest.fixture
def fake_resolver():
    """Resolver with a small fixed table."""
    return FakeResolver(
        {
            "web.example.com": ["192.0.2.10", "2001:db8::10"],
            "10.0.0.5": ["10.0.0.5"],
            "empty.example.com": [],
        }
    )


@pytest.fixture
def fake_prober():
    """Prober where only the IPv4 web address and the database are up."""
    return FakeProber({("192.0.2.10", 443), ("10.0.0.5", 5432)})


@pytest.fixture
def listening_port():
    """A local TCP port with a socket accepting connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A local TCP port nothing is listening on."""
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    return port
