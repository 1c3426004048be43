"""Hostname to IP address resolution."""

import ipaddress
import socket
from abc import ABC, abstractmethod

import structlog

logger = structlog.get_logger()

# getaddrinfo codes meaning "the name exists but has no usable address"
_NO_ADDRESS_ERRNOS = frozenset(
    code
    for code in (
        getattr(socket, "EAI_NODATA", None),
        getattr(socket, "EAI_ADDRFAMILY", None),
    )
    if code is not None
)


class ResolutionFailedError(Exception):
    """DNS lookup failed for a reason other than "no records"."""

    def __init__(self, message: str, host: str):
        super().__init__(message)
        self.host = host


def is_ip_literal(value: str) -> bool:
    """Check whether value is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_ipv6(value: str) -> bool:
    """Check whether value is an IPv6 literal.

    A string counts as IPv6 when it parses as an IP address and contains a
    colon, which rules out both IPv4 literals and hostnames.
    """
    return is_ip_literal(value) and ":" in value


class Resolver(ABC):
    """Turns a host into the IP addresses it refers to."""

    @abstractmethod
    def resolve(self, host: str) -> list[str]:
        """
        Resolve host into IP address strings.

        Returns:
            Addresses in lookup order without duplicates. An empty list means
            the name exists but has no A/AAAA records.

        Raises:
            ResolutionFailedError: lookup itself failed
        """
        pass


class SystemResolver(Resolver):
    """Resolver backed by the operating system's getaddrinfo."""

    def resolve(self, host: str) -> list[str]:
        """Resolve A and AAAA records, short-circuiting IP literals."""
        if is_ip_literal(host):
            return [host]

        try:
            infos = socket.getaddrinfo(
                host, None, socket.AF_UNSPEC, socket.SOCK_STREAM, socket.IPPROTO_TCP
            )
        except socket.gaierror as e:
            if e.errno in _NO_ADDRESS_ERRNOS:
                logger.debug("resolution_empty", host=host, error=str(e))
                return []
            raise ResolutionFailedError(f"lookup {host}: {e.strerror or e}", host) from e
        except (OSError, UnicodeError) as e:
            raise ResolutionFailedError(f"lookup {host}: {e}", host) from e

        addresses: list[str] = []
        for family, _, _, _, sockaddr in infos:
            if family not in (socket.AF_INET, socket.AF_INET6):
                continue
            ip = str(sockaddr[0])
            if ip not in addresses:
                addresses.append(ip)

        logger.debug("resolution_complete", host=host, addresses=addresses)
        return addresses
