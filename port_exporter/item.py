"""Monitored endpoint model and resource string parser.

A resource string has the form ``[<scheme>://]<host>:<port>`` where host is a
hostname, an IPv4 literal or a bracketed IPv6 literal. Parsing is pure: it
never touches the network.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlsplit

import structlog

logger = structlog.get_logger()

MIN_TCP_PORT = 0
MAX_TCP_PORT = 65535

DEFAULT_NETWORK = "tcp"
DEFAULT_GROUP = "all"

SCHEME_SEPARATOR = "://"

_PORT_PATTERN = re.compile(r"[0-9]+")


class ResourceError(ValueError):
    """A resource string could not be turned into an Item."""

    def __init__(self, message: str, resource: str):
        super().__init__(message)
        self.resource = resource


class MalformedResourceError(ResourceError):
    """Resource does not split into exactly one host and one port."""


class InvalidPortError(ResourceError):
    """Port segment is not a decimal number in the TCP port range."""


@dataclass(frozen=True)
class Item:
    """A single monitored endpoint.

    Built once by :func:`parse_resource` and never mutated afterwards, so the
    same instance can be probed from any number of threads.
    """

    resource: str
    network: str
    host: str
    port: int
    group: str = DEFAULT_GROUP
    alias: str = ""

    @property
    def address(self) -> str:
        """host:port re-joined, with brackets around IPv6 hosts."""
        return join_host_port(self.host, self.port)

    @property
    def labels(self) -> dict[str, str]:
        """Labels identifying this item in exported metrics."""
        return {
            "resource": self.resource,
            "group": self.group,
            "alias": self.alias,
            "network": self.network,
        }


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe of one resolved address of an item."""

    item: Item
    ip: str
    available: bool
    duration_seconds: float = 0.0


def is_valid_port(port: int) -> bool:
    """Check that port lies in the TCP port range."""
    return MIN_TCP_PORT <= port <= MAX_TCP_PORT


def join_host_port(host: str, port: int | str) -> str:
    """Inverse of :func:`split_host_port`."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(hostport: str, allow_empty_host: bool = False) -> tuple[str, str]:
    """Split ``host:port``, ``[v6]:port`` into host and port strings.

    Raises:
        MalformedResourceError: if there is not exactly one host/port split
    """
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise MalformedResourceError(
                f"missing ']' in address: {hostport}", hostport
            )
        host = hostport[1:end]
        rest = hostport[end + 1 :]
        if not rest.startswith(":"):
            raise MalformedResourceError(
                f"missing port in address: {hostport}", hostport
            )
        port = rest[1:]
        if ":" in port:
            raise MalformedResourceError(
                f"too many colons in address: {hostport}", hostport
            )
        if "[" in host or "]" in host or "[" in port or "]" in port:
            raise MalformedResourceError(
                f"unexpected bracket in address: {hostport}", hostport
            )
    else:
        host, sep, port = hostport.rpartition(":")
        if not sep:
            raise MalformedResourceError(
                f"missing port in address: {hostport}", hostport
            )
        if ":" in host:
            raise MalformedResourceError(
                f"too many colons in address: {hostport}", hostport
            )
        if "[" in host or "]" in host or "[" in port or "]" in port:
            raise MalformedResourceError(
                f"unexpected bracket in address: {hostport}", hostport
            )

    if not host and not allow_empty_host:
        raise MalformedResourceError(f"missing host in address: {hostport}", hostport)
    return host, port


def resource_network(
    resource: str,
    strict: bool = False,
    default: str = DEFAULT_NETWORK,
) -> str:
    """Return the scheme of a resource string, or the default network.

    A string without ``://`` carries no scheme. A string with ``://`` whose
    scheme cannot be parsed degrades to ``tcp`` unless ``strict`` is set.
    """
    if SCHEME_SEPARATOR not in resource:
        return default

    try:
        scheme = urlsplit(resource).scheme
    except ValueError as e:
        scheme = ""
        reason = str(e)
    else:
        reason = "missing protocol scheme"

    if scheme:
        return scheme

    if strict:
        raise MalformedResourceError(
            f"invalid scheme in resource {resource!r}: {reason}", resource
        )
    logger.warning(
        "resource_scheme_fallback",
        resource=resource,
        network=DEFAULT_NETWORK,
        reason=reason,
    )
    return DEFAULT_NETWORK


def parse_resource(
    resource: str,
    *,
    strict_scheme: bool = False,
    default_network: str = DEFAULT_NETWORK,
    group: str = DEFAULT_GROUP,
    alias: str = "",
) -> Item:
    """Parse a raw resource string into an Item.

    Args:
        resource: ``[<scheme>://]<host>:<port>``
        strict_scheme: raise instead of falling back to ``tcp`` when the
            scheme cannot be parsed
        default_network: network used when the string carries no scheme
        group: group label carried through unchanged
        alias: alias label carried through unchanged

    Returns:
        Fully populated Item; ``resource`` is the string without its prefix

    Raises:
        MalformedResourceError: bad host/port split or, in strict mode, scheme
        InvalidPortError: port is not a decimal number in 0..65535
    """
    network = resource_network(resource, strict=strict_scheme, default=default_network)

    prefix = f"{network}{SCHEME_SEPARATOR}"
    if resource[: len(prefix)].lower() == prefix:
        resource = resource[len(prefix) :]

    host, port = split_host_port(resource)

    if not _PORT_PATTERN.fullmatch(port):
        raise InvalidPortError(f"incorrect port in item: {resource}", resource)
    port_number = int(port)
    if not is_valid_port(port_number):
        raise InvalidPortError(f"port out of range in item: {resource}", resource)

    return Item(
        resource=resource,
        network=network.lower(),
        host=host,
        port=port_number,
        group=group,
        alias=alias,
    )
