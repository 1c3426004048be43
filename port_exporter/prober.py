"""TCP availability probe."""

import socket
from abc import ABC, abstractmethod

import structlog

from .item import is_valid_port, join_host_port

logger = structlog.get_logger()


class Prober(ABC):
    """Checks whether an address accepts connections."""

    @abstractmethod
    def is_available(self, ip: str, port: int, timeout: float) -> bool:
        """
        Probe ip:port once.

        Args:
            ip: Resolved IP address (IPv4 or IPv6, no brackets)
            port: TCP port
            timeout: Upper bound for the attempt in seconds

        Returns:
            True if reachable, False otherwise
        """
        pass


class TCPProber(Prober):
    """Reports reachability by completing a TCP handshake."""

    def is_available(self, ip: str, port: int, timeout: float) -> bool:
        """Connect, then close immediately. Any failure counts as unavailable."""
        if not is_valid_port(port):
            logger.debug("probe_skipped", ip=ip, port=port, reason="port out of range")
            return False
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        address = join_host_port(ip, port)
        try:
            conn = socket.create_connection((ip, port), timeout=timeout)
        except OSError as e:
            logger.debug("probe_failed", address=address, error=str(e))
            return False

        try:
            conn.close()
        except OSError as e:
            logger.debug("probe_close_failed", address=address, error=str(e))
            return False
        return True
