"""TCP port exporter.

Resolves configured endpoints and reports whether they accept TCP
connections, exposed as Prometheus metrics.
"""

__version__ = "1.0.0"
