"""Probe cycle runner.

Each cycle resolves every configured item and probes every resolved address.
The resolver and prober are blocking, so they run in the default executor
with a semaphore bounding how many are in flight at once. A lookup that
outlasts the resolve timeout is recorded as a resolution error. Nothing is
kept between cycles.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterable

import structlog

from .item import Item, ProbeResult
from .prober import Prober
from .resolver import ResolutionFailedError, Resolver

logger = structlog.get_logger()

DEFAULT_RESOLVE_TIMEOUT_S = 5.0


@dataclass
class ProbeCycle:
    """Everything one probe cycle produced."""

    results: list[ProbeResult] = field(default_factory=list)
    addresses: dict[Item, list[str]] = field(default_factory=dict)
    errors: dict[Item, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def available_count(self) -> int:
        """Number of probed addresses that were reachable."""
        return sum(1 for result in self.results if result.available)


class ProbeEngine:
    """Runs resolution and probing for a list of items."""

    def __init__(
        self,
        resolver: Resolver,
        prober: Prober,
        timeout: float,
        max_concurrent_probes: int = 32,
        resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT_S,
    ):
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if resolve_timeout <= 0:
            raise ValueError(f"resolve_timeout must be positive, got {resolve_timeout}")
        if max_concurrent_probes < 1:
            raise ValueError("max_concurrent_probes must be at least 1")
        self.resolver = resolver
        self.prober = prober
        self.timeout = timeout
        self.resolve_timeout = resolve_timeout
        self.max_concurrent_probes = max_concurrent_probes

    def resolve_item(self, item: Item) -> list[str]:
        """Resolve the item's host.

        Raises:
            ResolutionFailedError: lookup failed
        """
        addresses = self.resolver.resolve(item.host)
        if not addresses:
            logger.warning("resolution_empty", resource=item.resource, host=item.host)
        return addresses

    def probe_address(self, item: Item, ip: str) -> ProbeResult:
        """Probe one resolved address of an item."""
        started = time.perf_counter()
        available = self.prober.is_available(ip, item.port, self.timeout)
        elapsed = time.perf_counter() - started
        logger.debug(
            "probe_complete",
            resource=item.resource,
            ip=ip,
            port=item.port,
            available=available,
            duration_s=round(elapsed, 6),
        )
        return ProbeResult(
            item=item, ip=ip, available=available, duration_seconds=elapsed
        )

    async def run_cycle(self, items: Iterable[Item]) -> ProbeCycle:
        """Resolve and probe every item concurrently."""
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_concurrent_probes)
        cycle = ProbeCycle()
        started = time.perf_counter()

        async def _resolve(item: Item) -> None:
            async with semaphore:
                try:
                    addresses = await asyncio.wait_for(
                        loop.run_in_executor(None, self.resolve_item, item),
                        timeout=self.resolve_timeout,
                    )
                except asyncio.TimeoutError:
                    # The lookup thread keeps running; its result is discarded.
                    error = (
                        f"lookup {item.host}: timed out after {self.resolve_timeout}s"
                    )
                    logger.error(
                        "resolution_timeout",
                        resource=item.resource,
                        host=item.host,
                        timeout_s=self.resolve_timeout,
                    )
                    cycle.errors[item] = error
                    return
                except ResolutionFailedError as e:
                    logger.error(
                        "resolution_failed",
                        resource=item.resource,
                        host=item.host,
                        error=str(e),
                    )
                    cycle.errors[item] = str(e)
                    return
            cycle.addresses[item] = addresses

        async def _probe(item: Item, ip: str) -> ProbeResult:
            async with semaphore:
                return await loop.run_in_executor(None, self.probe_address, item, ip)

        unique_items = list(dict.fromkeys(items))
        await asyncio.gather(*(_resolve(item) for item in unique_items))

        pairs = [
            (item, ip)
            for item in unique_items
            for ip in cycle.addresses.get(item, [])
        ]
        cycle.results = list(
            await asyncio.gather(*(_probe(item, ip) for item, ip in pairs))
        )
        cycle.duration_seconds = time.perf_counter() - started

        logger.info(
            "probe_cycle_complete",
            items=len(unique_items),
            probes=len(cycle.results),
            available=cycle.available_count,
            resolution_errors=len(cycle.errors),
            duration_s=round(cycle.duration_seconds, 6),
        )
        return cycle
