"""FastAPI application serving TCP reachability metrics.

Every scrape of the metrics path runs one probe cycle over the configured
items and returns the result in the Prometheus text format.
"""

from typing import Any, Sequence

import structlog
from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .config import (
    ConfigError,
    Settings,
    build_items,
    load_settings,
    parse_listen_address,
)
from .engine import ProbeEngine
from .item import Item
from .logging_config import configure_logging
from .metrics import ExporterMetrics
from .prober import TCPProber
from .resolver import SystemResolver

logger = structlog.get_logger()

SERVICE_NAME = "port-exporter"


def build_engine(settings: Settings) -> ProbeEngine:
    """Engine wired to the real resolver and prober."""
    return ProbeEngine(
        resolver=SystemResolver(),
        prober=TCPProber(),
        timeout=settings.connection_timeout,
        max_concurrent_probes=settings.max_concurrent_probes,
        resolve_timeout=settings.resolve_timeout,
    )


def create_app(
    settings: Settings,
    items: list[Item],
    engine: ProbeEngine | None = None,
    metrics: ExporterMetrics | None = None,
) -> FastAPI:
    """Build the exporter application for a fixed list of items."""
    engine = engine or build_engine(settings)
    metrics = metrics or ExporterMetrics()

    app = FastAPI(
        title="TCP Port Exporter",
        description="Prometheus exporter reporting TCP reachability of endpoints",
        version=__version__,
    )
    app.state.settings = settings
    app.state.items = items
    app.state.engine = engine
    app.state.metrics = metrics

    async def scrape() -> Response:
        """Probe every item and return Prometheus metrics."""
        cycle = await engine.run_cycle(items)
        metrics.record(cycle)
        return Response(
            content=generate_latest(metrics.registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    app.add_api_route(settings.metrics_path, scrape, methods=["GET"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME}

    @app.get("/config")
    async def get_config() -> dict[str, Any]:
        """Return current configuration (non-sensitive values only)."""
        return {
            "connection_timeout_s": settings.connection_timeout,
            "resolve_timeout_s": settings.resolve_timeout,
            "log_level": settings.log_level,
            "listen_addr": settings.listen_addr,
            "metrics_path": settings.metrics_path,
            "strict_scheme": settings.strict_scheme,
            "max_concurrent_probes": settings.max_concurrent_probes,
            "items": [
                {
                    "resource": item.resource,
                    "network": item.network,
                    "host": item.host,
                    "port": item.port,
                    "group": item.group,
                    "alias": item.alias,
                }
                for item in items
            ],
        }

    return app


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration and serve the exporter until interrupted."""
    import uvicorn

    try:
        settings = load_settings(argv)
        host, port = parse_listen_address(settings.listen_addr)
        configure_logging(settings.logging_config)
        items = build_items(settings)
    except ConfigError as e:
        raise SystemExit(f"Configuration error: {e}") from e

    logger.info(
        "starting_exporter",
        service=SERVICE_NAME,
        version=__version__,
        listen_addr=settings.listen_addr,
        metrics_path=settings.metrics_path,
        items=len(items),
        connection_timeout_s=settings.connection_timeout,
        resolve_timeout_s=settings.resolve_timeout,
    )

    app = create_app(settings, items)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=settings.logging_config.level_number,
    )


if __name__ == "__main__":
    main()
