"""FastAPI host: serves the aggregated health document and runs the exporter."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from healthrelay import __version__
from healthrelay.aggregator.merge import HealthAggregator
from healthrelay.aggregator.options import AggregatorOptions
from healthrelay.api.health_routes import create_health_router
from healthrelay.config import Settings, settings as default_settings
from healthrelay.exporter.loop import ExporterLoop
from healthrelay.exporter.options import ExporterOptions
from healthrelay.health.probes import ProbeRegistry, ProbeRunner
from healthrelay.topology import load_topology

logger = logging.getLogger(__name__)


def _exporter_options_provider(s: Settings | None) -> Callable[[], ExporterOptions] | None:
    """Settings handed to create_app win; otherwise env is re-read every cycle."""
    if s is None:
        return None
    return lambda: ExporterOptions.from_settings(s)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the exporter loop on startup, stop it on shutdown."""
    exporter = ExporterLoop(options_provider=_exporter_options_provider(app.state.settings))
    app.state.exporter = exporter
    try:
        await exporter.start()
        logger.info("Health exporter task started")
    except Exception:
        logger.exception("Health exporter failed to start")

    yield

    await exporter.stop()


def create_app(
    settings: Settings | None = None,
    registry: ProbeRegistry | None = None,
    aggregator_options: AggregatorOptions | None = None,
) -> FastAPI:
    s = settings or default_settings
    app = FastAPI(
        title="healthrelay",
        version=__version__,
        lifespan=lifespan,
    )

    if registry is None or aggregator_options is None:
        topology = load_topology(s.topology_file)
        if registry is None:
            registry = topology.build_registry()
        if aggregator_options is None:
            aggregator_options = AggregatorOptions.from_settings(s, topology.remote_endpoints)

    app.state.settings = settings
    app.state.probe_runner = ProbeRunner(registry)
    app.state.aggregator = HealthAggregator(aggregator_options)
    logger.info(
        "Health endpoint %s: %d probes, %d remote endpoints",
        s.health_path, len(registry), len(aggregator_options.remote_endpoints),
    )

    app.include_router(create_health_router(s.health_path))
    return app
