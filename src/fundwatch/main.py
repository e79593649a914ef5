"""Entry point for the fundwatch service.

Wires all components together and serves the query API with uvicorn. The
collector and the API share a single asyncio event loop: FastAPI's lifespan
opens the database, connects the upstream fetcher and starts the collector
in the background, and tears them down in reverse order on shutdown.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. InstrumentRegistry (static instrument table)
4. SampleDatabase (pooled SQLite)
5. SampleStore (typed reads/writes)
6. Aggregator (bucketed history)
7. QueryService (read façade)
8. CcxtSnapshotFetcher (upstream)
9. CollectionScheduler (periodic ingest)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from fundwatch.aggregation import Aggregator
from fundwatch.api.app import create_app
from fundwatch.collector.scheduler import CollectionScheduler
from fundwatch.config import AppSettings
from fundwatch.data.database import SampleDatabase
from fundwatch.data.store import SampleStore
from fundwatch.fetcher.ccxt_fetcher import CcxtSnapshotFetcher
from fundwatch.instruments import InstrumentRegistry
from fundwatch.logging import get_logger, setup_logging
from fundwatch.query.service import QueryService


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT open the database or connect the fetcher -- that happens
    in the lifespan.
    """
    registry = InstrumentRegistry.default()

    database = SampleDatabase(
        settings.database.path,
        pool_size=settings.database.pool_size,
        acquire_timeout=settings.database.acquire_timeout,
        busy_timeout_ms=settings.database.busy_timeout_ms,
    )
    store = SampleStore(database)
    aggregator = Aggregator(store)
    query_service = QueryService(store, aggregator, registry)

    fetcher = CcxtSnapshotFetcher(settings.upstream, registry)
    collector = CollectionScheduler(
        fetcher=fetcher,
        store=store,
        registry=registry,
        settings=settings.collector,
    )

    return {
        "registry": registry,
        "database": database,
        "store": store,
        "aggregator": aggregator,
        "query_service": query_service,
        "fetcher": fetcher,
        "collector": collector,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: opens the database (creating the schema if absent), stores
    components on app.state, connects the fetcher and starts the collector.

    On shutdown: stops the collector, closes the fetcher and the database.
    """
    logger = get_logger("fundwatch.main")
    settings: AppSettings = app.state.settings
    components = app.state.components

    await components["database"].connect()

    app.state.query_service = components["query_service"]
    app.state.store = components["store"]

    collector_started = False
    if settings.collector.enabled:
        try:
            await components["fetcher"].connect()
        except Exception as e:
            # Collection retries on every tick; the read API stays up
            logger.error("upstream_connect_failed", error=str(e))
        app.state.collector = components["collector"]
        await components["collector"].start()
        collector_started = True

    logger.info(
        "lifespan_started",
        collector_enabled=settings.collector.enabled,
        db_path=settings.database.path,
    )

    yield

    if collector_started:
        await components["collector"].stop()
        await components["fetcher"].close()
    await components["database"].close()

    logger.info("fundwatch_stopped")


async def run() -> None:
    """Run the collector and query API in one event loop via uvicorn."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("fundwatch.main")

    # 3-9. Build all components
    components = _build_components(settings)

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_fundwatch",
        host=settings.server.host,
        port=settings.server.port,
        instruments=len(components["registry"]),
    )

    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
