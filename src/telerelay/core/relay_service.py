"""
Relay service lifecycle.

Builds the relay engine, its transport and its sinks once from settings,
and starts/stops their connection pools with the application.
"""

import importlib
from typing import Any, Iterable, List, Optional

import structlog

from ..config import BulkIndexSettings, Settings
from ..sinks.base import TelemetrySink
from ..sinks.bulk_index import BulkIndexSink, StaticIndexSelector
from .exceptions import ConfigurationError
from .metrics import MetricsCollector
from .relay import RelayEngine
from .transport import HttpTransport

logger = structlog.get_logger(__name__)


def load_object(path: str) -> Any:
    """Import ``module.sub:attribute`` and return the attribute."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            f"Invalid import path '{path}', expected 'module:attribute'",
            details={"path": path},
        )

    try:
        target: Any = importlib.import_module(module_name)
        for part in attribute.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Cannot load '{path}'",
            details={"path": path, "error": str(e)},
        ) from e
    return target


def build_bulk_index_sink(settings: BulkIndexSettings) -> BulkIndexSink:
    """Create the bulk-index sink from configuration."""
    if settings.selector:
        selector = load_object(settings.selector)
    else:
        selector = StaticIndexSelector(settings.index, settings.doc_type, settings.id_field)

    return BulkIndexSink(
        bulk_endpoint=settings.bulk_endpoint,
        index_selector=selector,
        timeout_seconds=settings.timeout_seconds,
    )


def build_sinks(settings: Settings) -> List[TelemetrySink]:
    """Create every configured sink. The set is fixed for the relay's lifetime."""
    sinks: List[TelemetrySink] = []

    if settings.bulk_index.enabled:
        sinks.append(build_bulk_index_sink(settings.bulk_index))

    for path in settings.relay.sink_factories:
        sink = load_object(path)(settings)
        if not isinstance(sink, TelemetrySink):
            raise ConfigurationError(
                f"Sink factory '{path}' did not return a TelemetrySink",
                details={"path": path, "type": type(sink).__name__},
            )
        sinks.append(sink)

    names = [sink.name for sink in sinks]
    if len(names) != len(set(names)):
        raise ConfigurationError("Sink names must be unique", details={"sinks": names})

    return sinks


class RelayService:
    """
    Owns the relay engine and the lifecycle of its connection pools.

    Features:
    - Startup/shutdown of the destination transport and every sink
    - Health reporting for readiness checks
    """

    def __init__(self, engine: RelayEngine, await_sinks: bool = False) -> None:
        self.engine = engine
        self.await_sinks = await_sinks
        self._running = False

        logger.info("Relay service initialized", await_sinks=await_sinks)

    @property
    def sinks(self) -> Iterable[TelemetrySink]:
        return self.engine.sinks

    async def start(self) -> None:
        """Open the destination transport and start every sink."""
        if self._running:
            return

        await self.engine.transport.start()
        for sink in self.engine.sinks:
            await sink.start()

        self._running = True
        logger.info("Relay service started", sinks=[sink.name for sink in self.engine.sinks])

    async def stop(self) -> None:
        """Stop sinks and close the destination transport."""
        if not self._running:
            return

        self._running = False

        for sink in reversed(self.engine.sinks):
            try:
                await sink.stop()
            except Exception as e:
                logger.error("Failed to stop sink", sink=sink.name, error=str(e))

        await self.engine.transport.stop()
        logger.info("Relay service stopped")

    def is_healthy(self) -> bool:
        return self._running and self.engine.transport.is_open


def build_relay_service(
    settings: Settings,
    metrics: Optional[MetricsCollector] = None,
    transport: Optional[HttpTransport] = None,
    sinks: Optional[Iterable[TelemetrySink]] = None,
) -> RelayService:
    """
    Resolve all fixed configuration once and build the relay service.

    ``transport`` and ``sinks`` override what the settings would build.

    Raises:
        ConfigurationError: on invalid destination, sink or factory settings
    """
    if transport is None:
        # responses are relayed byte-for-byte, so never decompress them
        transport = HttpTransport(
            name="destination",
            timeout_seconds=settings.relay.timeout_seconds,
            auto_decompress=False,
        )

    engine = RelayEngine(
        destination_uri=settings.relay.destination_uri,
        transport=transport,
        sinks=build_sinks(settings) if sinks is None else sinks,
        max_body_bytes=settings.relay.max_body_bytes,
        metrics=metrics,
    )
    return RelayService(engine, await_sinks=settings.relay.await_sinks)
