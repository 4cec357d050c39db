"""
Bulk-index sink for search/analytics backends.

Converts every telemetry record into a bulk operation unit:
- an ``index`` action line built from the operator's index selector
- the record itself, with ``.`` in every key replaced by ``_``

The units are posted as one NDJSON body per batch to a ``_bulk`` endpoint.
"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog
from multidict import CIMultiDict, CIMultiDictProxy
from pydantic import ValidationError

from ..core.codec import TelemetryBatch
from ..core.exceptions import ConfigurationError, SinkError, TransportError
from ..core.transport import HttpTransport, OutboundRequest, require_absolute_uri
from ..models.index_definition import IndexDefinition
from .base import TelemetrySink

logger = structlog.get_logger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"

IndexSelector = Callable[[Dict[str, Any]], Union[IndexDefinition, Mapping[str, Any]]]


def sanitize_keys(value: Any) -> Any:
    """
    Return a copy of ``value`` with every ``.`` in object keys replaced by ``_``.

    Recurses through nested objects and arrays; leaves pass through. When two
    keys collapse to the same name, the later one wins.
    """
    if isinstance(value, dict):
        return {key.replace(".", "_"): sanitize_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_keys(item) for item in value]
    return value


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class StaticIndexSelector:
    """
    Routes every record to one index and type.

    If ``id_field`` is set and present on the record, its value becomes ``_id``.
    """

    def __init__(self, index: str, doc_type: str, id_field: Optional[str] = None) -> None:
        self.definition = IndexDefinition(index=index, type=doc_type)
        self.id_field = id_field

    def __call__(self, record: Dict[str, Any]) -> IndexDefinition:
        if self.id_field is None:
            return self.definition

        doc_id = record.get(self.id_field)
        if doc_id is None:
            return self.definition
        return self.definition.model_copy(update={"id": str(doc_id)})


class BulkIndexSink(TelemetrySink):
    """
    Replicates telemetry batches to a bulk-indexing HTTP API.

    One ``replicate`` call is exactly one POST; partial submission is not
    supported.
    """

    def __init__(
        self,
        bulk_endpoint: Optional[str],
        index_selector: Optional[IndexSelector],
        transport: Optional[HttpTransport] = None,
        name: str = "bulk-index",
        timeout_seconds: float = 30.0,
    ) -> None:
        self.bulk_endpoint = require_absolute_uri(bulk_endpoint, "bulk_endpoint")
        if index_selector is None:
            raise ConfigurationError("index_selector is required.", details={"sink": name})

        self.index_selector = index_selector
        self.name = name
        self.transport = transport or HttpTransport(name=name, timeout_seconds=timeout_seconds)

        logger.info("Bulk index sink initialized", sink=name, bulk_endpoint=self.bulk_endpoint)

    async def start(self) -> None:
        await self.transport.start()

    async def stop(self) -> None:
        await self.transport.stop()

    @property
    def is_ready(self) -> bool:
        return self.transport.is_open

    def _resolve_index(self, record: Dict[str, Any]) -> IndexDefinition:
        selected = self.index_selector(record)
        if isinstance(selected, IndexDefinition):
            return selected
        try:
            return IndexDefinition.model_validate(selected)
        except ValidationError as e:
            raise SinkError(
                "Index selector returned an invalid index definition",
                sink=self.name,
                details={"error": str(e)},
            ) from e

    def build_operations(self, batch: TelemetryBatch) -> List[Dict[str, Any]]:
        """Envelope and sanitized document per record, in record order."""
        operations: List[Dict[str, Any]] = []
        for record in batch:
            operations.append(self._resolve_index(record).to_action())
            operations.append(sanitize_keys(record))
        return operations

    def build_body(self, batch: TelemetryBatch) -> bytes:
        """Serialize the bulk operations as NDJSON, newline terminated."""
        return "".join(_dumps(item) + "\n" for item in self.build_operations(batch)).encode("utf-8")

    async def replicate(self, batch: TelemetryBatch, headers: "CIMultiDictProxy[str]") -> None:
        if not batch:
            logger.debug("Empty batch, nothing to index", sink=self.name)
            return

        body = await asyncio.to_thread(self.build_body, batch)
        request = OutboundRequest(
            url=self.bulk_endpoint,
            body=body,
            content_headers=CIMultiDictProxy(CIMultiDict({"Content-Type": NDJSON_CONTENT_TYPE})),
        )

        logger.info("Replicating batch to bulk endpoint", sink=self.name, records=len(batch), body_bytes=len(body))
        start_time = time.perf_counter()

        try:
            response = await self.transport.send(request)
        except TransportError as e:
            raise SinkError(
                f"Bulk request failed: {e}",
                sink=self.name,
                details=e.details,
            ) from e

        if not response.is_success:
            raise SinkError(
                f"Bulk endpoint returned status {response.status}",
                sink=self.name,
                details={
                    "status_code": response.status,
                    "response_body": response.body[:512].decode("utf-8", errors="replace"),
                },
            )

        logger.debug(
            "Bulk request accepted",
            sink=self.name,
            status=response.status,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
