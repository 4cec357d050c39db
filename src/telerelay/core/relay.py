"""
Relay engine.

Forwards every telemetry request to the canonical destination unchanged and
fans the decoded batch out to all registered sinks:

1. Validate the request (body, headers, Content-Length)
2. Read the whole body into memory
3. Forward the exact bytes to the canonical destination
4. If sinks are registered: decode the batch and replicate to every sink concurrently
5. Return the destination's response, whatever the sinks did
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from functools import partial
from typing import (
    Any,
    AsyncIterable,
    Awaitable,
    BinaryIO,
    Callable,
    Iterable,
    List,
    Optional,
    Tuple,
    Union,
)

import structlog
from multidict import CIMultiDictProxy

from ..sinks.base import TelemetrySink
from .codec import TelemetryBatch, decode
from .exceptions import (
    ConfigurationError,
    ContentLengthError,
    DecodeError,
    DestinationError,
    EmptyBodyError,
    InvalidArgumentError,
    RequestValidationError,
    SinkError,
    TransportError,
)
from .headers import (
    HeaderSource,
    build_header_set,
    content_encodings,
    filter_for_sinks,
    split_for_forward,
)
from .metrics import MetricsCollector
from .transport import HttpTransport, OutboundRequest, RelayResponse, require_absolute_uri

logger = structlog.get_logger(__name__)

DEFAULT_MAX_BODY_BYTES = 16 * 1024 * 1024

BodySource = Union[bytes, bytearray, memoryview, AsyncIterable[bytes], BinaryIO]


@dataclass
class SinkOutcome:
    """Result of one sink replication."""
    sink: str
    success: bool
    duration_seconds: float
    error: Optional[str] = None


@dataclass
class ReplicationReport:
    """Result of fanning one batch out to all sinks."""
    records: int = 0
    outcomes: List[SinkOutcome] = field(default_factory=list)
    decode_error: Optional[str] = None

    @property
    def failed_sinks(self) -> List[str]:
        return [outcome.sink for outcome in self.outcomes if not outcome.success]


Replication = Callable[[], Awaitable[ReplicationReport]]


def declared_content_length(headers: "CIMultiDictProxy[str]", max_body_bytes: int) -> int:
    """
    Parse the declared Content-Length.

    Raises:
        ContentLengthError: if absent, unparsable, not positive or above max_body_bytes
    """
    values = headers.getall("Content-Length", [])
    if not values:
        raise ContentLengthError(status_code=411)

    raw = values[0].strip()
    # int() would also take "+5", "1_0" and non-ASCII digits
    if not (raw.isascii() and raw.isdigit()):
        raise ContentLengthError(value=raw)
    length = int(raw)

    if length < 1:
        raise ContentLengthError(value=raw)

    if length > max_body_bytes:
        raise ContentLengthError(
            message=f"Content-Length exceeds the {max_body_bytes} byte limit",
            status_code=413,
            value=raw,
        )
    return length


async def read_all(body: BodySource, max_body_bytes: int) -> bytes:
    """Read a whole request body from bytes, a file-like object or an async chunk iterator."""
    if isinstance(body, (bytes, bytearray, memoryview)):
        data = bytes(body)
    elif hasattr(body, "__aiter__"):
        buffer = bytearray()
        async for chunk in body:  # type: ignore[union-attr]
            buffer.extend(chunk)
            if len(buffer) > max_body_bytes:
                raise ContentLengthError(
                    message=f"Body exceeds the {max_body_bytes} byte limit",
                    status_code=413,
                )
        data = bytes(buffer)
    elif hasattr(body, "read"):
        read_result: Any = body.read()
        if inspect.isawaitable(read_result):
            read_result = await read_result
        data = bytes(read_result)
    else:
        raise TypeError(f"Unsupported body type: {type(body).__name__}")

    if len(data) > max_body_bytes:
        raise ContentLengthError(
            message=f"Body exceeds the {max_body_bytes} byte limit",
            status_code=413,
        )
    return data


class RelayEngine:
    """
    Replicates telemetry to the canonical destination and to every sink.

    The destination, sinks and transport are fixed at construction and shared
    read-only by all concurrent requests.
    """

    def __init__(
        self,
        destination_uri: Optional[str],
        transport: Optional[HttpTransport],
        sinks: Optional[Iterable[TelemetrySink]] = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.destination_uri = require_absolute_uri(destination_uri, "destination_uri")
        if transport is None:
            raise ConfigurationError("transport is required.")
        if max_body_bytes < 1:
            raise ConfigurationError(
                "max_body_bytes must be positive.",
                details={"max_body_bytes": max_body_bytes},
            )

        self.transport = transport
        self.sinks: Tuple[TelemetrySink, ...] = tuple(sinks or ())
        self.max_body_bytes = max_body_bytes
        self.metrics = metrics

        logger.info(
            "Relay engine initialized",
            destination_uri=self.destination_uri,
            sinks=[sink.name for sink in self.sinks],
        )

    async def process(
        self,
        body: Optional[BodySource],
        headers: Optional[HeaderSource],
    ) -> RelayResponse:
        """
        Forward a telemetry request and replicate it to all sinks.

        Waits for every sink before returning. Sink and decode failures never
        change the result; the destination's response is always returned.

        Raises:
            RequestValidationError: for a malformed request, before any network call
            DestinationError: if the canonical forward fails or is rejected
        """
        response, replication = await self.dispatch(body, headers)
        if replication is not None:
            await replication()
        return response

    async def dispatch(
        self,
        body: Optional[BodySource],
        headers: Optional[HeaderSource],
    ) -> Tuple[RelayResponse, Optional[Replication]]:
        """
        Validate, read and forward a request; defer the sink fan-out.

        Returns the destination's response and a callable that runs the
        replication, or None when no sink is registered. The caller decides
        whether the replication runs before or after it responds.
        """
        if body is None:
            raise InvalidArgumentError("body")
        if headers is None:
            raise InvalidArgumentError("headers")

        header_set = headers if isinstance(headers, CIMultiDictProxy) else build_header_set(headers)

        try:
            buffer = await self.read_body(body, header_set)
        except RequestValidationError as e:
            logger.warning(
                "Telemetry request rejected",
                error=str(e),
                error_code=e.error_code,
                details=e.details,
            )
            self._record_request("rejected")
            raise

        logger.info(
            "Telemetry request accepted",
            body_bytes=len(buffer),
            content_encoding=list(content_encodings(header_set)),
            sinks=len(self.sinks),
        )

        try:
            response = await self.forward(buffer, header_set)
        except DestinationError:
            self._record_request("destination_error", len(buffer))
            raise

        self._record_request("forwarded", len(buffer))

        if not self.sinks:
            return response, None
        return response, partial(self.replicate, buffer, header_set)

    async def read_body(self, body: BodySource, headers: "CIMultiDictProxy[str]") -> bytes:
        """
        Check Content-Length and read the entire body.

        Raises:
            ContentLengthError: bad Content-Length or oversized body
            EmptyBodyError: nothing was read
        """
        declared_content_length(headers, self.max_body_bytes)

        buffer = await read_all(body, self.max_body_bytes)
        if len(buffer) < 1:
            raise EmptyBodyError()
        return buffer

    async def forward(self, buffer: bytes, headers: "CIMultiDictProxy[str]") -> RelayResponse:
        """
        POST the exact bytes to the canonical destination.

        Raises:
            DestinationError: transport failure, or a non-2xx status (response attached)
        """
        general, content = split_for_forward(headers)
        request = OutboundRequest(
            url=self.destination_uri,
            body=buffer,
            headers=general,
            content_headers=content,
        )

        start_time = time.perf_counter()
        try:
            response = await self.transport.send(request)
        except TransportError as e:
            self._record_destination(0, start_time)
            logger.error(
                "Canonical destination unreachable",
                destination_uri=self.destination_uri,
                error=str(e),
            )
            raise DestinationError(
                "Failed to reach the canonical destination",
                details=e.details,
            ) from e

        self._record_destination(response.status, start_time)

        if not response.is_success:
            logger.warning(
                "Canonical destination rejected telemetry",
                destination_uri=self.destination_uri,
                status=response.status,
            )
            raise DestinationError(
                f"Canonical destination returned status {response.status}",
                response=response,
                details={"status_code": response.status},
            )

        logger.debug(
            "Telemetry forwarded to canonical destination",
            status=response.status,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return response

    async def replicate(self, buffer: bytes, headers: "CIMultiDictProxy[str]") -> ReplicationReport:
        """
        Decode the original bytes and fan the batch out to every sink concurrently.

        Never raises for decode or sink failures; they are logged, counted and
        reported.
        """
        # decompression and parsing of large bodies stay off the event loop
        try:
            batch = await asyncio.to_thread(decode, buffer, content_encodings(headers))
        except DecodeError as e:
            logger.error(
                "Failed to decode telemetry batch, replication skipped",
                error=str(e),
                details=e.details,
            )
            if self.metrics:
                self.metrics.record_decode_error()
            return ReplicationReport(decode_error=str(e))
        except Exception as e:
            logger.error(
                "Unexpected error decoding telemetry batch, replication skipped",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_decode_error()
            return ReplicationReport(decode_error=str(e))

        if self.metrics:
            self.metrics.record_batch(len(batch))

        if not batch:
            logger.info("Empty telemetry batch, replication skipped")
            return ReplicationReport()

        sink_headers = filter_for_sinks(headers)
        logger.info("Telemetry batch decoded", records=len(batch), sinks=len(self.sinks))

        outcomes = await asyncio.gather(
            *(self._replicate_to_sink(sink, batch, sink_headers) for sink in self.sinks)
        )
        report = ReplicationReport(records=len(batch), outcomes=list(outcomes))

        logger.info(
            "Replication completed",
            records=report.records,
            succeeded=len(report.outcomes) - len(report.failed_sinks),
            failed_sinks=report.failed_sinks,
        )
        return report

    async def _replicate_to_sink(
        self,
        sink: TelemetrySink,
        batch: TelemetryBatch,
        headers: "CIMultiDictProxy[str]",
    ) -> SinkOutcome:
        start_time = time.perf_counter()
        try:
            await sink.replicate(batch, headers)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(
                "Sink replication failed",
                sink=sink.name,
                records=len(batch),
                error=str(e),
                error_type=type(e).__name__,
                # unexpected errors get a traceback
                exc_info=not isinstance(e, SinkError),
            )
            if self.metrics:
                self.metrics.record_sink(sink.name, False, duration)
            return SinkOutcome(sink=sink.name, success=False, duration_seconds=duration, error=str(e))

        duration = time.perf_counter() - start_time
        logger.debug("Sink replication succeeded", sink=sink.name, records=len(batch))
        if self.metrics:
            self.metrics.record_sink(sink.name, True, duration)
        return SinkOutcome(sink=sink.name, success=True, duration_seconds=duration)

    def _record_request(self, outcome: str, body_bytes: int = 0) -> None:
        if self.metrics:
            self.metrics.record_request(outcome, body_bytes)

    def _record_destination(self, status_code: int, start_time: float) -> None:
        if self.metrics:
            self.metrics.record_destination(status_code, time.perf_counter() - start_time)
