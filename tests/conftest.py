"""
Pytest configuration and shared fixtures.

Contains sample telemetry, recording fakes for the outbound transport and
for sinks, and a FastAPI test client wired to them.
"""

import asyncio
import gzip
import json
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from multidict import CIMultiDict, CIMultiDictProxy

from telerelay.config import BulkIndexSettings, RelaySettings, Settings
from telerelay.core.codec import TelemetryBatch
from telerelay.core.transport import OutboundRequest, RelayResponse
from telerelay.main import create_app
from telerelay.sinks.base import TelemetrySink

DESTINATION_URI = "https://collector.example.com/v2/track"
BULK_ENDPOINT = "http://search.example.com:9200/_bulk"


class RecordingTransport:
    """Stands in for HttpTransport; records requests and returns a canned response."""

    def __init__(
        self,
        response: Optional[RelayResponse] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.response = response or RelayResponse(
            status=200,
            headers=CIMultiDictProxy(CIMultiDict({"Content-Type": "application/json; charset=utf-8"})),
            body=b'{"itemsReceived":2,"itemsAccepted":2,"errors":[]}',
        )
        self.error = error
        self.requests: List[OutboundRequest] = []
        self.is_open = False

    async def start(self) -> None:
        self.is_open = True

    async def stop(self) -> None:
        self.is_open = False

    async def send(self, request: OutboundRequest) -> RelayResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class RecordingSink(TelemetrySink):
    """Sink that remembers every batch and header set it was given."""

    def __init__(self, name: str = "recording", delay: float = 0.0) -> None:
        self.name = name
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.started = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    @property
    def is_ready(self) -> bool:
        return self.started

    async def replicate(self, batch: TelemetryBatch, headers: "CIMultiDictProxy[str]") -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append({"batch": batch, "headers": headers})


class FailingSink(TelemetrySink):
    """Sink whose replication always raises."""

    def __init__(self, name: str = "failing", error: Optional[Exception] = None) -> None:
        self.name = name
        self.error = error or RuntimeError("sink exploded")
        self.attempts = 0

    async def replicate(self, batch: TelemetryBatch, headers: "CIMultiDictProxy[str]") -> None:
        self.attempts += 1
        raise self.error


def to_ndjson(records: List[Dict[str, Any]], line_ending: str = "\n") -> bytes:
    """Encode records the way telemetry channels do: one JSON object per line."""
    return line_ending.join(json.dumps(record) for record in records).encode("utf-8")


@pytest.fixture
def sample_records() -> List[Dict[str, Any]]:
    """Two request telemetry items with dotted tag names."""
    return [
        {
            "name": "Microsoft.ApplicationInsights.Request",
            "time": "2016-08-24T03:37:29.6219639Z",
            "iKey": "00000000-0000-0000-0000-000000000000",
            "tags": {
                "ai.device.roleInstance": "web-01",
                "ai.operation.id": "ll26wbY34hE=",
                "ai.operation.name": "GET Home/Index",
            },
            "data": {
                "baseType": "RequestData",
                "baseData": {
                    "ver": 2,
                    "id": "ll26wbY34hE=",
                    "responseCode": "200",
                    "success": True,
                    "properties": {"http.method": "GET"},
                },
            },
        },
        {
            "name": "Microsoft.ApplicationInsights.Request",
            "time": "2016-08-24T03:37:37.4214402Z",
            "iKey": "00000000-0000-0000-0000-000000000000",
            "tags": {
                "ai.device.roleInstance": "web-01",
                "ai.operation.id": "yF4r33nLmlM=",
                "ai.operation.name": "GET Home/Index",
            },
            "data": {
                "baseType": "RequestData",
                "baseData": {
                    "ver": 2,
                    "id": "yF4r33nLmlM=",
                    "responseCode": "200",
                    "success": True,
                    "properties": {"http.method": "GET"},
                },
            },
        },
    ]


@pytest.fixture
def ndjson_body(sample_records: List[Dict[str, Any]]) -> bytes:
    return to_ndjson(sample_records)


@pytest.fixture
def gzip_body(ndjson_body: bytes) -> bytes:
    return gzip.compress(ndjson_body)


@pytest.fixture
def gzip_headers(gzip_body: bytes) -> Dict[str, List[str]]:
    """Inbound headers of a gzip telemetry transmission."""
    return {
        "Content-Length": [str(len(gzip_body))],
        "Content-Encoding": ["gzip"],
        "Host": ["relay.example.com"],
        "Connection": ["keep-alive"],
        "Content-Type": ["application/x-json-stream"],
        "Accept": ["application/json"],
        "X-Request-Id": ["abc123"],
    }


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def transport_factory() -> Callable[..., RecordingTransport]:
    return RecordingTransport


@pytest.fixture
def sink_factory() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture
def failing_sink_factory() -> Callable[..., FailingSink]:
    return FailingSink


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing at fake endpoints; the bulk sink stays disabled."""
    return Settings(
        log_level="DEBUG",
        relay=RelaySettings(destination_uri=DESTINATION_URI, path="/v2/track"),
        bulk_index=BulkIndexSettings(enabled=False),
    )


@pytest.fixture
def app_factory(test_settings: Settings) -> Callable[..., TestClient]:
    """Build a TestClient around an app with injected transport and sinks."""

    def _build(
        transport: Optional[RecordingTransport] = None,
        sinks: Optional[List[TelemetrySink]] = None,
        settings: Optional[Settings] = None,
    ) -> TestClient:
        app = create_app(
            settings=settings or test_settings,
            transport=transport or RecordingTransport(),  # type: ignore[arg-type]
            sinks=sinks or [],
        )
        return TestClient(app)

    return _build


@pytest.fixture
def test_client(app_factory: Callable[..., TestClient], transport: RecordingTransport) -> Generator[TestClient, None, None]:
    """FastAPI test client relaying to the recording transport, no sinks."""
    with app_factory(transport=transport) as client:
        yield client
