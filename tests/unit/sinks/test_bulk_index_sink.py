"""
Tests for the bulk-index sink.

Tests key sanitization, envelope building and the single bulk POST per batch.
"""

import asyncio
import json
import threading
from typing import Any, Callable, Dict, List

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from telerelay.core.codec import TelemetryBatch
from telerelay.core.exceptions import ConfigurationError, SinkError, TransportError
from telerelay.core.transport import RelayResponse
from telerelay.models.index_definition import IndexDefinition
from telerelay.sinks.bulk_index import (
    NDJSON_CONTENT_TYPE,
    BulkIndexSink,
    StaticIndexSelector,
    sanitize_keys,
)

BULK_ENDPOINT = "http://search.example.com:9200/_bulk"


def no_headers() -> "CIMultiDictProxy[str]":
    return CIMultiDictProxy(CIMultiDict())


def ai_selector(record: Dict[str, Any]) -> Dict[str, str]:
    return {"index": "ai", "type": "telemetry"}


class TestSanitizeKeys:
    """Test dotted key replacement."""

    def test_nested_objects(self):
        assert sanitize_keys({"a.b": 1, "c": {"d.e": 2}}) == {"a_b": 1, "c": {"d_e": 2}}

    def test_objects_inside_arrays(self):
        value = {"items": [{"x.y": 1}, 2, [{"p.q": "r.s"}]]}

        assert sanitize_keys(value) == {"items": [{"x_y": 1}, 2, [{"p_q": "r.s"}]]}

    def test_values_are_untouched(self):
        assert sanitize_keys({"name": "ai.operation.id"}) == {"name": "ai.operation.id"}

    def test_input_is_not_mutated(self):
        record = {"a.b": {"c.d": 1}}

        sanitize_keys(record)

        assert record == {"a.b": {"c.d": 1}}

    def test_collision_keeps_later_key(self):
        assert sanitize_keys({"a.b": 1, "a_b": 2}) == {"a_b": 2}

    def test_leaves_pass_through(self):
        assert sanitize_keys(None) is None
        assert sanitize_keys(3.5) == 3.5


class TestIndexDefinition:
    """Test the bulk action envelope."""

    def test_action_without_id(self):
        definition = IndexDefinition(index="ai", type="telemetry")

        assert definition.to_action() == {"index": {"_index": "ai", "_type": "telemetry"}}

    def test_action_with_id(self):
        definition = IndexDefinition.model_validate({"_index": "ai", "_type": "telemetry", "_id": "42"})

        assert definition.to_action() == {"index": {"_index": "ai", "_type": "telemetry", "_id": "42"}}

    def test_static_selector_id_field(self):
        selector = StaticIndexSelector("ai", "telemetry", id_field="id")

        assert selector({"id": 7}).id == "7"
        assert selector({"other": 1}).id is None


class TestBulkBody:
    """Test the NDJSON bulk body."""

    def test_dotted_record(self, transport):
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)
        batch = TelemetryBatch(records=({"a.b": 1, "c": {"d.e": 2}},))

        lines = sink.build_body(batch).decode("utf-8").split("\n")

        assert lines[0] == '{"index":{"_index":"ai","_type":"telemetry"}}'
        assert lines[1] == '{"a_b":1,"c":{"d_e":2}}'
        assert lines[2] == ""

    def test_two_lines_per_record_in_order(self, transport, sample_records: List[Dict[str, Any]]):
        sink = BulkIndexSink(BULK_ENDPOINT, StaticIndexSelector("ai", "telemetry"), transport=transport)

        body = sink.build_body(TelemetryBatch(records=tuple(sample_records)))
        lines = body.decode("utf-8").splitlines()

        assert body.endswith(b"\n")
        assert len(lines) == 2 * len(sample_records)
        documents = [json.loads(line) for line in lines[1::2]]
        assert documents[0]["tags"]["ai_operation_id"] == "ll26wbY34hE="
        assert documents[1]["tags"]["ai_operation_id"] == "yF4r33nLmlM="
        assert all("." not in key for doc in documents for key in doc["tags"])

    def test_invalid_selector_result(self, transport):
        sink = BulkIndexSink(BULK_ENDPOINT, lambda record: {"index": ""}, transport=transport)

        with pytest.raises(SinkError):
            sink.build_body(TelemetryBatch(records=({"a": 1},)))


class TestConstruction:
    """Test configuration errors surface at construction."""

    def test_missing_endpoint(self, transport):
        with pytest.raises(ConfigurationError):
            BulkIndexSink(None, ai_selector, transport=transport)

    def test_relative_endpoint(self, transport):
        with pytest.raises(ConfigurationError):
            BulkIndexSink("/_bulk", ai_selector, transport=transport)

    def test_missing_selector(self, transport):
        with pytest.raises(ConfigurationError):
            BulkIndexSink(BULK_ENDPOINT, None, transport=transport)


class TestReplicate:
    """Test the bulk POST."""

    @pytest.mark.asyncio
    async def test_single_post_per_batch(self, transport, sample_records: List[Dict[str, Any]]):
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)
        batch = TelemetryBatch(records=tuple(sample_records))

        await sink.replicate(batch, no_headers())

        assert len(transport.requests) == 1
        sent = transport.requests[0]
        assert sent.url == BULK_ENDPOINT
        assert sent.method == "POST"
        assert sent.content_headers["Content-Type"] == NDJSON_CONTENT_TYPE
        assert sent.body == sink.build_body(batch)

    @pytest.mark.asyncio
    async def test_body_is_built_off_the_event_loop(self, transport, sample_records: List[Dict[str, Any]]):
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)
        released = threading.Event()

        def blocking_build_body(batch: TelemetryBatch) -> bytes:
            # the event is only set if the loop kept running meanwhile
            return b"released" if released.wait(timeout=2) else b"blocked"

        async def release_soon():
            await asyncio.sleep(0.01)
            released.set()

        sink.build_body = blocking_build_body  # type: ignore[method-assign]

        await asyncio.gather(
            sink.replicate(TelemetryBatch(records=tuple(sample_records)), no_headers()),
            release_soon(),
        )

        assert transport.requests[0].body == b"released"

    @pytest.mark.asyncio
    async def test_empty_batch_sends_nothing(self, transport):
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)

        await sink.replicate(TelemetryBatch(), no_headers())

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_non_2xx_raises_sink_error(self, transport_factory: Callable, sample_records: List[Dict[str, Any]]):
        transport = transport_factory(response=RelayResponse(status=500, body=b"shard failure"))
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport, name="search")

        with pytest.raises(SinkError) as exc_info:
            await sink.replicate(TelemetryBatch(records=tuple(sample_records)), no_headers())

        assert exc_info.value.sink == "search"
        assert exc_info.value.details["status_code"] == 500
        assert exc_info.value.details["response_body"] == "shard failure"

    @pytest.mark.asyncio
    async def test_transport_failure_raises_sink_error(self, transport_factory: Callable, sample_records: List[Dict[str, Any]]):
        transport = transport_factory(error=TransportError("connection refused"))
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)

        with pytest.raises(SinkError):
            await sink.replicate(TelemetryBatch(records=tuple(sample_records)), no_headers())

    @pytest.mark.asyncio
    async def test_readiness_follows_transport(self, transport):
        sink = BulkIndexSink(BULK_ENDPOINT, ai_selector, transport=transport)

        assert not sink.is_ready
        await sink.start()
        assert sink.is_ready
        await sink.stop()
        assert not sink.is_ready
