"""
Batch codec for telemetry payloads.

Telemetry channels send a line-delimited JSON stream, optionally gzip
encoded. The codec turns one request body into an ordered, immutable
TelemetryBatch.
"""

import gzip
import json
import zlib
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

import structlog

from .exceptions import DecodeError

logger = structlog.get_logger(__name__)

GZIP_TOKEN = "gzip"


@dataclass(frozen=True)
class TelemetryBatch:
    """Ordered records decoded from a single request body."""

    records: Tuple[Dict[str, Any], ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.records)

    def __bool__(self) -> bool:
        return bool(self.records)


def is_gzip_encoded(content_encodings: Optional[Iterable[str]]) -> bool:
    """True when any Content-Encoding value lists the ``gzip`` token."""
    if not content_encodings:
        return False

    for value in content_encodings:
        for token in value.split(","):
            if token.strip().lower() == GZIP_TOKEN:
                return True
    return False


def decompress(raw: bytes) -> bytes:
    """Gzip-decompress the whole payload."""
    try:
        return gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(
            "Failed to decompress gzip payload",
            details={"error": str(e), "compressed_bytes": len(raw)},
        ) from e


def parse_ndjson(payload: bytes) -> TelemetryBatch:
    """
    Parse a line-delimited JSON stream into a batch.

    Non-blank lines are joined with ``,`` and wrapped in ``[ ]`` so the
    stream is parsed as one JSON array. Any malformed line rejects the
    whole batch.
    """
    try:
        text = payload.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodeError("Telemetry payload is not valid UTF-8", details={"error": str(e)}) from e

    # only \n and \r\n delimit records; str.splitlines() would also split on U+2028
    lines = [line for line in text.replace("\r\n", "\n").split("\n") if line.strip()]
    if not lines:
        return TelemetryBatch()

    # RecursionError: nesting deeper than the parser stack
    try:
        parsed = json.loads("[" + ",".join(lines) + "]")
    except (ValueError, RecursionError) as e:
        raise DecodeError(
            "Malformed JSON in telemetry payload",
            details={"error": str(e), "lines": len(lines)},
        ) from e

    if len(parsed) != len(lines):
        raise DecodeError(
            "Each telemetry line must hold exactly one JSON object",
            details={"lines": len(lines), "values": len(parsed)},
        )

    for index, record in enumerate(parsed):
        if not isinstance(record, dict):
            raise DecodeError(
                "Telemetry record is not a JSON object",
                details={"line": index + 1, "type": type(record).__name__},
            )

    return TelemetryBatch(records=tuple(parsed))


def decode(raw: bytes, content_encodings: Optional[Iterable[str]] = None) -> TelemetryBatch:
    """
    Decode a raw request body into a TelemetryBatch.

    Args:
        raw: Request body exactly as received
        content_encodings: Values of the request's Content-Encoding header

    Raises:
        DecodeError: on a bad gzip stream or malformed JSON
    """
    payload = decompress(raw) if is_gzip_encoded(content_encodings) else raw
    batch = parse_ndjson(payload)

    logger.debug(
        "Telemetry payload decoded",
        raw_bytes=len(raw),
        decoded_bytes=len(payload),
        records=len(batch),
    )
    return batch
