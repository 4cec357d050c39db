"""
Outbound HTTP transport.

Wraps one long-lived aiohttp ClientSession so connections are pooled and
shared across relayed requests instead of being opened per request.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

import aiohttp
import structlog
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL

from .exceptions import ConfigurationError, TransportError

logger = structlog.get_logger(__name__)


def require_absolute_uri(value: Optional[str], setting: str) -> str:
    """
    Validate a configured endpoint.

    Raises:
        ConfigurationError: if missing, not absolute, or not http(s)
    """
    if not value:
        raise ConfigurationError(f"{setting} is required.", details={"setting": setting})

    try:
        url = URL(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"{setting} is not a valid uri.",
            details={"setting": setting, "value": value, "error": str(e)},
        ) from e

    if not url.is_absolute() or url.scheme not in ("http", "https"):
        raise ConfigurationError(
            f"{setting} must be an absolute http(s) uri.",
            details={"setting": setting, "value": value},
        )
    return value


def _empty_headers() -> "CIMultiDictProxy[str]":
    return CIMultiDictProxy(CIMultiDict())


@dataclass(frozen=True)
class OutboundRequest:
    """A POST about to leave the relay."""
    url: str
    body: bytes
    headers: "CIMultiDictProxy[str]" = field(default_factory=_empty_headers)
    content_headers: "CIMultiDictProxy[str]" = field(default_factory=_empty_headers)
    method: str = "POST"


@dataclass(frozen=True)
class RelayResponse:
    """Status, headers and body of an upstream response."""
    status: int
    headers: "CIMultiDictProxy[str]" = field(default_factory=_empty_headers)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport:
    """
    Pooled aiohttp transport.

    Content headers travel on the body payload; Content-Length is always
    recomputed by aiohttp from the body.
    """

    def __init__(
        self,
        name: str,
        timeout_seconds: float = 30.0,
        auto_decompress: bool = True,
    ) -> None:
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.auto_decompress = auto_decompress
        self.session: Optional[aiohttp.ClientSession] = None

        logger.info("HTTP transport initialized", transport=name, timeout_seconds=timeout_seconds)

    @property
    def is_open(self) -> bool:
        return self.session is not None and not self.session.closed

    async def start(self) -> None:
        """Open the pooled client session."""
        if self.is_open:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            auto_decompress=self.auto_decompress,
        )
        logger.info("HTTP transport started", transport=self.name)

    async def stop(self) -> None:
        """Close the client session."""
        if self.session:
            await self.session.close()
            self.session = None

        logger.info("HTTP transport stopped", transport=self.name)

    async def send(self, request: OutboundRequest) -> RelayResponse:
        """
        Send a request and read the full response.

        Raises:
            TransportError: on connection errors, timeouts, or if not started
        """
        if not self.is_open:
            raise TransportError("Transport not started", details={"transport": self.name})

        payload_headers: "CIMultiDict[str]" = CIMultiDict(
            (name, value)
            for name, value in request.content_headers.items()
            if name.lower() != "content-length"
        )
        payload = aiohttp.BytesPayload(request.body, headers=payload_headers)
        start_time = time.perf_counter()

        try:
            async with self.session.request(  # type: ignore[union-attr]
                request.method,
                request.url,
                data=payload,
                headers=CIMultiDict(request.headers),
            ) as response:
                body = await response.read()
                result = RelayResponse(
                    status=response.status,
                    headers=CIMultiDictProxy(CIMultiDict(response.headers)),
                    body=body,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "Outbound request failed",
                transport=self.name,
                url=request.url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TransportError(
                f"Request to {request.url} failed: {type(e).__name__}",
                details={"transport": self.name, "url": request.url, "error": str(e)},
            ) from e

        logger.debug(
            "Outbound request completed",
            transport=self.name,
            url=request.url,
            status=result.status,
            request_bytes=len(request.body),
            response_bytes=len(body),
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result
