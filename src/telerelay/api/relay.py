"""
Telemetry relay endpoint.

POST {relay.path}: forwarded to the canonical destination, then replicated
to every registered sink. The caller always gets the destination's
response; sink outcomes are never visible to it.
"""

import time
import uuid

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from ..core.exceptions import DestinationError, RelayException
from ..core.headers import build_header_set
from ..core.relay_service import RelayService
from ..core.transport import RelayResponse
from ..models.responses import ErrorResponse

logger = structlog.get_logger(__name__)

# recomputed by the server for the response it writes
FRAMING_HEADERS = frozenset({"content-length", "transfer-encoding", "connection", "keep-alive"})


def get_relay_service(request: Request) -> RelayService:
    """Dependency to get the relay service from app state."""
    service = getattr(request.app.state, "relay_service", None)
    if service is None:
        raise RelayException(
            "Relay service not initialized",
            status_code=503,
            error_code="service_unavailable",
        )
    return service


def to_http_response(relayed: RelayResponse) -> Response:
    """Write the destination's status, headers and body back verbatim."""
    response = Response(content=relayed.body, status_code=relayed.status)
    for name, value in relayed.headers.items():
        if name.lower() in FRAMING_HEADERS:
            continue
        response.headers.append(name, value)
    return response


async def relay_telemetry(
    request: Request,
    background_tasks: BackgroundTasks,
    service: RelayService = Depends(get_relay_service),
) -> Response:
    """
    Relay one telemetry batch.

    Sink fan-out runs after the response is sent unless ``relay.await_sinks``
    is set; either way it completes within this request's lifetime, so a
    graceful server shutdown waits for it.
    """
    request_id = str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start_time = time.perf_counter()

    headers = build_header_set(request.headers.items())

    try:
        relayed, replication = await service.engine.dispatch(request.stream(), headers)
    except DestinationError as e:
        if e.response is None:
            raise
        logger.info(
            "Relaying destination rejection to caller",
            status=e.response.status,
        )
        return to_http_response(e.response)

    if replication is not None:
        if service.await_sinks:
            await replication()
        else:
            background_tasks.add_task(replication)

    logger.info(
        "Telemetry relayed",
        status=relayed.status,
        replication="awaited" if service.await_sinks else "background",
        processing_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    return to_http_response(relayed)


def create_relay_router(path: str) -> APIRouter:
    """Router serving the relay endpoint on the configured path."""
    router = APIRouter()
    router.add_api_route(
        path,
        relay_telemetry,
        methods=["POST"],
        response_class=Response,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid telemetry request"},
            411: {"model": ErrorResponse, "description": "Content-Length required"},
            413: {"model": ErrorResponse, "description": "Body too large"},
            502: {"model": ErrorResponse, "description": "Canonical destination unreachable"},
        },
        summary="Relay telemetry",
        description="""
    Forward a telemetry batch to the canonical destination and replicate it.

    **Processing:**
    1. Content-Length validation and body read
    2. Forward to the canonical destination (body unchanged)
    3. Decode the NDJSON batch (gzip aware) and fan out to all sinks

    The destination's status, headers and body are returned as-is.
    """,
    )
    return router
