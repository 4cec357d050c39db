"""
Base sink contract for secondary telemetry destinations.
"""

from abc import ABC, abstractmethod

from multidict import CIMultiDictProxy

from ..core.codec import TelemetryBatch


class TelemetrySink(ABC):
    """
    A secondary, best-effort destination that receives a copy of each batch.

    Sinks run concurrently against the same batch and headers and must not
    mutate either. A sink signals failure by raising; the relay isolates
    the failure from sibling sinks and from the caller's response.
    """

    name: str = "sink"

    @abstractmethod
    async def replicate(self, batch: TelemetryBatch, headers: "CIMultiDictProxy[str]") -> None:
        """Send the batch to this sink's own destination."""

    async def start(self) -> None:
        """Acquire resources (connection pools etc.). Override if needed."""

    async def stop(self) -> None:
        """Release resources. Override if needed."""

    @property
    def is_ready(self) -> bool:
        return True


__all__ = ["TelemetrySink"]
