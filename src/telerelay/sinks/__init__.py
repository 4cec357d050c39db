"""
Secondary telemetry sinks.

Every sink implements ``TelemetrySink``; the relay fans each decoded batch
out to all registered sinks concurrently.
"""

from .base import TelemetrySink
from .bulk_index import BulkIndexSink, StaticIndexSelector, sanitize_keys

__all__ = ["BulkIndexSink", "StaticIndexSelector", "TelemetrySink", "sanitize_keys"]
