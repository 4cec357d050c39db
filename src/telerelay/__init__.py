"""
TeleRelay - Telemetry replication relay

A FastAPI-based relay that forwards telemetry batches to their canonical
collector unchanged and replicates them to secondary sinks such as a
bulk-indexing search backend.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
