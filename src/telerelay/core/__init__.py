"""
Core relay components.

This package contains the relay engine and its collaborators:
- Batch codec (gzip + NDJSON decoding)
- Header policy
- Relay engine and service lifecycle
- Outbound HTTP transport
- Metrics collection and health checks
"""
