"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- POST {relay.path} - Telemetry relay endpoint
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .relay import create_relay_router

__all__ = ["create_relay_router", "healthz_router", "metrics_router"]
