"""Services package for PMaaS."""

from .health import run_health_checks, HealthResponse, ComponentHealth
from .session_cleanup import run_session_cleanup

__all__ = [
    "run_health_checks",
    "HealthResponse",
    "ComponentHealth",
    "run_session_cleanup",
]
