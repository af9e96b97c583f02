"""Observability for consul-leader.

Provides structured logging and metrics:
- JSON or console logging with service/session context
- Prometheus metrics for polls, sessions and leadership
"""

from consul_leader.observability.logging import (
    LogContext,
    configure_logging,
    service_name_var,
    session_id_var,
)
from consul_leader.observability.metrics import LeadershipMetrics

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "service_name_var",
    "session_id_var",
    # Metrics
    "LeadershipMetrics",
]
