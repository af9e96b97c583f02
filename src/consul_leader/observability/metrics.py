"""Prometheus metrics for leadership polling.

Provides:
- Poll outcome counts per service
- Session create attempts and renewals, split by success
- Current leadership status as a gauge

Usage:
    from consul_leader.observability.metrics import LeadershipMetrics

    metrics = LeadershipMetrics()
    poller = LeadershipPoller(sessions, metrics=metrics)
    ...
    print(metrics.render().decode())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

if TYPE_CHECKING:
    from consul_leader.distributed.leader import PollOutcome


class LeadershipMetrics:
    """Registry of leadership metrics.

    Each instance owns its own ``CollectorRegistry`` unless one is passed in,
    so several pollers (or tests) never collide on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.polls_total = Counter(
            "consul_leader_polls_total",
            "Leadership polls by outcome",
            ["service", "outcome"],
            registry=self.registry,
        )
        self.session_create_attempts_total = Counter(
            "consul_leader_session_create_attempts_total",
            "Session create attempts",
            ["service", "result"],
            registry=self.registry,
        )
        self.session_renewals_total = Counter(
            "consul_leader_session_renewals_total",
            "Session renewals",
            ["service", "result"],
            registry=self.registry,
        )
        self.is_leader = Gauge(
            "consul_leader_is_leader",
            "1 while this instance leads the service",
            ["service"],
            registry=self.registry,
        )

    def record_poll(self, service: str, outcome: PollOutcome) -> None:
        self.polls_total.labels(service=service, outcome=outcome.value).inc()

    def record_session_attempt(self, service: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.session_create_attempts_total.labels(service=service, result=result).inc()

    def record_renewal(self, service: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.session_renewals_total.labels(service=service, result=result).inc()

    def set_leader(self, service: str, leading: bool) -> None:
        self.is_leader.labels(service=service).set(1 if leading else 0)

    def render(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)
