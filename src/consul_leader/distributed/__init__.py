"""Leader election against a Consul-like session/lock service.

Provides:
- A coordination client for sessions and leader keys
- Session lifecycle with retrying creation and self-healing renewal
- A per-tick leadership poller
- A periodic election driver for long-running processes

Example:
    from consul_leader.distributed import create_election

    election = create_election(settings, service_name="orders")
    await election.start()
    ...
    await election.stop()
"""

from consul_leader.distributed.client import (
    ConsulClient,
    CoordinationClient,
    CoordinationError,
    Failure,
    FailureKind,
    Result,
    SessionRequest,
)
from consul_leader.distributed.election import (
    LeaderElection,
    create_election,
    leader_only,
)
from consul_leader.distributed.leader import LeadershipPoller, PollOutcome
from consul_leader.distributed.retry import RetryPolicy, backoff_delay
from consul_leader.distributed.session import (
    NO_SESSION,
    HasSession,
    NoSession,
    SessionCreation,
    SessionManager,
    SessionState,
)

__all__ = [
    # Client
    "ConsulClient",
    "CoordinationClient",
    "CoordinationError",
    "Failure",
    "FailureKind",
    "Result",
    "SessionRequest",
    # Sessions
    "NO_SESSION",
    "HasSession",
    "NoSession",
    "RetryPolicy",
    "SessionCreation",
    "SessionManager",
    "SessionState",
    "backoff_delay",
    # Leadership
    "LeaderElection",
    "LeadershipPoller",
    "PollOutcome",
    "create_election",
    "leader_only",
]
