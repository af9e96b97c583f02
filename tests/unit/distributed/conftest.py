"""Fixtures for leadership engine tests."""

from __future__ import annotations

import pytest

from consul_leader.distributed.client import FailureKind, Result, SessionRequest
from consul_leader.distributed.leader import LeadershipPoller
from consul_leader.distributed.session import SessionManager


class FakeCoordinationClient:
    """Scriptable in-memory coordination client that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.requests: list[SessionRequest] = []
        self.create_results: list[Result[str]] = []
        self.renew_result: Result[None] = Result.success(None)
        self.destroy_result: Result[None] = Result.success(None)
        self.holder_result: Result[str | None] = Result.success(None)
        self.acquire_result: Result[bool] = Result.success(True)
        self.release_result: Result[bool] = Result.success(True)

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def create_session(self, request: SessionRequest) -> Result[str]:
        self.calls.append(("create", request.name))
        self.requests.append(request)
        if self.create_results:
            return self.create_results.pop(0)
        return Result.fail(FailureKind.TRANSPORT, "connection refused")

    async def renew_session(self, session_id: str) -> Result[None]:
        self.calls.append(("renew", session_id))
        return self.renew_result

    async def destroy_session(self, session_id: str) -> Result[None]:
        self.calls.append(("destroy", session_id))
        return self.destroy_result

    async def get_leader_holder(self, service_name: str) -> Result[str | None]:
        self.calls.append(("holder", service_name))
        return self.holder_result

    async def acquire_leader(self, service_name: str, session_id: str) -> Result[bool]:
        self.calls.append(("acquire", service_name, session_id))
        return self.acquire_result

    async def release_leader(self, service_name: str, session_id: str) -> Result[bool]:
        self.calls.append(("release", service_name, session_id))
        return self.release_result


@pytest.fixture
def client() -> FakeCoordinationClient:
    """Create a fake coordination client."""
    return FakeCoordinationClient()


@pytest.fixture
def sessions(client: FakeCoordinationClient) -> SessionManager:
    """Create a session manager with instant retries."""
    return SessionManager(
        client=client,
        service_name="orders",
        ttl=15,
        lock_delay=5,
        create_session_tries=3,
        retry_period=0,
        backoff_multiplier=1.5,
    )


@pytest.fixture
def poller(sessions: SessionManager) -> LeadershipPoller:
    """Create a poller for the "orders" service."""
    return LeadershipPoller(sessions)
