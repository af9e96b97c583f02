"""Leadership polling against the coordination service.

One ``LeadershipPoller`` drives one process towards leadership of one
service. It has no timer of its own: a scheduler calls ``poll()`` once per
interval, and each call

1. creates a session if none is held (and reports NOT_LEADING for that tick),
2. otherwise renews the session, re-creating it if the service dropped it,
3. checks whether the held session already owns the leader key,
4. and if not, tries to acquire the key under the held session.

The poll result is tri-state. INDETERMINATE means the poll itself went
wrong (the service could not be reached or answered with an error), which
is not the same as another instance holding the key.

Example:
    async with LeadershipPoller(session_manager) as poller:
        while running:
            outcome = await poller.poll()
            if outcome is PollOutcome.LEADING:
                await do_leader_work()
            await asyncio.sleep(5)
"""

from __future__ import annotations

import logging
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, cast

from consul_leader.distributed.client import CoordinationClient, FailureKind
from consul_leader.distributed.session import NoSession, SessionManager, SessionState
from consul_leader.observability.logging import LogContext

if TYPE_CHECKING:
    from consul_leader.observability.metrics import LeadershipMetrics


class PollOutcome(str, Enum):
    """Result of a single leadership poll."""

    LEADING = "leading"
    NOT_LEADING = "not_leading"
    INDETERMINATE = "indeterminate"


class LeadershipPoller:
    """Per-tick leadership state machine for a single service.

    Ticks must be serialized: ``poll()`` is not safe to run concurrently on
    the same instance.

    Args:
        sessions: Session manager owning this poller's session
        client: Coordination client for leader-key calls (defaults to the
            session manager's client)
        logger: Logger to report through (defaults to the module logger)
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        sessions: SessionManager,
        client: CoordinationClient | None = None,
        logger: logging.Logger | None = None,
        metrics: LeadershipMetrics | None = None,
    ) -> None:
        self._sessions = sessions
        self._client = client or sessions.client
        self._log = logger or logging.getLogger(__name__)
        self._metrics = metrics

    @property
    def service_name(self) -> str:
        return self._sessions.service_name

    @property
    def state(self) -> SessionState:
        return self._sessions.state

    @property
    def session_id(self) -> str | None:
        return self._sessions.session_id

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def init_session(self, service_name: str | None = None) -> str | None:
        """Create a session unless one is already held; returns the held id."""
        return await self._sessions.establish(service_name or self.service_name)

    async def is_current_leader(self, service_name: str, session_id: str | None) -> bool:
        """Whether ``session_id`` is the session holding the leader key.

        Any failure to read the key counts as not leading.
        """
        if session_id is None:
            return False
        try:
            holder = await self._client.get_leader_holder(service_name)
        except Exception as e:
            self._log.warning(f"Failed to read leader of '{service_name}': {e}")
            return False

        if not holder.ok:
            self._log.debug(
                f"Unable to read leader of '{service_name}', "
                f"continuing as not the leader: {holder.failure}"
            )
            return False

        current = holder.unwrap()
        self._log.debug(
            f"Current leader of '{service_name}': session={current} mine={session_id}"
        )
        return current is not None and current == session_id

    async def poll(self, service_name: str | None = None) -> PollOutcome:
        """Run one tick of the leadership cycle."""
        service_name = service_name or self.service_name
        with LogContext(service_name=service_name):
            try:
                outcome = await self._poll(service_name)
            except Exception as e:
                self._log.warning(
                    f"Failed to poll leadership for '{service_name}' "
                    f"(session={self.session_id}): {e}"
                )
                outcome = PollOutcome.INDETERMINATE

        if self._metrics:
            self._metrics.record_poll(service_name, outcome)
        return outcome

    async def _poll(self, service_name: str) -> PollOutcome:
        if isinstance(self.state, NoSession):
            # Acquisition waits for the next tick.
            await self.init_session(service_name)
            return PollOutcome.NOT_LEADING

        if not await self._sessions.renew_session(cast(str, self.session_id), service_name):
            return PollOutcome.NOT_LEADING

        # Renewal may have replaced the session.
        session_id = cast(str, self.session_id)
        with LogContext(session_id=session_id):
            if await self.is_current_leader(service_name, session_id):
                self._log.debug(f"Session {session_id} already leads '{service_name}'")
                return PollOutcome.LEADING

            self._log.debug(f"Session {session_id} is trying to acquire '{service_name}'")
            acquired = await self._client.acquire_leader(service_name, session_id)
            if not acquired.ok and acquired.failure is not None:
                if acquired.failure.kind is FailureKind.DECODE:
                    self._log.warning(
                        f"Unreadable acquire response for '{service_name}': {acquired.failure}"
                    )
                    return PollOutcome.NOT_LEADING
                acquired.unwrap()

            if acquired.unwrap():
                self._log.info(f"Leadership acquired: session={session_id} service={service_name}")
                return PollOutcome.LEADING
            return PollOutcome.NOT_LEADING

    async def close(self) -> None:
        """Release leadership and destroy the held session."""
        await self._sessions.close()

    async def __aenter__(self) -> LeadershipPoller:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
