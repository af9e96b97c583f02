"""Session lifecycle for the leadership engine.

A poller owns at most one coordination session at a time. The
``SessionManager`` creates it (retrying with backoff), renews it on every
tick (re-creating it when the service no longer knows it), and destroys it
on shutdown. The held session is an explicit tagged value:

- ``NoSession``: nothing held, the next tick tries to create one
- ``HasSession(session_id)``: a live session that is renewed each tick

Session creation runs as an asyncio task behind a ``SessionCreation``
handle, so backoff waits never block the event loop:

    handle = manager.begin_create("orders", ttl=15, lock_delay=0,
                                  max_tries=5, base_period=2, backoff_multiplier=1.5)
    print(handle.attempts, handle.max_tries)
    handle.interrupt_wait()   # skip the current backoff, retry now
    session_id = await handle.result()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from consul_leader.distributed.client import CoordinationClient, SessionRequest
from consul_leader.distributed.retry import RetryPolicy

if TYPE_CHECKING:
    from consul_leader.observability.metrics import LeadershipMetrics


@dataclass(frozen=True)
class NoSession:
    """No session is held."""

    @property
    def session_id(self) -> None:
        return None


@dataclass(frozen=True)
class HasSession:
    """A session issued by the coordination service is held."""

    session_id: str


SessionState = Union[NoSession, HasSession]

NO_SESSION = NoSession()


class SessionCreation:
    """Handle on an in-flight session creation.

    The retry loop runs as a task on the current event loop. Progress is
    visible through ``attempts``; ``interrupt_wait()`` ends the current
    backoff wait early (the loop moves on to its next attempt, or gives up
    when none are left) and ``cancel()`` abandons the whole creation.
    """

    def __init__(
        self,
        client: CoordinationClient,
        request: SessionRequest,
        policy: RetryPolicy,
        log: logging.Logger,
        metrics: LeadershipMetrics | None = None,
    ) -> None:
        self.request = request
        self.policy = policy
        self.attempts = 0
        self._client = client
        self._log = log
        self._metrics = metrics
        self._waiting = False
        self._cancelled = False
        self._wake = asyncio.Event()
        self._task: asyncio.Task[str | None] = asyncio.create_task(self._run())

    @property
    def max_tries(self) -> int:
        return self.policy.max_tries

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def waiting(self) -> bool:
        """True while the loop is sleeping between attempts."""
        return self._waiting

    def interrupt_wait(self) -> None:
        self._wake.set()

    def cancel(self) -> None:
        self._cancelled = True
        self._task.cancel()

    async def result(self) -> str | None:
        """Wait for the outcome: the new session id, or None if none was obtained."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancelled:
                return None
            raise

    async def _run(self) -> str | None:
        name = self.request.name
        for attempt in range(self.max_tries):
            self.attempts = attempt + 1
            self._log.debug(
                f"Creating session for '{name}' "
                f"(TTL={self.request.ttl}s, LockDelay={self.request.lock_delay}s)"
            )
            created = await self._client.create_session(self.request)
            if self._metrics:
                self._metrics.record_session_attempt(name, created.ok)

            if created.ok:
                session_id = created.unwrap()
                self._log.info(f"Created session {session_id} for '{name}'")
                return session_id

            self._log.warning(
                f"Failed to create session for '{name}' "
                f"(attempt {self.attempts}/{self.max_tries}): {created.failure}"
            )
            if self.attempts < self.max_tries:
                await self._backoff(self.policy.delay(attempt))

        self._log.error(
            f"Failed to create session for '{name}' after {self.max_tries} attempts, "
            "continuing without leadership"
        )
        return None

    async def _backoff(self, delay: float) -> None:
        self._wake.clear()
        self._waiting = True
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
            self._log.warning(f"Backoff for '{self.request.name}' interrupted")
        except asyncio.TimeoutError:
            pass
        finally:
            self._waiting = False


class SessionManager:
    """Owns the single coordination session of a poller.

    Args:
        client: Coordination service client
        service_name: Service the session is created for
        ttl: Session TTL in seconds (raised to at least 10)
        lock_delay: Lock delay in seconds (raised to at least 0)
        create_session_tries: Attempts per session creation
        retry_period: Base retry period in seconds
        backoff_multiplier: Backoff growth factor
        logger: Logger to report through (defaults to the module logger)
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        client: CoordinationClient,
        service_name: str,
        ttl: int,
        lock_delay: int,
        create_session_tries: int,
        retry_period: float,
        backoff_multiplier: float,
        logger: logging.Logger | None = None,
        metrics: LeadershipMetrics | None = None,
    ) -> None:
        self.client = client
        self.service_name = service_name
        self.ttl = ttl
        self.lock_delay = lock_delay
        self.retry_policy = RetryPolicy(
            max_tries=create_session_tries,
            base_period=retry_period,
            backoff_multiplier=backoff_multiplier,
        )
        self._log = logger or logging.getLogger(__name__)
        self._metrics = metrics
        self._state: SessionState = NO_SESSION
        self._pending: SessionCreation | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._state.session_id

    @property
    def pending_creation(self) -> SessionCreation | None:
        """Handle of the session creation currently in flight, if any."""
        return self._pending

    def begin_create(
        self,
        service_name: str,
        ttl: int,
        lock_delay: int,
        max_tries: int,
        base_period: float,
        backoff_multiplier: float,
    ) -> SessionCreation:
        """Start creating a session without waiting for it.

        Must be called from a running event loop.
        """
        return SessionCreation(
            client=self.client,
            request=SessionRequest.build(service_name, ttl, lock_delay),
            policy=RetryPolicy(max_tries, base_period, backoff_multiplier),
            log=self._log,
            metrics=self._metrics,
        )

    async def create_session(
        self,
        service_name: str,
        ttl: int,
        lock_delay: int,
        max_tries: int,
        base_period: float,
        backoff_multiplier: float,
    ) -> str | None:
        """Create a session, retrying up to ``max_tries`` times.

        Returns the first session id the service hands out, or None when
        every attempt failed. The held session is not changed.
        """
        handle = self.begin_create(
            service_name, ttl, lock_delay, max_tries, base_period, backoff_multiplier
        )
        return await handle.result()

    async def _create_configured(self, service_name: str) -> str | None:
        self._pending = self.begin_create(
            service_name,
            self.ttl,
            self.lock_delay,
            self.retry_policy.max_tries,
            self.retry_policy.base_period,
            self.retry_policy.backoff_multiplier,
        )
        try:
            return await self._pending.result()
        finally:
            self._pending = None

    async def establish(self, service_name: str | None = None) -> str | None:
        """Create a session from the configured parameters unless one is held."""
        if isinstance(self._state, HasSession):
            return self._state.session_id

        session_id = await self._create_configured(service_name or self.service_name)
        if session_id is not None:
            self._state = HasSession(session_id)
        return session_id

    async def renew_session(self, session_id: str, service_name: str) -> bool:
        """Renew ``session_id``, replacing it with a new session if renewal fails.

        Returns True when the service renewed the session or a replacement
        was created; the replacement then becomes the held session.
        """
        renewed = await self.client.renew_session(session_id)
        if self._metrics:
            self._metrics.record_renewal(service_name, renewed.ok)
        if renewed.ok:
            self._log.debug(f"Session {session_id} renewed for '{service_name}'")
            return True

        self._log.info(
            f"Session {session_id} was not renewed ({renewed.failure}), "
            f"re-establishing session for '{service_name}'"
        )
        await self.destroy_session(session_id, service_name)
        self._state = NO_SESSION

        new_session_id = await self._create_configured(service_name)
        if new_session_id is None:
            return False
        self._state = HasSession(new_session_id)
        return True

    async def destroy_session(self, session_id: str | None, service_name: str) -> None:
        """Release the leader key held by ``session_id`` and destroy the session.

        Does nothing for None. Failures are logged, never raised: this runs
        on shutdown and after sessions have already expired server-side.
        """
        if session_id is None:
            return
        if self._state.session_id == session_id:
            self._state = NO_SESSION

        try:
            self._log.info(f"Releasing leader key of '{service_name}' for session {session_id}")
            released = await self.client.release_leader(service_name, session_id)
            if released.ok:
                self._log.debug(f"Release by session {session_id}: {released.value}")
            else:
                self._log.debug(f"Release by session {session_id} failed: {released.failure}")
        except Exception as e:
            self._log.warning(f"Failed to release leader key for session {session_id}: {e}")

        try:
            self._log.info(f"Destroying session {session_id}")
            destroyed = await self.client.destroy_session(session_id)
            if not destroyed.ok:
                self._log.warning(f"Failed to destroy session {session_id}: {destroyed.failure}")
        except Exception as e:
            self._log.warning(
                f"Failed to destroy session {session_id} for '{service_name}': {e}"
            )

    async def close(self) -> None:
        """Abandon any in-flight creation and destroy the held session."""
        if self._pending is not None:
            self._pending.cancel()
        await self.destroy_session(self.session_id, self.service_name)
