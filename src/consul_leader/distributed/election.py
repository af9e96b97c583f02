"""Periodic leader election around a ``LeadershipPoller``.

The poller only moves when it is polled. ``LeaderElection`` is the scheduler
that polls it on a fixed interval, turns poll outcomes into a leader/follower
status, and notifies interested code when that status changes:

1. A background task calls ``poll()`` every ``poll_interval`` seconds
2. LEADING elects this instance, NOT_LEADING demotes it
3. INDETERMINATE keeps the current status until several arrive in a row,
   since a flaky connection to the service is not proof of lost leadership
4. ``stop()`` releases the leader key and destroys the session before the
   HTTP client is closed, so a successor does not wait for the TTL to expire

Example:
    election = create_election(settings)
    election.on_elected(start_consumers)
    election.on_demoted(stop_consumers)
    await election.start()

    while running:
        if election.is_leader:
            await do_leader_work()
        await asyncio.sleep(1)

    await election.stop()

    # Or scoped
    async with create_election(settings) as election:
        if await election.wait_for_leadership(timeout=30):
            await run_singleton_job()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from types import TracebackType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ParamSpec, TypeVar

from consul_leader.distributed.client import ConsulClient
from consul_leader.distributed.leader import LeadershipPoller, PollOutcome
from consul_leader.distributed.session import SessionManager

if TYPE_CHECKING:
    import httpx

    from consul_leader.config import Settings
    from consul_leader.observability.metrics import LeadershipMetrics

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_DEMOTE_AFTER_INDETERMINATE = 3

StatusCallback = Callable[[], Any]


class LeaderElection:
    """Continuous leader election for one service.

    Args:
        poller: Poller for the service
        poll_interval: Seconds between polls
        demote_after_indeterminate: Consecutive INDETERMINATE polls after
            which a leader steps down
        client: Client closed by ``stop()`` once the session is destroyed
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        poller: LeadershipPoller,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        demote_after_indeterminate: int = DEFAULT_DEMOTE_AFTER_INDETERMINATE,
        client: ConsulClient | None = None,
        metrics: LeadershipMetrics | None = None,
    ):
        self.poller = poller
        self.poll_interval = poll_interval
        self.demote_after_indeterminate = demote_after_indeterminate

        self._client = client
        self._metrics = metrics
        self._is_leader = False
        self._indeterminate_streak = 0
        self._last_outcome: PollOutcome | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

        # Callbacks
        self._elected_callbacks: list[StatusCallback] = []
        self._demoted_callbacks: list[StatusCallback] = []
        self._on_elected: list[asyncio.Future[bool]] = []

    @property
    def service_name(self) -> str:
        return self.poller.service_name

    @property
    def is_leader(self) -> bool:
        """Check if this instance is currently the leader."""
        return self._is_leader

    @property
    def last_outcome(self) -> PollOutcome | None:
        return self._last_outcome

    @property
    def running(self) -> bool:
        return self._running

    def on_elected(self, callback: StatusCallback) -> None:
        """Register a callback (plain or async) run when leadership is gained."""
        self._elected_callbacks.append(callback)

    def on_demoted(self, callback: StatusCallback) -> None:
        """Register a callback (plain or async) run when leadership is lost."""
        self._demoted_callbacks.append(callback)

    async def start(self) -> None:
        """Start polling in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._election_loop())
        logger.info(f"Started leader election for '{self.service_name}'")

    async def stop(self) -> None:
        """Stop polling, give up leadership and close the client."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # Waiters would otherwise hang on an election that no longer runs
        for future in self._on_elected:
            if not future.done():
                future.set_result(False)
        self._on_elected.clear()

        await self.poller.close()
        if self._is_leader:
            await self._handle_demotion()

        if self._client is not None:
            await self._client.aclose()

        logger.info(f"Stopped leader election for '{self.service_name}'")

    async def run_once(self) -> PollOutcome:
        """Poll once and apply the outcome to the leadership status."""
        outcome = await self.poller.poll()
        self._last_outcome = outcome

        if outcome is PollOutcome.LEADING:
            self._indeterminate_streak = 0
            if not self._is_leader:
                await self._handle_election()
        elif outcome is PollOutcome.NOT_LEADING:
            self._indeterminate_streak = 0
            if self._is_leader:
                await self._handle_demotion()
        else:
            self._indeterminate_streak += 1
            logger.warning(
                f"Leadership of '{self.service_name}' is indeterminate "
                f"({self._indeterminate_streak} in a row)"
            )
            if self._is_leader and self._indeterminate_streak >= self.demote_after_indeterminate:
                await self._handle_demotion()

        return outcome

    async def _election_loop(self) -> None:
        """Main election loop."""
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in election loop for '{self.service_name}': {e}")
                await asyncio.sleep(self.poll_interval)

    async def _handle_election(self) -> None:
        """Handle being elected as leader."""
        self._is_leader = True
        logger.info(f"Elected as leader for '{self.service_name}'")
        if self._metrics:
            self._metrics.set_leader(self.service_name, True)

        # Notify waiters
        for future in self._on_elected:
            if not future.done():
                future.set_result(True)
        self._on_elected.clear()

        await self._notify(self._elected_callbacks)

    async def _handle_demotion(self) -> None:
        """Handle losing leadership."""
        self._is_leader = False
        logger.warning(f"Lost leadership for '{self.service_name}'")
        if self._metrics:
            self._metrics.set_leader(self.service_name, False)

        await self._notify(self._demoted_callbacks)

    async def _notify(self, callbacks: list[StatusCallback]) -> None:
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Leadership callback for '{self.service_name}' failed: {e}")

    async def wait_for_leadership(self, timeout: float | None = None) -> bool:
        """Wait until this instance becomes the leader.

        Args:
            timeout: Maximum time to wait in seconds (None = wait forever)

        Returns:
            True if leadership was acquired, False on timeout or when the
            election is stopped first
        """
        if self._is_leader:
            return True

        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._on_elected.append(future)

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            if future in self._on_elected:
                self._on_elected.remove(future)
            return False

    async def __aenter__(self) -> LeaderElection:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()


def create_election(
    settings: Settings,
    service_name: str | None = None,
    metrics: LeadershipMetrics | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LeaderElection:
    """Wire a Consul client, session manager, poller and election from settings."""
    client = ConsulClient.from_settings(settings, transport=transport)
    sessions = SessionManager(
        client=client,
        service_name=service_name or settings.service_name,
        ttl=settings.ttl_seconds,
        lock_delay=settings.lock_delay_seconds,
        create_session_tries=settings.create_session_tries,
        retry_period=settings.retry_period,
        backoff_multiplier=settings.backoff_multiplier,
        metrics=metrics,
    )
    poller = LeadershipPoller(sessions, metrics=metrics)
    return LeaderElection(
        poller,
        poll_interval=settings.poll_interval,
        demote_after_indeterminate=settings.demote_after_indeterminate,
        client=client,
        metrics=metrics,
    )


P = ParamSpec("P")
R = TypeVar("R")


def leader_only(
    election: LeaderElection,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R | None]]]:
    """Decorator that makes a coroutine function run only while leading.

    Args:
        election: Election whose status gates the call

    Example:
        @leader_only(election)
        async def generate_daily_report():
            # Only runs on the leader instance
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R | None]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
            if election.is_leader:
                return await func(*args, **kwargs)
            logger.debug(f"Skipping {func.__name__} - not leader for '{election.service_name}'")
            return None

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator
