"""Tests for session lifecycle management."""

import asyncio

import pytest

from consul_leader.distributed.client import FailureKind, Result
from consul_leader.distributed.session import (
    NO_SESSION,
    HasSession,
    NoSession,
    SessionCreation,
    SessionManager,
)


class TestSessionState:
    """Tests for the tagged session state."""

    def test_no_session_has_no_id(self) -> None:
        """NoSession reports an absent id, not an empty string."""
        assert NO_SESSION.session_id is None
        assert isinstance(NO_SESSION, NoSession)

    def test_has_session_carries_id(self) -> None:
        """HasSession exposes its id."""
        assert HasSession("abc").session_id == "abc"


class TestCreateSession:
    """Tests for SessionManager.create_session."""

    async def test_clamps_ttl_and_lock_delay(self, sessions: SessionManager, client) -> None:
        """TTL below 10 and negative lock delay are raised to their floors."""
        client.create_results = [Result.success("abc")]

        await sessions.create_session("orders", 5, -3, 1, 0, 1.0)

        request = client.requests[0]
        assert request.ttl == 10
        assert request.lock_delay == 0
        assert request.to_body() == {"Name": "orders", "TTL": "10s", "LockDelay": "0s"}

    async def test_keeps_values_above_floor(self, sessions: SessionManager, client) -> None:
        """Values above the floors are sent unchanged."""
        client.create_results = [Result.success("abc")]

        await sessions.create_session("orders", 30, 7, 1, 0, 1.0)

        assert client.requests[0].to_body()["TTL"] == "30s"
        assert client.requests[0].to_body()["LockDelay"] == "7s"

    async def test_returns_first_success(self, sessions: SessionManager, client) -> None:
        """Returns the id of the first successful attempt."""
        client.create_results = [
            Result.fail(FailureKind.HTTP_STATUS, "busy", status_code=500),
            Result.success("abc"),
            Result.success("never-used"),
        ]

        session_id = await sessions.create_session("orders", 15, 0, 5, 0, 1.0)

        assert session_id == "abc"
        assert client.count("create") == 2

    async def test_gives_up_after_max_tries(self, sessions: SessionManager, client) -> None:
        """Returns None after exactly max_tries failed attempts."""
        session_id = await sessions.create_session("orders", 15, 0, 4, 0, 1.0)

        assert session_id is None
        assert client.count("create") == 4

    async def test_decode_failure_is_retried(self, sessions: SessionManager, client) -> None:
        """An unparsable response counts as a failed attempt."""
        client.create_results = [
            Result.fail(FailureKind.DECODE, "no ID"),
            Result.success("abc"),
        ]

        assert await sessions.create_session("orders", 15, 0, 2, 0, 1.0) == "abc"

    async def test_does_not_change_held_session(self, sessions: SessionManager, client) -> None:
        """create_session only returns the id."""
        client.create_results = [Result.success("abc")]

        await sessions.create_session("orders", 15, 0, 1, 0, 1.0)

        assert sessions.state == NO_SESSION

    async def test_zero_tries_makes_no_attempt(self, sessions: SessionManager, client) -> None:
        """Zero tries returns None without contacting the service."""
        assert await sessions.create_session("orders", 15, 0, 0, 1, 1.0) is None
        assert client.count("create") == 0

    async def test_zero_configured_tries(self, client) -> None:
        """A manager configured with zero tries never creates a session."""
        manager = SessionManager(
            client,
            "orders",
            ttl=15,
            lock_delay=0,
            create_session_tries=0,
            retry_period=1,
            backoff_multiplier=1.5,
        )

        assert await manager.establish() is None
        assert manager.state == NO_SESSION
        assert client.calls == []

    async def test_backoff_follows_schedule(
        self, sessions: SessionManager, client, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Waits between failed attempts grow as period * (i+1) * max(1, i*multiplier)."""
        waits: list[float] = []

        async def record(self: SessionCreation, delay: float) -> None:
            waits.append(delay)

        monkeypatch.setattr(SessionCreation, "_backoff", record)

        assert await sessions.create_session("orders", 15, 0, 4, 2, 1.5) is None
        assert waits == [2.0, 6.0, 18.0]
        assert client.count("create") == 4


class TestSessionCreationHandle:
    """Tests for the non-blocking creation handle."""

    async def test_reports_progress(self, sessions: SessionManager, client) -> None:
        """Attempts and max tries are visible while the loop waits."""
        handle = sessions.begin_create("orders", 15, 0, 3, 60, 1.0)

        for _ in range(10):
            if handle.waiting:
                break
            await asyncio.sleep(0)

        assert handle.waiting
        assert handle.attempts == 1
        assert handle.max_tries == 3
        assert not handle.done

        handle.cancel()
        assert await handle.result() is None

    async def test_interrupt_skips_current_wait(self, sessions: SessionManager, client) -> None:
        """Interrupting a backoff moves straight on to the next attempt."""
        client.create_results = [
            Result.fail(FailureKind.TRANSPORT, "refused"),
            Result.success("abc"),
        ]
        handle = sessions.begin_create("orders", 15, 0, 2, 60, 1.0)

        for _ in range(10):
            if handle.waiting:
                break
            await asyncio.sleep(0)
        handle.interrupt_wait()

        assert await asyncio.wait_for(handle.result(), timeout=1) == "abc"
        assert handle.attempts == 2

    async def test_no_wait_after_last_attempt(self, sessions: SessionManager, client) -> None:
        """Exhausting all tries returns without another backoff."""
        handle = sessions.begin_create("orders", 15, 0, 1, 60, 1.0)

        assert await asyncio.wait_for(handle.result(), timeout=1) is None
        assert handle.done


class TestEstablish:
    """Tests for creating the held session."""

    async def test_success_moves_to_has_session(self, sessions: SessionManager, client) -> None:
        """A created session becomes the held session."""
        client.create_results = [Result.success("abc")]

        assert await sessions.establish() == "abc"
        assert sessions.state == HasSession("abc")

    async def test_failure_stays_in_no_session(self, sessions: SessionManager, client) -> None:
        """Failed creation leaves no session held."""
        assert await sessions.establish() is None
        assert sessions.state == NO_SESSION
        assert client.count("create") == 3

    async def test_idempotent(self, sessions: SessionManager, client) -> None:
        """A held session is returned without creating another."""
        client.create_results = [Result.success("abc"), Result.success("def")]

        await sessions.establish()
        assert await sessions.establish() == "abc"
        assert client.count("create") == 1

    async def test_uses_configured_parameters(self, sessions: SessionManager, client) -> None:
        """Configured TTL and lock delay are sent."""
        client.create_results = [Result.success("abc")]

        await sessions.establish()

        assert client.requests[0].to_body() == {"Name": "orders", "TTL": "15s", "LockDelay": "5s"}


class TestRenewSession:
    """Tests for SessionManager.renew_session."""

    @pytest.fixture
    async def held(self, sessions: SessionManager, client) -> SessionManager:
        """Session manager holding session "abc"."""
        client.create_results = [Result.success("abc")]
        await sessions.establish()
        client.calls.clear()
        return sessions

    async def test_success(self, held: SessionManager, client) -> None:
        """A renewed session is kept."""
        assert await held.renew_session("abc", "orders") is True
        assert held.state == HasSession("abc")
        assert client.operations() == ["renew"]

    async def test_failure_recreates_session(self, held: SessionManager, client) -> None:
        """A failed renewal destroys the session once and creates a new one."""
        client.renew_result = Result.fail(FailureKind.HTTP_STATUS, "not found", status_code=404)
        client.create_results = [Result.success("def")]

        assert await held.renew_session("abc", "orders") is True
        assert held.state == HasSession("def")
        assert client.count("destroy") == 1
        assert client.count("create") == 1
        assert client.operations().index("destroy") < client.operations().index("create")

    async def test_failed_recreation(self, held: SessionManager, client) -> None:
        """Renewal reports failure when no replacement session is obtained."""
        client.renew_result = Result.fail(FailureKind.TRANSPORT, "refused")

        assert await held.renew_session("abc", "orders") is False
        assert held.state == NO_SESSION
        assert client.count("destroy") == 1
        assert client.count("create") == 3

    async def test_cleared_before_recreation(self, held: SessionManager, client) -> None:
        """The old session is no longer held while the new one is created."""
        client.renew_result = Result.fail(FailureKind.TRANSPORT, "refused")
        states = []
        original = client.create_session

        async def observing_create(request):
            states.append(held.state)
            return await original(request)

        client.create_session = observing_create

        await held.renew_session("abc", "orders")

        assert states and all(state == NO_SESSION for state in states)


class TestDestroySession:
    """Tests for SessionManager.destroy_session."""

    async def test_absent_session_makes_no_calls(self, sessions: SessionManager, client) -> None:
        """Destroying None is a no-op."""
        await sessions.destroy_session(None, "orders")
        assert client.calls == []

    async def test_releases_then_destroys(self, sessions: SessionManager, client) -> None:
        """The leader key is released before the session is destroyed."""
        await sessions.destroy_session("abc", "orders")

        assert client.calls == [("release", "orders", "abc"), ("destroy", "abc")]

    async def test_failures_are_swallowed(self, sessions: SessionManager, client) -> None:
        """Release and destroy failures never raise."""
        client.release_result = Result.fail(FailureKind.TRANSPORT, "refused")
        client.destroy_result = Result.fail(FailureKind.HTTP_STATUS, "gone", status_code=500)

        await sessions.destroy_session("abc", "orders")

        assert client.count("destroy") == 1

    async def test_exceptions_are_swallowed(self, sessions: SessionManager, client) -> None:
        """A client raising during destroy is logged, not propagated."""

        async def broken(session_id: str):
            raise RuntimeError("socket closed")

        client.destroy_session = broken

        await sessions.destroy_session("abc", "orders")

    async def test_release_exception_still_destroys(
        self, sessions: SessionManager, client
    ) -> None:
        """A client raising during release does not skip the destroy."""

        async def broken(service_name: str, session_id: str):
            raise RuntimeError("socket closed")

        client.release_leader = broken

        await sessions.destroy_session("abc", "orders")

        assert client.calls == [("destroy", "abc")]

    async def test_clears_held_session(self, sessions: SessionManager, client) -> None:
        """Destroying the held session leaves NoSession."""
        client.create_results = [Result.success("abc")]
        await sessions.establish()

        await sessions.destroy_session("abc", "orders")

        assert sessions.state == NO_SESSION

    async def test_close_destroys_held_session(self, sessions: SessionManager, client) -> None:
        """close() destroys whatever session is held."""
        client.create_results = [Result.success("abc")]
        await sessions.establish()

        await sessions.close()

        assert ("destroy", "abc") in client.calls
        assert sessions.session_id is None

    async def test_close_without_session(self, sessions: SessionManager, client) -> None:
        """close() with nothing held makes no calls."""
        await sessions.close()
        assert client.calls == []
