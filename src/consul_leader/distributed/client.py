"""Coordination service client.

Six remote operations back the leadership engine: create, renew and destroy
a session, and read, acquire and release the leader key of a service. Every
operation returns a ``Result`` instead of raising, so callers decide which
failures matter:

- ``TRANSPORT``: the request never got a response (connect error, timeout)
- ``HTTP_STATUS``: the service answered with an unexpected status code
- ``DECODE``: the body was not the JSON shape the operation expects

``ConsulClient`` implements the operations against the Consul HTTP API:

    PUT /v1/session/create                          {"Name", "TTL", "LockDelay"}
    PUT /v1/session/renew/{session}
    PUT /v1/session/destroy/{session}
    GET /v1/kv/service/{service}/leader
    PUT /v1/kv/service/{service}/leader?acquire={session}
    PUT /v1/kv/service/{service}/leader?release={session}

Example:
    async with ConsulClient("http://localhost:8500") as client:
        created = await client.create_session(SessionRequest.build("orders", 15, 0))
        if created.ok:
            acquired = await client.acquire_leader("orders", created.unwrap())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar, cast

import httpx
import orjson

if TYPE_CHECKING:
    from consul_leader.config import Settings


T = TypeVar("T")

MIN_TTL_SECONDS = 10
MIN_LOCK_DELAY_SECONDS = 0


class FailureKind(str, Enum):
    """Classification of a failed remote operation."""

    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    DECODE = "decode"


@dataclass(frozen=True)
class Failure:
    """Why a remote operation did not produce a value."""

    kind: FailureKind
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.kind.value} {self.status_code}: {self.message}"
        return f"{self.kind.value}: {self.message}"


class CoordinationError(Exception):
    """Raised when a failed ``Result`` is unwrapped."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(str(failure))
        self.failure = failure


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``Failure``, never both."""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(
        cls, kind: FailureKind, message: str, status_code: int | None = None
    ) -> Result[T]:
        return cls(failure=Failure(kind=kind, message=message, status_code=status_code))

    @classmethod
    def from_failure(cls, failure: Failure) -> Result[T]:
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value, raising ``CoordinationError`` on failure."""
        if self.failure is not None:
            raise CoordinationError(self.failure)
        return cast(T, self.value)


@dataclass(frozen=True)
class SessionRequest:
    """Parameters of a session-create call, already clamped to service limits."""

    name: str
    ttl: int
    lock_delay: int

    @classmethod
    def build(cls, name: str, ttl: int, lock_delay: int) -> SessionRequest:
        return cls(
            name=name,
            ttl=max(MIN_TTL_SECONDS, ttl),
            lock_delay=max(MIN_LOCK_DELAY_SECONDS, lock_delay),
        )

    def to_body(self) -> dict[str, str]:
        return {"Name": self.name, "TTL": f"{self.ttl}s", "LockDelay": f"{self.lock_delay}s"}


class CoordinationClient(Protocol):
    """Remote session/lock operations used by the leadership engine."""

    async def create_session(self, request: SessionRequest) -> Result[str]: ...

    async def renew_session(self, session_id: str) -> Result[None]: ...

    async def destroy_session(self, session_id: str) -> Result[None]: ...

    async def get_leader_holder(self, service_name: str) -> Result[str | None]: ...

    async def acquire_leader(self, service_name: str, session_id: str) -> Result[bool]: ...

    async def release_leader(self, service_name: str, session_id: str) -> Result[bool]: ...


def leader_key_path(service_name: str) -> str:
    """KV path of the leader key for a service."""
    return f"/v1/kv/service/{service_name}/leader"


def _status_failure(response: httpx.Response) -> Failure:
    return Failure(
        kind=FailureKind.HTTP_STATUS,
        message=f"{response.request.method} {response.request.url.path}: {response.text[:200]}",
        status_code=response.status_code,
    )


def _decode_json(response: httpx.Response) -> Result[Any]:
    try:
        return Result.success(orjson.loads(response.content))
    except orjson.JSONDecodeError as e:
        return Result.fail(FailureKind.DECODE, f"invalid JSON from {response.request.url.path}: {e}")


class ConsulClient:
    """Consul HTTP API client for sessions and leader keys.

    Args:
        base_url: Base URL of the Consul agent (e.g. "http://localhost:8500")
        username: Optional basic-auth username
        password: Basic-auth password, used only together with a username
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        logger: Logger for request tracing (defaults to the module logger)
    """

    def __init__(
        self,
        base_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._log = logger or logging.getLogger(__name__)
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> ConsulClient:
        return cls(
            base_url=settings.consul_url,
            username=settings.username,
            password=settings.password,
            timeout=settings.request_timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def _send(self, method: str, path: str, **kwargs: Any) -> Result[httpx.Response]:
        self._log.debug(f"{method} {path} {kwargs.get('params') or ''}".rstrip())
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            return Result.fail(FailureKind.TRANSPORT, f"{method} {path}: {e!r}")
        return Result.success(response)

    async def _put_expecting_ok(self, path: str) -> Result[None]:
        sent = await self._send("PUT", path)
        if not sent.ok:
            return Result.from_failure(cast(Failure, sent.failure))
        response = sent.unwrap()
        if response.status_code != 200:
            return Result.from_failure(_status_failure(response))
        return Result.success(None)

    async def _put_lock(self, service_name: str, command: str, session_id: str) -> Result[bool]:
        sent = await self._send("PUT", leader_key_path(service_name), params={command: session_id})
        if not sent.ok:
            return Result.from_failure(cast(Failure, sent.failure))
        response = sent.unwrap()
        if response.status_code != 200:
            return Result.from_failure(_status_failure(response))

        decoded = _decode_json(response)
        if not decoded.ok:
            return Result.from_failure(cast(Failure, decoded.failure))
        flag = decoded.unwrap()
        if not isinstance(flag, bool):
            return Result.fail(FailureKind.DECODE, f"{command} returned {flag!r}, expected a boolean")
        return Result.success(flag)

    async def create_session(self, request: SessionRequest) -> Result[str]:
        sent = await self._send(
            "PUT",
            "/v1/session/create",
            content=orjson.dumps(request.to_body()),
            headers={"Content-Type": "application/json"},
        )
        if not sent.ok:
            return Result.from_failure(cast(Failure, sent.failure))
        response = sent.unwrap()
        if response.status_code != 200:
            return Result.from_failure(_status_failure(response))

        decoded = _decode_json(response)
        if not decoded.ok:
            return Result.from_failure(cast(Failure, decoded.failure))
        payload = decoded.unwrap()
        session_id = payload.get("ID") if isinstance(payload, dict) else None
        if not isinstance(session_id, str) or not session_id:
            return Result.fail(FailureKind.DECODE, f"session response has no ID: {payload!r}")
        return Result.success(session_id)

    async def renew_session(self, session_id: str) -> Result[None]:
        return await self._put_expecting_ok(f"/v1/session/renew/{session_id}")

    async def destroy_session(self, session_id: str) -> Result[None]:
        return await self._put_expecting_ok(f"/v1/session/destroy/{session_id}")

    async def get_leader_holder(self, service_name: str) -> Result[str | None]:
        """Session currently holding the leader key, or None when unheld.

        Consul answers 404 for a key that was never written.
        """
        sent = await self._send("GET", leader_key_path(service_name))
        if not sent.ok:
            return Result.from_failure(cast(Failure, sent.failure))
        response = sent.unwrap()
        if response.status_code == 404:
            return Result.success(None)
        if response.status_code != 200:
            return Result.from_failure(_status_failure(response))

        decoded = _decode_json(response)
        if not decoded.ok:
            return Result.from_failure(cast(Failure, decoded.failure))
        entries = decoded.unwrap()
        if entries is None:
            return Result.success(None)
        if not isinstance(entries, list):
            return Result.fail(FailureKind.DECODE, f"expected a list of entries, got {entries!r}")
        if not entries:
            return Result.success(None)

        first = entries[0]
        if not isinstance(first, dict):
            return Result.fail(FailureKind.DECODE, f"unexpected key entry {first!r}")
        holder = first.get("Session")
        if holder is not None and not isinstance(holder, str):
            return Result.fail(FailureKind.DECODE, f"unexpected Session value {holder!r}")
        return Result.success(holder or None)

    async def acquire_leader(self, service_name: str, session_id: str) -> Result[bool]:
        return await self._put_lock(service_name, "acquire", session_id)

    async def release_leader(self, service_name: str, session_id: str) -> Result[bool]:
        return await self._put_lock(service_name, "release", session_id)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ConsulClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
