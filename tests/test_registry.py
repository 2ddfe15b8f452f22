"""Tests for the session-scoped connection registry."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import pytest

from qdash.connections import ErrorListener, StoreConnectionError
from qdash.registry import (
    ConnectionRegistry,
    InvalidConnectRequest,
    MissingEndpointError,
    MissingSessionError,
    Readiness,
    probe_readiness,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakeClient:
    """Store client double that records lifecycle calls."""

    def __init__(
        self,
        endpoint: str,
        *,
        fail_open: bool = False,
        fail_ping: bool = False,
        fail_close: bool = False,
    ) -> None:
        self.endpoint = endpoint
        self.is_open = False
        self.is_ready = False
        self.fail_open = fail_open
        self.fail_ping = fail_ping
        self.fail_close = fail_close
        self.opens = 0
        self.closes = 0
        self.pings = 0
        self.terminated = False
        self.listeners: list[ErrorListener] = []

    async def open(self) -> None:
        self.opens += 1
        await asyncio.sleep(0)
        if self.fail_open:
            raise StoreConnectionError(f"Failed to connect to '{self.endpoint}'")
        self.is_open = True
        self.is_ready = True

    async def close(self) -> None:
        if self.fail_close:
            raise RuntimeError("close handshake failed")
        self.closes += 1
        self.is_open = False
        self.is_ready = False

    async def terminate(self) -> None:
        self.terminated = True
        self.is_open = False
        self.is_ready = False

    async def ping(self) -> bool:
        self.pings += 1
        if self.fail_ping:
            raise StoreConnectionError("ping timed out")
        self.is_ready = True
        return True

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)


class _Factory:
    def __init__(self, **options: dict[str, bool]) -> None:
        self.options = options
        self.created: list[_FakeClient] = []

    def __call__(self, endpoint: str) -> _FakeClient:
        client = _FakeClient(endpoint, **self.options.get(endpoint, {}))
        self.created.append(client)
        return client


E1 = "redis://cache-a:6379/0"
E2 = "redis://cache-b:6379/0"


@pytest.mark.anyio
async def test_acquire_unknown_or_empty_session_returns_none() -> None:
    registry = ConnectionRegistry(_Factory())

    assert await registry.acquire("s1") is None
    assert await registry.acquire("") is None


@pytest.mark.anyio
async def test_connect_then_acquire_returns_ready_client() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await registry.connect("s1", E1)
    client = await registry.acquire("s1")

    assert client is factory.created[0]
    assert client.is_ready
    assert client.endpoint == E1
    assert registry.endpoint_for("s1") == E1
    assert "s1" in registry and len(registry) == 1


@pytest.mark.anyio
async def test_connect_same_endpoint_is_idempotent() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await registry.connect("s1", E1)
    await registry.connect("s1", E1)

    assert len(factory.created) == 1
    assert factory.created[0].opens == 1


@pytest.mark.anyio
async def test_connect_new_endpoint_replaces_and_closes_previous() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await registry.connect("s1", E1)
    await registry.connect("s1", E2)

    first, second = factory.created
    assert first.closes == 1 and not first.is_open
    assert first.listeners == []
    assert await registry.acquire("s1") is second
    assert registry.endpoint_for("s1") == E2
    assert len(registry) == 1


@pytest.mark.anyio
async def test_connect_reopens_closed_transport_in_place() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)
    client = factory.created[0]
    client.is_open = client.is_ready = False

    await registry.connect("s1", E1)

    assert len(factory.created) == 1
    assert client.opens == 2
    assert client.is_ready


@pytest.mark.anyio
async def test_sessions_are_isolated() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await registry.connect("s1", E1)
    await registry.connect("s2", E2)
    await registry.disconnect("s1")

    assert await registry.acquire("s1") is None
    assert await registry.acquire("s2") is factory.created[1]
    assert registry.sessions() == ("s2",)


@pytest.mark.anyio
async def test_disconnect_is_idempotent() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)

    await registry.disconnect("s1")
    await registry.disconnect("s1")
    await registry.disconnect("")

    assert await registry.acquire("s1") is None
    assert factory.created[0].closes == 1


@pytest.mark.anyio
async def test_concurrent_connects_open_a_single_transport() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await asyncio.gather(registry.connect("s1", E1), registry.connect("s1", E1))

    assert len(factory.created) == 1
    assert await registry.acquire("s1") is factory.created[0]


@pytest.mark.anyio
async def test_connect_racing_disconnect_leaves_nothing_open() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)

    await asyncio.gather(registry.connect("s1", E1), registry.disconnect("s1"))

    assert "s1" not in registry
    assert not factory.created[0].is_open


@pytest.mark.anyio
async def test_connect_rejects_missing_inputs() -> None:
    registry = ConnectionRegistry(_Factory())

    with pytest.raises(MissingSessionError):
        await registry.connect("", E1)
    with pytest.raises(MissingEndpointError):
        await registry.connect("s1", "")
    with pytest.raises(InvalidConnectRequest):
        await registry.connect("s1", "")
    assert len(registry) == 0


@pytest.mark.anyio
async def test_connect_failure_leaves_no_entry() -> None:
    factory = _Factory(**{E1: {"fail_open": True}})
    registry = ConnectionRegistry(factory)

    with pytest.raises(StoreConnectionError):
        await registry.connect("s1", E1)

    assert "s1" not in registry
    assert factory.created[0].listeners == []


@pytest.mark.anyio
async def test_acquire_reopens_closed_transport() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)
    client = factory.created[0]
    client.is_open = client.is_ready = False

    healed = await registry.acquire("s1")

    assert healed is client
    assert client.opens == 2
    assert client.pings == 0


@pytest.mark.anyio
async def test_acquire_pings_unresponsive_transport() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)
    client = factory.created[0]
    client.is_ready = False

    healed = await registry.acquire("s1")

    assert healed is client
    assert client.pings == 1
    assert client.opens == 1


@pytest.mark.anyio
async def test_failed_heal_returns_none_and_keeps_entry(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="qdash.registry")
    factory = _Factory(**{E1: {"fail_ping": True}})
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)
    client = factory.created[0]
    client.is_ready = False

    assert await registry.acquire("s1") is None

    assert "s1" in registry
    assert any(getattr(record, "session", None) == "s1" for record in caplog.records)
    client.fail_ping = False
    assert await registry.acquire("s1") is client


@pytest.mark.anyio
async def test_release_falls_back_to_terminate() -> None:
    factory = _Factory(**{E1: {"fail_close": True}})
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)

    await registry.disconnect("s1")

    assert factory.created[0].terminated is True
    assert "s1" not in registry


@pytest.mark.anyio
async def test_shutdown_closes_every_connection() -> None:
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", E1)
    await registry.connect("s2", E2)

    await registry.shutdown()

    assert len(registry) == 0
    assert all(client.closes == 1 for client in factory.created)


@pytest.mark.anyio
async def test_client_errors_are_logged_with_session(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="qdash.registry")
    factory = _Factory()
    registry = ConnectionRegistry(factory)
    await registry.connect("s1", "redis://:secret@cache-a:6379/0")

    for listener in factory.created[0].listeners:
        listener("redis://:secret@cache-a:6379/0", ConnectionResetError("reset"))

    record = next(r for r in caplog.records if r.levelno == logging.ERROR)
    assert record.session == "s1"
    assert "secret" not in record.endpoint


class _OpaqueClient(_FakeClient):
    """Client whose state flags cannot be read until it is reopened."""

    opaque = False

    @property
    def is_open(self) -> bool:
        if self.opaque:
            raise RuntimeError("transport state unavailable")
        return self._is_open

    @is_open.setter
    def is_open(self, value: bool) -> None:
        self._is_open = value

    async def open(self) -> None:
        self.opaque = False
        await super().open()


@pytest.mark.anyio
async def test_acquire_reopens_client_in_unknown_state() -> None:
    created: list[_OpaqueClient] = []

    def _factory(endpoint: str) -> _OpaqueClient:
        client = _OpaqueClient(endpoint)
        created.append(client)
        return client

    registry = ConnectionRegistry(_factory)
    await registry.connect("s1", E1)
    client = created[0]
    client.opaque = True

    assert probe_readiness(client) is Readiness.UNKNOWN
    assert await registry.acquire("s1") is client
    assert client.opens == 2
    assert probe_readiness(client) is Readiness.READY


def test_probe_readiness_classifies_flags() -> None:
    client = _FakeClient(E1)
    assert probe_readiness(client) is Readiness.CLOSED
    client.is_open = True
    assert probe_readiness(client) is Readiness.UNRESPONSIVE
    client.is_ready = True
    assert probe_readiness(client) is Readiness.READY
