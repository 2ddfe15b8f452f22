"""Session-scoped registry owning one store connection per session identifier.

The registry is the only place that creates, heals, replaces or closes a
store client. Callers borrow a client through :meth:`ConnectionRegistry.acquire`
for the duration of one operation and never keep it.

Mutations for a session (connect, disconnect, heal) run under that session's
``asyncio.Lock`` so two coroutines cannot both open a transport for the same
session. Sessions never contend with each other.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from .connections import StoreClient, StoreClientFactory, redact_endpoint

LOG = logging.getLogger(__name__)

ClientFactory = Callable[[str], StoreClient]


class InvalidConnectRequest(ValueError):
    """Raised when connect is called without the inputs it needs."""


class MissingSessionError(InvalidConnectRequest):
    """Raised when connect is called with an empty session identifier."""


class MissingEndpointError(InvalidConnectRequest):
    """Raised when connect is called without a store endpoint."""


class Readiness(Enum):
    """Observed state of a managed connection's transport."""

    UNKNOWN = "unknown"
    READY = "ready"
    UNRESPONSIVE = "unresponsive"
    CLOSED = "closed"


def probe_readiness(client: StoreClient) -> Readiness:
    """Classify a client from its open/ready flags; nothing is cached.

    A client whose flags cannot be read is ``UNKNOWN``.
    """

    try:
        is_open = client.is_open
        is_ready = client.is_ready
    except Exception:
        LOG.debug("Could not read store client state", exc_info=True)
        return Readiness.UNKNOWN
    if not is_open:
        return Readiness.CLOSED
    if is_ready:
        return Readiness.READY
    return Readiness.UNRESPONSIVE


@dataclass(slots=True)
class ManagedConnection:
    """Registry entry pairing an endpoint with the client opened for it."""

    session_id: str
    endpoint: str
    client: StoreClient
    unsubscribe: Callable[[], None] | None = None

    @property
    def readiness(self) -> Readiness:
        return probe_readiness(self.client)


class ConnectionRegistry:
    """Process-wide table of session identifier -> managed connection."""

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or StoreClientFactory()
        self._entries: dict[str, ManagedConnection] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._heal_actions: dict[Readiness, Callable[[ManagedConnection], Awaitable[object]]] = {
            Readiness.UNKNOWN: self._reopen,
            Readiness.CLOSED: self._reopen,
            Readiness.UNRESPONSIVE: self._probe,
        }

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def sessions(self) -> tuple[str, ...]:
        """Session identifiers that currently own a connection."""

        return tuple(self._entries)

    def endpoint_for(self, session_id: str) -> str | None:
        entry = self._entries.get(session_id) if session_id else None
        return entry.endpoint if entry else None

    async def acquire(self, session_id: str) -> StoreClient | None:
        """Return a ready client for the session, or ``None``.

        A ready client is returned as-is. A closed transport is reopened from
        the stored endpoint; an open but unresponsive one is pinged. Heal
        failures are logged and reported as ``None``; the entry is kept so a
        later call can try again.
        """

        if not session_id:
            return None
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry.readiness is Readiness.READY:
            return entry.client
        async with self._lock_for(session_id):
            # The entry may have been replaced or removed while we waited.
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            return await self._heal(entry)

    async def connect(self, session_id: str, endpoint: str) -> None:
        """Bind ``session_id`` to ``endpoint``, opening or replacing its connection.

        Raises :class:`InvalidConnectRequest` for missing inputs and
        ``StoreConnectionError`` when the transport cannot be opened.
        """

        if not session_id:
            raise MissingSessionError("Missing session identifier")
        if not endpoint:
            raise MissingEndpointError("Store endpoint is required")
        async with self._lock_for(session_id):
            existing = self._entries.get(session_id)
            if existing is not None and existing.endpoint == endpoint:
                if existing.client.is_open or existing.client.is_ready:
                    return
                await existing.client.open()
                return
            if existing is not None:
                self._entries.pop(session_id, None)
                await self._release(existing)
            self._entries[session_id] = await self._open_entry(session_id, endpoint)

    async def disconnect(self, session_id: str) -> None:
        """Close and forget the session's connection; unknown sessions are a no-op."""

        if not session_id:
            return
        async with self._lock_for(session_id):
            entry = self._entries.pop(session_id, None)
            if entry is None:
                return
            await self._release(entry)

    async def shutdown(self) -> None:
        """Close every managed connection (process shutdown hook)."""

        for session_id in tuple(self._entries):
            await self.disconnect(session_id)

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _open_entry(self, session_id: str, endpoint: str) -> ManagedConnection:
        client = self._client_factory(endpoint)
        unsubscribe = client.subscribe(self._error_observer(session_id))
        try:
            await client.open()
        except Exception:
            unsubscribe()
            raise
        LOG.info(
            "Store connection opened",
            extra={"session": session_id, "endpoint": redact_endpoint(endpoint)},
        )
        return ManagedConnection(
            session_id=session_id,
            endpoint=endpoint,
            client=client,
            unsubscribe=unsubscribe,
        )

    async def _heal(self, entry: ManagedConnection) -> StoreClient | None:
        state = entry.readiness
        if state is Readiness.READY:
            return entry.client
        action = self._heal_actions[state]
        try:
            await action(entry)
        except Exception:
            LOG.warning(
                "Failed to reconnect store",
                exc_info=True,
                extra={"session": entry.session_id, "readiness": state.value},
            )
            return None
        healed = entry.readiness
        if healed is not Readiness.READY:
            LOG.warning(
                "Store connection still not ready after heal",
                extra={"session": entry.session_id, "readiness": healed.value},
            )
            return None
        return entry.client

    @staticmethod
    async def _reopen(entry: ManagedConnection) -> None:
        await entry.client.open()

    @staticmethod
    async def _probe(entry: ManagedConnection) -> None:
        await entry.client.ping()

    async def _release(self, entry: ManagedConnection) -> None:
        if entry.unsubscribe is not None:
            entry.unsubscribe()
            entry.unsubscribe = None
        try:
            await entry.client.close()
        except Exception:
            LOG.debug("Orderly close failed; terminating", extra={"session": entry.session_id})
            with suppress(Exception):
                await entry.client.terminate()

    @staticmethod
    def _error_observer(session_id: str) -> Callable[[str, BaseException], None]:
        def _observe(endpoint: str, exc: BaseException) -> None:
            LOG.error(
                "Store client error",
                extra={"session": session_id, "endpoint": redact_endpoint(endpoint), "error": str(exc)},
            )

        return _observe


__all__ = [
    "ClientFactory",
    "ConnectionRegistry",
    "InvalidConnectRequest",
    "ManagedConnection",
    "MissingEndpointError",
    "MissingSessionError",
    "Readiness",
    "probe_readiness",
]
