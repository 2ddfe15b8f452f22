"""Store clients backing the connection registry."""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, Sequence, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError


class StoreError(RuntimeError):
    """Base class for failures talking to the external store."""


class StoreConnectionError(StoreError):
    """Raised when the transport to the store cannot be opened or drops mid-command."""


class StoreResponseError(StoreError):
    """Raised when the store rejects a command (wrong type, unsupported command)."""


ErrorListener = Callable[[str, BaseException], None]


@runtime_checkable
class StoreClient(Protocol):
    """Minimal command set the registry and facade need from a store client."""

    @property
    def endpoint(self) -> str: ...

    @property
    def is_open(self) -> bool:
        """Whether a transport exists (it may still be unresponsive)."""

    @property
    def is_ready(self) -> bool:
        """Whether the transport is open and the last exchange succeeded."""

    async def open(self) -> None: ...

    async def close(self) -> None:
        """Orderly shutdown of the transport."""

    async def terminate(self) -> None:
        """Force-close the transport without a shutdown handshake."""

    async def ping(self) -> bool: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def sismember(self, key: str, member: str) -> bool: ...

    async def sadd(self, key: str, member: str) -> int: ...

    async def srem(self, key: str, member: str) -> int: ...

    async def llen(self, key: str) -> int: ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]: ...

    async def hgetall(self, key: str) -> dict[str, str]: ...

    def scan_iter(self, match: str, count: int = 100) -> AsyncIterator[str]: ...

    async def memory_usage(self, key: str) -> int | None: ...

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        """Subscribe to transport errors; returns an unsubscribe handle."""


def redact_endpoint(endpoint: str) -> str:
    """Mask the password component of a store URL for logs and messages."""

    try:
        parts = urlsplit(endpoint)
    except ValueError:
        return endpoint
    if not parts.password:
        return endpoint
    user = parts.username or ""
    host = parts.hostname or ""
    with suppress(ValueError):
        if parts.port is not None:
            host = f"{host}:{parts.port}"
    netloc = f"{user}:***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class _ListenerMixin:
    _listeners: set[ErrorListener]

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _emit(self, endpoint: str, exc: BaseException) -> None:
        for listener in tuple(self._listeners):
            listener(endpoint, exc)


class RedisStoreClient(_ListenerMixin):
    """Store client talking to Redis through redis-py's asyncio API.

    All commands share one connection; redis-py serializes concurrent callers on it.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        connect_timeout: float = 3.0,
        command_timeout: float | None = 10.0,
    ) -> None:
        self._endpoint = endpoint
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout
        self._client: redis.Redis | None = None
        self._ready = False
        self._listeners = set()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def is_open(self) -> bool:
        return self._client is not None

    @property
    def is_ready(self) -> bool:
        return self._client is not None and self._ready

    async def open(self) -> None:
        if self._client is None:
            try:
                self._client = redis.Redis.from_url(
                    self._endpoint,
                    decode_responses=True,
                    single_connection_client=True,
                    socket_connect_timeout=self._connect_timeout,
                    socket_timeout=self._command_timeout,
                )
            except ValueError as exc:
                raise StoreConnectionError(
                    f"Invalid store endpoint '{redact_endpoint(self._endpoint)}': {exc}"
                ) from exc
        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            client, self._client = self._client, None
            self._ready = False
            if client is not None:
                with suppress(Exception):
                    await client.connection_pool.disconnect()
            raise StoreConnectionError(
                f"Failed to connect to '{redact_endpoint(self._endpoint)}': {exc}"
            ) from exc
        self._ready = True

    async def close(self) -> None:
        if self._client is None:
            return
        self._ready = False
        await self._client.aclose()
        self._client = None

    async def terminate(self) -> None:
        client, self._client = self._client, None
        self._ready = False
        if client is None:
            return
        await client.connection_pool.disconnect(inuse_connections=True)

    async def ping(self) -> bool:
        return bool(await self._execute("ping"))

    async def smembers(self, key: str) -> set[str]:
        return set(await self._execute("smembers", key))

    async def sismember(self, key: str, member: str) -> bool:
        return bool(await self._execute("sismember", key, member))

    async def sadd(self, key: str, member: str) -> int:
        return int(await self._execute("sadd", key, member))

    async def srem(self, key: str, member: str) -> int:
        return int(await self._execute("srem", key, member))

    async def llen(self, key: str) -> int:
        return await self._execute("llen", key)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self._execute("lrange", key, start, stop))

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(await self._execute("hgetall", key) or {})

    async def scan_iter(self, match: str, count: int = 100) -> AsyncIterator[str]:
        cursor = 0
        while True:
            cursor, keys = await self._execute("scan", cursor, match, count)
            for key in keys:
                yield key
            if int(cursor) == 0:
                break

    async def memory_usage(self, key: str) -> int | None:
        return await self._execute("memory_usage", key)

    async def _execute(self, command: str, *args: Any) -> Any:
        client = self._client
        if client is None:
            raise StoreConnectionError(f"Connection to '{redact_endpoint(self._endpoint)}' is closed.")
        try:
            result = await getattr(client, command)(*args)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            self._ready = False
            self._emit(self._endpoint, exc)
            raise StoreConnectionError(
                f"Lost connection to '{redact_endpoint(self._endpoint)}': {exc}"
            ) from exc
        except RedisError as exc:
            raise StoreResponseError(str(exc)) from exc
        self._ready = True
        return result


@dataclass(slots=True)
class DemoDataset:
    """In-memory keyspace served by :class:`DemoStoreClient`."""

    lists: dict[str, list[str]] = field(default_factory=dict)
    sets: dict[str, set[str]] = field(default_factory=dict)
    hashes: dict[str, dict[str, str]] = field(default_factory=dict)

    def keys(self) -> list[str]:
        return sorted({*self.lists, *self.sets, *self.hashes})

    def kind_of(self, key: str) -> str | None:
        if key in self.lists:
            return "list"
        if key in self.sets:
            return "set"
        if key in self.hashes:
            return "hash"
        return None


DEMO_QUEUES: Mapping[str, Mapping[str, Sequence[Mapping[str, str]]]] = {
    "emails:10": {
        "pending": (
            {"uuid": "e-101", "type": "send_welcome", "payload": '{"to": "ada@example.com"}', "maxRetry": "3"},
            {"uuid": "e-102", "type": "send_digest", "payload": '{"to": "bob@example.com"}', "maxRetry": "3"},
        ),
        "active": (
            {
                "uuid": "e-100",
                "type": "send_welcome",
                "payload": '{"to": "eve@example.com"}',
                "maxRetry": "3",
                "retried": "1",
                "dequeuedAtMs": "1760870400000",
            },
        ),
        "completed": (
            {"uuid": "e-090", "type": "send_digest", "payload": "{}", "maxRetry": "3", "result": "ok"},
        ),
    },
    "reports:5": {
        "scheduled": (
            {
                "uuid": "r-7",
                "type": "nightly_rollup",
                "payload": '{"day": "2026-10-18"}',
                "maxRetry": "1",
                "schedule": "1760918400000",
                "cron": "0 2 * * *",
            },
        ),
        "failed": (
            {
                "uuid": "r-6",
                "type": "nightly_rollup",
                "payload": '{"day": "2026-10-17"}',
                "maxRetry": "1",
                "retried": "1",
                "result": "timeout",
            },
        ),
    },
}

DEMO_PAUSED: tuple[str, ...] = ("reports",)


def build_demo_dataset(
    prefix: str = "cppq",
    queues: Mapping[str, Mapping[str, Sequence[Mapping[str, str]]]] | None = None,
    paused: Sequence[str] | None = None,
) -> DemoDataset:
    """Lay out sample queues the way a cppq producer writes them."""

    dataset = DemoDataset()
    source = DEMO_QUEUES if queues is None else queues
    dataset.sets[f"{prefix}:queues"] = set(source)
    paused_names = DEMO_PAUSED if paused is None else paused
    if paused_names:
        dataset.sets[f"{prefix}:queues:paused"] = set(paused_names)
    for queue, stages in source.items():
        base = queue.split(":", 1)[0]
        for stage, tasks in stages.items():
            ids: list[str] = []
            for task in tasks:
                fields = dict(task)
                task_id = fields.pop("uuid")
                ids.append(task_id)
                dataset.hashes[f"{prefix}:{base}:task:{task_id}"] = fields
            dataset.lists[f"{prefix}:{base}:{stage}"] = ids
    return dataset


class DemoStoreClient(_ListenerMixin):
    """Store client serving an in-memory dataset for ``demo://`` endpoints."""

    _ENTRY_OVERHEAD = 64

    def __init__(self, endpoint: str, dataset: DemoDataset | None = None) -> None:
        self._endpoint = endpoint
        self._dataset = dataset if dataset is not None else build_demo_dataset()
        self._open = False
        self._ready = False
        self._listeners = set()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def dataset(self) -> DemoDataset:
        return self._dataset

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_ready(self) -> bool:
        return self._open and self._ready

    async def open(self) -> None:
        self._open = True
        self._ready = True

    async def close(self) -> None:
        self._open = False
        self._ready = False

    async def terminate(self) -> None:
        self._open = False
        self._ready = False

    def drop(self, *, closed: bool = False) -> None:
        """Simulate a transport failure (testing helper)."""

        self._ready = False
        if closed:
            self._open = False
        self._emit(self._endpoint, StoreConnectionError("simulated transport drop"))

    async def ping(self) -> bool:
        if not self._open:
            raise StoreConnectionError(f"Connection to '{self._endpoint}' is closed.")
        self._ready = True
        return True

    async def smembers(self, key: str) -> set[str]:
        self._require(key, "set")
        return set(self._dataset.sets.get(key, set()))

    async def sismember(self, key: str, member: str) -> bool:
        self._require(key, "set")
        return member in self._dataset.sets.get(key, set())

    async def sadd(self, key: str, member: str) -> int:
        self._require(key, "set")
        members = self._dataset.sets.setdefault(key, set())
        if member in members:
            return 0
        members.add(member)
        return 1

    async def srem(self, key: str, member: str) -> int:
        self._require(key, "set")
        members = self._dataset.sets.get(key)
        if not members or member not in members:
            return 0
        members.discard(member)
        if not members:
            del self._dataset.sets[key]
        return 1

    async def llen(self, key: str) -> int:
        self._require(key, "list")
        return len(self._dataset.lists.get(key, ()))

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        self._require(key, "list")
        items = self._dataset.lists.get(key, [])
        end = len(items) if stop == -1 else stop + 1
        return list(items[start:end])

    async def hgetall(self, key: str) -> dict[str, str]:
        self._require(key, "hash")
        return dict(self._dataset.hashes.get(key, {}))

    async def scan_iter(self, match: str, count: int = 100) -> AsyncIterator[str]:
        self._require_open()
        for key in self._dataset.keys():
            if fnmatchcase(key, match):
                yield key

    async def memory_usage(self, key: str) -> int | None:
        self._require_open()
        kind = self._dataset.kind_of(key)
        if kind is None:
            return None
        if kind == "list":
            body = sum(len(item) for item in self._dataset.lists[key])
        elif kind == "set":
            body = sum(len(item) for item in self._dataset.sets[key])
        else:
            body = sum(len(name) + len(value) for name, value in self._dataset.hashes[key].items())
        return len(key) + body + self._ENTRY_OVERHEAD

    def _require_open(self) -> None:
        if not self._open:
            raise StoreConnectionError(f"Connection to '{self._endpoint}' is closed.")
        if not self._ready:
            raise StoreConnectionError(f"Connection to '{self._endpoint}' is not responding.")

    def _require(self, key: str, kind: str) -> None:
        self._require_open()
        actual = self._dataset.kind_of(key)
        if actual is not None and actual != kind:
            raise StoreResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")


class StoreClientFactory:
    """Builds the store client matching an endpoint's URL scheme."""

    REDIS_SCHEMES = frozenset({"redis", "rediss", "unix"})
    DEMO_SCHEME = "demo"

    def __init__(self, *, connect_timeout: float = 3.0, key_prefix: str = "cppq") -> None:
        self._connect_timeout = connect_timeout
        self._key_prefix = key_prefix
        self._demo_datasets: dict[str, DemoDataset] = {}

    def __call__(self, endpoint: str) -> StoreClient:
        try:
            scheme = urlsplit(endpoint).scheme.lower()
        except ValueError as exc:
            raise StoreConnectionError(f"Invalid store endpoint: {exc}") from exc
        if scheme in self.REDIS_SCHEMES:
            return RedisStoreClient(endpoint, connect_timeout=self._connect_timeout)
        if scheme == self.DEMO_SCHEME:
            dataset = self._demo_datasets.get(endpoint)
            if dataset is None:
                dataset = build_demo_dataset(self._key_prefix)
                self._demo_datasets[endpoint] = dataset
            return DemoStoreClient(endpoint, dataset)
        raise StoreConnectionError(
            f"Unsupported store endpoint '{redact_endpoint(endpoint)}'; expected redis://, rediss://, unix:// or demo://"
        )


__all__ = [
    "DEMO_PAUSED",
    "DEMO_QUEUES",
    "DemoDataset",
    "DemoStoreClient",
    "ErrorListener",
    "RedisStoreClient",
    "StoreClient",
    "StoreClientFactory",
    "StoreConnectionError",
    "StoreError",
    "StoreResponseError",
    "build_demo_dataset",
    "redact_endpoint",
]
