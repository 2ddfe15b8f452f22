"""Read and pause operations over a session's borrowed store connection."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Iterable

from .connections import StoreClient, StoreConnectionError, StoreError
from .keys import LIFECYCLE_STAGES, QueueKeys, base_queue_name
from .models import QueueStats, Task
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class StoreNotConnectedError(StoreError):
    """Raised when the session has no usable store connection."""

    def __init__(self, message: str = "Store not connected") -> None:
        super().__init__(message)


class QueueFacade:
    """Dashboard queries; each call borrows the session's client from the registry."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        keys: QueueKeys | None = None,
        scan_count: int = 100,
    ) -> None:
        self._registry = registry
        self._keys = keys or QueueKeys()
        self._scan_count = scan_count

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def keys(self) -> QueueKeys:
        return self._keys

    async def is_connected(self, session_id: str) -> bool:
        client = await self._registry.acquire(session_id)
        return client is not None and client.is_ready

    async def list_queues(self, session_id: str) -> list[str]:
        client = await self._client(session_id)
        return sorted(await client.smembers(self._keys.queues))

    async def get_stats(self, session_id: str, queue: str) -> QueueStats:
        """Fetch all stage lengths and the pause flag concurrently."""

        client = await self._client(session_id)
        results = await asyncio.gather(
            *(client.llen(self._keys.stage(queue, stage)) for stage in LIFECYCLE_STAGES),
            client.sismember(self._keys.paused, base_queue_name(queue)),
            return_exceptions=True,
        )
        _raise_transport_failure(results)
        counts = {stage: _as_count(value) for stage, value in zip(LIFECYCLE_STAGES, results)}
        paused = results[-1]
        return QueueStats(**counts, paused=False if isinstance(paused, BaseException) else bool(paused))

    async def get_memory_usage_mb(self, session_id: str, queue: str) -> int:
        """Sum MEMORY USAGE over the queue's keys, rounded to whole megabytes."""

        client = await self._client(session_id)
        keys = [key async for key in client.scan_iter(self._keys.namespace_pattern(queue), self._scan_count)]
        if not keys:
            return 0
        usages = await asyncio.gather(
            *(client.memory_usage(key) for key in keys),
            return_exceptions=True,
        )
        _raise_transport_failure(usages)
        total = 0
        for key, usage in zip(keys, usages):
            if isinstance(usage, BaseException):
                LOG.debug("Memory usage unavailable", extra={"key": key, "error": str(usage)})
                continue
            total += _as_count(usage)
        return math.floor(total / BYTES_PER_MB + 0.5)

    async def set_paused(self, session_id: str, queue: str, paused: bool) -> None:
        client = await self._client(session_id)
        name = base_queue_name(queue)
        if paused:
            await client.sadd(self._keys.paused, name)
        else:
            await client.srem(self._keys.paused, name)

    async def pause(self, session_id: str, queue: str) -> None:
        await self.set_paused(session_id, queue, True)

    async def unpause(self, session_id: str, queue: str) -> None:
        await self.set_paused(session_id, queue, False)

    async def list_tasks(self, session_id: str, queue: str, state: str) -> list[Task]:
        """List tasks in a lifecycle stage, skipping ids whose record is gone."""

        client = await self._client(session_id)
        task_ids = await client.lrange(self._keys.stage(queue, state), 0, -1)
        records = await asyncio.gather(
            *(client.hgetall(self._keys.task(queue, task_id)) for task_id in task_ids),
            return_exceptions=True,
        )
        _raise_transport_failure(records)
        tasks: list[Task] = []
        for task_id, record in zip(task_ids, records):
            if isinstance(record, BaseException) or not record:
                continue
            tasks.append(_task_from_record(task_id, record))
        return tasks

    async def _client(self, session_id: str) -> StoreClient:
        client = await self._registry.acquire(session_id)
        if client is None:
            raise StoreNotConnectedError()
        return client


def _raise_transport_failure(results: Iterable[object]) -> None:
    for result in results:
        if isinstance(result, StoreConnectionError):
            raise result


def _as_count(value: object) -> int:
    if isinstance(value, BaseException) or value is None or isinstance(value, bool):
        return 0
    try:
        count = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def _task_from_record(task_id: str, record: dict[str, str]) -> Task:
    return Task(
        uuid=task_id,
        type=record.get("type") or "",
        payload=record.get("payload") or "",
        max_retry=record.get("maxRetry") or "0",
        retry_count=record.get("retried") or "0",
        schedule_time=record.get("schedule"),
        cron=record.get("cron"),
        dequeue_time=record.get("dequeuedAtMs"),
        result=record.get("result"),
    )


__all__ = ["BYTES_PER_MB", "QueueFacade", "StoreNotConnectedError"]
