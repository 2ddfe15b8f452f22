"""Shared dataclasses used across the registry, facade and UI modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True, slots=True)
class EndpointProfile:
    """Runtime representation of a saved store endpoint."""

    name: str
    url: str


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Per-stage task counts plus the pause flag for one queue."""

    pending: int = 0
    scheduled: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    paused: bool = False

    def to_dict(self) -> dict[str, int | bool]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Task:
    """A task record read from a queue's lifecycle stage.

    Every field is carried as the opaque string stored by the producer;
    optional fields stay ``None`` when the record does not define them.
    """

    uuid: str
    type: str = ""
    payload: str = ""
    max_retry: str = "0"
    retry_count: str = "0"
    schedule_time: str | None = None
    cron: str | None = None
    dequeue_time: str | None = None
    result: str | None = None

    def to_dict(self) -> dict[str, str]:
        """Serialize the task, omitting optional fields that are unset."""

        return {key: value for key, value in asdict(self).items() if value is not None}


__all__ = ["EndpointProfile", "QueueStats", "Task"]
