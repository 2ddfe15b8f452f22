"""Key naming for the cppq queue layout."""

from __future__ import annotations

from dataclasses import dataclass

LIFECYCLE_STAGES: tuple[str, ...] = ("pending", "scheduled", "active", "completed", "failed")


def base_queue_name(queue: str) -> str:
    """Strip the ``:priority`` suffix producers append when registering a queue."""

    return queue.split(":", 1)[0]


@dataclass(frozen=True, slots=True)
class QueueKeys:
    """Builds store keys for a given namespace prefix."""

    prefix: str = "cppq"

    @property
    def queues(self) -> str:
        return f"{self.prefix}:queues"

    @property
    def paused(self) -> str:
        return f"{self.prefix}:queues:paused"

    def stage(self, queue: str, stage: str) -> str:
        return f"{self.prefix}:{base_queue_name(queue)}:{stage}"

    def task(self, queue: str, task_id: str) -> str:
        return f"{self.prefix}:{base_queue_name(queue)}:task:{task_id}"

    def namespace_pattern(self, queue: str) -> str:
        """Glob matching every key that belongs to ``queue``."""

        return f"{self.prefix}:{base_queue_name(queue)}:*"


__all__ = ["LIFECYCLE_STAGES", "QueueKeys", "base_queue_name"]
