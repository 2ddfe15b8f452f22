"""Main pane showing the selected queue's stats and its tasks for one stage."""

from __future__ import annotations

from typing import Callable

from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Static

from qdash.keys import LIFECYCLE_STAGES
from qdash.models import Task
from qdash.session import SessionManager, SessionState

TASK_COLUMNS: tuple[str, ...] = (
    "uuid",
    "type",
    "payload",
    "retry",
    "schedule",
    "cron",
    "dequeued",
    "result",
)


class TaskTable(Container):
    """Stats header, stage selector line and a table of task records."""

    DEFAULT_CSS = """
    TaskTable {
        height: 1fr;
    }

    TaskTable .panel-title {
        text-style: bold;
        margin-bottom: 1;
    }

    TaskTable #queue-stats {
        margin-bottom: 1;
    }

    TaskTable #stage-tabs {
        color: $text-muted;
        margin-bottom: 1;
    }

    TaskTable #task-results {
        height: 1fr;
        border-top: solid $surface-darken-2;
    }
    """

    def __init__(self, session_manager: SessionManager, *, row_limit: int = 500) -> None:
        super().__init__(id="task-table")
        self._session_manager = session_manager
        self._row_limit = row_limit
        self._title: Static | None = None
        self._stats: Static | None = None
        self._stages: Static | None = None
        self._table: DataTable | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("No queue selected", id="queue-title", classes="panel-title")
        yield Static("", id="queue-stats")
        yield Static("", id="stage-tabs")
        yield DataTable(id="task-results", zebra_stripes=True)

    async def on_mount(self) -> None:
        self._title = self.query_one("#queue-title", Static)
        self._stats = self.query_one("#queue-stats", Static)
        self._stages = self.query_one("#stage-tabs", Static)
        self._table = self.query_one("#task-results", DataTable)
        self._table.cursor_type = "row"
        self._table.add_columns(*TASK_COLUMNS)
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self._render_header(state)
        self._render_tasks(state.tasks)

    def _render_header(self, state: SessionState) -> None:
        if not self._title or not self._stats or not self._stages:
            return
        if state.selected_queue is None:
            self._title.update("No queue selected")
            self._stats.update("")
        else:
            paused = state.stats.paused if state.stats else False
            badge = " [paused]" if paused else ""
            self._title.update(f"{state.selected_queue}{badge}")
            self._stats.update(format_stats(state))
        tabs = [f"[{stage}]" if stage == state.stage else stage for stage in LIFECYCLE_STAGES]
        self._stages.update("Stage: " + "  ".join(tabs))

    def _render_tasks(self, tasks: tuple[Task, ...]) -> None:
        if not self._table:
            return
        self._table.clear()
        for task in tasks[: self._row_limit]:
            self._table.add_row(*task_row(task))


def format_stats(state: SessionState) -> str:
    stats = state.stats
    if stats is None:
        return "Stats unavailable"
    memory = f"{state.memory_mb} MB" if state.memory_mb is not None else "n/a"
    return (
        f"pending {stats.pending} · scheduled {stats.scheduled} · active {stats.active} · "
        f"completed {stats.completed} · failed {stats.failed} · memory {memory}"
    )


def task_row(task: Task) -> tuple[str, ...]:
    return (
        task.uuid,
        task.type,
        _truncate(task.payload),
        f"{task.retry_count}/{task.max_retry}",
        task.schedule_time or "",
        task.cron or "",
        task.dequeue_time or "",
        _truncate(task.result or ""),
    )


def _truncate(value: str, limit: int = 48) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 1] + "…"


__all__ = ["TaskTable", "format_stats", "task_row"]
