"""Widget library for the Textual UI."""

from __future__ import annotations

from .queue_sidebar import QueueSidebar
from .status_bar import StatusBar
from .task_table import TaskTable

__all__ = ["QueueSidebar", "StatusBar", "TaskTable"]
