"""Sidebar widget listing endpoint profiles and the queues of the active one."""

from __future__ import annotations

from typing import Callable

from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Label, ListItem, ListView, Static

from qdash.session import SessionManager, SessionState


class QueueSidebar(Container):
    """Displays saved endpoints, the queue list and a connection summary."""

    DEFAULT_CSS = """
    QueueSidebar {
        width: 28;
        min-width: 22;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    QueueSidebar .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    QueueSidebar .sidebar-section {
        margin-bottom: 2;
    }

    #profile-list {
        height: 6;
        border: round $primary 30%;
        margin-bottom: 2;
    }

    #queue-list {
        height: 1fr;
        min-height: 4;
        border: round $primary 30%;
    }

    #profile-list .active, #queue-list .active {
        text-style: bold;
    }

    #profile-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        min-height: 4;
    }
    """

    def __init__(self, session_manager: SessionManager, *, width: int | None = None) -> None:
        super().__init__(id="queue-sidebar")
        if width is not None:
            self.styles.width = width
        self._session_manager = session_manager
        self._profile_list: ListView | None = None
        self._profile_items: dict[str, _NamedListItem] = {}
        self._queue_list: ListView | None = None
        self._queues: tuple[str, ...] = ()
        self._profile_summary: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Endpoints", classes="sidebar-heading")
        items = [_NamedListItem(profile.name) for profile in self._session_manager.profiles]
        self._profile_items = {item.item_name: item for item in items}
        self._profile_list = ListView(*items, id="profile-list")
        yield self._profile_list
        yield Static("Queues", classes="sidebar-heading")
        self._queue_list = ListView(id="queue-list")
        yield self._queue_list
        self._profile_summary = Static("Not connected.", id="profile-summary", classes="sidebar-section")
        yield self._profile_summary

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self._render_profiles(state)
        self._render_queues(state)
        self._render_summary(state)

    def _render_profiles(self, state: SessionState) -> None:
        if not self._profile_list:
            return
        for idx, profile in enumerate(self._session_manager.profiles):
            item = self._profile_items.get(profile.name)
            if item is None:
                continue
            active = profile.name == state.profile.name
            item.set_class(active, "active")
            if active:
                self._profile_list.index = idx

    def _render_queues(self, state: SessionState) -> None:
        if not self._queue_list:
            return
        if state.queues != self._queues:
            self._queues = state.queues
            self._queue_list.clear()
            for queue in state.queues:
                self._queue_list.append(_NamedListItem(queue))
        for item in self._queue_list.query(_NamedListItem):
            item.set_class(item.item_name == state.selected_queue, "active")

    def _render_summary(self, state: SessionState) -> None:
        if not self._profile_summary:
            return
        lines = [
            f"Endpoint: {state.profile.name}",
            f"Status: {state.status}",
            f"Queues: {len(state.queues)}",
        ]
        if state.last_error:
            lines.append(f"Error: {state.last_error.splitlines()[0][:60]}")
        self._profile_summary.update("\n".join(lines))

    @on(ListView.Selected)
    async def _handle_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if not isinstance(item, _NamedListItem):
            return
        event.stop()
        if event.list_view.id == "profile-list":
            switcher = getattr(self.app, "switch_profile", None)
            if switcher is not None:
                await switcher(item.item_name)
        elif event.list_view.id == "queue-list":
            await self._session_manager.select_queue(item.item_name)


class _NamedListItem(ListItem):
    """List item remembering the name it renders."""

    def __init__(self, name: str) -> None:
        super().__init__(Label(name))
        self.item_name = name


__all__ = ["QueueSidebar"]
