"""Textual application entry point for qdash."""

from __future__ import annotations

import logging
from typing import Callable

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Footer, Header

from .config import AppConfig, load_config, save_config
from .connections import StoreClientFactory
from .keys import QueueKeys
from .providers import DashboardRefreshProvider, EndpointSwitchProvider, PauseToggleProvider
from .queries import QueueFacade
from .registry import ConnectionRegistry
from .session import SessionManager, SessionState
from .widgets import QueueSidebar, StatusBar, TaskTable

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


class QdashApp(App[None]):
    """Terminal dashboard for cppq queues behind one store endpoint at a time."""

    COMMANDS = App.COMMANDS | {EndpointSwitchProvider, DashboardRefreshProvider, PauseToggleProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 1 2;
        height: 1fr;
        border-left: solid $surface-darken-1;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Refresh"),
        ("ctrl+t", "toggle_pause", "Pause/Resume"),
        ("ctrl+n", "next_stage", "Next stage"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(self, registry: ConnectionRegistry | None = None) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._registry = registry or ConnectionRegistry(
            StoreClientFactory(
                connect_timeout=self._config.connect_timeout,
                key_prefix=self._config.key_prefix,
            )
        )
        facade = QueueFacade(
            self._registry,
            keys=QueueKeys(self._config.key_prefix),
            scan_count=self._config.scan_count,
        )
        self._session_manager = SessionManager(facade, config=self._config)
        self._last_session_state: SessionState | None = None
        self._pending_notifications: list[tuple[str, str]] = []
        self._session_unsubscribe: Callable[[], None] | None = self._session_manager.subscribe(
            self._handle_session_state
        )

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        sidebar = QueueSidebar(self._session_manager, width=self._config.layout.sidebar_width)
        main_column = Container(TaskTable(self._session_manager), id="main-column")
        yield Horizontal(sidebar, main_column, id="content")
        yield StatusBar(self._session_manager)
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        name = self._session_manager.initial_profile_name()
        if name:
            self.run_worker(self.switch_profile(name), exclusive=True, group="connect")

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests."""

        return self._session_manager

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    async def action_refresh(self) -> None:
        await self._session_manager.refresh()

    async def action_toggle_pause(self) -> None:
        paused = await self._session_manager.toggle_pause()
        state = self._session_manager.state
        if paused is None or state is None:
            return
        verb = "Paused" if paused else "Resumed"
        self._safe_notify(f"{verb} queue {state.selected_queue}.")

    async def action_next_stage(self) -> None:
        await self._session_manager.cycle_stage()

    async def switch_profile(self, name: str) -> None:
        """Connect to the requested endpoint profile and persist the choice."""

        try:
            state = await self._session_manager.connect(name)
        except ValueError as exc:
            self._safe_notify(str(exc), severity="error")
            return
        if not state.connected:
            return
        self._config = self._config.with_active_profile(state.profile.name)
        save_config(self._config)
        self._safe_notify(f"Connected to {state.profile.name}.")

    async def _shutdown(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        await self._registry.shutdown()
        await super()._shutdown()

    def _handle_session_state(self, state: SessionState) -> None:
        previous = self._last_session_state
        if state.last_error and (previous is None or previous.last_error != state.last_error):
            reason = state.last_error.splitlines()[0][:120]
            self._safe_notify(f"{state.profile.name}: {reason}", severity="warning")
        self._last_session_state = state

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"notification": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"notification": message})


def main() -> None:
    """Invoke the Textual application."""

    QdashApp().run()


if __name__ == "__main__":
    main()
