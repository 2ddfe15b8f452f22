"""Command palette providers for core dashboard actions."""

from __future__ import annotations

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionManager


class _SessionProvider(Provider):
    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None


class EndpointSwitchProvider(_SessionProvider):
    """Expose saved endpoint profiles to the command palette."""

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        for profile in manager.profiles:
            match = matcher.match(profile.name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Connect to: {matcher.highlight(profile.name)}",
                    command=self._build_callback(profile.name),
                    help="Point the dashboard at this endpoint.",
                )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        for profile in manager.profiles:
            yield DiscoveryHit(
                display=f"Connect to: {profile.name}",
                command=self._build_callback(profile.name),
                help="Point the dashboard at this endpoint.",
            )

    def _build_callback(self, name: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            switcher = getattr(self.app, "switch_profile", None)
            if switcher is None:
                return
            await switcher(name)

        return _run


class _ActionProvider(_SessionProvider):
    """Single palette entry that runs an app action."""

    LABEL = ""
    HELP = ""
    ACTION = ""

    async def search(self, query: str) -> Hits:
        if self._session_manager is None:
            return
        matcher = self.matcher(query)
        score = matcher.match(self.LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self.LABEL),
                command=self._build_callback(),
                help=self.HELP,
            )

    async def discover(self) -> Hits:
        if self._session_manager is None:
            return
        yield DiscoveryHit(
            display=self.LABEL,
            command=self._build_callback(),
            help=self.HELP,
        )

    def _build_callback(self) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            action = getattr(self.app, f"action_{self.ACTION}", None)
            if action is None:
                return
            await action()

        return _run


class DashboardRefreshProvider(_ActionProvider):
    """Expose a refresh of queues, stats and tasks."""

    LABEL = "Refresh queues"
    HELP = "Trigger Ctrl+R equivalent refresh."
    ACTION = "refresh"


class PauseToggleProvider(_ActionProvider):
    """Expose pause/unpause for the selected queue."""

    LABEL = "Pause or resume selected queue"
    HELP = "Toggle the queue's membership in the paused-queues set."
    ACTION = "toggle_pause"


__all__ = ["DashboardRefreshProvider", "EndpointSwitchProvider", "PauseToggleProvider"]
