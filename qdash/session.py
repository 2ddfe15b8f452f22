"""Single-user dashboard session wiring the facade into the terminal UI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from .config import AppConfig, EndpointProfileConfig
from .connections import StoreError
from .keys import LIFECYCLE_STAGES
from .models import EndpointProfile, QueueStats, Task
from .queries import QueueFacade, StoreNotConnectedError
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

LOCAL_SESSION_ID = "local"

SessionListener = Callable[["SessionState"], None]


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current dashboard snapshot (active endpoint + selected queue data)."""

    profile: EndpointProfile
    connected: bool
    refreshed_at: datetime
    queues: tuple[str, ...] = ()
    selected_queue: str | None = None
    stage: str = LIFECYCLE_STAGES[0]
    stats: QueueStats | None = None
    memory_mb: int | None = None
    tasks: tuple[Task, ...] = ()
    status: str = "Connected"
    last_error: str | None = None


class SessionManager:
    """Drives one registry session on behalf of the Textual app."""

    def __init__(
        self,
        facade: QueueFacade,
        *,
        config: AppConfig,
        session_id: str = LOCAL_SESSION_ID,
    ) -> None:
        self._facade = facade
        self._config = config
        self._session_id = session_id
        self._profiles = tuple(self._from_config(entry) for entry in config.profiles)
        self._listeners: set[SessionListener] = set()
        self._state: SessionState | None = None

    @property
    def profiles(self) -> tuple[EndpointProfile, ...]:
        """Profiles available in the current config."""

        return self._profiles

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def registry(self) -> ConnectionRegistry:
        return self._facade.registry

    @property
    def active_profile_name(self) -> str | None:
        if self._state:
            return self._state.profile.name
        return None

    def initial_profile_name(self) -> str | None:
        """Profile to connect on startup: the configured one, else the first."""

        if self._config.active_profile and self._config.profile_named(self._config.active_profile):
            return self._config.active_profile
        return self._profiles[0].name if self._profiles else None

    async def connect(self, name: str) -> SessionState:
        """Point the session at the named profile's endpoint and load its queues.

        Raises ``ValueError`` for unknown profiles. Store failures are kept on
        the returned state instead of being raised.
        """

        profile = self._profile_by_name(name)
        try:
            await self.registry.connect(self._session_id, profile.url)
        except StoreError as exc:
            LOG.warning("Connect failed", extra={"session": self._session_id, "profile": profile.name})
            self._set_state(
                SessionState(
                    profile=profile,
                    connected=False,
                    refreshed_at=_now(),
                    status="Unreachable",
                    last_error=str(exc),
                )
            )
            return self._state  # type: ignore[return-value]
        self._set_state(SessionState(profile=profile, connected=True, refreshed_at=_now()))
        await self.refresh()
        return self._state  # type: ignore[return-value]

    async def disconnect(self) -> None:
        await self.registry.disconnect(self._session_id)
        if self._state:
            self._set_state(
                replace(
                    self._state,
                    connected=False,
                    status="Disconnected",
                    stats=None,
                    memory_mb=None,
                    tasks=(),
                    refreshed_at=_now(),
                )
            )

    async def refresh(self) -> None:
        """Reload the queue list and the selected queue's stats, memory and tasks."""

        state = self._state
        if state is None:
            return
        try:
            queues = tuple(await self._facade.list_queues(self._session_id))
            selected = state.selected_queue if state.selected_queue in queues else (queues[0] if queues else None)
            stats: QueueStats | None = None
            memory_mb: int | None = None
            tasks: tuple[Task, ...] = ()
            if selected is not None:
                stats = await self._facade.get_stats(self._session_id, selected)
                memory_mb = await self._facade.get_memory_usage_mb(self._session_id, selected)
                tasks = tuple(await self._facade.list_tasks(self._session_id, selected, state.stage))
        except StoreNotConnectedError as exc:
            self._set_state(
                replace(state, connected=False, status="Disconnected", last_error=str(exc), refreshed_at=_now())
            )
            return
        except StoreError as exc:
            self._set_state(replace(state, status="Degraded", last_error=str(exc), refreshed_at=_now()))
            return
        self._set_state(
            replace(
                state,
                connected=True,
                queues=queues,
                selected_queue=selected,
                stats=stats,
                memory_mb=memory_mb,
                tasks=tasks,
                status="Connected",
                last_error=None,
                refreshed_at=_now(),
            )
        )

    async def select_queue(self, queue: str) -> None:
        if self._state is None or queue not in self._state.queues:
            return
        self._state = replace(self._state, selected_queue=queue)
        await self.refresh()

    async def select_stage(self, stage: str) -> None:
        if stage not in LIFECYCLE_STAGES:
            raise ValueError(f"Unknown lifecycle stage '{stage}'.")
        if self._state is None:
            return
        self._state = replace(self._state, stage=stage)
        await self.refresh()

    async def cycle_stage(self) -> None:
        if self._state is None:
            return
        index = LIFECYCLE_STAGES.index(self._state.stage)
        await self.select_stage(LIFECYCLE_STAGES[(index + 1) % len(LIFECYCLE_STAGES)])

    async def toggle_pause(self) -> bool | None:
        """Flip the selected queue's pause flag; returns the new flag."""

        state = self._state
        if state is None or state.selected_queue is None or state.stats is None:
            return None
        paused = not state.stats.paused
        try:
            await self._facade.set_paused(self._session_id, state.selected_queue, paused)
        except StoreError as exc:
            self._set_state(replace(state, last_error=str(exc), refreshed_at=_now()))
            return None
        await self.refresh()
        return paused

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        if self._state:
            listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _profile_by_name(self, name: str) -> EndpointProfile:
        for profile in self._profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' not found.")

    @staticmethod
    def _from_config(profile: EndpointProfileConfig) -> EndpointProfile:
        return EndpointProfile(name=profile.name, url=profile.url)

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        for listener in tuple(self._listeners):
            listener(state)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


__all__ = ["LOCAL_SESSION_ID", "SessionManager", "SessionState"]
