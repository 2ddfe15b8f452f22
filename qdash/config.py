"""App configuration loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".config" / "qdash" / "config.toml"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LayoutState(BaseModel):
    """Persisted layout hints for the TUI."""

    sidebar_width: int | None = None


class EndpointProfileConfig(BaseModel):
    """Saved store endpoint stored in config.toml."""

    name: str
    url: str


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    key_prefix: str = "cppq"
    scan_count: int = 100
    connect_timeout: float = 3.0
    log_level: str = "WARNING"
    profiles: list[EndpointProfileConfig] = Field(default_factory=lambda: list(_default_profiles()))
    active_profile: str | None = None
    layout: LayoutState = Field(default_factory=LayoutState)

    def with_active_profile(self, name: str) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": name})

    def with_layout(self, **updates: object) -> AppConfig:
        """Return a copy with layout state changes applied."""

        layout = self.layout.model_copy(update=updates)
        return self.model_copy(update={"layout": layout})

    def profile_named(self, name: str) -> EndpointProfileConfig | None:
        for profile in self.profiles:
            if profile.name == name:
                return profile
        return None


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    defaults = AppConfig.model_fields
    profiles_data = data.get("profiles")
    profiles: list[EndpointProfileConfig] | None = None
    if isinstance(profiles_data, list):
        profiles = [
            EndpointProfileConfig(**profile)
            for profile in profiles_data  # type: ignore[list-item]
            if isinstance(profile, dict)
        ]

    return AppConfig(
        theme=data.get("theme", defaults["theme"].default),
        key_prefix=data.get("key_prefix", defaults["key_prefix"].default),
        scan_count=data.get("scan_count", defaults["scan_count"].default),
        connect_timeout=data.get("connect_timeout", defaults["connect_timeout"].default),
        log_level=data.get("log_level", defaults["log_level"].default),
        profiles=profiles if profiles is not None else list(_default_profiles()),
        active_profile=data.get("active_profile"),
        layout=data.get("layout", LayoutState()),
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'theme = "{config.theme}"',
        f'key_prefix = "{config.key_prefix}"',
        f"scan_count = {config.scan_count}",
        f"connect_timeout = {config.connect_timeout}",
        f'log_level = "{config.log_level}"',
    ]
    if config.active_profile:
        lines.append(f'active_profile = "{config.active_profile}"')
    if config.layout.sidebar_width is not None:
        lines.append("")
        lines.append("[layout]")
        lines.append(f"sidebar_width = {config.layout.sidebar_width}")
    if config.profiles:
        lines.append("")
        for profile in config.profiles:
            lines.append("[[profiles]]")
            lines.append(f'name = "{profile.name}"')
            lines.append(f'url = "{profile.url}"')
            lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if isinstance(raw, dict):
        for key in ("theme", "key_prefix", "active_profile"):
            value = raw.get(key)
            if isinstance(value, str) and value:
                data[key] = value
        log_level = raw.get("log_level")
        if isinstance(log_level, str) and log_level.upper() in LOG_LEVELS:
            data["log_level"] = log_level.upper()
        scan_count = raw.get("scan_count")
        if isinstance(scan_count, int) and not isinstance(scan_count, bool) and scan_count > 0:
            data["scan_count"] = scan_count
        timeout = raw.get("connect_timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            data["connect_timeout"] = float(timeout)
        profiles = raw.get("profiles")
        if isinstance(profiles, list):
            parsed_profiles: list[dict[str, object]] = []
            for profile in profiles:
                if not isinstance(profile, dict):
                    continue
                name = profile.get("name")
                url = profile.get("url")
                if isinstance(name, str) and name and isinstance(url, str) and url:
                    parsed_profiles.append({"name": name, "url": url})
            if parsed_profiles:
                data["profiles"] = parsed_profiles
        layout = raw.get("layout")
        if isinstance(layout, dict):
            state: dict[str, object] = {}
            sidebar_width = layout.get("sidebar_width")
            if isinstance(sidebar_width, int):
                state["sidebar_width"] = sidebar_width
            data["layout"] = LayoutState(**state)
    return data


def _default_profiles() -> tuple[EndpointProfileConfig, ...]:
    """Default profiles shown on first run before config is customized."""

    return (
        EndpointProfileConfig(name="Local Demo", url="demo://local"),
        EndpointProfileConfig(name="Local Redis", url="redis://localhost:6379/0"),
    )


__all__ = [
    "CONFIG_FILE",
    "AppConfig",
    "EndpointProfileConfig",
    "LayoutState",
    "load_config",
    "save_config",
]
