"""Configuration data models."""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from agentui.domains.shared import COMMAND_NAMES


def _coerce(current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, tuple):
        return tuple(item.strip() for item in raw.split(",") if item.strip())
    return raw


class _ConfigMixin:
    """Dictionary and environment loading shared by the config dataclasses."""

    ENV_PREFIX = "AGENTUI_"

    @classmethod
    def from_dict(cls, config: Dict) -> Any:
        """Create configuration from dictionary."""
        instance = cls()
        for key, value in config.items():
            if hasattr(instance, key):
                setattr(instance, key, value)
        return instance

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Any:
        """Create configuration from ``AGENTUI_<FIELD>`` environment variables.

        Example: ``AGENTUI_SNAPSHOT_WINDOW=0.5`` sets ``snapshot_window``.
        """
        env = os.environ if environ is None else environ
        instance = cls()
        for f in fields(instance):
            raw = env.get(f"{cls.ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            current = getattr(instance, f.name)
            try:
                setattr(instance, f.name, _coerce(current, raw))
            except ValueError as e:
                raise ValueError(
                    f"Invalid value for {cls.ENV_PREFIX}{f.name.upper()}: {raw!r}"
                ) from e
        return instance

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary."""
        return {
            key: value for key, value in self.__dict__.items()
            if not key.startswith('_')
        }

    def update(self, **kwargs) -> None:
        """Update configuration values."""
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown configuration key: {key}")
            setattr(self, key, value)


@dataclass
class ShimConfig(_ConfigMixin):
    """Timing and addressing settings for the page agent shim.

    All durations are in seconds.
    """

    # Emission windows
    snapshot_window: float = 1.0  # structural snapshots: one per window, trailing
    focus_min_interval: float = 0.2  # focus.changed cap
    field_debounce: float = 0.5  # field.changed trailing debounce
    snapshot_history: int = 10  # snapshots retained locally

    # Commands
    wait_poll_interval: float = 0.1  # waitFor polling period
    default_wait_timeout: float = 5.0  # waitFor timeout when none is given
    command_poll_interval: float = 0.5  # 0 disables the shim's poll loop
    result_memo_size: int = 256  # recently executed requestIds kept by the shim

    # Identity
    reserved_view_prefixes: Tuple[str, ...] = ("view:agent:",)

    # Attributes whose changes trigger structural recomputation
    observed_attributes: Tuple[str, ...] = (
        "hidden",
        "open",
        "style",
        "class",
        "aria-hidden",
        "inert",
        "data-assist-route",
        "data-assist-view",
        "data-assist-panel",
        "data-assist-modal",
    )


@dataclass
class RelayConfig(_ConfigMixin):
    """Retention, delivery and policy limits for the relay store."""

    context_idle_ttl: float = 900.0  # seconds (15 minutes)
    sweep_interval: float = 60.0  # seconds between idle sweeps
    snapshot_history: int = 10
    command_ttl: float = 30.0  # seconds before an unacknowledged command expires
    max_in_flight_commands: int = 2  # per context
    max_events_per_minute: int = 600  # per context
    event_log_size: int = 500  # developer event log entries
    result_retention: int = 1000  # idempotency entries kept per context
    allowed_commands: Tuple[str, ...] = field(default_factory=lambda: tuple(COMMAND_NAMES))

    # HTTP bridge
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 7420
    bridge_token: str = "change-me"
