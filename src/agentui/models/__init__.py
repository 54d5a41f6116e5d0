"""Configuration models."""

from agentui.models.config_models import RelayConfig, ShimConfig

__all__ = ["RelayConfig", "ShimConfig"]
