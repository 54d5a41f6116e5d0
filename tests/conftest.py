"""Pytest configuration for the agent UI test suite."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from agentui.container import reset_container
from agentui.domains.relay import RelayService
from agentui.models.config_models import RelayConfig, ShimConfig
from agentui.page import Document, load_html
from tests.utils.builders import APP_PAGE, FakeClock


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "timing: tests that depend on real asyncio timer behaviour",
    )


@pytest.fixture(autouse=True)
def _fresh_container():
    """Every test starts from a clean service container."""
    reset_container()
    yield
    reset_container()


@pytest.fixture
def app_page() -> Document:
    return load_html(APP_PAGE, url="http://shop.test/checkout")


@pytest.fixture
def fast_config() -> ShimConfig:
    """Shim timings shrunk so timer-driven tests finish quickly."""
    return ShimConfig(
        snapshot_window=0.05,
        focus_min_interval=0.05,
        field_debounce=0.05,
        wait_poll_interval=0.01,
        default_wait_timeout=0.5,
        command_poll_interval=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(
        context_idle_ttl=60.0,
        command_ttl=30.0,
        max_in_flight_commands=2,
        max_events_per_minute=100,
    )


@pytest.fixture
def relay(relay_config: RelayConfig, clock: FakeClock) -> RelayService:
    return RelayService(config=relay_config, clock=clock)


@pytest.fixture
def sent() -> List[Dict[str, Any]]:
    """Collects outbound messages handed to a pipeline."""
    return []

