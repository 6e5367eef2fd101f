"""
Pytest configuration and shared fixtures.

This module registers the custom markers and provides the fake clock,
manual scheduler and fake process spawner shared by the suite.
"""

import pytest

from tests.helpers import FakeSpawner, ManualScheduler


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (may use DB, network, filesystem, real processes)"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def scheduler() -> ManualScheduler:
    """A scheduler that only fires timers when the test advances its fake clock."""
    return ManualScheduler()


@pytest.fixture
def spawner() -> FakeSpawner:
    """A spawn callable handing out fake worker processes."""
    return FakeSpawner()


@pytest.fixture
def supervisor_config():
    """Supervisor settings used by most tests. Tests copy and adjust it."""
    return {
        "MAX_RESTARTS": 50,
        "RESTART_WINDOW_SECONDS": 300,
        "RESTART_DELAY_SECONDS": 5,
        "HEALTH_POLL_INTERVAL": 30,
        "EXIT_POLL_INTERVAL": 1,
        "RUNNING_GRACE_PERIOD": 30,
        "GRACEFUL_SHUTDOWN_TIMEOUT": 10,
        "RESTART_EXIT_CODE": 75,
        "EXIT_ON_RESTART_REQUIRED": False,
    }


@pytest.fixture
def watchdog_config():
    """Watchdog settings with the host keep-alive probe off."""
    return {
        "ACTIVITY_INTERVAL": 30,
        "HEARTBEAT_INTERVAL": 20,
        "HEALTH_CHECK_INTERVAL": 60,
        "INTEGRITY_CHECK_INTERVAL": 300,
        "HOST_KEEPALIVE_INTERVAL": 10,
        "HOST_KEEPALIVE_ENABLED": False,
        "MAX_MISSED_HEARTBEATS": 3,
        "ACTIVITY_STALL_SECONDS": 300,
        "HEALTHY_LATENCY_MS": 1000,
    }
