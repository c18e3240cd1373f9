"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from devlink.config import CleanupConfig, Config, PairingConfig, QrConfig
from devlink.linking.manager import LinkManager
from tests.fakes import FakeSocketFactory


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from devlink.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def fast_config(tmp_path):
    """Config with every delay shrunk to milliseconds."""
    return Config(
        sessions_dir=str(tmp_path / "sessions"),
        pairing=PairingConfig(welcome_delay=0.01, close_delay=0.01, cleanup_delay=0.05),
        qr=QrConfig(timeout=0.2, welcome_delay=0.01, close_dwell=0.02, reconnect_grace=0.15),
        cleanup=CleanupConfig(stale_after=3600.0, sweep_interval=0.0),
    )


@pytest.fixture
def socket_factory():
    """Factory of recording fake sockets."""
    return FakeSocketFactory()


@pytest_asyncio.fixture
async def manager(fast_config, socket_factory):
    """Link manager over fake sockets and a temporary sessions directory."""
    manager = LinkManager(socket_factory, fast_config)
    yield manager
    await manager.stop()
