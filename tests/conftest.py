"""
Shared fixtures for tests that talk to a fake device over localhost.
"""

from collections.abc import AsyncIterator

import pytest
from fakes import FakeDevice

from lanbulb.session.session import Session


@pytest.fixture
async def device() -> AsyncIterator[FakeDevice]:
    """Start a fake device on an ephemeral localhost port."""
    fake = FakeDevice()
    await fake.start()
    yield fake
    await fake.stop()


@pytest.fixture
async def session(device: FakeDevice) -> AsyncIterator[Session]:
    """Session connected to the fake device."""
    client = await Session.connect("127.0.0.1", device.port, connect_timeout=2.0, response_timeout=2.0)
    yield client
    await client.close()
