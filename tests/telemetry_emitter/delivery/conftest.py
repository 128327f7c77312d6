"""Shared fixtures for delivery tests."""

import pytest

from telemetry_emitter.delivery.context import SharedContext
from telemetry_emitter.delivery.queue import DeliveryQueue
from telemetry_emitter.delivery.storage import MemoryStorage
from telemetry_emitter.events.core import TrackerCore


@pytest.fixture
def storage():
    """In-memory queue storage."""
    return MemoryStorage()


@pytest.fixture
def shared_context():
    return SharedContext()


@pytest.fixture
def make_queue(storage, shared_context):
    """Factory for queues bound to the shared storage and context."""
    def _make(**kwargs):
        kwargs.setdefault("storage", storage)
        return DeliveryQueue("tracker-1", "ns", shared_context, **kwargs)

    return _make


@pytest.fixture
def core():
    """Tracker core producing JSON (non-base64) records."""
    return TrackerCore(base64_encode=False)
