"""
Outbound delivery.

This package provides the durable outbound queue, its storage backends and
the coordination state shared between queues.

Storage Format:
- Queue: ~/.telemetry-emitter/queues/<key>.json (JSON array of pre-encoding records)
- Key: telemetryOutQueue_<instance_id>_<namespace>
"""

from .context import SharedContext
from .storage import (
    FileStorage,
    MemoryStorage,
    QueueStorage,
    get_default_queue_dir,
    get_queue_key,
)
from .queue import DeliveryQueue, QueueState, SEND_TIMEOUT_SECONDS

__all__ = [
    "DeliveryQueue",
    "FileStorage",
    "MemoryStorage",
    "QueueState",
    "QueueStorage",
    "SEND_TIMEOUT_SECONDS",
    "SharedContext",
    "get_default_queue_dir",
    "get_queue_key",
]
