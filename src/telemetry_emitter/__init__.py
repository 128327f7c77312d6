"""
Client-side telemetry emitter.

Turns application events into canonical wire payloads and delivers them
at-least-once to a remote collector through a durable outbound queue.
"""

from .config import EmitterConfig
from .delivery import DeliveryQueue, FileStorage, MemoryStorage, QueueState, SharedContext
from .emitter import Emitter
from .errors import CollectorNotConfiguredError, EmitterError
from .events import MetadataStore, PayloadEncoder, TrackerCore, to_snake_case

__all__ = [
    "CollectorNotConfiguredError",
    "DeliveryQueue",
    "Emitter",
    "EmitterConfig",
    "EmitterError",
    "FileStorage",
    "MemoryStorage",
    "MetadataStore",
    "PayloadEncoder",
    "QueueState",
    "SharedContext",
    "TrackerCore",
    "to_snake_case",
]

__version__ = "0.1.0"
