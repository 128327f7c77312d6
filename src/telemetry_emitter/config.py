"""Emitter configuration read from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from telemetry_emitter.delivery.storage import get_default_queue_dir

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class EmitterConfig:
    """
    Settings for one Emitter.

    Fields:
    - collector_url: Collector base URL (endpoint path is appended by the queue)
    - namespace: Tracker namespace, part of the queue storage key
    - instance_id: Tracker instance identifier, part of the queue storage key
    - api_version / environment: Collector endpoint path segments
    - base64_encode: Send base64 bodies instead of JSON text
    - do_not_track: Build records but never enqueue them
    - use_durable_storage: Persist the queue between runs
    - queue_dir: Directory for file-backed queues
    - page_unload_timer_ms: How long shutdown waits for pending deliveries
    """
    collector_url: str | None = None
    namespace: str = "default"
    instance_id: str = "telemetry"
    api_version: str = "v1"
    environment: str = "production"
    base64_encode: bool = True
    do_not_track: bool = False
    use_durable_storage: bool = True
    queue_dir: Path = field(default_factory=get_default_queue_dir)
    page_unload_timer_ms: int = 500

    @classmethod
    def from_env(cls) -> "EmitterConfig":
        """Build a config from TELEMETRY_* environment variables."""
        queue_dir = os.getenv("TELEMETRY_QUEUE_DIR")
        unload_timer = os.getenv("TELEMETRY_PAGE_UNLOAD_TIMER_MS", "500")

        try:
            page_unload_timer_ms = int(unload_timer)
        except ValueError as e:
            raise ValueError(
                f"TELEMETRY_PAGE_UNLOAD_TIMER_MS must be an integer, got {unload_timer!r}"
            ) from e

        return cls(
            collector_url=os.getenv("TELEMETRY_COLLECTOR_URL") or None,
            namespace=os.getenv("TELEMETRY_NAMESPACE", "default"),
            instance_id=os.getenv("TELEMETRY_INSTANCE_ID", "telemetry"),
            api_version=os.getenv("TELEMETRY_API_VERSION", "v1"),
            environment=os.getenv("TELEMETRY_ENVIRONMENT", "production"),
            base64_encode=_env_flag("TELEMETRY_BASE64", True),
            do_not_track=_env_flag("TELEMETRY_DO_NOT_TRACK", False),
            use_durable_storage=_env_flag("TELEMETRY_DURABLE_STORAGE", True),
            queue_dir=Path(queue_dir) if queue_dir else get_default_queue_dir(),
            page_unload_timer_ms=page_unload_timer_ms,
        )
