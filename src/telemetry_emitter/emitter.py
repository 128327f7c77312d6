"""Emitter: wires a tracker core to a durable delivery queue."""

from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from telemetry_emitter.config import EmitterConfig
from telemetry_emitter.delivery.context import SharedContext
from telemetry_emitter.delivery.queue import DeliveryQueue
from telemetry_emitter.delivery.storage import FileStorage, QueueStorage
from telemetry_emitter.events.core import TrackerCore, current_time_millis
from telemetry_emitter.events.payload import PayloadEncoder


class Emitter:
    """
    Builds payload records and hands them to the outbound queue.

    One Emitter corresponds to one tracker instance. Several emitters may
    share a SharedContext so that shutdown can wait for all of them.
    """

    def __init__(
        self,
        config: EmitterConfig,
        shared_context: SharedContext | None = None,
        *,
        storage: QueueStorage | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.shared_context = shared_context if shared_context is not None else SharedContext()

        self.core = TrackerCore(base64_encode=config.base64_encode)
        self.core.set_tracker_namespace(config.namespace)
        self.core.set_environment(config.environment)

        self.queue = DeliveryQueue(
            config.instance_id,
            config.namespace,
            self.shared_context,
            config.use_durable_storage,
            config.api_version,
            config.environment,
            storage=storage if storage is not None else FileStorage(config.queue_dir),
            client=client,
        )

    def track(
        self,
        event_type: str,
        ctx: Mapping[str, Any] | None = None,
        metadata: Iterable[Mapping[str, Any]] | None = None,
        tstamp: int | None = None,
    ) -> PayloadEncoder:
        """
        Build a record and enqueue it for delivery.

        Nothing is enqueued when do_not_track is set.

        Returns:
            The built record

        Raises:
            CollectorNotConfiguredError: If sending starts without a collector URL
        """
        record = self.core.track(event_type, ctx, metadata, tstamp)

        if not self.config.do_not_track:
            self.queue.enqueue(record, self.config.collector_url)
            self.shared_context.expire_at = current_time_millis() + self.config.page_unload_timer_ms

        return record

    def flush(self) -> None:
        self.queue.flush()

    async def aclose(self) -> None:
        """Wait for in-flight delivery (bounded by the unload timer), then close."""
        await self.shared_context.wait_until_drained()
        await self.queue.aclose()
