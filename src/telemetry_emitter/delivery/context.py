"""Coordination state shared by every delivery queue of one process."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from telemetry_emitter.events.core import current_time_millis
from telemetry_emitter.output import warn

if TYPE_CHECKING:
    from telemetry_emitter.delivery.queue import DeliveryQueue


@dataclass
class SharedContext:
    """
    Explicit shared state passed to each DeliveryQueue at construction.

    Fields:
    - out_queues: Every registered queue (inspected by the unload guard)
    - buffer_flushers: Flush callbacks of queues that buffer before sending
    - expire_at: Epoch ms until which shutdown should wait for deliveries
    """
    out_queues: list[DeliveryQueue] = field(default_factory=list)
    buffer_flushers: list[Callable[[], None]] = field(default_factory=list)
    expire_at: int = 0

    def register(self, queue: DeliveryQueue) -> None:
        """Track a queue; buffering queues also get a flush callback."""
        self.out_queues.append(queue)
        if queue.buffer_size > 1:
            self.buffer_flushers.append(queue.flush)

    def flush_all(self) -> None:
        """Ask every buffering queue to start sending now."""
        for flusher in self.buffer_flushers:
            flusher()

    def pending(self) -> int:
        """Number of entries still queued across all queues."""
        return sum(len(queue) for queue in self.out_queues)

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """
        Unload guard: flush buffers and wait for in-flight drains to finish.

        Args:
            timeout: Seconds to wait; defaults to the time left until expire_at
                (no bound when expire_at is unset)

        Returns:
            True if every queue ended up empty
        """
        self.flush_all()

        if timeout is None and self.expire_at:
            timeout = max(0.0, (self.expire_at - current_time_millis()) / 1000)

        waiters = [queue.wait_idle() for queue in self.out_queues]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout)
        except asyncio.TimeoutError:
            warn(f"Stopped waiting for delivery with {self.pending()} event(s) still queued")

        return self.pending() == 0
