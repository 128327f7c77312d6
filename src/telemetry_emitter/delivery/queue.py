"""Durable outbound queue draining payload records to the collector."""

from __future__ import annotations

import asyncio
import json
import uuid
from enum import Enum
from typing import Union

import httpx

from telemetry_emitter.delivery.context import SharedContext
from telemetry_emitter.delivery.storage import FileStorage, QueueStorage, get_queue_key
from telemetry_emitter.errors import CollectorNotConfiguredError
from telemetry_emitter.events.core import current_time_millis
from telemetry_emitter.events.payload import PayloadEncoder
from telemetry_emitter.output import warn

# Fixed per-send deadline; the in-flight request is aborted when it expires
SEND_TIMEOUT_SECONDS = 5.0

# Not a preflight-triggering content type
CONTENT_TYPE = "text/plain"

QueueEntry = Union[PayloadEncoder, str]


class QueueState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"


def is_sendable(entry: object) -> bool:
    """Structural check applied to the head before each send."""
    return isinstance(entry, (PayloadEncoder, str))


def attach_batch_info(record: PayloadEncoder) -> PayloadEncoder:
    """Copy of record stamped with per-send delivery metadata."""
    stamped = PayloadEncoder.from_record(record.to_record())
    stamped.merge_metadata({
        "batchInfo": {
            "batchId": str(uuid.uuid4()),
            "totalEvents": 1,
            "source": "client",
            "serverTime": str(current_time_millis()),
        }
    })
    return stamped


class DeliveryQueue:
    """
    FIFO of payload records sent to the collector one at a time.

    The queue is either IDLE or DRAINING. Draining runs as a single asyncio
    task that sends the head, pops it on success and moves on; any failure
    leaves the head in place and returns to IDLE until the next enqueue or
    flush. Every mutation is mirrored to durable storage.

    enqueue(), flush() and drain() must be called from a running event loop.
    """

    def __init__(
        self,
        instance_id: str,
        namespace: str,
        shared_context: SharedContext,
        use_durable_storage: bool = True,
        api_version: str = "v1",
        environment: str = "production",
        *,
        storage: QueueStorage | None = None,
        client: httpx.AsyncClient | None = None,
        buffer_size: int = 1,
    ) -> None:
        """
        Initialize the queue and hydrate it from storage.

        Args:
            instance_id: Stable identifier of the owning tracker
            namespace: Tracker namespace
            shared_context: Process-wide coordination state
            use_durable_storage: Whether to persist the queue at all
            api_version: Collector API version used in the endpoint path
            environment: Deployment environment used in the endpoint path
            storage: Storage backend (defaults to FileStorage)
            client: HTTP client (one is created on first send if omitted)
            buffer_size: Queue length that triggers sending
        """
        self.instance_id = instance_id
        self.namespace = namespace
        self.path = f"/log/{api_version}/{environment}"
        self.queue_name = get_queue_key(instance_id, namespace)
        self.buffer_size = max(1, buffer_size)
        self.state = QueueState.IDLE

        if use_durable_storage:
            self._storage: QueueStorage | None = storage if storage is not None else FileStorage()
        else:
            self._storage = None

        self._client = client
        self._owns_client = client is None
        self._collector_url: str | None = None
        self._drain_task: asyncio.Task[None] | None = None
        self._entries: list[object] = self._hydrate()

        shared_context.register(self)

    # ========================================================================
    # Persistence
    # ========================================================================

    def _hydrate(self) -> list[object]:
        """Load the persisted queue; anything unusable yields an empty queue."""
        if self._storage is None:
            return []

        raw = self._storage.read(self.queue_name)
        if raw is None:
            return []

        try:
            stored = json.loads(raw)
        except ValueError as e:
            warn(f"Discarding corrupted queue {self.queue_name}: {e}")
            return []

        if not isinstance(stored, list):
            warn(f"Discarding queue {self.queue_name}: stored value is not a list")
            return []

        return [self._restore_entry(item) for item in stored]

    def _restore_entry(self, item: object) -> object:
        if isinstance(item, dict):
            try:
                return PayloadEncoder.from_record(item)
            except ValueError as e:
                # Left in place as-is; drain() discards it when it reaches the head
                warn(f"Malformed entry in queue {self.queue_name}: {e}")
        return item

    def _persist(self) -> bool:
        """
        Write the whole queue to storage.

        Returns:
            False when storage is disabled or the write failed
        """
        if self._storage is None:
            return False

        snapshot = [
            entry.to_record() if isinstance(entry, PayloadEncoder) else entry
            for entry in self._entries
        ]
        try:
            value = json.dumps(snapshot, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            warn(f"Cannot serialize queue {self.queue_name}: {e}")
            return False

        return self._storage.write(self.queue_name, value)

    # ========================================================================
    # Public operations
    # ========================================================================

    def enqueue(self, payload: QueueEntry, endpoint_base: str | None) -> None:
        """
        Append a record and start sending when appropriate.

        The entry is queued and persisted even when no collector is known yet.

        Args:
            payload: Record to deliver (or an already encoded body)
            endpoint_base: Collector base URL (None keeps the last known one)

        Raises:
            CollectorNotConfiguredError: If endpoint_base is not a valid URL, or
                draining starts without a collector
        """
        self._entries.append(payload)
        saved = self._persist()

        if endpoint_base:
            self.set_collector(endpoint_base)

        # Unsaved entries would not survive a restart, so send them right away
        if self.state is QueueState.IDLE and (not saved or len(self._entries) >= self.buffer_size):
            self.drain()

    def set_collector(self, endpoint_base: str) -> None:
        """
        Remember the collector URL for endpoint_base.

        Raises:
            CollectorNotConfiguredError: If the resulting URL cannot be parsed
        """
        url = endpoint_base + self.path
        try:
            httpx.URL(url)
        except httpx.InvalidURL as e:
            raise CollectorNotConfiguredError(f"Invalid collector URL {url!r}: {e}") from e
        self._collector_url = url

    def drain(self) -> None:
        """
        Start the drain task if there is anything to send.

        Raises:
            CollectorNotConfiguredError: If no collector URL has been set
        """
        if self.state is QueueState.DRAINING:
            return

        if not self._discard_invalid_head():
            self.state = QueueState.IDLE
            return

        if not self._collector_url:
            raise CollectorNotConfiguredError("No collector configured, cannot track")

        loop = asyncio.get_running_loop()
        self.state = QueueState.DRAINING
        self._drain_task = loop.create_task(self._run())

    def flush(self) -> None:
        """Send queued entries now unless a drain is already running."""
        if self.state is QueueState.IDLE:
            self.drain()

    async def wait_idle(self) -> None:
        """Wait until no drain task is running."""
        while self._drain_task is not None:
            await asyncio.wait({self._drain_task})

    async def aclose(self) -> None:
        """Close the HTTP client if this queue created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def collector_url(self) -> str | None:
        return self._collector_url

    @property
    def entries(self) -> list[object]:
        """Snapshot of the queued entries, head first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ========================================================================
    # Drain loop
    # ========================================================================

    def _discard_invalid_head(self) -> bool:
        """
        Drop structurally invalid entries from the head.

        Returns:
            True if a sendable entry is now at the head
        """
        discarded = 0
        while self._entries and not is_sendable(self._entries[0]):
            self._entries.pop(0)
            discarded += 1

        if discarded:
            warn(f"Discarded {discarded} invalid entr{'y' if discarded == 1 else 'ies'} from {self.queue_name}")
            self._persist()

        return bool(self._entries)

    async def _run(self) -> None:
        try:
            while await self._send_head():
                if not self._discard_invalid_head():
                    break
        finally:
            self.state = QueueState.IDLE
            self._drain_task = None

    async def _send_head(self) -> bool:
        """
        Send the head entry once.

        Returns:
            True if the head was removed and draining may continue
        """
        head = self._entries[0]

        try:
            body = head if isinstance(head, str) else attach_batch_info(head).encode()
        except (TypeError, ValueError) as e:
            warn(f"Discarding event that cannot be encoded: {e}")
            self._pop_head(head)
            return True

        try:
            response = await asyncio.wait_for(
                self._post(body), timeout=SEND_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            warn(f"Collector did not answer within {SEND_TIMEOUT_SECONDS}s, event kept for retry")
            return False
        except httpx.HTTPError as e:
            warn(f"Failed to reach collector ({e}), event kept for retry")
            return False

        if 200 <= response.status_code < 400:
            self._pop_head(head)
            return True

        warn(f"Collector rejected event with status {response.status_code}, event kept for retry")
        return False

    def _pop_head(self, head: object) -> None:
        if self._entries and self._entries[0] is head:
            self._entries.pop(0)
            self._persist()

    async def _post(self, body: str) -> httpx.Response:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS)
        return await self._client.post(
            str(self._collector_url),
            content=body,
            headers={"Content-Type": CONTENT_TYPE},
        )
