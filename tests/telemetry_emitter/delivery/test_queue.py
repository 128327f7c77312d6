"""Unit tests for the durable delivery queue."""

import asyncio
import base64
import json

import httpx
import pytest
import respx

from telemetry_emitter.delivery import queue as queue_module
from telemetry_emitter.delivery.queue import QueueState, is_sendable
from telemetry_emitter.delivery.storage import MemoryStorage
from telemetry_emitter.errors import CollectorNotConfiguredError
from telemetry_emitter.events.payload import PayloadEncoder

COLLECTOR = "https://collector.example.com"
COLLECTOR_ENDPOINT = f"{COLLECTOR}/log/v1/production"
QUEUE_KEY = "telemetryOutQueue_tracker-1_ns"


def _sent_event_type(request: httpx.Request) -> str:
    return json.loads(request.content)["events"][0]["type"]


def _stored(storage: MemoryStorage) -> list:
    return json.loads(storage.items[QUEUE_KEY])


# ============================================================================
# Hydration
# ============================================================================


def test_queue_starts_empty_without_stored_value(make_queue):
    """A missing storage key yields an empty queue."""
    queue = make_queue()

    assert len(queue) == 0
    assert queue.state is QueueState.IDLE
    assert queue.queue_name == QUEUE_KEY


@pytest.mark.parametrize("stored", ["not json{", '{"a": 1}', '"text"', "null", "42"])
def test_queue_ignores_unusable_stored_value(make_queue, storage, stored):
    """Corrupt JSON or a non-array value does not raise and yields an empty queue."""
    storage.items[QUEUE_KEY] = stored

    queue = make_queue()

    assert len(queue) == 0


def test_queue_hydrates_stored_records(make_queue, storage, core):
    """Stored record snapshots come back as payload records in order."""
    first = core.track("pageView", {"url": "a"})
    second = core.track("pagePing", {"url": "a"})
    storage.items[QUEUE_KEY] = json.dumps([first.to_record(), second.to_record(), "cHJlZW5jb2RlZA=="])

    queue = make_queue()

    assert len(queue) == 3
    restored_first, restored_second, encoded = queue.entries
    assert restored_first.fields["eventId"] == first.fields["eventId"]
    assert restored_second.fields["type"] == "pagePing"
    assert encoded == "cHJlZW5jb2RlZA=="


def test_queue_registers_with_shared_context(make_queue, shared_context):
    """Queues register themselves; buffering queues also register a flusher."""
    immediate = make_queue()
    buffering = make_queue(buffer_size=3)

    assert shared_context.out_queues == [immediate, buffering]
    assert shared_context.buffer_flushers == [buffering.flush]


def test_is_sendable():
    """Only records and strings are structurally valid entries."""
    assert is_sendable(PayloadEncoder())
    assert is_sendable("encoded")
    assert not is_sendable(None)
    assert not is_sendable({"fields": {}})
    assert not is_sendable(42)


# ============================================================================
# Enqueue
# ============================================================================


def test_enqueue_persists_whole_queue(make_queue, storage, core):
    """Every enqueue writes the full queue to storage."""
    queue = make_queue(buffer_size=5)

    queue.enqueue(core.track("pageView", {"url": "a"}), COLLECTOR)
    queue.enqueue(core.track("pagePing", {"url": "a"}), COLLECTOR)

    stored = _stored(storage)
    assert [entry["fields"]["type"] for entry in stored] == ["pageView", "pagePing"]
    assert queue.state is QueueState.IDLE
    assert queue.collector_url == COLLECTOR_ENDPOINT


def test_enqueue_uses_api_version_and_environment_in_url(make_queue, core):
    """The collector URL is endpoint base + /log/<version>/<environment>."""
    queue = make_queue(api_version="v2", environment="staging", buffer_size=5)

    queue.enqueue(core.track("pageView", {}), COLLECTOR)

    assert queue.collector_url == f"{COLLECTOR}/log/v2/staging"


def test_enqueue_without_collector_raises_but_keeps_entry(make_queue, storage, core):
    """Draining without a collector is a configuration error; the entry stays queued."""
    queue = make_queue()

    with pytest.raises(CollectorNotConfiguredError, match="No collector configured"):
        queue.enqueue(core.track("pageView", {}), None)

    assert len(queue) == 1
    assert len(_stored(storage)) == 1
    assert queue.state is QueueState.IDLE


def test_flush_on_empty_queue_is_noop(make_queue):
    """Flushing an empty queue needs neither a collector nor an event loop."""
    queue = make_queue()

    queue.flush()

    assert queue.state is QueueState.IDLE


def test_drain_without_event_loop_stays_idle(make_queue, storage, core):
    """Starting a send outside an event loop fails without wedging the queue."""
    queue = make_queue()

    with pytest.raises(RuntimeError):
        queue.enqueue(core.track("pageView", {}), COLLECTOR)

    assert queue.state is QueueState.IDLE
    assert len(queue) == 1
    assert len(_stored(storage)) == 1


@pytest.mark.asyncio
async def test_queue_drains_after_failed_start_outside_loop(make_queue, core, respx_mock):
    """A queue whose first drain had no loop still sends once a loop is running."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue()

    def enqueue_without_loop():
        queue.enqueue(core.track("pageView", {}), COLLECTOR)

    with pytest.raises(RuntimeError):
        await asyncio.to_thread(enqueue_without_loop)

    queue.flush()
    await queue.wait_idle()

    assert route.call_count == 1
    assert len(queue) == 0


def test_invalid_collector_url_raises_but_keeps_entry(make_queue, storage, core):
    """A malformed collector base is a configuration error; the entry stays queued."""
    queue = make_queue()

    with pytest.raises(CollectorNotConfiguredError, match="Invalid collector URL"):
        queue.enqueue(core.track("pageView", {}), "http://[::1")

    assert queue.collector_url is None
    assert queue.state is QueueState.IDLE
    assert len(queue) == 1
    assert len(_stored(storage)) == 1


# ============================================================================
# Draining
# ============================================================================


@pytest.mark.asyncio
async def test_successful_send_empties_queue_and_storage(make_queue, storage, core, respx_mock):
    """A 200 response pops the head and persists an empty array."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {"url": "a"}), COLLECTOR)
    assert queue.state is QueueState.DRAINING

    await queue.wait_idle()

    assert route.call_count == 1
    assert len(queue) == 0
    assert _stored(storage) == []
    assert queue.state is QueueState.IDLE


@pytest.mark.asyncio
async def test_send_attaches_batch_info_and_plain_text_body(make_queue, core, respx_mock):
    """Each send carries per-send batch metadata in a text/plain body."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(204))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {"pageUrl": "a"}), COLLECTOR)
    await queue.wait_idle()

    request = route.calls.last.request
    assert request.headers["Content-Type"] == "text/plain"

    payload = json.loads(request.content)
    batch_info = payload["batch_info"]
    assert batch_info["total_events"] == 1
    assert batch_info["source"] == "client"
    assert batch_info["batch_id"]
    assert batch_info["server_time"].isdigit()
    assert payload["events"][0]["ctx"] == {"page_url": "a"}
    assert "event_id" in payload["events"][0]


@pytest.mark.asyncio
async def test_send_base64_body(make_queue, respx_mock):
    """Binary-encoded records are sent as base64 text."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    record = PayloadEncoder()
    record.copy_dict({"type": "pageView", "ctx": {"url": "a"}})
    queue = make_queue()

    queue.enqueue(record, COLLECTOR)
    await queue.wait_idle()

    body = route.calls.last.request.content
    payload = json.loads(base64.b64decode(body).decode("utf-8"))
    assert payload["events"] == [{"type": "page_view", "ctx": {"url": "a"}}]


@pytest.mark.asyncio
async def test_string_entries_are_sent_verbatim(make_queue, respx_mock):
    """Pre-encoded string entries are posted as they are."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue()

    queue.enqueue("cHJlZW5jb2RlZA==", COLLECTOR)
    await queue.wait_idle()

    assert route.calls.last.request.content == b"cHJlZW5jb2RlZA=="
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_entries_are_sent_in_fifo_order(make_queue, core, respx_mock):
    """An entry enqueued during a send is sent after the outstanding one."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert [_sent_event_type(call.request) for call in route.calls] == ["page_view", "page_ping"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_failure_status_keeps_head_and_stops(make_queue, storage, core, respx_mock):
    """A failure response leaves every entry queued and never tries the next one."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(500))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert route.call_count == 1
    assert _sent_event_type(route.calls.last.request) == "page_view"
    assert len(queue) == 2
    assert len(_stored(storage)) == 2
    assert queue.state is QueueState.IDLE


@pytest.mark.asyncio
async def test_failed_send_keeps_stored_record_unstamped(make_queue, storage, core, respx_mock):
    """Per-send batch metadata never reaches the queued record or storage."""
    respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(500))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    await queue.wait_idle()
    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert "batchInfo" not in queue.entries[0].metadata
    assert all("batchInfo" not in entry["metadata"] for entry in _stored(storage))


@pytest.mark.asyncio
async def test_network_error_keeps_head(make_queue, core, respx_mock):
    """Transport errors are absorbed and the entry stays queued."""
    respx_mock.post(COLLECTOR_ENDPOINT).mock(side_effect=httpx.ConnectError("Connection failed"))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    await queue.wait_idle()

    assert len(queue) == 1
    assert queue.state is QueueState.IDLE


@pytest.mark.asyncio
async def test_next_trigger_retries_head(make_queue, core, respx_mock):
    """After a failure the next enqueue resends the old head first."""
    route = respx_mock.post(COLLECTOR_ENDPOINT)
    route.side_effect = [httpx.Response(503), httpx.Response(200), httpx.Response(200)]
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    await queue.wait_idle()
    assert len(queue) == 1

    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert [_sent_event_type(call.request) for call in route.calls] == [
        "page_view",
        "page_view",
        "page_ping",
    ]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_timeout_keeps_entry_and_returns_to_idle(make_queue, core, monkeypatch):
    """A send that outlives the timeout is aborted and the entry kept."""
    monkeypatch.setattr(queue_module, "SEND_TIMEOUT_SECONDS", 0.05)

    async def slow_collector(request):
        await asyncio.sleep(1)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(slow_collector))
    queue = make_queue(client=client)

    try:
        queue.enqueue(core.track("pageView", {}), COLLECTOR)
        await queue.wait_idle()

        assert len(queue) == 1
        assert queue.state is QueueState.IDLE

        queue.flush()
        await queue.wait_idle()

        assert len(queue) == 1
        assert queue.state is QueueState.IDLE
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_flush_while_draining_does_not_start_second_send(make_queue, core, respx_mock):
    """Only one send is ever in flight."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue()

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    queue.flush()
    queue.drain()
    await queue.wait_idle()

    assert route.call_count == 1


@pytest.mark.asyncio
async def test_storage_failure_drains_immediately(core, shared_context, respx_mock):
    """When the queue cannot be persisted it is sent right away, even when buffering."""
    from telemetry_emitter.delivery.queue import DeliveryQueue

    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = DeliveryQueue(
        "tracker-1", "ns", shared_context, storage=MemoryStorage(quota=10), buffer_size=5
    )

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    assert queue.state is QueueState.DRAINING
    await queue.wait_idle()

    assert route.call_count == 1
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_without_durable_storage_sends_immediately(core, shared_context, storage, respx_mock):
    """Memory-only queues never touch storage and always drain right away."""
    from telemetry_emitter.delivery.queue import DeliveryQueue

    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = DeliveryQueue(
        "tracker-1", "ns", shared_context, use_durable_storage=False, storage=storage, buffer_size=5
    )

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    await queue.wait_idle()

    assert route.call_count == 1
    assert storage.items == {}


@pytest.mark.asyncio
async def test_buffering_queue_waits_for_threshold(make_queue, core, respx_mock):
    """With buffer_size > 1 sending starts once the threshold is reached."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    queue = make_queue(buffer_size=2)

    queue.enqueue(core.track("pageView", {}), COLLECTOR)
    assert queue.state is QueueState.IDLE

    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert route.call_count == 2
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_invalid_head_entries_are_discarded(make_queue, storage, core, respx_mock):
    """Structurally invalid entries are skipped before sending."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    valid = core.track("pageView", {})
    storage.items[QUEUE_KEY] = json.dumps([None, 42, {}, {"fields": {}}, valid.to_record()])

    queue = make_queue()
    assert len(queue) == 5

    queue.set_collector(COLLECTOR)
    queue.flush()
    await queue.wait_idle()

    assert route.call_count == 1
    assert len(queue) == 0
    assert _stored(storage) == []


@pytest.mark.asyncio
async def test_unencodable_entry_is_discarded(make_queue, core, respx_mock):
    """A record whose fields cannot be serialized is dropped, the rest is sent."""
    route = respx_mock.post(COLLECTOR_ENDPOINT).mock(return_value=httpx.Response(200))
    broken = PayloadEncoder(False)
    broken.add("type", "pageView")
    broken.add("ctx", {"when": object()})
    queue = make_queue(use_durable_storage=False)

    queue.enqueue(broken, COLLECTOR)
    queue.enqueue(core.track("pagePing", {}), COLLECTOR)
    await queue.wait_idle()

    assert [_sent_event_type(call.request) for call in route.calls] == ["page_ping"]
    assert len(queue) == 0
