"""Unit tests for subscribe(): receive -> consume -> selective delete, until cancelled."""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from pollchannel.app.application.message_channel import PollingMessageChannel
from pollchannel.app.constants import RECEIVE_BATCH_LIMIT
from pollchannel.app.domain.errors import ChannelArgumentError, ConsumerError, TransportError
from tests.test_doubles import FakeEndpointClient, SpyConsumer, make_messages, settle


def _channel(client: FakeEndpointClient, lines: list[str] | None = None) -> PollingMessageChannel:
    hook = lines.append if lines is not None else None
    return PollingMessageChannel(client, "QURL:test", timedelta(0), status_hook=hook)


def _subscribed(messages, *, receives: int = 1, **client_kwargs):
    cancel_event = asyncio.Event()
    client = FakeEndpointClient(
        messages,
        cancel_event=cancel_event,
        cancel_after_receives=receives,
        **client_kwargs,
    )
    return client, cancel_event


def test_subscribe_requires_consumer():
    channel = _channel(FakeEndpointClient())
    with pytest.raises(ChannelArgumentError):
        channel.subscribe(None)  # type: ignore[arg-type]
    with pytest.raises(ChannelArgumentError):
        channel.subscribe_batch(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_subscribe_returns_task_without_blocking_caller():
    client, cancel_event = _subscribed(make_messages(1))
    task = _channel(client).subscribe(SpyConsumer(True), cancel_event)

    assert isinstance(task, asyncio.Task)
    assert client.receive_count == 0

    with pytest.raises(asyncio.CancelledError):
        await settle(task)
    assert task.cancelled()


@pytest.mark.asyncio
async def test_two_messages_consumed_are_deleted_in_one_request():
    messages = make_messages(2)
    client, cancel_event = _subscribed(messages)
    consumer = SpyConsumer(True)
    lines: list[str] = []

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client, lines).subscribe(consumer, cancel_event))

    assert client.receive_calls == [("QURL:test", RECEIVE_BATCH_LIMIT)]
    assert len(client.delete_calls) == 1
    assert client.delete_calls[0][0] == "QURL:test"
    assert client.delete_calls[0][1] == [m.to_delete_entry() for m in messages]
    assert client.message_count == 0
    assert consumer.calls == [(m.body, cancel_event) for m in messages]
    assert lines == ["(10, 2, 2, 2)"]


@pytest.mark.asyncio
async def test_only_consumed_messages_are_deleted():
    messages = make_messages(2)
    client, cancel_event = _subscribed(messages)

    async def first_only(body, cancel_event):
        return body == messages[0].body

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client).subscribe(first_only, cancel_event))

    assert client.deleted_entries == [messages[0].to_delete_entry()]
    assert client.message_count == 1


@pytest.mark.asyncio
async def test_nothing_consumed_skips_delete_call():
    messages = make_messages(2)
    client, cancel_event = _subscribed(messages)
    lines: list[str] = []

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client, lines).subscribe(SpyConsumer(False), cancel_event))

    assert client.delete_calls == []
    assert client.message_count == 2
    assert lines == ["(10, 2, 0, 0)"]


@pytest.mark.asyncio
async def test_duplicate_bodies_are_deleted_by_receipt_handle():
    messages = make_messages(2, body=lambda i: "same body")
    client, cancel_event = _subscribed(messages)
    verdicts = iter([True, False])

    async def consume_once(body, cancel_event):
        return next(verdicts)

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client).subscribe(consume_once, cancel_event))

    assert client.deleted_entries == [messages[0].to_delete_entry()]
    assert client.deleted_entries[0].receipt_handle != messages[1].receipt_handle


@pytest.mark.parametrize(
    "message_count, receives",
    [(0, 1), (9, 1), (9, 2), (10, 1), (11, 2)],
)
@pytest.mark.asyncio
async def test_consume_all_drains_store(message_count, receives):
    messages = make_messages(message_count)
    client, cancel_event = _subscribed(messages, receives=receives)
    consumer = SpyConsumer(True)

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client).subscribe(consumer, cancel_event))

    assert client.receive_count == receives
    assert all(max_count == RECEIVE_BATCH_LIMIT for _, max_count in client.receive_calls)
    assert client.message_count == 0
    assert [entry.id for entry in client.deleted_entries] == [m.id for m in messages]
    assert [body for body, _ in consumer.calls] == [m.body for m in messages]


@pytest.mark.asyncio
async def test_eleven_messages_are_received_ten_then_one():
    messages = make_messages(11)
    client, cancel_event = _subscribed(messages, receives=2)

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client).subscribe(SpyConsumer(True), cancel_event))

    assert [len(batch) for batch in client.received_batches] == [10, 1]
    assert len(client.delete_calls) == 2


@pytest.mark.asyncio
async def test_empty_receive_reports_no_message_and_skips_delete():
    client, cancel_event = _subscribed([], receives=1)
    lines: list[str] = []

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client, lines).subscribe(SpyConsumer(True), cancel_event))

    assert client.delete_calls == []
    assert lines == ["no message"]


@pytest.mark.asyncio
async def test_receive_failure_status_fails_subscribe_without_delete():
    client, cancel_event = _subscribed(make_messages(2), receive_status=400)
    consumer = SpyConsumer(True)

    with pytest.raises(TransportError) as excinfo:
        await settle(_channel(client).subscribe(consumer, cancel_event))

    assert excinfo.value.operation == "receive"
    assert excinfo.value.status_code == 400
    assert client.delete_calls == []
    assert consumer.calls == []
    assert client.message_count == 2


@pytest.mark.asyncio
async def test_receive_fault_is_wrapped_as_transport_error():
    cause = OSError("network down")
    client, cancel_event = _subscribed(make_messages(1), raise_on_receive=cause)

    with pytest.raises(TransportError) as excinfo:
        await settle(_channel(client).subscribe(SpyConsumer(True), cancel_event))

    assert excinfo.value.__cause__ is cause


@pytest.mark.asyncio
async def test_delete_failure_status_fails_subscribe_after_consuming():
    messages = make_messages(2)
    client, cancel_event = _subscribed(messages, delete_status=400)
    consumer = SpyConsumer(True)

    with pytest.raises(TransportError) as excinfo:
        await settle(_channel(client).subscribe(consumer, cancel_event))

    assert excinfo.value.operation == "delete_batch"
    assert len(consumer.calls) == 2
    assert client.deleted_entries == [m.to_delete_entry() for m in messages]
    assert client.receive_count == 1


@pytest.mark.asyncio
async def test_cancel_before_any_receive_performs_no_calls():
    client = FakeEndpointClient(make_messages(2))
    cancel_event = asyncio.Event()
    cancel_event.set()
    consumer = SpyConsumer(True)

    task = _channel(client).subscribe(consumer, cancel_event)
    with pytest.raises(asyncio.CancelledError):
        await settle(task)

    assert task.cancelled()
    assert client.receive_count == 0
    assert client.delete_calls == []
    assert consumer.calls == []


@pytest.mark.asyncio
async def test_native_task_cancellation_stops_idle_loop():
    client = FakeEndpointClient([])
    channel = PollingMessageChannel(client, "q", timedelta(seconds=30))

    task = channel.subscribe(SpyConsumer(True))
    while client.receive_count == 0:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await settle(task)
    assert client.receive_count == 1


@pytest.mark.asyncio
async def test_consumer_error_fails_subscribe_without_acknowledging():
    messages = make_messages(2)
    client, cancel_event = _subscribed(messages)
    finished: list[str] = []

    async def consumer(body, cancel_event):
        if body == messages[0].body:
            raise RuntimeError("poison")
        await asyncio.sleep(0.01)
        finished.append(body)
        return True

    with pytest.raises(ConsumerError) as excinfo:
        await settle(_channel(client).subscribe(consumer, cancel_event))

    assert isinstance(excinfo.value.cause, RuntimeError)
    assert excinfo.value.__cause__ is excinfo.value.cause
    assert finished == [messages[1].body]
    assert client.delete_calls == []
    assert client.message_count == 2


@pytest.mark.asyncio
async def test_cancel_during_consumption_unwinds_every_invocation():
    messages = make_messages(3)
    client = FakeEndpointClient(messages)
    cancel_event = asyncio.Event()
    started: list[str] = []
    unwound: list[str] = []

    async def consumer(body, cancel_event):
        started.append(body)
        try:
            await asyncio.Event().wait()
        finally:
            unwound.append(body)
        return True

    task = _channel(client).subscribe(consumer, cancel_event)
    while len(started) < len(messages):
        await asyncio.sleep(0)
    cancel_event.set()

    with pytest.raises(asyncio.CancelledError):
        await settle(task)

    assert sorted(unwound) == sorted(m.body for m in messages)
    assert client.delete_calls == []


@pytest.mark.asyncio
async def test_batch_consumer_missing_verdicts_count_as_not_consumed():
    messages = make_messages(3)
    client, cancel_event = _subscribed(messages)
    seen: list[list[str]] = []

    async def batch_consumer(bodies, cancel_event):
        seen.append(list(bodies))
        return [True]

    with pytest.raises(asyncio.CancelledError):
        await settle(_channel(client).subscribe_batch(batch_consumer, cancel_event))

    assert seen == [[m.body for m in messages]]
    assert client.deleted_entries == [messages[0].to_delete_entry()]


@pytest.mark.asyncio
async def test_failing_status_hook_does_not_stop_loop():
    messages = make_messages(1)
    client, cancel_event = _subscribed(messages, receives=2)

    def broken_hook(line):
        raise RuntimeError("sink down")

    channel = PollingMessageChannel(client, "q", timedelta(0), status_hook=broken_hook)
    with pytest.raises(asyncio.CancelledError):
        await settle(channel.subscribe(SpyConsumer(True), cancel_event))

    assert client.receive_count == 2
    assert client.message_count == 0


@pytest.mark.asyncio
async def test_cancel_during_delete_ends_cancelled_without_summary():
    messages = make_messages(2)
    cancel_event = asyncio.Event()
    unwound: list[bool] = []

    class BlockingDeleteClient(FakeEndpointClient):
        async def delete_batch(self, endpoint, entries):
            self.delete_calls.append((endpoint, list(entries)))
            cancel_event.set()
            try:
                await asyncio.Event().wait()
            finally:
                unwound.append(True)

    client = BlockingDeleteClient(messages)
    lines: list[str] = []
    task = _channel(client, lines).subscribe(SpyConsumer(True), cancel_event)

    with pytest.raises(asyncio.CancelledError):
        await settle(task)

    assert task.cancelled()
    assert len(client.delete_calls) == 1
    assert unwound == [True]
    assert lines == []
    assert client.message_count == 2
