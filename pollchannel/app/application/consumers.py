"""Consumer invocation: one polymorphic batch form, plus an adapter for per-message predicates."""
from __future__ import annotations

import asyncio
from typing import Sequence

from pollchannel.app.application.cancellation import run_cancellable
from pollchannel.app.domain.errors import ConsumerError
from pollchannel.app.domain.models import Message
from pollchannel.app.ports.message_channel import BatchConsumer, MessageConsumer


def as_batch_consumer(consumer: MessageConsumer) -> BatchConsumer:
    """Fan a per-message predicate out over a batch.

    One task per body; all of them settle before anything is inspected, so a failing
    invocation never abandons the others in flight. Verdicts keep the batch order.
    """

    async def consume_batch(bodies: Sequence[str], cancel_event: asyncio.Event | None) -> list[bool]:
        outcomes = await asyncio.gather(
            *(consumer(body, cancel_event) for body in bodies),
            return_exceptions=True,
        )
        if any(isinstance(outcome, asyncio.CancelledError) for outcome in outcomes):
            raise asyncio.CancelledError("consumer invocation was cancelled")
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return [outcome is True for outcome in outcomes]

    return consume_batch


def consumed_messages(messages: Sequence[Message], verdicts: Sequence[bool]) -> list[Message]:
    """Messages whose verdict is literally True; a missing verdict counts as not consumed."""
    return [message for message, verdict in zip(messages, verdicts) if verdict is True]


async def invoke_consumer(
    consumer: BatchConsumer,
    messages: Sequence[Message],
    cancel_event: asyncio.Event | None,
) -> list[bool]:
    """Run the batch consumer to completion and return verdicts aligned with `messages`."""
    bodies = [message.body for message in messages]
    try:
        verdicts = await run_cancellable(consumer(bodies, cancel_event), cancel_event)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        raise ConsumerError("The consumer failed.", exc) from exc

    verdicts = list(verdicts or [])
    if len(verdicts) < len(messages):
        verdicts.extend([False] * (len(messages) - len(verdicts)))
    return [verdict is True for verdict in verdicts[: len(messages)]]
