"""Tests for the message bus."""

import asyncio

import pytest

from searchanywhere.daemon.bus import Message, MessageBus


@pytest.mark.asyncio
async def test_message_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = MessageBus(capacity=4)
    await bus.start()

    received = []

    async def handler(message: Message):
        received.append(message)

    bus.subscribe("catalog.*", handler)
    await bus.emit(Message(text="failed to read apps", type="catalog.error", source="apps"))

    # Give time for processing
    await asyncio.sleep(0.1)

    assert len(received) == 1
    assert received[0].text == "failed to read apps"
    assert received[0].source == "apps"

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    bus = MessageBus(capacity=4)
    await bus.start()

    everything = []
    opens = []

    async def all_handler(message: Message):
        everything.append(message)

    async def open_handler(message: Message):
        opens.append(message)

    bus.subscribe("*", all_handler)
    bus.subscribe("open.failed", open_handler)

    await bus.emit(Message(text="a", type="open.failed"))
    await asyncio.sleep(0.05)
    await bus.emit(Message(text="b", type="index.failed"))
    await asyncio.sleep(0.1)

    assert [m.text for m in everything] == ["a", "b"]
    assert [m.text for m in opens] == ["a"]

    await bus.stop()


@pytest.mark.asyncio
async def test_overflow_drops_oldest():
    """Producers never block; only the newest pending messages survive."""
    bus = MessageBus(capacity=1)

    assert bus.emit_nowait(Message(text="first")) is True
    assert bus.emit_nowait(Message(text="second")) is False
    assert bus.emit_nowait(Message(text="third")) is False
    assert bus.pending == 1
    assert bus.get_stats()["dropped"] == 2

    received = []
    bus.subscribe("*", lambda m: received.append(m.text))
    await bus.start()
    await asyncio.sleep(0.1)

    assert received == ["third"]
    await bus.stop()


@pytest.mark.asyncio
async def test_handler_errors_are_counted():
    bus = MessageBus(capacity=2)
    await bus.start()

    async def failing(message: Message):
        raise ValueError("handler failed")

    bus.subscribe("*", failing)
    await bus.emit(Message(text="x"))
    await asyncio.sleep(0.1)

    stats = bus.get_stats()
    assert stats["handler_errors"] == 1
    assert stats["processed"] == 1

    await bus.stop()


def test_messages_have_unique_keys():
    assert Message(text="a").key != Message(text="a").key
