"""Async message bus for ephemeral user-facing messages."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import ulid
from loguru import logger


@dataclass
class Message:
    """A transient message shown to the user once."""
    text: str
    type: str = "message"
    key: str = field(default_factory=lambda: str(ulid.ULID()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = None


class MessageBus:
    """
    Pub/sub bus for transient messages.

    Message types follow pattern: category.action
    Examples: catalog.error, open.failed, index.failed

    Pending messages are bounded. When full the oldest pending message is
    dropped so producers never block.
    """

    def __init__(self, capacity: int = 1):
        self._subscribers: Dict[str, List[Callable[[Message], Any]]] = defaultdict(list)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._stats = defaultdict(int)

    def subscribe(self, pattern: str, handler: Callable[[Message], Any]) -> None:
        """
        Subscribe to messages matching pattern.
        Pattern can use wildcards: 'index.*' matches all index messages.
        """
        self._subscribers[pattern].append(handler)
        logger.debug(f"Subscribed handler to pattern: {pattern}")

    def unsubscribe(self, pattern: str, handler: Callable[[Message], Any]) -> None:
        self._subscribers[pattern] = [h for h in self._subscribers[pattern] if h != handler]

    def emit_nowait(self, message: Message) -> bool:
        """
        Queue a message without waiting.
        Returns False if an older pending message had to be dropped.
        """
        dropped = None
        if self._queue.full():
            dropped = self._queue.get_nowait()
            self._stats["dropped"] += 1
            logger.debug(f"Message queue full, dropping oldest: {dropped.type}")

        self._queue.put_nowait(message)
        self._stats["emitted"] += 1
        logger.debug(f"Emitted message: {message.type}")
        return dropped is None

    async def emit(self, message: Message) -> bool:
        return self.emit_nowait(message)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the message processor."""
        if self._running:
            logger.warning("Message bus already running")
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_messages())
        logger.info("Message bus started")

    async def stop(self) -> None:
        """Stop the message processor."""
        self._running = False
        if self._processor_task:
            self._processor_task.cancel()
            await asyncio.gather(self._processor_task, return_exceptions=True)
            self._processor_task = None
        logger.info("Message bus stopped")

    async def _process_messages(self) -> None:
        while self._running:
            message = await self._queue.get()
            await self._dispatch(message)
            self._stats["processed"] += 1

    async def _dispatch(self, message: Message) -> None:
        handlers = []
        for pattern, subscribed in self._subscribers.items():
            if self._matches_pattern(message.type, pattern):
                handlers.extend(subscribed)

        if not handlers:
            return

        tasks = []
        for handler in handlers:
            if asyncio.iscoroutinefunction(handler):
                tasks.append(asyncio.create_task(handler(message)))
            else:
                # Wrap sync handlers
                tasks.append(asyncio.create_task(asyncio.to_thread(handler, message)))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Handler error for message {message.type}: {result}")
                self._stats["handler_errors"] += 1

    def _matches_pattern(self, message_type: str, pattern: str) -> bool:
        """Check if message type matches subscription pattern."""
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return message_type.startswith(prefix + ".")
        return message_type == pattern

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset_stats(self) -> None:
        self._stats.clear()
