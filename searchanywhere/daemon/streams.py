"""Async state streams, combinators and task ownership.

All stream operations must be called from the event loop thread. Blocking work
goes through ``Dispatchers`` so the loop never waits on a collaborator.
"""

import asyncio
import functools
from contextlib import aclosing
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import (Any, AsyncIterable, AsyncIterator, Callable, Coroutine, Generic, List,
                    Optional, Set, Tuple, TypeVar)

from loguru import logger

T = TypeVar("T")
R = TypeVar("R")

_MISSING = object()


class StateStream(Generic[T]):
    """
    Holds the latest value and pushes it to every subscriber.

    Subscribers receive the current value first, then every later value.
    Delivery is conflated: a slow subscriber only sees the newest value.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        for queue in list(self._subscribers):
            _offer_latest(queue, value)

    async def subscribe(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        queue.put_nowait(self._value)
        self._subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    def __aiter__(self) -> AsyncIterator[T]:
        return self.subscribe()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


def _offer_latest(queue: asyncio.Queue, value: Any) -> None:
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(value)


async def map_stream(source: AsyncIterable[T], transform: Callable[[T], R]) -> AsyncIterator[R]:
    async for value in source:
        yield transform(value)


async def combine_latest(*sources: AsyncIterable[Any]) -> AsyncIterator[Tuple[Any, ...]]:
    """
    Combine the latest values of several streams.

    Nothing is yielded until every source produced at least one value. After
    that a tuple of the latest values is yielded whenever any source changes.
    A failure in any source is raised to the consumer.
    """
    latest: List[Any] = [_MISSING] * len(sources)
    changed = asyncio.Event()
    failures: List[BaseException] = []
    finished = 0

    async def pump(index: int, source: AsyncIterable[Any]) -> None:
        nonlocal finished
        try:
            async for value in source:
                latest[index] = value
                changed.set()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failures.append(e)
        finished += 1
        changed.set()

    tasks = [asyncio.create_task(pump(i, s)) for i, s in enumerate(sources)]
    try:
        while True:
            await changed.wait()
            changed.clear()

            if failures:
                raise failures[0]

            if all(value is not _MISSING for value in latest):
                yield tuple(latest)

            if finished == len(sources) and not changed.is_set():
                return
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class Dispatchers:
    """
    The two worker pools of the service.

    ``io`` runs blocking collaborator calls (catalogs, the index, app
    resolution). ``compute`` runs ranking so a slow index build never delays
    ranking of results that are already available.
    """

    def __init__(self, io: Executor, compute: Executor):
        self.io = io
        self.compute = compute

    @classmethod
    def create(cls, io_workers: int = 4, compute_workers: int = 2) -> "Dispatchers":
        return cls(
            io=ThreadPoolExecutor(max_workers=io_workers, thread_name_prefix="sa-io"),
            compute=ThreadPoolExecutor(max_workers=compute_workers, thread_name_prefix="sa-compute"),
        )

    async def run_io(self, func: Callable[..., R], *args, **kwargs) -> R:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.io, functools.partial(func, *args, **kwargs))

    async def run_compute(self, func: Callable[..., R], *args, **kwargs) -> R:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.compute, functools.partial(func, *args, **kwargs))

    def shutdown(self) -> None:
        self.io.shutdown(wait=False, cancel_futures=True)
        self.compute.shutdown(wait=False, cancel_futures=True)


class TaskScope:
    """
    Owns background tasks so shutdown and tests can await or cancel them.

    Failed tasks are logged when they finish; ``join`` re-raises the first
    failure.
    """

    def __init__(self, name: str = "scope"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._failures: List[BaseException] = []

    def spawn(self, coro: Coroutine[Any, Any, T], name: Optional[str] = None) -> "asyncio.Task[T]":
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Task {task.get_name()} in {self.name} failed: {error}")
            self._failures.append(error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until no task is outstanding, including tasks spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._failures:
            failure = self._failures[0]
            self._failures.clear()
            raise failure

    async def cancel(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def first_matching(stream: StateStream[T], predicate: Callable[[T], bool],
                         timeout: Optional[float] = None) -> T:
    """Wait for the first value of ``stream`` satisfying ``predicate``."""

    async def wait() -> T:
        async with aclosing(stream.subscribe()) as values:
            async for value in values:
                if predicate(value):
                    return value
        raise RuntimeError("state stream ended")

    return await asyncio.wait_for(wait(), timeout)
