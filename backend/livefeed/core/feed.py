import asyncio
import logging
import weakref
from collections import deque
from typing import Any, Deque, Iterable, List, Union

from .errors import InvalidTopic

log = logging.getLogger(__name__)

_END = object()


def _release(engine, subscription_ids: List[int]):
    # runs once, so every id gets its unsubscribe even if an earlier one fails
    errors = []
    for subscription_id in subscription_ids:
        try:
            engine.unsubscribe(subscription_id)
        except Exception as exc:
            errors.append(exc)
    if errors:
        raise errors[0]


class AsyncFeed:
    """Pull-based view over one or more broker topics.

    Payloads published while nobody is pulling are buffered oldest first;
    pulls issued while the buffer is empty wait for the next publish and
    are served in the order they were issued. The broker only holds a weak
    reference to the feed, so a feed dropped without ``aclose()`` releases
    its registrations when it is collected.
    """

    def __init__(self, engine, topics: Union[str, Iterable[str]], max_buffer: int = 0):
        if isinstance(topics, str):
            topics = [topics]
        self.topics = list(topics)
        if not self.topics:
            raise InvalidTopic(topics)
        self.max_buffer = max_buffer
        self._running = True
        self._pull_queue: Deque[asyncio.Future] = deque()
        self._push_queue: Deque[Any] = deque()

        ref = weakref.ref(self)

        def deliver(payload):
            feed = ref()
            if feed is not None:
                feed._push(payload)

        subscription_ids: List[int] = []
        self.subscription_ids = subscription_ids
        # callable once: every path that tears the feed down goes through it
        self._release = weakref.finalize(self, _release, engine, subscription_ids)
        self._release.atexit = False
        try:
            for topic in self.topics:
                subscription_ids.append(engine.subscribe(topic, deliver))
        except Exception:
            self._running = False
            self._release()
            raise

    @property
    def closed(self) -> bool:
        return not self._running

    def _push(self, payload):
        if not self._running:
            return
        while self._pull_queue:
            waiter = self._pull_queue.popleft()
            if not waiter.done():
                waiter.set_result(payload)
                return
        if self.max_buffer and len(self._push_queue) >= self.max_buffer:
            log.warning("feed_buffer_full", extra={"topic": ",".join(self.topics)})
            return
        self._push_queue.append(payload)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._running:
            raise StopAsyncIteration
        if self._push_queue:
            return self._push_queue.popleft()
        waiter = asyncio.get_running_loop().create_future()
        self._pull_queue.append(waiter)
        try:
            value = await waiter
        except asyncio.CancelledError:
            if waiter in self._pull_queue:
                self._pull_queue.remove(waiter)
            elif waiter.done() and not waiter.cancelled():
                # delivered just before the caller gave up; keep it for the next pull
                value = waiter.result()
                if value is not _END and self._running:
                    self._push_queue.appendleft(value)
            raise
        if value is _END:
            raise StopAsyncIteration
        return value

    def close(self):
        if not self._running:
            return
        self._running = False
        self._push_queue.clear()
        try:
            self._release()
        finally:
            while self._pull_queue:
                waiter = self._pull_queue.popleft()
                if not waiter.done():
                    waiter.set_result(_END)

    async def aclose(self):
        self.close()

    async def athrow(self, exc: BaseException):
        self.close()
        raise exc

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
