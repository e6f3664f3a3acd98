"""Predicate filtering on top of any async iterator.

``with_filter`` is meant to sit inside a subscription resolver::

    handler = with_filter(lambda: pubsub.as_async_iterator("ORDERS"), same_owner)
    feed = handler(root, args, context, info)

Every pull on the returned feed keeps pulling the wrapped iterator until the
predicate accepts a payload or the iterator ends. A predicate that never
accepts keeps the pull waiting until ``aclose()`` is called.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Set, Union

from .errors import PredicateFailure

log = logging.getLogger(__name__)

Predicate = Callable[[Any, Any, Any, Any], Union[bool, Awaitable[bool]]]
FeedFactory = Callable[[], AsyncIterator]


class FeedState(str, Enum):
    ACTIVE = "active"
    DRAINING = "draining"
    CLOSED = "closed"


class _Terminated(Exception):
    pass


class FilteredFeed:
    def __init__(self, feed: AsyncIterator, predicate: Predicate, args=None, context=None, info=None):
        self._feed = feed
        self._predicate = predicate
        self.args = args
        self.context = context
        self.info = info
        self._state = FeedState.ACTIVE
        self._outstanding = 0
        self._pending: Set[asyncio.Future] = set()
        self._close_task: Optional[asyncio.Future] = None

    @property
    def state(self) -> FeedState:
        return self._state

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._state is not FeedState.ACTIVE:
            raise StopAsyncIteration
        self._outstanding += 1
        try:
            while True:
                try:
                    payload = await self._settle(self._feed.__anext__())
                except StopAsyncIteration:
                    self._state = FeedState.CLOSED
                    raise
                if await self._accepts(payload):
                    return payload
        except _Terminated:
            raise StopAsyncIteration from None
        finally:
            self._outstanding -= 1
            if self._state is FeedState.DRAINING and not self._outstanding:
                self._state = FeedState.CLOSED

    async def _accepts(self, payload) -> bool:
        try:
            result = self._predicate(payload, self.args, self.context, self.info)
            if inspect.isawaitable(result):
                result = await self._settle(result)
        except _Terminated:
            raise
        except Exception as exc:
            log.warning("predicate_failed", exc_info=exc)
            raise PredicateFailure(payload) from exc
        if self._state is not FeedState.ACTIVE:
            raise _Terminated()
        return bool(result)

    async def _settle(self, awaitable):
        """Await ``awaitable`` unless the feed is terminated first."""
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._pending.discard(task)
        if task.cancelled():
            raise _Terminated()
        if self._state is not FeedState.ACTIVE:
            # mark the outcome retrieved; termination wins over it
            task.exception()
            raise _Terminated()
        return task.result()

    async def aclose(self):
        if self._close_task is None:
            if self._state is FeedState.ACTIVE:
                self._state = FeedState.DRAINING if self._outstanding else FeedState.CLOSED
            self._close_task = asyncio.ensure_future(self._shutdown())
        # every caller returns only once teardown has finished
        await asyncio.shield(self._close_task)

    async def _shutdown(self):
        pending = [task for task in self._pending if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        close = getattr(self._feed, "aclose", None)
        if close is not None:
            await close()

    async def athrow(self, exc: BaseException):
        await self.aclose()
        raise exc

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


def with_filter(feed_factory: FeedFactory, predicate: Predicate):
    def handler(root=None, args=None, context=None, info=None) -> FilteredFeed:
        return FilteredFeed(feed_factory(), predicate, args, context, info)

    return handler
