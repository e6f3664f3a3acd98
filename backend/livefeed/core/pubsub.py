import asyncio
import inspect
import itertools
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .errors import InvalidTopic, UnknownSubscription
from .feed import AsyncFeed

log = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


def validate_topic(topic) -> str:
    if not isinstance(topic, str) or not topic.strip():
        raise InvalidTopic(topic)
    return topic


class PubSubEngine(ABC):
    """Contract shared by broker implementations.

    Subclasses only provide the registry operations; turning a topic into a
    pullable feed is the same for every engine.
    """

    @abstractmethod
    def publish(self, topic: str, payload: Any) -> int:
        ...

    @abstractmethod
    def subscribe(self, topic: str, on_payload: Listener) -> int:
        ...

    @abstractmethod
    def unsubscribe(self, subscription_id: int) -> None:
        ...

    def as_async_iterator(self, topics: Union[str, Iterable[str]], max_buffer: int = 0) -> AsyncFeed:
        return AsyncFeed(self, topics, max_buffer=max_buffer)


class PubSub(PubSubEngine):
    """In-process broker keyed by topic string."""

    def __init__(self, strict_unsubscribe: bool = False, max_buffer: int = 0):
        self.strict_unsubscribe = strict_unsubscribe
        self.max_buffer = max_buffer
        self._ids = itertools.count(1)
        self._subscriptions: Dict[int, Tuple[str, Listener]] = {}
        self._topics: Dict[str, List[int]] = defaultdict(list)
        self._pending: Set[asyncio.Future] = set()

    def subscribe(self, topic: str, on_payload: Listener) -> int:
        validate_topic(topic)
        subscription_id = next(self._ids)
        self._subscriptions[subscription_id] = (topic, on_payload)
        self._topics[topic].append(subscription_id)
        log.debug("subscribed", extra={"topic": topic, "subscription_id": subscription_id})
        return subscription_id

    def unsubscribe(self, subscription_id: int) -> None:
        entry = self._subscriptions.pop(subscription_id, None)
        if entry is None:
            if self.strict_unsubscribe:
                raise UnknownSubscription(subscription_id)
            log.debug("unsubscribe_unknown", extra={"subscription_id": subscription_id})
            return
        topic = entry[0]
        ids = self._topics[topic]
        ids.remove(subscription_id)
        if not ids:
            del self._topics[topic]
        log.debug("unsubscribed", extra={"topic": topic, "subscription_id": subscription_id})

    def publish(self, topic: str, payload: Any) -> int:
        validate_topic(topic)
        delivered = 0
        # snapshot: listeners added during fan-out wait for the next publish
        for subscription_id in list(self._topics.get(topic, ())):
            entry = self._subscriptions.get(subscription_id)
            if entry is None:
                # removed earlier in this same fan-out
                continue
            try:
                result = entry[1](payload)
            except Exception:
                log.exception("listener_failed", extra={"topic": topic, "subscription_id": subscription_id})
                continue
            if inspect.isawaitable(result) and not self._schedule(result, topic, subscription_id):
                continue
            delivered += 1
        return delivered

    def _schedule(self, awaitable, topic: str, subscription_id: int):
        try:
            fut = asyncio.ensure_future(awaitable, loop=asyncio.get_running_loop())
        except RuntimeError:
            # no running loop to carry the continuation
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            log.warning("listener_not_scheduled", extra={"topic": topic, "subscription_id": subscription_id})
            return False
        self._pending.add(fut)

        def _done(f: asyncio.Future):
            self._pending.discard(f)
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                log.error(
                    "listener_failed",
                    exc_info=exc,
                    extra={"topic": topic, "subscription_id": subscription_id},
                )

        fut.add_done_callback(_done)
        return True

    def as_async_iterator(self, topics: Union[str, Iterable[str]], max_buffer: Optional[int] = None) -> AsyncFeed:
        if max_buffer is None:
            max_buffer = self.max_buffer
        return AsyncFeed(self, topics, max_buffer=max_buffer)

    def topics(self) -> List[str]:
        return list(self._topics)

    def listener_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def __len__(self):
        return len(self._subscriptions)
