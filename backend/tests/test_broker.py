import asyncio
import logging
import pytest
from backend.livefeed.core.pubsub import PubSub
from backend.livefeed.core.errors import InvalidTopic, UnknownSubscription

FIRST_EVENT = 'FIRST_EVENT'


def test_subscriber_receives_payload_once():
    pubsub = PubSub()
    received = []
    pubsub.subscribe(FIRST_EVENT, received.append)
    assert pubsub.publish(FIRST_EVENT, {'n': 1}) == 1
    assert received == [{'n': 1}]


def test_late_subscriber_misses_earlier_publish():
    pubsub = PubSub()
    early, late = [], []
    pubsub.subscribe(FIRST_EVENT, early.append)
    pubsub.publish(FIRST_EVENT, 'a')
    pubsub.subscribe(FIRST_EVENT, late.append)
    pubsub.publish(FIRST_EVENT, 'b')
    assert early == ['a', 'b']
    assert late == ['b']


def test_topics_are_independent_and_ordered():
    pubsub = PubSub()
    calls = []
    pubsub.subscribe('A', lambda p: calls.append(('first', p)))
    pubsub.subscribe('B', lambda p: calls.append(('other', p)))
    pubsub.subscribe('A', lambda p: calls.append(('second', p)))
    pubsub.publish('A', 1)
    assert calls == [('first', 1), ('second', 1)]


def test_publish_without_listeners_is_noop():
    pubsub = PubSub()
    assert pubsub.publish('nobody-listens', {}) == 0


def test_subscription_ids_are_unique_and_increasing():
    pubsub = PubSub()
    ids = [pubsub.subscribe('t', lambda p: None) for _ in range(3)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 3


def test_unsubscribed_listener_gets_nothing():
    pubsub = PubSub()
    received = []
    sid = pubsub.subscribe(FIRST_EVENT, received.append)
    pubsub.unsubscribe(sid)
    pubsub.publish(FIRST_EVENT, 'x')
    assert received == []
    assert pubsub.listener_count(FIRST_EVENT) == 0
    assert FIRST_EVENT not in pubsub.topics()


def test_unknown_unsubscribe_is_noop_by_default():
    pubsub = PubSub()
    sid = pubsub.subscribe('t', lambda p: None)
    pubsub.unsubscribe(sid)
    pubsub.unsubscribe(sid)
    pubsub.unsubscribe(12345)


def test_strict_unsubscribe_raises():
    pubsub = PubSub(strict_unsubscribe=True)
    with pytest.raises(UnknownSubscription):
        pubsub.unsubscribe(99)


@pytest.mark.parametrize('topic', ['', '   ', None, 42])
def test_invalid_topic(topic):
    pubsub = PubSub()
    with pytest.raises(InvalidTopic):
        pubsub.subscribe(topic, lambda p: None)
    with pytest.raises(InvalidTopic):
        pubsub.publish(topic, {})


def test_removal_during_fanout_skips_removed_listener():
    pubsub = PubSub()
    calls = []
    ids = {}

    def first(payload):
        calls.append('first')
        pubsub.unsubscribe(ids['second'])

    ids['first'] = pubsub.subscribe('t', first)
    ids['second'] = pubsub.subscribe('t', lambda p: calls.append('second'))
    ids['third'] = pubsub.subscribe('t', lambda p: calls.append('third'))
    pubsub.publish('t', None)
    assert calls == ['first', 'third']


def test_self_removal_and_new_listener_during_fanout():
    pubsub = PubSub()
    calls = []
    holder = {}

    def once(payload):
        calls.append(('once', payload))
        pubsub.unsubscribe(holder['once'])
        pubsub.subscribe('t', lambda p: calls.append(('added', p)))

    holder['once'] = pubsub.subscribe('t', once)
    pubsub.subscribe('t', lambda p: calls.append(('steady', p)))
    pubsub.publish('t', 1)
    assert calls == [('once', 1), ('steady', 1)]
    pubsub.publish('t', 2)
    assert calls[2:] == [('steady', 2), ('added', 2)]


def test_failing_listener_does_not_block_others(caplog):
    pubsub = PubSub()
    received = []

    def broken(payload):
        raise RuntimeError('listener broke')

    pubsub.subscribe('t', broken)
    pubsub.subscribe('t', received.append)
    with caplog.at_level(logging.ERROR):
        assert pubsub.publish('t', 'ok') == 1
    assert received == ['ok']
    assert any(r.getMessage() == 'listener_failed' for r in caplog.records)


@pytest.mark.asyncio
async def test_async_listener_does_not_block_publish():
    pubsub = PubSub()
    order = []
    gate = asyncio.Event()

    async def slow(payload):
        await gate.wait()
        order.append(('slow', payload))

    pubsub.subscribe('t', slow)
    pubsub.subscribe('t', lambda p: order.append(('fast', p)))
    pubsub.publish('t', 1)
    assert order == [('fast', 1)]
    gate.set()
    await asyncio.sleep(0.01)
    assert order == [('fast', 1), ('slow', 1)]


def test_async_listener_without_loop_is_dropped(caplog):
    pubsub = PubSub()

    async def listener(payload):
        raise AssertionError('must not run')

    pubsub.subscribe('t', listener)
    with caplog.at_level(logging.WARNING):
        assert pubsub.publish('t', 1) == 0
    assert any(r.getMessage() == 'listener_not_scheduled' for r in caplog.records)
