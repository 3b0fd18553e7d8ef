""" Exercise the dispatcher directly, with a transport that records what it
    is asked to do and a thread pool that runs jobs immediately, so every
    outcome is observable as soon as dispatch() returns.
"""

import concurrent.futures
import json

import rabbitrpc
from rabbitrpc.correlation import CorrelationRegistry
from rabbitrpc.dispatch import Dispatcher
from rabbitrpc.handlers import HandlerRegistry
from rabbitrpc.protocol import envelope
from rabbitrpc.transport.base import Delivery, Transport, TransportError


class Recorder(Transport):

    def __init__(self, fail_publish=False):
        self.published = list()
        self.acked = list()
        self.fail_publish = fail_publish

    def open(self):
        pass

    def close(self):
        pass

    def declare_queue(self, name, durable=True, exclusive=False):
        pass

    def publish(self, queue, body, correlation_id=None, reply_to=None):
        if self.fail_publish:
            raise TransportError('broker went away')
        self.published.append((queue, json.loads(body), correlation_id, reply_to))

    def consume(self, queue, callback):
        pass

    def ack(self, delivery):
        self.acked.append(delivery.tag)


class Immediate(concurrent.futures.Executor):

    def submit(self, function, *args, **kwargs):
        future = concurrent.futures.Future()
        future.set_result(function(*args, **kwargs))
        return future


def make_dispatcher(**kwargs):
    transport = Recorder(**kwargs)
    correlations = CorrelationRegistry(timeout=5)
    handlers = HandlerRegistry()
    dispatcher = Dispatcher(transport, correlations, handlers, Immediate())
    return dispatcher, transport


def request(event, data=None, id='call-1', reply_to='q1_reply', tag=1):
    body = envelope.encode(envelope.data(event, data))
    return Delivery('q1', body, id, reply_to, tag)


def reply(message, id='call-1', tag=1):
    return Delivery('q1_reply', envelope.encode(message), id, None, tag)


def test_request_answered():

    dispatcher, transport = make_dispatcher()
    dispatcher.handlers.register('q1', 'echo', lambda data: data)

    dispatcher.dispatch('q1', request('echo', 'Hello world'))

    assert transport.published == [
        ('q1_reply', {'type': 'data', 'event': 'echo', 'data': 'Hello world'}, 'call-1', None),
    ]
    assert transport.acked == [1]


def test_request_success_marker():

    dispatcher, transport = make_dispatcher()
    dispatcher.handlers.register('q1', 'noop', lambda data: None)

    dispatcher.dispatch('q1', request('noop'))

    queue, body, id, reply_to = transport.published[0]
    assert body['data'] == {'success': True}


def test_request_handler_error():

    dispatcher, transport = make_dispatcher()

    def broken(data):
        raise Exception('Special echo error 1')

    dispatcher.handlers.register('q1', 'echo', broken)
    dispatcher.dispatch('q1', request('echo', tag=7))

    assert transport.published == [
        ('q1_reply', {'type': 'error', 'event': 'echo', 'error': 'Special echo error 1'}, 'call-1', None),
    ]

    # Acknowledged regardless of the handler failing.
    assert transport.acked == [7]


def test_request_unserializable_result():

    dispatcher, transport = make_dispatcher()
    dispatcher.handlers.register('q1', 'echo', lambda data: object())

    dispatcher.dispatch('q1', request('echo'))

    queue, body, id, reply_to = transport.published[0]
    assert body['type'] == 'error'
    assert body['error']


def test_request_coroutine_handler():

    dispatcher, transport = make_dispatcher()

    async def double(data):
        return data * 2

    dispatcher.handlers.register('q1', 'double', double)
    dispatcher.dispatch('q1', request('double', 21))

    queue, body, id, reply_to = transport.published[0]
    assert body['data'] == 42


def test_request_without_handler():

    dispatcher, transport = make_dispatcher()
    dispatcher.handlers.register('q2', 'echo', lambda data: data)

    dispatcher.dispatch('q1', request('echo'))

    assert transport.published == []
    assert transport.acked == [1]


def test_reply_publish_failure_still_acked():

    dispatcher, transport = make_dispatcher(fail_publish=True)
    dispatcher.handlers.register('q1', 'echo', lambda data: data)

    dispatcher.dispatch('q1', request('echo', tag=3))

    assert transport.acked == [3]


def test_reply_resolves_pending_call():

    dispatcher, transport = make_dispatcher()
    future = dispatcher.correlations.register('call-1', 'q1', 'echo')

    dispatcher.dispatch('q1', reply(envelope.data('echo', 'Hello world')))

    assert future.result(timeout=0) == 'Hello world'
    assert transport.published == []
    assert transport.acked == [1]


def test_reply_rejects_pending_call():

    dispatcher, transport = make_dispatcher()
    future = dispatcher.correlations.register('call-1', 'q1', 'echo')

    dispatcher.dispatch('q1', reply(envelope.error('echo', 'Special echo error 1')))

    error = future.exception(timeout=0)
    assert isinstance(error, rabbitrpc.RemoteError)
    assert str(error) == 'Special echo error 1'
    assert transport.published == []


def test_duplicate_reply_ignored():

    dispatcher, transport = make_dispatcher()
    future = dispatcher.correlations.register('call-1', 'q1', 'echo')

    # Even with a handler registered for the event, a reply without a
    # reply address must never be mistaken for a request.
    dispatcher.handlers.register('q1', 'echo', lambda data: 'wrong')

    dispatcher.dispatch('q1', reply(envelope.data('echo', 'first'), tag=1))
    dispatcher.dispatch('q1', reply(envelope.data('echo', 'second'), tag=2))
    dispatcher.dispatch('q1', reply(envelope.error('echo', 'third'), tag=3))

    assert future.result(timeout=0) == 'first'
    assert transport.published == []
    assert transport.acked == [1, 2, 3]


def test_malformed_message():

    dispatcher, transport = make_dispatcher()
    future = dispatcher.correlations.register('call-1', 'q1', 'echo')

    dispatcher.dispatch('q1', Delivery('q1_reply', b'{not json', 'call-1', None, 9))

    assert transport.acked == [9]
    assert isinstance(future.exception(timeout=0), rabbitrpc.ProtocolDecodeError)

    # Malformed and uncorrelated: acknowledged and otherwise ignored.
    dispatcher.dispatch('q1', Delivery('q1', b'[]', None, 'q1_reply', 10))
    assert transport.acked == [9, 10]
    assert transport.published == []


def test_consumer_binds_queue():

    dispatcher, transport = make_dispatcher()
    dispatcher.handlers.register('q1', 'echo', lambda data: data)

    consumer = dispatcher.consumer('q1')

    # The delivery arrives on some other physical queue; the handler lookup
    # uses the queue the consumer was bound to.
    delivery = Delivery('elsewhere', envelope.encode(envelope.data('echo', 1)), 'x', 'r', 4)
    consumer(delivery)

    assert transport.published[0][0] == 'r'
    assert transport.published[0][1]['data'] == 1


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
