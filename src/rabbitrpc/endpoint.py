""" The :class:`Endpoint` is the public face of rabbitrpc: it binds queues,
    issues calls, registers handlers, and owns the lifecycle of the
    transport underneath.
"""

import concurrent.futures
import functools
import logging
import threading
import uuid

from dataclasses import dataclass
from typing import Dict, Optional

from . import config
from . import transport as transports
from .address import ReplyAddressAllocator
from .correlation import CorrelationRegistry
from .dispatch import Dispatcher
from .errors import ConnectionClosed, NoSenderBindingError
from .handlers import HandlerRegistry
from .protocol import envelope
from .transport.base import TransportError


log = logging.getLogger(__name__)

SENDER = 'sender'
RECEIVER = 'receiver'


@dataclass(frozen=True)
class QueueSettings:
    """ How an endpoint binds a queue: as a *sender* issuing calls, or as a
        *receiver* answering them. *call_timeout* (seconds) applies to calls
        issued on a sender binding; None means the endpoint default.
    """

    type: str
    call_timeout: Optional[float] = None

    def __post_init__(self):

        if self.type not in (SENDER, RECEIVER):
            raise ValueError('queue type must be %r or %r, not %r' % (SENDER, RECEIVER, self.type))

        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ValueError('call_timeout must be positive, not %r' % (self.call_timeout,))


    @classmethod
    def coerce(cls, value, type=None):
        """ Accept a :class:`QueueSettings`, a dictionary of its fields, or
            the bare strings 'sender' and 'receiver'. *type*, if given, is
            the default type for a dictionary without one, and the type a
            provided value must agree with.
        """

        if value is None:
            if type is None:
                raise ValueError('queue settings are required')
            settings = cls(type)
        elif isinstance(value, cls):
            settings = value
        elif isinstance(value, str):
            settings = cls(value)
        elif isinstance(value, dict):
            fields = dict(value)
            if type is not None:
                fields.setdefault('type', type)
            settings = cls(**fields)
        else:
            raise TypeError('cannot interpret queue settings: ' + repr(value))

        if type is not None and settings.type != type:
            raise ValueError('expected %r settings, got %r' % (type, settings.type))

        return settings


@dataclass(frozen=True)
class Binding:
    """ One queue bound by an endpoint. A sender binding also records the
        private queue its replies arrive on.
    """

    queue: str
    settings: QueueSettings
    reply_to: Optional[str] = None

    @property
    def is_sender(self):
        return self.settings.type == SENDER


class Endpoint:
    """ An RPC endpoint on top of an open :class:`rabbitrpc.transport.Transport`.
        Most callers should use :func:`Endpoint.init` (also available as
        :func:`rabbitrpc.init`), which connects the transport and binds
        queues in one step.

        *call_timeout* is the default timeout, in seconds, for calls on
        sender bindings that don't set their own. *workers* is the number of
        threads running message handlers. *token_source* generates the
        random part of reply addresses.
    """

    def __init__(self, transport, call_timeout=None, workers=None, token_source=None):

        if workers is None:
            workers = config.workers

        self.transport = transport
        self.correlations = CorrelationRegistry(call_timeout)
        self.handlers = HandlerRegistry()
        self.addresses = ReplyAddressAllocator(token_source)
        self.bindings: Dict[str, Binding] = dict()

        self.workers = concurrent.futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix='rabbitrpc.handler')

        self.dispatcher = Dispatcher(
            self.transport, self.correlations, self.handlers, self.workers)

        self.closed = False
        self._lock = threading.Lock()


    @classmethod
    def init(cls, connection_string=None, queues=None, call_timeout=None,
             workers=None, token_source=None, **options):
        """ Connect to *connection_string* (default: the RABBITRPC_URL
            environment variable) and bind every queue in *queues*, a
            mapping of queue name to settings as accepted by
            :func:`QueueSettings.coerce`::

                endpoint = rabbitrpc.init('amqp://localhost', {
                    'orders': 'receiver',
                    'billing': {'type': 'sender', 'call_timeout': 2.5},
                })

            Remaining keyword *options* go to the transport.
        """

        if connection_string is None:
            connection_string = config.url

        if workers is None:
            workers = config.workers

        options.setdefault('prefetch', workers)

        transport = transports.connect(connection_string, **options)
        endpoint = cls(transport, call_timeout, workers, token_source)

        try:
            for queue, settings in (queues or dict()).items():
                endpoint.add_queue(queue, settings)
        except BaseException:
            endpoint.close()
            raise

        return endpoint


    def __enter__(self):
        return self


    def __exit__(self, *exc_info):
        self.close()


    def add_queue(self, queue, settings):
        """ Bind *queue* as a sender or receiver, according to *settings*.
        """

        settings = QueueSettings.coerce(settings)

        if settings.type == SENDER:
            return self.add_sender(queue, settings)
        return self.add_receiver(queue, settings)


    def add_receiver(self, queue, settings=None):
        """ Declare *queue* and start answering requests arriving on it.
        """

        settings = QueueSettings.coerce(settings, RECEIVER)
        binding = Binding(queue, settings)

        self._record(binding)
        self.transport.declare_queue(queue, durable=True)
        self.transport.consume(queue, self.dispatcher.consumer(queue))

        log.debug("receiving on %r", queue)
        return binding


    def add_sender(self, queue, settings=None):
        """ Declare *queue* for outbound calls, plus a private reply queue
            that only this endpoint consumes from.
        """

        settings = QueueSettings.coerce(settings, SENDER)
        reply_to = self.addresses.allocate(queue)
        binding = Binding(queue, settings, reply_to)

        self._record(binding)
        self.transport.declare_queue(queue, durable=True)
        self.transport.declare_queue(reply_to, durable=False, exclusive=True)
        self.transport.consume(reply_to, self.dispatcher.consumer(queue))

        log.debug("sending on %r, replies to %r", queue, reply_to)
        return binding


    def handle_message(self, queue, event, handler):
        """ Answer *event* requests arriving on *queue* with *handler*. The
            handler receives the request payload and returns the reply
            payload; None becomes ``{"success": True}``. An exception becomes
            an error reply carrying ``str(exception)``. Coroutine functions
            are run to completion on the handler thread.

            Registration can happen before or after the queue is bound.
            Registering the same (queue, event) again replaces the handler.
        """

        self.handlers.register(queue, event, handler)


    def handler(self, queue, event):
        """ Decorator form of :func:`handle_message`::

                @endpoint.handler('math', 'add')
                def add(data):
                    return data['a'] + data['b']
        """

        def decorator(function):
            self.handle_message(queue, event, function)
            return function

        return decorator


    def call(self, queue, event, data=None, type=None):
        """ Send *event* with payload *data* to *queue* and return a
            :class:`concurrent.futures.Future` for the reply. The future
            resolves with the remote handler's return value, or fails with
            :class:`rabbitrpc.errors.RemoteError`,
            :class:`rabbitrpc.errors.CallTimeout`, or
            :class:`rabbitrpc.errors.ConnectionClosed`.

            If *type* is given, the reply payload is converted to it (any
            type msgspec understands); a mismatch fails the future with
            :class:`rabbitrpc.errors.ProtocolDecodeError`.

            Raises :class:`rabbitrpc.errors.NoSenderBindingError` right
            away if this endpoint is not a sender on *queue*, and TypeError
            if *type* is not something msgspec can convert to.
        """

        if self.closed:
            raise ConnectionClosed()

        binding = self.bindings.get(queue)
        if binding is None or not binding.is_sender:
            raise NoSenderBindingError(queue)

        if type is not None:
            envelope.check_type(type)

        # Encode first: an unserializable payload is the caller's problem
        # and should not leave a pending call behind.
        body = envelope.encode(envelope.data(event, data))

        id = str(uuid.uuid4())

        # Same lock close() holds while marking the endpoint closed, which
        # it does before draining the registry.
        with self._lock:
            if self.closed:
                raise ConnectionClosed()
            future = self.correlations.register(id, queue, event, binding.settings.call_timeout)

        try:
            self.transport.publish(queue, body, correlation_id=id, reply_to=binding.reply_to)
        except TransportError as e:
            self.correlations.fail(id, e)

        if type is not None:
            return _converted(future, type)

        return future


    def make_call(self, queue, event, type=None):
        """ Return a function that takes a payload and calls *event* on
            *queue* with it, returning the future from :func:`call`.
        """

        caller = functools.partial(self.call, queue, event, type=type)
        caller.__doc__ = 'Call %r on %r.' % (event, queue)
        return caller


    def close(self):
        """ Reject every outstanding call with 'connection closed', close
            the transport, and stop the handler threads. Calling this more
            than once is harmless.
        """

        with self._lock:
            if self.closed:
                return
            self.closed = True

        drained = self.correlations.drain('connection closed')
        if drained:
            log.debug("closed with %d call(s) outstanding", drained)

        try:
            self.transport.close()
        finally:
            self.workers.shutdown(wait=False, cancel_futures=True)


    def _record(self, binding):

        with self._lock:
            if self.closed:
                raise ConnectionClosed()

            if binding.queue in self.bindings:
                raise ValueError('queue already bound: ' + repr(binding.queue))

            self.bindings[binding.queue] = binding


# end of class Endpoint



def _converted(source, type):
    """ Return a future that settles with the result of *source* converted
        to *type*.
    """

    target = concurrent.futures.Future()
    target.set_running_or_notify_cancel()

    def done(source):
        error = source.exception()

        if error is not None:
            target.set_exception(error)
            return

        # Anything escaping a done-callback is only logged, which would
        # leave the target pending forever.
        try:
            result = envelope.convert(source.result(), type)
        except Exception as e:
            target.set_exception(e)
        else:
            target.set_result(result)

    source.add_done_callback(done)
    return target


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
