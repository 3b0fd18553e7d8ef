"""In-process message broker.

Connection strings of the form ``memory://name`` attach to the broker
*name*, creating it on first use; every transport attached to the same name
in one process shares its queues. The broker mimics the parts of RabbitMQ's
default exchange that request/response traffic relies on:

    - a message published to a queue nobody declared is dropped
    - each queue round-robins its messages across its consumers
    - deliveries stay unacknowledged until :meth:`MemoryTransport.ack`
    - a consumer's unacknowledged deliveries are requeued, at the head of
      the queue, when its transport closes
    - an exclusive queue belongs to the transport that declared it, and
      disappears when that transport closes

Queues live as long as the broker does (see :func:`discard`), so the *durable* flag is recorded
but has no further effect. Every queue delivers from its own daemon thread,
one delivery at a time.
"""

from __future__ import annotations

import collections
import itertools
import logging
import threading
import urllib.parse
from typing import Dict, List, Optional, Tuple

from .base import (
    Callback,
    Delivery,
    Transport,
    TransportConnectionError,
    TransportError,
)


log = logging.getLogger(__name__)

_brokers: Dict[str, "Broker"] = {}
_brokers_lock = threading.Lock()


def broker(name: str) -> "Broker":
    """Return the broker called *name*, creating it if necessary."""

    with _brokers_lock:
        instance = _brokers.get(name)
        if instance is None:
            instance = Broker(name)
            _brokers[name] = instance
        return instance


def discard(name: str) -> None:
    """Forget the broker called *name* and delete its queues, stopping their
    delivery threads. Transports still attached to it stop seeing traffic;
    the next :func:`broker` call with the same name starts afresh.
    """

    with _brokers_lock:
        instance = _brokers.pop(name, None)

    if instance is not None:
        instance.close()


class _Message:

    __slots__ = ('body', 'correlation_id', 'reply_to')

    def __init__(self, body, correlation_id, reply_to):
        self.body = body
        self.correlation_id = correlation_id
        self.reply_to = reply_to


class _Consumer:

    __slots__ = ('owner', 'callback')

    def __init__(self, owner, callback):
        self.owner = owner
        self.callback = callback


class _Queue:
    """ A single named queue and the thread delivering from it.
    """

    def __init__(self, name, durable=True, owner=None):

        self.name = name
        self.durable = durable
        self.owner = owner
        self.deleted = False

        self.messages = collections.deque()
        self.consumers: List[_Consumer] = []
        self.unacked: Dict[int, Tuple[_Consumer, _Message]] = {}

        self.condition = threading.Condition()
        self.tags = itertools.count(1)
        self.turn = 0

        self.thread = threading.Thread(target=self.run, name='rabbitrpc.memory:' + name)
        self.thread.daemon = True
        self.thread.start()


    def put(self, message):

        with self.condition:
            self.messages.append(message)
            self.condition.notify()


    def add_consumer(self, consumer):

        with self.condition:
            self.consumers.append(consumer)
            self.condition.notify()


    def ack(self, tag):
        """ Forget an unacknowledged delivery. Returns False if the tag is
            unknown, which happens if the delivery was already acknowledged
            or requeued.
        """

        with self.condition:
            return self.unacked.pop(tag, None) is not None


    def cancel(self, owner):
        """ Remove every consumer belonging to *owner* and requeue whatever
            they left unacknowledged, oldest delivery first.
        """

        with self.condition:
            self.consumers = [c for c in self.consumers if c.owner is not owner]

            orphaned = [tag for tag, (consumer, _) in self.unacked.items() if consumer.owner is owner]
            for tag in reversed(orphaned):
                _consumer, message = self.unacked.pop(tag)
                self.messages.appendleft(message)

            self.condition.notify()


    def delete(self):

        with self.condition:
            self.deleted = True
            self.messages.clear()
            self.consumers = []
            self.unacked.clear()
            self.condition.notify()


    def run(self):

        while True:
            with self.condition:
                while not (self.deleted or (self.messages and self.consumers)):
                    self.condition.wait()

                if self.deleted:
                    break

                message = self.messages.popleft()
                consumer = self.consumers[self.turn % len(self.consumers)]
                self.turn += 1

                tag = next(self.tags)
                self.unacked[tag] = (consumer, message)

            delivery = Delivery(
                queue=self.name,
                body=message.body,
                correlation_id=message.correlation_id,
                reply_to=message.reply_to,
                tag=tag,
            )

            try:
                consumer.callback(delivery)
            except Exception:
                log.exception("consumer callback for %r failed", self.name)


# end of class _Queue



class Broker:
    """ A named collection of queues shared by every :class:`MemoryTransport`
        attached to it.
    """

    def __init__(self, name):
        self.name = name
        self._queues: Dict[str, _Queue] = {}
        self._lock = threading.Lock()


    def __contains__(self, name):

        with self._lock:
            return name in self._queues


    def declare(self, name, durable=True, owner=None):
        """ Declare queue *name*, returning the existing queue if there is
            one. A non-None *owner* makes the queue exclusive to it.
        """

        with self._lock:
            queue = self._queues.get(name)

            if queue is None:
                queue = _Queue(name, durable, owner)
                self._queues[name] = queue
            elif queue.owner is not None and queue.owner is not owner:
                raise TransportError('queue is exclusive to another connection: ' + repr(name))

            return queue


    def delete(self, name):

        with self._lock:
            queue = self._queues.pop(name, None)

        if queue is not None:
            queue.delete()


    def get(self, name) -> Optional[_Queue]:

        with self._lock:
            return self._queues.get(name)


    def close(self):
        """ Delete every queue on this broker.
        """

        with self._lock:
            queues, self._queues = list(self._queues.values()), dict()

        for queue in queues:
            queue.delete()


    def depth(self, name):
        """ Number of messages waiting in *name*, not counting deliveries
            that are in flight.
        """

        queue = self.get(name)
        if queue is None:
            raise KeyError('no such queue: ' + name)

        with queue.condition:
            return len(queue.messages)


# end of class Broker



class MemoryTransport(Transport):
    """Transport attached to an in-process :class:`Broker`."""

    def __init__(self, name: str = "default"):
        self.broker = broker(name)
        self._open = False
        self._consumed: List[_Queue] = []
        self._exclusive: List[str] = []
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str) -> "MemoryTransport":
        parts = urllib.parse.urlsplit(url)
        name = parts.netloc or parts.path.strip("/") or "default"
        return cls(name)

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        with self._lock:
            if not self._open:
                return
            self._open = False
            consumed, self._consumed = self._consumed, []
            exclusive, self._exclusive = self._exclusive, []

        for queue in consumed:
            queue.cancel(self)

        for name in exclusive:
            self.broker.delete(name)

    def declare_queue(self, name: str, durable: bool = True, exclusive: bool = False) -> None:
        self._check()
        self.broker.declare(name, durable, self if exclusive else None)

        if exclusive:
            with self._lock:
                if name not in self._exclusive:
                    self._exclusive.append(name)

    def publish(
        self,
        queue: str,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        self._check()

        target = self.broker.get(queue)
        if target is None:
            # Same as the AMQP default exchange: unroutable messages vanish.
            log.debug("dropping message for undeclared queue %r", queue)
            return

        target.put(_Message(bytes(body), correlation_id, reply_to))

    def consume(self, queue: str, callback: Callback) -> None:
        self._check()

        target = self.broker.get(queue)
        if target is None:
            raise TransportError(f"cannot consume from undeclared queue {queue!r}")

        if target.owner is not None and target.owner is not self:
            raise TransportError(f"queue is exclusive to another connection: {queue!r}")

        with self._lock:
            self._consumed.append(target)

        target.add_consumer(_Consumer(self, callback))

    def ack(self, delivery: Delivery) -> None:
        # Acknowledging after close is a no-op; the delivery was requeued.
        target = self.broker.get(delivery.queue)
        if target is not None:
            target.ack(delivery.tag)

    def _check(self) -> None:
        if not self._open:
            raise TransportConnectionError("memory transport is not open")
