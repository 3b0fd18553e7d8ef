"""Intake for every inbound delivery of an endpoint.

A delivery is either the reply to one of our own pending calls, or a
request for one of our handlers. The correlation id decides: if it names a
pending call, the envelope settles that call; otherwise the envelope is a
request and is looked up by (queue, event) in the handler registry.

Replies are settled inline, on whatever thread the transport delivers on.
Requests are handed to a thread pool so a slow handler never holds up other
deliveries; as a consequence, requests are not answered in arrival order.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import inspect
import logging
from typing import Callable

from . import json
from .correlation import CorrelationRegistry
from .errors import ProtocolDecodeError, RemoteError
from .handlers import HandlerRegistry
from .protocol import envelope
from .transport.base import Delivery, Transport, TransportError


log = logging.getLogger(__name__)


class Dispatcher:

    def __init__(
        self,
        transport: Transport,
        correlations: CorrelationRegistry,
        handlers: HandlerRegistry,
        workers: concurrent.futures.Executor,
    ):
        self.transport = transport
        self.correlations = correlations
        self.handlers = handlers
        self.workers = workers

    def consumer(self, queue: str) -> Callable[[Delivery], None]:
        """Return a transport callback that dispatches in the context of
        *queue*, the logical queue the consuming binding belongs to."""

        return functools.partial(self.dispatch, queue)

    def dispatch(self, queue: str, delivery: Delivery) -> None:
        id = delivery.correlation_id

        try:
            message = envelope.decode(delivery.body)
        except ProtocolDecodeError as exc:
            log.warning("undecodable message on %r (correlation id %r): %s", queue, id, exc)

            # No point letting the caller wait for a timeout.
            if id is not None:
                self.correlations.fail(id, exc)

            self._ack(delivery)
            return

        if id is not None and self._settle(id, message):
            self._ack(delivery)
            return

        if isinstance(message, envelope.Error) or not delivery.reply_to:
            # Replies carry no reply address. This one is for a call that
            # already timed out, was drained, or was answered twice.
            log.debug("ignoring stale reply %r for %r on %r", id, message.event, queue)
            self._ack(delivery)
            return

        handler = self.handlers.lookup(queue, message.event)

        if handler is None:
            # Deliberately unanswered; the caller will see a timeout.
            log.warning("no handler for event %r on queue %r, not answering", message.event, queue)
            self._ack(delivery)
            return

        try:
            self.workers.submit(self._respond, delivery, message, handler)
        except RuntimeError:
            # The pool is shut down, so the endpoint is closing. Leave the
            # delivery unacknowledged for the broker to hand to someone else.
            log.debug("endpoint closing, not handling %r on %r", message.event, queue)

    # --- internal ---

    def _settle(self, id: str, message: envelope.Envelope) -> bool:
        if isinstance(message, envelope.Data):
            return self.correlations.complete(id, message.data)
        return self.correlations.fail(id, RemoteError(message.error, message.event))

    def _respond(self, delivery: Delivery, request: envelope.Data, handler) -> None:
        try:
            reply = self._invoke(handler, request)

            try:
                body = envelope.encode(reply)
            except (TypeError, json.EncodeError) as exc:
                body = envelope.encode(envelope.error(request.event, exc))

            try:
                self.transport.publish(
                    delivery.reply_to,
                    body,
                    correlation_id=delivery.correlation_id,
                )
            except TransportError as exc:
                log.warning(
                    "cannot reply to %r for %r: %s", delivery.reply_to, request.event, exc
                )
        finally:
            self._ack(delivery)

    def _invoke(self, handler, request: envelope.Data) -> envelope.Envelope:
        try:
            result = handler(request.data)
            if inspect.iscoroutine(result):
                result = asyncio.run(result)
        except Exception as exc:
            log.debug("handler for %r raised", request.event, exc_info=True)
            return envelope.error(request.event, exc)

        if result is None:
            result = dict(envelope.SUCCESS)

        return envelope.data(request.event, result)

    def _ack(self, delivery: Delivery) -> None:
        try:
            self.transport.ack(delivery)
        except TransportError as exc:
            log.warning("cannot acknowledge delivery on %r: %s", delivery.queue, exc)
