"""Transport interface.

This is the (small) contract that transport implementations should follow.
It lives outside :mod:`rabbitrpc.protocol` so the protocol remains
transport-agnostic: a transport moves opaque bytes plus two pieces of
out-of-band metadata, the correlation id and the reply address.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional


# Transport agnostic exceptions

class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportTimeout(TransportError):
    """The transport did not complete an operation in time."""


class TransportConnectionError(TransportError):
    """The transport could not establish or maintain a connection."""


@dataclass(frozen=True)
class Delivery:
    """One inbound message, as handed to a consumer callback.

    *tag* is transport-private; it is whatever the transport needs to
    acknowledge this particular delivery.
    """

    queue: str
    body: bytes
    correlation_id: Optional[str] = None
    reply_to: Optional[str] = None
    tag: Any = None


Callback = Callable[[Delivery], None]


class Transport(ABC):
    """Minimal contract for a message-queue transport."""

    @abstractmethod
    def open(self) -> None:
        """Establish the underlying connection and channel."""

    @abstractmethod
    def close(self) -> None:
        """Tear down the channel and connection. Safe to call twice."""

    @abstractmethod
    def declare_queue(self, name: str, durable: bool = True, exclusive: bool = False) -> None:
        """Create *name* on the broker if it does not already exist.

        An *exclusive* queue may only be consumed by this transport and is
        deleted when the transport closes.
        """

    @abstractmethod
    def publish(
        self,
        queue: str,
        body: bytes,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        """Send *body* to *queue* with the given metadata."""

    @abstractmethod
    def consume(self, queue: str, callback: Callback) -> None:
        """Start delivering messages from *queue* to *callback*.

        Deliveries require an explicit :meth:`ack`.
        """

    @abstractmethod
    def ack(self, delivery: Delivery) -> None:
        """Acknowledge *delivery* so the broker will not redeliver it."""

    @property
    def is_open(self) -> bool:
        """Whether the transport is currently connected."""
        return False
