"""Transport layer implementations."""

import urllib.parse

from .base import (
    Delivery,
    Transport,
    TransportError,
    TransportTimeout,
    TransportConnectionError,
)

from . import amqp
from . import memory


def connect(connection_string, **options):
    """ Return an open :class:`Transport` for *connection_string*. The URL
        scheme picks the backend: ``amqp://`` and ``amqps://`` talk to a
        RabbitMQ broker, ``memory://name`` attaches to an in-process broker.
        Keyword *options* are handed to the AMQP transport (``prefetch``,
        ``timeout``) and ignored by the memory transport.
    """

    scheme = urllib.parse.urlsplit(connection_string).scheme.lower()

    if scheme in ('amqp', 'amqps'):
        transport = amqp.AmqpTransport(connection_string, **options)
    elif scheme == 'memory':
        transport = memory.MemoryTransport.from_url(connection_string)
    else:
        raise ValueError('unknown transport scheme: ' + repr(scheme))

    transport.open()
    return transport


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
