""" Request/response calls over RabbitMQ. An endpoint binds queues either as
    a sender, issuing calls and receiving their replies on a private reply
    queue, or as a receiver, answering calls with registered handlers. Each
    call returns a :class:`concurrent.futures.Future` that settles exactly
    once: with the remote handler's result, or with an error, a timeout,
    or the endpoint being closed.
"""

# Utility components.

from . import config
from . import errors
from . import json

# Submodules used by multiple other components.

from . import protocol
from . import transport

# Primary public-facing interfaces.

from .endpoint import Endpoint, QueueSettings, SENDER, RECEIVER
init = Endpoint.init

from .errors import (
    RPCError,
    CallTimeout,
    ConnectionClosed,
    DuplicateIdError,
    NoSenderBindingError,
    ProtocolDecodeError,
    RemoteError,
)

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
