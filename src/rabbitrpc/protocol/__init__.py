from . import envelope

from .envelope import Data, Error, Envelope


"""
rabbitrpc Protocol Layer
========================

This package defines the transport-agnostic envelope exchanged between
endpoints. It knows nothing about AMQP, queues, or acknowledgements.

---------------------------------------------------------------------

Layer Architecture Overview
---------------------------

User Code
    │
    ▼
Endpoint (endpoint.py)
    call() / make_call() / handle_message() / close()

    │
    ▼
Dispatcher (dispatch.py)
    Classifies each delivery as a reply or a request
    - Correlation Registry (correlation.py)
    - Handler Registry (handlers.py)

    │
    ▼
Envelope (protocol/envelope.py)
    Data / Error tagged union, JSON codec

    │
    ▼
Transport (transport/)
    Moves bytes plus correlation_id / reply_to metadata
    - AMQP (pika)
    - in-process memory broker

---------------------------------------------------------------------

Dependencies only flow downward: Endpoint -> Dispatcher -> Protocol,
Endpoint -> Transport. The protocol layer never imports a transport.
"""


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
